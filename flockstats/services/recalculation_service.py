"""Recalculation controller - regenerate a period's rollups from its battles.

The delete and the re-insert happen in one transaction, so no reader ever
sees the period without a rollup (which would trigger a lazy
materialization mid-recalculation).
"""
from loguru import logger

from flockstats.exceptions import NotFoundError
from flockstats.extensions import db
from flockstats.services import audit_service, rollup_service
from flockstats.services.periods import MONTH


def recalculate(clan_id, period_id, actor_id=None):
    """Delete and regenerate the clan and player rollups of a month or year.

    Monthly rollups always come back open; a month that was complete must be
    locked again explicitly.

    Args:
        clan_id: Clan ID
        period_id: YYYYMM or YYYY
        actor_id: Trusted actor identifier

    Returns:
        Dictionary summarizing the regeneration

    Raises:
        ValidationError: malformed period id
        NotFoundError: no battles in the period (nothing is changed)
    """
    granularity, clan_model, individual_model, key = rollup_service.period_models(period_id)

    try:
        deleted_clan = clan_model.query.filter_by(clan_id=clan_id, **{key: period_id}).delete(synchronize_session='fetch')
        deleted_players = individual_model.query.filter_by(clan_id=clan_id, **{key: period_id}).delete(synchronize_session='fetch')

        battles = rollup_service.qualifying_battles(clan_id, period_id)
        if not battles:
            raise NotFoundError(f"No battles found for clan {clan_id} in period {period_id}", period_id=period_id)

        db.session.add(clan_model(**rollup_service.clan_rollup_values(clan_id, period_id, battles)))

        player_stats = rollup_service.qualifying_player_stats(clan_id, period_id)
        player_rows = rollup_service.individual_rollup_values(clan_id, period_id, player_stats)
        db.session.add_all([individual_model(**values) for values in player_rows])

        summary = {
            'clan_id': clan_id,
            'period_id': period_id,
            'granularity': granularity,
            'battle_count': len(battles),
            'player_count': len(player_rows),
            'deleted_clan_rows': deleted_clan,
            'deleted_player_rows': deleted_players,
        }
        audit_service.record(
            actor_id,
            audit_service.RECALCULATE,
            audit_service.MONTHLY_STATS if granularity == MONTH else audit_service.YEARLY_STATS,
            period_id,
            clan_id,
            summary
        )
        db.session.commit()
    except NotFoundError:
        db.session.rollback()
        raise
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error recalculating clan {clan_id} period {period_id}: {e}")
        raise

    logger.info(
        f"Recalculated clan {clan_id} period {period_id}: "
        f"{len(battles)} battles, {len(player_rows)} player rollups"
    )
    return summary
