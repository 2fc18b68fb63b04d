"""Operator commands, registered on the Flask CLI (`flask --app run <command>`)."""
import click
from flask.cli import with_appcontext
from loguru import logger

from flockstats.exceptions import EngineError
from flockstats.extensions import db


@click.command('init-db')
@click.option('--drop', is_flag=True, help='Drop existing tables first')
@with_appcontext
def init_database(drop):
    """Create database schema"""
    from flockstats import models  # noqa: F401  (register every table)

    if drop:
        logger.warning('Dropping all tables')
        db.drop_all()
    logger.info('Creating all database tables')
    db.create_all()
    click.echo("✓ All tables created successfully")


@click.command('add-battle-date')
@click.argument('battle_id', required=False)
@click.option('--notes', help='Free text stored with the calendar entry')
@click.option('--actor', 'actor_id', default=None, help='Actor recorded in the audit log')
@with_appcontext
def add_battle_date(battle_id, notes, actor_id):
    """Add BATTLE_ID (YYYYMMDD) to the schedule; defaults to the next slot"""
    from flockstats.services import schedule_service

    try:
        entry = schedule_service.add_battle_date(battle_id=battle_id, actor_id=actor_id, notes=notes)
    except EngineError as e:
        raise click.ClickException(e.message)
    click.echo(f"✓ Scheduled battle {entry.battle_id} ({entry.start_timestamp} - {entry.end_timestamp})")


@click.command('recalculate')
@click.argument('clan_id', type=int)
@click.argument('period_id')
@click.option('--actor', 'actor_id', default=None, help='Actor recorded in the audit log')
@with_appcontext
def recalculate(clan_id, period_id, actor_id):
    """Regenerate rollups of CLAN_ID for PERIOD_ID (YYYYMM or YYYY)"""
    from flockstats.services import recalculation_service

    try:
        summary = recalculation_service.recalculate(clan_id, period_id, actor_id=actor_id)
    except EngineError as e:
        raise click.ClickException(e.message)
    click.echo(
        f"✓ Recalculated clan {clan_id} period {period_id}: "
        f"{summary['battle_count']} battles, {summary['player_count']} player rollups"
    )


def register_commands(app):
    """Attach operator commands to the app's CLI"""
    app.cli.add_command(init_database)
    app.cli.add_command(add_battle_date)
    app.cli.add_command(recalculate)
