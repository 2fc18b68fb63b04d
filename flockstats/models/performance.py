"""Period rollup models - monthly and yearly clan and individual performance.

Rows are owned by rollup_service/recalculation_service. They are derived
entirely from clan_battles, so they carry no timestamps: regenerating a
period with the same battles produces the same row.
"""
import enum

from ..extensions import db
from ..models.base import BaseModel


class PeriodState(enum.Enum):
    """Completion lock of a monthly rollup."""
    OPEN = 'open'
    COMPLETE = 'complete'


class ClanPerformanceColumns:
    """Aggregate columns shared by monthly and yearly clan rollups."""

    # Battle counts
    battle_count = db.Column(db.Integer, nullable=False)
    won_count = db.Column(db.Integer, nullable=False)
    lost_count = db.Column(db.Integer, nullable=False)
    tied_count = db.Column(db.Integer, nullable=False)

    # Averaged performance metrics (raw doubles, never rounded)
    average_fp = db.Column(db.Float, nullable=False)
    average_baseline_fp = db.Column(db.Float, nullable=False)
    average_ratio = db.Column(db.Float, nullable=False)
    average_average_ratio = db.Column(db.Float, nullable=False)
    average_margin_ratio = db.Column(db.Float, nullable=False)
    average_fp_margin = db.Column(db.Float, nullable=False)

    # Averaged participation metrics
    average_nonplaying_count = db.Column(db.Float, nullable=False)
    average_nonplaying_fp_ratio = db.Column(db.Float, nullable=False)
    average_reserve_count = db.Column(db.Float, nullable=False)
    average_reserve_fp_ratio = db.Column(db.Float, nullable=False)


class IndividualPerformanceColumns:
    """Aggregate columns shared by monthly and yearly player rollups."""

    battles_played = db.Column(db.Integer, nullable=False)
    average_score = db.Column(db.Float, nullable=False)
    average_fp = db.Column(db.Float, nullable=False)
    average_ratio = db.Column(db.Float, nullable=False)
    average_rank = db.Column(db.Float, nullable=False)
    average_ratio_rank = db.Column(db.Float, nullable=False)


class MonthlyClanPerformance(BaseModel, ClanPerformanceColumns):
    """Clan summary for one calendar month (month_id = YYYYMM)."""
    __tablename__ = 'monthly_clan_stats'

    clan_id = db.Column(db.Integer, primary_key=True)
    month_id = db.Column(db.String(6), primary_key=True)

    state = db.Column(
        db.Enum(
            PeriodState,
            name='period_state',
            native_enum=False,
            length=16,
            values_callable=lambda states: [s.value for s in states]
        ),
        nullable=False,
        default=PeriodState.OPEN
    )

    @property
    def period_id(self):
        return self.month_id

    @property
    def is_complete(self):
        return self.state is PeriodState.COMPLETE


class YearlyClanPerformance(BaseModel, ClanPerformanceColumns):
    """Clan summary for one calendar year (year_id = YYYY). Never locked."""
    __tablename__ = 'yearly_clan_stats'

    clan_id = db.Column(db.Integer, primary_key=True)
    year_id = db.Column(db.String(4), primary_key=True)

    @property
    def period_id(self):
        return self.year_id

    @property
    def is_complete(self):
        return False


class MonthlyIndividualPerformance(BaseModel, IndividualPerformanceColumns):
    """Player summary for one month; only players meeting the battle minimum."""
    __tablename__ = 'monthly_individual_stats'

    clan_id = db.Column(db.Integer, primary_key=True)
    month_id = db.Column(db.String(6), primary_key=True)
    player_id = db.Column(db.Integer, db.ForeignKey('roster_members.player_id'), primary_key=True, index=True)

    player = db.relationship('RosterMember', lazy='joined')

    @property
    def period_id(self):
        return self.month_id

    def to_dict(self, exclude=None):
        result = super().to_dict(exclude=exclude)
        result['player_name'] = self.player.player_name if self.player else None
        return result


class YearlyIndividualPerformance(BaseModel, IndividualPerformanceColumns):
    """Player summary for one year; only players meeting the battle minimum."""
    __tablename__ = 'yearly_individual_stats'

    clan_id = db.Column(db.Integer, primary_key=True)
    year_id = db.Column(db.String(4), primary_key=True)
    player_id = db.Column(db.Integer, db.ForeignKey('roster_members.player_id'), primary_key=True, index=True)

    player = db.relationship('RosterMember', lazy='joined')

    @property
    def period_id(self):
        return self.year_id

    def to_dict(self, exclude=None):
        result = super().to_dict(exclude=exclude)
        result['player_name'] = self.player.player_name if self.player else None
        return result
