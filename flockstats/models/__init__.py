"""Export all models for easy importing"""

# Base models and mixins
from .base import BaseModel, TimestampMixin, insert_or_fetch

# Battle schedule calendar
from .schedule import MasterBattle

# Roster
from .roster import RosterMember

# Battle records
from .battle import ClanBattle, ClanBattlePlayerStats, ClanBattleNonplayerStats

# Period rollups
from .performance import (
    PeriodState,
    MonthlyClanPerformance,
    YearlyClanPerformance,
    MonthlyIndividualPerformance,
    YearlyIndividualPerformance
)

# Audit trail
from .audit import AuditLog

__all__ = [
    # Base
    'BaseModel',
    'TimestampMixin',
    'insert_or_fetch',

    # Schedule
    'MasterBattle',

    # Roster
    'RosterMember',

    # Battles
    'ClanBattle',
    'ClanBattlePlayerStats',
    'ClanBattleNonplayerStats',

    # Rollups
    'PeriodState',
    'MonthlyClanPerformance',
    'YearlyClanPerformance',
    'MonthlyIndividualPerformance',
    'YearlyIndividualPerformance',

    # Audit
    'AuditLog',
]
