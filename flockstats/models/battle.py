"""Clan battle models - the battle record plus per-player box score rows.

Derived columns (result, ratios, margins, counts) are written only by the
battle service, which recomputes all of them from the raw columns.
"""
from ..extensions import db
from ..models.base import BaseModel, TimestampMixin


class ClanBattle(BaseModel, TimestampMixin):
    """One clan's result for one scheduled battle.

    Maps to clan_battles table. Composite primary key (clan_id, battle_id)
    guarantees a single record per clan and battle.
    """
    __tablename__ = 'clan_battles'

    # Composite Primary Key
    clan_id = db.Column(db.Integer, primary_key=True)
    battle_id = db.Column(db.String(8), db.ForeignKey('master_battles.battle_id'), primary_key=True)

    # Copied from the schedule calendar
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)

    # Raw inputs
    score = db.Column(db.Integer, nullable=False)
    baseline_fp = db.Column(db.Integer, nullable=False)  # official FP used for matchmaking
    opponent_name = db.Column(db.String(100), nullable=False)
    opponent_rovio_id = db.Column(db.Integer, nullable=False)
    opponent_country = db.Column(db.String(100), nullable=False)
    opponent_score = db.Column(db.Integer, nullable=False)
    opponent_fp = db.Column(db.Integer, nullable=False)

    # Derived: 1 = win, 0 = tie, -1 = loss
    result = db.Column(db.SmallInteger, nullable=False)
    fp = db.Column(db.Integer, nullable=False)  # players + non-reserve non-players
    ratio = db.Column(db.Float, nullable=False)
    average_ratio = db.Column(db.Float, nullable=False)
    projected_score = db.Column(db.Float, nullable=False)
    margin_ratio = db.Column(db.Float, nullable=False)
    fp_margin = db.Column(db.Float, nullable=False)

    # Derived participation metrics
    nonplaying_count = db.Column(db.Integer, nullable=False, default=0)
    nonplaying_fp_ratio = db.Column(db.Float, nullable=False, default=0.0)
    reserve_count = db.Column(db.Integer, nullable=False, default=0)
    reserve_fp_ratio = db.Column(db.Float, nullable=False, default=0.0)

    # ===== RELATIONSHIPS =====

    player_stats = db.relationship(
        'ClanBattlePlayerStats',
        back_populates='battle',
        cascade='all, delete-orphan',
        lazy='selectin',
        order_by='ClanBattlePlayerStats.ratio_rank'
    )

    nonplayer_stats = db.relationship(
        'ClanBattleNonplayerStats',
        back_populates='battle',
        cascade='all, delete-orphan',
        lazy='selectin',
        order_by='ClanBattleNonplayerStats.reserve'
    )

    # ===== DERIVED PROPERTIES =====

    @property
    def month_id(self):
        """YYYYMM of the battle."""
        return self.battle_id[:6]

    @property
    def year_id(self):
        """YYYY of the battle."""
        return self.battle_id[:4]

    @property
    def player_count(self):
        return len(self.player_stats)

    def to_dict(self, exclude=None, include_stats=False):
        """Serialize battle, optionally with player and non-player rows."""
        result = super().to_dict(exclude=exclude)
        if include_stats:
            result['player_stats'] = [ps.to_dict() for ps in self.player_stats]
            result['nonplayer_stats'] = [nps.to_dict() for nps in self.nonplayer_stats]
        return result


class ClanBattlePlayerStats(BaseModel, TimestampMixin):
    """Box score row for a player who took part in a battle."""
    __tablename__ = 'clan_battle_player_stats'
    __table_args__ = (
        db.ForeignKeyConstraint(
            ['clan_id', 'battle_id'],
            ['clan_battles.clan_id', 'clan_battles.battle_id'],
            ondelete='CASCADE'
        ),
    )

    clan_id = db.Column(db.Integer, primary_key=True)
    battle_id = db.Column(db.String(8), primary_key=True)
    player_id = db.Column(db.Integer, db.ForeignKey('roster_members.player_id'), primary_key=True, index=True)

    rank = db.Column(db.Integer, nullable=False)  # in-game score rank
    score = db.Column(db.Integer, nullable=False)
    fp = db.Column(db.Integer, nullable=False)
    ratio = db.Column(db.Float, nullable=False)
    ratio_rank = db.Column(db.Integer, nullable=False)

    action_code = db.Column(db.String(20), nullable=False, default='HOLD')
    action_reason = db.Column(db.Text)

    battle = db.relationship('ClanBattle', back_populates='player_stats')
    player = db.relationship('RosterMember', lazy='joined')

    def to_dict(self, exclude=None):
        result = super().to_dict(exclude=exclude)
        result['player_name'] = self.player.player_name if self.player else None
        return result


class ClanBattleNonplayerStats(BaseModel, TimestampMixin):
    """Row for a member who did not play, or sat out as a reserve."""
    __tablename__ = 'clan_battle_nonplayer_stats'
    __table_args__ = (
        db.ForeignKeyConstraint(
            ['clan_id', 'battle_id'],
            ['clan_battles.clan_id', 'clan_battles.battle_id'],
            ondelete='CASCADE'
        ),
    )

    clan_id = db.Column(db.Integer, primary_key=True)
    battle_id = db.Column(db.String(8), primary_key=True)
    player_id = db.Column(db.Integer, db.ForeignKey('roster_members.player_id'), primary_key=True, index=True)

    fp = db.Column(db.Integer, nullable=False)
    reserve = db.Column(db.Boolean, nullable=False, default=False)

    # Disciplinary/administrative tag consumed by churn analytics
    action_code = db.Column(db.String(20), nullable=False, default='HOLD')
    action_reason = db.Column(db.Text)

    battle = db.relationship('ClanBattle', back_populates='nonplayer_stats')
    player = db.relationship('RosterMember', lazy='joined')

    def to_dict(self, exclude=None):
        result = super().to_dict(exclude=exclude)
        result['player_name'] = self.player.player_name if self.player else None
        return result
