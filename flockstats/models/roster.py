"""Roster models - clan membership with join/leave/kick tracking."""
from ..extensions import db
from ..models.base import BaseModel, TimestampMixin


class RosterMember(BaseModel, TimestampMixin):
    """A player on a clan's roster.

    Maps to roster_members table. Exactly one lifecycle state holds at any
    time: still active, left (left_date set) or kicked (kicked_date set).
    The check constraints mirror what roster_service.check_lifecycle
    enforces in Python.
    """
    __tablename__ = 'roster_members'
    __table_args__ = (
        db.CheckConstraint(
            'left_date IS NULL OR kicked_date IS NULL',
            name='left_kicked_exclusive'
        ),
        db.CheckConstraint(
            '(active AND left_date IS NULL AND kicked_date IS NULL) OR '
            '(NOT active AND (left_date IS NOT NULL OR kicked_date IS NOT NULL))',
            name='single_lifecycle_state'
        ),
        db.Index('idx_roster_members_active', 'clan_id', 'active'),
    )

    player_id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    clan_id = db.Column(db.Integer, nullable=False, index=True)
    player_name = db.Column(db.String(100), nullable=False)

    active = db.Column(db.Boolean, nullable=False, default=True)
    joined_date = db.Column(db.Date, nullable=False)
    left_date = db.Column(db.Date)
    kicked_date = db.Column(db.Date)

    @property
    def departure_date(self):
        """Date the member stopped being active, if any."""
        return self.left_date or self.kicked_date

    def __repr__(self):
        return f"<RosterMember {self.player_id} {self.player_name!r} clan={self.clan_id}>"
