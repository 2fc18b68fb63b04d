"""Battle schedule calendar model.

One calendar entry serves every clan. Start/end timestamps are fixed here,
never by the clan submitting a battle.
"""
from ..extensions import db
from ..models.base import BaseModel, TimestampMixin


class MasterBattle(BaseModel, TimestampMixin):
    """Authoritative battle schedule entry.

    Maps to master_battles table. battle_id is the YYYYMMDD start date in
    official game time.
    """
    __tablename__ = 'master_battles'

    battle_id = db.Column(db.String(8), primary_key=True)
    start_timestamp = db.Column(db.DateTime, nullable=False, index=True)
    end_timestamp = db.Column(db.DateTime, nullable=False)

    # Who scheduled it (NULL for migrated/historical entries)
    created_by = db.Column(db.String(255))
    notes = db.Column(db.Text)

    def __repr__(self):
        return f"<MasterBattle {self.battle_id}>"
