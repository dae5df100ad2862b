import json
import logging
from datetime import datetime

from flask_sqlalchemy import SQLAlchemy

logger = logging.getLogger(__name__)

db = SQLAlchemy()

HISTORY_SLOT = "history"
PROFILE_SLOT = "last_submitter"


class StorageSlot(db.Model):
    __tablename__ = "storage_slots"

    # One row per named slot: "history" or "last_submitter"
    key = db.Column(db.String(64), primary_key=True)
    value = db.Column(db.Text, nullable=False)

    updated_at = db.Column(db.DateTime, default=datetime.utcnow,
                           onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<StorageSlot key={self.key}>"


class LocalStorage:
    """Named JSON slots on top of the storage_slots table (needs an app context)."""

    def read(self, key):
        """Return the decoded slot, or None when empty or unparsable."""
        slot = db.session.get(StorageSlot, key)
        if slot is None:
            return None
        try:
            return json.loads(slot.value)
        except ValueError:
            logger.warning("Slot %r holds invalid JSON, ignoring it", key)
            return None

    def write(self, key, value):
        payload = json.dumps(value, ensure_ascii=False)
        slot = db.session.get(StorageSlot, key)
        if slot is None:
            db.session.add(StorageSlot(key=key, value=payload))
        else:
            slot.value = payload
        db.session.commit()
