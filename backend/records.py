import hashlib
import time
import uuid
from datetime import datetime
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from dates import normalize_date

# Keys the spreadsheet script reads from the POST body.
FORM_FIELDS = ("date", "name", "chapel", "village", "scripture")


def _new_id() -> str:
    return uuid.uuid4().hex


def _now_ms() -> int:
    return int(time.time() * 1000)


def _as_millis(value) -> Optional[int]:
    """Epoch ms from a number, a numeric string or an ISO instant; None otherwise."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    text = str(value).strip()
    try:
        return int(float(text))
    except (ValueError, OverflowError):
        pass
    try:
        # Apps Script serializes Date cells as e.g. 2026-02-01T03:04:05.000Z
        return int(datetime.fromisoformat(text.replace("Z", "+00:00")).timestamp() * 1000)
    except ValueError:
        return None


@dataclass
class DevotionalRecord:
    date: str
    name: str
    chapel: str
    village: str
    scripture: str
    id: str = field(default_factory=_new_id)
    timestamp: int = field(default_factory=_now_ms)
    # Whatever else the sheet sends back (row number, server id, ...).
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(cls, date, name, chapel, village, scripture) -> "DevotionalRecord":
        return cls(
            date=normalize_date(date),
            name=name.strip(),
            chapel=chapel.strip(),
            village=village.strip(),
            scripture=scripture.strip(),
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "DevotionalRecord":
        """Build a record from a remote row or a cached dict."""
        known = set(FORM_FIELDS) | {"id", "timestamp"}
        extra = {k: v for k, v in data.items() if k not in known}

        raw_ts = data.get("timestamp")
        timestamp = _as_millis(raw_ts)
        if timestamp is None:
            if raw_ts not in (None, ""):
                extra["sheetTimestamp"] = raw_ts
            timestamp = 0

        record = cls(
            date=normalize_date(data.get("date")),
            name=str(data.get("name") or ""),
            chapel=str(data.get("chapel") or "").strip(),
            village=str(data.get("village") or "").strip(),
            scripture=str(data.get("scripture") or ""),
            timestamp=timestamp,
            extra=extra,
        )
        record_id = data.get("id")
        # Rows the sheet sends without an id get one derived from their content,
        # so the same row keeps the same id across fetches.
        record.id = str(record_id) if record_id not in (None, "") else record.content_id()
        return record

    def content_key(self):
        return tuple(getattr(self, key) for key in FORM_FIELDS)

    def content_id(self) -> str:
        digest = hashlib.sha1("\x1f".join(self.content_key()).encode("utf-8"))
        return digest.hexdigest()[:32]

    def form_fields(self) -> Dict[str, str]:
        return {key: getattr(self, key) for key in FORM_FIELDS}

    def to_dict(self) -> Dict[str, Any]:
        out = dict(self.extra)
        out.update(
            id=self.id,
            timestamp=self.timestamp,
            **self.form_fields(),
        )
        return out


@dataclass
class SubmitterProfile:
    name: str = ""
    chapel: str = ""
    village: str = ""

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "SubmitterProfile":
        return cls(
            name=str(data.get("name") or ""),
            chapel=str(data.get("chapel") or ""),
            village=str(data.get("village") or ""),
        )

    @classmethod
    def from_record(cls, record: DevotionalRecord) -> "SubmitterProfile":
        return cls(name=record.name, chapel=record.chapel, village=record.village)

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "chapel": self.chapel, "village": self.village}


@dataclass(frozen=True)
class AIInsight:
    meditation: str
    prayer: str
    verse_suggestion: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "meditation": self.meditation,
            "prayer": self.prayer,
            "verseSuggestion": self.verse_suggestion,
        }
