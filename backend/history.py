# history.py
import json
import logging
import time
from typing import List

import httpx

from dates import today_iso
from models import HISTORY_SLOT
from records import DevotionalRecord
from submitter import is_well_formed

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 50


class RemoteFetchError(Exception):
    """Read from the sheet failed; caller falls back to the cache."""


class HistoryStore:
    """
    In-memory history backed by a local cache slot.

    refresh() is read-repair: a good remote fetch replaces both the in-memory
    list and the cache wholesale. Records written locally but not yet visible
    remotely may drop out until the sheet catches up.
    """

    def __init__(self, endpoint, storage, timeout: float = 30.0, transport=None):
        self.endpoint = endpoint
        self.storage = storage
        self.timeout = timeout
        self.transport = transport
        self.records: List[DevotionalRecord] = []

    def load(self) -> List[DevotionalRecord]:
        """Pull the cached list into memory (startup, or after a failed fetch)."""
        cached = self._read_cache()
        if cached is not None:
            self.records = cached
        return self.records

    def refresh(self) -> List[DevotionalRecord]:
        try:
            rows = self._fetch_remote()
        except RemoteFetchError as e:
            logger.info("History fetch failed (%s), using local cache", e)
            return self.load()

        self.records = self._reconcile(
            [DevotionalRecord.from_mapping(row) for row in rows]
        )
        self._persist()
        logger.info("History refreshed: %d of %d records kept",
                    len(self.records), len(rows))
        return self.records

    def remember(self, record: DevotionalRecord) -> None:
        """Prepend a freshly submitted record, keeping the newest 50."""
        self.records = [record] + self.records[: HISTORY_LIMIT - 1]
        self._persist()

    def as_dicts(self):
        return [r.to_dict() for r in self.records]

    def export_filename(self) -> str:
        return f"qtians-backup-{today_iso()}.json"

    def export_document(self) -> str:
        return json.dumps(self.as_dicts(), ensure_ascii=False, indent=2)

    # ---------- internals ----------

    def _reconcile(self, fetched):
        """
        Order the remote view newest-first and keep the newest 50.

        The sheet answers in append order (oldest first) and echoes only the
        form fields, so rows that match a record we already know by content
        take over its id and timestamp. Ties in timestamp keep the reversed
        order received.
        """
        known = {}
        for record in self.records:
            known.setdefault(record.content_key(), []).append(record)

        seen_ids = set()
        newest_first = list(reversed(fetched))
        for record in newest_first:
            matches = known.get(record.content_key())
            if matches and record.id == record.content_id():
                previous = matches.pop(0)
                record.id = previous.id
                if not record.timestamp:
                    record.timestamp = previous.timestamp
            if record.id in seen_ids:
                # Identical rows submitted twice
                suffix = 2
                while f"{record.id}-{suffix}" in seen_ids:
                    suffix += 1
                record.id = f"{record.id}-{suffix}"
            seen_ids.add(record.id)

        newest_first.sort(key=lambda r: r.timestamp, reverse=True)
        return newest_first[:HISTORY_LIMIT]

    def _fetch_remote(self):
        if not is_well_formed(self.endpoint):
            raise RemoteFetchError("primary endpoint is not configured")

        # Cache-buster so an intermediary never serves a stale copy
        params = {"t": str(int(time.time() * 1000))}
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport,
                              follow_redirects=True) as client:
                resp = client.get(self.endpoint, params=params)
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, OSError, ValueError) as e:
            raise RemoteFetchError(str(e)) from e

        if not isinstance(data, list) or not all(isinstance(row, dict) for row in data):
            raise RemoteFetchError("payload is not a list of records")
        return data

    def _read_cache(self):
        cached = self.storage.read(HISTORY_SLOT)
        if not isinstance(cached, list):
            return None
        return [DevotionalRecord.from_mapping(row) for row in cached
                if isinstance(row, dict)]

    def _persist(self) -> None:
        self.storage.write(HISTORY_SLOT, self.as_dicts())
