# workflow.py
import asyncio
import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional

from dates import today_iso
from errors import ConfigurationError, SubmissionInProgress
from history import HistoryStore
from models import PROFILE_SLOT
from records import DevotionalRecord, SubmitterProfile
from submitter import DispatchResult, RemoteSubmitter, is_well_formed

logger = logging.getLogger(__name__)

CONFIG_NOTICE = "배포된 Google Apps Script URL을 설정해 주세요."
FAILURE_NOTICE = "전송 중 오류가 발생했습니다. Apps Script의 배포 상태를 확인해 주세요."
SUCCESS_NOTICE = "제출 완료"


class WorkflowState(enum.Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class SubmissionOutcome:
    record: DevotionalRecord
    primary: DispatchResult
    backup: DispatchResult
    state: WorkflowState
    message: str

    def to_dict(self):
        # Per-endpoint results are diagnostics; the message is the same either way.
        return {
            "record": self.record.to_dict(),
            "state": self.state.value,
            "message": self.message,
            "dispatch": {"primary": self.primary.value, "backup": self.backup.value},
        }


class SubmissionWorkflow:
    """
    Idle -> Submitting -> (Success | Failed) -> Idle.

    Owns the history and the last-submitter profile. Success and Failed read
    back as Idle once settings.reset_delay has passed, with no further calls.
    """

    def __init__(self, settings, storage, submitter=None, history=None,
                 clock=time.monotonic):
        self.settings = settings
        self.storage = storage
        self.submitter = submitter or RemoteSubmitter(timeout=settings.request_timeout)
        self.history = history or HistoryStore(
            settings.primary_endpoint, storage, timeout=settings.request_timeout
        )
        self.profile = SubmitterProfile()
        self.notice: Optional[str] = None
        self._clock = clock
        self._state = WorkflowState.IDLE
        self._entered_at = clock()
        # Flask may serve requests on several threads; one submission at a time.
        self._in_flight = threading.Lock()

    def load(self) -> None:
        """Read both storage slots; called once at startup."""
        self.history.load()
        cached = self.storage.read(PROFILE_SLOT)
        if isinstance(cached, dict):
            self.profile = SubmitterProfile.from_mapping(cached)

    @property
    def state(self) -> WorkflowState:
        if self._state in (WorkflowState.SUCCESS, WorkflowState.FAILED):
            if self._clock() - self._entered_at >= self.settings.reset_delay:
                return WorkflowState.IDLE
        return self._state

    @property
    def accepting(self) -> bool:
        return self.state is not WorkflowState.SUBMITTING

    def form_defaults(self):
        return {
            "date": today_iso(),
            "name": self.profile.name,
            "chapel": self.profile.chapel,
            "village": self.profile.village,
            "scripture": "",
            "chapels": list(self.settings.chapels),
            "villages": list(self.settings.villages),
            "state": self.state.value,
        }

    def submit(self, date, name, chapel, village, scripture) -> SubmissionOutcome:
        """Fields are assumed non-empty; the HTTP layer checks that."""
        if not self._in_flight.acquire(blocking=False):
            raise SubmissionInProgress("A submission is already in progress")

        try:
            self._enter(WorkflowState.SUBMITTING)
            record = DevotionalRecord.create(date, name, chapel, village, scripture)

            try:
                primary, backup = asyncio.run(self._dispatch(record))
            except ConfigurationError:
                self._enter(WorkflowState.FAILED, CONFIG_NOTICE)
                raise

            logger.info("Record %s attempted: primary=%s backup=%s",
                        record.id, primary.value, backup.value)

            self.history.remember(record)
            self.history.refresh()

            self.profile = SubmitterProfile.from_record(record)
            self.storage.write(PROFILE_SLOT, self.profile.to_dict())

            self._enter(WorkflowState.SUCCESS, SUCCESS_NOTICE)
            return SubmissionOutcome(record, primary, backup,
                                     WorkflowState.SUCCESS, SUCCESS_NOTICE)
        finally:
            if self._state is WorkflowState.SUBMITTING:
                self._enter(WorkflowState.FAILED, FAILURE_NOTICE)
            self._in_flight.release()

    def refresh_history(self):
        """Manual refresh; refused while a submission holds the history."""
        if not self._in_flight.acquire(blocking=False):
            raise SubmissionInProgress("A submission is already in progress")
        try:
            return self.history.refresh()
        finally:
            self._in_flight.release()

    async def _dispatch(self, record):
        primary_url = self.settings.primary_endpoint
        if not is_well_formed(primary_url):
            raise ConfigurationError(CONFIG_NOTICE)

        jobs = [self.submitter.submit(primary_url, record)]
        backup_url = self.settings.backup_endpoint
        if backup_url and is_well_formed(backup_url):
            jobs.append(self.submitter.submit(backup_url, record))
        elif backup_url:
            logger.warning("Backup endpoint %r is malformed, not sending", backup_url)

        # Both settle before we move on; neither result stops the other.
        results = await asyncio.gather(*jobs)
        if len(results) == 1:
            return results[0], DispatchResult.NOT_ATTEMPTED
        return results[0], results[1]

    def _enter(self, state: WorkflowState, notice: Optional[str] = None) -> None:
        self._state = state
        self._entered_at = self._clock()
        self.notice = notice
