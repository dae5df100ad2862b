# submitter.py
import enum
import logging
from urllib.parse import urlparse

import httpx

logger = logging.getLogger(__name__)

PLACEHOLDER_MARKER = "PASTE_YOUR"


class DispatchResult(enum.Enum):
    DISPATCHED = "dispatched"
    TRANSPORT_ERROR = "transport_error"
    NOT_ATTEMPTED = "not_attempted"

    @property
    def dispatched(self) -> bool:
        return self is DispatchResult.DISPATCHED


def is_placeholder(url) -> bool:
    return not url or PLACEHOLDER_MARKER in url


def is_well_formed(url) -> bool:
    """Absolute http(s) URL with a host, and not the template placeholder."""
    if is_placeholder(url):
        return False
    parsed = urlparse(url.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class RemoteSubmitter:
    """
    Fire-and-forget POST of one record to a spreadsheet script.

    The script answers with a redirect and no machine-readable body, so the
    response is never looked at: DISPATCHED means "left the client", not
    "stored by the sheet".
    """

    def __init__(self, timeout: float = 30.0, transport=None):
        self.timeout = timeout
        # Tests inject httpx.MockTransport here.
        self.transport = transport

    async def submit(self, endpoint, record) -> DispatchResult:
        if not is_well_formed(endpoint):
            logger.info("Skipping malformed endpoint %r", endpoint)
            return DispatchResult.NOT_ATTEMPTED

        try:
            async with httpx.AsyncClient(timeout=self.timeout,
                                         transport=self.transport) as client:
                await client.post(endpoint, data=record.form_fields())
        except (httpx.HTTPError, OSError) as e:
            logger.warning("Dispatch to %s failed: %s", endpoint, e)
            return DispatchResult.TRANSPORT_ERROR

        logger.info("Dispatched record %s to %s", record.id, endpoint)
        return DispatchResult.DISPATCHED
