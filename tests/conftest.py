"""
Pytest fixtures: a fake spreadsheet script behind httpx.MockTransport,
an in-memory slot store and a hand-driven clock. No real network.
"""
from urllib.parse import parse_qs

import httpx
import pytest

from app import create_app
from config import Settings
from history import HistoryStore
from submitter import RemoteSubmitter
from workflow import SubmissionWorkflow

PRIMARY_URL = "https://script.google.com/macros/s/primary/exec"
BACKUP_URL = "https://backup.example.org/macros/s/backup/exec"
PRIMARY_HOST = "script.google.com"
BACKUP_HOST = "backup.example.org"


class FakeSheet:
    """Records POSTed rows; answers GETs with the primary's rows in append order, like a sheet."""

    def __init__(self):
        self.posts = []
        self.reads = []
        self.rows = None
        self.read_status = 200
        self.read_body = None
        self.down = set()
        self.on_post = None

    def __call__(self, request):
        host = request.url.host
        if host in self.down:
            raise httpx.ConnectError("unreachable", request=request)

        if request.method == "POST":
            if self.on_post:
                self.on_post(request)
            fields = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
            self.posts.append((host, fields))
            # Apps Script answers with a redirect the client never follows.
            return httpx.Response(302, headers={"Location": "https://example.invalid/echo"})

        self.reads.append(dict(request.url.params))
        if self.read_status != 200:
            return httpx.Response(self.read_status, text="error")
        if self.read_body is not None:
            return httpx.Response(200, text=self.read_body)
        rows = self.rows
        if rows is None:
            rows = [fields for h, fields in self.posts if h == PRIMARY_HOST]
        return httpx.Response(200, json=rows)

    def posts_to(self, host):
        return [fields for h, fields in self.posts if h == host]

    @property
    def transport(self):
        return httpx.MockTransport(self)


class FakeStorage:
    def __init__(self, slots=None):
        self.slots = dict(slots or {})
        self.fail_writes = False

    def read(self, key):
        return self.slots.get(key)

    def write(self, key, value):
        if self.fail_writes:
            raise RuntimeError("disk full")
        self.slots[key] = value


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def sheet():
    return FakeSheet()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        primary_endpoint=PRIMARY_URL,
        backup_endpoint=BACKUP_URL,
        database_url=f"sqlite:///{tmp_path / 'qtians-test.db'}",
    )


@pytest.fixture
def make_workflow(sheet, storage, clock):
    def _make(settings):
        return SubmissionWorkflow(
            settings,
            storage,
            submitter=RemoteSubmitter(transport=sheet.transport),
            history=HistoryStore(settings.primary_endpoint, storage,
                                 transport=sheet.transport),
            clock=clock,
        )
    return _make


@pytest.fixture
def workflow(make_workflow, settings):
    return make_workflow(settings)


@pytest.fixture
def app(settings, sheet, clock):
    app = create_app(settings, transport=sheet.transport, clock=clock)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()
