import dataclasses
import json

from sqlalchemy.exc import SQLAlchemyError

import app as app_module
from app import create_app
from conftest import PRIMARY_HOST
from errors import InsightError
from models import HISTORY_SLOT, StorageSlot, db
from records import AIInsight
from workflow import FAILURE_NOTICE

ENTRY = {
    "date": "2026-02-01",
    "name": "김민수",
    "chapel": "본당 고등부",
    "village": "1마을",
    "scripture": "시편 23편",
}


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json()["ok"] is True
    assert resp.get_json()["db_ok"] is True


def test_form_defaults_before_any_submission(client, settings):
    data = client.get("/form").get_json()
    assert data["name"] == ""
    assert data["scripture"] == ""
    assert data["chapels"] == list(settings.chapels)
    assert data["villages"] == list(settings.villages)
    assert data["state"] == "idle"


def test_submit_json(client, sheet):
    resp = client.post("/submissions", json=ENTRY)

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["state"] == "success"
    assert body["message"] == "제출 완료"
    assert body["dispatch"] == {"primary": "dispatched", "backup": "dispatched"}
    assert body["record"]["name"] == "김민수"
    assert sheet.posts_to(PRIMARY_HOST) == [ENTRY]


def test_submit_form_encoded(client, sheet):
    resp = client.post("/submissions", data=ENTRY)
    assert resp.status_code == 200
    assert len(sheet.posts_to(PRIMARY_HOST)) == 1


def test_blank_field_is_rejected(client, sheet):
    resp = client.post("/submissions", json=dict(ENTRY, scripture="   "))

    assert resp.status_code == 400
    assert "scripture" in resp.get_json()["error"]
    assert sheet.posts == []


def test_configuration_failure_is_surfaced(settings, sheet, clock):
    broken = dataclasses.replace(
        settings, primary_endpoint="https://script.google.com/macros/s/PASTE_YOUR_URL/exec")
    client = create_app(broken, transport=sheet.transport, clock=clock).test_client()

    resp = client.post("/submissions", json=ENTRY)

    assert resp.status_code == 503
    assert resp.get_json()["state"] == "failed"
    assert sheet.posts == []
    status = client.get("/status").get_json()
    assert status["state"] == "failed"
    assert status["accepting"] is True
    assert status["notice"]


def test_submission_in_progress_conflict(app, client):
    workflow = app.extensions["qtians_workflow"]
    workflow._in_flight.acquire()
    try:
        resp = client.post("/submissions", json=ENTRY)
    finally:
        workflow._in_flight.release()
    assert resp.status_code == 409


def test_status_returns_to_idle(client, clock):
    client.post("/submissions", json=ENTRY)
    assert client.get("/status").get_json()["state"] == "success"

    clock.advance(5)
    status = client.get("/status").get_json()
    assert status == {"state": "idle", "accepting": True, "notice": None}


def test_profile_prefills_next_form(client):
    client.post("/submissions", json=ENTRY)
    data = client.get("/form").get_json()

    assert (data["name"], data["chapel"], data["village"]) == ("김민수", "본당 고등부", "1마을")
    assert data["scripture"] == ""


def test_history_and_refresh(client, sheet):
    client.post("/submissions", json=ENTRY)
    assert [r["name"] for r in client.get("/history").get_json()] == ["김민수"]

    sheet.rows = [dict(ENTRY, id="server-1", name="이영희", date="2026. 2. 1")]
    refreshed = client.post("/history/refresh").get_json()

    assert [r["id"] for r in refreshed] == ["server-1"]
    assert refreshed[0]["date"] == "2026-02-01"


def test_export_download(client):
    client.post("/submissions", json=ENTRY)
    resp = client.get("/history/export")

    assert resp.status_code == 200
    assert resp.mimetype == "application/json"
    disposition = resp.headers["Content-Disposition"]
    assert disposition.startswith('attachment; filename="qtians-backup-')
    assert json.loads(resp.get_data(as_text=True))[0]["scripture"] == "시편 23편"


def test_stats_for_date(client):
    client.post("/submissions", json=ENTRY)
    client.post("/submissions", json=dict(ENTRY, chapel="새가족부"))

    data = client.get("/stats?date=2026.2.1").get_json()

    assert data["date"] == "2026-02-01"
    assert data["table"]["본당 고등부"]["1마을"] == 1
    assert data["total"] == 2


def test_state_survives_restart(settings, sheet, clock):
    first = create_app(settings, transport=sheet.transport, clock=clock)
    first.test_client().post("/submissions", json=ENTRY)

    second = create_app(settings, transport=sheet.transport, clock=clock)
    data = second.test_client().get("/form").get_json()
    assert data["name"] == "김민수"
    assert len(second.test_client().get("/history").get_json()) == 1


def test_corrupt_cache_slot_is_ignored(app):
    with app.app_context():
        db.session.add(StorageSlot(key=HISTORY_SLOT, value="{not json"))
        db.session.commit()
        workflow = app.extensions["qtians_workflow"]
        assert workflow.history.load() == []


def test_insight_route(client, monkeypatch):
    monkeypatch.setattr(app_module, "generate_insight",
                        lambda text, **kwargs: AIInsight("묵상", "기도", "시편 23:1"))
    resp = client.post("/insight", json={"scripture": "시편 23편"})

    assert resp.status_code == 200
    assert resp.get_json() == {"meditation": "묵상", "prayer": "기도", "verseSuggestion": "시편 23:1"}


def test_insight_route_errors(client, monkeypatch):
    assert client.post("/insight", json={}).status_code == 400

    def boom(text, **kwargs):
        raise InsightError("Invalid AI response format")

    monkeypatch.setattr(app_module, "generate_insight", boom)
    resp = client.post("/insight", json={"scripture": "시편 23편"})
    assert resp.status_code == 502
    assert resp.get_json()["error"] == "Invalid AI response format"


def test_insight_route_uses_app_timeout_and_transport(app, client, settings, sheet, monkeypatch):
    calls = []

    def fake(text, **kwargs):
        calls.append(kwargs)
        return AIInsight("묵상", "기도", "시편 23:1")

    monkeypatch.setattr(app_module, "generate_insight", fake)
    client.post("/insight", json={"scripture": "시편 23편"})

    assert calls[0]["timeout"] == settings.request_timeout
    assert calls[0]["transport"] is app.extensions["qtians_transport"]


def test_storage_failure_returns_json_notice(app, client, monkeypatch):
    workflow = app.extensions["qtians_workflow"]

    def broken_remember(record):
        raise SQLAlchemyError("database is locked")

    monkeypatch.setattr(workflow.history, "remember", broken_remember)
    resp = client.post("/submissions", json=ENTRY)

    assert resp.status_code == 500
    assert resp.get_json() == {"error": FAILURE_NOTICE, "state": "failed"}
    status = client.get("/status").get_json()
    assert status["state"] == "failed"
    assert status["accepting"] is True


def test_refresh_refused_while_submitting(app, client, sheet):
    workflow = app.extensions["qtians_workflow"]
    workflow._in_flight.acquire()
    try:
        resp = client.post("/history/refresh")
    finally:
        workflow._in_flight.release()

    assert resp.status_code == 409
    assert sheet.reads == []
