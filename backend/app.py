import logging
import os
import time
from datetime import datetime

from flask import Flask, Response, current_app, jsonify, request
from flask_cors import CORS

from config import Settings
from dates import today_iso
from sqlalchemy.exc import SQLAlchemyError

from errors import ConfigurationError, InsightError, QtiansError, SubmissionInProgress
from history import HistoryStore
from insight_service import OPENROUTER_MODEL, generate_insight
from models import LocalStorage, db
from records import FORM_FIELDS
from stats import aggregate
from submitter import RemoteSubmitter
from workflow import FAILURE_NOTICE, SubmissionWorkflow, WorkflowState


def create_app(settings=None, transport=None, clock=time.monotonic):
    """Build the app; `transport` lets tests swap the network for httpx.MockTransport."""
    settings = settings or Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = Flask(__name__)

    # --- Local durable storage (history + last submitter slots) ---
    app.config["SQLALCHEMY_DATABASE_URI"] = settings.database_url
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.json.ensure_ascii = False

    db.init_app(app)

    # --- CORS (allow your deployed frontend origin if provided) ---
    if settings.frontend_origin:
        CORS(app, resources={r"/*": {"origins": [settings.frontend_origin]}})
    else:
        # Dev fallback: allow all (ok for local dev; tighten for prod)
        CORS(app)

    storage = LocalStorage()
    workflow = SubmissionWorkflow(
        settings,
        storage,
        submitter=RemoteSubmitter(timeout=settings.request_timeout, transport=transport),
        history=HistoryStore(settings.primary_endpoint, storage,
                             timeout=settings.request_timeout, transport=transport),
        clock=clock,
    )
    app.extensions["qtians_workflow"] = workflow
    app.extensions["qtians_transport"] = transport

    with app.app_context():
        db.create_all()
        workflow.load()

    _register_routes(app)
    return app


def _workflow() -> SubmissionWorkflow:
    return current_app.extensions["qtians_workflow"]


def _register_routes(app):

    @app.route("/health")
    def health():
        """Simple health check + DB connectivity test."""
        db_ok = True
        try:
            with db.engine.connect() as conn:
                conn.execute(db.text("SELECT 1"))
        except Exception:
            db_ok = False
        return jsonify({
            "ok": True,
            "db_ok": db_ok,
            "model": OPENROUTER_MODEL,
            "time": datetime.utcnow().isoformat() + "Z"
        }), 200

    @app.route("/form", methods=["GET"])
    def form_defaults():
        """Pre-fill values for the next entry: today, last submitter, group lists."""
        return jsonify(_workflow().form_defaults()), 200

    @app.route("/status", methods=["GET"])
    def status():
        wf = _workflow()
        state = wf.state
        return jsonify({
            "state": state.value,
            "accepting": wf.accepting,
            "notice": wf.notice if state is not WorkflowState.IDLE else None,
        }), 200

    @app.route("/submissions", methods=["POST"])
    def submit():
        """Send one devotional record to the sheet(s), then refresh history."""
        data = request.get_json(silent=True) or request.form.to_dict()
        values = {k: str(data.get(k) or "").strip() for k in FORM_FIELDS}
        missing = [k for k, v in values.items() if not v]
        if missing:
            return jsonify({"error": f"Missing required fields: {missing}"}), 400

        try:
            outcome = _workflow().submit(**values)
        except SubmissionInProgress as e:
            return jsonify({"error": str(e)}), 409
        except ConfigurationError as e:
            return jsonify({"error": str(e), "state": "failed"}), 503
        except (QtiansError, SQLAlchemyError):
            current_app.logger.exception("Submission failed")
            return jsonify({"error": FAILURE_NOTICE, "state": "failed"}), 500

        return jsonify(outcome.to_dict()), 200

    @app.route("/history", methods=["GET"])
    def list_history():
        """Current known records, as last fetched or cached."""
        return jsonify(_workflow().history.as_dicts()), 200

    @app.route("/history/refresh", methods=["POST"])
    def refresh_history():
        wf = _workflow()
        try:
            wf.refresh_history()
        except SubmissionInProgress as e:
            return jsonify({"error": str(e)}), 409
        return jsonify(wf.history.as_dicts()), 200

    @app.route("/history/export", methods=["GET"])
    def export_history():
        store = _workflow().history
        return Response(
            store.export_document(),
            mimetype="application/json",
            headers={
                "Content-Disposition": f'attachment; filename="{store.export_filename()}"'
            },
        )

    @app.route("/stats", methods=["GET"])
    def stats():
        wf = _workflow()
        selected = request.args.get("date") or today_iso()
        table = aggregate(wf.history.records, selected,
                          wf.settings.chapels, wf.settings.villages)
        return jsonify(table.to_dict()), 200

    @app.route("/insight", methods=["POST"])
    def insight():
        """Pastoral meditation, prayer and verse for one reflection."""
        data = request.get_json(silent=True) or {}
        scripture = (data.get("scripture") or "").strip()
        if not scripture:
            return jsonify({"error": "Missing 'scripture' text"}), 400

        try:
            result = generate_insight(
                scripture,
                timeout=_workflow().settings.request_timeout,
                transport=current_app.extensions["qtians_transport"],
            )
        except InsightError as e:
            return jsonify({"error": str(e)}), 502
        return jsonify(result.to_dict()), 200


if __name__ == "__main__":
    create_app().run(
        host="0.0.0.0",
        port=int(os.getenv("PORT", "5000")),
        debug=True
    )
