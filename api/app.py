"""
api/app.py
Flask JSON API — a thin layer over the Reconciler and the HistoryStore.

  POST /scan              {"targets": [...]}  → per-target state, changes, history
  GET  /health
  GET  /api/stats
  GET  /api/hosts
  GET  /api/hosts/<ip>    current state + recent changes

Error policy:
  - 400 for a malformed target list (nothing is probed)
  - 200 with per-target error markers when only some targets fail
  - 500 for anything unexpected; stacktraces and storage errors never reach
    the client
  - debug=False enforced programmatically

Layering: api -> core.reconciler, database.repository, utils
"""

from __future__ import annotations

import secrets

from flask import Flask, abort, jsonify, request
from werkzeug.exceptions import HTTPException

from core.reconciler import Reconciler, run_reconcile
from database.repository import HistoryStore
from utils.config import ApiConfig
from utils.errors import PersistenceFailure, ValidationFailure
from utils.validators import is_ip

# accepted request keys, first match wins
_TARGET_KEYS = ("targets", "ips_or_hostnames")


# -- Factory ------------------------------------------------------------------

def create_app(cfg: ApiConfig, reconciler: Reconciler, store: HistoryStore) -> Flask:
    """
    Application factory.

    cfg: ApiConfig (host, port, secret_key, max_targets)
    """
    app = Flask(__name__)

    secret = cfg.secret_key
    if not secret or secret == "CHANGE_THIS_IN_PRODUCTION":
        secret = secrets.token_hex(32)

    app.config["SECRET_KEY"]           = secret
    app.config["DEBUG"]                = False   # HARD -- no env override
    app.config["PROPAGATE_EXCEPTIONS"] = False
    app.config["TRAP_HTTP_EXCEPTIONS"] = False

    # Error handlers (no stacktrace leakage)
    @app.errorhandler(ValidationFailure)
    def _e_validation(e: ValidationFailure):
        return jsonify({"error": e.to_dict()}), 400

    @app.errorhandler(PersistenceFailure)
    def _e_persistence(e: PersistenceFailure):
        app.logger.error(f"Storage error: {e}")
        return jsonify({"error": e.to_dict()}), 500

    @app.errorhandler(400)
    def _e400(e):
        return jsonify({"error": {"code": "invalid_request", "message": "bad request"}}), 400

    @app.errorhandler(404)
    def _e404(e):
        return jsonify({"error": {"code": "not_found", "message": "not found"}}), 404

    @app.errorhandler(405)
    def _e405(e):
        return jsonify({"error": {"code": "method_not_allowed", "message": "method not allowed"}}), 405

    @app.errorhandler(500)
    def _e500(e):
        app.logger.exception("Internal server error")
        return jsonify({"error": {"code": "internal_error", "message": "internal server error"}}), 500

    @app.errorhandler(Exception)
    def _unhandled(e):
        if isinstance(e, HTTPException):
            return jsonify({"error": {"code": "http_error", "message": e.name}}), e.code
        app.logger.exception("Unhandled exception")
        return jsonify({"error": {"code": "internal_error", "message": "internal server error"}}), 500

    # Routes
    @app.route("/scan", methods=["POST"])
    def scan():
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            raise ValidationFailure("Request body must be a JSON object")
        targets = None
        for key in _TARGET_KEYS:
            if key in body:
                targets = body[key]
                break
        if not isinstance(targets, list):
            raise ValidationFailure("'targets' must be a list of IP addresses or hostnames")
        if len(targets) > cfg.max_targets:
            raise ValidationFailure(f"Too many targets: {len(targets)} (limit {cfg.max_targets})")

        result = run_reconcile(reconciler, targets)
        return jsonify(result.to_dict())

    @app.route("/api/stats")
    def api_stats():
        return jsonify(store.stats())

    @app.route("/api/hosts")
    def api_hosts():
        try:
            limit = max(1, min(int(request.args.get("limit", 100)), 1000))
        except ValueError:
            abort(400)
        return jsonify(store.list_hosts(limit))

    @app.route("/api/hosts/<ip>")
    def api_host_detail(ip: str):
        if not is_ip(ip):
            abort(404)
        data = store.host_detail(ip)
        if data is None:
            abort(404)
        return jsonify(data)

    @app.route("/health")
    def health():
        return jsonify({"status": "ok"})

    return app


# -- Server runner ------------------------------------------------------------

def run_api(cfg: ApiConfig, reconciler: Reconciler, store: HistoryStore) -> None:
    app = create_app(cfg, reconciler, store)
    print(f"[*] API at http://{cfg.host}:{cfg.port}")
    print(f"[*] POST /scan  {{\"targets\": [\"<ip or hostname>\", ...]}}")
    app.run(host=cfg.host, port=cfg.port, debug=False, use_reloader=False, threaded=True)
