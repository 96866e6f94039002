"""HTTP boundary for the match engine."""

from __future__ import annotations

import logging
from typing import Any

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from .engine import Engine
from .errors import InvalidArgumentError, InvalidInputError, MatchServiceUnavailable
from .records import match_request_from_payload, result_to_payload

logger = logging.getLogger(__name__)

DEFAULT_TOP_N = 10


def create_app(engine: Engine, autosave: bool = False) -> Flask:
    """Create the Flask app serving ``POST /match`` and the ingestion endpoints."""

    app = Flask(__name__)
    scoring = engine.config.scoring
    allowed_origins = engine.config.server.allowed_origins

    @app.after_request
    def add_cors_headers(response: Any) -> Any:
        origin = request.headers.get("Origin")
        if "*" in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = "*"
        elif origin and origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, DELETE, OPTIONS"
        return response

    @app.route("/health", methods=["GET"])
    def health_check() -> Any:
        stats = engine.stats()
        return jsonify({"status": "healthy", "signals": stats["signals"], "index": stats["index"]})

    @app.route("/match", methods=["POST"])
    def match() -> Any:
        payload = request.get_json(silent=True)
        match_request = match_request_from_payload(
            payload, default_top_n=DEFAULT_TOP_N, max_top_n=scoring.max_top_n
        )
        results = engine.service.match(
            match_request.description,
            top_n=match_request.top_n,
            filters=match_request.filters,
        )
        return jsonify({"matches": [result_to_payload(result) for result in results]})

    @app.route("/signals", methods=["POST"])
    def ingest_signals() -> Any:
        payload = request.get_json(silent=True)
        if isinstance(payload, list):
            records, remove = payload, []
        elif isinstance(payload, dict) and isinstance(payload.get("signals", []), list):
            records, remove = payload.get("signals", []), payload.get("remove", [])
        else:
            raise InvalidInputError("Body must be a list of signals or {\"signals\": [...]}")
        if not isinstance(remove, list) or not all(isinstance(item, str) for item in remove):
            raise InvalidInputError("remove must be a list of signal ids")

        report = engine.ingest(records, remove=remove)
        if autosave:
            engine.save()
        return jsonify(
            {
                "accepted": len(report.accepted),
                "rejected": report.rejected,
                "removed": report.removed,
            }
        )

    @app.route("/signals/<path:signal_id>", methods=["DELETE"])
    def remove_signal(signal_id: str) -> Any:
        removed = engine.remove(signal_id)
        if removed and autosave:
            engine.save()
        return jsonify({"removed": removed})

    @app.errorhandler(InvalidInputError)
    @app.errorhandler(InvalidArgumentError)
    def handle_invalid(exc: Exception) -> Any:
        return jsonify({"error": getattr(exc, "code", "invalid_input"), "message": str(exc)}), 400

    @app.errorhandler(MatchServiceUnavailable)
    def handle_unavailable(exc: MatchServiceUnavailable) -> Any:
        logger.warning("Match service unavailable: %s", exc.__cause__ or exc)
        return jsonify({"error": MatchServiceUnavailable.code}), 503

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception) -> Any:
        if isinstance(exc, HTTPException):
            return exc
        logger.exception("Unhandled error serving %s %s", request.method, request.path)
        return jsonify({"error": MatchServiceUnavailable.code}), 503

    return app
