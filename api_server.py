#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
api_server.py
Flask server exposing the coating defect diagnostics to the web client.

    GET  /api/health   : liveness check
    POST /api/seed     : push the SOP catalog into the vector index
    POST /api/analyze  : description (+ optional image) -> matched SOP
    POST /api/chat     : message -> short natural-language reply
    POST /api/upload   : store a client file in the object store
    POST /api/legacy   : original adhesion / pinhole step lists
    OPTIONS *          : 204 with permissive CORS headers
"""

import logging
from typing import Dict, Optional

from flask import Flask, Response, jsonify, request
from flask_cors import CORS
from pydantic import ValidationError
from werkzeug.exceptions import HTTPException

from config import Settings, load_settings
from diagnostics import DiagnosticsService, build_service
from errors import RequestError, ServiceError
from schemas import (
    AnalyzeRequest,
    ChatRequest,
    LegacyRequest,
    UploadRequest,
    describe_validation_error,
)

logger = logging.getLogger(__name__)

# Endpoints whose error body is {error} instead of {ok: false, error}
BARE_ERROR_PATHS = ("/api/chat",)


def _json_body(allow_empty: bool = False) -> Dict:
    if not request.get_data():
        if allow_empty:
            return {}
        raise RequestError("Request body must be a JSON object")
    data = request.get_json(silent=True)
    if data is None:
        raise RequestError("Malformed JSON: request body must be valid JSON "
                           "sent as application/json")
    if not isinstance(data, dict):
        raise RequestError("Request body must be a JSON object")
    return data


def _parse(model, data: Dict):
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise RequestError(describe_validation_error(e))


def _error_response(message: str, status: int):
    if request.path in BARE_ERROR_PATHS:
        return jsonify({"error": message}), status
    return jsonify({"ok": False, "error": message}), status


def create_app(settings: Optional[Settings] = None,
               service: Optional[DiagnosticsService] = None) -> Flask:
    settings = settings or load_settings()
    service = service or build_service(settings)

    app = Flask(__name__)
    app.extensions["diagnostics"] = service
    CORS(app, resources={r"/*": {"origins": "*"}}, send_wildcard=True)

    @app.before_request
    def preflight():
        if request.method == "OPTIONS":
            return Response(status=204)
        return None

    # --- error handling ---------------------------------------------------

    @app.errorhandler(ServiceError)
    def handle_service_error(e: ServiceError):
        if e.status >= 500:
            logger.error("%s %s failed: %s", request.method, request.path, e.message)
        return _error_response(e.message, e.status)

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        return _error_response(e.description or e.name, e.code or 500)

    @app.errorhandler(Exception)
    def handle_unexpected(e: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return _error_response(str(e) or e.__class__.__name__, 500)

    # --- routes -----------------------------------------------------------

    @app.route("/api/health", methods=["GET"])
    def health():
        return jsonify(service.health())

    @app.route("/api/seed", methods=["POST"])
    def seed():
        _json_body(allow_empty=True)
        return jsonify(service.seed())

    @app.route("/api/analyze", methods=["POST"])
    def analyze():
        req = _parse(AnalyzeRequest, _json_body())
        return jsonify(service.analyze(req))

    @app.route("/api/chat", methods=["POST"])
    def chat():
        """
        Chat endpoint used by the web UI.
        Expects JSON: { "message": "describe the defect" }
        """
        req = _parse(ChatRequest, _json_body())
        return jsonify(service.chat(req))

    @app.route("/api/upload", methods=["POST"])
    def upload():
        req = _parse(UploadRequest, _json_body())
        return jsonify(service.upload(req))

    @app.route("/api/legacy", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
    def legacy():
        if request.method != "POST":
            return Response("Use POST", status=405, mimetype="text/plain")
        req = _parse(LegacyRequest, _json_body())
        return jsonify(service.legacy_analyze(req))

    return app


if __name__ == "__main__":
    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = create_app(settings)

    print("-" * 50)
    print(f"🚀 Starting coating defect API on http://localhost:{settings.port}")
    print(f"Vector index: {settings.vector_index} | Rationale: {settings.rationale_backend} "
          f"| Object store: {settings.object_store}")
    print("-" * 50)
    app.run(host="0.0.0.0", port=settings.port, debug=False)
