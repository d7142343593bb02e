from __future__ import annotations

import itertools
import logging
import os
from typing import Any, Dict, Iterator, Optional

from flask import Flask, Response, jsonify, request

from event_media import _operations as ops
from event_media.errors import (
    InvalidInput,
    LockTimeout,
    ObjectNotFound,
    PipelineError,
    RemoteError,
    Unauthorized,
)
from event_media.progress import ProgressEvent, ndjson

logger = logging.getLogger(__name__)

NDJSON_MIMETYPE = "application/x-ndjson"

app = Flask(__name__)
app.config["MAX_CONTENT_LENGTH"] = 25 * 1024 * 1024


def _pipeline() -> ops.Pipeline:
    # Tests inject a pipeline built on local backends
    return app.config.get("PIPELINE") or ops.get_pipeline()


def _payload() -> Dict[str, Any]:
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form.to_dict()


def _admin_key(payload: Dict[str, Any]) -> Optional[str]:
    return payload.get("adminKey") or request.headers.get("X-Admin-Key")


def _require_admin(payload: Dict[str, Any]) -> None:
    _pipeline().authorize_admin(_admin_key(payload))


def _error_status(exc: PipelineError) -> int:
    if isinstance(exc, InvalidInput):
        return 400
    if isinstance(exc, Unauthorized):
        return 401
    if isinstance(exc, LockTimeout):
        return 409
    if isinstance(exc, ObjectNotFound):
        return 404
    if isinstance(exc, RemoteError):
        return 502
    return 500


@app.errorhandler(PipelineError)
def pipeline_error(exc: PipelineError) -> Any:
    status = _error_status(exc)
    if status >= 500:
        logger.error(f"{request.method} {request.path} failed: {exc}")
    return jsonify({"ok": False, "error": str(exc)}), status


def _stream(records: Iterator[ProgressEvent]) -> Response:
    """Stream progress records as NDJSON.

    The first record is pulled before the response starts so lock and input
    errors still produce a proper error status.
    """
    first = next(records)
    return Response(ndjson(itertools.chain([first], records)), mimetype=NDJSON_MIMETYPE)


@app.route("/api/health", methods=["GET"])
def health() -> Any:
    return jsonify({"ok": True})


@app.route("/api/events", methods=["GET", "POST"])
def events() -> Any:
    if request.method == "GET":
        return jsonify(ops.list_events(pipeline=_pipeline()))

    payload = _payload()
    _require_admin(payload)

    expires_in_days = payload.get("expiresInDays")
    try:
        expires_in_days = int(expires_in_days) if expires_in_days not in (None, "") else None
    except (TypeError, ValueError):
        raise InvalidInput("invalid_expires_in_days")

    event = ops.create_event(
        payload.get("name") or payload.get("title") or "",
        payload.get("date") or payload.get("eventDate") or "",
        location=payload.get("location") or None,
        image_url=payload.get("imageUrl") or None,
        expires_in_days=expires_in_days,
        pipeline=_pipeline(),
    )
    return jsonify({"ok": True, "event": event}), 201


@app.route("/api/events/<slug>", methods=["PATCH", "DELETE"])
def event_detail(slug: str) -> Any:
    payload = _payload()
    _require_admin(payload)

    if request.method == "DELETE":
        return jsonify({"ok": True, **ops.delete_event(slug, pipeline=_pipeline())})

    event = ops.update_event(
        slug,
        name=payload.get("name"),
        location=payload.get("location"),
        event_date=payload.get("date") or payload.get("eventDate"),
        image_url=payload.get("imageUrl"),
        pipeline=_pipeline(),
    )
    return jsonify({"ok": True, "event": event})


@app.route("/api/events/<slug>/photos", methods=["GET"])
def event_photos(slug: str) -> Any:
    try:
        limit = int(request.args.get("limit", ops.PAGE_DEFAULT))
        offset = int(request.args.get("offset", 0))
    except ValueError:
        raise InvalidInput("invalid_paging")
    return jsonify(ops.list_photos(slug, limit=limit, offset=offset, pipeline=_pipeline()))


@app.route("/api/events/<slug>/upload-url", methods=["POST"])
def upload_url(slug: str) -> Any:
    payload = _payload()
    _require_admin(payload)

    kind = payload.get("kind") or "original"
    signed = ops.create_upload_url(slug, payload.get("fileName"), kind=kind, pipeline=_pipeline())
    return jsonify({"ok": True, **signed})


@app.route("/api/events/<slug>/index", methods=["POST"])
def index_event(slug: str) -> Any:
    payload = _payload()
    _require_admin(payload)
    return _stream(ops.iter_index_event(slug, pipeline=_pipeline()))


@app.route("/api/events/<slug>/repair-thumbs", methods=["POST"])
def repair_thumbs(slug: str) -> Any:
    payload = _payload()
    _require_admin(payload)

    attempts = payload.get("attempts")
    try:
        attempts = int(attempts) if attempts not in (None, "") else None
    except (TypeError, ValueError):
        raise InvalidInput("invalid_attempts")
    return _stream(ops.iter_repair_thumbnails(slug, attempts=attempts, pipeline=_pipeline()))


@app.route("/api/events/<slug>/thumbs", methods=["POST"])
def generate_thumb(slug: str) -> Any:
    payload = _payload()
    _require_admin(payload)

    src_path = payload.get("srcPath")
    if not src_path:
        raise InvalidInput("missing_src_path")
    return jsonify(ops.generate_thumbnail(slug, src_path, pipeline=_pipeline()))


@app.route("/api/search", methods=["POST"])
def search() -> Any:
    upload = request.files.get("selfie") or request.files.get("file")
    selfie = upload.read() if upload is not None else b""
    slug = request.form.get("eventSlug") or request.form.get("slug")

    threshold = request.form.get("threshold")
    try:
        threshold = float(threshold) if threshold else None
    except ValueError:
        raise InvalidInput("invalid_threshold")

    report = ops.search_selfie(
        selfie,
        slug,
        threshold=threshold,
        strategy=request.form.get("strategy") or None,
        pipeline=_pipeline(),
    )
    return jsonify({"ok": True, **report})


@app.route("/api/cron/reap", methods=["GET", "POST"])
def cron_reap() -> Any:
    pipeline = _pipeline()
    pipeline.authorize_cron(request.headers.get("Authorization"))
    return jsonify(ops.reap_expired(pipeline=pipeline))


if __name__ == "__main__":
    from event_media.config import get_config

    server_config = get_config().get("server", {})
    host = os.environ.get("EVENT_MEDIA_HOST", server_config.get("host", "0.0.0.0"))
    port = int(os.environ.get("EVENT_MEDIA_PORT", server_config.get("port", 5050)))
    debug_env = os.environ.get("EVENT_MEDIA_DEBUG", "").lower() in {"1", "true", "yes"}
    debug = debug_env or server_config.get("debug", False)

    print(f"Starting Event Media API on {host}:{port}")
    print(f"Debug mode: {debug}")
    app.run(host=host, port=port, debug=debug)
