"""
Flask application for the camera capture API.
"""
from typing import Optional

from flask import Flask, Response, jsonify, request
from werkzeug.exceptions import BadRequest

from capture.errors import (
    CameraNotFound,
    CaptureError,
    CaptureTimeout,
    DeviceBusy,
    ExecutionFailed,
    OutputMissing,
    UnsupportedPlatform,
)
from capture.models import CaptureKind, CaptureRequest
from capture.orchestrator import CaptureOrchestrator
from capture.settings import get_settings

STREAM_MIMETYPE = "video/mp2t"

ERROR_STATUS = {
    UnsupportedPlatform: 501,
    CameraNotFound: 404,
    DeviceBusy: 409,
    CaptureTimeout: 504,
    ExecutionFailed: 502,
    OutputMissing: 500,
}


def _status_for(error: CaptureError) -> int:
    for error_type, status in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return status
    return 500


def _int_arg(name: str) -> Optional[int]:
    value = request.args.get(name)
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        raise BadRequest(f"{name} must be an integer (got {value!r})") from None


def _capture_request(orchestrator: CaptureOrchestrator, kind: CaptureKind, **kwargs) -> CaptureRequest:
    # Only request validation maps to 400; other ValueErrors stay server errors.
    try:
        return orchestrator.new_request(kind, **kwargs)
    except ValueError as e:
        raise BadRequest(str(e)) from e


def create_app(orchestrator: Optional[CaptureOrchestrator] = None):
    if orchestrator is None:
        orchestrator = CaptureOrchestrator(settings=get_settings().capture)

    app = Flask(__name__)
    app.orchestrator = orchestrator

    @app.errorhandler(CaptureError)
    def capture_error(error: CaptureError):
        return jsonify(error.to_dict()), _status_for(error)

    @app.errorhandler(BadRequest)
    def bad_request(error: BadRequest):
        return jsonify({"error": "BAD_REQUEST", "message": error.description}), 400

    @app.route("/", methods=["GET"])
    def index():
        return jsonify("camera capture service")

    @app.route("/health", methods=["GET"])
    def health():
        return jsonify(app.orchestrator.health().to_dict())

    @app.route("/devices", methods=["GET"])
    def devices():
        return jsonify([d.to_dict() for d in app.orchestrator.list_devices()])

    @app.route("/photo", methods=["GET"])
    def photo():
        capture_request = _capture_request(
            app.orchestrator,
            CaptureKind.PHOTO,
            timeout_ms=_int_arg("timeout_ms"),
        )
        return jsonify(app.orchestrator.run_capture(capture_request).to_dict())

    @app.route("/video", methods=["GET"])
    def video():
        capture_request = _capture_request(
            app.orchestrator,
            CaptureKind.VIDEO,
            timeout_ms=_int_arg("timeout_ms"),
            fixed_duration_ms=_int_arg("duration_ms"),
        )
        return jsonify(app.orchestrator.run_capture(capture_request).to_dict())

    @app.route("/stream", methods=["GET"])
    def stream():
        handle = app.orchestrator.start_stream()
        response = Response(
            handle.read_chunks(),
            mimetype=STREAM_MIMETYPE,
            direct_passthrough=True,
        )
        # Client disconnects close the response; treat that as a stop.
        response.call_on_close(handle.stop)
        return response

    @app.route("/stream/stop", methods=["POST"])
    def stop_stream():
        stopped = app.orchestrator.stop_streams()
        return jsonify({"ok": True, "stopped": stopped})

    return app
