from __future__ import annotations

from dataclasses import asdict
from typing import Optional

from flask import Flask, Response, jsonify, request, stream_with_context

from .config import SETTINGS, DitherSettings, configure_logging
from .infrastructure.network import FETCHER, SourceFetcher, decode_image
from .infrastructure.responses import event_to_json, send_png
from .processing.pipeline import COLOR, GRAY, MODES, catalogue
from .service import ServiceRunner

APP_VERSION = "1.0.0"


def _requested_mode() -> Optional[str]:
    mode = (request.args.get("mode", "") or "").lower()
    return mode or None


def create_app(
    runner: ServiceRunner | None = None,
    fetcher: SourceFetcher | None = None,
    settings: DitherSettings = SETTINGS,
) -> Flask:
    configure_logging()
    app = Flask(__name__)
    runner = runner or ServiceRunner(settings)
    fetcher = fetcher or FETCHER

    def load_source(channels: int = 3):
        upload = request.files.get("image")
        if upload is not None:
            return decode_image(upload.read(), channels)
        source_url = request.args.get("source_url")
        if source_url or (not request.data and settings.source_url):
            return fetcher.fetch_source(source_url, channels)
        return decode_image(request.get_data(), channels)

    @app.route("/dither", methods=["POST"])
    def dither():
        mode = _requested_mode() or GRAY
        if mode not in MODES:
            return jsonify(error=f"Unknown mode {mode!r}", modes=list(MODES)), 400
        try:
            source = load_source()
        except ValueError as exc:
            return jsonify(error=str(exc)), 400
        except RuntimeError as exc:  # pragma: no cover - upstream failures handled at runtime
            return jsonify(error=str(exc)), 502

        events = runner.stream(source, mode)
        return Response(
            stream_with_context(event_to_json(event) for event in events),
            mimetype="application/x-ndjson",
        )

    @app.route("/raw")
    def raw():
        try:
            return send_png(fetcher.fetch_source(request.args.get("source_url")))
        except ValueError as exc:
            return jsonify(error=str(exc)), 400
        except RuntimeError as exc:  # pragma: no cover - upstream failures handled at runtime
            return jsonify(error=str(exc)), 502

    @app.route("/catalogue")
    def catalogue_view():
        mode = _requested_mode() or GRAY
        if mode not in MODES:
            return jsonify(error=f"Unknown mode {mode!r}", modes=list(MODES)), 400
        return jsonify([{"id": step.id, "title": step.title} for step in catalogue(mode, settings)])

    @app.route("/health")
    def health():
        return jsonify(version=APP_VERSION, **runner.health())

    @app.route("/settings")
    def settings_view():
        return jsonify(asdict(settings))

    @app.route("/")
    def index():
        return jsonify(
            version=APP_VERSION,
            endpoints={
                "POST /dither?mode=gray": "Grayscale catalogue, streamed as NDJSON",
                "POST /dither?mode=color": "Color catalogue, streamed as NDJSON",
                "GET /catalogue?mode=gray|color": "Step ids and titles",
                "GET /raw?source_url=...": "Fetched source image as PNG",
                "GET /health": "Pipeline state and cached matrices",
                "GET /settings": "Active settings",
            },
            modes=[GRAY, COLOR],
        )

    return app
