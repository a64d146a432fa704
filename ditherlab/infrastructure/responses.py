from __future__ import annotations

import base64
import io
import json
from typing import Any, Dict

from flask import send_file
from PIL import Image

from ..processing.image import RawImage
from ..processing.pipeline import PipelineEvent


def encode_png(img: Image.Image) -> bytes:
    buffer = io.BytesIO()
    img.save(buffer, "PNG", optimize=True)
    return buffer.getvalue()


def send_png(raw: RawImage):
    return send_file(io.BytesIO(encode_png(raw.to_image())), mimetype="image/png")


def image_payload(raw: RawImage) -> Dict[str, Any]:
    return {
        "width": raw.width,
        "height": raw.height,
        "channels": raw.channels,
        "png": base64.b64encode(encode_png(raw.to_image())).decode("ascii"),
    }


def event_to_json(event: PipelineEvent) -> str:
    """Serialize one pipeline event as a single NDJSON line."""
    message = event.to_message()
    if "imageData" in message:
        message["imageData"] = image_payload(message["imageData"])
    return json.dumps(message) + "\n"
