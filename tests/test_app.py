import base64
import io
import json

import pytest
from PIL import Image

from ditherlab.app import create_app
from ditherlab.processing.image import RawImage
from ditherlab.service import ServiceRunner


class StubFetcher:
    def __init__(self, image):
        self.image = image
        self.urls = []

    def fetch_source(self, source_url=None, channels=3):
        self.urls.append(source_url)
        return RawImage.from_image(self.image, channels)


@pytest.fixture
def fetcher():
    return StubFetcher(Image.new("RGB", (3, 3), color=(200, 40, 90)))


@pytest.fixture
def client(settings, fetcher):
    runner = ServiceRunner(settings)
    app = create_app(runner=runner, fetcher=fetcher, settings=settings)
    yield app.test_client()
    runner.stop()


def png_bytes(mode="RGB", size=(4, 3), color=(10, 120, 250)):
    buffer = io.BytesIO()
    Image.new(mode, size, color=color).save(buffer, "PNG")
    return buffer.getvalue()


def read_events(response):
    return [json.loads(line) for line in response.get_data(as_text=True).splitlines() if line]


def test_gray_dither_streams_ndjson(client):
    response = client.post("/dither?mode=gray", data=png_bytes(), content_type="image/png")

    assert response.status_code == 200
    assert response.mimetype == "application/x-ndjson"
    events = read_events(response)
    assert [event["id"] for event in events[:3]] == ["original", "grayscale", "quantized"]
    assert events[-1]["id"] == "jjn"
    image = events[2]["imageData"]
    assert (image["width"], image["height"], image["channels"]) == (4, 3, 1)
    decoded = Image.open(io.BytesIO(base64.b64decode(image["png"])))
    assert decoded.size == (4, 3)


def test_gray_dither_keeps_the_original_in_color(client):
    response = client.post(
        "/dither?mode=gray", data=png_bytes(size=(2, 2), color=(255, 0, 0)), content_type="image/png"
    )

    original, grayscale = read_events(response)[:2]
    assert original["imageData"]["channels"] == 3
    assert grayscale["imageData"]["channels"] == 1
    pixels = Image.open(io.BytesIO(base64.b64decode(original["imageData"]["png"])))
    assert pixels.convert("RGB").getpixel((0, 0)) == (255, 0, 0)


def test_color_dither_accepts_multipart_upload(client):
    response = client.post(
        "/dither?mode=color",
        data={"image": (io.BytesIO(png_bytes()), "input.png")},
        content_type="multipart/form-data",
    )

    events = read_events(response)
    assert events[1] == {
        "type": "started",
        "job": events[0]["job"],
        "id": "quantized:8",
        "title": "Quantized (8 colors)",
    }
    assert events[-1]["id"] == "bluenoise:64"


def test_dither_from_source_url(client, fetcher):
    response = client.post("/dither?mode=gray&source_url=http://camera.local/frame.png")

    assert response.status_code == 200
    assert fetcher.urls == ["http://camera.local/frame.png"]
    assert read_events(response)[0]["imageData"]["width"] == 3


def test_dither_rejects_unknown_mode(client):
    response = client.post("/dither?mode=sepia", data=png_bytes())

    assert response.status_code == 400
    assert response.get_json()["modes"] == ["gray", "color"]


@pytest.mark.parametrize("payload", [b"", b"definitely not an image"])
def test_dither_rejects_undecodable_payload(client, payload):
    response = client.post("/dither", data=payload, content_type="application/octet-stream")

    assert response.status_code == 400
    assert "error" in response.get_json()


def test_catalogue_lists_steps(client):
    gray = client.get("/catalogue").get_json()
    color = client.get("/catalogue?mode=color").get_json()

    assert gray[0] == {"id": "quantized", "title": "Quantized"}
    assert len(color) == 24


def test_raw_returns_png(client):
    response = client.get("/raw?source_url=http://camera.local/frame.png")

    assert response.mimetype == "image/png"
    assert Image.open(io.BytesIO(response.data)).size == (3, 3)


def test_health_and_settings(client, settings):
    health = client.get("/health").get_json()
    current = client.get("/settings").get_json()

    assert health["ok"] is True
    assert health["state"] == "awaiting_image"
    assert current["blue_noise_size"] == settings.blue_noise_size
