from __future__ import annotations

import io
import logging
import time
from typing import Callable, Optional

import requests
from PIL import Image, UnidentifiedImageError

from ..config import SETTINGS, DitherSettings
from ..errors import ConstructionError
from ..processing.image import RawImage

log = logging.getLogger(__name__)

SessionFactory = Callable[[], requests.Session]


def decode_image(data: bytes, channels: int = 3) -> RawImage:
    """Decode an encoded image (PNG, JPEG, ...) into interleaved 8-bit pixels."""
    if not data:
        raise ConstructionError("Empty image payload")
    try:
        with Image.open(io.BytesIO(data)) as img:
            return RawImage.from_image(img, channels)
    except (UnidentifiedImageError, OSError) as exc:
        raise ConstructionError(f"Cannot decode image: {exc}") from exc


class SourceFetcher:
    def __init__(
        self,
        session_factory: SessionFactory | None = None,
        settings: DitherSettings = SETTINGS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._session_factory = session_factory or requests.Session
        self._settings = settings
        self._sleep = sleep
        self._session = self._create_session()

    def _create_session(self) -> requests.Session:
        session = self._session_factory()
        session.headers.update({"User-Agent": "ditherlab/1.0"})
        return session

    def fetch_bytes(self, source_url: Optional[str] = None) -> bytes:
        target_url = source_url or self._settings.source_url
        if not target_url:
            raise ValueError("No source URL given and SOURCE_URL is not set")
        last_exception: Exception | None = None
        for attempt in range(1, self._settings.retries + 2):
            try:
                response = self._session.get(target_url, timeout=self._settings.timeout)
                response.raise_for_status()
                return response.content
            except requests.RequestException as exc:
                last_exception = exc
                log.warning("Fetching %s failed (attempt %d): %s", target_url, attempt, exc)
                self._sleep(0.4 * attempt)
        raise RuntimeError(f"Could not fetch {target_url}") from last_exception

    def fetch_source(self, source_url: Optional[str] = None, channels: int = 3) -> RawImage:
        return decode_image(self.fetch_bytes(source_url), channels)


FETCHER = SourceFetcher()
