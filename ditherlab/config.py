import logging
import os
from dataclasses import dataclass


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class DitherSettings:
    source_url: str
    port: int
    timeout: float
    retries: int
    log_level: str
    bayer_levels: int
    palette_count: int
    blue_noise_size: int
    blue_noise_sigma: float
    blue_noise_seed: int
    asset_timeout: float
    precompute_assets: bool
    max_pixels: int

    @classmethod
    def from_env(cls) -> "DitherSettings":
        return cls(
            source_url=os.getenv("SOURCE_URL", ""),
            port=int(os.getenv("PORT", "5600")),
            timeout=float(os.getenv("SOURCE_TIMEOUT", "10.0")),
            retries=int(os.getenv("SOURCE_RETRIES", "2")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            bayer_levels=int(os.getenv("BAYER_LEVELS", "4")),
            palette_count=int(os.getenv("PALETTE_COUNT", "3")),
            blue_noise_size=int(os.getenv("BLUE_NOISE_SIZE", "64")),
            blue_noise_sigma=float(os.getenv("BLUE_NOISE_SIGMA", "1.5")),
            blue_noise_seed=int(os.getenv("BLUE_NOISE_SEED", "0")),
            asset_timeout=float(os.getenv("ASSET_TIMEOUT", "120.0")),
            precompute_assets=_env_flag("PRECOMPUTE_ASSETS", "true"),
            max_pixels=int(os.getenv("MAX_PIXELS", "4000000")),
        )


SETTINGS = DitherSettings.from_env()


def configure_logging() -> logging.Logger:
    logging.basicConfig(level=SETTINGS.log_level)
    return logging.getLogger("ditherlab")
