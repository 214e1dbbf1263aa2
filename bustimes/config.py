from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from bustimes.feeds import FEED_FORMATS

ROOT_DIR = Path(__file__).resolve().parents[1]
CONFIG_PATH = ROOT_DIR / "config.yaml"

DEFAULT_API_KEY_ENV = "TRANSIT_API_KEY"
DEFAULT_TIMEOUT_SECONDS = 30
DEFAULT_STALE_THRESHOLD_SECONDS = 120

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitConfig:
    feed_url: str
    feed_format: str = "auto"
    api_key_env: str = DEFAULT_API_KEY_ENV
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    stale_threshold_seconds: int = DEFAULT_STALE_THRESHOLD_SECONDS
    stops: Tuple[str, ...] = ()

    @property
    def api_key(self) -> Optional[str]:
        return os.environ.get(self.api_key_env) or None


def load_config(config_path: Path = CONFIG_PATH) -> Dict[str, Any]:
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    logger.info("Loading config from %s", config_path)
    with config_path.open() as handle:
        data = yaml.safe_load(handle)
    if not isinstance(data, dict):
        raise ValueError("Config root must be a mapping.")
    return data


def _positive_int(section: Dict[str, Any], key: str, fallback: int) -> int:
    value = section.get(key, fallback)
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"transit.{key} must be an integer.") from exc
    if parsed <= 0:
        raise ValueError(f"transit.{key} must be positive.")
    return parsed


def parse_transit_config(config: Dict[str, Any]) -> TransitConfig:
    transit = config.get("transit")
    if not isinstance(transit, dict):
        raise ValueError("Config missing transit section.")

    feed_url = transit.get("feed_url")
    if not isinstance(feed_url, str) or not feed_url.strip():
        raise ValueError("transit.feed_url must be a non-empty string.")

    feed_format = str(transit.get("feed_format", "auto")).strip().lower()
    if feed_format not in FEED_FORMATS:
        raise ValueError(f"transit.feed_format must be one of {', '.join(FEED_FORMATS)}.")

    api_key_env = transit.get("api_key_env", DEFAULT_API_KEY_ENV)
    if not isinstance(api_key_env, str) or not api_key_env.strip():
        raise ValueError("transit.api_key_env must be a non-empty string.")

    stops_raw = transit.get("stops", [])
    if stops_raw is None:
        stops_raw = []
    if not isinstance(stops_raw, list):
        raise ValueError("transit.stops must be a list.")
    stops = tuple(str(stop).strip() for stop in stops_raw if str(stop).strip())

    return TransitConfig(
        feed_url=feed_url.strip(),
        feed_format=feed_format,
        api_key_env=api_key_env.strip(),
        timeout_seconds=_positive_int(transit, "timeout_seconds", DEFAULT_TIMEOUT_SECONDS),
        stale_threshold_seconds=_positive_int(
            transit, "stale_threshold_seconds", DEFAULT_STALE_THRESHOLD_SECONDS
        ),
        stops=stops,
    )
