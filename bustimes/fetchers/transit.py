from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from dataclasses import replace
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple

import requests

from bustimes.builder import BusTimesBuilder
from bustimes.config import CONFIG_PATH, TransitConfig, load_config, parse_transit_config
from bustimes.feeds import FEED_FORMATS, FeedError, parse_feed
from bustimes.types import BusTimes, Feed

USER_AGENT = "bustimes/0.1"

logger = logging.getLogger(__name__)


class TransitDataError(RuntimeError):
    pass


def fetch_feed(
    url: str,
    api_key: Optional[str] = None,
    timeout_seconds: int = 30,
) -> Tuple[bytes, str]:
    headers: Dict[str, str] = {"User-Agent": USER_AGENT}
    if api_key:
        headers["x-api-key"] = api_key
    try:
        response = requests.get(url, headers=headers, timeout=timeout_seconds)
        if response.status_code in {401, 403}:
            logger.error(
                "Transit feed request unauthorized for %s (HTTP %s).",
                url,
                response.status_code,
            )
        response.raise_for_status()
    except requests.RequestException as exc:
        raise TransitDataError(f"Failed to fetch transit feed: {exc}") from exc
    return response.content, response.headers.get("content-type", "")


def _count_arrivals(bus_times: BusTimes) -> int:
    return sum(
        len(direction["nextInstances"])
        for stop in bus_times["stops"]
        for route in stop["routes"]
        for direction in route["directions"]
    )


def _warn_if_stale(feed: Feed, now_timestamp: int, threshold_seconds: int) -> None:
    age = now_timestamp - feed.timestamp
    if age > threshold_seconds:
        logger.warning("Transit feed is stale: generated %ss ago.", age)


def build_bus_times(stop_ids: Sequence[str], feed: Feed) -> BusTimes:
    bus_times = BusTimesBuilder.from_feed(stop_ids, feed).build()
    logger.info(
        "Bus times: %s arrivals across %s stops from %s trips",
        _count_arrivals(bus_times),
        len(bus_times["stops"]),
        len(feed.trip_updates),
    )
    return bus_times


def fetch_bus_times(
    config: TransitConfig,
    stop_ids: Optional[Sequence[str]] = None,
    now_timestamp: Optional[int] = None,
) -> BusTimes:
    if stop_ids is None:
        stop_ids = config.stops
    if now_timestamp is None:
        now_timestamp = int(time.time())

    api_key = config.api_key
    if not api_key:
        logger.info("%s is not set; fetching feed without authentication.", config.api_key_env)

    content, content_type = fetch_feed(config.feed_url, api_key, config.timeout_seconds)
    feed = parse_feed(content, content_type, config.feed_format)
    _warn_if_stale(feed, now_timestamp, config.stale_threshold_seconds)
    return build_bus_times(stop_ids, feed)


def load_bus_times_file(
    path: Path,
    stop_ids: Sequence[str],
    feed_format: str = "auto",
) -> BusTimes:
    if not path.exists():
        raise FileNotFoundError(f"Feed file not found: {path}")
    feed = parse_feed(path.read_bytes(), None, feed_format)
    return build_bus_times(stop_ids, feed)


def _split_stops(value: Optional[str]) -> Optional[Tuple[str, ...]]:
    if value is None:
        return None
    return tuple(stop.strip() for stop in value.split(",") if stop.strip())


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Fetch the next arrivals at transit stops.")
    parser.add_argument("--config", type=Path, default=CONFIG_PATH, help="Path to config.yaml.")
    parser.add_argument("--stops", help="Comma-separated stop ids; overrides transit.stops.")
    parser.add_argument("--file", type=Path, help="Decode a saved feed instead of fetching.")
    parser.add_argument("--format", choices=FEED_FORMATS, help="Feed encoding.")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    stop_ids = _split_stops(args.stops)
    try:
        if args.file is not None:
            if stop_ids is None:
                parser.error("--stops is required with --file")
            bus_times = load_bus_times_file(args.file, stop_ids, args.format or "auto")
        else:
            config = parse_transit_config(load_config(args.config))
            if args.format:
                config = replace(config, feed_format=args.format)
            bus_times = fetch_bus_times(config, stop_ids)
    except (OSError, FeedError, TransitDataError, ValueError) as exc:
        logger.error("Bus times failed: %s", exc)
        print(json.dumps({"ok": False, "error": str(exc)}))
        return 1

    print(json.dumps({"ok": True, "stops": bus_times["stops"]}, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
