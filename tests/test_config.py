from __future__ import annotations

import pytest

from bustimes.config import (
    DEFAULT_API_KEY_ENV,
    DEFAULT_STALE_THRESHOLD_SECONDS,
    DEFAULT_TIMEOUT_SECONDS,
    load_config,
    parse_transit_config,
)


def test_load_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "config.yaml")


def test_load_config_rejects_non_mapping(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("- just\n- a list\n")

    with pytest.raises(ValueError, match="mapping"):
        load_config(path)


def test_parse_transit_config_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "transit:\n"
        "  feed_url: https://example.com/feed\n"
        "  stops:\n"
        "    - 1136\n"
        "    - ' 5864 '\n"
        "    - ''\n"
    )

    config = parse_transit_config(load_config(path))

    assert config.feed_url == "https://example.com/feed"
    assert config.feed_format == "auto"
    assert config.api_key_env == DEFAULT_API_KEY_ENV
    assert config.timeout_seconds == DEFAULT_TIMEOUT_SECONDS
    assert config.stale_threshold_seconds == DEFAULT_STALE_THRESHOLD_SECONDS
    assert config.stops == ("1136", "5864")


def test_parse_transit_config_overrides():
    config = parse_transit_config(
        {
            "transit": {
                "feed_url": "https://example.com/feed.pb",
                "feed_format": "Protobuf",
                "api_key_env": "AGENCY_KEY",
                "timeout_seconds": "5",
                "stale_threshold_seconds": 60,
                "stops": None,
            }
        }
    )

    assert config.feed_format == "protobuf"
    assert config.api_key_env == "AGENCY_KEY"
    assert config.timeout_seconds == 5
    assert config.stale_threshold_seconds == 60
    assert config.stops == ()


@pytest.mark.parametrize(
    "transit, message",
    [
        (None, "transit section"),
        ({}, "feed_url"),
        ({"feed_url": "  "}, "feed_url"),
        ({"feed_url": "u", "feed_format": "xml"}, "feed_format"),
        ({"feed_url": "u", "api_key_env": ""}, "api_key_env"),
        ({"feed_url": "u", "stops": "1136"}, "stops"),
        ({"feed_url": "u", "timeout_seconds": "fast"}, "timeout_seconds"),
        ({"feed_url": "u", "stale_threshold_seconds": 0}, "stale_threshold_seconds"),
    ],
)
def test_parse_transit_config_errors(transit, message):
    with pytest.raises(ValueError, match=message):
        parse_transit_config({"transit": transit})


def test_api_key_read_from_environment(monkeypatch):
    config = parse_transit_config({"transit": {"feed_url": "u", "api_key_env": "AGENCY_KEY"}})

    monkeypatch.delenv("AGENCY_KEY", raising=False)
    assert config.api_key is None

    monkeypatch.setenv("AGENCY_KEY", "secret")
    assert config.api_key == "secret"
