"""Decoders that turn GTFS-Realtime feeds into :class:`bustimes.types.Feed`.

Two encodings are accepted: the JSON mapping of ``FeedMessage`` (64-bit
integers as numeric strings) and the binary protobuf encoding. Both reduce
to the same typed records, so the builder never sees wire-level shapes.

Structural problems with the feed as a whole raise :class:`FeedError`.
A malformed entity or stop time update is skipped and the rest of the feed
is still decoded.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, List, Optional, Union

from google.protobuf.message import DecodeError
from google.transit import gtfs_realtime_pb2

from bustimes.types import Feed, StopTimeUpdate, TripUpdate

FEED_FORMATS = ("auto", "json", "protobuf")

# Event times must format as a datetime: 0001-01-01T00:00:00Z to 9999-12-31T23:59:59Z.
MIN_EVENT_TIME = -62135596800
MAX_EVENT_TIME = 253402300799

_NUMERIC_STRING = re.compile(r"-?[0-9]+")

logger = logging.getLogger(__name__)


class FeedError(ValueError):
    pass


class MalformedRecordError(ValueError):
    pass


def _parse_numeric_string(value: Any) -> Optional[int]:
    if not isinstance(value, str):
        return None
    if not _NUMERIC_STRING.fullmatch(value):
        raise MalformedRecordError(f"Expected a numeric string, got {value!r}.")
    return int(value)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _check_event_time(seconds: Optional[int]) -> Optional[int]:
    if seconds is not None and not MIN_EVENT_TIME <= seconds <= MAX_EVENT_TIME:
        raise MalformedRecordError(f"Event time {seconds} is out of range.")
    return seconds


def _json_event_time(update: dict, key: str) -> Optional[int]:
    event = update.get(key)
    if not isinstance(event, dict):
        return None
    return _check_event_time(_parse_numeric_string(event.get("time")))


def _parse_json_stop_time_update(update: Any) -> StopTimeUpdate:
    if not isinstance(update, dict):
        raise MalformedRecordError("Stop time update is not an object.")
    stop_id = update.get("stopId")
    schedule_relationship = update.get("scheduleRelationship")
    if not isinstance(stop_id, str) or not isinstance(schedule_relationship, str):
        raise MalformedRecordError("Stop time update missing stopId or scheduleRelationship.")
    stop_sequence = update.get("stopSequence")
    return StopTimeUpdate(
        stop_id=stop_id,
        schedule_relationship=schedule_relationship,
        stop_sequence=stop_sequence if _is_int(stop_sequence) else None,
        arrival_time=_json_event_time(update, "arrival"),
        departure_time=_json_event_time(update, "departure"),
    )


def _parse_json_trip_update(entity: Any) -> TripUpdate:
    trip_update = entity.get("tripUpdate") if isinstance(entity, dict) else None
    if not isinstance(trip_update, dict):
        raise MalformedRecordError("Entity has no tripUpdate.")
    trip = trip_update.get("trip")
    stop_time_updates = trip_update.get("stopTimeUpdate")
    if not isinstance(trip, dict) or not isinstance(stop_time_updates, list):
        raise MalformedRecordError("tripUpdate missing trip or stopTimeUpdate list.")
    route_id = trip.get("routeId")
    direction_id = trip.get("directionId")
    if not isinstance(route_id, str) or not _is_int(direction_id):
        raise MalformedRecordError("trip missing routeId or directionId.")
    trip_id = trip.get("tripId")

    updates: List[StopTimeUpdate] = []
    for update in stop_time_updates:
        try:
            updates.append(_parse_json_stop_time_update(update))
        except MalformedRecordError as exc:
            logger.debug("Skipping stop time update on route %s: %s", route_id, exc)

    return TripUpdate(
        route_id=route_id,
        direction_id=direction_id,
        stop_time_updates=tuple(updates),
        trip_id=trip_id if isinstance(trip_id, str) and trip_id else None,
    )


def parse_json_feed(payload: Any) -> Feed:
    if not isinstance(payload, dict):
        raise FeedError("missing JSON root object")

    header = payload.get("header")
    timestamp = header.get("timestamp") if isinstance(header, dict) else None
    if not isinstance(timestamp, str):
        raise FeedError("missing header or header.timestamp")
    try:
        feed_timestamp = _parse_numeric_string(timestamp)
    except MalformedRecordError as exc:
        raise FeedError(f"header.timestamp is not numeric: {timestamp!r}") from exc

    entities = payload.get("entity")
    if not isinstance(entities, list):
        raise FeedError("missing entity list")

    trip_updates: List[TripUpdate] = []
    for index, entity in enumerate(entities):
        try:
            trip_updates.append(_parse_json_trip_update(entity))
        except MalformedRecordError as exc:
            logger.debug("Skipping entity %s: %s", index, exc)

    return Feed(timestamp=feed_timestamp, trip_updates=tuple(trip_updates))


def _protobuf_event_time(update: Any, key: str) -> Optional[int]:
    if not update.HasField(key):
        return None
    event = getattr(update, key)
    return _check_event_time(event.time) if event.HasField("time") else None


def parse_protobuf_feed(data: bytes) -> Feed:
    message = gtfs_realtime_pb2.FeedMessage()
    try:
        message.ParseFromString(data)
    except DecodeError as exc:
        raise FeedError(f"undecodable protobuf feed: {exc}") from exc

    if not message.header.HasField("timestamp"):
        raise FeedError("missing header.timestamp")

    trip_updates: List[TripUpdate] = []
    for entity in message.entity:
        if not entity.HasField("trip_update"):
            continue
        trip = entity.trip_update.trip
        if not trip.HasField("route_id") or not trip.HasField("direction_id"):
            logger.debug("Skipping entity %s: trip missing route_id or direction_id.", entity.id)
            continue

        updates: List[StopTimeUpdate] = []
        for update in entity.trip_update.stop_time_update:
            if not update.HasField("stop_id"):
                logger.debug("Skipping stop time update on route %s: no stop_id.", trip.route_id)
                continue
            try:
                arrival_time = _protobuf_event_time(update, "arrival")
                departure_time = _protobuf_event_time(update, "departure")
            except MalformedRecordError as exc:
                logger.debug("Skipping stop time update on route %s: %s", trip.route_id, exc)
                continue
            updates.append(
                StopTimeUpdate(
                    stop_id=update.stop_id,
                    schedule_relationship=update.schedule_relationship,
                    stop_sequence=update.stop_sequence if update.HasField("stop_sequence") else None,
                    arrival_time=arrival_time,
                    departure_time=departure_time,
                )
            )

        trip_updates.append(
            TripUpdate(
                route_id=trip.route_id,
                direction_id=trip.direction_id,
                stop_time_updates=tuple(updates),
                trip_id=trip.trip_id or None,
            )
        )

    return Feed(timestamp=message.header.timestamp, trip_updates=tuple(trip_updates))


def _looks_like_json(content: bytes, content_type: Optional[str]) -> bool:
    if content_type and "json" in content_type.lower():
        return True
    return content.lstrip()[:1] == b"{"


def parse_feed(
    content: Union[bytes, str],
    content_type: Optional[str] = None,
    feed_format: str = "auto",
) -> Feed:
    if feed_format not in FEED_FORMATS:
        raise ValueError(f"Unsupported feed format: {feed_format}")
    if isinstance(content, str):
        content = content.encode("utf-8")

    if feed_format == "auto":
        feed_format = "json" if _looks_like_json(content, content_type) else "protobuf"

    if feed_format == "protobuf":
        return parse_protobuf_feed(content)

    try:
        payload = json.loads(content.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise FeedError(f"feed is not valid JSON: {exc}") from exc
    return parse_json_feed(payload)
