from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest
from google.protobuf.json_format import ParseDict
from google.transit import gtfs_realtime_pb2


def _stop(
    stop_id: str,
    relationship: str = "SCHEDULED",
    sequence: Optional[int] = None,
    arrival: Optional[int] = None,
    departure: Optional[int] = None,
) -> Dict[str, Any]:
    update: Dict[str, Any] = {"stopId": stop_id, "scheduleRelationship": relationship}
    if sequence is not None:
        update["stopSequence"] = sequence
    if arrival is not None:
        update["arrival"] = {"time": str(arrival)}
    if departure is not None:
        update["departure"] = {"time": str(departure)}
    return update


def _trip(
    route_id: Optional[str],
    direction_id: Optional[int],
    updates: List[Dict[str, Any]],
    trip_id: Optional[str] = None,
) -> Dict[str, Any]:
    trip: Dict[str, Any] = {}
    if route_id is not None:
        trip["routeId"] = route_id
    if direction_id is not None:
        trip["directionId"] = direction_id
    if trip_id is not None:
        trip["tripId"] = trip_id
    return {"tripUpdate": {"trip": trip, "stopTimeUpdate": updates}}


def _feed(entities: List[Dict[str, Any]], timestamp: int = 1000) -> Dict[str, Any]:
    return {
        "header": {"gtfsRealtimeVersion": "2.0", "timestamp": str(timestamp)},
        "entity": [
            dict(entity, id=entity.get("id", f"entity-{index}"))
            for index, entity in enumerate(entities)
        ],
    }


def _to_protobuf(payload: Dict[str, Any]) -> bytes:
    message = ParseDict(payload, gtfs_realtime_pb2.FeedMessage())
    return message.SerializeToString()


@pytest.fixture
def make_stop():
    return _stop


@pytest.fixture
def make_trip():
    return _trip


@pytest.fixture
def make_feed():
    return _feed


@pytest.fixture
def to_protobuf():
    return _to_protobuf


@pytest.fixture
def sample_feed() -> Dict[str, Any]:
    """Trip A has not left its terminus; trip B has."""
    return _feed(
        [
            _trip(
                "5",
                0,
                [
                    _stop("S1", sequence=1, departure=1050),
                    _stop("S2", arrival=1200),
                ],
                trip_id="A",
            ),
            _trip(
                "5",
                0,
                [
                    _stop("S1", sequence=1, departure=900),
                    _stop("S2", sequence=2, arrival=1100),
                ],
                trip_id="B",
            ),
            _trip(
                "7",
                1,
                [
                    _stop("S3", sequence=4, arrival=1500),
                    _stop("S2", sequence=5, arrival=1600),
                ],
            ),
        ]
    )
