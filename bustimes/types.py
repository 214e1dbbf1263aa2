from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple, TypedDict, Union

StopId = str
RouteId = str
DirectionId = int

# Either the JSON enum name ("SCHEDULED") or the protobuf enum value.
ScheduleRelationship = Union[str, int]


class _BusInstanceBase(TypedDict):
    hasLeftTerminus: bool
    time: str


class BusInstance(_BusInstanceBase, total=False):
    tripId: str


class DirectionInstance(TypedDict):
    directionId: DirectionId
    nextInstances: List[BusInstance]


class RouteInstance(TypedDict):
    routeId: RouteId
    directions: List[DirectionInstance]


class StopInstance(TypedDict):
    stopId: StopId
    routes: List[RouteInstance]


class BusTimes(TypedDict):
    stops: List[StopInstance]


@dataclass(frozen=True)
class StopTimeUpdate:
    stop_id: StopId
    schedule_relationship: ScheduleRelationship
    stop_sequence: Optional[int] = None
    arrival_time: Optional[int] = None
    departure_time: Optional[int] = None


@dataclass(frozen=True)
class TripUpdate:
    route_id: RouteId
    direction_id: DirectionId
    stop_time_updates: Tuple[StopTimeUpdate, ...] = ()
    trip_id: Optional[str] = None


@dataclass(frozen=True)
class Feed:
    """A decoded feed, reduced to the trip updates the builder consumes."""

    timestamp: int
    trip_updates: Tuple[TripUpdate, ...] = ()
