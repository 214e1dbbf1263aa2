from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from google.transit import gtfs_realtime_pb2

from bustimes.feeds import parse_json_feed, parse_protobuf_feed
from bustimes.types import (
    BusInstance,
    BusTimes,
    DirectionId,
    DirectionInstance,
    Feed,
    RouteId,
    RouteInstance,
    ScheduleRelationship,
    StopId,
    StopInstance,
)

MAX_NEXT_INSTANCES = 5

SCHEDULED_NAME = "SCHEDULED"
SCHEDULED_VALUE = gtfs_realtime_pb2.TripUpdate.StopTimeUpdate.SCHEDULED

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArrivalRecord:
    has_left_terminus: bool
    seconds: int
    trip_id: Optional[str] = None


def _format_iso_utc(seconds: int) -> str:
    return (EPOCH + timedelta(seconds=seconds)).strftime("%Y-%m-%dT%H:%M:%SZ")


def is_scheduled(schedule_relationship: ScheduleRelationship) -> bool:
    if isinstance(schedule_relationship, str):
        return schedule_relationship == SCHEDULED_NAME
    return schedule_relationship == SCHEDULED_VALUE


class BusTimesBuilder:
    """Collects the next arrivals per stop, route and direction for one feed.

    A builder is fed one ``begin_trip`` call per trip followed by ``add_stop``
    for that trip's stop time updates, in feed order. It holds per-trip state,
    so use a fresh instance for every feed and never share one between threads.
    """

    def __init__(self, stop_ids: Iterable[StopId], feed_timestamp: int) -> None:
        self.times: Dict[StopId, Dict[RouteId, Dict[DirectionId, List[ArrivalRecord]]]] = {}
        self.stop_ids: List[StopId] = []
        self.feed_timestamp = feed_timestamp

        for stop_id in stop_ids:
            if stop_id in self.times:
                continue
            self.stop_ids.append(stop_id)
            self.times[stop_id] = {}
        self._wanted = frozenset(self.stop_ids)

        self.current_route_id: RouteId = ""
        self.current_direction_id: DirectionId = 0
        self.current_trip_id: Optional[str] = None
        self.current_trip_has_left_terminus = True

    def get_times_array(
        self,
        stop_id: StopId,
        route_id: RouteId,
        direction_id: DirectionId,
    ) -> List[ArrivalRecord]:
        routes = self.times.setdefault(stop_id, {})
        directions = routes.setdefault(route_id, {})
        return directions.setdefault(direction_id, [])

    def begin_trip(
        self,
        route_id: RouteId,
        direction_id: DirectionId,
        trip_id: Optional[str] = None,
    ) -> None:
        self.current_route_id = route_id
        self.current_direction_id = direction_id
        self.current_trip_id = trip_id
        self.current_trip_has_left_terminus = True

    def add_stop(
        self,
        stop_id: StopId,
        schedule_relationship: ScheduleRelationship,
        stop_sequence: Optional[int] = None,
        arrival_timestamp: Optional[int] = None,
        departure_timestamp: Optional[int] = None,
    ) -> bool:
        """Record one stop time update of the current trip.

        Returns True once a wanted stop with an arrival time has been seen;
        the caller must stop feeding this trip at that point. That holds even
        when the update is not SCHEDULED and so records nothing.
        """
        # Only the first stop of the trip tells us whether the vehicle has departed.
        if (
            self.current_trip_has_left_terminus
            and stop_sequence == 1
            and departure_timestamp is not None
            and departure_timestamp > self.feed_timestamp
        ):
            self.current_trip_has_left_terminus = False

        if stop_id not in self._wanted or arrival_timestamp is None:
            return False

        if is_scheduled(schedule_relationship):
            self.get_times_array(
                stop_id, self.current_route_id, self.current_direction_id
            ).append(
                ArrivalRecord(
                    has_left_terminus=self.current_trip_has_left_terminus,
                    seconds=arrival_timestamp,
                    trip_id=self.current_trip_id,
                )
            )
        else:
            logger.debug(
                "Ignoring %s arrival at stop %s on route %s",
                schedule_relationship,
                stop_id,
                self.current_route_id,
            )
        return True

    def build(self) -> BusTimes:
        bus_times: BusTimes = {"stops": []}
        for stop_id, routes in self.times.items():
            stop_instance: StopInstance = {"stopId": stop_id, "routes": []}
            bus_times["stops"].append(stop_instance)

            for route_id, directions in routes.items():
                route_instance: RouteInstance = {"routeId": route_id, "directions": []}
                stop_instance["routes"].append(route_instance)

                for direction_id, arrivals in directions.items():
                    earliest = sorted(arrivals, key=lambda arrival: arrival.seconds)
                    direction_instance: DirectionInstance = {
                        "directionId": direction_id,
                        "nextInstances": [
                            _to_bus_instance(arrival)
                            for arrival in earliest[:MAX_NEXT_INSTANCES]
                        ],
                    }
                    route_instance["directions"].append(direction_instance)

        return bus_times

    @classmethod
    def from_feed(cls, stop_ids: Iterable[StopId], feed: Feed) -> "BusTimesBuilder":
        builder = cls(stop_ids, feed.timestamp)
        for trip_update in feed.trip_updates:
            builder.begin_trip(
                trip_update.route_id, trip_update.direction_id, trip_update.trip_id
            )
            for update in trip_update.stop_time_updates:
                halt = builder.add_stop(
                    update.stop_id,
                    update.schedule_relationship,
                    update.stop_sequence,
                    update.arrival_time,
                    update.departure_time,
                )
                if halt:
                    break
        return builder

    @classmethod
    def from_json(cls, stop_ids: Iterable[StopId], payload: Any) -> "BusTimesBuilder":
        return cls.from_feed(stop_ids, parse_json_feed(payload))

    @classmethod
    def from_protobuf(cls, stop_ids: Iterable[StopId], data: bytes) -> "BusTimesBuilder":
        return cls.from_feed(stop_ids, parse_protobuf_feed(data))


def _to_bus_instance(arrival: ArrivalRecord) -> BusInstance:
    instance: BusInstance = {
        "hasLeftTerminus": arrival.has_left_terminus,
        "time": _format_iso_utc(arrival.seconds),
    }
    if arrival.trip_id:
        instance["tripId"] = arrival.trip_id
    return instance
