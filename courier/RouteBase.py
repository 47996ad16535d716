from __future__ import annotations

import time
from bisect import bisect_right
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple

from GeoMath import GeoPoint, Bounds, bounds_of, cum_array, interpolate, segment_lengths_m


class TravelMode(str, Enum):
    BIKE = "bike"
    CAR = "car"
    WALK = "walk"


@dataclass(frozen=True)
class Route:
    """
    A computed route, replaced as a whole whenever a new one arrives.
    points: decoded overview path, at least two points
    distance_text / duration_text: provider display strings, kept verbatim ("5.2 km", "15 phút")
    distance_meters / duration_seconds: numeric values when the provider reports them
    Missing values stay None: "not reported" is not the same as zero.
    """
    points: Tuple[GeoPoint, ...]
    mode: TravelMode = TravelMode.BIKE
    distance_meters: Optional[float] = None
    duration_seconds: Optional[float] = None
    distance_text: Optional[str] = None
    duration_text: Optional[str] = None
    cum_dist_m: Tuple[float, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        pts = tuple(self.points)
        if len(pts) < 2:
            raise ValueError("Route must contain at least 2 points")
        object.__setattr__(self, "points", pts)
        object.__setattr__(self, "cum_dist_m", tuple(cum_array(segment_lengths_m(pts))))

    @property
    def start(self) -> GeoPoint:
        return self.points[0]

    @property
    def dest(self) -> GeoPoint:
        return self.points[-1]

    @property
    def path_length_m(self) -> float:
        return self.cum_dist_m[-1]

    def bounds(self) -> Bounds:
        return bounds_of(self.points)

    def point_at_distance(self, d_m: float) -> Tuple[GeoPoint, int]:
        """Point d_m meters along the path and the index of the segment it lies on."""
        if d_m <= 0.0:
            return self.points[0], 0

        end_d = self.cum_dist_m[-1]
        if d_m >= end_d:
            return self.points[-1], len(self.points) - 2

        i = bisect_right(self.cum_dist_m, d_m) - 1
        seg_d = self.cum_dist_m[i + 1] - self.cum_dist_m[i]
        if seg_d <= 0.0:
            return self.points[i + 1], i

        alpha = (d_m - self.cum_dist_m[i]) / seg_d
        return interpolate(self.points[i], self.points[i + 1], alpha), i


@dataclass(frozen=True)
class PositionSample:
    point: GeoPoint
    sequence: int
    source: str = "watch"  # "watch" | "oneshot"
    timestamp: float = field(default_factory=time.time)

    def as_report(self) -> dict:
        return {
            "latitude": self.point.latitude,
            "longitude": self.point.longitude,
            "timestamp": datetime.fromtimestamp(self.timestamp, tz=timezone.utc).isoformat(),
        }


def route_from_latlon(points: List[Tuple[float, float]], **kwargs) -> Route:
    return Route(points=tuple(GeoPoint.from_latlon(p) for p in points), **kwargs)
