from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple

import polyline

from DeliveryErrors import DecodeError

LatLon = Tuple[float, float]  # (lat, lon)

EARTH_RADIUS_M = 6371000.0
POLYLINE_PRECISION = 5

# printable range used by the encoding: chr(63) .. chr(126)
_MIN_CHUNK = 63
_MAX_CHUNK = 126


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float

    def __post_init__(self):
        lat, lon = self.latitude, self.longitude
        if not (math.isfinite(lat) and math.isfinite(lon)):
            raise ValueError(f"non-finite coordinate: ({lat}, {lon})")
        if not (-90.0 <= lat <= 90.0):
            raise ValueError(f"lat out of range [-90,90]: {lat}")
        if not (-180.0 <= lon <= 180.0):
            raise ValueError(f"lon out of range [-180,180]: {lon}")

    @classmethod
    def from_latlon(cls, p: LatLon) -> "GeoPoint":
        return cls(float(p[0]), float(p[1]))

    def as_latlon(self) -> LatLon:
        return self.latitude, self.longitude


@dataclass(frozen=True)
class Bounds:
    south: float
    west: float
    north: float
    east: float

    def center(self) -> GeoPoint:
        return GeoPoint((self.south + self.north) / 2.0, (self.west + self.east) / 2.0)

    def contains(self, p: GeoPoint) -> bool:
        return self.south <= p.latitude <= self.north and self.west <= p.longitude <= self.east

    def as_folium(self) -> List[List[float]]:
        # folium / leaflet order: [[south, west], [north, east]]
        return [[self.south, self.west], [self.north, self.east]]


def decode_polyline(encoded: str, precision: int = POLYLINE_PRECISION) -> List[GeoPoint]:
    """
    Decode an encoded polyline (signed deltas, 5-bit chunks, 1e-5 precision by default).
    Raises DecodeError for anything malformed; never returns a partial list.
    """
    if not isinstance(encoded, str):
        raise DecodeError(f"encoded path must be a string, got {type(encoded).__name__}")

    for pos, ch in enumerate(encoded):
        if not (_MIN_CHUNK <= ord(ch) <= _MAX_CHUNK):
            raise DecodeError(f"invalid character {ch!r} at offset {pos}")

    try:
        pairs = polyline.decode(encoded, precision)
    except (IndexError, ValueError, TypeError) as e:
        # the library runs off the end of the string on a dangling chunk / missing longitude
        raise DecodeError(f"truncated encoded path ({len(encoded)} chars): {e}") from e

    try:
        return [GeoPoint.from_latlon(p) for p in pairs]
    except ValueError as e:
        raise DecodeError(f"decoded coordinate out of range: {e}") from e


def encode_polyline(points: Sequence[GeoPoint], precision: int = POLYLINE_PRECISION) -> str:
    return polyline.encode([p.as_latlon() for p in points], precision)


def haversine_m(a: GeoPoint, b: GeoPoint) -> float:
    lat1, lon1 = map(math.radians, a.as_latlon())
    lat2, lon2 = map(math.radians, b.as_latlon())
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    x = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(x))


def cum_array(values: Iterable[float]) -> List[float]:
    cum = [0.0]
    s = 0.0
    for v in values:
        s += v
        cum.append(s)
    return cum


def segment_lengths_m(points: Sequence[GeoPoint]) -> List[float]:
    return [haversine_m(points[i - 1], points[i]) for i in range(1, len(points))]


def path_length_m(points: Sequence[GeoPoint]) -> float:
    return sum(segment_lengths_m(points))


def bounds_of(points: Iterable[GeoPoint]) -> Bounds:
    pts = list(points)
    if not pts:
        raise ValueError("bounds_of() needs at least one point")
    lats = [p.latitude for p in pts]
    lons = [p.longitude for p in pts]
    return Bounds(south=min(lats), west=min(lons), north=max(lats), east=max(lons))


def interpolate(a: GeoPoint, b: GeoPoint, alpha: float) -> GeoPoint:
    alpha = min(1.0, max(0.0, alpha))
    return GeoPoint(
        a.latitude + alpha * (b.latitude - a.latitude),
        a.longitude + alpha * (b.longitude - a.longitude),
    )
