from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Tuple

from DeliveryErrors import DecodeError, NetworkError, ValidationError
from GeoMath import GeoPoint
from RouteBase import TravelMode
from Settings import Settings


@dataclass(frozen=True)
class DirectionsResult:
    """First route / first leg of a provider response, before the path is decoded."""
    encoded_path: str
    distance_meters: Optional[float] = None
    duration_seconds: Optional[float] = None
    distance_text: Optional[str] = None
    duration_text: Optional[str] = None


class DirectionsProvider(Protocol):
    name: str

    def build_request(self, origin: GeoPoint, dest: GeoPoint, mode: TravelMode) -> Tuple[str, Dict[str, str]]: ...

    def parse(self, data: Dict[str, Any]) -> DirectionsResult: ...


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _first(items: Any) -> Dict[str, Any]:
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    return {}


class GoongDirections:
    """Goong Direction API: Google-style payload with display text on each leg."""
    name = "goong"

    VEHICLES = {
        TravelMode.BIKE: "bike",
        TravelMode.CAR: "car",
    }

    def __init__(self, base_url: str, api_key: str):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key

    def build_request(self, origin: GeoPoint, dest: GeoPoint, mode: TravelMode) -> Tuple[str, Dict[str, str]]:
        vehicle = self.VEHICLES.get(TravelMode(mode))
        if vehicle is None:
            raise ValidationError(f"unsupported travel mode for {self.name}: {TravelMode(mode).value}")
        params = {
            "origin": f"{origin.latitude},{origin.longitude}",
            "destination": f"{dest.latitude},{dest.longitude}",
            "vehicle": vehicle,
            "api_key": self.api_key,
        }
        return f"{self.base_url}/Direction", params

    def parse(self, data: Dict[str, Any]) -> DirectionsResult:
        route = _first(data.get("routes"))
        if not route:
            raise NetworkError(f"{self.name} returned no route (status={data.get('status')})")

        path = (route.get("overview_polyline") or {}).get("points")
        if not isinstance(path, str):
            raise DecodeError(f"{self.name} route has no encoded overview path")

        leg = _first(route.get("legs"))
        distance = leg.get("distance") or {}
        duration = leg.get("duration") or {}
        return DirectionsResult(
            encoded_path=path,
            distance_meters=_number(distance.get("value")),
            duration_seconds=_number(duration.get("value")),
            distance_text=_text(distance.get("text")),
            duration_text=_text(duration.get("text")),
        )


class OsrmDirections:
    """OSRM /route service; numeric leg values only, no display text."""
    name = "osrm"

    PROFILES = {
        TravelMode.CAR: "driving",
        TravelMode.BIKE: "cycling",
        TravelMode.WALK: "walking",
    }

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip("/")

    def build_request(self, origin: GeoPoint, dest: GeoPoint, mode: TravelMode) -> Tuple[str, Dict[str, str]]:
        profile = self.PROFILES[TravelMode(mode)]
        coords = f"{origin.longitude},{origin.latitude};{dest.longitude},{dest.latitude}"
        params = {
            "overview": "full",
            "geometries": "polyline",
            "steps": "false",
        }
        return f"{self.base_url}/route/v1/{profile}/{coords}", params

    def parse(self, data: Dict[str, Any]) -> DirectionsResult:
        if data.get("code") != "Ok":
            raise NetworkError(f"{self.name} error {data.get('code')}: {data.get('message', '')}".rstrip(": "))

        route = _first(data.get("routes"))
        if not route:
            raise NetworkError(f"{self.name} returned no route")

        path = route.get("geometry")
        if not isinstance(path, str):
            raise DecodeError(f"{self.name} route has no encoded geometry")

        leg = _first(route.get("legs"))
        return DirectionsResult(
            encoded_path=path,
            distance_meters=_number(leg.get("distance")),
            duration_seconds=_number(leg.get("duration")),
        )


def build_provider(settings: Settings) -> DirectionsProvider:
    if settings.routing_provider == "osrm":
        return OsrmDirections(settings.osrm_url)
    return GoongDirections(settings.goong_url, settings.goong_api_key)
