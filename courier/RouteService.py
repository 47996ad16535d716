from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from DeliveryErrors import DecodeError, NetworkError, ValidationError
from GeoMath import GeoPoint, decode_polyline
from RouteBase import Route, TravelMode
from RoutingProviders import DirectionsProvider

logger = logging.getLogger(__name__)


class RouteService:
    """
    Computes a Route between two points with one request to a directions provider.
    session: optional shared aiohttp session; a short-lived one is opened per call otherwise
    """

    def __init__(self,
                 provider: DirectionsProvider,
                 session: Optional[aiohttp.ClientSession] = None,
                 timeout_s: float = 30.0):
        self.provider = provider
        self.session = session
        self.timeout = aiohttp.ClientTimeout(total=timeout_s)

    async def _get_json(self, session: aiohttp.ClientSession, url: str, params: Dict[str, str]) -> Dict[str, Any]:
        try:
            async with session.get(url, params=params, timeout=self.timeout) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    raise NetworkError(
                        f"{self.provider.name} request failed: {body[:200]}",
                        status_code=resp.status,
                    )
                data = await resp.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise NetworkError(f"{self.provider.name} request timed out") from e
        except aiohttp.ClientError as e:
            raise NetworkError(f"{self.provider.name} request failed: {e}") from e
        except ValueError as e:
            raise NetworkError(f"{self.provider.name} returned invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise NetworkError(f"{self.provider.name} returned unexpected payload: {type(data).__name__}")
        return data

    async def fetch_directions(self, url: str, params: Dict[str, str]) -> Dict[str, Any]:
        if self.session is not None:
            return await self._get_json(self.session, url, params)
        async with aiohttp.ClientSession() as session:
            return await self._get_json(session, url, params)

    async def compute_route(self,
                            origin: GeoPoint,
                            destination: GeoPoint,
                            mode: TravelMode = TravelMode.BIKE) -> Route:
        try:
            mode = TravelMode(mode)
        except ValueError as e:
            raise ValidationError(f"unknown travel mode {mode!r}") from e
        url, params = self.provider.build_request(origin, destination, mode)
        logger.debug("route request %s -> %s (%s) via %s", origin, destination, mode.value, self.provider.name)

        data = await self.fetch_directions(url, params)
        result = self.provider.parse(data)

        points = decode_polyline(result.encoded_path)
        if len(points) < 2:
            raise DecodeError(f"encoded path decodes to {len(points)} point(s), need at least 2")

        route = Route(
            points=tuple(points),
            mode=mode,
            distance_meters=result.distance_meters,
            duration_seconds=result.duration_seconds,
            distance_text=result.distance_text,
            duration_text=result.duration_text,
        )
        logger.info("route computed: %d points, %s / %s",
                    len(route.points), route.distance_text or route.distance_meters,
                    route.duration_text or route.duration_seconds)
        return route
