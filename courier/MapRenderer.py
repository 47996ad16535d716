from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol

from GeoMath import Bounds, GeoPoint, bounds_of
from RouteBase import PositionSample, Route

logger = logging.getLogger(__name__)

CURRENT_POSITION_ZOOM = 15


@dataclass(frozen=True)
class Camera:
    center: Optional[GeoPoint] = None
    bounds: Optional[Bounds] = None
    zoom: Optional[float] = None


@dataclass
class MapState:
    pickup: Optional[GeoPoint] = None
    delivery: Optional[GeoPoint] = None
    courier: Optional[GeoPoint] = None
    route: Optional[Route] = None
    viewport: Optional[Bounds] = None
    camera: Camera = field(default_factory=Camera)
    last_applied_sequence: Optional[int] = None
    revision: int = 0


class MapEngine(Protocol):
    """Drawing side of the map. Whatever draw() returns is ignored."""

    def draw(self, state: MapState) -> Any: ...


class MapRenderer:
    """
    Owns what the map should show and pushes a snapshot to the engine after every change.
    Courier positions are applied in sequence order only; older samples are dropped.
    """

    def __init__(self, engine: Optional[MapEngine] = None):
        self.engine = engine
        self.state = MapState()

    @property
    def last_applied_sequence(self) -> Optional[int]:
        return self.state.last_applied_sequence

    def _push(self) -> None:
        self.state.revision += 1
        if self.engine is None:
            return
        try:
            self.engine.draw(dataclasses.replace(self.state))
        except Exception:
            logger.exception("map engine failed to draw revision %d", self.state.revision)

    def _viewport(self) -> Optional[Bounds]:
        pts: List[GeoPoint] = [p for p in (self.state.pickup, self.state.delivery) if p is not None]
        if self.state.route is not None:
            pts.extend(self.state.route.points)
        return bounds_of(pts) if pts else None

    def set_endpoints(self, pickup: GeoPoint, delivery: GeoPoint) -> None:
        self.state.pickup = pickup
        self.state.delivery = delivery
        self.state.viewport = self._viewport()
        self.state.camera = Camera(bounds=self.state.viewport)
        self._push()

    def set_route(self, route: Route) -> None:
        self.state.route = route
        self.state.viewport = self._viewport()
        self.state.camera = Camera(bounds=self.state.viewport)
        self._push()

    def apply_position(self, sample: PositionSample) -> bool:
        last = self.state.last_applied_sequence
        if last is not None and sample.sequence <= last:
            logger.debug("dropping stale position #%d (last applied #%d)", sample.sequence, last)
            return False
        self.state.courier = sample.point
        self.state.last_applied_sequence = sample.sequence
        self._push()
        return True

    def center_on_route(self) -> None:
        if self.state.viewport is None:
            return
        self.state.camera = Camera(bounds=self.state.viewport)
        self._push()

    def center_on_current_position(self, zoom: float = CURRENT_POSITION_ZOOM) -> None:
        if self.state.courier is None:
            return
        self.state.camera = Camera(center=self.state.courier, zoom=zoom)
        self._push()

    def reset(self) -> None:
        self.state = MapState(revision=self.state.revision)
        self._push()
