from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from DeliveryErrors import PositionUnavailable
from GeoMath import GeoPoint
from RouteBase import Route

logger = logging.getLogger(__name__)


@dataclass
class SimulatedCourier:
    route: Route
    speed_mps: float = 5.0
    start_offset_s: float = 0.0
    time_scale: float = 1.0
    idx: int = 0
    pos: Optional[GeoPoint] = None
    done: bool = False

    def update_position(self, global_time: float) -> None:
        if self.done:
            return

        t_rel = (global_time - self.start_offset_s) * self.time_scale

        # not started yet -> stay at route start
        if t_rel <= 0.0:
            self.pos = self.route.start
            return

        d = t_rel * self.speed_mps
        if d >= self.route.path_length_m:
            self.pos = self.route.dest
            self.done = True
            return

        self.pos, self.idx = self.route.point_at_distance(d)

    def get_pos(self) -> GeoPoint:
        if self.pos is None:
            raise RuntimeError("Position not set yet. Call update_position() first.")
        return self.pos


class SimulatedLocationProvider:
    """
    LocationProvider that drives a SimulatedCourier along a route.
    Simulated time advances by interval_s per emitted fix, so runs are deterministic.
    """

    def __init__(self,
                 courier: SimulatedCourier,
                 interval_s: float = 1.0,
                 permission: bool = True,
                 sensor_enabled: bool = True):
        self.courier = courier
        self.interval_s = interval_s
        self.permission = permission
        self.sensor_enabled = sensor_enabled
        self.t_s = 0.0
        self.courier.update_position(self.t_s)

    async def request_permission(self) -> bool:
        await asyncio.sleep(0)
        return self.permission

    async def current_position(self) -> GeoPoint:
        await asyncio.sleep(0)
        if not self.sensor_enabled:
            raise PositionUnavailable("location services are disabled")
        return self.courier.get_pos()

    def _tick(self) -> GeoPoint:
        self.t_s += self.interval_s
        self.courier.update_position(self.t_s)
        return self.courier.get_pos()

    async def _run(self,
                   on_point: Callable[[GeoPoint], None],
                   on_error: Callable[[Exception], None]) -> None:
        while not self.courier.done:
            await asyncio.sleep(self.interval_s)
            if not self.sensor_enabled:
                on_error(PositionUnavailable("location services were disabled while watching"))
                return
            on_point(self._tick())
        logger.info("simulated courier reached %s", self.courier.route.dest)

    def subscribe(self,
                  on_point: Callable[[GeoPoint], None],
                  on_error: Callable[[Exception], None]) -> asyncio.Task:
        loop = asyncio.get_running_loop()
        return loop.create_task(self._run(on_point, on_error))

    def unsubscribe(self, handle: asyncio.Task) -> None:
        if handle is not None and not handle.done():
            handle.cancel()
