from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Set

from DeliveryErrors import DeliveryError, PermissionDenied, PositionUnavailable
from GeoMath import GeoPoint
from LocationTracker import LocationTracker, WatchHandle
from MapRenderer import MapRenderer
from PositionReporter import PositionSink
from RouteBase import PositionSample, Route, TravelMode
from RouteService import RouteService

logger = logging.getLogger(__name__)


@dataclass
class TrackingSession:
    handle: WatchHandle
    active: bool = True
    last_applied_sequence: Optional[int] = None


class DeliveryMapController:
    """
    Drives the map for one active delivery: position fix, route, live tracking.

    Route requests are numbered; only the newest one may update the map.
    stop_tracking() / deactivate() invalidate every pending activation and route
    request and close the watch before returning, so no callback from either is
    seen afterwards.
    """

    def __init__(self,
                 tracker: LocationTracker,
                 routes: RouteService,
                 renderer: MapRenderer,
                 sink: Optional[PositionSink] = None,
                 on_tracking_error: Optional[Callable[[DeliveryError], None]] = None,
                 route_from_courier: bool = False):
        self.tracker = tracker
        self.routes = routes
        self.renderer = renderer
        self.sink = sink
        self.on_tracking_error = on_tracking_error
        self.route_from_courier = route_from_courier

        self.pickup: Optional[GeoPoint] = None
        self.delivery: Optional[GeoPoint] = None
        self.mode: TravelMode = TravelMode.BIKE
        self.route: Optional[Route] = None
        self.current_position: Optional[GeoPoint] = None
        self.degraded = False
        self.session: Optional[TrackingSession] = None

        self._route_seq = 0
        self._route_tasks: Set[asyncio.Task] = set()
        # bumped by stop/deactivate; a pending activate() checks it after every await
        self._epoch = 0

    @property
    def is_active(self) -> bool:
        return self.pickup is not None

    @property
    def is_tracking(self) -> bool:
        return self.session is not None and self.session.active

    @property
    def latest_route_request(self) -> int:
        return self._route_seq

    async def activate(self, pickup: GeoPoint, delivery: GeoPoint, mode: TravelMode = TravelMode.BIKE) -> Optional[Route]:
        if self.is_active:
            self.deactivate()

        self.pickup, self.delivery, self.mode = pickup, delivery, TravelMode(mode)
        self.renderer.set_endpoints(pickup, delivery)
        epoch = self._epoch

        if not self.tracker.has_permission:
            granted = await self.tracker.request_permission()
            if epoch != self._epoch:
                logger.info("activation superseded while waiting for permission")
                return None
            if not granted:
                raise PermissionDenied("location permission is required to show the delivery map")

        try:
            sample = await self.tracker.get_current_sample()
        except PositionUnavailable as e:
            if epoch != self._epoch:
                logger.info("activation superseded while waiting for a position fix")
                return None
            logger.warning("no position fix, falling back to pickup point: %s", e)
            self.current_position = pickup
            self.degraded = True
        else:
            if epoch != self._epoch:
                logger.info("activation superseded while waiting for a position fix")
                return None
            self.current_position = sample.point
            self.degraded = False
            self.renderer.apply_position(sample)

        return await self.refresh_route()

    async def refresh_route(self, mode: Optional[TravelMode] = None) -> Optional[Route]:
        """Request a route for the active delivery; None when a newer request or a stop overtook it."""
        if self.pickup is None or self.delivery is None:
            raise RuntimeError("No active delivery. Call activate() first.")
        if mode is not None:
            self.mode = TravelMode(mode)

        origin = self.pickup
        if self.route_from_courier and self.current_position is not None:
            origin = self.current_position

        self._route_seq += 1
        seq = self._route_seq
        task = asyncio.ensure_future(self.routes.compute_route(origin, self.delivery, self.mode))
        self._route_tasks.add(task)
        try:
            route = await task
        except asyncio.CancelledError:
            if task.cancelled() and seq != self._route_seq:
                logger.debug("route request #%d cancelled", seq)
                return None
            raise
        except DeliveryError:
            if seq != self._route_seq:
                logger.debug("ignoring failure of stale route request #%d", seq)
                return None
            raise
        finally:
            self._route_tasks.discard(task)

        if seq != self._route_seq:
            logger.info("discarding stale route response #%d (latest #%d)", seq, self._route_seq)
            return None

        self.route = route
        self.renderer.set_route(route)
        return route

    def _invalidate_routes(self) -> None:
        self._epoch += 1
        self._route_seq += 1
        for task in list(self._route_tasks):
            task.cancel()

    def start_tracking(self) -> TrackingSession:
        if not self.is_active:
            raise RuntimeError("No active delivery. Call activate() first.")
        self._close_session()

        handle = self.tracker.watch_position(self._on_sample, self._on_watch_error)
        self.session = TrackingSession(handle=handle,
                                       last_applied_sequence=self.renderer.last_applied_sequence)
        logger.info("tracking started (watch %d)", handle.watch_id)
        return self.session

    def _on_sample(self, sample: PositionSample) -> None:
        session = self.session
        if session is None or not session.active:
            return

        if self.renderer.apply_position(sample):
            session.last_applied_sequence = sample.sequence
            self.current_position = sample.point

        if self.sink is not None:
            try:
                self.sink.report(sample)
            except Exception:
                logger.exception("position sink failed for sample #%d", sample.sequence)

    def _on_watch_error(self, err: DeliveryError) -> None:
        if not self.is_tracking:
            return
        logger.warning("tracking stopped: %s", err)
        self._close_session()
        if self.on_tracking_error is not None:
            self.on_tracking_error(err)

    def _close_session(self) -> None:
        session = self.session
        self.session = None
        if session is not None:
            session.active = False
        self.tracker.stop_watching()

    def stop_tracking(self) -> None:
        self._close_session()
        self._invalidate_routes()
        logger.info("tracking stopped")

    def deactivate(self) -> None:
        self.stop_tracking()
        self.pickup = self.delivery = None
        self.route = None
        self.current_position = None
        self.degraded = False
        self.renderer.reset()

    def center_on_route(self) -> None:
        self.renderer.center_on_route()

    def center_on_current_position(self) -> None:
        self.renderer.center_on_current_position()
