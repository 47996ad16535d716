from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol

from DeliveryErrors import DeliveryError, PermissionDenied, PositionUnavailable
from GeoMath import GeoPoint
from RouteBase import PositionSample

logger = logging.getLogger(__name__)

OnUpdate = Callable[[PositionSample], None]
OnError = Callable[[DeliveryError], None]


class LocationProvider(Protocol):
    """Platform side of location: sensor access, one-shot fixes and a push stream."""

    async def request_permission(self) -> bool: ...

    async def current_position(self) -> GeoPoint: ...

    def subscribe(self,
                  on_point: Callable[[GeoPoint], None],
                  on_error: Callable[[Exception], None]) -> Any: ...

    def unsubscribe(self, handle: Any) -> None: ...


@dataclass
class WatchHandle:
    watch_id: int
    provider_handle: Any = None
    active: bool = True


class LocationTracker:
    """
    Wraps a LocationProvider with the permission gate and the single-watch rule.
    Samples from both one-shot fetches and the watch share one sequence counter,
    so their order is comparable downstream.
    """

    def __init__(self, provider: LocationProvider, timeout_s: float = 15.0):
        self.provider = provider
        self.timeout_s = timeout_s
        self._permission: Optional[bool] = None
        self._seq = itertools.count(1)
        self._watch_ids = itertools.count(1)
        self._watch: Optional[WatchHandle] = None

    @property
    def has_permission(self) -> bool:
        return bool(self._permission)

    @property
    def is_watching(self) -> bool:
        return self._watch is not None

    async def request_permission(self) -> bool:
        granted = bool(await self.provider.request_permission())
        self._permission = granted
        if not granted:
            logger.info("location permission refused")
        return granted

    def _require_permission(self) -> None:
        if self._permission is None:
            raise PermissionDenied("location permission has not been requested")
        if not self._permission:
            raise PermissionDenied("location permission was refused")

    def _sample(self, point: GeoPoint, source: str) -> PositionSample:
        return PositionSample(point=point, sequence=next(self._seq), source=source)

    async def get_current_position(self) -> GeoPoint:
        self._require_permission()
        try:
            return await asyncio.wait_for(self.provider.current_position(), self.timeout_s)
        except asyncio.TimeoutError as e:
            raise PositionUnavailable(f"no position fix within {self.timeout_s:.0f}s") from e
        except DeliveryError:
            raise
        except Exception as e:
            raise PositionUnavailable(str(e) or type(e).__name__) from e

    async def get_current_sample(self) -> PositionSample:
        point = await self.get_current_position()
        return self._sample(point, "oneshot")

    def watch_position(self, on_update: OnUpdate, on_error: Optional[OnError] = None) -> WatchHandle:
        self._require_permission()
        # one subscription at a time
        self.stop_watching()

        handle = WatchHandle(watch_id=next(self._watch_ids))

        def _on_point(point: GeoPoint) -> None:
            if not handle.active:
                return
            on_update(self._sample(point, "watch"))

        def _on_error(exc: Exception) -> None:
            if not handle.active:
                return
            err = exc if isinstance(exc, DeliveryError) else PositionUnavailable(str(exc) or type(exc).__name__)
            logger.warning("watch %d error: %s", handle.watch_id, err)
            if on_error is not None:
                on_error(err)

        self._watch = handle
        try:
            handle.provider_handle = self.provider.subscribe(_on_point, _on_error)
        except Exception:
            handle.active = False
            self._watch = None
            raise
        logger.debug("watch %d started", handle.watch_id)
        return handle

    def stop_watching(self) -> None:
        handle = self._watch
        if handle is None:
            return
        self._watch = None
        handle.active = False
        self.provider.unsubscribe(handle.provider_handle)
        logger.debug("watch %d stopped", handle.watch_id)
