import asyncio

import pytest
from aiohttp import test_utils

from DeliveryErrors import NetworkError, PermissionDenied, PositionUnavailable
from DeliveryMapController import DeliveryMapController
from GeoMath import GeoPoint
from LocationTracker import LocationTracker
from MapRenderer import MapRenderer
from PositionReporter import LatestPositionQueue
from RouteBase import TravelMode, route_from_latlon
from RouteService import RouteService
from RoutingProviders import GoongDirections
from fakes import (DELIVERY, PICKUP, FakeLocationProvider, ManualRouteService, RecordingEngine,
                   RecordingSink, directions_app, goong_payload, settle)

COURIER = GeoPoint(10.7700, 106.6950)
ROUTE_A = route_from_latlon([(10.7769, 106.7009), (10.7626, 106.6826)], mode=TravelMode.CAR)
ROUTE_B = route_from_latlon([(10.7769, 106.7009), (10.7700, 106.6900), (10.7626, 106.6826)], mode=TravelMode.BIKE)


def _controller(provider=None, routes=None, sink=None, **kw):
    renderer = MapRenderer(RecordingEngine())
    controller = DeliveryMapController(
        tracker=LocationTracker(provider or FakeLocationProvider(position=COURIER), timeout_s=0.5),
        routes=routes or ManualRouteService(),
        renderer=renderer,
        sink=sink,
        **kw,
    )
    return controller, renderer


async def _activate_manual(controller, routes, route=ROUTE_A):
    task = asyncio.ensure_future(controller.activate(PICKUP, DELIVERY))
    await settle(lambda: len(routes.calls) == 1)
    routes.resolve(0, route)
    return await task


def test_activate_scenario_keeps_provider_display_values():
    payload = goong_payload(distance={"text": "5.2 km", "value": 5200},
                            duration={"text": "15 phút", "value": 900})
    app, seen = directions_app(payload)

    async def run():
        async with test_utils.TestServer(app) as server:
            base = str(server.make_url("/")).rstrip("/")
            controller, renderer = _controller(routes=RouteService(GoongDirections(base, "k")))
            route = await controller.activate(PICKUP, DELIVERY, TravelMode.BIKE)
            return route, controller, renderer

    route, controller, renderer = asyncio.run(run())

    assert route.distance_text == "5.2 km"
    assert route.duration_text == "15 phút"
    assert controller.route is route
    assert renderer.state.route is route
    assert renderer.state.courier == COURIER
    assert not controller.degraded
    assert seen[0]["origin"] == "10.7769,106.7009"
    assert seen[0]["destination"] == "10.7626,106.6826"


def test_activate_falls_back_to_pickup_without_fix():
    routes = ManualRouteService()
    controller, renderer = _controller(provider=FakeLocationProvider(position=None), routes=routes)

    route = asyncio.run(_activate_manual(controller, routes))

    assert route is ROUTE_A
    assert controller.degraded
    assert controller.current_position == PICKUP
    assert renderer.state.courier is None


def test_activate_falls_back_when_sensor_fails():
    routes = ManualRouteService()
    provider = FakeLocationProvider(error=OSError("location services disabled"))
    controller, renderer = _controller(provider=provider, routes=routes)

    route = asyncio.run(_activate_manual(controller, routes))

    assert route is ROUTE_A
    assert controller.degraded
    assert controller.current_position == PICKUP
    assert routes.calls[0]["origin"] == PICKUP


def _interrupt_activation(controller, renderer, interrupt):
    async def run():
        task = asyncio.ensure_future(controller.activate(PICKUP, DELIVERY))
        await asyncio.sleep(0.01)
        interrupt()
        revision = renderer.state.revision
        result = await task
        return result, revision

    return asyncio.run(run())


def test_deactivate_during_position_fix_ends_activation():
    routes = ManualRouteService()
    controller, renderer = _controller(provider=FakeLocationProvider(position=COURIER, delay_s=0.05),
                                       routes=routes)

    result, revision = _interrupt_activation(controller, renderer, controller.deactivate)

    assert result is None
    assert not controller.is_active
    assert controller.current_position is None
    assert renderer.state.courier is None
    assert renderer.state.revision == revision
    assert routes.calls == []


def test_deactivate_during_permission_request_ends_activation():
    routes = ManualRouteService()
    provider = FakeLocationProvider(permission=False, permission_delay_s=0.05)
    controller, renderer = _controller(provider=provider, routes=routes)

    result, revision = _interrupt_activation(controller, renderer, controller.deactivate)

    assert result is None
    assert renderer.state.revision == revision
    assert renderer.state.pickup is None
    assert routes.calls == []


def test_stop_tracking_during_position_fix_skips_route():
    routes = ManualRouteService()
    controller, renderer = _controller(provider=FakeLocationProvider(position=COURIER, delay_s=0.05),
                                       routes=routes)

    result, revision = _interrupt_activation(controller, renderer, controller.stop_tracking)

    assert result is None
    assert renderer.state.courier is None
    assert renderer.state.revision == revision
    assert routes.calls == []


def test_route_from_courier_uses_fallback_origin():
    routes = ManualRouteService()
    controller, _ = _controller(provider=FakeLocationProvider(error=PositionUnavailable("timeout")),
                                routes=routes, route_from_courier=True)
    asyncio.run(_activate_manual(controller, routes))
    assert routes.calls[0]["origin"] == PICKUP


def test_activate_without_permission_fails():
    controller, _ = _controller(provider=FakeLocationProvider(permission=False))
    with pytest.raises(PermissionDenied):
        asyncio.run(controller.activate(PICKUP, DELIVERY))


def test_activate_surfaces_route_errors():
    routes = ManualRouteService()
    controller, _ = _controller(routes=routes)

    async def run():
        task = asyncio.ensure_future(controller.activate(PICKUP, DELIVERY))
        await settle(lambda: len(routes.calls) == 1)
        routes.reject(0, NetworkError("provider down"))
        return await task

    with pytest.raises(NetworkError):
        asyncio.run(run())


def test_latest_route_request_wins():
    routes = ManualRouteService()
    controller, renderer = _controller(routes=routes)

    async def run():
        await _activate_manual(controller, routes)
        first = asyncio.ensure_future(controller.refresh_route(TravelMode.CAR))
        second = asyncio.ensure_future(controller.refresh_route(TravelMode.BIKE))
        await settle(lambda: len(routes.calls) == 3)
        routes.resolve(2, ROUTE_B)
        routes.resolve(1, ROUTE_A)
        return await first, await second

    first, second = asyncio.run(run())

    assert first is None
    assert second is ROUTE_B
    assert routes.calls[2]["mode"] == TravelMode.BIKE
    assert controller.route is ROUTE_B
    assert renderer.state.route is ROUTE_B


def test_stale_route_failure_is_ignored():
    routes = ManualRouteService()
    controller, _ = _controller(routes=routes)

    async def run():
        await _activate_manual(controller, routes)
        first = asyncio.ensure_future(controller.refresh_route())
        second = asyncio.ensure_future(controller.refresh_route())
        await settle(lambda: len(routes.calls) == 3)
        routes.reject(1, NetworkError("late failure"))
        routes.resolve(2, ROUTE_B)
        return await first, await second

    assert asyncio.run(run()) == (None, ROUTE_B)


def test_stop_tracking_discards_in_flight_route():
    routes = ManualRouteService()
    controller, renderer = _controller(routes=routes)

    async def run():
        await _activate_manual(controller, routes)
        pending = asyncio.ensure_future(controller.refresh_route(TravelMode.CAR))
        await settle(lambda: len(routes.calls) == 2)
        revision = renderer.state.revision
        controller.stop_tracking()
        result = await pending
        return result, revision

    result, revision = asyncio.run(run())
    assert result is None
    assert controller.route is ROUTE_A
    assert renderer.state.route is ROUTE_A
    assert renderer.state.revision == revision


def test_tracking_forwards_samples_to_renderer_and_sink():
    provider = FakeLocationProvider(position=COURIER)
    routes = ManualRouteService()
    sink = RecordingSink()
    controller, renderer = _controller(provider=provider, routes=routes, sink=sink)
    asyncio.run(_activate_manual(controller, routes))

    session = controller.start_tracking()
    provider.push(GeoPoint(10.7710, 106.6940))
    provider.push(GeoPoint(10.7720, 106.6930))

    assert controller.is_tracking
    assert renderer.state.courier == GeoPoint(10.7720, 106.6930)
    assert session.last_applied_sequence == renderer.last_applied_sequence
    assert [s.point for s in sink.samples] == [GeoPoint(10.7710, 106.6940), GeoPoint(10.7720, 106.6930)]

    controller.stop_tracking()
    provider.push(GeoPoint(10.7730, 106.6920), sub_index=0)
    assert renderer.state.courier == GeoPoint(10.7720, 106.6930)
    assert len(sink.samples) == 2
    assert not session.active


def test_sink_failure_does_not_stop_tracking():
    provider = FakeLocationProvider(position=COURIER)
    routes = ManualRouteService()
    controller, renderer = _controller(provider=provider, routes=routes, sink=RecordingSink(fail=True))
    asyncio.run(_activate_manual(controller, routes))

    controller.start_tracking()
    provider.push(GeoPoint(10.7710, 106.6940))
    provider.push(GeoPoint(10.7720, 106.6930))
    assert controller.is_tracking
    assert renderer.state.courier == GeoPoint(10.7720, 106.6930)


def test_restart_tracking_closes_previous_watch():
    provider = FakeLocationProvider(position=COURIER)
    routes = ManualRouteService()
    controller, _ = _controller(provider=provider, routes=routes)
    asyncio.run(_activate_manual(controller, routes))

    old = controller.start_tracking()
    new = controller.start_tracking()
    assert not old.active and new.active
    assert provider.unsubscribed == [1]


def test_watch_error_ends_session_and_notifies():
    provider = FakeLocationProvider(position=COURIER)
    routes = ManualRouteService()
    errors = []
    controller, _ = _controller(provider=provider, routes=routes, on_tracking_error=errors.append)
    asyncio.run(_activate_manual(controller, routes))

    controller.start_tracking()
    provider.fail(PositionUnavailable("gps lost"))

    assert not controller.is_tracking
    assert len(errors) == 1 and isinstance(errors[0], PositionUnavailable)
    assert provider.unsubscribed == [1]


def test_deactivate_resets_everything():
    provider = FakeLocationProvider(position=COURIER)
    routes = ManualRouteService()
    controller, renderer = _controller(provider=provider, routes=routes)
    asyncio.run(_activate_manual(controller, routes))
    controller.start_tracking()

    controller.deactivate()
    controller.deactivate()

    assert not controller.is_active and not controller.is_tracking
    assert controller.route is None
    assert renderer.state.route is None
    assert provider.unsubscribed == [1]
    with pytest.raises(RuntimeError):
        controller.start_tracking()


def test_latest_position_queue_keeps_newest():
    async def run():
        queue = LatestPositionQueue()
        provider = FakeLocationProvider(position=COURIER)
        routes = ManualRouteService()
        controller, _ = _controller(provider=provider, routes=routes, sink=queue)
        await _activate_manual(controller, routes)
        controller.start_tracking()
        provider.push(GeoPoint(10.7710, 106.6940))
        provider.push(GeoPoint(10.7720, 106.6930))
        return await queue.next()

    assert asyncio.run(run()).point == GeoPoint(10.7720, 106.6930)
