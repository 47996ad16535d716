import asyncio
import logging

from DeliveryMapController import DeliveryMapController
from FoliumEngine import FoliumEngine
from GeoMath import GeoPoint
from LocationTracker import LocationTracker
from MapRenderer import MapRenderer
from PositionReporter import HttpPositionReporter, LatestPositionQueue
from RouteBase import TravelMode
from RouteService import RouteService
from RoutingProviders import build_provider
from Settings import Settings, configure_logging
from SimulatedLocation import SimulatedCourier, SimulatedLocationProvider

logger = logging.getLogger("main")

# Coordinates: (lat, lon)
pickup = GeoPoint(10.7769, 106.7009)    # District 1
delivery = GeoPoint(10.7626, 106.6826)  # District 5


async def run(settings: Settings) -> None:
    routes = RouteService(build_provider(settings), timeout_s=settings.http_timeout_s)

    # drive a simulated courier along the provider's own route
    sim_route = await routes.compute_route(pickup, delivery, TravelMode.BIKE)
    courier = SimulatedCourier(route=sim_route, speed_mps=8.0, time_scale=20.0)
    provider = SimulatedLocationProvider(courier, interval_s=0.5)

    if settings.position_report_url:
        sink = HttpPositionReporter(settings.position_report_url)
    else:
        sink = LatestPositionQueue()

    engine = FoliumEngine("map.html", json_path="positions.json", open_browser=True)
    controller = DeliveryMapController(
        tracker=LocationTracker(provider, timeout_s=settings.position_timeout_s),
        routes=routes,
        renderer=MapRenderer(engine),
        sink=sink,
    )

    route = await controller.activate(pickup, delivery, TravelMode.BIKE)
    logger.info("route: %s, %s", route.distance_text or route.distance_meters,
                route.duration_text or route.duration_seconds)

    controller.start_tracking()
    while not courier.done:
        await asyncio.sleep(0.5)
    controller.center_on_current_position()
    controller.deactivate()

    if isinstance(sink, HttpPositionReporter):
        await sink.aclose()


if __name__ == "__main__":
    settings = Settings.from_env()
    configure_logging(settings)
    asyncio.run(run(settings))
