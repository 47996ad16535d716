from __future__ import annotations

import json
import logging
import os
import tempfile
import time
import webbrowser
from typing import Any, Dict, Optional

import folium

from MapRenderer import MapState

logger = logging.getLogger(__name__)

DEFAULT_ZOOM = 13
ROUTE_COLOR = "#42A5F5"


def state_to_json(state: MapState) -> Dict[str, Any]:
    def pt(p):
        return None if p is None else {"lat": p.latitude, "lon": p.longitude}

    route = state.route
    return {
        "revision": state.revision,
        "sequence": state.last_applied_sequence,
        "pickup": pt(state.pickup),
        "delivery": pt(state.delivery),
        "courier": pt(state.courier),
        "route": None if route is None else {
            "geometry_latlon": [p.as_latlon() for p in route.points],
            "distance_text": route.distance_text,
            "duration_text": route.duration_text,
        },
    }


def write_json_atomic(data, path: str, retries: int = 30, sleep_s: float = 0.01) -> None:
    dir_name = os.path.dirname(os.path.abspath(path)) or "."
    last_err = None

    for _ in range(retries):
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(prefix="map_", suffix=".json", dir=dir_name)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
                f.flush()
                os.fsync(f.fileno())

            os.replace(tmp_path, path)
            tmp_path = None
            return
        except PermissionError as e:
            # readers on some platforms briefly lock the target
            last_err = e
            time.sleep(sleep_s)
        finally:
            if tmp_path is not None:
                try:
                    os.remove(tmp_path)
                except OSError:
                    pass

    raise last_err


class FoliumEngine:
    """
    MapEngine that renders each state snapshot to a static HTML map.
    json_path: optional sidecar file with the same state for pages that poll it
    """

    def __init__(self, html_path: str = "map.html", json_path: Optional[str] = None, open_browser: bool = False):
        self.html_path = html_path
        self.json_path = json_path
        self.open_browser = open_browser
        self.last_map: Optional[folium.Map] = None
        self._opened = False

    def build_map(self, state: MapState) -> Optional[folium.Map]:
        cam = state.camera
        if cam.bounds is not None:
            location = cam.bounds.center().as_latlon()
        elif cam.center is not None:
            location = cam.center.as_latlon()
        elif state.pickup is not None:
            location = state.pickup.as_latlon()
        else:
            return None

        m = folium.Map(location=location, zoom_start=int(cam.zoom or DEFAULT_ZOOM))

        if state.pickup is not None:
            folium.Marker(state.pickup.as_latlon(), tooltip="Pickup", icon=folium.Icon(color="blue")).add_to(m)
        if state.delivery is not None:
            folium.Marker(state.delivery.as_latlon(), tooltip="Delivery", icon=folium.Icon(color="green")).add_to(m)
        if state.route is not None:
            tooltip = " / ".join(t for t in (state.route.distance_text, state.route.duration_text) if t) or None
            folium.PolyLine([p.as_latlon() for p in state.route.points],
                            color=ROUTE_COLOR, weight=4, opacity=0.8, tooltip=tooltip).add_to(m)
        if state.courier is not None:
            folium.CircleMarker(state.courier.as_latlon(), radius=8, color="#2196F3",
                                fill=True, fill_opacity=0.9, tooltip="Courier").add_to(m)

        if cam.bounds is not None:
            m.fit_bounds(cam.bounds.as_folium(), padding=(50, 50))
        return m

    def draw(self, state: MapState) -> None:
        m = self.build_map(state)
        if m is None:
            return
        m.save(self.html_path)
        self.last_map = m
        if self.json_path:
            write_json_atomic(state_to_json(state), self.json_path)
        logger.debug("map revision %d written to %s", state.revision, self.html_path)

        if self.open_browser and not self._opened:
            webbrowser.open(self.html_path)
            self._opened = True
