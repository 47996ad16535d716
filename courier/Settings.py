from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

BACKEND_URL = "http://localhost:3000"
GOONG_DIRECTIONS_URL = "https://rsapi.goong.io"
OSRM_URL = "http://localhost:5000"


def _read_key_file(path: str) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read().strip()


@dataclass(frozen=True)
class Settings:
    backend_url: str = BACKEND_URL
    routing_provider: str = "goong"  # "goong" | "osrm"
    goong_url: str = GOONG_DIRECTIONS_URL
    goong_api_key: str = ""
    osrm_url: str = OSRM_URL
    position_report_url: Optional[str] = None
    http_timeout_s: float = 30.0
    position_timeout_s: float = 15.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env

        key = env.get("GOONG_API_KEY", "")
        key_file = env.get("GOONG_API_KEY_FILE")
        if not key and key_file:
            key = _read_key_file(key_file)

        provider = env.get("ROUTING_PROVIDER", "goong").lower()
        if provider not in ("goong", "osrm"):
            raise ValueError(f"Unknown routing provider: {provider}")

        return cls(
            backend_url=env.get("BACKEND_URL", BACKEND_URL).rstrip("/"),
            routing_provider=provider,
            goong_url=env.get("GOONG_DIRECTIONS_URL", GOONG_DIRECTIONS_URL).rstrip("/"),
            goong_api_key=key,
            osrm_url=env.get("OSRM_URL", OSRM_URL).rstrip("/"),
            position_report_url=env.get("POSITION_REPORT_URL") or None,
            http_timeout_s=float(env.get("HTTP_TIMEOUT_S", "30")),
            position_timeout_s=float(env.get("POSITION_TIMEOUT_S", "15")),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.debug("logging configured at %s", settings.log_level)
