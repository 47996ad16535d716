from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from DeliveryErrors import ConflictError, DeliveryError, NetworkError, ValidationError

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1/shipping-logs"


@dataclass(frozen=True)
class CourierSession:
    """Auth context handed to every backend call; nothing is kept on the client."""
    access_token: str
    courier_id: Optional[str] = None

    def headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.access_token}",
        }


def _error_message(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200] or resp.reason or ""
    if isinstance(body, dict):
        msg = body.get("message")
        if isinstance(msg, list):
            return "; ".join(str(m) for m in msg)
        if msg:
            return str(msg)
    return str(body)[:200]


def classify_http_error(resp: requests.Response) -> DeliveryError:
    status = resp.status_code
    msg = _error_message(resp)
    if status == 409:
        return ConflictError(msg or "shipping log was changed by someone else", status_code=status)
    if status in (400, 422):
        return ValidationError(msg or "request rejected by backend", status_code=status)
    return NetworkError(msg or "backend request failed", status_code=status)


class ShippingLogClient:
    """REST client for the backend shipping-log endpoints."""

    def __init__(self, base_url: str, http: Optional[requests.Session] = None, timeout_s: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.http = http or requests.Session()
        self.timeout_s = timeout_s

    def _request(self, method: str, path: str, session: CourierSession, json: Optional[dict] = None) -> Any:
        url = f"{self.base_url}{API_PREFIX}{path}"
        try:
            r = self.http.request(method, url, json=json, headers=session.headers(), timeout=self.timeout_s)
            r.raise_for_status()
        except requests.HTTPError as e:
            err = classify_http_error(e.response)
            logger.warning("%s %s -> %s", method, url, err)
            raise err from e
        except requests.Timeout as e:
            raise NetworkError(f"{method} {url} timed out") from e
        except requests.RequestException as e:
            raise NetworkError(f"{method} {url} failed: {e}") from e

        try:
            envelope = r.json()
        except ValueError as e:
            raise NetworkError(f"{method} {url} returned invalid JSON") from e
        if not isinstance(envelope, dict) or "data" not in envelope:
            raise NetworkError(f"{method} {url} returned no data envelope")
        return envelope["data"]

    def available(self, session: CourierSession) -> List[Dict[str, Any]]:
        return self._request("GET", "/available", session)

    def my_deliveries(self, session: CourierSession) -> List[Dict[str, Any]]:
        return self._request("GET", "/my-deliveries", session)

    def detail(self, session: CourierSession, shipping_log_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/{shipping_log_id}", session)

    def by_order(self, session: CourierSession, order_id: str) -> List[Dict[str, Any]]:
        return self._request("GET", f"/order/{order_id}", session)

    def assign_to_me(self, session: CourierSession, shipping_log_id: str) -> Dict[str, Any]:
        return self._request("POST", f"/{shipping_log_id}/assign-to-me", session, json={})

    def update_status(self, session: CourierSession, shipping_log_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        logger.info("PATCH shipping log %s -> %s", shipping_log_id, body.get("status"))
        return self._request("PATCH", f"/{shipping_log_id}", session, json=body)
