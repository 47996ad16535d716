from __future__ import annotations

from typing import Optional


class DeliveryError(Exception):
    """
    Base for every error the delivery core raises.
    kind: short machine-readable tag (e.g. "network", "decode")
    detail: human-readable text for logs / the caller's message
    """
    kind = "delivery"

    def __init__(self, detail: str, *, status_code: Optional[int] = None):
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"{self.kind}: {self.detail} (HTTP {self.status_code})"
        return f"{self.kind}: {self.detail}"


class PermissionDenied(DeliveryError):
    kind = "permission_denied"


class PositionUnavailable(DeliveryError):
    kind = "position_unavailable"


class NetworkError(DeliveryError):
    kind = "network"


class DecodeError(DeliveryError):
    kind = "decode"


class ValidationError(DeliveryError):
    kind = "validation"


class ConflictError(DeliveryError):
    kind = "conflict"
