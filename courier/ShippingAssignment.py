from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional

from DeliveryErrors import ValidationError


class AssignmentStatus(str, Enum):
    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    PICKED_UP = "PICKED_UP"
    IN_TRANSIT = "IN_TRANSIT"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"
    RETURNED = "RETURNED"
    CANCELLED = "CANCELLED"


TERMINAL_STATES: FrozenSet[AssignmentStatus] = frozenset({
    AssignmentStatus.DELIVERED,
    AssignmentStatus.FAILED,
    AssignmentStatus.RETURNED,
    AssignmentStatus.CANCELLED,
})

# source -> allowed targets; anything not listed is rejected
TRANSITIONS: Dict[AssignmentStatus, FrozenSet[AssignmentStatus]] = {
    AssignmentStatus.PENDING: frozenset({AssignmentStatus.ASSIGNED}),
    AssignmentStatus.ASSIGNED: frozenset({AssignmentStatus.PICKED_UP, AssignmentStatus.CANCELLED}),
    AssignmentStatus.PICKED_UP: frozenset({AssignmentStatus.IN_TRANSIT, AssignmentStatus.FAILED}),
    AssignmentStatus.IN_TRANSIT: frozenset({AssignmentStatus.OUT_FOR_DELIVERY, AssignmentStatus.FAILED}),
    AssignmentStatus.OUT_FOR_DELIVERY: frozenset({
        AssignmentStatus.DELIVERED,
        AssignmentStatus.FAILED,
        AssignmentStatus.RETURNED,
    }),
}


def allowed_targets(status: AssignmentStatus) -> FrozenSet[AssignmentStatus]:
    return TRANSITIONS.get(AssignmentStatus(status), frozenset())


def is_valid_transition(current: AssignmentStatus, target: AssignmentStatus) -> bool:
    return AssignmentStatus(target) in allowed_targets(current)


def is_terminal(status: AssignmentStatus) -> bool:
    return AssignmentStatus(status) in TERMINAL_STATES


def parse_amount(value: Any, field_name: str = "amount") -> Optional[Decimal]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a number, got {value!r}")
    try:
        amount = Decimal(str(value))
    except InvalidOperation as e:
        raise ValidationError(f"{field_name} must be a number, got {value!r}") from e
    if not amount.is_finite():
        raise ValidationError(f"{field_name} must be finite, got {value!r}")
    return amount


def parse_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as e:
        raise ValidationError(f"invalid timestamp {value!r}") from e


@dataclass(frozen=True)
class ShippingAssignment:
    """
    Client-side copy of a backend shipping log.
    Only replaced wholesale by a server-confirmed record, never edited in place.
    """
    id: str
    order_id: str
    status: AssignmentStatus
    courier_id: Optional[str] = None
    is_cod_collected: bool = False
    cod_amount: Optional[Decimal] = None
    failure_reason: Optional[str] = None
    note: Optional[str] = None
    shipping_fee: Optional[Decimal] = None
    shipping_address: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    returned_at: Optional[datetime] = None
    cod_collected_at: Optional[datetime] = None

    def __post_init__(self):
        object.__setattr__(self, "status", AssignmentStatus(self.status))
        if self.cod_amount is not None:
            if self.status != AssignmentStatus.DELIVERED or not self.is_cod_collected:
                raise ValidationError(
                    f"cod_amount only applies to a DELIVERED assignment with COD collected "
                    f"(status={self.status.value}, is_cod_collected={self.is_cod_collected})"
                )
            if self.cod_amount < 0:
                raise ValidationError(f"cod_amount must be >= 0, got {self.cod_amount}")
        elif self.status == AssignmentStatus.DELIVERED and self.is_cod_collected:
            raise ValidationError(f"shipping log {self.id} is DELIVERED with COD collected but has no cod_amount")

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)

    def can_transition_to(self, target: AssignmentStatus) -> bool:
        return is_valid_transition(self.status, target)

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> "ShippingAssignment":
        """Build from the backend's shipping-log JSON (camelCase keys)."""
        try:
            status = AssignmentStatus(data["status"])
            log_id = str(data["shippingLogId"])
            order_id = str(data["orderId"])
        except (KeyError, ValueError) as e:
            raise ValidationError(f"malformed shipping log: {e}") from e

        collected = bool(data.get("isCodCollected", False))
        cod_amount = None
        if status == AssignmentStatus.DELIVERED and collected:
            cod_amount = parse_amount(data.get("totalAmount"), "totalAmount")

        order = data.get("order") or {}
        return cls(
            id=log_id,
            order_id=order_id,
            status=status,
            courier_id=data.get("shippingStaffId"),
            is_cod_collected=collected,
            cod_amount=cod_amount,
            failure_reason=data.get("unexpectedCase"),
            note=data.get("note"),
            shipping_fee=parse_amount(data.get("shippingFee"), "shippingFee"),
            shipping_address=order.get("shippingAddress"),
            created_at=parse_datetime(data.get("createdAt")),
            updated_at=parse_datetime(data.get("updatedAt")),
            delivered_at=parse_datetime(data.get("deliveredDate")),
            returned_at=parse_datetime(data.get("returnedDate")),
            cod_collected_at=parse_datetime(data.get("codCollectDate")),
        )
