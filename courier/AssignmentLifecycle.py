from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from DeliveryErrors import ConflictError, ValidationError
from ShippingAssignment import AssignmentStatus, ShippingAssignment, allowed_targets, parse_amount
from ShippingLogClient import CourierSession, ShippingLogClient

logger = logging.getLogger(__name__)

REASON_TARGETS = frozenset({
    AssignmentStatus.FAILED,
    AssignmentStatus.RETURNED,
    AssignmentStatus.CANCELLED,
})


@dataclass(frozen=True)
class TransitionPayload:
    note: Optional[str] = None
    reason: Optional[str] = None  # sent as unexpectedCase
    is_cod_collected: Optional[bool] = None
    cod_amount: Any = None


def build_transition_body(assignment: ShippingAssignment,
                          target: AssignmentStatus,
                          payload: Optional[TransitionPayload] = None) -> Dict[str, Any]:
    """
    Check a transition locally and return the PATCH body for it.
    Raises ValidationError without touching the network or the cache.
    """
    payload = payload or TransitionPayload()
    try:
        target = AssignmentStatus(target)
    except ValueError as e:
        raise ValidationError(f"unknown status {target!r}") from e

    current = assignment.status
    if target == AssignmentStatus.ASSIGNED:
        raise ValidationError("ASSIGNED is reached through assign(), not a status update")
    if target not in allowed_targets(current):
        raise ValidationError(f"cannot move shipping log {assignment.id} from {current.value} to {target.value}")

    body: Dict[str, Any] = {"status": target.value}
    if payload.note:
        body["note"] = payload.note

    if payload.reason:
        if target not in REASON_TARGETS:
            raise ValidationError(f"a reason only applies to FAILED, RETURNED or CANCELLED, not {target.value}")
        body["unexpectedCase"] = payload.reason

    if target == AssignmentStatus.DELIVERED:
        if payload.is_cod_collected is None:
            raise ValidationError("DELIVERED requires is_cod_collected")
        body["isCodCollected"] = bool(payload.is_cod_collected)
        if payload.is_cod_collected:
            amount = parse_amount(payload.cod_amount, "cod_amount")
            if amount is None:
                raise ValidationError("cod_amount is required when COD was collected")
            if amount < 0:
                raise ValidationError(f"cod_amount must be >= 0, got {amount}")
            body["totalAmount"] = float(amount)
        elif payload.cod_amount is not None:
            raise ValidationError("cod_amount given but COD was not collected")
    elif payload.is_cod_collected is not None or payload.cod_amount is not None:
        raise ValidationError(f"COD fields only apply to DELIVERED, not {target.value}")

    return body


class AssignmentLifecycle:
    """
    Applies shipping-assignment commands against the backend and keeps the
    server-confirmed copies. Nothing in the cache changes until the backend answers.
    """

    def __init__(self, client: ShippingLogClient):
        self.client = client
        self._cache: Dict[str, ShippingAssignment] = {}

    def cached(self, assignment_id: str) -> Optional[ShippingAssignment]:
        return self._cache.get(assignment_id)

    def _store(self, assignment: ShippingAssignment) -> ShippingAssignment:
        self._cache[assignment.id] = assignment
        return assignment

    def _store_all(self, records: Iterable[Dict[str, Any]]) -> List[ShippingAssignment]:
        return [self._store(ShippingAssignment.from_api(r)) for r in records]

    # --- queries ---

    def refresh(self, session: CourierSession, assignment_id: str) -> ShippingAssignment:
        return self._store(ShippingAssignment.from_api(self.client.detail(session, assignment_id)))

    def available(self, session: CourierSession) -> List[ShippingAssignment]:
        return self._store_all(self.client.available(session))

    def my_deliveries(self, session: CourierSession) -> List[ShippingAssignment]:
        return self._store_all(self.client.my_deliveries(session))

    def for_order(self, session: CourierSession, order_id: str) -> List[ShippingAssignment]:
        return self._store_all(self.client.by_order(session, order_id))

    # --- commands ---

    def assign(self, session: CourierSession, assignment: ShippingAssignment) -> ShippingAssignment:
        if assignment.status != AssignmentStatus.PENDING:
            raise ValidationError(f"shipping log {assignment.id} is {assignment.status.value}, only PENDING can be assigned")

        confirmed = ShippingAssignment.from_api(self.client.assign_to_me(session, assignment.id))
        if session.courier_id and confirmed.courier_id and confirmed.courier_id != session.courier_id:
            raise ConflictError(f"shipping log {assignment.id} is already assigned to another courier")

        logger.info("shipping log %s assigned to %s", confirmed.id, confirmed.courier_id or "me")
        return self._store(confirmed)

    def transition(self,
                   session: CourierSession,
                   assignment: ShippingAssignment,
                   target: AssignmentStatus,
                   payload: Optional[TransitionPayload] = None) -> ShippingAssignment:
        body = build_transition_body(assignment, target, payload)

        confirmed = ShippingAssignment.from_api(self.client.update_status(session, assignment.id, body))
        if confirmed.id != assignment.id:
            raise ValidationError(f"backend answered for shipping log {confirmed.id}, expected {assignment.id}")
        if confirmed.status.value != body["status"]:
            # server is authoritative; keep its answer
            logger.warning("shipping log %s: requested %s, backend reports %s",
                           confirmed.id, body["status"], confirmed.status.value)

        logger.info("shipping log %s: %s -> %s", confirmed.id, assignment.status.value, confirmed.status.value)
        return self._store(confirmed)

    def mark_picked_up(self, session: CourierSession, assignment: ShippingAssignment) -> ShippingAssignment:
        return self.transition(session, assignment, AssignmentStatus.PICKED_UP)

    def mark_in_transit(self, session: CourierSession, assignment: ShippingAssignment) -> ShippingAssignment:
        return self.transition(session, assignment, AssignmentStatus.IN_TRANSIT)

    def start_delivery(self, session: CourierSession, assignment: ShippingAssignment) -> ShippingAssignment:
        return self.transition(session, assignment, AssignmentStatus.OUT_FOR_DELIVERY)

    def complete_delivery(self,
                          session: CourierSession,
                          assignment: ShippingAssignment,
                          is_cod_collected: bool,
                          cod_amount: Optional[Decimal] = None) -> ShippingAssignment:
        payload = TransitionPayload(is_cod_collected=is_cod_collected, cod_amount=cod_amount)
        return self.transition(session, assignment, AssignmentStatus.DELIVERED, payload)

    def fail_delivery(self, session: CourierSession, assignment: ShippingAssignment, reason: str) -> ShippingAssignment:
        return self.transition(session, assignment, AssignmentStatus.FAILED, TransitionPayload(reason=reason))

    def return_order(self, session: CourierSession, assignment: ShippingAssignment, reason: str) -> ShippingAssignment:
        return self.transition(session, assignment, AssignmentStatus.RETURNED, TransitionPayload(reason=reason))

    def cancel(self, session: CourierSession, assignment: ShippingAssignment,
               reason: Optional[str] = None) -> ShippingAssignment:
        return self.transition(session, assignment, AssignmentStatus.CANCELLED, TransitionPayload(reason=reason))
