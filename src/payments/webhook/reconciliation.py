"""Reconciliation of provider webhook events with local orders.

Each verified event is recorded as a PaymentEvent under its provider event
id, which is unique: a redelivered event is recognised and ignored. The
event's effect on the order runs first, as its own unit of work in the
ordering context, and the record is written after it. Every effect is
idempotent (a second failure finds the order already cancelled, a second
dispute finds its event id in the order log), so a delivery that dies
between the two steps is completed by the provider's retry without doubling
anything.

Outcomes:
    payment_intent.succeeded       → order materialized (or refund requested)
    payment_intent.payment_failed  → unpaid order cancelled, stock released
    payment_intent.canceled        → same, with its own event kind
    charge.dispute.created         → dispute appended to the order's log
    any failure on a PAID order    → recorded as an anomaly, order untouched
"""

import json
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog
from protean import handle
from protean.fields import Boolean, DateTime, Identifier, String, Text
from protean.utils.globals import current_domain
from sqlalchemy.exc import IntegrityError

from ordering.order.lifecycle import ANOMALY, fail_order_payment, record_dispute
from ordering.order.materialization import materialize
from ordering.order.order import OrderEventKind
from payments.domain import payments
from payments.gateway.port import (
    DISPUTE_CREATED,
    PAYMENT_CANCELED,
    PAYMENT_FAILED,
    PAYMENT_SUCCEEDED,
    ProviderEvent,
)
from payments.refund import refund_unfulfillable
from shared.db import uow_session
from shared.errors import UnfulfillableOrder

logger = structlog.get_logger(__name__)

_FAILURE_KINDS = {
    PAYMENT_FAILED: OrderEventKind.PAYMENT_FAILED,
    PAYMENT_CANCELED: OrderEventKind.PAYMENT_CANCELED,
}


@payments.aggregate(schema_name="payment_events")
class PaymentEvent:
    """Audit record of every verified provider event."""

    provider_event_id = String(required=True, max_length=255)
    event_type = String(required=True, max_length=100)
    payment_intent_id = String(max_length=255)
    order_id = Identifier()
    outcome = String(required=True, max_length=40)
    anomaly = Boolean(default=False)
    details = Text()  # JSON object
    received_at = DateTime()

    @property
    def detail_map(self) -> dict:
        return json.loads(self.details) if self.details else {}


@payments.command(part_of="PaymentEvent")
class RecordPaymentEvent:
    provider_event_id = String(required=True, max_length=255)
    event_type = String(required=True, max_length=100)
    payment_intent_id = String(max_length=255)
    order_id = Identifier()
    outcome = String(required=True, max_length=40)
    anomaly = Boolean(default=False)
    details = Text()


@payments.command_handler(part_of=PaymentEvent)
class PaymentEventHandler:
    @handle(RecordPaymentEvent)
    def record_event(self, command):
        event = PaymentEvent(
            provider_event_id=command.provider_event_id,
            event_type=command.event_type,
            payment_intent_id=command.payment_intent_id,
            order_id=command.order_id,
            outcome=command.outcome,
            anomaly=command.anomaly,
            details=command.details,
            received_at=datetime.now(UTC),
        )
        current_domain.repository_for(PaymentEvent).add(event)
        uow_session().flush()
        return str(event.id)


@dataclass(frozen=True)
class ReconciliationResult:
    event_id: str
    event_type: str
    outcome: str
    order_id: str | None = None
    anomaly: bool = False
    duplicate: bool = False


def _duplicate(event: ProviderEvent) -> ReconciliationResult:
    logger.info("webhook_event_duplicate", event_id=event.id, event_type=event.type)
    return ReconciliationResult(event_id=event.id, event_type=event.type, outcome="duplicate", duplicate=True)


def already_processed(event_id: str) -> bool:
    with payments.domain_context():
        repo = current_domain.repository_for(PaymentEvent)
        return bool(repo._dao.query.filter(provider_event_id=event_id).all().items)


def payment_events_for(payment_intent_id: str) -> list[PaymentEvent]:
    with payments.domain_context():
        repo = current_domain.repository_for(PaymentEvent)
        return repo._dao.query.filter(payment_intent_id=payment_intent_id).order_by("received_at").all().items


def handle_event(event: ProviderEvent) -> ReconciliationResult:
    if already_processed(event.id):
        return _duplicate(event)

    logger.info(
        "webhook_event_received",
        event_id=event.id,
        event_type=event.type,
        payment_intent_id=event.payment_intent_id,
    )
    if event.type == PAYMENT_SUCCEEDED:
        return _on_succeeded(event)
    if event.type in _FAILURE_KINDS:
        return _on_payment_failure(event)
    if event.type == DISPUTE_CREATED:
        return _on_dispute(event)
    return _record(event, outcome="ignored")


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------
def _record(
    event: ProviderEvent,
    outcome: str,
    order_id: str | None = None,
    anomaly: bool = False,
    details: dict | None = None,
) -> ReconciliationResult:
    command = RecordPaymentEvent(
        provider_event_id=event.id,
        event_type=event.type,
        payment_intent_id=event.payment_intent_id,
        order_id=order_id,
        outcome=outcome,
        anomaly=anomaly,
        details=json.dumps(details or {}),
    )
    try:
        with payments.domain_context():
            current_domain.process(command, asynchronous=False)
    except IntegrityError:
        return _duplicate(event)
    return ReconciliationResult(
        event_id=event.id,
        event_type=event.type,
        outcome=outcome,
        order_id=order_id,
        anomaly=anomaly,
    )


def _on_succeeded(event: ProviderEvent) -> ReconciliationResult:
    try:
        order = materialize(event.payment_intent_id)
    except UnfulfillableOrder as error:
        refund = refund_unfulfillable(error)
        return _record(
            event,
            outcome="refund_requested",
            details={"reason": error.reason, "shortfalls": error.shortfalls, "refund_status": refund.status},
        )
    return _record(event, outcome="order_confirmed", order_id=str(order.id))


def _on_payment_failure(event: ProviderEvent) -> ReconciliationResult:
    details = {"failure_code": event.failure_code, "failure_message": event.failure_message}
    outcome, order_id = (None, None)
    if event.payment_intent_id:
        outcome, order_id = fail_order_payment(
            event.payment_intent_id,
            _FAILURE_KINDS[event.type],
            {**details, "event_id": event.id},
        )
    if outcome is None:
        logger.info("payment_failure_without_order", event_id=event.id, payment_intent_id=event.payment_intent_id)
        outcome = "recorded"
    return _record(event, outcome=outcome, order_id=order_id, anomaly=outcome == ANOMALY, details=details)


def _on_dispute(event: ProviderEvent) -> ReconciliationResult:
    details = {
        "dispute_id": event.data.get("id"),
        "reason": event.data.get("reason"),
        "amount": event.data.get("amount"),
    }
    order_id = record_dispute(event.payment_intent_id, event.id, details) if event.payment_intent_id else None
    logger.warning("payment_disputed", event_id=event.id, payment_intent_id=event.payment_intent_id)
    return _record(
        event,
        outcome="dispute_recorded" if order_id else "recorded",
        order_id=order_id,
        details=details,
    )
