"""Refund requests.

At most one refund is requested per payment intent; the unique key on
``payment_intent_id`` makes a repeated request (webhook redelivery, client
retry) a no-op that returns the first request. The request is stored before
the provider is called, so a failed provider call still leaves a record for
manual follow-up.
"""

from datetime import UTC, datetime
from enum import Enum

import structlog
from protean import handle
from protean.fields import Boolean, DateTime, Identifier, Integer, String
from protean.utils.globals import current_domain
from sqlalchemy import String as SAString
from sqlalchemy import column, exists, select, table
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from payments.domain import payments
from payments.gateway import get_gateway
from shared.db import uow_session
from shared.errors import UnfulfillableOrder

logger = structlog.get_logger(__name__)

refund_requests = table("refund_requests", column("payment_intent_id", SAString))


class RefundStatus(Enum):
    REQUESTED = "requested"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@payments.aggregate(schema_name="refund_requests")
class RefundRequest:
    payment_intent_id = String(required=True, max_length=255)
    order_id = Identifier()
    amount_cents = Integer(min_value=0)  # None refunds the full amount
    reason = String(required=True, max_length=200)
    status = String(choices=RefundStatus, default=RefundStatus.REQUESTED.value)
    gateway_refund_id = String(max_length=255)
    failure_reason = String(max_length=500)
    created_at = DateTime()
    updated_at = DateTime()

    def settle(self, success: bool, gateway_refund_id: str | None, failure_reason: str | None) -> None:
        self.status = (RefundStatus.SUCCEEDED if success else RefundStatus.FAILED).value
        self.gateway_refund_id = gateway_refund_id
        self.failure_reason = failure_reason
        self.updated_at = datetime.now(UTC)


@payments.command(part_of="RefundRequest")
class RequestRefund:
    payment_intent_id = String(required=True, max_length=255)
    order_id = Identifier()
    amount_cents = Integer(min_value=0)
    reason = String(required=True, max_length=200)


@payments.command(part_of="RefundRequest")
class RecordRefundResult:
    refund_id = Identifier(required=True)
    success = Boolean(required=True)
    gateway_refund_id = String(max_length=255)
    failure_reason = String(max_length=500)


@payments.command_handler(part_of=RefundRequest)
class RefundHandler:
    @handle(RequestRefund)
    def request_refund(self, command):
        now = datetime.now(UTC)
        refund = RefundRequest(
            payment_intent_id=command.payment_intent_id,
            order_id=command.order_id,
            amount_cents=command.amount_cents,
            reason=command.reason,
            created_at=now,
            updated_at=now,
        )
        current_domain.repository_for(RefundRequest).add(refund)
        uow_session().flush()
        return str(refund.id)

    @handle(RecordRefundResult)
    def record_result(self, command):
        repo = current_domain.repository_for(RefundRequest)
        refund = repo.get(command.refund_id)
        refund.settle(command.success, command.gateway_refund_id, command.failure_reason)
        repo.add(refund)


def refund_requested(session: Session, payment_intent_id: str) -> bool:
    """Whether a refund exists for the intent, as seen by ``session``'s transaction."""
    return session.execute(
        select(exists().where(refund_requests.c.payment_intent_id == payment_intent_id))
    ).scalar()


def find_refund(payment_intent_id: str) -> RefundRequest | None:
    with payments.domain_context():
        repo = current_domain.repository_for(RefundRequest)
        found = repo._dao.query.filter(payment_intent_id=payment_intent_id).all().items
    return found[0] if found else None


def request_refund(
    payment_intent_id: str,
    reason: str,
    amount_cents: int | None = None,
    order_id: str | None = None,
) -> RefundRequest:
    with payments.domain_context():
        try:
            refund_id = current_domain.process(
                RequestRefund(
                    payment_intent_id=payment_intent_id,
                    order_id=order_id,
                    amount_cents=amount_cents,
                    reason=reason,
                ),
                asynchronous=False,
            )
        except IntegrityError:
            logger.info("refund_already_requested", payment_intent_id=payment_intent_id)
            return find_refund(payment_intent_id)

        result = get_gateway().create_refund(payment_intent_id, amount_cents, reason)
        current_domain.process(
            RecordRefundResult(
                refund_id=refund_id,
                success=result.success,
                gateway_refund_id=result.gateway_refund_id,
                failure_reason=result.failure_reason,
            ),
            asynchronous=False,
        )
        refund = current_domain.repository_for(RefundRequest).get(refund_id)

    if result.success:
        logger.info("refund_issued", payment_intent_id=payment_intent_id, refund_id=result.gateway_refund_id)
    else:
        logger.error(
            "refund_failed_manual_action_required",
            payment_intent_id=payment_intent_id,
            failure_reason=result.failure_reason,
        )
    return refund


def refund_unfulfillable(error: UnfulfillableOrder) -> RefundRequest:
    """Escalate a paid checkout that could not become an order."""
    logger.error(
        "order_unfulfillable",
        payment_intent_id=error.payment_intent_id,
        reason=error.reason,
        shortfalls=error.shortfalls,
    )
    return request_refund(error.payment_intent_id, reason=f"unfulfillable:{error.reason}")
