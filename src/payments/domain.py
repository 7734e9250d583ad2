"""Payments bounded context: refunds and provider webhook reconciliation."""

import structlog
from protean.domain import Domain

payments = Domain(name="payments")

logger = structlog.get_logger(__name__)
