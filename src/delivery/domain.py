"""Delivery bounded context: delivery zones, pricing and address checks."""

import structlog
from protean.domain import Domain

delivery = Domain(name="delivery")

logger = structlog.get_logger(__name__)
