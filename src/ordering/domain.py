"""Ordering bounded context: baskets, checkout and the order lifecycle.

Turns a basket into a payment intent, a succeeded payment into exactly one
order, and moves orders along their lifecycle.
"""

import structlog
from protean.domain import Domain

ordering = Domain(name="ordering")

logger = structlog.get_logger(__name__)
