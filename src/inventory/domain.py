"""Inventory bounded context: sellable products and their stock counters."""

import structlog
from protean.domain import Domain

inventory = Domain(name="inventory")

logger = structlog.get_logger(__name__)
