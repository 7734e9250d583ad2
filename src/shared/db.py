"""Database schema helpers and row-level primitives shared by the contexts.

Every context keeps its aggregates in its own Protean domain, and all four
domains point at the same database (see each ``domain.toml``). Two things
sit below the repositories:

* unique keys: created by ``setup_db`` after the domain's tables, so a
  concurrent duplicate fails on insert instead of on a read-then-write check;
* statements that must share the running unit of work's transaction
  (``uow_session``): stock ledger updates and row claims.
"""

from datetime import UTC, datetime

from protean.domain import Domain
from protean.exceptions import IncorrectUsageError
from protean.utils.globals import current_uow
from sqlalchemy import DateTime, Index, String, column, create_engine, table, update
from sqlalchemy.orm import Session

DEFAULT_PROVIDER = "default"

# table -> column groups that must be unique
UNIQUE_KEYS = {
    "baskets": (("customer_id",), ("session_id",)),
    "addresses": (("customer_id", "street", "number"),),
    "checkout_snapshots": (("payment_intent_id",),),
    "orders": (("payment_intent_id",), ("order_number",)),
    "refund_requests": (("payment_intent_id",),),
    "payment_events": (("provider_event_id",),),
}


def utcnow() -> datetime:
    return datetime.now(UTC)


def _create_unique_keys(provider, engine) -> None:
    for table_name, groups in UNIQUE_KEYS.items():
        model_table = provider._metadata.tables.get(table_name)
        if model_table is None:
            continue
        for columns in groups:
            name = f"uq_{table_name}_{'_'.join(columns)}"
            index = next((existing for existing in model_table.indexes if existing.name == name), None)
            if index is None:
                index = Index(name, *(model_table.c[col] for col in columns), unique=True)
            index.create(engine, checkfirst=True)


def setup_db(domain: Domain):
    """Setup database schema"""
    with domain.domain_context():
        for _, provider in domain.providers.items():
            if provider.conn_info["provider"] in ("sqlite", "postgresql"):
                engine = create_engine(provider.conn_info["database_uri"])

                # Accessing ``_dao`` registers each entity's model with SQLAlchemy
                for _, aggregate_record in domain.registry.aggregates.items():
                    if aggregate_record.cls.meta_.provider == provider.name:
                        domain.repository_for(aggregate_record.cls)._dao  # noqa: B018

                for _, entity_record in domain.registry.entities.items():
                    if entity_record.cls.meta_.provider == provider.name:
                        domain.repository_for(entity_record.cls)._dao  # noqa: B018

                provider._metadata.create_all(engine)
                _create_unique_keys(provider, engine)
                engine.dispose()


def drop_db(domain: Domain):
    """Drop database schema"""
    with domain.domain_context():
        for _, provider in domain.providers.items():
            if provider.conn_info["provider"] in ("sqlite", "postgresql"):
                engine = create_engine(provider.conn_info["database_uri"])
                provider._metadata.drop_all(engine)
                engine.dispose()


def uow_session(provider_name: str = DEFAULT_PROVIDER) -> Session:
    """The SQLAlchemy session of the unit of work in progress."""
    if not current_uow:
        raise IncorrectUsageError("Row-level statements must run inside a unit of work")
    return current_uow.get_session(provider_name)


def claim_row(session: Session, table_name: str, row_id: str) -> bool:
    """Write-lock one row for the rest of the transaction.

    Run it before loading the aggregate: a concurrent writer of the same row
    waits here until the first one commits, then reads the committed state.
    Returns False when no such row exists.
    """
    claimed = table(table_name, column("id", String), column("updated_at", DateTime(timezone=True)))
    result = session.execute(update(claimed).where(claimed.c.id == row_id).values(updated_at=utcnow()))
    return result.rowcount == 1
