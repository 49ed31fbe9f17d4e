"""
Database module.
Contains database connection, models, and repository implementations.
"""

from quantjobs.db.connection import (
    close_db,
    create_engine,
    create_schema,
    create_session_factory,
    get_engine,
    init_db,
)
from quantjobs.db.ledger import CreditLedgerRepository
from quantjobs.db.models import Base, CreditTransaction, Job, Subscription
from quantjobs.db.repository import JobRepository

__all__ = [
    "create_engine",
    "get_engine",
    "init_db",
    "close_db",
    "create_schema",
    "create_session_factory",
    "Base",
    "Job",
    "Subscription",
    "CreditTransaction",
    "JobRepository",
    "CreditLedgerRepository",
]
