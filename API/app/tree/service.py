"""Request-scoped wiring of the tree services around one database session."""
from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.settings import settings
from app.tree.csv_import import CSVTreeImporter
from app.tree.query import TreeQueryService
from app.tree.reconciler import TreeReconciler
from app.tree.store import HierarchyStore
from app.tree.transaction import SessionTransactionRunner


@dataclass
class TreeServices:
    store: HierarchyStore
    query: TreeQueryService
    reconciler: TreeReconciler
    importer: CSVTreeImporter


def build_tree_services(session: AsyncSession) -> TreeServices:
    store = HierarchyStore(session)
    query = TreeQueryService(store)
    runner = SessionTransactionRunner(session, timeout_seconds=settings.tree_write_timeout_seconds)
    reconciler = TreeReconciler(store, runner, query)
    return TreeServices(
        store=store,
        query=query,
        reconciler=reconciler,
        importer=CSVTreeImporter(store, reconciler),
    )
