from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.tree.errors import TransactionFailedError
from app.tree.store import HierarchyStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TransactionRunner(ABC):
    """Runs a batch of store writes atomically: all of them commit, or none do."""

    @abstractmethod
    async def run(self, fn: Callable[[HierarchyStore], Awaitable[T]]) -> T:
        raise NotImplementedError


class SessionTransactionRunner(TransactionRunner):
    """Commits the request session after ``fn`` succeeds and rolls it back otherwise.

    Storage errors and timeouts become ``TransactionFailedError``; any other
    exception raised by ``fn`` (a version conflict, for instance) is re-raised
    unchanged after the rollback.
    """

    def __init__(self, session: AsyncSession, timeout_seconds: float | None = None):
        self.session = session
        self.timeout_seconds = timeout_seconds

    async def run(self, fn: Callable[[HierarchyStore], Awaitable[T]]) -> T:
        store = HierarchyStore(self.session)
        try:
            result = await asyncio.wait_for(fn(store), timeout=self.timeout_seconds)
            await self.session.commit()
        except (SQLAlchemyError, asyncio.TimeoutError) as exc:
            await self.session.rollback()
            logger.error("Transaction rolled back: %s", type(exc).__name__, exc_info=exc)
            raise TransactionFailedError() from exc
        except Exception:
            await self.session.rollback()
            raise
        return result
