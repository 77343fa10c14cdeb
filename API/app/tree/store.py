"""Owner-scoped persistence for subjects, categories and topics.

Every query filters by ``user_id``. Read methods used for display skip
soft-deleted rows; the ``*_id_state`` methods deliberately include them so
that resubmitted ids can be revived instead of rejected.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.entities import Category, Subject, Topic


@dataclass(frozen=True)
class IdState:
    """Ids that exist under one subject, split by soft-delete marker."""

    active: frozenset[UUID]
    deleted: frozenset[UUID]


@dataclass
class CategoryWrite:
    id: UUID
    name: str
    depth: int
    parent_id: UUID | None
    display_order: int
    revive: bool = False


@dataclass
class TopicWrite:
    id: UUID
    category_id: UUID
    name: str
    display_order: int
    description: str | None = None
    difficulty: str | None = None
    topic_type: str | None = None
    revive: bool = False


def _split_states(rows) -> IdState:
    active, deleted = set(), set()
    for row_id, deleted_at in rows:
        (deleted if deleted_at is not None else active).add(row_id)
    return IdState(active=frozenset(active), deleted=frozenset(deleted))


class HierarchyStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    # ── reads ────────────────────────────────────────────────────────────────

    async def get_subject(self, subject_id: UUID, owner_id: UUID) -> Subject | None:
        stmt = (
            select(Subject)
            .where(Subject.id == subject_id, Subject.user_id == owner_id, Subject.deleted_at.is_(None))
            .execution_options(populate_existing=True)
        )
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def list_subjects(self, owner_id: UUID) -> list[Subject]:
        stmt = (
            select(Subject)
            .where(Subject.user_id == owner_id, Subject.deleted_at.is_(None))
            .order_by(Subject.display_order, Subject.created_at)
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def list_categories(self, subject_id: UUID, owner_id: UUID) -> list[Category]:
        stmt = (
            select(Category)
            .where(
                Category.subject_id == subject_id,
                Category.user_id == owner_id,
                Category.deleted_at.is_(None),
            )
            .order_by(Category.depth, Category.display_order)
            .execution_options(populate_existing=True)
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def list_topics(self, category_ids: list[UUID], owner_id: UUID) -> list[Topic]:
        if not category_ids:
            return []
        stmt = (
            select(Topic)
            .where(
                Topic.category_id.in_(category_ids),
                Topic.user_id == owner_id,
                Topic.deleted_at.is_(None),
            )
            .order_by(Topic.display_order)
            .execution_options(populate_existing=True)
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def category_id_state(self, subject_id: UUID, owner_id: UUID) -> IdState:
        stmt = select(Category.id, Category.deleted_at).where(
            Category.subject_id == subject_id,
            Category.user_id == owner_id,
        )
        return _split_states((await self.session.execute(stmt)).all())

    async def topic_id_state(self, subject_id: UUID, owner_id: UUID) -> IdState:
        stmt = (
            select(Topic.id, Topic.deleted_at)
            .join(Category, Topic.category_id == Category.id)
            .where(
                Category.subject_id == subject_id,
                Category.user_id == owner_id,
                Topic.user_id == owner_id,
            )
        )
        return _split_states((await self.session.execute(stmt)).all())

    async def add_subject(self, owner_id: UUID, name: str, display_order: int) -> UUID:
        """Stage a new empty subject; it commits with the first tree write that follows."""
        subject = Subject(user_id=owner_id, name=name, display_order=display_order, tree_version=0)
        self.session.add(subject)
        await self.session.flush()
        return subject.id

    # ── writes (called inside a TransactionRunner) ───────────────────────────

    async def bump_tree_version(self, subject_id: UUID, owner_id: UUID, expected: int | None) -> bool:
        """Increment the subject's tree version; with ``expected`` set, only when it still matches."""
        stmt = update(Subject).where(
            Subject.id == subject_id,
            Subject.user_id == owner_id,
            Subject.deleted_at.is_(None),
        )
        if expected is not None:
            stmt = stmt.where(Subject.tree_version == expected)
        result = await self.session.execute(
            stmt.values(tree_version=Subject.tree_version + 1).execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def insert_categories(
        self, owner_id: UUID, subject_id: UUID, rows: list[CategoryWrite], now: datetime
    ) -> None:
        if not rows:
            return
        await self.session.execute(
            insert(Category),
            [
                {
                    "id": row.id,
                    "user_id": owner_id,
                    "subject_id": subject_id,
                    "name": row.name,
                    "depth": row.depth,
                    "parent_id": row.parent_id,
                    "display_order": row.display_order,
                    "created_at": now,
                    "updated_at": now,
                    "deleted_at": None,
                }
                for row in rows
            ],
        )

    async def update_categories(self, owner_id: UUID, rows: list[CategoryWrite], now: datetime) -> None:
        # Full overwrite of mutable fields; clearing deleted_at revives soft-deleted rows.
        for row in rows:
            await self.session.execute(
                update(Category)
                .where(Category.id == row.id, Category.user_id == owner_id)
                .values(
                    name=row.name,
                    depth=row.depth,
                    parent_id=row.parent_id,
                    display_order=row.display_order,
                    updated_at=now,
                    deleted_at=None,
                )
                .execution_options(synchronize_session=False)
            )

    async def insert_topics(self, owner_id: UUID, rows: list[TopicWrite], now: datetime) -> None:
        if not rows:
            return
        await self.session.execute(
            insert(Topic),
            [
                {
                    "id": row.id,
                    "user_id": owner_id,
                    "category_id": row.category_id,
                    "name": row.name,
                    "description": row.description,
                    "difficulty": row.difficulty,
                    "topic_type": row.topic_type,
                    "display_order": row.display_order,
                    "created_at": now,
                    "updated_at": now,
                    "deleted_at": None,
                }
                for row in rows
            ],
        )

    async def update_topics(self, owner_id: UUID, rows: list[TopicWrite], now: datetime) -> None:
        for row in rows:
            await self.session.execute(
                update(Topic)
                .where(Topic.id == row.id, Topic.user_id == owner_id)
                .values(
                    category_id=row.category_id,
                    name=row.name,
                    description=row.description,
                    difficulty=row.difficulty,
                    topic_type=row.topic_type,
                    display_order=row.display_order,
                    updated_at=now,
                    deleted_at=None,
                )
                .execution_options(synchronize_session=False)
            )

    async def soft_delete_categories(self, owner_id: UUID, ids: list[UUID], now: datetime) -> int:
        if not ids:
            return 0
        result = await self.session.execute(
            update(Category)
            .where(Category.id.in_(ids), Category.user_id == owner_id, Category.deleted_at.is_(None))
            .values(deleted_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def soft_delete_topics(self, owner_id: UUID, ids: list[UUID], now: datetime) -> int:
        if not ids:
            return 0
        result = await self.session.execute(
            update(Topic)
            .where(Topic.id.in_(ids), Topic.user_id == owner_id, Topic.deleted_at.is_(None))
            .values(deleted_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
