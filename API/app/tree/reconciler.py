"""
Tree reconciliation: turn a client's complete desired tree into one atomic write.

The submitted tree is flattened into id-addressed category and topic lists
(depth and parent come from nesting position), every submitted id is
classified against the subject's existing rows, structural references are
checked against the submission's own id space, and only then is a write plan
built and executed inside a single TransactionRunner call:

    categories, shallowest depth first (inserts, then updates/revivals)
    topics (inserts, then updates/revivals)
    soft-deletion of every active row the submission no longer mentions

Nothing is hard-deleted. A soft-deleted row stays addressable by id and is
revived, with all mutable fields overwritten, when a later submission names it.
"""
from __future__ import annotations

import time
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable
from uuid import UUID

from app.core.logging import DOMAIN_TREE, get_domain_logger
from app.core.tree_metrics import record_tree_write
from app.schemas.tree import ChangeSummary, NodeChanges, SubjectTree, SubmittedCategory, SubmittedTree
from app.tree.errors import InvalidIdError, SubjectNotFoundError, TreeConflictError, TreeError
from app.tree.identity import Classification, IdentityResolver, Resolution, parse_node_id
from app.tree.query import TreeQueryService
from app.tree.store import CategoryWrite, HierarchyStore, TopicWrite
from app.tree.transaction import TransactionRunner

logger = get_domain_logger(__name__, DOMAIN_TREE)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class FlatCategory:
    id: UUID
    submitted_id: str | None
    name: str
    depth: int
    parent_id: UUID | None
    display_order: int


@dataclass
class FlatTopic:
    id: UUID
    submitted_id: str | None
    category_id: UUID
    name: str
    display_order: int
    description: str | None = None
    difficulty: str | None = None
    topic_type: str | None = None


@dataclass
class FlatSubmission:
    """Arena form of a submission: nodes reference each other by id only.

    New nodes carry ``submitted_id=None`` and a freshly generated ``id``;
    existing nodes carry the parsed form of their submitted id.
    """

    categories: list[FlatCategory] = field(default_factory=list)
    topics: list[FlatTopic] = field(default_factory=list)


@dataclass
class ReconcilePlan:
    category_inserts: list[CategoryWrite] = field(default_factory=list)
    category_updates: list[CategoryWrite] = field(default_factory=list)
    topic_inserts: list[TopicWrite] = field(default_factory=list)
    topic_updates: list[TopicWrite] = field(default_factory=list)
    category_deletes: list[UUID] = field(default_factory=list)
    topic_deletes: list[UUID] = field(default_factory=list)

    def category_levels(self) -> list[tuple[int, list[CategoryWrite], list[CategoryWrite]]]:
        """Group category writes by depth, shallowest first, so parents exist before children."""
        depths = sorted({w.depth for w in self.category_inserts} | {w.depth for w in self.category_updates})
        return [
            (
                depth,
                [w for w in self.category_inserts if w.depth == depth],
                [w for w in self.category_updates if w.depth == depth],
            )
            for depth in depths
        ]

    def summary(self) -> ChangeSummary:
        return ChangeSummary(
            categories=NodeChanges(
                inserted=len(self.category_inserts),
                updated=len(self.category_updates),
                revived=sum(1 for w in self.category_updates if w.revive),
                deleted=len(self.category_deletes),
            ),
            topics=NodeChanges(
                inserted=len(self.topic_inserts),
                updated=len(self.topic_updates),
                revived=sum(1 for w in self.topic_updates if w.revive),
                deleted=len(self.topic_deletes),
            ),
        )


@dataclass
class ReconcileOutcome:
    tree: SubjectTree
    plan: ReconcilePlan

    @property
    def changes(self) -> ChangeSummary:
        return self.plan.summary()


def flatten_tree(tree: SubmittedTree, new_id: Callable[[], UUID] = uuid.uuid4) -> FlatSubmission:
    """Walk the nested submission depth-first; array position is the default display order."""
    flat = FlatSubmission()

    def node_id(raw: str | None) -> UUID:
        # Malformed ids get a throwaway placeholder; classification rejects them before any write.
        return parse_node_id(raw) or new_id()

    def walk(categories: list[SubmittedCategory], depth: int, parent_id: UUID | None) -> None:
        for position, cat in enumerate(categories):
            cat_id = node_id(cat.id)
            flat.categories.append(
                FlatCategory(
                    id=cat_id,
                    submitted_id=cat.id,
                    name=cat.name,
                    depth=depth,
                    parent_id=parent_id,
                    display_order=cat.display_order if cat.display_order is not None else position,
                )
            )
            for topic_position, topic in enumerate(cat.topics):
                flat.topics.append(
                    FlatTopic(
                        id=node_id(topic.id),
                        submitted_id=topic.id,
                        category_id=cat_id,
                        name=topic.name,
                        display_order=topic.display_order if topic.display_order is not None else topic_position,
                        description=topic.description,
                        difficulty=topic.difficulty,
                        topic_type=topic.topic_type,
                    )
                )
            walk(cat.subcategories, depth + 1, cat_id)

    walk(tree.categories, 0, None)
    return flat


def check_duplicates(flat: FlatSubmission) -> None:
    """Ids are compared in parsed form, so case or hyphenation variants of one UUID collide."""
    spellings: dict[UUID, list[str]] = defaultdict(list)
    for node in [*flat.categories, *flat.topics]:
        if node.submitted_id is not None:
            spellings[node.id].append(node.submitted_id)
    duplicated = [raw for raws in spellings.values() if len(raws) > 1 for raw in raws]
    if duplicated:
        logger.warning("Rejected duplicated id(s): %s", duplicated)
        raise InvalidIdError(duplicated, reason="id appears more than once in the submission")


def check_structure(flat: FlatSubmission) -> None:
    """Every parent and every topic's category must be a category of this same submission."""
    depth_by_id = {c.id: c.depth for c in flat.categories}
    bad_parents = [
        c.submitted_id or str(c.id)
        for c in flat.categories
        if (c.depth == 0 and c.parent_id is not None)
        or (c.depth > 0 and depth_by_id.get(c.parent_id) != c.depth - 1)
    ]
    if bad_parents:
        logger.warning("Rejected %s category node(s) with a parent outside the submission", len(bad_parents))
        raise InvalidIdError(bad_parents, reason="parent category is not part of the submission")
    orphans = [t.submitted_id or str(t.id) for t in flat.topics if t.category_id not in depth_by_id]
    if orphans:
        logger.warning("Rejected %s orphaned topic node(s)", len(orphans))
        raise InvalidIdError(orphans, reason="topic references a category outside the submission")


def build_plan(flat: FlatSubmission, resolution: Resolution) -> ReconcilePlan:
    plan = ReconcilePlan()

    for cat in sorted(flat.categories, key=lambda c: c.depth):
        cls = resolution.categories.of(cat.submitted_id)
        write = CategoryWrite(
            id=cat.id,
            name=cat.name,
            depth=cat.depth,
            parent_id=cat.parent_id,
            display_order=cat.display_order,
            revive=cls is Classification.EXISTING_DELETED,
        )
        (plan.category_inserts if cls is Classification.NEW else plan.category_updates).append(write)

    for topic in flat.topics:
        cls = resolution.topics.of(topic.submitted_id)
        write = TopicWrite(
            id=topic.id,
            category_id=topic.category_id,
            name=topic.name,
            display_order=topic.display_order,
            description=topic.description,
            difficulty=topic.difficulty,
            topic_type=topic.topic_type,
            revive=cls is Classification.EXISTING_DELETED,
        )
        (plan.topic_inserts if cls is Classification.NEW else plan.topic_updates).append(write)

    # Already-deleted rows that are still omitted need no write.
    kept_categories = {w.id for w in plan.category_updates}
    kept_topics = {w.id for w in plan.topic_updates}
    plan.category_deletes = sorted(resolution.categories.state.active - kept_categories, key=str)
    plan.topic_deletes = sorted(resolution.topics.state.active - kept_topics, key=str)
    return plan


class TreeReconciler:
    def __init__(
        self,
        store: HierarchyStore,
        runner: TransactionRunner,
        query: TreeQueryService | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
        new_id: Callable[[], UUID] = uuid.uuid4,
    ):
        self.store = store
        self.runner = runner
        self.query = query or TreeQueryService(store)
        self.resolver = IdentityResolver(store)
        self.clock = clock
        self.new_id = new_id

    async def reconcile(self, subject_id: UUID, owner_id: UUID, tree: SubmittedTree) -> ReconcileOutcome:
        flat = flatten_tree(tree, self.new_id)
        return await self.reconcile_flat(subject_id, owner_id, flat, expected_version=tree.version)

    async def reconcile_flat(
        self,
        subject_id: UUID,
        owner_id: UUID,
        flat: FlatSubmission,
        *,
        expected_version: int | None = None,
    ) -> ReconcileOutcome:
        started = time.perf_counter()
        outcome = "error"
        try:
            result = await self._reconcile(subject_id, owner_id, flat, expected_version)
            outcome = "ok"
            return result
        except TreeError as exc:
            outcome = exc.code.lower()
            raise
        finally:
            record_tree_write(outcome, time.perf_counter() - started)

    async def _reconcile(
        self,
        subject_id: UUID,
        owner_id: UUID,
        flat: FlatSubmission,
        expected_version: int | None,
    ) -> ReconcileOutcome:
        subject = await self.store.get_subject(subject_id, owner_id)
        if subject is None:
            raise SubjectNotFoundError(subject_id)
        if expected_version is not None and subject.tree_version != expected_version:
            logger.warning(
                "Stale tree submission for subject=%s: expected=%s actual=%s",
                subject_id, expected_version, subject.tree_version,
            )
            raise TreeConflictError(expected_version, subject.tree_version)

        check_duplicates(flat)
        resolution = await self.resolver.resolve(
            subject_id,
            owner_id,
            [c.submitted_id for c in flat.categories],
            [t.submitted_id for t in flat.topics],
        )
        check_structure(flat)
        plan = build_plan(flat, resolution)
        now = self.clock()

        async def write(store: HierarchyStore) -> None:
            # First write of the transaction; with expected_version it doubles as the conflict check.
            if not await store.bump_tree_version(subject_id, owner_id, expected_version):
                if expected_version is None:
                    raise SubjectNotFoundError(subject_id)
                raise TreeConflictError(expected_version, None)
            for _depth, inserts, updates in plan.category_levels():
                await store.insert_categories(owner_id, subject_id, inserts, now)
                await store.update_categories(owner_id, updates, now)
            await store.insert_topics(owner_id, plan.topic_inserts, now)
            await store.update_topics(owner_id, plan.topic_updates, now)
            await store.soft_delete_topics(owner_id, plan.topic_deletes, now)
            await store.soft_delete_categories(owner_id, plan.category_deletes, now)

        await self.runner.run(write)

        changes = plan.summary()
        logger.info(
            "Tree reconciled | subject=%s | categories +%s ~%s ^%s -%s | topics +%s ~%s ^%s -%s",
            subject_id,
            changes.categories.inserted, changes.categories.updated,
            changes.categories.revived, changes.categories.deleted,
            changes.topics.inserted, changes.topics.updated,
            changes.topics.revived, changes.topics.deleted,
        )
        tree = await self.query.get_tree(subject_id, owner_id)
        return ReconcileOutcome(tree=tree, plan=plan)
