"""
CSV import of category/topic rows into a subject tree.

Two header layouts are recognized for a single subject (case-insensitive,
surrounding whitespace and a UTF-8 BOM ignored):

    category,topic
    category,subcategory,topic

A multi-subject import uses a leading subject column instead:

    subject,category,subcategory,topic

Rows are then grouped per subject name; subjects the owner does not have yet
are created, and each subject is reconciled on its own.

Rows are grouped into an intermediate tree and merged by name with the
subject's active tree: ``append`` keeps every existing node and adds what the
CSV names, ``replace`` keeps only what the CSV names. The result is handed to
``TreeReconciler`` as an ordinary submission. Name matching is exact and
case-sensitive among siblings.
"""
from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field
from uuid import UUID

from app.core.logging import DOMAIN_IMPORT, get_domain_logger
from app.core.settings import settings
from app.models.entities import Category, Topic
from app.schemas.tree import (
    CSVImportResponse,
    ImportCounts,
    ImportMode,
    ImportRowError,
    SubjectImportCounts,
    SubjectsCSVImportResponse,
    SubmittedCategory,
    SubmittedTopic,
    SubmittedTree,
)
from app.tree.errors import IMPORT_EMPTY, SubjectNotFoundError
from app.tree.reconciler import TreeReconciler
from app.tree.store import HierarchyStore

logger = get_domain_logger(__name__, DOMAIN_IMPORT)

TWO_LEVEL_HEADER = ("category", "topic")
THREE_LEVEL_HEADER = ("category", "subcategory", "topic")
SUBJECT_HEADER = ("subject", "category", "subcategory", "topic")
NO_IMPORTABLE_DATA = "no importable data"


@dataclass
class GroupedCategory:
    name: str
    subcategories: list[GroupedCategory] = field(default_factory=list)
    topics: list[str] = field(default_factory=list)

    def child(self, name: str) -> GroupedCategory:
        for sub in self.subcategories:
            if sub.name == name:
                return sub
        sub = GroupedCategory(name=name)
        self.subcategories.append(sub)
        return sub

    def add_topic(self, name: str) -> None:
        if name not in self.topics:
            self.topics.append(name)


@dataclass
class GroupedTree:
    categories: list[GroupedCategory] = field(default_factory=list)

    def category(self, name: str) -> GroupedCategory:
        for cat in self.categories:
            if cat.name == name:
                return cat
        cat = GroupedCategory(name=name)
        self.categories.append(cat)
        return cat

    def counts(self) -> ImportCounts:
        categories = topics = 0
        stack = list(self.categories)
        while stack:
            cat = stack.pop()
            categories += 1
            topics += len(cat.topics)
            stack.extend(cat.subcategories)
        return ImportCounts(categories=categories, topics=topics)


@dataclass
class ParseResult:
    success: bool
    tree: GroupedTree
    errors: list[ImportRowError] = field(default_factory=list)
    subjects: dict[str, GroupedTree] = field(default_factory=dict)
    code: str | None = None


def _normalize_header(cells: list[str]) -> tuple[str, ...]:
    return tuple(cell.strip().lower() for cell in cells)


def _trim_trailing_empty(cells: list[str], width: int = 0) -> list[str]:
    """Drop empty cells past ``width`` (spreadsheet exports often pad rows with commas)."""
    while len(cells) > width and not cells[-1].strip():
        cells = cells[:-1]
    return cells


def _header_message(layouts: tuple[tuple[str, ...], ...]) -> str:
    return "Header must be " + " or ".join(f"'{','.join(layout)}'" for layout in layouts)


def parse_csv(text: str, *, with_subject: bool = False) -> ParseResult:
    """Group CSV rows into a category tree. Row numbers in errors are 1-based file lines.

    With ``with_subject`` only the subject-column layout is accepted and rows
    are grouped into one tree per subject name, in first-seen order.
    """
    layouts = (SUBJECT_HEADER,) if with_subject else (TWO_LEVEL_HEADER, THREE_LEVEL_HEADER)
    tree = GroupedTree()
    subjects: dict[str, GroupedTree] = {}
    errors: list[ImportRowError] = []
    header: tuple[str, ...] | None = None
    reader = csv.reader(io.StringIO(text.lstrip("\ufeff")))

    try:
        for raw in reader:
            if not any(cell.strip() for cell in raw):
                continue
            row = reader.line_num
            if header is None:
                header = _normalize_header(_trim_trailing_empty(raw))
                if header not in layouts:
                    errors.append(ImportRowError(row=row, message=_header_message(layouts)))
                    return ParseResult(success=False, tree=tree, errors=errors)
                continue

            cells = _trim_trailing_empty(raw, len(header))
            if len(cells) != len(header):
                errors.append(
                    ImportRowError(row=row, message=f"Expected {len(header)} columns, found {len(cells)}")
                )
                continue
            names = [cell.strip() for cell in cells]
            missing = [column for column, name in zip(header, names) if not name]
            if missing:
                errors.append(ImportRowError(row=row, message=f"Empty value for {', '.join(missing)}"))
                continue
            too_long = [column for column, name in zip(header, names) if len(name) > settings.tree_name_max_length]
            if too_long:
                errors.append(
                    ImportRowError(
                        row=row,
                        message=f"{', '.join(too_long)} longer than {settings.tree_name_max_length} characters",
                    )
                )
                continue

            target = tree
            if header == SUBJECT_HEADER:
                target = subjects.setdefault(names[0], GroupedTree())
                names = names[1:]
            category = target.category(names[0])
            if len(names) == 3:
                category = category.child(names[1])
            category.add_topic(names[-1])
    except csv.Error as exc:
        errors.append(ImportRowError(row=reader.line_num, message=f"Malformed CSV: {exc}"))

    if header is None or not (tree.categories or subjects):
        # Nothing survived: a single empty-import error replaces the row errors.
        return ParseResult(
            success=False,
            tree=tree,
            errors=[ImportRowError(row=0, message=NO_IMPORTABLE_DATA)],
            code=IMPORT_EMPTY,
        )
    return ParseResult(success=True, tree=tree, errors=errors, subjects=subjects)


# ── merge with the persisted tree ────────────────────────────────────────────

def _existing_tree(categories: list[Category], topics: list[Topic]) -> list[SubmittedCategory]:
    topics_by_category: dict[UUID, list[SubmittedTopic]] = {}
    for topic in sorted(topics, key=lambda t: t.display_order):
        topics_by_category.setdefault(topic.category_id, []).append(
            SubmittedTopic(
                id=str(topic.id),
                name=topic.name,
                display_order=topic.display_order,
                description=topic.description,
                difficulty=topic.difficulty,
                topic_type=topic.topic_type,
            )
        )
    children: dict[UUID | None, list[Category]] = {}
    for category in sorted(categories, key=lambda c: (c.depth, c.display_order)):
        children.setdefault(category.parent_id, []).append(category)

    def node(category: Category) -> SubmittedCategory:
        return SubmittedCategory(
            id=str(category.id),
            name=category.name,
            display_order=category.display_order,
            subcategories=[node(child) for child in children.get(category.id, [])],
            topics=topics_by_category.get(category.id, []),
        )

    return [node(c) for c in children.get(None, []) if c.depth == 0]


def _next_order(nodes) -> int:
    return max((n.display_order for n in nodes if n.display_order is not None), default=-1) + 1


def _append_category(siblings: list[SubmittedCategory], grouped: GroupedCategory) -> None:
    target = next((c for c in siblings if c.name == grouped.name), None)
    if target is None:
        target = SubmittedCategory(name=grouped.name, display_order=_next_order(siblings))
        siblings.append(target)
    for sub in grouped.subcategories:
        _append_category(target.subcategories, sub)
    for topic_name in grouped.topics:
        if not any(t.name == topic_name for t in target.topics):
            target.topics.append(SubmittedTopic(name=topic_name, display_order=_next_order(target.topics)))


def _replace_category(
    existing: list[SubmittedCategory], grouped: GroupedCategory, position: int
) -> SubmittedCategory:
    match = next((c for c in existing if c.name == grouped.name), None)
    topics = []
    for order, topic_name in enumerate(grouped.topics):
        known = next((t for t in match.topics if t.name == topic_name), None) if match else None
        if known is not None:
            topics.append(known.model_copy(update={"display_order": order}))
        else:
            topics.append(SubmittedTopic(name=topic_name, display_order=order))
    return SubmittedCategory(
        id=match.id if match else None,
        name=grouped.name,
        display_order=position,
        subcategories=[
            _replace_category(match.subcategories if match else [], sub, i)
            for i, sub in enumerate(grouped.subcategories)
        ],
        topics=topics,
    )


def merge_into_tree(
    existing_categories: list[Category],
    existing_topics: list[Topic],
    grouped: GroupedTree,
    mode: ImportMode = "append",
) -> SubmittedTree:
    """Overlay grouped CSV rows on the active tree.

    ``append`` keeps every active node and adds what the CSV names on top.
    ``replace`` keeps only what the CSV names, reusing ids of same-named nodes.
    """
    existing = _existing_tree(existing_categories, existing_topics)
    if mode == "replace":
        roots = [_replace_category(existing, cat, i) for i, cat in enumerate(grouped.categories)]
    else:
        roots = existing
        for grouped_category in grouped.categories:
            _append_category(roots, grouped_category)
    return SubmittedTree(categories=roots)


class CSVTreeImporter:
    def __init__(self, store: HierarchyStore, reconciler: TreeReconciler):
        self.store = store
        self.reconciler = reconciler

    async def import_csv(
        self,
        subject_id: UUID,
        owner_id: UUID,
        csv_text: str,
        mode: ImportMode = "append",
    ) -> CSVImportResponse:
        if await self.store.get_subject(subject_id, owner_id) is None:
            raise SubjectNotFoundError(subject_id)

        parsed = parse_csv(csv_text)
        if not parsed.success:
            logger.warning(
                "CSV import rejected for subject=%s: %s error(s)", subject_id, len(parsed.errors)
            )
            return CSVImportResponse(success=False, code=parsed.code, errors=parsed.errors)

        categories = await self.store.list_categories(subject_id, owner_id)
        topics = await self.store.list_topics([c.id for c in categories], owner_id)
        submission = merge_into_tree(categories, topics, parsed.tree, mode)
        outcome = await self.reconciler.reconcile(subject_id, owner_id, submission)

        changes = outcome.changes
        report = CSVImportResponse(
            success=True,
            imported=parsed.tree.counts(),
            created=ImportCounts(categories=changes.categories.inserted, topics=changes.topics.inserted),
            errors=parsed.errors,
        )
        logger.info(
            "CSV import | subject=%s | mode=%s | imported=%s/%s | created=%s/%s | skipped_rows=%s",
            subject_id,
            mode,
            report.imported.categories,
            report.imported.topics,
            report.created.categories,
            report.created.topics,
            len(parsed.errors),
        )
        return report

    async def import_subjects_csv(
        self,
        owner_id: UUID,
        csv_text: str,
        mode: ImportMode = "append",
    ) -> SubjectsCSVImportResponse:
        """Import a subject-column CSV, creating subjects the owner does not have yet.

        Subjects are matched by exact name among the owner's active subjects.
        Each subject is reconciled in its own transaction, in first-seen order.
        """
        parsed = parse_csv(csv_text, with_subject=True)
        if not parsed.success:
            logger.warning("Multi-subject CSV import rejected for owner=%s: %s error(s)", owner_id, len(parsed.errors))
            return SubjectsCSVImportResponse(success=False, code=parsed.code, errors=parsed.errors)

        existing = await self.store.list_subjects(owner_id)
        subject_ids: dict[str, UUID] = {}
        for subject in existing:
            subject_ids.setdefault(subject.name, subject.id)
        next_order = max((s.display_order for s in existing), default=-1) + 1

        imported = SubjectImportCounts(subjects=len(parsed.subjects))
        created = SubjectImportCounts()
        for name, grouped in parsed.subjects.items():
            subject_id = subject_ids.get(name)
            if subject_id is None:
                subject_id = await self.store.add_subject(owner_id, name, next_order)
                next_order += 1
                created.subjects += 1

            categories = await self.store.list_categories(subject_id, owner_id)
            topics = await self.store.list_topics([c.id for c in categories], owner_id)
            outcome = await self.reconciler.reconcile(
                subject_id, owner_id, merge_into_tree(categories, topics, grouped, mode)
            )

            counts = grouped.counts()
            imported.categories += counts.categories
            imported.topics += counts.topics
            created.categories += outcome.changes.categories.inserted
            created.topics += outcome.changes.topics.inserted

        logger.info(
            "Multi-subject CSV import | owner=%s | mode=%s | subjects=%s (+%s) | created=%s/%s | skipped_rows=%s",
            owner_id,
            mode,
            imported.subjects,
            created.subjects,
            created.categories,
            created.topics,
            len(parsed.errors),
        )
        return SubjectsCSVImportResponse(success=True, imported=imported, created=created, errors=parsed.errors)
