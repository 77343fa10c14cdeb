"""Classification of submitted node ids against what a subject already holds."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID

from app.core.logging import DOMAIN_TREE, get_domain_logger
from app.tree.errors import InvalidIdError
from app.tree.store import HierarchyStore, IdState

logger = get_domain_logger(__name__, DOMAIN_TREE)


class Classification(str, Enum):
    NEW = "new"
    EXISTING_ACTIVE = "existing_active"
    EXISTING_DELETED = "existing_deleted"
    INVALID = "invalid"


def parse_node_id(raw: str | None) -> UUID | None:
    if raw is None:
        return None
    try:
        return UUID(str(raw))
    except ValueError:
        return None


def classify_id(raw: str | None, state: IdState) -> Classification:
    if raw is None:
        return Classification.NEW
    node_id = parse_node_id(raw)
    if node_id in state.active:
        return Classification.EXISTING_ACTIVE
    if node_id in state.deleted:
        return Classification.EXISTING_DELETED
    # Malformed, unknown, or owned by another user/subject: indistinguishable on purpose.
    return Classification.INVALID


@dataclass
class IdClassification:
    state: IdState
    classes: dict[str, Classification] = field(default_factory=dict)

    def of(self, raw: str | None) -> Classification:
        if raw is None:
            return Classification.NEW
        return self.classes[raw]

    @property
    def invalid(self) -> list[str]:
        return [raw for raw, cls in self.classes.items() if cls is Classification.INVALID]


@dataclass
class Resolution:
    categories: IdClassification
    topics: IdClassification


class IdentityResolver:
    def __init__(self, store: HierarchyStore):
        self.store = store

    @staticmethod
    def classify(state: IdState, submitted_ids) -> IdClassification:
        result = IdClassification(state=state)
        for raw in submitted_ids:
            if raw is not None:
                result.classes[raw] = classify_id(raw, state)
        return result

    async def resolve(self, subject_id: UUID, owner_id: UUID, category_ids, topic_ids) -> Resolution:
        """Classify category ids, then topic ids; any invalid id fails the whole resolution."""
        categories = self.classify(await self.store.category_id_state(subject_id, owner_id), category_ids)
        topics = self.classify(await self.store.topic_id_state(subject_id, owner_id), topic_ids)
        invalid = categories.invalid + topics.invalid
        if invalid:
            logger.warning("Rejected %s invalid id(s) for subject=%s: %s", len(invalid), subject_id, invalid)
            raise InvalidIdError(invalid)
        return Resolution(categories=categories, topics=topics)
