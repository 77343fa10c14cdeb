from __future__ import annotations

from collections import defaultdict
from uuid import UUID

from app.models.entities import Category, Subject, Topic
from app.schemas.tree import CategoryNode, SubjectTree, TopicNode
from app.tree.errors import SubjectNotFoundError
from app.tree.store import HierarchyStore


def _topic_node(topic: Topic) -> TopicNode:
    return TopicNode(
        id=str(topic.id),
        name=topic.name,
        display_order=topic.display_order,
        description=topic.description,
        difficulty=topic.difficulty,
        topic_type=topic.topic_type,
    )


def build_tree(subject: Subject, categories: list[Category], topics: list[Topic]) -> SubjectTree:
    """Nest flat rows by parent_id/category_id. Input order (display_order) is kept within siblings."""
    topics_by_category: dict[UUID, list[TopicNode]] = defaultdict(list)
    for topic in topics:
        topics_by_category[topic.category_id].append(_topic_node(topic))

    children_by_parent: dict[UUID | None, list[Category]] = defaultdict(list)
    for category in categories:
        children_by_parent[category.parent_id].append(category)

    def node(category: Category) -> CategoryNode:
        return CategoryNode(
            id=str(category.id),
            name=category.name,
            display_order=category.display_order,
            subcategories=[node(child) for child in children_by_parent.get(category.id, [])],
            topics=topics_by_category.get(category.id, []),
        )

    # Rows whose parent is not active are unreachable and stay hidden.
    roots = [c for c in children_by_parent.get(None, []) if c.depth == 0]
    return SubjectTree(
        subject_id=str(subject.id),
        version=subject.tree_version,
        categories=[node(c) for c in roots],
    )


class TreeQueryService:
    def __init__(self, store: HierarchyStore):
        self.store = store

    async def get_tree(self, subject_id: UUID, owner_id: UUID) -> SubjectTree:
        subject = await self.store.get_subject(subject_id, owner_id)
        if subject is None:
            raise SubjectNotFoundError(subject_id)
        categories = await self.store.list_categories(subject_id, owner_id)
        topics = await self.store.list_topics([c.id for c in categories], owner_id)
        return build_tree(subject, categories, topics)
