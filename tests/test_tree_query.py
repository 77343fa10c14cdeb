import uuid
from datetime import datetime, timezone

import pytest

from app.models.entities import Category, Subject, Topic
from app.tree.errors import SubjectNotFoundError
from app.tree.query import TreeQueryService, build_tree
from app.tree.store import HierarchyStore


def test_build_tree_nests_by_parent_and_keeps_sibling_order():
    subject = Subject(id=uuid.uuid4(), name="Physics", tree_version=3)
    mechanics = Category(id=uuid.uuid4(), name="Mechanics", depth=0, parent_id=None, display_order=0)
    optics = Category(id=uuid.uuid4(), name="Optics", depth=0, parent_id=None, display_order=1)
    kinematics = Category(id=uuid.uuid4(), name="Kinematics", depth=1, parent_id=mechanics.id, display_order=0)
    stray = Category(id=uuid.uuid4(), name="Stray", depth=1, parent_id=uuid.uuid4(), display_order=0)
    topics = [
        Topic(id=uuid.uuid4(), category_id=kinematics.id, name="Velocity", display_order=0),
        Topic(id=uuid.uuid4(), category_id=mechanics.id, name="Forces", display_order=0, difficulty="basic"),
    ]

    result = build_tree(subject, [mechanics, optics, kinematics, stray], topics)

    assert result.subject_id == str(subject.id)
    assert result.version == 3
    assert [c.name for c in result.categories] == ["Mechanics", "Optics"]
    assert result.categories[0].topics[0].name == "Forces"
    assert result.categories[0].subcategories[0].name == "Kinematics"
    assert result.categories[0].subcategories[0].topics[0].name == "Velocity"
    assert result.categories[1].topics == []
    assert result.categories[1].subcategories == []


async def test_empty_subject_returns_empty_tree(db_session, make_subject, owner_id):
    subject_id = await make_subject(owner_id)

    result = await TreeQueryService(HierarchyStore(db_session)).get_tree(subject_id, owner_id)

    assert result.categories == []
    assert result.version == 0


async def test_soft_deleted_rows_are_hidden(db_session, make_subject, owner_id):
    subject_id = await make_subject(owner_id)
    now = datetime.now(timezone.utc)
    live = Category(user_id=owner_id, subject_id=subject_id, name="Live", depth=0, display_order=1)
    dead = Category(user_id=owner_id, subject_id=subject_id, name="Dead", depth=0, display_order=0, deleted_at=now)
    db_session.add_all([live, dead])
    await db_session.flush()
    db_session.add_all(
        [
            Topic(user_id=owner_id, category_id=live.id, name="Shown", display_order=1),
            Topic(user_id=owner_id, category_id=live.id, name="Hidden", display_order=0, deleted_at=now),
        ]
    )
    await db_session.commit()

    result = await TreeQueryService(HierarchyStore(db_session)).get_tree(subject_id, owner_id)

    assert [c.name for c in result.categories] == ["Live"]
    assert [t.name for t in result.categories[0].topics] == ["Shown"]


async def test_missing_or_foreign_subject_is_not_found(db_session, make_subject, owner_id):
    subject_id = await make_subject(owner_id)
    service = TreeQueryService(HierarchyStore(db_session))

    with pytest.raises(SubjectNotFoundError):
        await service.get_tree(uuid.uuid4(), owner_id)
    with pytest.raises(SubjectNotFoundError):
        await service.get_tree(subject_id, uuid.uuid4())
