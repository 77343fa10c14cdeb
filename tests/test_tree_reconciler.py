import asyncio
import uuid

import pytest
from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from app.core.tree_metrics import get_tree_metrics, reset_tree_metrics
from app.models.entities import Category, Topic, UserTopicProgress
from app.schemas.tree import SubmittedTree
from app.tree.errors import (
    CONFLICT,
    INVALID_ID,
    InvalidIdError,
    SubjectNotFoundError,
    TransactionFailedError,
    TreeConflictError,
)
from app.tree.reconciler import FlatCategory, FlatSubmission, FlatTopic
from app.tree.service import build_tree_services
from app.tree.store import HierarchyStore
from app.tree.transaction import SessionTransactionRunner


def cat(name, id=None, subcategories=(), topics=(), **extra):
    return {"id": id, "name": name, "subcategories": list(subcategories), "topics": list(topics), **extra}


def topic(name, id=None, **extra):
    return {"id": id, "name": name, **extra}


def tree(*categories, version=None):
    return SubmittedTree.model_validate({"categories": list(categories), "version": version})


def resubmit(subject_tree, **changes):
    payload = subject_tree.model_dump()
    payload.update(changes)
    return SubmittedTree.model_validate(payload)


@pytest.fixture
def services(db_session):
    return build_tree_services(db_session)


async def _deleted_at(session, model, row_id):
    return (await session.execute(select(model.deleted_at).where(model.id == uuid.UUID(row_id)))).scalar_one()


async def test_first_submission_inserts_nested_tree(services, make_subject, owner_id):
    subject_id = await make_subject(owner_id)

    outcome = await services.reconciler.reconcile(
        subject_id,
        owner_id,
        tree(
            cat("Cell", topics=[topic("Membrane"), topic("Nucleus", difficulty="basic")],
                subcategories=[cat("Organelles", topics=[topic("Mitochondria", topic_type="lecture")])]),
            cat("Genetics"),
        ),
    )

    changes = outcome.changes
    assert (changes.categories.inserted, changes.topics.inserted) == (3, 3)
    assert (changes.categories.deleted, changes.topics.deleted) == (0, 0)
    result = outcome.tree
    assert result.version == 1
    assert [(c.name, c.display_order) for c in result.categories] == [("Cell", 0), ("Genetics", 1)]
    cell = result.categories[0]
    assert [(t.name, t.display_order, t.difficulty) for t in cell.topics] == [
        ("Membrane", 0, None),
        ("Nucleus", 1, "basic"),
    ]
    assert cell.subcategories[0].name == "Organelles"
    assert cell.subcategories[0].topics[0].topic_type == "lecture"


async def test_resubmitting_the_read_tree_is_idempotent(services, make_subject, owner_id):
    subject_id = await make_subject(owner_id)
    first = await services.reconciler.reconcile(
        subject_id,
        owner_id,
        tree(cat("A", topics=[topic("T1"), topic("T2")], subcategories=[cat("A1", topics=[topic("T3")])]), cat("B")),
    )

    second = await services.reconciler.reconcile(subject_id, owner_id, resubmit(first.tree))

    assert second.tree.categories == first.tree.categories
    assert second.tree.version == first.tree.version + 1
    changes = second.changes
    assert (changes.categories.inserted, changes.categories.deleted, changes.categories.revived) == (0, 0, 0)
    assert (changes.topics.inserted, changes.topics.deleted, changes.topics.revived) == (0, 0, 0)
    assert (changes.categories.updated, changes.topics.updated) == (3, 3)


async def test_omitted_nodes_are_soft_deleted(services, db_session, make_subject, owner_id):
    subject_id = await make_subject(owner_id)
    first = await services.reconciler.reconcile(
        subject_id, owner_id, tree(cat("A", topics=[topic("TA")]), cat("B", topics=[topic("TB")]))
    )
    a, b = first.tree.categories

    outcome = await services.reconciler.reconcile(
        subject_id, owner_id, tree(cat("A", id=a.id, topics=[topic("TA", id=a.topics[0].id)]))
    )

    assert [c.id for c in outcome.tree.categories] == [a.id]
    assert outcome.tree.categories[0].topics[0].id == a.topics[0].id
    assert outcome.changes.categories.deleted == 1
    assert outcome.changes.topics.deleted == 1
    assert await _deleted_at(db_session, Category, b.id) is not None
    assert await _deleted_at(db_session, Topic, b.topics[0].id) is not None
    assert await _deleted_at(db_session, Category, a.id) is None
    remaining = (await db_session.execute(select(func.count()).select_from(Category))).scalar_one()
    assert remaining == 2


async def test_revival_overwrites_mutable_fields(services, db_session, make_subject, owner_id):
    subject_id = await make_subject(owner_id)
    first = await services.reconciler.reconcile(
        subject_id, owner_id, tree(cat("Old", topics=[topic("Old topic", description="old notes")]))
    )
    old = first.tree.categories[0]
    await services.reconciler.reconcile(subject_id, owner_id, tree())
    assert await _deleted_at(db_session, Category, old.id) is not None

    outcome = await services.reconciler.reconcile(
        subject_id,
        owner_id,
        tree(cat("New", id=old.id, topics=[topic("New topic", id=old.topics[0].id, difficulty="advanced")])),
    )

    revived = outcome.tree.categories[0]
    assert (revived.id, revived.name) == (old.id, "New")
    assert revived.topics[0].name == "New topic"
    assert revived.topics[0].description is None
    assert revived.topics[0].difficulty == "advanced"
    assert outcome.changes.categories.revived == 1
    assert outcome.changes.topics.revived == 1
    assert await _deleted_at(db_session, Category, old.id) is None


async def test_empty_tree_clears_the_subject(services, make_subject, owner_id):
    subject_id = await make_subject(owner_id)
    await services.reconciler.reconcile(subject_id, owner_id, tree(cat("A", topics=[topic("T")]), cat("B")))

    outcome = await services.reconciler.reconcile(subject_id, owner_id, tree())

    assert outcome.tree.categories == []
    assert outcome.changes.categories.deleted == 2
    assert outcome.changes.topics.deleted == 1
    assert (await services.query.get_tree(subject_id, owner_id)).categories == []


async def test_foreign_id_rejects_whole_submission(services, make_subject, owner_id):
    stranger = uuid.uuid4()
    subject_id = await make_subject(owner_id)
    stranger_subject_id = await make_subject(stranger, name="Stranger's")
    theirs = await services.reconciler.reconcile(
        stranger_subject_id, stranger, tree(cat("Private", topics=[topic("Secret")]))
    )
    mine = await services.reconciler.reconcile(subject_id, owner_id, tree(cat("Mine")))
    foreign_topic_id = theirs.tree.categories[0].topics[0].id

    with pytest.raises(InvalidIdError) as excinfo:
        await services.reconciler.reconcile(
            subject_id, owner_id, tree(cat("Fresh", topics=[topic("Stolen", id=foreign_topic_id)]))
        )

    assert excinfo.value.code == INVALID_ID
    assert excinfo.value.ids == [foreign_topic_id]
    after = await services.query.get_tree(subject_id, owner_id)
    assert after == mine.tree
    assert (await services.query.get_tree(stranger_subject_id, stranger)) == theirs.tree


async def test_invalid_ids_are_all_reported(services, make_subject, owner_id):
    subject_id = await make_subject(owner_id)
    bogus = str(uuid.uuid4())

    with pytest.raises(InvalidIdError) as excinfo:
        await services.reconciler.reconcile(
            subject_id, owner_id, tree(cat("A", id="not-a-uuid", topics=[topic("T", id=bogus)]))
        )

    assert excinfo.value.ids == sorted(["not-a-uuid", bogus])


async def test_duplicate_ids_in_one_submission_are_rejected(services, make_subject, owner_id):
    subject_id = await make_subject(owner_id)
    first = await services.reconciler.reconcile(subject_id, owner_id, tree(cat("A")))
    a_id = first.tree.categories[0].id

    with pytest.raises(InvalidIdError) as excinfo:
        await services.reconciler.reconcile(subject_id, owner_id, tree(cat("A", id=a_id), cat("A again", id=a_id)))

    assert excinfo.value.ids == [a_id]
    assert "more than once" in excinfo.value.details["reason"]


async def test_differently_cased_spellings_of_one_id_are_duplicates(services, make_subject, owner_id):
    subject_id = await make_subject(owner_id)
    first = await services.reconciler.reconcile(
        subject_id, owner_id, tree(cat("A", topics=[topic("t")]), cat("B"))
    )
    a, b = first.tree.categories
    t_id = a.topics[0].id

    with pytest.raises(InvalidIdError) as excinfo:
        await services.reconciler.reconcile(
            subject_id,
            owner_id,
            tree(
                cat("A", id=a.id, topics=[topic("t", id=t_id)]),
                cat("B", id=b.id, topics=[topic("t", id=t_id.upper())]),
            ),
        )

    assert excinfo.value.ids == sorted([t_id, t_id.upper()])
    assert "more than once" in excinfo.value.details["reason"]
    assert await services.query.get_tree(subject_id, owner_id) == first.tree


async def test_orphan_topic_is_rejected_before_any_write(services, db_session, make_subject, owner_id):
    subject_id = await make_subject(owner_id)
    first = await services.reconciler.reconcile(subject_id, owner_id, tree(cat("Kept"), cat("Elsewhere")))
    kept, elsewhere = first.tree.categories
    flat = FlatSubmission(
        categories=[FlatCategory(uuid.UUID(kept.id), kept.id, "Kept", 0, None, 0)],
        topics=[FlatTopic(uuid.uuid4(), None, uuid.UUID(elsewhere.id), "Orphan", 0)],
    )

    with pytest.raises(InvalidIdError) as excinfo:
        await services.reconciler.reconcile_flat(subject_id, owner_id, flat)

    assert "outside the submission" in excinfo.value.details["reason"]
    after = await services.query.get_tree(subject_id, owner_id)
    assert after == first.tree
    assert await _deleted_at(db_session, Category, elsewhere.id) is None


async def test_subcategory_parent_must_be_in_submission(services, make_subject, owner_id):
    subject_id = await make_subject(owner_id)
    first = await services.reconciler.reconcile(subject_id, owner_id, tree(cat("Parent")))
    parent_id = uuid.UUID(first.tree.categories[0].id)
    flat = FlatSubmission(categories=[FlatCategory(uuid.uuid4(), None, "Child", 1, parent_id, 0)])

    with pytest.raises(InvalidIdError) as excinfo:
        await services.reconciler.reconcile_flat(subject_id, owner_id, flat)

    assert "parent category" in excinfo.value.details["reason"]


async def test_array_position_drives_order_and_topics_can_move(services, make_subject, owner_id):
    subject_id = await make_subject(owner_id)
    first = await services.reconciler.reconcile(
        subject_id, owner_id, tree(cat("A", topics=[topic("Moving")]), cat("B"))
    )
    a, b = first.tree.categories

    outcome = await services.reconciler.reconcile(
        subject_id,
        owner_id,
        tree(cat("B", id=b.id, topics=[topic("Moving", id=a.topics[0].id)]), cat("A", id=a.id)),
    )

    assert [(c.id, c.display_order) for c in outcome.tree.categories] == [(b.id, 0), (a.id, 1)]
    assert outcome.tree.categories[0].topics[0].id == a.topics[0].id
    assert outcome.tree.categories[1].topics == []


async def test_stale_version_is_a_conflict(services, make_subject, owner_id):
    subject_id = await make_subject(owner_id)
    first = await services.reconciler.reconcile(subject_id, owner_id, tree(cat("A"), version=0))
    assert first.tree.version == 1

    with pytest.raises(TreeConflictError) as excinfo:
        await services.reconciler.reconcile(subject_id, owner_id, tree(cat("B"), version=0))

    assert excinfo.value.code == CONFLICT
    assert excinfo.value.details == {"expected_version": 0, "actual_version": 1}
    assert await services.query.get_tree(subject_id, owner_id) == first.tree

    ok = await services.reconciler.reconcile(subject_id, owner_id, tree(cat("B"), version=1))
    assert [c.name for c in ok.tree.categories] == ["B"]
    assert ok.tree.version == 2


async def test_version_bump_is_conditional(db_session, make_subject, owner_id):
    subject_id = await make_subject(owner_id)
    store = HierarchyStore(db_session)

    assert await store.bump_tree_version(subject_id, owner_id, 0) is True
    assert await store.bump_tree_version(subject_id, owner_id, 0) is False
    assert await store.bump_tree_version(subject_id, owner_id, None) is True
    await db_session.commit()
    assert (await store.get_subject(subject_id, owner_id)).tree_version == 2


async def test_storage_failure_rolls_back_every_write(services, make_subject, owner_id, monkeypatch):
    subject_id = await make_subject(owner_id)
    first = await services.reconciler.reconcile(subject_id, owner_id, tree(cat("A"), cat("B")))
    a = first.tree.categories[0]

    async def _broken(*_args, **_kwargs):
        raise SQLAlchemyError("disk I/O error")

    monkeypatch.setattr(HierarchyStore, "soft_delete_categories", _broken)
    with pytest.raises(TransactionFailedError):
        await services.reconciler.reconcile(subject_id, owner_id, tree(cat("A renamed", id=a.id), cat("C")))
    monkeypatch.undo()

    after = await services.query.get_tree(subject_id, owner_id)
    assert after == first.tree


async def test_runner_timeout_becomes_transaction_failure(db_session):
    runner = SessionTransactionRunner(db_session, timeout_seconds=0.01)

    async def _slow(_store):
        await asyncio.sleep(1)

    with pytest.raises(TransactionFailedError):
        await runner.run(_slow)


async def test_runner_reraises_domain_errors_after_rollback(db_session):
    runner = SessionTransactionRunner(db_session)

    async def _conflict(_store):
        raise TreeConflictError(3, 4)

    with pytest.raises(TreeConflictError):
        await runner.run(_conflict)


async def test_progress_rows_survive_soft_delete(services, db_session, make_subject, owner_id):
    subject_id = await make_subject(owner_id)
    first = await services.reconciler.reconcile(subject_id, owner_id, tree(cat("A", topics=[topic("T")])))
    topic_id = uuid.UUID(first.tree.categories[0].topics[0].id)
    db_session.add(UserTopicProgress(user_id=owner_id, topic_id=topic_id, understood=True, question_count=4))
    await db_session.commit()

    await services.reconciler.reconcile(subject_id, owner_id, tree())

    progress = (
        await db_session.execute(
            select(UserTopicProgress.question_count, UserTopicProgress.understood).where(
                UserTopicProgress.topic_id == topic_id
            )
        )
    ).one()
    assert tuple(progress) == (4, True)
    assert await _deleted_at(db_session, Topic, str(topic_id)) is not None


async def test_unknown_or_foreign_subject_is_not_found(services, make_subject, owner_id):
    subject_id = await make_subject(owner_id)

    with pytest.raises(SubjectNotFoundError):
        await services.reconciler.reconcile(uuid.uuid4(), owner_id, tree(cat("A")))
    with pytest.raises(SubjectNotFoundError):
        await services.reconciler.reconcile(subject_id, uuid.uuid4(), tree(cat("A")))


def test_tree_deeper_than_limit_is_a_validation_error():
    with pytest.raises(ValidationError):
        tree(cat("L0", subcategories=[cat("L1", subcategories=[cat("L2")])]))


def test_blank_names_are_rejected_and_names_trimmed():
    with pytest.raises(ValidationError):
        tree(cat("   "))
    assert tree(cat("  Cell  ")).categories[0].name == "Cell"


async def test_writes_are_counted_by_outcome(services, make_subject, owner_id):
    reset_tree_metrics()
    subject_id = await make_subject(owner_id)
    await services.reconciler.reconcile(subject_id, owner_id, tree(cat("A")))
    with pytest.raises(TreeConflictError):
        await services.reconciler.reconcile(subject_id, owner_id, tree(version=7))

    metrics = get_tree_metrics()
    assert metrics["tree_writes_total"] == 2
    assert metrics["tree_write_outcomes"] == {"ok": 1, "conflict": 1}
    assert metrics["tree_write_failure_rate"] == 0.5
