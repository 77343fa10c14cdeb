import uuid

from app.models.entities import Category, Topic
from app.tree.csv_import import merge_into_tree, parse_csv


def _category(name, order=0, depth=0, parent_id=None):
    return Category(id=uuid.uuid4(), name=name, depth=depth, parent_id=parent_id, display_order=order)


def _topic(category, name, order=0, **extra):
    return Topic(id=uuid.uuid4(), category_id=category.id, name=name, display_order=order, **extra)


def test_append_reuses_existing_category_by_name():
    c1 = _category("C1")
    t1 = _topic(c1, "T1", description="keep me", difficulty="advanced", topic_type="lecture")
    grouped = parse_csv("category,topic\nC1,T1\nC1,T2\nC2,T1\n").tree

    tree = merge_into_tree([c1], [t1], grouped, "append")

    assert [c.name for c in tree.categories] == ["C1", "C2"]
    merged = tree.categories[0]
    assert merged.id == str(c1.id)
    assert [(t.id, t.name) for t in merged.topics] == [(str(t1.id), "T1"), (None, "T2")]
    assert merged.topics[0].description == "keep me"
    assert merged.topics[0].difficulty == "advanced"
    assert merged.topics[0].topic_type == "lecture"
    assert tree.categories[1].id is None


def test_append_keeps_unmentioned_nodes_and_appends_after_max_order():
    keep = _category("Keep", order=4)
    grouped = parse_csv("category,topic\nNew,T1\n").tree

    tree = merge_into_tree([keep], [], grouped, "append")

    assert [(c.name, c.display_order) for c in tree.categories] == [("Keep", 4), ("New", 5)]


def test_name_match_is_case_sensitive():
    c1 = _category("Algebra")
    grouped = parse_csv("category,topic\nalgebra,T1\n").tree

    tree = merge_into_tree([c1], [], grouped, "append")

    assert [(c.name, c.id) for c in tree.categories] == [("Algebra", str(c1.id)), ("algebra", None)]


def test_replace_keeps_only_csv_content_but_reuses_ids():
    c1 = _category("C1", order=0)
    gone = _category("Gone", order=1)
    t1 = _topic(c1, "T1", order=3, description="notes")
    t_gone = _topic(c1, "Old topic", order=0)
    grouped = parse_csv("category,topic\nC1,T1\nC1,T2\n").tree

    tree = merge_into_tree([c1, gone], [t1, t_gone], grouped, "replace")

    assert [(c.id, c.name, c.display_order) for c in tree.categories] == [(str(c1.id), "C1", 0)]
    topics = tree.categories[0].topics
    assert [(t.id, t.name, t.display_order) for t in topics] == [(str(t1.id), "T1", 0), (None, "T2", 1)]
    assert topics[0].description == "notes"


def test_subcategories_are_matched_under_their_parent():
    cell = _category("Cell")
    organelles = _category("Organelles", depth=1, parent_id=cell.id)
    other_parent = _category("Genetics", order=1)
    misplaced = _category("Division", depth=1, parent_id=other_parent.id)
    grouped = parse_csv("category,subcategory,topic\nCell,Organelles,Ribosome\nCell,Division,Mitosis\n").tree

    tree = merge_into_tree([cell, organelles, other_parent, misplaced], [], grouped, "append")

    cell_node = tree.categories[0]
    assert cell_node.id == str(cell.id)
    assert [(s.id, s.name) for s in cell_node.subcategories] == [(str(organelles.id), "Organelles"), (None, "Division")]
    assert tree.categories[1].subcategories[0].id == str(misplaced.id)
