"""
Unit tests for hierarchy detection and tree building.
"""
import pytest
from pydantic import ValidationError as PydanticValidationError

from vizengine.core.schemas import Dataset, HierarchyRelation
from vizengine.services.hierarchy import (
    build_tree, detect, detect_path_separator, is_leveled_pair, referenced_column,
    single_parent_confidence,
)


@pytest.fixture
def geo_dataset():
    pairs = (
        [("USA", "NYC")] * 3 + [("USA", "LA")] * 2
        + [("Canada", "Toronto")] * 2 + [("Canada", "Vancouver")]
        + [("Mexico", "CDMX")] * 2
    )
    return Dataset(rows=[{"country": c, "city": city, "visits": i} for i, (c, city) in enumerate(pairs)])


@pytest.fixture
def path_dataset():
    paths = [
        "Electronics > Phones > Android",
        "Electronics > Phones > Android",
        "Electronics > Phones > iPhone",
        "Electronics > Laptops",
        "Home > Kitchen",
    ]
    return Dataset(rows=[{"category": p} for p in paths])


@pytest.mark.unit
def test_relation_rejects_identical_columns():
    with pytest.raises(PydanticValidationError):
        HierarchyRelation(parent_column="a", child_column="a", type="categorical-tree", confidence=1.0)


@pytest.mark.unit
def test_is_leveled_pair():
    assert is_leveled_pair("country", "city")
    assert is_leveled_pair("Category", "SubCategory")
    assert not is_leveled_pair("city", "country")


@pytest.mark.unit
def test_single_parent_confidence(geo_dataset):
    assert single_parent_confidence(geo_dataset, "country", "city") == 1.0
    assert single_parent_confidence(Dataset(rows=[{"a": None, "b": 1}]), "a", "b") is None


@pytest.mark.unit
def test_detect_country_city(geo_dataset):
    relations = detect(geo_dataset)

    assert len(relations) == 1
    relation = relations[0]
    assert relation.parent_column == "country"
    assert relation.child_column == "city"
    assert relation.type == "leveled"
    assert relation.confidence == 1.0
    assert relation.parent_values == ["USA", "Canada", "Mexico"]


@pytest.mark.unit
def test_detect_ignores_inconsistent_pairs():
    rows = [
        {"team": "red", "player": "ann"},
        {"team": "blue", "player": "ann"},
        {"team": "red", "player": "bob"},
        {"team": "blue", "player": "bob"},
        {"team": "red", "player": "cy"},
        {"team": "blue", "player": "dee"},
    ]
    assert detect(Dataset(rows=rows)) == []


@pytest.mark.unit
def test_detect_respects_min_confidence():
    rows = [{"dept": "a", "unit": f"u{i}"} for i in range(9)] + [{"dept": "b", "unit": "u0"}]
    rows += [{"dept": "b", "unit": "u9"}]
    relaxed = detect(Dataset(rows=rows), min_confidence=0.5)
    strict = detect(Dataset(rows=rows), min_confidence=0.95)

    assert [(r.parent_column, r.child_column) for r in relaxed] == [("dept", "unit")]
    assert strict == []


@pytest.mark.unit
def test_detect_path_column(path_dataset):
    relations = detect(path_dataset)

    assert len(relations) == 1
    relation = relations[0]
    assert relation.type == "path"
    assert relation.parent_column == "category"
    assert relation.child_column == "category_levels"
    assert relation.parent_values == ["Electronics", "Home"]


@pytest.mark.unit
def test_detect_path_separator():
    assert detect_path_separator(["a/b", "c/d", "e"]) == ("/", pytest.approx(2 / 3))
    assert detect_path_separator([1, 2]) == (None, 0.0)


@pytest.mark.unit
def test_detect_on_empty_dataset():
    assert detect(Dataset(rows=[])) == []


@pytest.mark.unit
def test_build_tree_groups_and_orders_by_count(geo_dataset):
    tree = build_tree(geo_dataset, "country", "city")

    assert [(n.name, n.count) for n in tree] == [("USA", 5), ("Canada", 3), ("Mexico", 2)]
    assert [(n.name, n.count) for n in tree[0].children] == [("NYC", 3), ("LA", 2)]
    assert tree[0].children[0].level == 1


@pytest.mark.unit
def test_build_tree_breadth_cap_adds_marker(geo_dataset):
    tree = build_tree(geo_dataset, "country", "city", max_breadth=2)

    assert [n.name for n in tree] == ["USA", "Canada", "(+1 more)"]
    assert tree[-1].truncated
    assert tree[-1].count == 2


@pytest.mark.unit
def test_build_tree_depth_cap_marks_truncation(geo_dataset):
    tree = build_tree(geo_dataset, "country", "city", max_depth=1)

    assert all(node.children == [] for node in tree)
    assert all(node.truncated for node in tree)


@pytest.mark.unit
def test_build_tree_from_paths(path_dataset):
    tree = build_tree(path_dataset, "category")

    electronics = tree[0]
    assert (electronics.name, electronics.count) == ("Electronics", 4)
    phones = electronics.children[0]
    assert (phones.name, phones.count) == ("Phones", 3)
    assert [(n.name, n.count) for n in phones.children] == [("Android", 2), ("iPhone", 1)]
    assert tree[1].name == "Home"


@pytest.mark.unit
def test_build_tree_accepts_levels_child(path_dataset):
    assert build_tree(path_dataset, "category", "category_levels") == build_tree(path_dataset, "category")


@pytest.mark.unit
def test_build_tree_path_depth_cap(path_dataset):
    tree = build_tree(path_dataset, "category", max_depth=2)
    phones = tree[0].children[0]
    assert phones.children == []
    assert phones.truncated


@pytest.mark.unit
def test_build_tree_rejects_invalid_caps(geo_dataset):
    with pytest.raises(ValueError):
        build_tree(geo_dataset, "country", "city", max_depth=0)


@pytest.mark.unit
def test_build_tree_empty():
    assert build_tree(Dataset(rows=[]), "country", "city") == []


@pytest.mark.unit
def test_referenced_column():
    columns = ["customer_id", "customer_name", "orderId", "order", "width"]
    assert referenced_column("customer_id", columns) == "customer_name"
    assert referenced_column("orderId", columns) == "order"
    assert referenced_column("width", columns) is None
    assert referenced_column("customer_name", columns) is None


@pytest.mark.unit
def test_detect_reference_relation():
    pairs = [("A100", "A100"), ("A200", "A200"), ("X900", "A300"), ("A100", "A100")]
    dataset = Dataset(rows=[{"account": a, "account_id": i} for a, i in pairs])

    relations = detect(dataset)

    assert len(relations) == 1
    relation = relations[0]
    assert relation.type == "reference"
    assert relation.parent_column == "account"
    assert relation.child_column == "account_id"
    assert relation.confidence == pytest.approx(0.6667)


@pytest.mark.unit
def test_reference_confidence_is_capped():
    dataset = Dataset(rows=[{"account": a, "account_id": a} for a in ["A1", "A2", "A3"]])
    relations = [r for r in detect(dataset) if r.type == "reference"]
    assert relations[0].confidence == 0.9


@pytest.mark.unit
def test_ids_without_matching_values_are_not_references():
    dataset = Dataset(rows=[
        {"customer_id": f"C{i}", "customer_name": name}
        for i, name in enumerate(["Ana", "Bo", "Cy", "Di"])
    ])
    assert [r for r in detect(dataset) if r.type == "reference"] == []


@pytest.mark.unit
def test_build_tree_keeps_plain_values_with_stray_separator():
    values = ["north"] * 5 + ["south"] * 3 + ["N/A"]
    dataset = Dataset(rows=[{"region": v} for v in values])

    tree = build_tree(dataset, "region")

    assert [(n.name, n.count, n.children) for n in tree] == [
        ("north", 5, []), ("south", 3, []), ("N/A", 1, []),
    ]
