"""Tests for index creation, maintenance and explain."""
import pytest

from bookquery.collection import Collection
from bookquery.expressions import QueryError
from bookquery.index import Index, index_name, normalize_keys

QUERIES = [
    {"title": "The Hobbit"},
    {"title": "Missing"},
    {"author": "J.R.R. Tolkien"},
    {"author": "J.R.R. Tolkien", "published_year": 1954},
    {"author": "J.R.R. Tolkien", "published_year": {"$gt": 1940}},
    {"author": {"$eq": "Jane Austen"}, "in_stock": True},
    {"published_year": {"$gt": 1940}},
    {"in_stock": True, "published_year": {"$gt": 2010}},
]


def test_normalize_keys_forms():
    """Test the accepted key specification forms."""
    assert normalize_keys({"title": 1}) == [("title", 1)]
    assert normalize_keys([("author", 1), ("published_year", -1)]) == [("author", 1), ("published_year", -1)]
    assert normalize_keys(("price", -1)) == [("price", -1)]
    assert normalize_keys("title") == [("title", 1)]
    with pytest.raises(QueryError):
        normalize_keys({})
    with pytest.raises(QueryError):
        normalize_keys({"title": True})


def test_index_names():
    """Test default index naming."""
    assert index_name([("title", 1)]) == "title_1"
    assert index_name([("author", 1), ("published_year", 1)]) == "author_1_published_year_1"


def test_create_and_list_indexes(books):
    """Test creating single-field and compound indexes."""
    assert books.create_index({"title": 1}) == "title_1"
    assert books.create_index({"author": 1, "published_year": 1}) == "author_1_published_year_1"

    assert books.list_indexes() == [
        {"name": "_id_", "key": {"_id": 1}},
        {"name": "title_1", "key": {"title": 1}},
        {"name": "author_1_published_year_1", "key": {"author": 1, "published_year": 1}},
    ]


def test_create_index_is_idempotent(books):
    """Test re-creating the same index is a no-op."""
    books.create_index({"title": 1})
    books.create_index({"title": 1})
    assert len(books.list_indexes()) == 2


def test_create_index_name_conflict(books):
    """Test a different pattern under an existing name is rejected."""
    books.create_index({"title": 1}, name="lookup")
    with pytest.raises(QueryError):
        books.create_index({"author": 1}, name="lookup")


def test_drop_index(books):
    """Test dropping indexes."""
    books.create_index({"title": 1})
    books.drop_index("title_1")
    assert [i["name"] for i in books.list_indexes()] == ["_id_"]
    with pytest.raises(QueryError):
        books.drop_index("_id_")
    with pytest.raises(QueryError):
        books.drop_index("title_1")


def test_indexes_never_change_results(books):
    """Test that every query returns the same documents with and without indexes."""
    before = [books.find(q).to_list() for q in QUERIES]

    books.create_index({"title": 1})
    books.create_index({"author": 1, "published_year": 1})
    after = [books.find(q).to_list() for q in QUERIES]

    assert before == after


def test_explain_switches_to_index_scan(books):
    """Test explain before and after the title index."""
    without = books.find({"title": "The Great Gatsby"}).explain("executionStats")
    assert without["queryPlanner"]["winningPlan"]["stage"] == "COLLSCAN"
    assert without["executionStats"]["totalDocsExamined"] == 8
    assert without["executionStats"]["totalKeysExamined"] == 0

    books.create_index({"title": 1})
    plan = books.find({"title": "The Hobbit"}).explain("executionStats")
    winning = plan["queryPlanner"]["winningPlan"]
    assert winning["stage"] == "FETCH"
    assert winning["inputStage"]["stage"] == "IXSCAN"
    assert winning["inputStage"]["indexName"] == "title_1"
    assert plan["executionStats"]["nReturned"] == 1
    assert plan["executionStats"]["totalDocsExamined"] == 1
    assert plan["executionStats"]["totalKeysExamined"] == 1


def test_explain_query_planner_has_no_stats(books):
    """Test the default verbosity omits execution statistics."""
    plan = books.find({"genre": "Fantasy"}).explain()
    assert plan["queryPlanner"]["namespace"] == "library.books"
    assert "executionStats" not in plan
    with pytest.raises(QueryError):
        books.find().explain("verbose")


def test_explain_wraps_cursor_stages(books):
    """Test SORT, SKIP, LIMIT and PROJECTION stages in the plan."""
    plan = books.find({}, {"title": 1}).sort("price", 1).skip(5).limit(5).explain()
    winning = plan["queryPlanner"]["winningPlan"]
    stages = []
    while winning:
        stages.append(winning["stage"])
        winning = winning.get("inputStage")
    assert stages == ["PROJECTION_SIMPLE", "LIMIT", "SKIP", "SORT", "COLLSCAN"]


def test_compound_index_prefix(books):
    """Test the compound index serves author-only lookups."""
    books.create_index({"author": 1, "published_year": 1})
    plan = books.find({"author": "J.R.R. Tolkien"}).explain("executionStats")
    ixscan = plan["queryPlanner"]["winningPlan"]["inputStage"]
    assert ixscan["indexName"] == "author_1_published_year_1"
    assert ixscan["indexBounds"] == {"author": ["J.R.R. Tolkien"]}
    assert plan["executionStats"]["totalDocsExamined"] == 2


def test_longest_prefix_wins(books):
    """Test the planner prefers the index covering more equality fields."""
    books.create_index({"author": 1})
    books.create_index({"author": 1, "published_year": 1})
    plan = books.find({"author": "J.R.R. Tolkien", "published_year": 1937}).explain()
    assert plan["queryPlanner"]["winningPlan"]["inputStage"]["indexName"] == "author_1_published_year_1"


def test_index_maintained_on_writes(books):
    """Test that updates and deletes keep the index in sync."""
    books.create_index({"title": 1})

    books.update_one({"title": "Emma"}, {"$set": {"title": "Emma (Annotated)"}})
    assert books.find_one({"title": "Emma"}) is None
    assert books.find_one({"title": "Emma (Annotated)"})["author"] == "Jane Austen"

    books.delete_one({"title": "The Hobbit"})
    assert books.find({"title": "The Hobbit"}).to_list() == []

    books.insert_one({"title": "The Hobbit", "author": "J.R.R. Tolkien"})
    assert len(books.find({"title": "The Hobbit"}).to_list()) == 1


def test_multikey_index():
    """Test an index over an array field matches element lookups."""
    collection = Collection(documents=[
        {"title": "Emma", "tags": ["classic", "romance"]},
        {"title": "Dune", "tags": ["scifi"]},
        {"title": "Untagged"},
    ])
    collection.create_index({"tags": 1})

    assert [d["title"] for d in collection.find({"tags": "classic"})] == ["Emma"]
    assert [d["title"] for d in collection.find({"tags": ["scifi"]})] == ["Dune"]
    assert [d["title"] for d in collection.find({"tags": None})] == ["Untagged"]


def test_index_lookup_counts_keys():
    """Test lookup on a full key and on a prefix."""
    index = Index("author_1_year_1", [("author", 1), ("year", 1)])
    index.add("a", {"author": "Austen", "year": 1813})
    index.add("b", {"author": "Austen", "year": 1815})
    index.add("c", {"author": "Orwell", "year": 1949})

    assert index.lookup(["Austen", 1813]) == ({"a"}, 1)
    assert index.lookup(["Austen"]) == ({"a", "b"}, 2)
    assert len(index) == 3

    index.remove("a", {"author": "Austen", "year": 1813})
    assert index.lookup(["Austen"]) == ({"b"}, 1)
