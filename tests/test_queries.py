"""Tests for the example query catalog."""
import pytest

from bookquery import queries
from bookquery.collection import Collection
from bookquery.models import Book
from bookquery.snapshot import load_seed


def titles(docs):
    return [doc["title"] for doc in docs]


def test_books_in_genre(books):
    """Test finding books in a genre."""
    assert titles(queries.books_in_genre(books, "Fantasy")) == ["The Hobbit", "The Lord of the Rings"]
    assert queries.books_in_genre(books, "Horror") == []


def test_books_published_after(books):
    """Test the strictly-greater year filter."""
    found = queries.books_published_after(books, 1940)
    assert titles(found) == [
        "1984",
        "The Lord of the Rings",
        "Project Hail Mary",
        "The Midnight Library",
        "To Kill a Mockingbird",
    ]
    assert all(doc["published_year"] > 1940 for doc in found)
    assert queries.books_published_after(books, 2021) == []


def test_books_by_author(books):
    """Test finding books by author."""
    assert titles(queries.books_by_author(books, "Jane Austen")) == ["Pride and Prejudice", "Emma"]


def test_update_book_price(books):
    """Test updating the price of The Hobbit."""
    result = queries.update_book_price(books, "The Hobbit", 15.50)
    assert (result.matched_count, result.modified_count) == (1, 1)
    assert books.find_one({"title": "The Hobbit"})["price"] == 15.50


def test_delete_book_by_title(books):
    """Test deleting a book by title."""
    result = queries.delete_book_by_title(books, "To Kill a Mockingbird")
    assert result.deleted_count == 1
    assert books.count_documents({}) == 7


def test_in_stock_published_after(books):
    """Test combining in-stock and year conditions."""
    assert titles(queries.in_stock_published_after(books, 2010)) == ["Project Hail Mary"]


def test_in_stock_summary(books):
    """Test projection of title, author and price."""
    summary = queries.in_stock_summary(books)
    assert len(summary) == 6
    for doc in summary:
        assert set(doc) == {"_id", "title", "author", "price"}


def test_books_by_price(books):
    """Test price ordering both ways."""
    ascending = queries.books_by_price(books)
    descending = queries.books_by_price(books, descending=True)
    assert titles(ascending)[:2] == ["Emma", "Pride and Prejudice"]
    assert titles(descending)[0] == "The Lord of the Rings"
    assert titles(descending) == list(reversed(titles(ascending)))


def test_books_page(books):
    """Test five-per-page pagination."""
    first = queries.books_page(books, 0)
    second = queries.books_page(books, 1)
    third = queries.books_page(books, 2)

    assert len(first) == 5
    assert len(second) == 3
    assert third == []
    assert titles(first) + titles(second) == titles(books.find())


def test_books_page_with_sort(books):
    """Test sorted pages partition the sorted result."""
    pages = [queries.books_page(books, page, page_size=3, sort={"price": 1}) for page in range(3)]
    assert sum((titles(p) for p in pages), []) == titles(queries.books_by_price(books))


def test_average_price_by_genre(books):
    """Test the per-genre mean equals the arithmetic mean of each subset."""
    results = {row["_id"]: row["averagePrice"] for row in queries.average_price_by_genre(books)}

    genres = {doc["genre"] for doc in books.find()}
    assert set(results) == genres
    for genre in genres:
        prices = [doc["price"] for doc in books.find({"genre": genre})]
        assert results[genre] == pytest.approx(sum(prices) / len(prices))
    assert results["Romance"] == pytest.approx(7.245)


def test_author_with_most_books_tie_break(books):
    """Test ties resolve to the alphabetically first author."""
    # Jane Austen and J.R.R. Tolkien both have two books
    assert queries.author_with_most_books(books) == {"_id": "J.R.R. Tolkien", "bookCount": 2}


def test_author_with_most_books_clear_winner(books):
    """Test the author with the maximum count wins."""
    books.insert_one({"title": "Persuasion", "author": "Jane Austen"})
    assert queries.author_with_most_books(books) == {"_id": "Jane Austen", "bookCount": 3}


def test_author_with_most_books_empty():
    """Test an empty collection has no top author."""
    assert queries.author_with_most_books(Collection()) is None


def test_books_per_decade(books):
    """Test grouping by publication decade."""
    results = {row["_id"]["decade"]: row["bookCount"] for row in queries.books_per_decade(books)}
    assert results == {1810: 2, 1930: 1, 1940: 1, 1950: 1, 2020: 2, 1960: 1}
    assert sum(results.values()) == len(books)


def test_index_helpers_and_explain(books):
    """Test the example indexes and the explain demonstration."""
    before = queries.explain_title_lookup(books, "The Hobbit")
    assert queries.create_title_index(books) == "title_1"
    assert queries.create_author_year_index(books) == "author_1_published_year_1"
    after = queries.explain_title_lookup(books, "The Hobbit")

    assert before["executionStats"]["nReturned"] == after["executionStats"]["nReturned"] == 1
    assert after["executionStats"]["totalDocsExamined"] < before["executionStats"]["totalDocsExamined"]


def test_seed_data_supports_every_query():
    """Test the bundled sample books against every example query."""
    books = Collection(documents=load_seed())

    assert titles(queries.books_in_genre(books, "Fantasy")) == ["The Hobbit", "The Lord of the Rings"]
    assert titles(queries.books_by_author(books, "Jane Austen")) == ["Pride and Prejudice"]
    assert queries.update_book_price(books, "The Hobbit", 15.50).modified_count == 1
    assert queries.delete_book_by_title(books, "To Kill a Mockingbird").deleted_count == 1
    assert titles(queries.in_stock_published_after(books, 2010)) == ["Project Hail Mary"]
    assert queries.author_with_most_books(books) == {"_id": "George Orwell", "bookCount": 2}
    assert queries.explain_title_lookup(books, "The Great Gatsby")["executionStats"]["nReturned"] == 1


def test_books_per_decade_negative_years():
    """Test decades floor toward negative infinity and agree with Book.decade."""
    books = Collection(documents=[
        {"title": "Tablet A", "published_year": -5},
        {"title": "Tablet B", "published_year": -19},
        {"title": "Scroll", "published_year": 5},
    ])

    results = {row["_id"]["decade"]: row["bookCount"] for row in queries.books_per_decade(books)}

    assert results == {-10: 1, -20: 1, 0: 1}
    for doc in books.find():
        assert Book.from_document(doc).decade in results
