"""
Example queries against the books collection.

Each function wraps one statement: basic lookups and updates, in-stock
and projection queries, price sorting, pagination, aggregation pipelines
and index management.
"""
from typing import Any, Dict, List, Optional

from bookquery.collection import Collection, DeleteResult, UpdateResult

PAGE_SIZE = 5


# QUERY 1: Books in a genre
def books_in_genre(books: Collection, genre: str) -> List[Dict[str, Any]]:
    """Find all books in a specific genre."""
    return books.find({"genre": genre}).to_list()


# QUERY 2: Books published after a year
def books_published_after(books: Collection, year: int) -> List[Dict[str, Any]]:
    """Find books published strictly after ``year``."""
    return books.find({"published_year": {"$gt": year}}).to_list()


# QUERY 3: Books by an author
def books_by_author(books: Collection, author: str) -> List[Dict[str, Any]]:
    """Find books by a specific author."""
    return books.find({"author": author}).to_list()


# QUERY 4: Update a price
def update_book_price(books: Collection, title: str, price: float) -> UpdateResult:
    """Set the price of the first book with the given title."""
    return books.update_one({"title": title}, {"$set": {"price": price}})


# QUERY 5: Delete by title
def delete_book_by_title(books: Collection, title: str) -> DeleteResult:
    """Delete the first book with the given title."""
    return books.delete_one({"title": title})


# ADVANCED 1: In stock and recent
def in_stock_published_after(books: Collection, year: int) -> List[Dict[str, Any]]:
    """Books that are in stock and published after ``year``."""
    return books.find({
        "in_stock": True,
        "published_year": {"$gt": year},
    }).to_list()


# ADVANCED 2: Projection
def in_stock_summary(books: Collection) -> List[Dict[str, Any]]:
    """Title, author and price (plus _id) of every in-stock book."""
    return books.find(
        {"in_stock": True},
        {"title": 1, "author": 1, "price": 1}
    ).to_list()


# ADVANCED 3: Sorting
def books_by_price(books: Collection, descending: bool = False) -> List[Dict[str, Any]]:
    """All books ordered by price, cheapest first unless ``descending``."""
    return books.find().sort({"price": -1 if descending else 1}).to_list()


# ADVANCED 4: Pagination
def books_page(
    books: Collection,
    page: int,
    page_size: int = PAGE_SIZE,
    sort: Optional[Dict[str, int]] = None
) -> List[Dict[str, Any]]:
    """
    One page of books.

    Args:
        books: Collection to query
        page: Zero-based page number
        page_size: Books per page
        sort: Optional sort specification for stable paging

    Returns:
        Up to ``page_size`` books
    """
    cursor = books.find()
    if sort:
        cursor = cursor.sort(sort)
    return cursor.skip(page * page_size).limit(page_size).to_list()


# AGGREGATION 1: Average price by genre
def average_price_by_genre(books: Collection) -> List[Dict[str, Any]]:
    """Average price of books in each genre."""
    return books.aggregate([
        {"$group": {"_id": "$genre", "averagePrice": {"$avg": "$price"}}},
    ])


# AGGREGATION 2: Most prolific author
def author_with_most_books(books: Collection) -> Optional[Dict[str, Any]]:
    """
    Author with the most books in the collection.

    Ties go to the alphabetically first author.

    Returns:
        {"_id": author, "bookCount": n} or None for an empty collection
    """
    results = books.aggregate([
        {"$group": {"_id": "$author", "bookCount": {"$sum": 1}}},
        {"$sort": {"bookCount": -1, "_id": 1}},
        {"$limit": 1},
    ])
    return results[0] if results else None


# AGGREGATION 3: Books per decade
def books_per_decade(books: Collection) -> List[Dict[str, Any]]:
    """Count books by publication decade, e.g. {"_id": {"decade": 1930}, "bookCount": 2}."""
    return books.aggregate([
        {
            "$group": {
                "_id": {
                    "decade": {"$multiply": [{"$floor": {"$divide": ["$published_year", 10]}}, 10]},
                },
                "bookCount": {"$sum": 1},
            }
        },
    ])


# INDEXING 1: Title index
def create_title_index(books: Collection) -> str:
    return books.create_index({"title": 1})


# INDEXING 2: Compound author/year index
def create_author_year_index(books: Collection) -> str:
    return books.create_index({"author": 1, "published_year": 1})


# INDEXING 3: Explain
def explain_title_lookup(books: Collection, title: str) -> Dict[str, Any]:
    """Execution plan and statistics for a lookup by title."""
    return books.find({"title": title}).explain("executionStats")
