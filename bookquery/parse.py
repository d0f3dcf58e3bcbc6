"""Parse and normalize raw book documents from seed files and feeds."""
from typing import Dict, Any, List, Optional
import logging

from bookquery.models import Book

logger = logging.getLogger(__name__)

_TRUE_STRINGS = {"true", "yes", "1", "y"}


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return bool(value)


def parse_book(item: Dict[str, Any]) -> Optional[Book]:
    """
    Parse a single raw book document.

    Args:
        item: Raw document, e.g. an entry of a seed JSON array

    Returns:
        Book object or None if parsing fails
    """
    try:
        title = item.get("title")
        if not title:
            return None

        # Coerce loosely typed fields (CSV exports, hand-written seeds)
        published_year = item.get("published_year")
        price = item.get("price")

        return Book(
            title=str(title),
            author=item.get("author") or "Unknown",
            genre=item.get("genre") or "Unknown",
            published_year=int(published_year) if published_year is not None else 0,
            price=round(float(price), 2) if price is not None else 0.0,
            in_stock=_to_bool(item.get("in_stock", False)),
            id=item.get("_id")
        )
    except (AttributeError, TypeError, ValueError) as e:
        logger.warning(f"Failed to parse book: {e}")
        return None


def parse_books_response(payload: Any) -> List[Book]:
    """
    Parse a seed payload.

    Args:
        payload: Either a list of documents or {"books": [...]}

    Returns:
        List of Book objects (empty if nothing parseable)
    """
    if isinstance(payload, dict):
        items = payload.get("books", [])
    elif isinstance(payload, list):
        items = payload
    else:
        return []

    books = []
    for item in items:
        book = parse_book(item)
        if book:
            books.append(book)

    return books


def deduplicate_books(books: List[Book]) -> List[Book]:
    """
    Remove duplicate books by title, keeping the first.

    Args:
        books: List of Book objects

    Returns:
        Deduplicated list of books
    """
    seen_titles = set()
    unique_books = []

    for book in books:
        if book.title not in seen_titles:
            seen_titles.add(book.title)
            unique_books.append(book)

    return unique_books
