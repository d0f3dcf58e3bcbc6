"""In-memory book collection with a document-style query evaluator."""
from bookquery.collection import Collection, Cursor, DeleteResult, UpdateResult
from bookquery.expressions import DuplicateKeyError, QueryError

__all__ = [
    "Collection",
    "Cursor",
    "DeleteResult",
    "UpdateResult",
    "QueryError",
    "DuplicateKeyError",
]
