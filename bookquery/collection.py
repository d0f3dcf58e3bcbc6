"""In-memory document collection with find, update, delete, aggregate and indexes."""
import copy
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple
import logging

from bookquery.aggregation import project_document, run_pipeline, sort_documents
from bookquery.expressions import (
    MISSING,
    DuplicateKeyError,
    QueryError,
    equality_fields,
    freeze,
    get_path,
    is_number,
    matches,
    set_path,
    unset_path,
    values_equal,
)
from bookquery.index import Index, choose_index, index_name, normalize_keys

logger = logging.getLogger(__name__)

ID_INDEX = "_id_"
EXPLAIN_VERBOSITIES = ("queryPlanner", "executionStats", "allPlansExecution")
UPDATE_OPERATORS = ("$set", "$unset", "$inc")


@dataclass
class UpdateResult:
    """Outcome of update_one / update_many."""
    matched_count: int
    modified_count: int


@dataclass
class DeleteResult:
    """Outcome of delete_one / delete_many."""
    deleted_count: int


def _new_id() -> str:
    return uuid.uuid4().hex[:24]


def _apply_update(doc: Dict[str, Any], update: Dict[str, Any]):
    """Apply update operators to a document in place."""
    for op, fields in update.items():
        if not isinstance(fields, dict) or not fields:
            raise QueryError(f"{op} needs a non-empty document of fields")
        for path, value in fields.items():
            if path == "_id" or path.startswith("_id."):
                raise QueryError("Cannot modify the immutable field '_id'")
            if op == "$set":
                set_path(doc, path, copy.deepcopy(value))
            elif op == "$unset":
                unset_path(doc, path)
            elif op == "$inc":
                if not is_number(value):
                    raise QueryError(f"$inc amount for '{path}' must be a number")
                current = get_path(doc, path)
                if current is MISSING:
                    current = 0
                elif not is_number(current):
                    raise QueryError(f"Cannot $inc non-numeric field '{path}'")
                set_path(doc, path, current + value)


def _validate_update(update: Dict[str, Any]):
    if not isinstance(update, dict) or not update:
        raise QueryError("Update must be a non-empty document")
    for op in update:
        if not op.startswith("$"):
            raise QueryError("Update document must only contain update operators such as $set")
        if op not in UPDATE_OPERATORS:
            raise QueryError(f"Unknown update operator: {op}")


class Cursor:
    """Lazy result of Collection.find(), refined with sort/skip/limit."""

    def __init__(
        self,
        collection: "Collection",
        query: Optional[Dict[str, Any]] = None,
        projection: Optional[Dict[str, Any]] = None
    ):
        self._collection = collection
        self._query = query or {}
        self._projection = projection
        self._sort: List[Tuple[str, int]] = []
        self._skip = 0
        self._limit = 0

    def sort(self, key_or_list, direction: Optional[int] = None) -> "Cursor":
        """
        Order results.

        Args:
            key_or_list: Field name, {"price": 1}, or [("price", -1), ...]
            direction: 1 or -1 when key_or_list is a field name

        Returns:
            This cursor
        """
        if direction is not None:
            key_or_list = [(key_or_list, direction)]
        self._sort = normalize_keys(key_or_list)
        return self

    def skip(self, count: int) -> "Cursor":
        """Skip the first ``count`` matching documents."""
        if not isinstance(count, int) or isinstance(count, bool) or count < 0:
            raise QueryError(f"skip must be a non-negative integer, got {count!r}")
        self._skip = count
        return self

    def limit(self, count: int) -> "Cursor":
        """Return at most ``count`` documents (0 means no limit)."""
        if not isinstance(count, int) or isinstance(count, bool):
            raise QueryError(f"limit must be an integer, got {count!r}")
        self._limit = abs(count)
        return self

    def _execute(self) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
        started = time.perf_counter()
        docs, stats = self._collection._select(self._query)

        if self._sort:
            docs = sort_documents(docs, self._sort)
        if self._skip:
            docs = docs[self._skip:]
        if self._limit:
            docs = docs[:self._limit]
        docs = [project_document(doc, self._projection) for doc in docs]

        stats["nReturned"] = len(docs)
        stats["executionTimeMillis"] = int((time.perf_counter() - started) * 1000)
        return docs, stats

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        docs, _ = self._execute()
        return iter(docs)

    def to_list(self) -> List[Dict[str, Any]]:
        """Materialize all results."""
        return list(self)

    def _winning_plan(self, index: Optional[Index]) -> Dict[str, Any]:
        if index is None:
            plan = {"stage": "COLLSCAN", "filter": self._query, "direction": "forward"}
        else:
            equalities = equality_fields(self._query)
            bounds = {
                field: [equalities[field]]
                for field in index.fields[:index.prefix_length(equalities)]
            }
            plan = {
                "stage": "FETCH",
                "filter": self._query,
                "inputStage": {
                    "stage": "IXSCAN",
                    "indexName": index.name,
                    "keyPattern": index.key_pattern,
                    "indexBounds": bounds,
                },
            }
        if self._sort:
            plan = {"stage": "SORT", "sortPattern": dict(self._sort), "inputStage": plan}
        if self._skip:
            plan = {"stage": "SKIP", "skipAmount": self._skip, "inputStage": plan}
        if self._limit:
            plan = {"stage": "LIMIT", "limitAmount": self._limit, "inputStage": plan}
        if self._projection:
            plan = {"stage": "PROJECTION_SIMPLE", "transformBy": self._projection, "inputStage": plan}
        return plan

    def explain(self, verbosity: str = "queryPlanner") -> Dict[str, Any]:
        """
        Describe how the query is executed.

        Args:
            verbosity: "queryPlanner", "executionStats" or "allPlansExecution"

        Returns:
            Plan document; execution statistics included unless verbosity
            is "queryPlanner"
        """
        if verbosity not in EXPLAIN_VERBOSITIES:
            raise QueryError(f"Unknown explain verbosity: {verbosity}")

        index = self._collection._plan(self._query)
        result = {
            "queryPlanner": {
                "namespace": self._collection.full_name,
                "parsedQuery": self._query,
                "winningPlan": self._winning_plan(index),
                "rejectedPlans": [],
            }
        }

        if verbosity != "queryPlanner":
            _, stats = self._execute()
            result["executionStats"] = {
                "executionSuccess": True,
                "nReturned": stats["nReturned"],
                "executionTimeMillis": stats["executionTimeMillis"],
                "totalKeysExamined": stats["totalKeysExamined"],
                "totalDocsExamined": stats["totalDocsExamined"],
            }
        return result


class Collection:
    """Named collection of schema-less documents kept in memory."""

    def __init__(
        self,
        name: str = "books",
        database: str = "library",
        documents: Optional[List[Dict[str, Any]]] = None
    ):
        """
        Initialize collection.

        Args:
            name: Collection name
            database: Database name (used for the explain namespace)
            documents: Optional initial documents
        """
        self.name = name
        self.database = database
        self._documents: Dict[Any, Dict[str, Any]] = {}
        self._indexes: Dict[str, Index] = {ID_INDEX: Index(ID_INDEX, [("_id", 1)])}

        if documents:
            self.insert_many(documents)

    @property
    def full_name(self) -> str:
        return f"{self.database}.{self.name}"

    def __len__(self) -> int:
        return len(self._documents)

    # -- writes -------------------------------------------------------------

    def insert_one(self, document: Dict[str, Any]) -> Any:
        """
        Insert a copy of a document.

        Args:
            document: Document to insert; an _id is generated when absent

        Returns:
            The document's _id
        """
        if not isinstance(document, dict):
            raise QueryError(f"Document must be a dict, got {type(document).__name__}")

        doc = copy.deepcopy(document)
        if "_id" not in doc:
            doc["_id"] = _new_id()
        key = freeze(doc["_id"])
        if key in self._documents:
            raise DuplicateKeyError(f"Duplicate _id in {self.full_name}: {doc['_id']!r}")

        self._documents[key] = doc
        for index in self._indexes.values():
            index.add(key, doc)
        return doc["_id"]

    def insert_many(self, documents: List[Dict[str, Any]]) -> List[Any]:
        """Insert several documents. Returns their ids."""
        ids = [self.insert_one(doc) for doc in documents]
        logger.info(f"Inserted {len(ids)} documents into {self.full_name}")
        return ids

    def _update(self, query: Dict[str, Any], update: Dict[str, Any], multi: bool) -> UpdateResult:
        _validate_update(update)
        targets, _ = self._select(query, copies=False)
        if not multi:
            targets = targets[:1]

        modified = 0
        for old in targets:
            new = copy.deepcopy(old)
            _apply_update(new, update)
            if values_equal(new, old):
                continue
            key = freeze(old["_id"])
            for index in self._indexes.values():
                index.remove(key, old)
                index.add(key, new)
            self._documents[key] = new
            modified += 1

        logger.info(f"Update on {self.full_name}: matched {len(targets)}, modified {modified}")
        return UpdateResult(matched_count=len(targets), modified_count=modified)

    def update_one(self, query: Dict[str, Any], update: Dict[str, Any]) -> UpdateResult:
        """
        Update the first document matching a filter.

        Args:
            query: Filter, e.g. {"title": "The Hobbit"}
            update: Operators, e.g. {"$set": {"price": 15.50}}

        Returns:
            UpdateResult with matched and modified counts
        """
        return self._update(query, update, multi=False)

    def update_many(self, query: Dict[str, Any], update: Dict[str, Any]) -> UpdateResult:
        """Update every document matching a filter."""
        return self._update(query, update, multi=True)

    def _delete(self, query: Dict[str, Any], multi: bool) -> DeleteResult:
        targets, _ = self._select(query, copies=False)
        if not multi:
            targets = targets[:1]

        for doc in targets:
            key = freeze(doc["_id"])
            for index in self._indexes.values():
                index.remove(key, doc)
            del self._documents[key]

        logger.info(f"Deleted {len(targets)} documents from {self.full_name}")
        return DeleteResult(deleted_count=len(targets))

    def delete_one(self, query: Dict[str, Any]) -> DeleteResult:
        """Delete the first document matching a filter."""
        return self._delete(query, multi=False)

    def delete_many(self, query: Dict[str, Any]) -> DeleteResult:
        """Delete every document matching a filter."""
        return self._delete(query, multi=True)

    # -- reads --------------------------------------------------------------

    def _plan(self, query: Dict[str, Any]) -> Optional[Index]:
        index = choose_index(list(self._indexes.values()), equality_fields(query))
        if index:
            logger.debug(f"Query {query} on {self.full_name} uses index {index.name}")
        else:
            logger.debug(f"Query {query} on {self.full_name} uses a collection scan")
        return index

    def _select(
        self,
        query: Dict[str, Any],
        copies: bool = True
    ) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
        """
        Find matching documents in insertion order.

        Returns:
            (documents, stats with totalKeysExamined / totalDocsExamined)
        """
        query = query or {}
        index = self._plan(query)

        if index is None:
            candidates = list(self._documents.values())
            keys_examined = 0
        else:
            equalities = equality_fields(query)
            values = [equalities[field] for field in index.fields[:index.prefix_length(equalities)]]
            ids, keys_examined = index.lookup(values)
            candidates = [doc for key, doc in self._documents.items() if key in ids]

        # The full filter is always re-applied, so indexes never change results
        docs = [doc for doc in candidates if matches(doc, query)]
        if copies:
            docs = [copy.deepcopy(doc) for doc in docs]

        stats = {"totalKeysExamined": keys_examined, "totalDocsExamined": len(candidates)}
        return docs, stats

    def find(
        self,
        query: Optional[Dict[str, Any]] = None,
        projection: Optional[Dict[str, Any]] = None
    ) -> Cursor:
        """
        Query the collection.

        Args:
            query: Filter document; empty or None matches everything
            projection: Fields to include ({"title": 1}) or exclude ({"price": 0})

        Returns:
            Cursor supporting sort(), skip(), limit() and explain()
        """
        return Cursor(self, query, projection)

    def find_one(
        self,
        query: Optional[Dict[str, Any]] = None,
        projection: Optional[Dict[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        """Return the first matching document or None."""
        for doc in self.find(query, projection).limit(1):
            return doc
        return None

    def count_documents(self, query: Optional[Dict[str, Any]] = None) -> int:
        """Count documents matching a filter."""
        docs, _ = self._select(query or {}, copies=False)
        return len(docs)

    def aggregate(self, pipeline: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Run an aggregation pipeline over the collection."""
        return run_pipeline(list(self._documents.values()), pipeline)

    def documents(self) -> List[Dict[str, Any]]:
        """Copies of all documents in insertion order."""
        return [copy.deepcopy(doc) for doc in self._documents.values()]

    # -- indexes ------------------------------------------------------------

    def create_index(self, keys, name: Optional[str] = None) -> str:
        """
        Create an index to speed up equality lookups.

        Args:
            keys: {"title": 1}, [("author", 1), ("published_year", 1)] or a field name
            name: Optional index name (defaults to e.g. "title_1")

        Returns:
            Index name
        """
        pairs = normalize_keys(keys)
        name = name or index_name(pairs)

        existing = self._indexes.get(name)
        if existing is not None:
            if existing.keys != pairs:
                raise QueryError(f"Index '{name}' already exists with a different key pattern")
            return name
        for index in self._indexes.values():
            if index.keys == pairs:
                raise QueryError(f"Index with pattern {dict(pairs)} already exists as '{index.name}'")

        index = Index(name, pairs)
        index.rebuild(self._documents)
        self._indexes[name] = index
        logger.info(f"Created index {name} on {self.full_name} ({len(index)} keys)")
        return name

    def list_indexes(self) -> List[Dict[str, Any]]:
        """Describe all indexes, _id_ first."""
        return [index.describe() for index in self._indexes.values()]

    def drop_index(self, name: str):
        """Drop an index by name."""
        if name == ID_INDEX:
            raise QueryError("Cannot drop the _id_ index")
        if name not in self._indexes:
            raise QueryError(f"Index not found: {name}")
        del self._indexes[name]
        logger.info(f"Dropped index {name} on {self.full_name}")
