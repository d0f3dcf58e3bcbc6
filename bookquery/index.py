"""Single-field and compound indexes over a collection."""
from itertools import product
from typing import Any, Dict, List, Optional, Set, Tuple

from bookquery.expressions import MISSING, QueryError, freeze, get_path


def normalize_keys(keys) -> List[Tuple[str, int]]:
    """
    Normalize an index or sort key specification.

    Accepts {"author": 1, "published_year": 1}, [("author", 1), ...],
    a single ("price", -1) pair or a bare field name.

    Returns:
        List of (field, direction) pairs
    """
    if isinstance(keys, str):
        pairs = [(keys, 1)]
    elif isinstance(keys, dict):
        pairs = list(keys.items())
    elif isinstance(keys, tuple) and len(keys) == 2 and isinstance(keys[0], str):
        pairs = [keys]
    elif isinstance(keys, (list, tuple)):
        pairs = [(k, 1) if isinstance(k, str) else tuple(k) for k in keys]
    else:
        raise QueryError(f"Invalid key specification: {keys!r}")

    if not pairs:
        raise QueryError("Key specification must name at least one field")

    for field, direction in pairs:
        if not isinstance(field, str) or not field:
            raise QueryError(f"Invalid field name: {field!r}")
        if direction not in (1, -1) or isinstance(direction, bool):
            raise QueryError(f"Direction for '{field}' must be 1 or -1, got {direction!r}")
    return [(field, direction) for field, direction in pairs]


def index_name(keys: List[Tuple[str, int]]) -> str:
    """Default index name, e.g. author_1_published_year_1."""
    return "_".join(f"{field}_{direction}" for field, direction in keys)


class Index:
    """Lookup from key tuples to the ids of documents holding them."""

    def __init__(self, name: str, keys: List[Tuple[str, int]]):
        self.name = name
        self.keys = keys
        self._entries: Dict[Tuple, Dict[Any, None]] = {}

    @property
    def fields(self) -> List[str]:
        return [field for field, _ in self.keys]

    @property
    def key_pattern(self) -> Dict[str, int]:
        return dict(self.keys)

    def _keys_for(self, doc: Dict[str, Any]) -> Set[Tuple]:
        per_field = []
        for field in self.fields:
            value = get_path(doc, field)
            if value is MISSING:
                per_field.append([None])
            elif isinstance(value, list) and value:
                # Multikey: index each element as well as the whole array
                per_field.append([freeze(v) for v in value] + [freeze(value)])
            else:
                per_field.append([freeze(value)])
        return set(product(*per_field))

    def add(self, doc_id: Any, doc: Dict[str, Any]):
        for key in self._keys_for(doc):
            self._entries.setdefault(key, {})[doc_id] = None

    def remove(self, doc_id: Any, doc: Dict[str, Any]):
        for key in self._keys_for(doc):
            bucket = self._entries.get(key)
            if bucket is None:
                continue
            bucket.pop(doc_id, None)
            if not bucket:
                del self._entries[key]

    def rebuild(self, documents: Dict[Any, Dict[str, Any]]):
        self._entries = {}
        for doc_id, doc in documents.items():
            self.add(doc_id, doc)

    def prefix_length(self, equalities: Dict[str, Any]) -> int:
        """Number of leading index fields constrained by equality conditions."""
        length = 0
        for field in self.fields:
            if field not in equalities:
                break
            length += 1
        return length

    def lookup(self, values: List[Any]) -> Tuple[Set[Any], int]:
        """
        Find documents whose leading key fields equal the given values.

        Args:
            values: Values for the first len(values) index fields

        Returns:
            (matching document ids, number of index keys examined)
        """
        prefix = tuple(freeze(v) for v in values)
        if len(prefix) == len(self.keys):
            bucket = self._entries.get(prefix, {})
            return set(bucket), len(bucket)

        ids: Set[Any] = set()
        examined = 0
        for key, bucket in self._entries.items():
            if key[:len(prefix)] == prefix:
                ids.update(bucket)
                examined += len(bucket)
        return ids, examined

    def describe(self) -> Dict[str, Any]:
        """Index summary in the shape returned by list_indexes()."""
        return {"name": self.name, "key": self.key_pattern}

    def __len__(self) -> int:
        return sum(len(bucket) for bucket in self._entries.values())


def choose_index(indexes: List[Index], equalities: Dict[str, Any]) -> Optional[Index]:
    """Pick the index covering the longest prefix of equality conditions."""
    best, best_length = None, 0
    for index in indexes:
        length = index.prefix_length(equalities)
        if length > best_length:
            best, best_length = index, length
    return best
