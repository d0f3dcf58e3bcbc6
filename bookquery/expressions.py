"""Field paths, value ordering, filter matching and aggregation expressions."""
import math
from numbers import Real
from typing import Any, Dict, List, Tuple


class QueryError(ValueError):
    """Malformed filter, projection, sort, update or pipeline."""


class DuplicateKeyError(QueryError):
    """A document with the same _id already exists."""


class _Missing:
    """Marker for a field that is absent from a document."""

    def __repr__(self):
        return "MISSING"


MISSING = _Missing()

# BSON comparison order: null < numbers < strings < documents < arrays < booleans
_BRACKET_NULL = 1
_BRACKET_NUMBER = 2
_BRACKET_STRING = 3
_BRACKET_DOCUMENT = 4
_BRACKET_ARRAY = 5
_BRACKET_BOOL = 8
_BRACKET_OTHER = 100


def is_number(value: Any) -> bool:
    """True for ints and floats, never for booleans."""
    return isinstance(value, Real) and not isinstance(value, bool)


def type_bracket(value: Any) -> int:
    """Position of a value's type in the cross-type sort order."""
    if value is None or value is MISSING:
        return _BRACKET_NULL
    if isinstance(value, bool):
        return _BRACKET_BOOL
    if is_number(value):
        return _BRACKET_NUMBER
    if isinstance(value, str):
        return _BRACKET_STRING
    if isinstance(value, dict):
        return _BRACKET_DOCUMENT
    if isinstance(value, (list, tuple)):
        return _BRACKET_ARRAY
    return _BRACKET_OTHER


def sort_key(value: Any) -> Tuple:
    """Key usable with sorted() that orders values across types."""
    bracket = type_bracket(value)
    if bracket == _BRACKET_NULL:
        return (bracket, 0)
    if bracket == _BRACKET_DOCUMENT:
        return (bracket, tuple((k, sort_key(v)) for k, v in value.items()))
    if bracket == _BRACKET_ARRAY:
        return (bracket, tuple(sort_key(v) for v in value))
    if bracket == _BRACKET_OTHER:
        return (bracket, repr(value))
    return (bracket, value)


def freeze(value: Any) -> Any:
    """Hashable form of a document value, keeping booleans apart from 0/1."""
    if value is MISSING:
        return None
    if isinstance(value, bool):
        return ("$bool", value)
    if isinstance(value, dict):
        return ("$doc", tuple((k, freeze(v)) for k, v in value.items()))
    if isinstance(value, (list, tuple)):
        return ("$array", tuple(freeze(v) for v in value))
    return value


def values_equal(left: Any, right: Any) -> bool:
    """Equality that respects type brackets (True != 1)."""
    if type_bracket(left) != type_bracket(right):
        return False
    return freeze(left) == freeze(right)


def compare(left: Any, right: Any):
    """
    Compare two values of the same type bracket.

    Returns:
        -1, 0 or 1, or None when the values are not comparable
    """
    if type_bracket(left) != type_bracket(right):
        return None
    a, b = sort_key(left), sort_key(right)
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


# ---------------------------------------------------------------------------
# Field paths
# ---------------------------------------------------------------------------

def get_path(doc: Dict[str, Any], path: str) -> Any:
    """
    Resolve a dotted path in a document.

    Args:
        doc: Document to read from
        path: Field name, optionally dotted ("meta.isbn")

    Returns:
        The value, or MISSING if any segment is absent
    """
    current: Any = doc
    for part in path.split("."):
        if isinstance(current, dict):
            if part not in current:
                return MISSING
            current = current[part]
        elif isinstance(current, list):
            if part.isdigit():
                index = int(part)
                if index >= len(current):
                    return MISSING
                current = current[index]
            else:
                # Reach into each embedded document of the array
                found = [item[part] for item in current if isinstance(item, dict) and part in item]
                if not found:
                    return MISSING
                current = found
        else:
            return MISSING
    return current


def set_path(doc: Dict[str, Any], path: str, value: Any):
    """Assign a value at a dotted path, creating embedded documents."""
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        child = current.get(part)
        if child is None:
            child = {}
            current[part] = child
        elif not isinstance(child, dict):
            raise QueryError(f"Cannot create field '{path}' inside non-document value")
        current = child
    current[parts[-1]] = value


def unset_path(doc: Dict[str, Any], path: str) -> bool:
    """Remove the field at a dotted path. Returns True if it existed."""
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        current = current.get(part) if isinstance(current, dict) else None
        if not isinstance(current, dict):
            return False
    return current.pop(parts[-1], MISSING) is not MISSING


# ---------------------------------------------------------------------------
# Filter matching
# ---------------------------------------------------------------------------

def _is_operator_document(cond: Any) -> bool:
    if not isinstance(cond, dict) or not cond:
        return False
    keys = [k.startswith("$") for k in cond]
    if any(keys) and not all(keys):
        raise QueryError(f"Cannot mix operators and fields in condition: {cond}")
    return all(keys)


def _equals(value: Any, target: Any) -> bool:
    if value is MISSING:
        return target is None
    if values_equal(value, target):
        return True
    if isinstance(value, list):
        return any(values_equal(item, target) for item in value)
    return False


def _range(value: Any, target: Any, accept) -> bool:
    if value is MISSING:
        # Missing compares as null
        value = None
    candidates = [value] + (value if isinstance(value, list) else [])
    for candidate in candidates:
        result = compare(candidate, target)
        if result is not None and accept(result):
            return True
    return False


_RANGE_OPERATORS = {
    "$gt": lambda r: r > 0,
    "$gte": lambda r: r >= 0,
    "$lt": lambda r: r < 0,
    "$lte": lambda r: r <= 0,
}


def _apply_operator(op: str, value: Any, target: Any) -> bool:
    if op == "$eq":
        return _equals(value, target)
    if op == "$ne":
        return not _equals(value, target)
    if op in _RANGE_OPERATORS:
        return _range(value, target, _RANGE_OPERATORS[op])
    if op in ("$in", "$nin"):
        if not isinstance(target, (list, tuple)):
            raise QueryError(f"{op} needs an array")
        found = any(_equals(value, t) for t in target)
        return found if op == "$in" else not found
    if op == "$exists":
        return bool(target) == (value is not MISSING)
    raise QueryError(f"Unknown query operator: {op}")


def match_condition(value: Any, cond: Any) -> bool:
    """Test one field value against a condition (literal or operator document)."""
    if _is_operator_document(cond):
        return all(_apply_operator(op, value, target) for op, target in cond.items())
    return _equals(value, cond)


def matches(doc: Dict[str, Any], query: Dict[str, Any]) -> bool:
    """
    Test whether a document satisfies a filter.

    Top-level conditions are combined with an implicit AND.

    Args:
        doc: Document to test
        query: Filter document, e.g. {"genre": "Fantasy", "published_year": {"$gt": 1940}}

    Returns:
        True if the document matches
    """
    if not query:
        return True
    if not isinstance(query, dict):
        raise QueryError(f"Filter must be a document, got {type(query).__name__}")

    for key, cond in query.items():
        if key in ("$and", "$or", "$nor"):
            if not isinstance(cond, list) or not cond:
                raise QueryError(f"{key} needs a non-empty array")
            results = (matches(doc, sub) for sub in cond)
            if key == "$and" and not all(results):
                return False
            if key == "$or" and not any(results):
                return False
            if key == "$nor" and any(results):
                return False
        elif key.startswith("$"):
            raise QueryError(f"Unknown top-level operator: {key}")
        elif not match_condition(get_path(doc, key), cond):
            return False
    return True


def equality_fields(query: Dict[str, Any]) -> Dict[str, Any]:
    """Fields of a filter constrained to a single value (usable for index lookups)."""
    fields = {}
    for key, cond in (query or {}).items():
        if key.startswith("$"):
            continue
        if _is_operator_document(cond):
            if set(cond) == {"$eq"}:
                fields[key] = cond["$eq"]
        else:
            fields[key] = cond
    return fields


# ---------------------------------------------------------------------------
# Aggregation expressions
# ---------------------------------------------------------------------------

def _numbers(op: str, args: List[Any]) -> List[Any]:
    for arg in args:
        if arg is not None and not is_number(arg):
            raise QueryError(f"{op} only supports numeric types, got {type(arg).__name__}")
    return args


def _arguments(op: str, operand: Any, doc: Dict[str, Any], count=None) -> List[Any]:
    if not isinstance(operand, list):
        operand = [operand]
    if count is not None and len(operand) != count:
        raise QueryError(f"{op} takes exactly {count} argument(s), got {len(operand)}")
    return _numbers(op, [evaluate(arg, doc) for arg in operand])


def _operator(op: str, operand: Any, doc: Dict[str, Any]) -> Any:
    if op == "$literal":
        return operand

    if op in ("$multiply", "$add"):
        args = _arguments(op, operand, doc)
        if any(a is None for a in args):
            return None
        result = 1 if op == "$multiply" else 0
        for arg in args:
            result = result * arg if op == "$multiply" else result + arg
        return result

    if op in ("$subtract", "$divide"):
        left, right = _arguments(op, operand, doc, count=2)
        if left is None or right is None:
            return None
        if op == "$subtract":
            return left - right
        if right == 0:
            raise QueryError("Cannot $divide by zero")
        return left / right

    if op in ("$trunc", "$floor"):
        (value,) = _arguments(op, operand, doc, count=1)
        if value is None:
            return None
        return math.trunc(value) if op == "$trunc" else math.floor(value)

    raise QueryError(f"Unknown expression operator: {op}")


def evaluate(expr: Any, doc: Dict[str, Any]) -> Any:
    """
    Evaluate an aggregation expression against a document.

    Field paths ("$price") resolve to the field value, or None when
    missing. Operator documents ({"$divide": ["$published_year", 10]})
    are computed. Plain documents evaluate each value. Anything else is
    a literal.
    """
    if isinstance(expr, str) and expr.startswith("$"):
        value = get_path(doc, expr[1:])
        return None if value is MISSING else value
    if isinstance(expr, dict):
        if len(expr) == 1:
            (key, operand), = expr.items()
            if key.startswith("$"):
                return _operator(key, operand, doc)
        return {key: evaluate(value, doc) for key, value in expr.items()}
    if isinstance(expr, list):
        return [evaluate(item, doc) for item in expr]
    return expr
