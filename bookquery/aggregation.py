"""Aggregation pipeline stages and accumulators."""
import copy
from typing import Any, Dict, List, Tuple
import logging

from bookquery.expressions import (
    MISSING,
    QueryError,
    evaluate,
    freeze,
    get_path,
    is_number,
    matches,
    set_path,
    sort_key,
    unset_path,
)
from bookquery.index import normalize_keys

logger = logging.getLogger(__name__)


def sort_documents(docs: List[Dict[str, Any]], keys: List[Tuple[str, int]]) -> List[Dict[str, Any]]:
    """
    Sort documents by one or more fields.

    The sort is stable, so documents with equal keys keep their input order.

    Args:
        docs: Documents to sort
        keys: Normalized (field, direction) pairs, most significant first

    Returns:
        New sorted list
    """
    result = list(docs)
    # Least significant key first; stability preserves the earlier passes
    for field, direction in reversed(keys):
        result.sort(key=lambda doc: sort_key(get_path(doc, field)), reverse=direction == -1)
    return result


def _is_flag(value: Any) -> bool:
    return isinstance(value, (bool, int)) and value in (0, 1)


def project_document(
    doc: Dict[str, Any],
    projection: Dict[str, Any],
    allow_expressions: bool = False
) -> Dict[str, Any]:
    """
    Apply a projection to a single document.

    Args:
        doc: Source document (not modified)
        projection: {"title": 1, "author": 1} to include, {"price": 0} to exclude
        allow_expressions: Accept computed fields ($project stage only)

    Returns:
        Projected copy of the document
    """
    if not projection:
        return copy.deepcopy(doc)

    include_id = True
    if "_id" in projection:
        if _is_flag(projection["_id"]):
            include_id = bool(projection["_id"])
        elif not allow_expressions:
            raise QueryError(f"Invalid projection value for _id: {projection['_id']!r}")

    included, excluded, computed = [], [], {}
    for field, value in projection.items():
        if field == "_id" and _is_flag(value):
            continue
        if _is_flag(value):
            (included if value else excluded).append(field)
        elif allow_expressions:
            computed[field] = value
        else:
            raise QueryError(f"Invalid projection value for '{field}': {value!r}")

    if excluded and (included or computed):
        raise QueryError("Cannot mix inclusion and exclusion in a projection")

    id_only = include_id and "_id" in projection and not (included or computed)
    if excluded or not (included or computed or id_only):
        # Exclusion mode
        result = copy.deepcopy(doc)
        for field in excluded:
            unset_path(result, field)
        if not include_id:
            result.pop("_id", None)
        return result

    result = {}
    if include_id and "_id" in doc:
        result["_id"] = copy.deepcopy(doc["_id"])
    for field in included:
        value = get_path(doc, field)
        if value is not MISSING:
            set_path(result, field, copy.deepcopy(value))
    for field, expr in computed.items():
        set_path(result, field, evaluate(expr, doc))
    return result


# ---------------------------------------------------------------------------
# $group accumulators
# ---------------------------------------------------------------------------

def _sum(values: List[Any]) -> Any:
    return sum((v for v in values if is_number(v)), 0)


def _avg(values: List[Any]) -> Any:
    numbers = [v for v in values if is_number(v)]
    if not numbers:
        return None
    return sum(numbers) / len(numbers)


def _extreme(values: List[Any], pick) -> Any:
    present = [v for v in values if v is not None]
    if not present:
        return None
    return pick(present, key=sort_key)


def _add_to_set(values: List[Any]) -> List[Any]:
    seen, unique = set(), []
    for value in values:
        key = freeze(value)
        if key not in seen:
            seen.add(key)
            unique.append(value)
    return unique


ACCUMULATORS = {
    "$sum": _sum,
    "$avg": _avg,
    "$min": lambda values: _extreme(values, min),
    "$max": lambda values: _extreme(values, max),
    "$first": lambda values: values[0] if values else None,
    "$last": lambda values: values[-1] if values else None,
    "$push": list,
    "$addToSet": _add_to_set,
}


def _parse_accumulators(spec: Dict[str, Any]) -> Dict[str, Tuple[str, Any]]:
    accumulators = {}
    for field, acc in spec.items():
        if field == "_id":
            continue
        if not isinstance(acc, dict) or len(acc) != 1:
            raise QueryError(f"Group field '{field}' must be a single accumulator")
        (op, expr), = acc.items()
        if op not in ACCUMULATORS:
            raise QueryError(f"Unknown group accumulator: {op}")
        accumulators[field] = (op, expr)
    return accumulators


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------

def _stage_match(docs, spec):
    return [doc for doc in docs if matches(doc, spec)]


def _stage_group(docs, spec):
    if not isinstance(spec, dict) or "_id" not in spec:
        raise QueryError("$group needs an _id expression")
    accumulators = _parse_accumulators(spec)

    # Groups come out in order of first appearance
    groups: Dict[Any, Tuple[Any, Dict[str, List[Any]]]] = {}
    for doc in docs:
        key = evaluate(spec["_id"], doc)
        frozen = freeze(key)
        if frozen not in groups:
            groups[frozen] = (key, {field: [] for field in accumulators})
        _, collected = groups[frozen]
        for field, (_, expr) in accumulators.items():
            collected[field].append(evaluate(expr, doc))

    results = []
    for key, collected in groups.values():
        row = {"_id": key}
        for field, (op, _) in accumulators.items():
            row[field] = ACCUMULATORS[op](collected[field])
        results.append(row)
    return results


def _stage_sort(docs, spec):
    return sort_documents(docs, normalize_keys(spec))


def _stage_limit(docs, spec):
    if not is_number(spec) or spec <= 0 or int(spec) != spec:
        raise QueryError(f"$limit must be a positive integer, got {spec!r}")
    return docs[:int(spec)]


def _stage_skip(docs, spec):
    if not is_number(spec) or spec < 0 or int(spec) != spec:
        raise QueryError(f"$skip must be a non-negative integer, got {spec!r}")
    return docs[int(spec):]


def _stage_project(docs, spec):
    if not isinstance(spec, dict) or not spec:
        raise QueryError("$project needs a non-empty document")
    return [project_document(doc, spec, allow_expressions=True) for doc in docs]


def _stage_count(docs, spec):
    if not isinstance(spec, str) or not spec or spec.startswith("$") or "." in spec:
        raise QueryError(f"$count needs a plain field name, got {spec!r}")
    if not docs:
        return []
    return [{spec: len(docs)}]


STAGES = {
    "$match": _stage_match,
    "$group": _stage_group,
    "$sort": _stage_sort,
    "$limit": _stage_limit,
    "$skip": _stage_skip,
    "$project": _stage_project,
    "$count": _stage_count,
}


def run_pipeline(docs: List[Dict[str, Any]], pipeline: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Run an aggregation pipeline.

    Each stage consumes the previous stage's output.

    Args:
        docs: Input documents (not modified)
        pipeline: List of single-key stage documents

    Returns:
        Output documents of the last stage
    """
    if not isinstance(pipeline, list):
        raise QueryError("Pipeline must be a list of stages")

    results = list(docs)
    for stage in pipeline:
        if not isinstance(stage, dict) or len(stage) != 1:
            raise QueryError(f"Each pipeline stage must have exactly one operator: {stage!r}")
        (name, spec), = stage.items()
        if name not in STAGES:
            raise QueryError(f"Unknown pipeline stage: {name}")
        results = STAGES[name](results, spec)
        logger.debug(f"Stage {name} produced {len(results)} documents")
    return [copy.deepcopy(doc) for doc in results]
