"""JSON file snapshots of a collection."""
import json
from pathlib import Path
from typing import Any, Dict, List, Union
import logging

logger = logging.getLogger(__name__)

SEED_FILE = Path(__file__).parent / "data" / "books.json"


def load_snapshot(path: Union[str, Path]) -> List[Dict[str, Any]]:
    """Read a JSON array of documents."""
    with open(path, encoding="utf-8") as f:
        documents = json.load(f)
    if not isinstance(documents, list):
        raise ValueError(f"{path} does not contain a JSON array of documents")
    logger.info(f"Loaded {len(documents)} documents from {path}")
    return documents


def save_snapshot(path: Union[str, Path], documents: List[Dict[str, Any]]):
    """Write documents as a JSON array."""
    with open(path, "w", encoding="utf-8") as f:
        json.dump(documents, f, indent=2)
    logger.info(f"Saved {len(documents)} documents to {path}")


def load_seed() -> List[Dict[str, Any]]:
    """Bundled sample books."""
    return load_snapshot(SEED_FILE)
