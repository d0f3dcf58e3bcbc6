"""Data models for books."""
from dataclasses import dataclass
from typing import Optional, Dict, Any


@dataclass
class Book:
    """Normalized book record."""
    title: str
    author: str
    genre: str
    published_year: int
    price: float
    in_stock: bool
    id: Optional[str] = None
    
    @property
    def decade(self) -> int:
        """Decade the book was published in, e.g. 1937 -> 1930."""
        return (self.published_year // 10) * 10
    
    @property
    def price_str(self) -> str:
        """Format price with two decimals."""
        return f"${self.price:.2f}"
    
    def to_document(self) -> Dict[str, Any]:
        """Convert to a collection document (``_id`` only when known)."""
        doc = {
            "title": self.title,
            "author": self.author,
            "genre": self.genre,
            "published_year": self.published_year,
            "price": self.price,
            "in_stock": self.in_stock,
        }
        if self.id is not None:
            doc["_id"] = self.id
        return doc
    
    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Book":
        """Build a Book from a stored document."""
        return cls(
            title=doc["title"],
            author=doc.get("author", ""),
            genre=doc.get("genre", ""),
            published_year=doc.get("published_year", 0),
            price=doc.get("price", 0.0),
            in_stock=doc.get("in_stock", False),
            id=doc.get("_id"),
        )
