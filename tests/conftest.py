"""Shared fixtures."""
import pytest

from bookquery.collection import Collection

SAMPLE_BOOKS = [
    {"title": "Pride and Prejudice", "author": "Jane Austen", "genre": "Romance", "published_year": 1813, "price": 7.99, "in_stock": True},
    {"title": "Emma", "author": "Jane Austen", "genre": "Romance", "published_year": 1815, "price": 6.5, "in_stock": False},
    {"title": "The Hobbit", "author": "J.R.R. Tolkien", "genre": "Fantasy", "published_year": 1937, "price": 14.99, "in_stock": True},
    {"title": "1984", "author": "George Orwell", "genre": "Dystopian", "published_year": 1949, "price": 10.99, "in_stock": True},
    {"title": "The Lord of the Rings", "author": "J.R.R. Tolkien", "genre": "Fantasy", "published_year": 1954, "price": 19.99, "in_stock": True},
    {"title": "Project Hail Mary", "author": "Andy Weir", "genre": "Science Fiction", "published_year": 2021, "price": 16.99, "in_stock": True},
    {"title": "The Midnight Library", "author": "Matt Haig", "genre": "Fiction", "published_year": 2020, "price": 13.99, "in_stock": False},
    {"title": "To Kill a Mockingbird", "author": "Harper Lee", "genre": "Fiction", "published_year": 1960, "price": 12.99, "in_stock": True},
]


@pytest.fixture
def books():
    """A fresh collection of sample books."""
    return Collection("books", "library", SAMPLE_BOOKS)
