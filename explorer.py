#!/usr/bin/env python3
"""Book Query Explorer CLI - run the example queries against a books collection."""
import argparse
import sys
import json
from pathlib import Path
from tabulate import tabulate
from bookquery import queries
from bookquery.client import SeedClient, SeedError
from bookquery.collection import Collection
from bookquery.config import Config
from bookquery.database import Database
from bookquery.parse import parse_books_response, deduplicate_books
from bookquery.snapshot import load_seed, load_snapshot, save_snapshot
import logging

# Configure logging
logging.basicConfig(
    level=Config.LOG_LEVEL,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def setup_database(config: Config) -> Database:
    """Initialize database."""
    db = Database(config.DATABASE_URL)
    db.init_schema()
    return db


def open_collection(args, config: Config) -> Collection:
    """Load the collection from PostgreSQL or the JSON snapshot."""
    if args.db:
        db = setup_database(config)
        try:
            documents = db.load_collection(config.COLLECTION)
        finally:
            db.close()
    else:
        path = Path(args.data)
        if path.exists():
            documents = load_snapshot(path)
        else:
            logger.info(f"{path} not found - starting from bundled sample books")
            documents = load_seed()

    return Collection(config.COLLECTION, config.DATABASE, documents)


def save_collection(args, config: Config, collection: Collection):
    """Write the collection back to where it was loaded from."""
    if args.db:
        db = setup_database(config)
        try:
            if not db.save_collection(config.COLLECTION, collection.documents()):
                raise RuntimeError("Failed to save collection to database")
        finally:
            db.close()
    else:
        save_snapshot(args.data, collection.documents())


def display_documents(docs, format_type: str, show_id: bool = False):
    """Display documents in specified format."""
    if not docs:
        print("No results.")
        return

    if format_type == "table":
        # Columns in order of first appearance
        headers = []
        for doc in docs:
            for key in doc:
                if key not in headers and (show_id or key != "_id"):
                    headers.append(key)
        rows = []
        for doc in docs:
            row = []
            for key in headers:
                value = doc.get(key, "")
                text = json.dumps(value) if isinstance(value, (dict, list)) else str(value)
                row.append(text[:40] + "..." if len(text) > 40 else text)
            rows.append(row)
        print("\n" + tabulate(rows, headers=headers, tablefmt="grid"))

    elif format_type == "json":
        print(json.dumps(docs, indent=2, ensure_ascii=False))

    elif format_type == "compact":
        for i, doc in enumerate(docs, 1):
            label = doc.get("title", doc.get("_id"))
            extra = doc.get("author")
            print(f"{i}. {label} - {extra}" if extra else f"{i}. {label}")


def find_books(args, config: Config):
    """Filter, project, sort and paginate books."""
    collection = open_collection(args, config)

    query = {}
    if args.genre:
        query["genre"] = args.genre
    if args.author:
        query["author"] = args.author
    if args.after is not None:
        query["published_year"] = {"$gt": args.after}
    if args.in_stock:
        query["in_stock"] = True

    projection = None
    if args.fields:
        projection = {field.strip(): 1 for field in args.fields.split(",") if field.strip()}

    cursor = collection.find(query, projection)
    if args.sort:
        cursor = cursor.sort(args.sort, -1 if args.desc else 1)
    if args.page is not None:
        page_size = args.page_size or config.PAGE_SIZE
        cursor = cursor.skip(args.page * page_size).limit(page_size)

    books = cursor.to_list()
    logger.info(f"Found {len(books)} books")
    display_documents(books, args.format)


def update_price(args, config: Config):
    """Set the price of a book by title."""
    collection = open_collection(args, config)
    result = queries.update_book_price(collection, args.title, args.price)

    if result.matched_count == 0:
        logger.warning(f"No book titled '{args.title}'")
        return

    if result.modified_count:
        save_collection(args, config, collection)
    print(f"✅ Matched {result.matched_count}, modified {result.modified_count}")


def delete_book(args, config: Config):
    """Delete a book by title."""
    collection = open_collection(args, config)
    result = queries.delete_book_by_title(collection, args.title)

    if result.deleted_count == 0:
        logger.warning(f"No book titled '{args.title}'")
        return

    save_collection(args, config, collection)
    print(f"✅ Deleted {result.deleted_count} book")


def run_aggregate(args, config: Config):
    """Run one of the aggregation pipelines."""
    collection = open_collection(args, config)

    if args.pipeline == "avg-price":
        results = queries.average_price_by_genre(collection)
        for row in results:
            row["averagePrice"] = round(row["averagePrice"], 2) if row["averagePrice"] is not None else None
    elif args.pipeline == "top-author":
        top = queries.author_with_most_books(collection)
        results = [top] if top else []
    else:
        results = [
            {"decade": row["_id"]["decade"], "bookCount": row["bookCount"]}
            for row in queries.books_per_decade(collection)
        ]
        results.sort(key=lambda row: (row["decade"] is None, row["decade"]))

    display_documents(results, args.format, show_id=True)


def manage_indexes(args, config: Config):
    """Create the example indexes for this run and show them alongside _id_."""
    collection = open_collection(args, config)

    if args.action in ("title", "all"):
        queries.create_title_index(collection)
    if args.action in ("author-year", "all"):
        queries.create_author_year_index(collection)

    display_documents(collection.list_indexes(), args.format)


def explain_lookup(args, config: Config):
    """Compare a title lookup before and after creating the title index."""
    collection = open_collection(args, config)

    before = queries.explain_title_lookup(collection, args.title)
    queries.create_title_index(collection)
    after = queries.explain_title_lookup(collection, args.title)

    if args.format == "json":
        print(json.dumps({"withoutIndex": before, "withIndex": after}, indent=2, ensure_ascii=False))
        return

    rows = []
    for label, plan in (("without index", before), ("with title_1", after)):
        stats = plan["executionStats"]
        winning = plan["queryPlanner"]["winningPlan"]
        stage = winning.get("inputStage", {}).get("stage", winning["stage"])
        rows.append([
            label,
            stage,
            stats["nReturned"],
            stats["totalKeysExamined"],
            stats["totalDocsExamined"],
            stats["executionTimeMillis"],
        ])
    headers = ["Plan", "Stage", "Returned", "Keys Examined", "Docs Examined", "Time (ms)"]
    print("\n" + tabulate(rows, headers=headers, tablefmt="grid"))


def load_books(args, config: Config):
    """Replace the collection with books from a file, URL or the bundled sample."""
    url = args.url or (None if args.file else config.SEED_URL)

    if url:
        with SeedClient(
            timeout=config.DEFAULT_TIMEOUT,
            max_retries=config.DEFAULT_MAX_RETRIES
        ) as client:
            try:
                payload = client.fetch_books(url)
            except SeedError as e:
                logger.error(f"Failed to fetch seed data: {e}")
                return
    elif args.file:
        with open(args.file, encoding="utf-8") as f:
            payload = json.load(f)
    else:
        payload = load_seed()

    books = deduplicate_books(parse_books_response(payload))
    collection = Collection(config.COLLECTION, config.DATABASE)
    collection.insert_many([book.to_document() for book in books])

    save_collection(args, config, collection)
    print(f"✅ Loaded {len(books)} books")


def show_stats(args, config: Config):
    """Show collection statistics."""
    collection = open_collection(args, config)
    genres = collection.aggregate([
        {"$group": {"_id": "$genre", "count": {"$sum": 1}}},
        {"$sort": {"count": -1, "_id": 1}},
    ])

    print("\n" + "=" * 50)
    print("COLLECTION STATISTICS")
    print("=" * 50)
    print(f"Namespace: {collection.full_name}")
    print(f"Total books: {len(collection)}")
    print(f"In stock: {collection.count_documents({'in_stock': True})}")
    print(f"Genres: {len(genres)}")
    for row in genres:
        print(f"  {row['_id']}: {row['count']}")
    print("=" * 50 + "\n")

    if args.db:
        db = setup_database(config)
        try:
            for name, count in db.get_stats().items():
                print(f"Stored collection {name}: {count} documents")
        finally:
            db.close()


def build_parser(config: Config) -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        description="Book Query Explorer - document queries over a books collection",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Books in a genre
  %(prog)s find --genre Fantasy

  # In-stock books after 2010, projected and sorted by price
  %(prog)s find --in-stock --after 2010 --fields title,author,price --sort price --desc

  # Second page of five
  %(prog)s find --page 1

  # Aggregations
  %(prog)s aggregate avg-price
  %(prog)s aggregate decades

  # Index effect on a title lookup
  %(prog)s explain "The Great Gatsby"
        """
    )
    parser.add_argument("--data", default=config.DATA_FILE, help=f"JSON snapshot file (default: {config.DATA_FILE})")
    parser.add_argument("--db", action="store_true", help="Use the PostgreSQL store instead of the snapshot file")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")
    formats = ["table", "json", "compact"]

    # Find command
    find_parser = subparsers.add_parser("find", help="Find books")
    find_parser.add_argument("--genre", help="Exact genre")
    find_parser.add_argument("--author", help="Exact author")
    find_parser.add_argument("--after", type=int, help="Published after this year")
    find_parser.add_argument("--in-stock", action="store_true", help="Only books in stock")
    find_parser.add_argument("--fields", help="Comma-separated fields to return")
    find_parser.add_argument("--sort", help="Field to sort by")
    find_parser.add_argument("--desc", action="store_true", help="Sort descending")
    find_parser.add_argument("--page", type=int, help="Zero-based page number")
    find_parser.add_argument("--page-size", type=int, help=f"Books per page (default: {config.PAGE_SIZE})")
    find_parser.add_argument("--format", choices=formats, default="table", help="Output format")

    # Update command
    update_parser = subparsers.add_parser("update-price", help="Update the price of a book")
    update_parser.add_argument("title", help="Book title")
    update_parser.add_argument("price", type=float, help="New price")

    # Delete command
    delete_parser = subparsers.add_parser("delete", help="Delete a book by title")
    delete_parser.add_argument("title", help="Book title")

    # Aggregate command
    aggregate_parser = subparsers.add_parser("aggregate", help="Run an aggregation pipeline")
    aggregate_parser.add_argument("pipeline", choices=["avg-price", "top-author", "decades"])
    aggregate_parser.add_argument("--format", choices=formats, default="table", help="Output format")

    # Index command
    index_parser = subparsers.add_parser(
        "index",
        help="Create the example indexes (kept in memory for this run only, never saved)"
    )
    index_parser.add_argument("action", choices=["title", "author-year", "all"])
    index_parser.add_argument("--format", choices=formats, default="table", help="Output format")

    # Explain command
    explain_parser = subparsers.add_parser("explain", help="Explain a title lookup with and without an index")
    explain_parser.add_argument("title", help="Book title")
    explain_parser.add_argument("--format", choices=["table", "json"], default="table", help="Output format")

    # Load command
    load_parser = subparsers.add_parser("load", help="Replace the collection with seed data")
    source = load_parser.add_mutually_exclusive_group()
    source.add_argument("--file", help="JSON file of books")
    source.add_argument("--url", help="URL serving JSON books")

    # Stats command
    subparsers.add_parser("stats", help="Show collection statistics")

    return parser


COMMANDS = {
    "find": find_books,
    "update-price": update_price,
    "delete": delete_book,
    "aggregate": run_aggregate,
    "index": manage_indexes,
    "explain": explain_lookup,
    "load": load_books,
    "stats": show_stats,
}


def main(argv=None):
    """Main CLI entry point."""
    config = Config()
    parser = build_parser(config)
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        COMMANDS[args.command](args, config)

    except KeyboardInterrupt:
        logger.info("\n⚠️  Interrupted by user")
        sys.exit(0)
    except Exception as e:
        logger.error(f"❌ Error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
