"""PostgreSQL persistence for collection snapshots."""
import psycopg2
from psycopg2 import pool
from typing import List, Dict, Any
import json
import logging

logger = logging.getLogger(__name__)


class Database:
    """PostgreSQL database with connection pooling."""

    def __init__(self, connection_string: str, min_conn: int = 1, max_conn: int = 10):
        """
        Initialize database connection pool.

        Args:
            connection_string: PostgreSQL connection string
            min_conn: Minimum connections in pool
            max_conn: Maximum connections in pool
        """
        self.connection_pool = psycopg2.pool.SimpleConnectionPool(
            min_conn,
            max_conn,
            connection_string
        )

        if self.connection_pool:
            logger.info("Database connection pool created successfully")
        else:
            raise Exception("Failed to create connection pool")

    def init_schema(self):
        """Create the documents table if it doesn't exist."""
        conn = self.connection_pool.getconn()
        try:
            with conn.cursor() as cur:
                cur.execute("""
                    CREATE TABLE IF NOT EXISTS documents (
                        collection VARCHAR(255) NOT NULL,
                        position INTEGER NOT NULL,
                        body JSONB NOT NULL,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        PRIMARY KEY (collection, position)
                    )
                """)

                conn.commit()
                logger.info("Database schema initialized successfully")

        finally:
            self.connection_pool.putconn(conn)

    def save_collection(self, name: str, documents: List[Dict[str, Any]]) -> bool:
        """
        Replace the stored snapshot of a collection.

        Args:
            name: Collection name
            documents: Documents in collection order

        Returns:
            True if successful, False otherwise
        """
        conn = self.connection_pool.getconn()
        try:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM documents WHERE collection = %s", (name,))
                for position, doc in enumerate(documents):
                    cur.execute("""
                        INSERT INTO documents (collection, position, body)
                        VALUES (%s, %s, %s)
                    """, (name, position, json.dumps(doc)))
                conn.commit()
                logger.info(f"Saved {len(documents)} documents to collection {name}")
                return True
        except Exception as e:
            conn.rollback()
            logger.error(f"Failed to save collection {name}: {e}")
            return False
        finally:
            self.connection_pool.putconn(conn)

    def load_collection(self, name: str) -> List[Dict[str, Any]]:
        """Load a collection snapshot in its stored order."""
        conn = self.connection_pool.getconn()
        try:
            with conn.cursor() as cur:
                cur.execute("""
                    SELECT body FROM documents
                    WHERE collection = %s
                    ORDER BY position
                """, (name,))

                rows = cur.fetchall()
                logger.info(f"Loaded {len(rows)} documents from collection {name}")
                return [row[0] for row in rows]  # JSONB is automatically deserialized
        finally:
            self.connection_pool.putconn(conn)

    def get_stats(self) -> Dict[str, Any]:
        """Document counts per stored collection."""
        conn = self.connection_pool.getconn()
        try:
            with conn.cursor() as cur:
                cur.execute("""
                    SELECT collection, COUNT(*) FROM documents
                    GROUP BY collection
                    ORDER BY collection
                """)
                return {name: count for name, count in cur.fetchall()}
        finally:
            self.connection_pool.putconn(conn)

    def close(self):
        """Close all connections in the pool."""
        if self.connection_pool:
            self.connection_pool.closeall()
            logger.info("Database connection pool closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
