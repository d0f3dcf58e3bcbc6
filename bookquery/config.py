"""Configuration management."""
import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


class Config:
    """Application configuration."""

    # PostgreSQL snapshot store
    DB_HOST = os.getenv("DB_HOST", "localhost")
    DB_PORT = os.getenv("DB_PORT", "5432")
    DB_NAME = os.getenv("DB_NAME", "booksdb")
    DB_USER = os.getenv("DB_USER", "postgres")
    DB_PASSWORD = os.getenv("DB_PASSWORD", "")

    @property
    def DATABASE_URL(self):
        """Build PostgreSQL connection string."""
        return f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    # Collection
    DATABASE = os.getenv("DATABASE", "library")
    COLLECTION = os.getenv("COLLECTION", "books")
    DATA_FILE = os.getenv("DATA_FILE", "books.json")
    SEED_URL = os.getenv("SEED_URL")

    # Defaults
    PAGE_SIZE = int(os.getenv("PAGE_SIZE", "5"))
    DEFAULT_TIMEOUT = int(os.getenv("DEFAULT_TIMEOUT", "10"))
    DEFAULT_MAX_RETRIES = int(os.getenv("DEFAULT_MAX_RETRIES", "3"))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
