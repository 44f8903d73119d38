"""
Database connection

MongoDB access shared by the document layer and the API. The connection is
configured from the environment:

- DATABASE_URL: MongoDB connection string
- DATABASE_NAME: database to use
"""

import logging
import os
from datetime import datetime, timezone

from dotenv import load_dotenv
from pymongo import MongoClient

from errors import AppError

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

client = None
db = None

if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]
else:
    logger.warning("DATABASE_URL or DATABASE_NAME not set, database disabled")


class DatabaseUnavailable(AppError):
    status_code = 500
    default_message = "Database not available"


def get_collection(collection_name: str):
    if db is None:
        raise DatabaseUnavailable("Database not available. Check DATABASE_URL and DATABASE_NAME.")
    return db[collection_name]


def create_document(collection_name: str, data: dict) -> str:
    """Insert a document and return its id as a string."""
    doc = dict(data)
    now = datetime.now(timezone.utc)
    doc.setdefault("created_at", now)
    doc.setdefault("updated_at", now)
    result = get_collection(collection_name).insert_one(doc)
    return str(result.inserted_id)

