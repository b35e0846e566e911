"""
MongoDB access

Collections used by the storefront:
- product, category, shop      (catalog, read-mostly)
- cart                         (one document per cart owner)
- wishlist, shopfollow         (user relationships)
- user, session                (identity provider)
- order                        (checkout)
- preference                   (per-owner key/value settings)
"""
import logging
from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel
from pymongo import MongoClient

from config import DATABASE_URL, DATABASE_NAME

logger = logging.getLogger(__name__)

client = None
db = None

if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]
else:
    logger.warning("DATABASE_URL / DATABASE_NAME not set, database disabled")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_aware(value: Optional[datetime]) -> Optional[datetime]:
    """Mongo hands back naive UTC datetimes; attach the timezone."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def create_document(collection_name: str, data: Union[BaseModel, dict], database=None) -> str:
    """Insert a document stamped with created_at/updated_at and return its id."""
    database = database if database is not None else db
    if database is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")

    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = data.copy()

    now = utcnow()
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now

    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: dict = None, limit: int = None, sort=None, database=None):
    database = database if database is not None else db
    if database is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")

    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)
