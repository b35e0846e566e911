"""Per-owner key/value preferences (view mode, search history).

An owner is a user id for signed-in callers or the client's session id for
guests. Reads never raise: a failed read returns the default.
"""
import logging
from typing import Any, Dict, Tuple

from pymongo.errors import PyMongoError

from database import utcnow

logger = logging.getLogger(__name__)


class MemoryPreferenceStore:
    def __init__(self):
        self._data: Dict[Tuple[str, str], Any] = {}

    def get(self, owner: str, key: str, default=None):
        return self._data.get((owner, key), default)

    def set(self, owner: str, key: str, value) -> None:
        self._data[(owner, key)] = value


class MongoPreferenceStore:
    def __init__(self, db, collection: str = "preference"):
        self.collection = db[collection]

    def get(self, owner: str, key: str, default=None):
        try:
            doc = self.collection.find_one({"owner": owner, "key": key})
        except PyMongoError:
            logger.warning("Preference read failed for %s/%s", owner, key, exc_info=True)
            return default
        if not doc:
            return default
        return doc.get("value", default)

    def set(self, owner: str, key: str, value) -> None:
        try:
            self.collection.update_one(
                {"owner": owner, "key": key},
                {"$set": {"value": value, "updated_at": utcnow()}},
                upsert=True,
            )
        except PyMongoError:
            logger.exception("Preference write failed for %s/%s", owner, key)
