"""Wishlist state manager.

Entries live in the ``wishlist`` collection, one row per (user_id,
product_id). Adds check for an existing row first and removes delete every
matching row, so repeating either call is harmless. Guests get an
auth-required prompt instead of a write.
"""
import logging
from typing import List, Optional, Set

from pymongo import ASCENDING
from pymongo.errors import PyMongoError

from database import as_aware, create_document
from schemas import MutationResult, ProductOut, Wishlist, WishlistEntry

logger = logging.getLogger(__name__)


def prompt_sign_in(notifier, action: str) -> MutationResult:
    if notifier is not None:
        notifier.info("Authentication Required", f"Please log in to {action}.")
    return MutationResult(ok=False, auth_required=True)


class WishlistManager:
    collection_name = "wishlist"

    def __init__(self, db, user_id: Optional[str], notifier=None, catalog=None):
        self.db = db
        self.user_id = user_id
        self.notifier = notifier
        self.catalog = catalog
        self._snapshot: Optional[Set[str]] = None
        # Set when a membership lookup failed and was reported as "absent"
        self.degraded = False

    @property
    def collection(self):
        return self.db[self.collection_name]

    def load(self) -> List[WishlistEntry]:
        """Load every entry for the user and keep them as the local snapshot."""
        if not self.user_id:
            return []
        try:
            cursor = self.collection.find({"user_id": self.user_id})
            rows = list(cursor.sort([("created_at", ASCENDING), ("_id", ASCENDING)]))
        except PyMongoError:
            logger.exception("Error fetching wishlist for %s", self.user_id)
            if self.notifier is not None:
                self.notifier.error("Could not load your wishlist")
            return []
        entries = []
        seen = set()
        for row in rows:
            if row["product_id"] in seen:
                continue
            seen.add(row["product_id"])
            entries.append(WishlistEntry(product_id=row["product_id"], added_at=as_aware(row.get("created_at"))))
        self._snapshot = seen
        return entries

    def products(self) -> List[ProductOut]:
        entries = self.load()
        if self.catalog is None:
            return []
        return self.catalog.get_products(entry.product_id for entry in entries)

    def product_ids(self) -> Set[str]:
        if self._snapshot is None:
            self.load()
        return set(self._snapshot or ())

    def add_to_wishlist(self, product_id: str) -> MutationResult:
        if not self.user_id:
            return prompt_sign_in(self.notifier, "save items to your wishlist")
        try:
            existing = self.collection.find_one({"user_id": self.user_id, "product_id": product_id})
            if existing:
                if self.notifier is not None:
                    self.notifier.info("Product is already in your wishlist")
                self._remember(product_id)
                return MutationResult(ok=True)
            create_document(self.collection_name, Wishlist(user_id=self.user_id, product_id=product_id),
                            database=self.db)
        except PyMongoError:
            logger.exception("Error adding %s to wishlist of %s", product_id, self.user_id)
            if self.notifier is not None:
                self.notifier.error("Could not update your wishlist")
            return MutationResult(ok=False)

        self._remember(product_id)
        if self.notifier is not None:
            self.notifier.success("Added to wishlist")
        return MutationResult(ok=True, changed=True)

    def remove_from_wishlist(self, product_id: str) -> MutationResult:
        if not self.user_id:
            return prompt_sign_in(self.notifier, "manage your wishlist")
        try:
            result = self.collection.delete_many({"user_id": self.user_id, "product_id": product_id})
        except PyMongoError:
            logger.exception("Error removing %s from wishlist of %s", product_id, self.user_id)
            if self.notifier is not None:
                self.notifier.error("Could not update your wishlist")
            return MutationResult(ok=False)

        if self._snapshot is not None:
            self._snapshot.discard(product_id)
        if self.notifier is not None:
            self.notifier.info("Removed from wishlist")
        return MutationResult(ok=True, changed=result.deleted_count > 0)

    def is_in_wishlist(self, product_id: str) -> bool:
        if not self.user_id:
            return False
        if self._snapshot is not None:
            return product_id in self._snapshot
        try:
            row = self.collection.find_one({"user_id": self.user_id, "product_id": product_id})
        except PyMongoError:
            logger.warning("Error checking wishlist for %s, treating as absent", self.user_id, exc_info=True)
            self.degraded = True
            return False
        return row is not None

    def _remember(self, product_id: str):
        if self._snapshot is not None:
            self._snapshot.add(product_id)
