"""Shop follow relationships (``shopfollow`` collection)."""
import logging
from typing import List, Optional

from pymongo.errors import PyMongoError

from catalog import id_filter
from database import create_document
from schemas import MutationResult, ShopFollow
from wishlist import prompt_sign_in

logger = logging.getLogger(__name__)


class ShopFollowManager:
    collection_name = "shopfollow"

    def __init__(self, db, user_id: Optional[str], notifier=None):
        self.db = db
        self.user_id = user_id
        self.notifier = notifier

    @property
    def collection(self):
        return self.db[self.collection_name]

    def follow(self, shop_id: str) -> MutationResult:
        if not self.user_id:
            return prompt_sign_in(self.notifier, "follow shops")
        try:
            if self.collection.find_one({"user_id": self.user_id, "shop_id": shop_id}):
                return MutationResult(ok=True)
            if self.db["shop"].count_documents(id_filter(shop_id)) == 0:
                if self.notifier is not None:
                    self.notifier.error("Shop not found")
                return MutationResult(ok=False)
            create_document(self.collection_name, ShopFollow(user_id=self.user_id, shop_id=shop_id),
                            database=self.db)
        except PyMongoError:
            logger.exception("Error following shop %s for %s", shop_id, self.user_id)
            if self.notifier is not None:
                self.notifier.error("Failed to follow shop")
            return MutationResult(ok=False)
        if self.notifier is not None:
            self.notifier.success("You are now following this shop")
        return MutationResult(ok=True, changed=True)

    def unfollow(self, shop_id: str) -> MutationResult:
        if not self.user_id:
            return prompt_sign_in(self.notifier, "manage shop follows")
        try:
            result = self.collection.delete_many({"user_id": self.user_id, "shop_id": shop_id})
        except PyMongoError:
            logger.exception("Error unfollowing shop %s for %s", shop_id, self.user_id)
            if self.notifier is not None:
                self.notifier.error("Failed to unfollow shop")
            return MutationResult(ok=False)
        return MutationResult(ok=True, changed=result.deleted_count > 0)

    def is_following(self, shop_id: str) -> bool:
        if not self.user_id:
            return False
        try:
            return self.collection.find_one({"user_id": self.user_id, "shop_id": shop_id}) is not None
        except PyMongoError:
            logger.warning("Error checking follow status for %s", self.user_id, exc_info=True)
            return False

    def follower_count(self, shop_id: str) -> int:
        try:
            return self.collection.count_documents({"shop_id": shop_id})
        except PyMongoError:
            logger.warning("Error counting followers of %s", shop_id, exc_info=True)
            return 0

    def followed_shops(self) -> List[str]:
        if not self.user_id:
            return []
        try:
            return [row["shop_id"] for row in self.collection.find({"user_id": self.user_id})]
        except PyMongoError:
            logger.exception("Error listing followed shops for %s", self.user_id)
            return []

