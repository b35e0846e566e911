"""Read access to the product catalog.

Rows come out of MongoDB with snake_case fields; every read path hands back
the camelCase shapes from schemas.py via to_product / to_category.
A failed query is retried CATALOG_RETRIES times, then logged, announced and
replaced by an empty result so the page stays usable.
"""
import logging
import re
from typing import Callable, Iterable, List, Optional, Union

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from config import CATALOG_RETRIES
from database import get_documents
from schemas import FullCategory, NamedCategory, ProductOut, ShopOut

logger = logging.getLogger(__name__)

# Sort options the database can order by directly. Price sorts use the
# effective price and are done in search.sort_products instead.
ORDER_BY = {
    "newest": ("created_at", DESCENDING),
    "rating": ("rating", DESCENDING),
    "popularity": ("views", DESCENDING),
    "name": ("name", ASCENDING),
}
BY_NAME = [ORDER_BY["name"]]
SEARCHABLE_FIELDS = ("name", "description", "brand", "tags")


def id_filter(value: str) -> dict:
    """Match documents stored with either ObjectId or plain string ids."""
    if ObjectId.is_valid(value):
        return {"_id": {"$in": [ObjectId(value), value]}}
    return {"_id": value}


def to_product(row: dict) -> ProductOut:
    return ProductOut(
        id=str(row.get("_id", row.get("id", ""))),
        name=row.get("name") or row.get("title") or "",
        description=row.get("description") or "",
        price=float(row.get("price") or 0),
        sale_price=row.get("sale_price"),
        images=row.get("images") or [],
        category_id=row.get("category_id"),
        shop_id=row.get("shop_id"),
        rating=row.get("rating") or 0,
        review_count=row.get("review_count") or 0,
        stock=row.get("stock") or 0,
        colors=row.get("colors") or [],
        sizes=row.get("sizes") or [],
        tags=row.get("tags") or [],
        brand=row.get("brand"),
        is_new=bool(row.get("is_new")),
        is_trending=bool(row.get("is_trending")),
        views=row.get("views") or 0,
        created_at=row.get("created_at"),
    )


def to_category(raw: Union[str, dict]) -> Union[NamedCategory, FullCategory]:
    """Resolve a category that may be a bare name or a full row."""
    if isinstance(raw, str):
        return NamedCategory(name=raw)
    if "_id" not in raw and "id" not in raw:
        return NamedCategory(name=raw["name"])
    return FullCategory(
        id=str(raw.get("_id", raw.get("id"))),
        name=raw["name"],
        image=raw.get("image"),
    )


def to_shop(row: dict) -> ShopOut:
    return ShopOut(
        id=str(row["_id"]),
        name=row.get("name", ""),
        logo=row.get("logo"),
        description=row.get("description"),
        rating=row.get("rating") or 0,
    )


class Catalog:
    def __init__(self, db, notifier=None, retries: int = CATALOG_RETRIES):
        self.db = db
        self.notifier = notifier
        self.retries = retries

    def _query(self, what: str, run: Callable, fallback):
        last_error = None
        for attempt in range(self.retries + 1):
            try:
                return run()
            except PyMongoError as e:
                last_error = e
                logger.warning("Catalog query %s failed (attempt %d/%d): %s",
                               what, attempt + 1, self.retries + 1, e)
        logger.error("Catalog query %s gave up: %s", what, last_error)
        if self.notifier is not None:
            self.notifier.error("Could not load products", "Showing what we have for now.")
        return fallback

    def fetch_products(
        self,
        category: Optional[str] = None,
        shop: Optional[str] = None,
        query: Optional[str] = None,
        on_sale: Optional[bool] = None,
        order_by: Optional[str] = None,
        limit: int = 100,
    ) -> List[ProductOut]:
        """Products matching the given filters.

        ``query`` is a case-insensitive substring of the name, description,
        brand or any tag.
        """
        filt = {}
        if category:
            filt["category_id"] = category
        if shop:
            filt["shop_id"] = shop
        if query:
            pattern = {"$regex": re.escape(query), "$options": "i"}
            filt["$or"] = [{field: pattern} for field in SEARCHABLE_FIELDS]
        if on_sale:
            filt["sale_price"] = {"$ne": None}
        sort = [ORDER_BY[order_by]] if order_by in ORDER_BY else None

        def run():
            rows = get_documents("product", filt, limit, sort=sort, database=self.db)
            return [to_product(row) for row in rows]

        return self._query("fetch_products", run, [])

    def get_product(self, product_id: str) -> Optional[ProductOut]:
        def run():
            row = self.db["product"].find_one(id_filter(product_id))
            return to_product(row) if row else None

        return self._query("get_product", run, None)

    def get_products(self, product_ids: Iterable[str]) -> List[ProductOut]:
        """Products for the given ids, in the order the ids were given."""
        ids = list(product_ids)
        if not ids:
            return []
        lookup = []
        for pid in ids:
            lookup.append(pid)
            if ObjectId.is_valid(pid):
                lookup.append(ObjectId(pid))

        def run():
            by_id = {str(row["_id"]): to_product(row) for row in self.db["product"].find({"_id": {"$in": lookup}})}
            return [by_id[pid] for pid in ids if pid in by_id]

        return self._query("get_products", run, [])

    def list_categories(self) -> List[Union[NamedCategory, FullCategory]]:
        return self._query(
            "list_categories",
            lambda: [to_category(row) for row in get_documents("category", sort=BY_NAME, database=self.db)],
            [],
        )

    def list_shops(self) -> List[ShopOut]:
        return self._query(
            "list_shops",
            lambda: [to_shop(row) for row in get_documents("shop", sort=BY_NAME, database=self.db)],
            [],
        )

