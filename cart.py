"""Cart state manager.

A cart is an ordered list of CartItem lines, one per (product, color, size).
It belongs to a cart owner: the user id when signed in, otherwise the
client's session id. After every mutation the lines are written to the
``cart`` collection; that write is fire-and-forget and a failed read gives
back an empty cart.
"""
import logging
import uuid
from typing import Dict, Iterable, List, Optional

from pydantic import ValidationError as SchemaError
from pymongo.errors import PyMongoError

from database import utcnow
from schemas import CartItem, ProductOut

logger = logging.getLogger(__name__)

_LINE_NAMESPACE = uuid.UUID("8f7c3a52-1d2e-4d1b-9a57-6c2f0d3e9b10")


def line_id(product_id: str, color: Optional[str] = None, size: Optional[str] = None) -> str:
    """Stable line id for a product+color+size combination."""
    return str(uuid.uuid5(_LINE_NAMESPACE, f"{product_id}|{color or ''}|{size or ''}"))


class CartStore:
    def __init__(self, db, collection: str = "cart"):
        self.collection = db[collection]

    def load(self, owner: str) -> List[CartItem]:
        try:
            doc = self.collection.find_one({"owner": owner})
        except PyMongoError:
            logger.warning("Could not read cart for %s, starting empty", owner, exc_info=True)
            return []
        if not doc:
            return []
        try:
            return [CartItem.model_validate(item) for item in doc.get("items", [])]
        except SchemaError:
            logger.warning("Discarding unreadable cart for %s", owner, exc_info=True)
            return []

    def save(self, owner: str, items: Iterable[CartItem]) -> None:
        try:
            self.collection.update_one(
                {"owner": owner},
                {"$set": {"items": [item.model_dump() for item in items], "updated_at": utcnow()}},
                upsert=True,
            )
        except PyMongoError:
            logger.exception("Could not save cart for %s", owner)

    def delete(self, owner: str) -> None:
        try:
            self.collection.delete_one({"owner": owner})
        except PyMongoError:
            logger.exception("Could not delete cart for %s", owner)


class CartManager:
    def __init__(self, owner: str, store: Optional[CartStore] = None, notifier=None,
                 items: Optional[Iterable[CartItem]] = None):
        self.owner = owner
        self.store = store
        self.notifier = notifier
        self._items: List[CartItem] = list(items or [])

    @classmethod
    def load(cls, owner: str, store: CartStore, notifier=None) -> "CartManager":
        return cls(owner, store=store, notifier=notifier, items=store.load(owner))

    @property
    def items(self) -> List[CartItem]:
        return list(self._items)

    def _find(self, item_id: str) -> Optional[CartItem]:
        for item in self._items:
            if item.id == item_id:
                return item
        return None

    def _persist(self):
        if self.store is not None:
            self.store.save(self.owner, self._items)

    def _stock_warning(self, stock: int):
        if self.notifier is not None:
            self.notifier.error("Stock limit reached", f"Sorry, there are only {stock} units available.")

    def add_to_cart(self, product: ProductOut, quantity: int = 1,
                    color: Optional[str] = None, size: Optional[str] = None) -> Optional[CartItem]:
        """Add ``quantity`` units of a product variant, capped at stock.

        Returns the affected line, or None when nothing could be added.
        """
        if quantity < 1:
            if self.notifier is not None:
                self.notifier.error("Invalid quantity", "Quantity must be at least 1.")
            return None
        if product.stock <= 0:
            if self.notifier is not None:
                self.notifier.error("Out of stock", f"{product.name} is currently unavailable.")
            return None

        key = line_id(product.id, color, size)
        existing = self._find(key)
        if existing is not None:
            wanted = existing.quantity + quantity
            new_quantity = min(wanted, product.stock)
            if wanted > product.stock:
                self._stock_warning(product.stock)
            if new_quantity <= existing.quantity:
                return None
            existing.quantity = new_quantity
            existing.unit_price = product.effective_price
            existing.stock = product.stock
            self._persist()
            return existing

        if quantity > product.stock:
            self._stock_warning(product.stock)
        item = CartItem(
            id=key,
            product_id=product.id,
            name=product.name,
            image=product.images[0] if product.images else "",
            unit_price=product.effective_price,
            quantity=min(quantity, product.stock),
            stock=product.stock,
            color=color,
            size=size,
            shop_id=product.shop_id,
        )
        self._items.append(item)
        self._persist()
        return item

    def remove_from_cart(self, item_id: str) -> None:
        before = len(self._items)
        self._items = [item for item in self._items if item.id != item_id]
        if len(self._items) != before:
            self._persist()

    def get_item(self, item_id: str) -> Optional[CartItem]:
        return self._find(item_id)

    def update_quantity(self, item_id: str, quantity: int, stock: Optional[int] = None) -> Optional[CartItem]:
        """Set a line's quantity; 0 or less removes it.

        ``stock`` is the product's current stock when the caller has it,
        otherwise the stock seen when the line was added is used.
        """
        item = self._find(item_id)
        if item is None:
            return None
        if quantity <= 0:
            self.remove_from_cart(item_id)
            return None
        if stock is not None:
            item.stock = stock
        if item.stock <= 0:
            if self.notifier is not None:
                self.notifier.error("Out of stock", f"{item.name} is currently unavailable.")
            self._persist()
            return item
        if quantity > item.stock:
            self._stock_warning(item.stock)
            quantity = item.stock
        item.quantity = quantity
        self._persist()
        return item

    def increase_quantity(self, item_id: str) -> Optional[CartItem]:
        item = self._find(item_id)
        if item is None:
            return None
        if item.quantity >= item.stock:
            self._stock_warning(item.stock)
            return item
        return self.update_quantity(item_id, item.quantity + 1)

    def decrease_quantity(self, item_id: str) -> Optional[CartItem]:
        item = self._find(item_id)
        if item is None or item.quantity <= 1:
            return item
        return self.update_quantity(item_id, item.quantity - 1)

    def merge(self, items: Iterable[CartItem]) -> None:
        """Fold another cart (e.g. a guest cart at sign-in) into this one."""
        for incoming in items:
            existing = self._find(incoming.id)
            if existing is None:
                self._items.append(incoming.model_copy())
            else:
                existing.quantity = min(existing.quantity + incoming.quantity, max(existing.stock, incoming.stock))
        self._persist()

    def clear_cart(self) -> None:
        self._items = []
        self._persist()

    def get_cart_count(self) -> int:
        return sum(item.quantity for item in self._items)

    def get_cart_total(self) -> float:
        return round(sum(item.line_total for item in self._items), 2)

    def get_item_quantity(self, product_id: str) -> int:
        return sum(item.quantity for item in self._items if item.product_id == product_id)

    def is_in_cart(self, product_id: str, color: Optional[str] = None, size: Optional[str] = None) -> bool:
        return any(
            item.product_id == product_id
            and (color is None or item.color == color)
            and (size is None or item.size == size)
            for item in self._items
        )

    def group_by_shop(self) -> Dict[str, List[CartItem]]:
        shops: Dict[str, List[CartItem]] = {}
        for item in self._items:
            shops.setdefault(item.shop_id or "unknown", []).append(item)
        return shops

    def validate_against(self, products: Iterable[ProductOut]) -> List[CartItem]:
        """Lines that can no longer be fulfilled.

        A vanished or sold-out product is returned as is; a line above the
        current stock is returned as a copy carrying the stock as quantity.
        """
        by_id = {p.id: p for p in products}
        invalid = []
        for item in self._items:
            product = by_id.get(item.product_id)
            if product is None or product.stock <= 0:
                invalid.append(item)
            elif item.quantity > product.stock:
                invalid.append(item.model_copy(update={"quantity": product.stock}))
        return invalid

    def to_dict(self) -> dict:
        return {
            "items": [item.model_dump(by_alias=True) for item in self._items],
            "count": self.get_cart_count(),
            "total": self.get_cart_total(),
        }
