"""
Storefront Schemas

Collection schemas map to MongoDB collections with the lowercase class name
(Product -> "product", Wishlist -> "wishlist", ShopFollow -> "shopfollow").
They use the snake_case field names stored in the database.

Client-facing shapes (ProductOut, CartItem, WishlistEntry, ...) serialize with
camelCase keys. Every read path converts rows into these shapes through
catalog.to_product / catalog.to_category.
"""
from datetime import datetime
from typing import Annotated, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, computed_field, model_validator
from pydantic.alias_generators import to_camel

Role = Literal["guest", "customer", "shop_admin", "admin"]
SortOption = Literal["newest", "price-asc", "price-desc", "rating", "popularity", "relevance"]
ViewMode = Literal["grid", "list", "compact"]
OrderStatus = Literal["pending", "paid", "cancelled", "failed"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------- Collections ----------

class Product(BaseModel):
    name: str = Field(..., description="Product name")
    description: Optional[str] = Field(None, description="Product description")
    price: float = Field(..., ge=0, description="Price in base currency")
    sale_price: Optional[float] = Field(None, ge=0, description="Discounted price, if on sale")
    currency: str = Field("inr", description="ISO currency code, default INR")
    images: List[str] = Field(default_factory=list, description="Image URLs")
    category_id: Optional[str] = Field(None, description="Category id")
    shop_id: Optional[str] = Field(None, description="Owning shop id")
    stock: int = Field(0, ge=0, description="Units in stock")
    colors: List[str] = Field(default_factory=list)
    sizes: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    brand: Optional[str] = None
    rating: float = Field(0, ge=0, le=5)
    review_count: int = Field(0, ge=0)
    views: int = Field(0, ge=0, description="Page views, drives popularity sort")
    is_new: bool = False
    is_trending: bool = False


class Wishlist(BaseModel):
    user_id: str
    product_id: str


class ShopFollow(BaseModel):
    user_id: str
    shop_id: str


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")
    password_hash: str = Field(..., description="Salted password hash")
    is_active: bool = Field(True, description="Whether user is active")
    role: str = Field("customer", description="customer, shop_admin or admin")
    user_metadata: Dict[str, str] = Field(default_factory=dict)


class OrderItem(CamelModel):
    product_id: str
    name: str
    unit_price: float
    quantity: int
    line_total: float


class Order(CamelModel):
    user_id: str
    user_email: Optional[EmailStr] = None
    items: List[OrderItem]
    total: float
    currency: str = "inr"
    status: OrderStatus = Field("pending", description="pending, paid, cancelled, failed")
    payment_session_id: Optional[str] = None
    payment_id: Optional[str] = None


# ---------- Client-facing shapes ----------

class ProductOut(CamelModel):
    id: str
    name: str
    description: str = ""
    price: float
    sale_price: Optional[float] = None
    images: List[str] = Field(default_factory=list)
    category_id: Optional[str] = None
    shop_id: Optional[str] = None
    rating: float = 0
    review_count: int = 0
    stock: int = 0
    colors: List[str] = Field(default_factory=list)
    sizes: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    brand: Optional[str] = None
    is_new: bool = False
    is_trending: bool = False
    views: int = 0
    created_at: Optional[datetime] = None

    @computed_field(alias="effectivePrice")
    @property
    def effective_price(self) -> float:
        return self.sale_price if self.sale_price is not None else self.price

    @property
    def on_sale(self) -> bool:
        return self.sale_price is not None and self.sale_price < self.price


class NamedCategory(CamelModel):
    kind: Literal["name-only"] = "name-only"
    name: str


class FullCategory(CamelModel):
    kind: Literal["full"] = "full"
    id: str
    name: str
    image: Optional[str] = None


CategoryRef = Annotated[Union[NamedCategory, FullCategory], Field(discriminator="kind")]


class ShopOut(CamelModel):
    id: str
    name: str
    logo: Optional[str] = None
    description: Optional[str] = None
    rating: float = 0


class CartItem(CamelModel):
    id: str = Field(..., description="Stable per product+color+size")
    product_id: str
    name: str
    image: str = ""
    unit_price: float = Field(..., ge=0)
    quantity: int = Field(1, ge=1)
    stock: int = Field(0, ge=0)
    color: Optional[str] = None
    size: Optional[str] = None
    shop_id: Optional[str] = None

    @computed_field(alias="lineTotal")
    @property
    def line_total(self) -> float:
        return round(self.unit_price * self.quantity, 2)


class WishlistEntry(CamelModel):
    product_id: str
    added_at: Optional[datetime] = None


class MutationResult(CamelModel):
    """Outcome of an idempotent remote write (wishlist, follows)."""
    ok: bool
    changed: bool = False
    auth_required: bool = False


class SearchFilterState(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    query: str = ""
    category: Optional[str] = None
    shop: Optional[str] = None
    price_range: Tuple[float, float] = (0, 1000)
    min_rating: Optional[int] = Field(None, ge=1, le=5)
    sort: SortOption = "relevance"
    in_stock: bool = False
    on_sale: bool = False
    brands: Dict[str, bool] = Field(default_factory=dict)
    view_mode: ViewMode = "grid"
    page: int = Field(1, ge=1)
    page_size: int = Field(12, gt=0)

    @model_validator(mode="after")
    def check_price_range(self):
        low, high = self.price_range
        if low < 0 or low > high:
            raise ValueError("price range must satisfy 0 <= min <= max")
        return self


class Page(CamelModel):
    items: List[ProductOut]
    page: int
    page_size: int
    total: int
    total_pages: int


class UserIdentity(CamelModel):
    id: str
    email: EmailStr
    name: Optional[str] = None


class AuthSession(CamelModel):
    current_user: Optional[UserIdentity] = None
    role: Role = "guest"
    is_loading: bool = False
    token: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.current_user is not None


class PaymentPrefill(CamelModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    contact: Optional[str] = None


class PaymentRequest(CamelModel):
    amount: int = Field(..., gt=0, description="Amount in minor currency units (paise/cents)")
    currency: str = "inr"
    description: str = "Order"
    prefill: PaymentPrefill = Field(default_factory=PaymentPrefill)
    theme_color: Optional[str] = None


class PaymentOutcome(CamelModel):
    status: Literal["succeeded", "cancelled", "failed"]
    payment_id: Optional[str] = None
    message: Optional[str] = None
