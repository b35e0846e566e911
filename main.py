import logging
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.errors import PyMongoError

import database
from auth import AuthGate, GateDecision, IdentityProvider, Requirement, guest_session
from cart import CartManager, CartStore
from catalog import Catalog, id_filter
from config import LOG_LEVEL, PORT
from errors import AuthRequired, NotFound, RemoteError, ValidationError
from follows import ShopFollowManager
from notifications import NotificationService
from orders import confirm_order, list_orders, place_order
from payments import PaymentGateway
from schemas import AuthSession, MutationResult, Product, ViewMode
from search import SearchFilters, SearchHistory, brand_facets
from storage import MongoPreferenceStore
from wishlist import WishlistManager

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Storefront API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Upper bound on products pulled from the catalog for one search
SEARCH_FETCH_LIMIT = 500


# ---------- Dependencies ----------

def get_db():
    if database.db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return database.db


def get_notifier() -> NotificationService:
    return NotificationService()


def get_gateway() -> PaymentGateway:
    return PaymentGateway()


def get_token(authorization: Optional[str] = Header(None)) -> Optional[str]:
    if authorization and authorization.startswith("Bearer "):
        return authorization[len("Bearer "):]
    return None


def get_auth_session(db=Depends(get_db), token: Optional[str] = Depends(get_token)) -> AuthSession:
    try:
        return IdentityProvider(db).get_session(token) or guest_session()
    except PyMongoError:
        logger.exception("Session lookup failed, continuing as guest")
        return guest_session()


def get_owner(
    session: AuthSession = Depends(get_auth_session),
    x_session_id: Optional[str] = Header(None),
) -> str:
    """Who owns the cart and preferences for this request."""
    if session.is_authenticated:
        return session.current_user.id
    return x_session_id or "anonymous"


def get_cart(db=Depends(get_db), owner: str = Depends(get_owner),
             notifier: NotificationService = Depends(get_notifier)) -> CartManager:
    return CartManager.load(owner, CartStore(db), notifier=notifier)


def user_id_of(session: AuthSession) -> Optional[str]:
    return session.current_user.id if session.is_authenticated else None


class GateRedirect(Exception):
    def __init__(self, decision: GateDecision):
        self.decision = decision


@app.exception_handler(GateRedirect)
def gate_redirect(request: Request, exc: GateRedirect):
    return RedirectResponse(exc.decision.redirect_to, status_code=303)


def require(requirement: Requirement):
    """Dependency running the auth gate for the requested path."""
    def guard(
        request: Request,
        db=Depends(get_db),
        token: Optional[str] = Depends(get_token),
        notifier: NotificationService = Depends(get_notifier),
    ) -> AuthSession:
        path = request.url.path
        if request.url.query:
            path += "?" + request.url.query
        gate = AuthGate(lambda: IdentityProvider(db).get_session(token), notifier=notifier)
        decision = gate.check(path, requirement)
        if not decision.allowed:
            raise GateRedirect(decision)
        return decision.session

    return guard


def respond(notifier: NotificationService, **payload) -> dict:
    payload["notifications"] = [n.to_dict() for n in notifier.drain()]
    return payload


def mutation_response(notifier: NotificationService, result: MutationResult, **extra):
    body = respond(notifier, result=result.model_dump(by_alias=True), **extra)
    if result.auth_required:
        return JSONResponse(status_code=401, content=body)
    return body


# ---------- Health ----------

@app.get("/")
def root():
    return {"name": "Storefront API", "status": "ok"}


@app.get("/test")
def test_database():
    resp = {"backend": "running", "database": "not configured"}
    try:
        if database.db is not None:
            resp["database"] = "connected"
            resp["collections"] = database.db.list_collection_names()
    except Exception as e:
        resp["error"] = str(e)
    return resp


# ---------- Auth ----------

class SignUpRequest(BaseModel):
    name: str
    email: EmailStr
    password: str


class SignInRequest(BaseModel):
    email: EmailStr
    password: str


def merge_guest_cart(db, session: AuthSession, guest_id: Optional[str], notifier):
    if not guest_id:
        return
    store = CartStore(db)
    guest_items = store.load(guest_id)
    if guest_items:
        CartManager.load(session.current_user.id, store, notifier=notifier).merge(guest_items)
        store.delete(guest_id)


@app.post("/auth/signup")
def signup(payload: SignUpRequest, db=Depends(get_db), x_session_id: Optional[str] = Header(None),
           notifier: NotificationService = Depends(get_notifier)):
    try:
        session = IdentityProvider(db).sign_up(payload.name, payload.email, payload.password)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    merge_guest_cart(db, session, x_session_id, notifier)
    return respond(notifier, session=session.model_dump(by_alias=True))


@app.post("/auth/signin")
def signin(payload: SignInRequest, db=Depends(get_db), x_session_id: Optional[str] = Header(None),
           notifier: NotificationService = Depends(get_notifier)):
    try:
        session = IdentityProvider(db).sign_in(payload.email, payload.password)
    except AuthRequired as e:
        raise HTTPException(status_code=401, detail=str(e))
    merge_guest_cart(db, session, x_session_id, notifier)
    return respond(notifier, session=session.model_dump(by_alias=True))


@app.post("/auth/signout")
def signout(db=Depends(get_db), token: Optional[str] = Depends(get_token)):
    IdentityProvider(db).sign_out(token)
    return {"signedOut": True}


@app.get("/auth/me")
def me(session: AuthSession = Depends(get_auth_session)):
    return session.model_dump(by_alias=True, exclude={"token"})


# ---------- Catalog ----------

@app.get("/products")
def list_products(
    category: Optional[str] = None,
    shop: Optional[str] = None,
    on_sale: Optional[bool] = None,
    sort: Optional[str] = None,
    limit: int = 100,
    db=Depends(get_db),
    notifier: NotificationService = Depends(get_notifier),
):
    products = Catalog(db, notifier).fetch_products(
        category=category, shop=shop, on_sale=on_sale, order_by=sort, limit=limit
    )
    return respond(notifier, products=[p.model_dump(by_alias=True) for p in products])


@app.get("/products/{product_id}")
def get_product(product_id: str, db=Depends(get_db), notifier: NotificationService = Depends(get_notifier)):
    product = Catalog(db, notifier).get_product(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return respond(notifier, product=product.model_dump(by_alias=True))


@app.get("/categories")
def list_categories(db=Depends(get_db), notifier: NotificationService = Depends(get_notifier)):
    categories = Catalog(db, notifier).list_categories()
    return respond(notifier, categories=[c.model_dump(by_alias=True) for c in categories])


@app.get("/shops")
def list_shops(db=Depends(get_db), notifier: NotificationService = Depends(get_notifier)):
    shops = Catalog(db, notifier).list_shops()
    return respond(notifier, shops=[s.model_dump(by_alias=True) for s in shops])


# ---------- Search ----------

class ViewModeRequest(BaseModel):
    view_mode: ViewMode = Field(..., alias="viewMode")


@app.get("/search")
def search(request: Request, db=Depends(get_db), owner: str = Depends(get_owner),
           notifier: NotificationService = Depends(get_notifier)):
    prefs = MongoPreferenceStore(db)
    filters = SearchFilters.from_query_params(request.query_params, prefs=prefs, owner=owner)
    state = filters.state
    fetched = Catalog(db, notifier).fetch_products(
        category=state.category,
        shop=state.shop,
        query=state.query or None,
        on_sale=state.on_sale or None,
        limit=SEARCH_FETCH_LIMIT,
    )
    if state.query:
        SearchHistory(prefs, owner).add(state.query)
    page = filters.run(fetched)
    return respond(
        notifier,
        state=state.model_dump(by_alias=True),
        results=page.model_dump(by_alias=True),
        brands=[{"brand": b, "count": n} for b, n in brand_facets(fetched)],
        params=filters.to_query_params(),
    )


@app.get("/search/history")
def search_history(db=Depends(get_db), owner: str = Depends(get_owner)):
    return {"history": SearchHistory(MongoPreferenceStore(db), owner).entries()}


@app.delete("/search/history")
def clear_search_history(db=Depends(get_db), owner: str = Depends(get_owner)):
    SearchHistory(MongoPreferenceStore(db), owner).clear()
    return {"history": []}


@app.delete("/search/history/{query}")
def remove_search_history_item(query: str, db=Depends(get_db), owner: str = Depends(get_owner)):
    return {"history": SearchHistory(MongoPreferenceStore(db), owner).remove(query)}


@app.put("/search/view-mode")
def set_view_mode(payload: ViewModeRequest, db=Depends(get_db), owner: str = Depends(get_owner)):
    filters = SearchFilters(prefs=MongoPreferenceStore(db), owner=owner)
    state = filters.set_view_mode(payload.view_mode)
    return {"viewMode": state.view_mode}


# ---------- Cart ----------

class AddToCartRequest(BaseModel):
    product_id: str
    quantity: int = 1
    color: Optional[str] = None
    size: Optional[str] = None


class UpdateQuantityRequest(BaseModel):
    quantity: int


@app.get("/cart")
def get_cart_view(cart: CartManager = Depends(get_cart), notifier: NotificationService = Depends(get_notifier)):
    return respond(notifier, **cart.to_dict())


@app.post("/cart/items")
def cart_add(req: AddToCartRequest, db=Depends(get_db), cart: CartManager = Depends(get_cart),
             notifier: NotificationService = Depends(get_notifier)):
    product = Catalog(db, notifier).get_product(req.product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    cart.add_to_cart(product, req.quantity, color=req.color, size=req.size)
    return respond(notifier, **cart.to_dict())


@app.patch("/cart/items/{item_id}")
def cart_update(item_id: str, req: UpdateQuantityRequest, db=Depends(get_db),
                cart: CartManager = Depends(get_cart), notifier: NotificationService = Depends(get_notifier)):
    item = cart.get_item(item_id)
    if item is not None:
        product = Catalog(db, notifier).get_product(item.product_id)
        cart.update_quantity(item_id, req.quantity, stock=product.stock if product else None)
    return respond(notifier, **cart.to_dict())


@app.delete("/cart/items/{item_id}")
def cart_remove(item_id: str, cart: CartManager = Depends(get_cart),
                notifier: NotificationService = Depends(get_notifier)):
    cart.remove_from_cart(item_id)
    return respond(notifier, **cart.to_dict())


@app.delete("/cart")
def cart_clear(cart: CartManager = Depends(get_cart), notifier: NotificationService = Depends(get_notifier)):
    cart.clear_cart()
    return respond(notifier, **cart.to_dict())


# ---------- Wishlist ----------

def get_wishlist(db=Depends(get_db), session: AuthSession = Depends(get_auth_session),
                 notifier: NotificationService = Depends(get_notifier)) -> WishlistManager:
    return WishlistManager(db, user_id_of(session), notifier=notifier, catalog=Catalog(db, notifier))


@app.get("/wishlist")
def wishlist_view(wishlist: WishlistManager = Depends(get_wishlist),
                  notifier: NotificationService = Depends(get_notifier)):
    products = wishlist.products()
    return respond(notifier, products=[p.model_dump(by_alias=True) for p in products])


@app.get("/wishlist/{product_id}")
def wishlist_contains(product_id: str, wishlist: WishlistManager = Depends(get_wishlist)):
    return {"productId": product_id, "inWishlist": wishlist.is_in_wishlist(product_id),
            "degraded": wishlist.degraded}


@app.post("/wishlist/{product_id}")
def wishlist_add(product_id: str, wishlist: WishlistManager = Depends(get_wishlist),
                 notifier: NotificationService = Depends(get_notifier)):
    return mutation_response(notifier, wishlist.add_to_wishlist(product_id))


@app.delete("/wishlist/{product_id}")
def wishlist_remove(product_id: str, wishlist: WishlistManager = Depends(get_wishlist),
                    notifier: NotificationService = Depends(get_notifier)):
    return mutation_response(notifier, wishlist.remove_from_wishlist(product_id))


# ---------- Shop follows ----------

def get_follows(db=Depends(get_db), session: AuthSession = Depends(get_auth_session),
                notifier: NotificationService = Depends(get_notifier)) -> ShopFollowManager:
    return ShopFollowManager(db, user_id_of(session), notifier=notifier)


@app.get("/shops/{shop_id}/followers")
def shop_followers(shop_id: str, follows: ShopFollowManager = Depends(get_follows)):
    return {"shopId": shop_id, "followers": follows.follower_count(shop_id),
            "following": follows.is_following(shop_id)}


@app.post("/shops/{shop_id}/follow")
def follow_shop(shop_id: str, follows: ShopFollowManager = Depends(get_follows),
                notifier: NotificationService = Depends(get_notifier)):
    result = follows.follow(shop_id)
    return mutation_response(notifier, result, followers=follows.follower_count(shop_id))


@app.delete("/shops/{shop_id}/follow")
def unfollow_shop(shop_id: str, follows: ShopFollowManager = Depends(get_follows),
                  notifier: NotificationService = Depends(get_notifier)):
    result = follows.unfollow(shop_id)
    return mutation_response(notifier, result, followers=follows.follower_count(shop_id))


# ---------- Checkout ----------

class CheckoutRequest(BaseModel):
    contact: Optional[str] = None


class ConfirmRequest(BaseModel):
    dismissed: bool = False


@app.post("/checkout")
def checkout(
    req: CheckoutRequest,
    session: AuthSession = Depends(require(Requirement.AUTHENTICATED)),
    db=Depends(get_db),
    cart: CartManager = Depends(get_cart),
    gateway: PaymentGateway = Depends(get_gateway),
    notifier: NotificationService = Depends(get_notifier),
):
    try:
        result = place_order(db, cart, Catalog(db, notifier), session, gateway, notifier, contact=req.contact)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RemoteError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return respond(notifier, **result)


@app.post("/checkout/{order_id}/confirm")
def checkout_confirm(
    order_id: str,
    req: ConfirmRequest,
    session: AuthSession = Depends(require(Requirement.AUTHENTICATED)),
    db=Depends(get_db),
    cart: CartManager = Depends(get_cart),
    gateway: PaymentGateway = Depends(get_gateway),
    notifier: NotificationService = Depends(get_notifier),
):
    try:
        outcome = confirm_order(db, order_id, session, gateway, cart, notifier, dismissed=req.dismissed)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return respond(notifier, outcome=outcome.model_dump(by_alias=True), cart=cart.to_dict())


@app.get("/orders")
def my_orders(session: AuthSession = Depends(require(Requirement.AUTHENTICATED)), db=Depends(get_db)):
    return list_orders(db, user_id=session.current_user.id)


# ---------- Admin ----------

class ProductCreate(Product):
    pass


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    sale_price: Optional[float] = Field(None, ge=0)
    images: Optional[List[str]] = None
    category_id: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    brand: Optional[str] = None
    is_new: Optional[bool] = None
    is_trending: Optional[bool] = None


def check_shop_access(db, session: AuthSession, shop_id: Optional[str]):
    """Shop admins may only manage products of shops they own."""
    if session.role == "admin":
        return
    if not shop_id or not db["shop"].find_one({**id_filter(shop_id), "owner_id": session.current_user.id}):
        raise HTTPException(status_code=403, detail="You can only manage products of your own shop")


def load_product_row(db, product_id: str) -> dict:
    row = db["product"].find_one(id_filter(product_id))
    if not row:
        raise HTTPException(status_code=404, detail="Product not found")
    return row


@app.post("/admin/products")
def create_product(payload: ProductCreate, session: AuthSession = Depends(require(Requirement.SHOP_ADMIN)),
                   db=Depends(get_db)):
    check_shop_access(db, session, payload.shop_id)
    product_id = database.create_document("product", payload, database=db)
    return {"id": product_id}


@app.patch("/admin/products/{product_id}")
def update_product(product_id: str, payload: ProductUpdate,
                   session: AuthSession = Depends(require(Requirement.SHOP_ADMIN)), db=Depends(get_db)):
    row = load_product_row(db, product_id)
    check_shop_access(db, session, row.get("shop_id"))
    data = {k: v for k, v in payload.model_dump().items() if v is not None}
    data["updated_at"] = database.utcnow()
    db["product"].update_one({"_id": row["_id"]}, {"$set": data})
    return {"updated": True}


@app.delete("/admin/products/{product_id}")
def delete_product(product_id: str, session: AuthSession = Depends(require(Requirement.SHOP_ADMIN)),
                   db=Depends(get_db)):
    row = load_product_row(db, product_id)
    check_shop_access(db, session, row.get("shop_id"))
    db["product"].delete_one({"_id": row["_id"]})
    return {"deleted": True}


@app.get("/admin/orders")
def admin_orders(session: AuthSession = Depends(require(Requirement.ADMIN)), db=Depends(get_db)):
    return list_orders(db)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
