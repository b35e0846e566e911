"""Search and filter state.

SearchFilters holds one immutable SearchFilterState and replaces it on every
setter call. Changing any filter sends the user back to page 1. Only the view
mode outlives a session (through the preference store); everything else is
rebuilt from the request's query parameters.
"""
import logging
import math
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

from config import DEFAULT_PAGE_SIZE, SEARCH_HISTORY_LIMIT
from schemas import Page, ProductOut, SearchFilterState

logger = logging.getLogger(__name__)

VIEW_MODE_KEY = "search_view_mode"
HISTORY_KEY = "search_history"
VIEW_MODES = ("grid", "list", "compact")
SORT_OPTIONS = ("newest", "price-asc", "price-desc", "rating", "popularity", "relevance")
# Top of the price slider; a range ending here has no upper bound
PRICE_CEILING = 1000
DEFAULT_PRICE_RANGE = (0, PRICE_CEILING)


def _created_ts(product: ProductOut) -> float:
    return product.created_at.timestamp() if product.created_at else float("-inf")


def sort_products(products: Sequence[ProductOut], sort: str) -> List[ProductOut]:
    """Order a result set. Ties keep the order the products were fetched in."""
    if sort == "newest":
        return sorted(products, key=lambda p: -_created_ts(p))
    if sort == "price-asc":
        return sorted(products, key=lambda p: p.effective_price)
    if sort == "price-desc":
        return sorted(products, key=lambda p: -p.effective_price)
    if sort == "rating":
        return sorted(products, key=lambda p: -(p.rating or 0))
    if sort == "popularity":
        return sorted(products, key=lambda p: -(p.views or 0))
    if sort == "relevance":
        return list(products)
    raise ValueError(f"Unknown sort option: {sort}")


def matches(product: ProductOut, state: SearchFilterState) -> bool:
    if state.query:
        needle = state.query.lower()
        haystack = [product.name, product.description, product.brand or ""] + list(product.tags)
        if not any(needle in text.lower() for text in haystack):
            return False
    if state.category and product.category_id != state.category:
        return False
    if state.shop and product.shop_id != state.shop:
        return False
    low, high = state.price_range
    if product.effective_price < low:
        return False
    if high < PRICE_CEILING and product.effective_price > high:
        return False
    if state.min_rating is not None and (product.rating or 0) < state.min_rating:
        return False
    if state.in_stock and product.stock <= 0:
        return False
    if state.on_sale and not product.on_sale:
        return False
    brands = {brand for brand, selected in state.brands.items() if selected}
    if brands and product.brand not in brands:
        return False
    return True


def apply_filters(products: Iterable[ProductOut], state: SearchFilterState) -> List[ProductOut]:
    return [p for p in products if matches(p, state)]


def paginate(products: Sequence[ProductOut], page: int, page_size: int) -> Page:
    total = len(products)
    total_pages = max(1, math.ceil(total / page_size))
    page = min(max(1, page), total_pages)
    start = (page - 1) * page_size
    return Page(
        items=list(products[start:start + page_size]),
        page=page,
        page_size=page_size,
        total=total,
        total_pages=total_pages,
    )


def brand_facets(products: Iterable[ProductOut]) -> List[Tuple[str, int]]:
    """Brand counts for a result set, most common first."""
    counts = {}
    for p in products:
        if p.brand:
            counts[p.brand] = counts.get(p.brand, 0) + 1
    return sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))


def _flag(value: Optional[str]) -> bool:
    return str(value).lower() in ("1", "true", "yes", "on")


def _number(params: Mapping[str, str], name: str, cast, default):
    """One numeric query parameter; a malformed value gives the default."""
    raw = params.get(name)
    if raw in (None, ""):
        return default
    try:
        return cast(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring malformed search parameter %s=%r", name, raw)
        return default


class SearchFilters:
    def __init__(self, prefs=None, owner: str = "anonymous", state: Optional[SearchFilterState] = None):
        self.prefs = prefs
        self.owner = owner
        self.state = state or SearchFilterState(page_size=DEFAULT_PAGE_SIZE)
        stored = prefs.get(owner, VIEW_MODE_KEY) if prefs is not None else None
        if stored in VIEW_MODES:
            self.state = self.state.model_copy(update={"view_mode": stored})

    @classmethod
    def from_query_params(cls, params: Mapping[str, str], prefs=None, owner: str = "anonymous") -> "SearchFilters":
        """Rebuild the filters a search URL carries; malformed values fall back to defaults."""
        filters = cls(prefs=prefs, owner=owner)
        values = {}
        if params.get("q"):
            values["query"] = params["q"].strip()
        for name in ("category", "shop"):
            if params.get(name):
                values[name] = params[name]
        low = _number(params, "min_price", float, 0)
        high = _number(params, "max_price", float, PRICE_CEILING)
        if 0 <= low <= high:
            values["price_range"] = (low, high)
        rating = _number(params, "rating", int, None)
        if rating is not None and 1 <= rating <= 5:
            values["min_rating"] = rating
        page = _number(params, "page", int, None)
        if page is not None:
            values["page"] = max(1, page)
        page_size = _number(params, "page_size", int, None)
        if page_size is not None:
            values["page_size"] = max(1, page_size)
        if params.get("sort") in SORT_OPTIONS:
            values["sort"] = params["sort"]
        values["in_stock"] = _flag(params.get("in_stock"))
        values["on_sale"] = _flag(params.get("on_sale"))
        brands = params.get("brand")
        if brands:
            values["brands"] = {b.strip(): True for b in brands.split(",") if b.strip()}
        filters.state = filters.state.model_copy(update=values)
        filters.state = SearchFilterState.model_validate(filters.state.model_dump())
        return filters

    def to_query_params(self) -> dict:
        s = self.state
        params = {}
        if s.query:
            params["q"] = s.query
        if s.category:
            params["category"] = s.category
        if s.shop:
            params["shop"] = s.shop
        if s.price_range != DEFAULT_PRICE_RANGE:
            params["min_price"], params["max_price"] = s.price_range
        if s.min_rating is not None:
            params["rating"] = s.min_rating
        if s.sort != "relevance":
            params["sort"] = s.sort
        if s.in_stock:
            params["in_stock"] = "true"
        if s.on_sale:
            params["on_sale"] = "true"
        selected = sorted(b for b, on in s.brands.items() if on)
        if selected:
            params["brand"] = ",".join(selected)
        if s.page != 1:
            params["page"] = s.page
        return params

    def _update(self, reset_page: bool = True, **changes) -> SearchFilterState:
        if reset_page:
            changes.setdefault("page", 1)
        self.state = SearchFilterState.model_validate({**self.state.model_dump(), **changes})
        return self.state

    def set_query(self, query: str) -> SearchFilterState:
        return self._update(query=query.strip())

    def set_category(self, category: Optional[str]) -> SearchFilterState:
        return self._update(category=category or None)

    def set_shop(self, shop: Optional[str]) -> SearchFilterState:
        return self._update(shop=shop or None)

    def set_price_range(self, low: float, high: float) -> SearchFilterState:
        return self._update(price_range=(low, high))

    def set_rating(self, rating: Optional[int]) -> SearchFilterState:
        return self._update(min_rating=rating or None)

    def set_sort(self, sort: str) -> SearchFilterState:
        return self._update(sort=sort)

    def set_availability(self, in_stock: bool) -> SearchFilterState:
        return self._update(in_stock=in_stock)

    def set_discount(self, on_sale: bool) -> SearchFilterState:
        return self._update(on_sale=on_sale)

    def set_brand(self, brand: str, selected: bool) -> SearchFilterState:
        brands = dict(self.state.brands)
        if selected:
            brands[brand] = True
        else:
            brands.pop(brand, None)
        return self._update(brands=brands)

    def set_page(self, page: int) -> SearchFilterState:
        return self._update(reset_page=False, page=page)

    def set_page_size(self, page_size: int) -> SearchFilterState:
        return self._update(page_size=page_size)

    def set_view_mode(self, view_mode: str) -> SearchFilterState:
        state = self._update(reset_page=False, view_mode=view_mode)
        if self.prefs is not None:
            self.prefs.set(self.owner, VIEW_MODE_KEY, view_mode)
        return state

    def clear_filters(self) -> SearchFilterState:
        """Reset every filter at once. Query, view mode and page size are kept."""
        self.state = SearchFilterState(
            query=self.state.query,
            view_mode=self.state.view_mode,
            page_size=self.state.page_size,
        )
        return self.state

    def run(self, products: Sequence[ProductOut]) -> Page:
        """Filter, sort and paginate a fetched result set."""
        filtered = apply_filters(products, self.state)
        ordered = sort_products(filtered, self.state.sort)
        return paginate(ordered, self.state.page, self.state.page_size)


class SearchHistory:
    """Recent queries, most recent first, unique ignoring case."""

    def __init__(self, prefs, owner: str, limit: int = SEARCH_HISTORY_LIMIT):
        self.prefs = prefs
        self.owner = owner
        self.limit = limit

    def entries(self) -> List[str]:
        stored = self.prefs.get(self.owner, HISTORY_KEY, [])
        return [q for q in stored if isinstance(q, str)][:self.limit]

    def add(self, query: str) -> List[str]:
        query = query.strip()
        if not query:
            return self.entries()
        history = [q for q in self.entries() if q.lower() != query.lower()]
        history = [query] + history[:self.limit - 1]
        self.prefs.set(self.owner, HISTORY_KEY, history)
        return history

    def remove(self, query: str) -> List[str]:
        history = [q for q in self.entries() if q.lower() != query.strip().lower()]
        self.prefs.set(self.owner, HISTORY_KEY, history)
        return history

    def clear(self) -> None:
        self.prefs.set(self.owner, HISTORY_KEY, [])
