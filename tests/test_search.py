from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from schemas import SearchFilterState
from search import (
    SearchFilters,
    SearchHistory,
    apply_filters,
    brand_facets,
    paginate,
    sort_products,
)
from storage import MemoryPreferenceStore


def test_clear_filters_resets_everything_at_once():
    filters = SearchFilters()
    filters.set_category("shoes")
    filters.set_shop("s1")
    filters.set_price_range(10, 200)
    filters.set_rating(4)
    filters.set_sort("price-desc")
    filters.set_availability(True)
    filters.set_discount(True)
    filters.set_brand("Acme", True)
    filters.set_page(3)

    state = filters.clear_filters()

    assert state == SearchFilterState()
    assert state.category is None and state.shop is None
    assert state.price_range == (0, 1000)
    assert state.min_rating is None
    assert state.sort == "relevance"
    assert not state.in_stock and not state.on_sale
    assert state.brands == {}
    assert state.page == 1


def test_sort_price_asc_uses_effective_price(make_product):
    products = [
        make_product(id="a", price=50),
        make_product(id="b", price=20, sale_price=10),
        make_product(id="c", price=30),
    ]

    ordered = sort_products(products, "price-asc")

    assert [p.effective_price for p in ordered] == [10, 30, 50]
    assert [p.id for p in sort_products(products, "price-desc")] == ["a", "c", "b"]


def test_sorts_are_stable(make_product):
    products = [make_product(id=str(i), price=10, rating=4) for i in range(4)]

    for sort in ("price-asc", "price-desc", "rating", "popularity", "newest", "relevance"):
        assert [p.id for p in sort_products(products, sort)] == ["0", "1", "2", "3"]


def test_newest_rating_and_relevance(make_product):
    now = datetime(2024, 5, 1, tzinfo=timezone.utc)
    products = [
        make_product(id="old", rating=5, created_at=now - timedelta(days=3)),
        make_product(id="new", rating=2, created_at=now),
        make_product(id="undated", rating=4),
    ]

    assert [p.id for p in sort_products(products, "newest")] == ["new", "old", "undated"]
    assert [p.id for p in sort_products(products, "rating")] == ["old", "undated", "new"]
    assert [p.id for p in sort_products(products, "relevance")] == ["old", "new", "undated"]
    with pytest.raises(ValueError):
        sort_products(products, "cheapest")


def test_apply_filters(make_product):
    products = [
        make_product(id="a", price=50, category_id="c1", brand="Acme", rating=4.5, stock=3),
        make_product(id="b", price=200, sale_price=90, category_id="c1", brand="Birch", rating=3, stock=0),
        make_product(id="c", price=30, category_id="c2", brand="Acme", rating=5, stock=1, tags=["oak"]),
    ]

    def ids(**changes):
        return [p.id for p in apply_filters(products, SearchFilterState(**changes))]

    assert ids() == ["a", "b", "c"]
    assert ids(category="c1") == ["a", "b"]
    assert ids(price_range=(60, 100)) == ["b"]
    assert ids(min_rating=4) == ["a", "c"]
    assert ids(in_stock=True) == ["a", "c"]
    assert ids(on_sale=True) == ["b"]
    assert ids(brands={"Birch": True, "Acme": False}) == ["b"]
    assert ids(query="OAK") == ["c"]


def test_filter_changes_reset_page_but_page_change_does_not():
    filters = SearchFilters()
    filters.set_page(4)
    assert filters.state.page == 4

    filters.set_category("c1")
    assert filters.state.page == 1

    filters.set_page(2)
    filters.set_view_mode("list")
    assert filters.state.page == 2


def test_invalid_values_are_rejected():
    filters = SearchFilters()
    with pytest.raises(ValidationError):
        filters.set_price_range(500, 100)
    with pytest.raises(ValidationError):
        filters.set_rating(6)
    with pytest.raises(ValidationError):
        filters.set_page(0)
    assert filters.state == SearchFilterState()


def test_brand_toggle():
    filters = SearchFilters()
    filters.set_brand("Acme", True)
    filters.set_brand("Birch", True)
    filters.set_brand("Acme", False)
    assert filters.state.brands == {"Birch": True}


def test_view_mode_survives_new_session_but_filters_do_not():
    prefs = MemoryPreferenceStore()
    first = SearchFilters(prefs=prefs, owner="client-1")
    first.set_view_mode("compact")
    first.set_category("c1")

    second = SearchFilters(prefs=prefs, owner="client-1")

    assert second.state.view_mode == "compact"
    assert second.state.category is None
    assert SearchFilters(prefs=prefs, owner="client-2").state.view_mode == "grid"


def test_clear_filters_keeps_view_mode_and_query():
    filters = SearchFilters()
    filters.set_query("chair")
    filters.set_view_mode("list")
    filters.set_sort("rating")

    state = filters.clear_filters()

    assert state.query == "chair"
    assert state.view_mode == "list"
    assert state.sort == "relevance"


def test_query_params_round_trip():
    params = {"q": " chair ", "category": "c1", "min_price": "5", "max_price": "80", "rating": "4",
              "sort": "price-asc", "on_sale": "true", "brand": "Acme,Birch", "page": "2"}

    filters = SearchFilters.from_query_params(params)

    state = filters.state
    assert state.query == "chair"
    assert state.price_range == (5.0, 80.0)
    assert state.min_rating == 4
    assert state.sort == "price-asc"
    assert state.on_sale and not state.in_stock
    assert state.brands == {"Acme": True, "Birch": True}
    assert state.page == 2
    assert SearchFilters.from_query_params(filters.to_query_params()).state == state


def test_malformed_query_params_fall_back_to_defaults():
    state = SearchFilters.from_query_params({"min_price": "90", "max_price": "10", "sort": "bogus",
                                             "rating": "9"}).state
    assert state.price_range == (0, 1000)
    assert state.sort == "relevance"
    assert state.min_rating is None


def test_paginate(make_product):
    products = [make_product(id=str(i)) for i in range(25)]

    page = paginate(products, 3, 10)
    assert [p.id for p in page.items] == [str(i) for i in range(20, 25)]
    assert (page.total, page.total_pages) == (25, 3)

    assert paginate(products, 9, 10).page == 3
    empty = paginate([], 2, 10)
    assert empty.page == 1 and empty.items == [] and empty.total_pages == 1


def test_run_filters_sorts_and_pages(make_product):
    filters = SearchFilters()
    filters.set_sort("price-asc")
    filters.set_page_size(2)
    products = [make_product(id="a", price=50), make_product(id="b", price=20, sale_price=10),
                make_product(id="c", price=30)]

    page = filters.run(products)

    assert [p.id for p in page.items] == ["b", "c"]
    assert page.total_pages == 2


def test_brand_facets(make_product):
    products = [make_product(brand="Acme"), make_product(brand="Birch"), make_product(brand="Acme"),
                make_product()]
    assert brand_facets(products) == [("Acme", 2), ("Birch", 1)]


def test_search_history_is_capped_and_deduplicated():
    history = SearchHistory(MemoryPreferenceStore(), "client-1")
    for i in range(12):
        history.add(f"query {i}")
    history.add("QUERY 5")
    history.add("   ")

    entries = history.entries()

    assert len(entries) == 10
    assert entries[0] == "QUERY 5"
    assert [e.lower() for e in entries].count("query 5") == 1
    assert entries[1] == "query 11"

    history.remove("query 11")
    assert "query 11" not in history.entries()
    history.clear()
    assert history.entries() == []


def test_default_price_range_does_not_hide_expensive_products(make_product):
    products = [make_product(id="bed", price=4500), make_product(id="stool", price=40)]

    assert [p.id for p in apply_filters(products, SearchFilterState())] == ["bed", "stool"]
    # a lower bound alone keeps the range open at the top
    assert [p.id for p in apply_filters(products, SearchFilterState(price_range=(100, 1000)))] == ["bed"]
    assert [p.id for p in apply_filters(products, SearchFilterState(price_range=(0, 500)))] == ["stool"]


def test_one_malformed_number_does_not_drop_the_others():
    state = SearchFilters.from_query_params({"rating": "x", "page": "3", "page_size": "24",
                                             "min_price": "10", "max_price": "oops"}).state

    assert state.min_rating is None
    assert state.page == 3
    assert state.page_size == 24
    assert state.price_range == (10.0, 1000)
