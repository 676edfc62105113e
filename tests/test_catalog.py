"""Tests for catalog filtering."""

from decimal import Decimal

import pytest

from pantry.catalog import CatalogItem, CatalogQuery, CatalogStore, premium_catalog, standard_catalog
from pantry.errors import InvalidRequestError


@pytest.fixture
def catalog():
    return standard_catalog()


class TestCatalogQuery:
    def test_empty_query_returns_everything(self, catalog):
        assert len(catalog.query(CatalogQuery())) == len(catalog) == 7

    def test_filters_hold_for_every_result(self, catalog):
        query = CatalogQuery(
            categories=["fresh", "snacks", "beverages"],
            dietary=["vegan", "gluten-free"],
            max_budget=Decimal("50"),
        )
        items = catalog.query(query)
        assert items
        for item in items:
            assert item.price <= Decimal("50")
            assert item.category in query.categories
            assert item.dietary & set(query.dietary)
        assert {i.sku for i in items} == {"snack-nuts-001", "beverage-coffee-001"}

    def test_dietary_matches_any_tag(self, catalog):
        skus = {i.sku for i in catalog.query(CatalogQuery(dietary=["nut-allergy"]))}
        assert skus == {"snack-fruit-001"}

    def test_budget_is_inclusive(self, catalog):
        skus = {i.sku for i in catalog.query(CatalogQuery(max_budget=Decimal("40")))}
        assert skus == {"beverage-coffee-001"}

    def test_from_dict_parses_wire_keys(self):
        query = CatalogQuery.from_dict({"categories": ["sushi"], "maxBudget": 300})
        assert query.categories == ["sushi"]
        assert query.dietary == []
        assert query.max_budget == Decimal("300")

    def test_from_dict_rejects_non_list_filters(self):
        with pytest.raises(InvalidRequestError):
            CatalogQuery.from_dict({"categories": "sushi"})

    def test_from_dict_rejects_non_numeric_budget(self):
        with pytest.raises(InvalidRequestError):
            CatalogQuery.from_dict({"maxBudget": "lots"})


class TestCatalogStore:
    def test_duplicate_sku_rejected(self):
        item = CatalogItem("a", "A", Decimal("1"), "snacks")
        with pytest.raises(ValueError, match="Duplicate SKU"):
            CatalogStore([item, item])

    def test_premium_items_belong_to_premium_vendor(self):
        catalog = premium_catalog()
        assert {item.vendor for item in catalog} == {"Premium Foods Co."}
        assert catalog.get("premium-sushi-001").min_quantity == 40

    def test_item_dict_uses_camel_case(self, catalog):
        d = catalog.get("snack-veg-001").to_dict()
        assert d["minQuantity"] == 20
        assert d["price"] == 120
        assert d["dietary"] == ["vegan", "vegetarian"]
        assert CatalogItem.from_dict(d) == catalog.get("snack-veg-001")
