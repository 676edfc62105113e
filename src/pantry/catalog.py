"""
Vendor catalogs.

Catalog items are immutable after the store is built and are shared freely
between requests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional

from .errors import InvalidRequestError
from .money import json_number, to_decimal


@dataclass(frozen=True)
class CatalogItem:
    """A purchasable item, unique by SKU within one vendor."""

    sku: str
    name: str
    price: Decimal
    category: str
    dietary: frozenset[str] = field(default_factory=frozenset)
    min_quantity: Optional[int] = None
    vendor: str = ""

    @property
    def effective_min_quantity(self) -> int:
        return self.min_quantity or 1

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "sku": self.sku,
            "name": self.name,
            "price": json_number(self.price),
            "category": self.category,
            "dietary": sorted(self.dietary),
            "vendor": self.vendor,
        }
        if self.min_quantity is not None:
            d["minQuantity"] = self.min_quantity
        return d

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> CatalogItem:
        min_quantity = d.get("minQuantity")
        return cls(
            sku=str(d["sku"]),
            name=str(d.get("name", "")),
            price=to_decimal(d["price"], "price"),
            category=str(d.get("category", "")),
            dietary=frozenset(d.get("dietary") or []),
            min_quantity=int(min_quantity) if min_quantity is not None else None,
            vendor=str(d.get("vendor", "")),
        )


@dataclass
class CatalogQuery:
    """Catalog filter. Empty or missing criteria match everything."""

    categories: list[str] = field(default_factory=list)
    dietary: list[str] = field(default_factory=list)
    max_budget: Optional[Decimal] = None

    def matches(self, item: CatalogItem) -> bool:
        if self.categories and item.category not in self.categories:
            return False
        if self.dietary and not item.dietary.intersection(self.dietary):
            return False
        if self.max_budget is not None and item.price > self.max_budget:
            return False
        return True

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"categories": list(self.categories), "dietary": list(self.dietary)}
        if self.max_budget is not None:
            d["maxBudget"] = json_number(self.max_budget)
        return d

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> CatalogQuery:
        categories = d.get("categories") or []
        dietary = d.get("dietary") or []
        if not isinstance(categories, list) or not isinstance(dietary, list):
            raise InvalidRequestError("categories and dietary must be lists")
        max_budget = d.get("maxBudget")
        return cls(
            categories=[str(c) for c in categories],
            dietary=[str(t) for t in dietary],
            max_budget=to_decimal(max_budget, "maxBudget") if max_budget is not None else None,
        )


class CatalogStore:
    """Read-only, per-vendor item list keyed by SKU."""

    def __init__(self, items: Iterable[CatalogItem]):
        self._items: dict[str, CatalogItem] = {}
        for item in items:
            if item.sku in self._items:
                raise ValueError(f"Duplicate SKU in catalog: {item.sku}")
            self._items[item.sku] = item

    def get(self, sku: str) -> Optional[CatalogItem]:
        return self._items.get(sku)

    def query(self, query: Optional[CatalogQuery] = None) -> list[CatalogItem]:
        query = query or CatalogQuery()
        return [item for item in self._items.values() if query.matches(item)]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(self._items.values())


def _item(sku, name, price, category, dietary, min_quantity, vendor) -> CatalogItem:
    return CatalogItem(
        sku=sku,
        name=name,
        price=Decimal(price),
        category=category,
        dietary=frozenset(dietary),
        min_quantity=min_quantity,
        vendor=vendor,
    )


STANDARD_VENDOR_NAME = "SnackCo Catering"
PREMIUM_VENDOR_NAME = "Premium Foods Co."


def standard_catalog() -> CatalogStore:
    v = STANDARD_VENDOR_NAME
    return CatalogStore([
        _item("snack-veg-001", "Mixed Vegetable Spring Rolls (20pc)", "120", "hot-snacks",
              ["vegetarian", "vegan"], 20, v),
        _item("snack-fruit-001", "Fresh Fruit Platter (serves 10)", "80", "fresh",
              ["vegan", "gluten-free", "nut-allergy"], 1, v),
        _item("snack-nuts-001", "Mixed Nuts & Dried Fruits (1lb)", "45", "snacks",
              ["vegan", "gluten-free"], 1, v),
        _item("snack-sandwich-001", "Mini Sandwiches Variety Pack (24pc)", "150", "sandwiches",
              [], 24, v),
        _item("snack-cookies-001", "Assorted Cookies (2 dozen)", "60", "sweets",
              ["vegetarian"], 24, v),
        _item("beverage-coffee-001", "Coffee Service Setup (serves 15)", "40", "beverages",
              ["vegan", "gluten-free"], 1, v),
        _item("snack-gf-001", "Gluten-Free Crackers & Cheese (serves 8)", "75", "specialty",
              ["vegetarian", "gluten-free"], 1, v),
    ])


def premium_catalog() -> CatalogStore:
    v = PREMIUM_VENDOR_NAME
    return CatalogStore([
        _item("premium-gourmet-001", "Artisan Cheese & Charcuterie Board (serves 15)", "280",
              "gourmet", ["vegetarian"], 1, v),
        _item("premium-healthy-001", "Organic Superfood Smoothie Bowls (12pc)", "180",
              "healthy", ["vegan", "gluten-free", "organic"], 12, v),
        _item("premium-sushi-001", "Fresh Sushi Platter Deluxe (40pc)", "320", "sushi",
              [], 40, v),
        _item("premium-salad-001", "Mediterranean Quinoa Salad Bowls (10pc)", "150", "salads",
              ["vegetarian", "gluten-free"], 10, v),
        _item("premium-pastry-001", "French Pastry Selection (2 dozen)", "120", "pastries",
              ["vegetarian"], 24, v),
        _item("premium-coffee-001", "Premium Coffee Bar Service (serves 20)", "85", "beverages",
              ["vegan", "gluten-free"], 1, v),
        _item("premium-wrap-001", "Gourmet Wrap Platter (16pc assorted)", "190", "wraps",
              ["vegetarian"], 16, v),
    ])
