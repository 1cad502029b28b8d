from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel

# First non-empty alias wins.
ALIASES: dict[str, tuple[str, ...]] = {
    "ean": ("ean", "gtin", "barcode", "ean_code", "upc"),
    "sku": ("sku", "product_sku", "code", "product_code"),
    "id": ("id", "uuid", "unique_id", "product_id", "item_id"),
    "title": ("title", "name", "product_name", "product_title", "item_name"),
    "description": ("description", "desc", "product_description", "long_description"),
    "price": ("price", "amount", "sale_price", "regular_price", "product_price"),
    "currency": ("currency", "curr", "currency_code"),
    "quantity": ("quantity", "qty", "stock", "inventory", "stock_quantity"),
    "category": ("category", "cat", "category_name", "product_category"),
    "brand": ("brand", "manufacturer"),
    "image_url": ("image_url", "image", "img", "picture", "photo", "product_image"),
}

_NUMBER_RE = re.compile(r"-?[\d.,]+")


class NormalizedItem(BaseModel):
    ean: str | None = None
    sku: str | None = None
    external_id: str | None = None
    title: str | None = None
    description: str | None = None
    price: float | None = None
    currency: str | None = None
    quantity: int | float | None = None
    category: str | None = None
    brand: str | None = None
    image_url: str | None = None

    raw: dict[str, Any] = {}

    def attributes(self) -> dict[str, Any]:
        """Canonical attributes without the raw record."""
        return self.model_dump(exclude={"raw"})


def scalar_text(value: Any) -> str | None:
    """Text of a scalar source value; XML nodes with attributes keep theirs under "#text"."""
    if isinstance(value, dict):
        value = value.get("#text")
    if value is None or isinstance(value, (list, dict)):
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    s = str(value).strip()
    return s or None


def parse_number(value: Any) -> float | None:
    """
    Lenient number parsing for supplier data ("1.234,50", "€ 8,50", "1,299.00").

    When both separators appear the last one is the decimal point. A lone comma
    followed by exactly three digits is a thousands separator, otherwise it is
    the decimal point. Returns None when nothing numeric is found.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)

    s = scalar_text(value)
    if s is None:
        return None
    m = _NUMBER_RE.search(s.replace(" ", "").replace("\u00a0", ""))
    if not m:
        return None
    num = m.group(0)

    has_comma, has_dot = "," in num, "." in num
    if has_comma and has_dot:
        if num.rfind(",") > num.rfind("."):
            num = num.replace(".", "").replace(",", ".")
        else:
            num = num.replace(",", "")
    elif has_comma:
        if num.count(",") > 1:
            num = num.replace(",", "")
        else:
            head, tail = num.split(",")
            num = head + tail if len(tail) == 3 and head not in ("", "-") else head + "." + tail
    elif num.count(".") > 1:
        num = num.replace(".", "")

    try:
        return float(num)
    except ValueError:
        return None


def _first(raw_lower: dict[str, Any], aliases: tuple[str, ...]) -> str | None:
    for alias in aliases:
        s = scalar_text(raw_lower.get(alias))
        if s is not None:
            return s
    return None


def normalize_item(raw: dict[str, Any]) -> NormalizedItem:
    """Pull the common product attributes out of a raw record, whatever the supplier called them."""
    raw_lower = {str(k).strip().lower(): v for k, v in raw.items()}
    found = {field: _first(raw_lower, aliases) for field, aliases in ALIASES.items()}

    price = parse_number(found.pop("price"))
    quantity = parse_number(found.pop("quantity"))
    if quantity is not None and quantity.is_integer():
        quantity = int(quantity)

    own_id = found.pop("id")
    return NormalizedItem(
        **found,
        external_id=found["sku"] or found["ean"] or own_id,
        price=price,
        quantity=quantity,
        raw=raw,
    )
