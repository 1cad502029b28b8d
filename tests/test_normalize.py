import pytest

from feedhub.services.normalize import normalize_item, parse_number, scalar_text


@pytest.mark.parametrize(
    "value,expected",
    [
        ("10.00", 10.0),
        ("1.234,50", 1234.5),
        ("1,299.00", 1299.0),
        ("€ 8,50", 8.5),
        ("12,5", 12.5),
        ("1,234", 1234.0),
        ("1.234.567", 1234567.0),
        ("-3,25", -3.25),
        ("1 299,90 TL", 1299.9),
        (42, 42.0),
        (9.5, 9.5),
        ({"#text": "9.99", "currency": "EUR"}, 9.99),
        ("n/a", None),
        ("", None),
        (None, None),
        (True, None),
    ],
)
def test_parse_number(value, expected):
    assert parse_number(value) == expected


def test_scalar_text():
    assert scalar_text("  x ") == "x"
    assert scalar_text("   ") is None
    assert scalar_text({"#text": "A1", "type": "sku"}) == "A1"
    assert scalar_text(["a", "b"]) is None
    assert scalar_text(False) == "false"
    assert scalar_text(0) == "0"


def test_normalize_aliases_are_case_insensitive():
    item = normalize_item({
        "EAN": "4006381333931",
        "Product_SKU": " S-1 ",
        "Name": "Widget",
        "Price": "10,50",
        "Stock": "5",
        "Manufacturer": "Acme",
        "Picture": "https://cdn.example/w.jpg",
        "colour": "red",
    })

    assert item.ean == "4006381333931"
    assert item.sku == "S-1"
    assert item.title == "Widget"
    assert item.price == 10.5
    assert item.quantity == 5
    assert isinstance(item.quantity, int)
    assert item.brand == "Acme"
    assert item.image_url == "https://cdn.example/w.jpg"
    assert item.raw["colour"] == "red"
    assert "raw" not in item.attributes()


def test_first_non_empty_alias_wins():
    item = normalize_item({"title": "", "name": "From name", "qty": "2.5"})
    assert item.title == "From name"
    assert item.quantity == 2.5


@pytest.mark.parametrize(
    "raw,expected",
    [
        ({"sku": "S1", "ean": "E1", "id": "I1"}, "S1"),
        ({"gtin": "E1", "id": "I1"}, "E1"),
        ({"product_id": "I1"}, "I1"),
        ({"title": "nothing to identify me"}, None),
    ],
)
def test_external_id_priority(raw, expected):
    assert normalize_item(raw).external_id == expected
