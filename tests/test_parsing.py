import pytest

from catalog_repricer.parsing import extract_min_price, extract_prices, parse_price_text

SELECTOR = ".many__price .price__value"


@pytest.mark.parametrize(
    "text,expected",
    [
        ("12 345 грн", 12345.0),
        ("1 299,50", 1299.5),
        ("від 899.99", 899.99),
        ("немає", None),
        ("", None),
    ],
)
def test_parse_price_text(text, expected):
    assert parse_price_text(text) == expected


def test_extract_prices_only_reads_matching_nodes():
    html = """
    <span class="price__value">1</span>
    <div class="many__price"><span class="price__value">2 500</span></div>
    <div class="many__price"><span class="price__value">2 450</span></div>
    """
    assert extract_prices(html, SELECTOR) == [2500.0, 2450.0]
    assert extract_min_price(html, SELECTOR) == 2450.0


def test_extract_min_price_none_when_nothing_parses():
    assert extract_min_price("<div class='many__price'><span class='price__value'>n/a</span></div>", SELECTOR) is None
    assert extract_min_price("", SELECTOR) is None
