import json
from unittest.mock import MagicMock

import aiohttp
import pytest

from catalog_repricer.config import ShopifySettings
from catalog_repricer.errors import ErrorCode, ShopifyApiError
from catalog_repricer.shopify import ShopifyClient, catalog_item_from_node

from conftest import http_response


def product_node(n, barcode="AB-1", **metafields):
    node = {
        "id": f"gid://shopify/Product/{n}",
        "title": f"Product {n}",
        "handle": f"product-{n}",
        "variants": {"edges": [{"node": {"barcode": barcode}}]},
    }
    for alias, value in metafields.items():
        node[alias] = {"value": value}
    return node


def page(nodes, has_next=False, cursor=None):
    return {
        "data": {
            "products": {
                "edges": [{"node": n} for n in nodes],
                "pageInfo": {"hasNextPage": has_next, "endCursor": cursor},
            }
        }
    }


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def client(session):
    return ShopifyClient(ShopifySettings(store_url="https://shop.example.com", access_token="tok"), session)


def test_catalog_item_from_node():
    node = product_node(
        7,
        barcode=" XY-9 ",
        custom_hotline_href="https://compare.example/xy-9",
        custom_product_number_1="SKU-7",
        custom_alternative_part_number="XY9",
        custom_competitor_minimum_price="1234,5",
    )
    item = catalog_item_from_node(node)

    assert item.id == "gid://shopify/Product/7"
    assert item.part_number == "XY-9"
    assert item.sku == "SKU-7"
    assert item.alt_part_number == "XY9"
    assert item.competitor_url == "https://compare.example/xy-9"
    assert item.competitor_floor_price == 1234.5


def test_missing_metafields_default_to_empty():
    item = catalog_item_from_node({"id": "1", "title": "t", "handle": "h", "variants": {"edges": []}})
    assert item.part_number == ""
    assert item.competitor_url == ""
    assert item.competitor_floor_price is None


class TestFetchCatalog:
    @pytest.mark.asyncio
    async def test_follows_pagination(self, client, session):
        session.post.side_effect = [
            http_response(json_body=page([product_node(1), product_node(2)], has_next=True, cursor="c1")),
            http_response(json_body=page([product_node(3)])),
        ]

        items = await client.fetch_catalog_items(page_size=2)

        assert [i.id for i in items] == [f"gid://shopify/Product/{n}" for n in (1, 2, 3)]
        second_call = session.post.call_args_list[1]
        assert second_call.kwargs["json"]["variables"] == {"first": 2, "after": "c1"}
        assert second_call.kwargs["headers"]["X-Shopify-Access-Token"] == "tok"
        assert second_call.args[0] == "https://shop.example.com/admin/api/2025-01/graphql.json"

    @pytest.mark.asyncio
    async def test_empty_catalog_is_an_error(self, client, session):
        session.post.return_value = http_response(json_body=page([]))
        with pytest.raises(ShopifyApiError, match="No products found"):
            await client.fetch_catalog_items()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("cursor", [None, "", "c1"])
    async def test_stops_when_cursor_does_not_advance(self, client, session, cursor):
        session.post.side_effect = [
            http_response(json_body=page([product_node(1)], has_next=True, cursor="c1")),
            http_response(json_body=page([product_node(2)], has_next=True, cursor=cursor)),
            http_response(json_body=page([product_node(3)])),
        ]

        with pytest.raises(ShopifyApiError, match="did not advance"):
            await client.fetch_catalog_items()
        assert session.post.call_count == 2


class TestExecute:
    @pytest.mark.asyncio
    async def test_http_error(self, client, session):
        session.post.return_value = http_response(status=401, text="Invalid API key")

        with pytest.raises(ShopifyApiError) as exc:
            await client.execute("{ shop { name } }")
        assert exc.value.code is ErrorCode.CATALOG_FETCH
        assert exc.value.detail == {"status": 401, "body": "Invalid API key"}

    @pytest.mark.asyncio
    async def test_graphql_errors(self, client, session):
        session.post.return_value = http_response(json_body={"errors": [{"message": "Throttled"}]})

        with pytest.raises(ShopifyApiError, match="Throttled") as exc:
            await client.execute("{ shop { name } }", code=ErrorCode.BULK_SUBMIT)
        assert exc.value.code is ErrorCode.BULK_SUBMIT

    @pytest.mark.asyncio
    async def test_transport_error(self, client, session):
        session.post.side_effect = aiohttp.ClientConnectionError("reset by peer")

        with pytest.raises(ShopifyApiError) as exc:
            await client.execute("{ shop { name } }")
        assert exc.value.detail["exception"] == "ClientConnectionError"

    @pytest.mark.asyncio
    async def test_returns_data(self, client, session):
        session.post.return_value = http_response(json_body={"data": {"shop": {"name": "x"}}})
        assert await client.execute("{ shop { name } }") == {"shop": {"name": "x"}}

    @pytest.mark.asyncio
    async def test_body_that_is_not_json(self, client, session):
        session.post.return_value = http_response(
            json_error=json.JSONDecodeError("Expecting value", "<html>", 0)
        )

        with pytest.raises(ShopifyApiError) as exc:
            await client.execute("{ shop { name } }", code=ErrorCode.BULK_SUBMIT)
        assert exc.value.code is ErrorCode.BULK_SUBMIT
        assert exc.value.detail["exception"] == "JSONDecodeError"

    @pytest.mark.asyncio
    async def test_json_body_that_is_not_an_object(self, client, session):
        session.post.return_value = http_response(json_body=["unexpected"])

        with pytest.raises(ShopifyApiError, match="unexpected JSON body"):
            await client.execute("{ shop { name } }")
