import httpx
import pytest
import respx

from cardvault.logic.analytics import recent_snapshots, save_snapshot
from cardvault.logic.inventory import check_all_products, total_store_value, value_of

from conftest import GRAPHQL_URL, GraphQLRouter, admin_client

LOCATION = "gid://shopify/Location/1"
BULK_URL = "https://storage.googleapis.com/shopify-bulk/export.jsonl"


def item(product_id, status, price, quantity):
    return {
        "node": {
            "id": f"gid://shopify/InventoryItem/{product_id}{price}",
            "tracked": True,
            "variant": {"price": str(price), "product": {"id": f"gid://shopify/Product/{product_id}", "status": status}},
            "inventoryLevel": {"quantities": [{"quantity": quantity}]},
        }
    }


def pages(*batches, cursors=None):
    cursors = cursors or [f"cursor-{n}" for n in range(len(batches))]

    def respond(variables):
        index = 0 if variables.get("after") is None else cursors.index(variables["after"]) + 1
        return {
            "inventoryItems": {
                "edges": batches[index],
                "pageInfo": {"endCursor": cursors[index], "hasNextPage": index < len(batches) - 1},
            }
        }

    return respond


def test_value_ignores_zero_and_negative_rows():
    assert value_of([(10.0, 2), (5.5, 0), (0, 4), (3.333, 3), (2.0, -1)]) == 30.0


@pytest.mark.asyncio
async def test_failed_bulk_operation_falls_back_to_paging():
    graphql = GraphQLRouter({
        "mutation bulkOperationRunQuery(": {
            "bulkOperationRunQuery": {"bulkOperation": None, "userErrors": [{"message": "already running"}]}
        },
        "query inventoryItems(": pages(
            [item(1, "ACTIVE", 10, 2), item(2, "ACTIVE", 5, 1)],
            [item(3, "ACTIVE", 2.5, 4)],
        ),
    })
    async with respx.mock(assert_all_called=True) as router:
        router.post(GRAPHQL_URL).mock(side_effect=graphql)
        async with httpx.AsyncClient() as session:
            value = await total_store_value(admin_client(session), LOCATION, session=session, poll_seconds=0)
    assert value == 35.0
    assert [v["after"] for v in graphql.called("query inventoryItems(")] == [None, "cursor-0"]


@pytest.mark.asyncio
async def test_bulk_operation_export_is_summed():
    graphql = GraphQLRouter({
        "mutation bulkOperationRunQuery(": {
            "bulkOperationRunQuery": {"bulkOperation": {"id": "gid://shopify/BulkOperation/9", "status": "CREATED"}, "userErrors": []}
        },
        "query bulkOperation(": {"node": {"id": "gid://shopify/BulkOperation/9", "status": "COMPLETED", "url": BULK_URL}},
    })
    export = '{"id":"v1","price":"12.50","inventoryQuantity":2}\n\n{"id":"v2","price":"3.00","inventoryQuantity":0}\n'
    async with respx.mock(assert_all_called=True) as router:
        router.post(GRAPHQL_URL).mock(side_effect=graphql)
        router.get(BULK_URL).mock(return_value=httpx.Response(200, text=export))
        async with httpx.AsyncClient() as session:
            value = await total_store_value(admin_client(session), LOCATION, session=session, poll_seconds=0)
    assert value == 25.0


@pytest.mark.asyncio
async def test_malformed_bulk_export_falls_back_to_paging():
    graphql = GraphQLRouter({
        "mutation bulkOperationRunQuery(": {
            "bulkOperationRunQuery": {"bulkOperation": {"id": "gid://shopify/BulkOperation/9"}, "userErrors": []}
        },
        "query bulkOperation(": {"node": {"id": "gid://shopify/BulkOperation/9", "status": "COMPLETED", "url": BULK_URL}},
        "query inventoryItems(": pages([item(1, "ACTIVE", 6, 2)]),
    })
    async with respx.mock(assert_all_called=True) as router:
        router.post(GRAPHQL_URL).mock(side_effect=graphql)
        router.get(BULK_URL).mock(return_value=httpx.Response(200, text='{"id":"v1","price":"12.50"\n'))
        async with httpx.AsyncClient() as session:
            value = await total_store_value(admin_client(session), LOCATION, session=session, poll_seconds=0)
    assert value == 12.0


@pytest.mark.asyncio
async def test_paging_stops_when_cursor_missing():
    def respond(variables):
        return {
            "inventoryItems": {
                "edges": [item(1, "ACTIVE", 4, 1)],
                "pageInfo": {"endCursor": None, "hasNextPage": True},
            }
        }

    graphql = GraphQLRouter({
        "mutation bulkOperationRunQuery(": {
            "bulkOperationRunQuery": {"bulkOperation": {"id": "gid://shopify/BulkOperation/9"}, "userErrors": []}
        },
        "query bulkOperation(": {"node": {"status": "FAILED", "errorCode": "INTERNAL_SERVER_ERROR"}},
        "query inventoryItems(": respond,
    })
    async with respx.mock(assert_all_called=True) as router:
        router.post(GRAPHQL_URL).mock(side_effect=graphql)
        async with httpx.AsyncClient() as session:
            value = await total_store_value(admin_client(session), LOCATION, session=session, poll_seconds=0)
    assert value == 4.0
    assert len(graphql.called("query inventoryItems(")) == 1


@pytest.mark.asyncio
async def test_draft_sweep_drafts_only_empty_active_products():
    graphql = GraphQLRouter({
        "query inventoryItems(": pages(
            [item(1, "ACTIVE", 10, 0), item(1, "ACTIVE", 11, 0), item(2, "ACTIVE", 5, 3)],
            [item(3, "DRAFT", 2, 0), item(4, "ACTIVE", 2, -2)],
        ),
        "mutation productUpdate(": {"productUpdate": {"userErrors": []}},
    })
    async with respx.mock(assert_all_called=True) as router:
        router.post(GRAPHQL_URL).mock(side_effect=graphql)
        async with httpx.AsyncClient() as session:
            drafted = await check_all_products(admin_client(session), LOCATION)
    assert drafted == ["gid://shopify/Product/1", "gid://shopify/Product/4"]
    assert [v["input"]["status"] for v in graphql.called("mutation productUpdate(")] == ["DRAFT", "DRAFT"]


def test_snapshots_newest_first(engine):
    first = save_snapshot(engine, 100.004)
    second = save_snapshot(engine, 250.5)
    snapshots = recent_snapshots(engine)
    assert [row["id"] for row in snapshots] == [second, first]
    assert snapshots[1]["value"] == 100.0
    assert len(recent_snapshots(engine, limit=1)) == 1
