import httpx
import pytest
import respx

from cardvault.logic import compliance
from cardvault.logic.compliance import bypass_ids, collection_overrides, is_bypassed, normalize_gid, reconcile

from conftest import GRAPHQL_URL, GraphQLRouter, admin_client

PRODUCT_ID = "gid://shopify/Product/101"


def product(status, total, option="Title"):
    return {
        "product": {
            "id": PRODUCT_ID,
            "title": "PSA 10 CHARIZARD-HOLO",
            "handle": "psa-10-charizard-holo",
            "status": status,
            "totalInventory": total,
            "options": [{"name": option}],
            "variants": {"nodes": [{"id": "gid://shopify/ProductVariant/1", "selectedOptions": [{"name": option, "value": "x"}]}]},
        }
    }


OK = {"userErrors": []}


@pytest.fixture(autouse=True)
def clear_collection_cache(monkeypatch):
    compliance._collection_cache.clear()
    monkeypatch.delenv("PRODUCT_STATUS_BYPASS_IDS", raising=False)
    monkeypatch.delenv("NEW_ARRIVALS_COLLECTION_ID", raising=False)
    monkeypatch.delenv("NEW_ARRIVALS_COLLECTION_OVERRIDES", raising=False)
    yield
    compliance._collection_cache.clear()


def test_normalize_gid():
    assert normalize_gid(101) == PRODUCT_ID
    assert normalize_gid(" 101 ") == PRODUCT_ID
    assert normalize_gid("55", "InventoryItem") == "gid://shopify/InventoryItem/55"
    assert normalize_gid(PRODUCT_ID) == PRODUCT_ID
    assert normalize_gid("") is None
    assert normalize_gid(None) is None


def test_bypass_list_matches_numeric_and_gid():
    allow = bypass_ids("101, gid://shopify/Product/202,")
    assert is_bypassed(PRODUCT_ID, allow)
    assert is_bypassed("gid://shopify/Product/202", allow)
    assert not is_bypassed("gid://shopify/Product/303", allow)


def test_collection_overrides_parse_pairs():
    overrides = collection_overrides("a.myshopify.com=12,b.myshopify.com=gid://shopify/Collection/9,broken")
    assert overrides == {
        "a.myshopify.com": "gid://shopify/Collection/12",
        "b.myshopify.com": "gid://shopify/Collection/9",
    }


@pytest.mark.asyncio
async def test_out_of_stock_product_is_drafted():
    graphql = GraphQLRouter({
        "query productStatus(": product("ACTIVE", 0),
        "mutation productUpdate(": {"productUpdate": OK},
    })
    async with respx.mock(assert_all_called=True) as router:
        router.post(GRAPHQL_URL).mock(side_effect=graphql)
        async with httpx.AsyncClient() as session:
            result = await reconcile(admin_client(session), product_ref=101)
    assert result.status_changed
    assert result.desired_status == "DRAFT"
    assert not result.activated
    assert graphql.called("mutation productUpdate(") == [{"input": {"id": PRODUCT_ID, "status": "DRAFT"}}]


@pytest.mark.asyncio
async def test_restocked_product_is_activated_published_and_placed():
    graphql = GraphQLRouter({
        "query inventoryItemProduct(": {"inventoryItem": {"variant": {"product": {"id": PRODUCT_ID}}}},
        "query productStatus(": product("DRAFT", 3),
        "mutation productUpdate(": {"productUpdate": OK},
        "publications(first: 50)": {"publications": {"nodes": [{"id": "gid://shopify/Publication/1"}]}},
        "mutation publishablePublish(": {"publishablePublish": OK},
        "query collectionByHandle(": {"collectionByHandle": {"id": "gid://shopify/Collection/7"}},
        "query collectionHasProduct(": {"collection": {"hasProduct": False, "sortOrder": "MANUAL"}},
        "mutation collectionAddProductsV2(": {"collectionAddProductsV2": OK},
        "mutation collectionReorderProducts(": {"collectionReorderProducts": OK},
    })
    async with respx.mock(assert_all_called=True) as router:
        router.post(GRAPHQL_URL).mock(side_effect=graphql)
        async with httpx.AsyncClient() as session:
            result = await reconcile(admin_client(session), inventory_item_ref="55")
    assert result.activated
    assert result.published
    assert result.added_to_collection
    assert result.handle == "psa-10-charizard-holo"
    assert graphql.called("query inventoryItemProduct(") == [{"id": "gid://shopify/InventoryItem/55"}]
    assert graphql.called("mutation collectionReorderProducts(")[0]["moves"] == [{"id": PRODUCT_ID, "newPosition": "0"}]


@pytest.mark.asyncio
async def test_raw_cards_skip_new_arrivals():
    graphql = GraphQLRouter({
        "query productStatus(": product("DRAFT", 1, option="Condition"),
        "mutation productUpdate(": {"productUpdate": OK},
        "publications(first: 50)": {"publications": {"nodes": [{"id": "gid://shopify/Publication/1"}]}},
        "mutation publishablePublish(": {"publishablePublish": OK},
    })
    async with respx.mock(assert_all_called=True) as router:
        router.post(GRAPHQL_URL).mock(side_effect=graphql)
        async with httpx.AsyncClient() as session:
            result = await reconcile(admin_client(session), product_ref=PRODUCT_ID)
    assert result.published
    assert not result.added_to_collection


@pytest.mark.asyncio
async def test_matching_status_makes_no_mutation():
    graphql = GraphQLRouter({"query productStatus(": product("ACTIVE", 4)})
    async with respx.mock(assert_all_called=True) as router:
        router.post(GRAPHQL_URL).mock(side_effect=graphql)
        async with httpx.AsyncClient() as session:
            result = await reconcile(admin_client(session), product_ref=PRODUCT_ID)
    assert not result.status_changed
    assert [name for name, _ in graphql.calls] == ["query productStatus("]


@pytest.mark.asyncio
async def test_bypassed_product_stays_active(monkeypatch):
    monkeypatch.setenv("PRODUCT_STATUS_BYPASS_IDS", "101")
    graphql = GraphQLRouter({"query productStatus(": product("ACTIVE", 0)})
    async with respx.mock(assert_all_called=True) as router:
        router.post(GRAPHQL_URL).mock(side_effect=graphql)
        async with httpx.AsyncClient() as session:
            result = await reconcile(admin_client(session), product_ref="101")
    assert result.desired_status == "ACTIVE"
    assert not result.status_changed


@pytest.mark.asyncio
async def test_unresolvable_reference_is_a_noop():
    async with respx.mock(assert_all_called=False) as router:
        route = router.post(GRAPHQL_URL)
        async with httpx.AsyncClient() as session:
            result = await reconcile(admin_client(session))
    assert result.product_id is None
    assert not route.called
