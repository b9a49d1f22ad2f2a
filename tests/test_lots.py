from datetime import datetime

import httpx
import pytest
import respx

from cardvault.logic import lots

from conftest import GRAPHQL_URL, GraphQLRouter, admin_client

LOCATION = "gid://shopify/Location/1"


def test_create_and_update_lot_keeps_purchase_date(engine):
    lot = lots.create_lot(engine, {"purchase_date": datetime(2026, 5, 1), "total_cost": 80, "vendor": "Local Shop"})
    assert lot["shipping_status"] == "pending_shipment"
    assert float(lot["initial_debt"]) == 0.0

    updated = lots.update_lot(engine, lot["id"], {"vendor": "eBay", "purchase_date": datetime(2020, 1, 1)})
    assert updated["vendor"] == "eBay"
    assert str(updated["purchase_date"]).startswith("2026-05-01")

    with pytest.raises(lots.LotNotFound):
        lots.update_lot(engine, 999, {"vendor": "nobody"})


def test_payments_clamp_to_remaining_debt(seeded_engine):
    first = lots.record_debt_payment(seeded_engine, 1, 50, payment_method="Cash")
    assert (first.amount, first.remaining_debt) == (50, 100)

    second = lots.record_debt_payment(seeded_engine, 1, 500)
    assert (second.amount, second.remaining_debt) == (100, 0)

    stats = lots.debt_stats(seeded_engine, 1)
    assert stats["original_debt"] == 150
    assert stats["total_paid"] == 150
    assert stats["is_fully_paid"]
    assert stats["payment_progress"] == 100
    assert len(lots.payment_history(seeded_engine, 1)) == 2

    with pytest.raises(lots.NoDebtError):
        lots.pay_off_debt(seeded_engine, 1)


def test_payoff_records_full_payment(seeded_engine):
    result = lots.pay_off_debt(seeded_engine, 1)
    assert result.amount == 150
    assert result.remaining_debt == 0
    history = lots.payment_history(seeded_engine, 1)
    assert history[0]["payment_method"] == "Full Payoff"
    summary = lots.debt_payment_summary(seeded_engine)
    assert summary == {"total_payments": 1, "total_amount_paid": 150.0, "average_payment": 150.0}


def test_statistics_and_analytics(seeded_engine):
    stats = lots.lot_statistics(seeded_engine)
    assert stats["total_lots"] == 2
    assert stats["converted_lots"] == 1
    assert stats["pending_lots"] == 1
    assert stats["delivery_rate"] == 50
    assert stats["total_cost"] == 300

    months = lots.monthly_analytics(seeded_engine, 2026)
    assert len(months) == 12
    march = months[2]
    assert march["month"] == "March"
    assert march["lot_count"] == 1
    assert march["average_paid_percentage"] == 40
    assert months[6]["average_paid_percentage"] == 62.5
    assert months[0]["lot_count"] == 0

    assert all(month["lot_count"] == 0 for month in lots.monthly_analytics(seeded_engine, 2019))

    summary = lots.yearly_summary(seeded_engine, 2026)
    assert summary["total_lots"] == 2
    assert summary["profit_potential"] == 360
    assert summary["converted_lots"] == 1
    assert summary["delivered_lots"] == 1
    assert lots.yearly_summary(seeded_engine, 2019)["total_lots"] == 0


def test_lot_detail_and_delete(seeded_engine):
    product = lots.add_product(seeded_engine, 1, {"product_name": "Base Set Booster"})
    lots.add_variant(seeded_engine, product["id"], {"variant_name": "Unlimited", "quantity": 3, "estimated_value": 12})
    detail = lots.get_lot(seeded_engine, 1)
    assert [p["product_name"] for p in detail["products"]] == ["Base Set Booster"]
    assert detail["products"][0]["variants"][0]["quantity"] == 3
    assert [(row["vendor"], row["product_count"]) for row in lots.list_lots(seeded_engine)] == [
        ("Estate Sale", 0),
        ("Card Show", 1),
    ]

    lots.delete_lot(seeded_engine, 1)
    with pytest.raises(lots.LotNotFound):
        lots.get_lot(seeded_engine, 1)
    with pytest.raises(lots.LotNotFound):
        lots.delete_lot(seeded_engine, 1)


@pytest.mark.asyncio
async def test_linked_product_is_not_created_again(seeded_engine):
    product = lots.add_product(seeded_engine, 1, {"product_name": "Jungle Booster"})
    with seeded_engine.begin() as conn:
        conn.exec_driver_sql(
            "UPDATE lot_products SET shopify_product_id = 'gid://shopify/Product/5' WHERE id = ?", (product["id"],)
        )
    result = await lots.convert_product_to_shopify(seeded_engine, None, product["id"], location_id=LOCATION)
    assert result.success
    assert result.shopify_product_id == "gid://shopify/Product/5"
    assert result.message == "Product is already linked to Shopify"


@pytest.mark.asyncio
async def test_convert_creates_draft_with_variants(seeded_engine):
    product = lots.add_product(seeded_engine, 1, {"product_name": "Fossil Booster", "sku": "FOS-1"})
    lots.add_variant(seeded_engine, product["id"], {"variant_name": "1st Edition", "quantity": 2, "estimated_value": 40})
    lots.add_variant(seeded_engine, product["id"], {"variant_name": "Unlimited", "quantity": 5})

    def variants_created(variables):
        return {
            "productVariantsBulkCreate": {
                "productVariants": [
                    {
                        "id": f"gid://shopify/ProductVariant/{n}",
                        "selectedOptions": [{"name": "Title", "value": v["optionValues"][0]["name"]}],
                        "inventoryItem": {"id": f"gid://shopify/InventoryItem/{n}"},
                    }
                    for n, v in enumerate(variables["variants"], start=1)
                ],
                "userErrors": [],
            }
        }

    graphql = GraphQLRouter({
        "mutation productCreate(": {"productCreate": {"product": {"id": "gid://shopify/Product/77"}, "userErrors": []}},
        "mutation productVariantsBulkCreate(": variants_created,
        "mutation inventorySetQuantities(": {"inventorySetQuantities": {"userErrors": []}},
    })
    async with respx.mock(assert_all_called=True) as router:
        router.post(GRAPHQL_URL).mock(side_effect=graphql)
        async with httpx.AsyncClient() as session:
            result = await lots.convert_product_to_shopify(
                seeded_engine, admin_client(session), product["id"], location_id=LOCATION, default_price=9.99
            )
    assert result.shopify_product_id == "gid://shopify/Product/77"
    created = graphql.called("mutation productCreate(")[0]["input"]
    assert created["status"] == "DRAFT"
    variants = graphql.called("mutation productVariantsBulkCreate(")[0]["variants"]
    assert [v["price"] for v in variants] == ["40.00", "9.99"]
    quantities = graphql.called("mutation inventorySetQuantities(")[0]["input"]["quantities"]
    assert [q["quantity"] for q in quantities] == [2, 5]

    detail = lots.get_lot(seeded_engine, 1)
    assert detail["products"][0]["is_converted"]
    assert all(v["is_converted"] for v in detail["products"][0]["variants"])
