"""Sale transaction processor: daily codes, stock decrement, linked cash row."""

import pytest

from pincorp.errors import ConflictError, InconsistentStateError, StorageError
from pincorp.journal import COMMITTED, REVERTED
from pincorp.services.sequence_service import format_code

from conftest import make_material, make_product


def _sale_payload(product, quantity=2, price=50000, **extra):
    total = quantity * price
    return {
        "items": [{"product_id": product["id"], "type": "product", "quantity": quantity, "unit_price": price}],
        "subtotal": total,
        "total": total,
        "customer": {"id": "c1", "name": "Chị Lan"},
        "payment_method": "cash",
        **extra,
    }


class TestHandleSale:
    def test_full_payment_then_delete(self, services):
        widget = make_product(services, "Widget", stock=10, retail_price=50000)

        sale = services.sales.handle_sale(_sale_payload(widget), {"amount": 100000})

        assert services.repos.products.get(widget["id"])["stock"] == 8
        assert sale["payment_status"] == "paid"
        assert sale["paid_amount"] == 100000
        cash = services.ledger.for_sale(sale["id"])
        assert len(cash) == 1
        assert cash[0]["id"] == f"sale-{sale['id']}-payment"
        assert cash[0]["amount"] == sale["total"] == 100000
        assert cash[0]["category"] == "sale_income"
        assert "#app:pincorp" in cash[0]["notes"]

        result = services.sales.delete_sale(sale["id"])

        assert result["cash_removed"] == 1
        assert services.repos.products.get(widget["id"])["stock"] == 10
        assert services.ledger.for_sale(sale["id"]) == []
        assert services.repos.sales.get(sale["id"]) is None

    def test_code_follows_daily_sequence(self, services):
        widget = make_product(services, stock=10)
        today = services.sequences.today()

        first = services.sales.handle_sale(_sale_payload(widget, quantity=1))
        second = services.sales.handle_sale(_sale_payload(widget, quantity=1))

        assert first["code"] == format_code("LTN-BH", today, 1)
        assert second["code"] == format_code("LTN-BH", today, 2)

    def test_code_collision_is_retried(self, services):
        widget = make_product(services, stock=10)
        today = services.sequences.today()
        services.repos.sales.insert({"code": format_code("LTN-BH", today, 1), "total": 0})

        sale = services.sales.handle_sale(_sale_payload(widget, quantity=1))

        assert sale["code"] == format_code("LTN-BH", today, 2)
        assert services.repos.write_batches.find_one(reference_id=sale["id"])["status"] == COMMITTED

    def test_code_retries_are_bounded(self, services):
        widget = make_product(services, stock=10)
        today = services.sequences.today()
        for number in (1, 2, 3):
            services.repos.sales.insert({"code": format_code("LTN-BH", today, number), "total": 0})

        with pytest.raises(ConflictError) as exc:
            services.sales.handle_sale(_sale_payload(widget, quantity=1))

        assert "3 lần thử" in exc.value.message
        assert services.repos.products.get(widget["id"])["stock"] == 10
        assert len(services.repos.sales.all()) == 3

    def test_code_without_sequence_procedure(self, legacy_services):
        widget = make_product(legacy_services, stock=10)
        today = legacy_services.sequences.today()
        legacy_services.repos.sales.insert({"code": format_code("LTN-BH", today, 7), "total": 0})

        sale = legacy_services.sales.handle_sale(_sale_payload(widget, quantity=1))

        assert sale["code"] == format_code("LTN-BH", today, 8)

    def test_oversell_is_clamped_and_delete_restores_what_was_taken(self, services):
        widget = make_product(services, stock=1)

        sale = services.sales.handle_sale(_sale_payload(widget, quantity=3))

        assert services.repos.products.get(widget["id"])["stock"] == 0
        assert sale["items"][0]["stock_deducted"] == 1

        services.sales.delete_sale(sale["id"])

        assert services.repos.products.get(widget["id"])["stock"] == 1

    def test_material_lines_hit_material_stock(self, services):
        wire = make_material(services, "Wire", stock=20)
        payload = {
            "items": [
                {"product_id": wire["id"], "type": "material", "quantity": 4, "unit_price": 1000},
                {"product_id": wire["id"], "type": "material", "quantity": 1, "unit_price": 1000},
            ],
            "total": 5000,
        }

        services.sales.handle_sale(payload)

        assert services.repos.materials.get(wire["id"])["stock"] == 15

    def test_partial_payment_sets_status(self, services):
        widget = make_product(services, stock=10)

        sale = services.sales.handle_sale(
            _sale_payload(widget, paid_amount=30000, due_date="2026-11-01T00:00:00Z"),
            {"amount": 30000},
        )

        assert sale["payment_status"] == "partial"
        assert sale["paid_amount"] == 30000
        assert services.ledger.for_sale(sale["id"])[0]["amount"] == 30000

    def test_no_cash_row_without_payment(self, services):
        widget = make_product(services, stock=10)

        sale = services.sales.handle_sale(_sale_payload(widget, payment_status="debt", paid_amount=0))

        assert sale["payment_status"] == "debt"
        assert services.ledger.for_sale(sale["id"]) == []

    def test_cash_failure_reports_batch_and_reconcile_reverses(self, services, monkeypatch):
        widget = make_product(services, stock=10)

        def broken_ledger(tx):
            raise StorageError("cash_transactions unavailable")

        monkeypatch.setattr(services.ledger, "add_cash_transaction", broken_ledger)
        with pytest.raises(InconsistentStateError) as exc:
            services.sales.handle_sale(_sale_payload(widget), {"amount": 100000})
        monkeypatch.undo()

        sale_id = exc.value.details["sale_id"]
        assert exc.value.details["errors"][0]["type"] == "cash_transaction"
        assert services.repos.sales.get(sale_id) is not None
        assert services.repos.products.get(widget["id"])["stock"] == 8

        services.journal.reconcile(exc.value.details["batch_id"])

        assert services.repos.sales.get(sale_id) is None
        assert services.repos.products.get(widget["id"])["stock"] == 10
        assert services.repos.write_batches.get(exc.value.details["batch_id"])["status"] == REVERTED


class TestUpdateSale:
    def test_linked_cash_follows_paid_amount(self, services):
        widget = make_product(services, stock=10)
        sale = services.sales.handle_sale(
            _sale_payload(widget, paid_amount=30000), {"amount": 30000, "notes": "Khách trả trước"}
        )

        services.sales.update_sale({"id": sale["id"], "paid_amount": 100000, "payment_status": "paid"})

        cash = services.ledger.for_sale(sale["id"])
        assert len(cash) == 1
        assert cash[0]["amount"] == 100000
        assert cash[0]["notes"].startswith("Khách trả trước")
        assert "#app:pincorp" in cash[0]["notes"]

    def test_zero_paid_amount_drops_cash_row(self, services):
        widget = make_product(services, stock=10)
        sale = services.sales.handle_sale(_sale_payload(widget), {"amount": 100000})

        services.sales.update_sale({"id": sale["id"], "paid_amount": 0, "payment_status": "debt"})

        assert services.ledger.for_sale(sale["id"]) == []

    def test_code_cannot_change(self, services):
        widget = make_product(services, stock=10)
        sale = services.sales.handle_sale(_sale_payload(widget))

        updated = services.sales.update_sale({"id": sale["id"], "code": "HACKED", "discount": 5000})

        assert updated["code"] == sale["code"]
        assert updated["discount"] == 5000

    def test_resending_items_keeps_deducted_amounts(self, services):
        widget = make_product(services, stock=1)
        sale = services.sales.handle_sale(_sale_payload(widget, quantity=3))
        client_items = [{k: v for k, v in item.items() if k != "stock_deducted"} for item in sale["items"]]

        updated = services.sales.update_sale({"id": sale["id"], "items": client_items, "payment_status": "paid"})

        assert updated["items"][0]["stock_deducted"] == 1
        assert services.repos.products.get(widget["id"])["stock"] == 0
        services.sales.delete_sale(sale["id"])
        assert services.repos.products.get(widget["id"])["stock"] == 1

    def test_client_stock_deducted_is_ignored(self, services):
        widget = make_product(services, stock=10)
        sale = services.sales.handle_sale(_sale_payload(widget, quantity=2))
        items = [{**sale["items"][0], "stock_deducted": 50}]

        updated = services.sales.update_sale({"id": sale["id"], "items": items})

        assert "stock_deducted" not in updated["items"][0]
        services.sales.delete_sale(sale["id"])
        assert services.repos.products.get(widget["id"])["stock"] == 10

    def test_quantity_change_moves_stock(self, services):
        widget = make_product(services, stock=10)
        sale = services.sales.handle_sale(_sale_payload(widget, quantity=2))

        services.sales.update_sale({"id": sale["id"], "items": _sale_payload(widget, quantity=5)["items"]})
        assert services.repos.products.get(widget["id"])["stock"] == 5

        services.sales.update_sale({"id": sale["id"], "items": _sale_payload(widget, quantity=1)["items"]})
        assert services.repos.products.get(widget["id"])["stock"] == 9

        services.sales.delete_sale(sale["id"])
        assert services.repos.products.get(widget["id"])["stock"] == 10

    def test_raised_quantity_is_clamped_and_tracked(self, services):
        widget = make_product(services, stock=4)
        sale = services.sales.handle_sale(_sale_payload(widget, quantity=2))

        updated = services.sales.update_sale({"id": sale["id"], "items": _sale_payload(widget, quantity=6)["items"]})

        assert services.repos.products.get(widget["id"])["stock"] == 0
        assert updated["items"][0]["stock_deducted"] == 4
        services.sales.delete_sale(sale["id"])
        assert services.repos.products.get(widget["id"])["stock"] == 4


class TestOffline:
    def test_sale_round_trip_in_memory(self, offline_services):
        widget = make_product(offline_services, stock=10)
        today = offline_services.sequences.today()

        sale = offline_services.sales.handle_sale(_sale_payload(widget), {"amount": 100000})

        assert sale["code"] == format_code("LTN-BH", today, 1)
        assert offline_services.repos.products.get(widget["id"])["stock"] == 8
        assert len(offline_services.ledger.for_sale(sale["id"])) == 1

        result = offline_services.sales.delete_sale(sale["id"])

        assert result["cash_removed"] == 0
        assert offline_services.ledger.for_sale(sale["id"]) == []
        assert offline_services.repos.products.get(widget["id"])["stock"] == 10
