"""Production orders: commitments, lifecycle, completion and cost analysis."""

import pytest

from pincorp.errors import InconsistentStateError, StorageError, ValidationError
from pincorp.journal import FAILED, REVERTED
from pincorp.services.production_service import calculate_cost_analysis

from conftest import make_material


def _bom(services, material, per_unit=1, sku="WIDGET"):
    return services.production.upsert_bom({
        "product_name": "Widget",
        "product_sku": sku,
        "materials": [{"material_id": material["id"], "quantity": per_unit}],
    })


def _order(services, bom, quantity, **extra):
    return services.production.create_order({"bom_id": bom["id"], "quantity_produced": quantity, **extra})


class TestCommitments:
    def test_create_and_cancel_moves_commitment(self, services):
        resin = make_material(services, "Resin", stock=100)
        bom = _bom(services, resin)

        order = _order(services, bom, 30)

        assert order["status"] == "PENDING"
        assert services.commitments.committed_quantity(resin["id"]) == 30
        assert services.commitments.available_stock(resin["id"]) == 70
        assert services.repos.materials.get(resin["id"])["committed_quantity"] == 30
        assert services.repos.materials.get(resin["id"])["stock"] == 100

        services.production.update_status(order["id"], "CANCELLED")

        assert services.commitments.committed_quantity(resin["id"]) == 0
        assert services.repos.materials.get(resin["id"])["committed_quantity"] == 0
        assert services.repos.materials.get(resin["id"])["stock"] == 100

    def test_second_order_rejected_without_partial_commitment(self, services):
        resin = make_material(services, "Resin", stock=100)
        bom = _bom(services, resin)
        _order(services, bom, 60)

        with pytest.raises(ValidationError) as exc:
            _order(services, bom, 60)

        assert "cần 60, có 40" in exc.value.message
        assert exc.value.details["shortages"][0]["shortage"] == 20
        assert services.repos.materials.get(resin["id"])["committed_quantity"] == 60
        assert services.repos.materials.get(resin["id"])["stock"] == 100
        assert len(services.repos.production_orders.all()) == 1

    def test_availability_is_all_or_nothing(self, services):
        plenty = make_material(services, "Plenty", stock=100)
        scarce = make_material(services, "Scarce", stock=1)
        bom = services.production.upsert_bom({
            "product_name": "Combo",
            "product_sku": "COMBO",
            "materials": [
                {"material_id": plenty["id"], "quantity": 1},
                {"material_id": scarce["id"], "quantity": 1},
            ],
        })

        with pytest.raises(ValidationError):
            _order(services, bom, 5)

        assert services.repos.materials.get(plenty["id"])["committed_quantity"] == 0
        assert services.repos.production_orders.all() == []

    def test_duplicate_bom_lines_are_summed(self, services):
        resin = make_material(services, "Resin", stock=10)
        bom = services.production.upsert_bom({
            "product_name": "Twin",
            "product_sku": "TWIN",
            "materials": [
                {"material_id": resin["id"], "quantity": 3},
                {"material_id": resin["id"], "quantity": 3},
            ],
        })

        with pytest.raises(ValidationError) as exc:
            _order(services, bom, 2)

        assert "cần 12, có 10" in exc.value.message

    def test_reconcile_rewrites_drifted_committed_quantity(self, services):
        resin = make_material(services, "Resin", stock=100)
        _order(services, _bom(services, resin), 25)
        services.repos.materials.update(resin["id"], {"committed_quantity": 3})

        drift = services.commitments.drift()
        assert [row["material_id"] for row in drift] == [resin["id"]]

        services.commitments.reconcile()

        assert services.repos.materials.get(resin["id"])["committed_quantity"] == 25
        assert services.commitments.drift() == []

    def test_material_with_open_commitment_cannot_be_deleted(self, services):
        resin = make_material(services, "Resin", stock=100)
        _order(services, _bom(services, resin), 5)

        with pytest.raises(ValidationError):
            services.inventory.delete_material(resin["id"])


class TestLifecycle:
    def test_invalid_transition_rejected(self, services):
        resin = make_material(services, stock=100)
        order = _order(services, _bom(services, resin), 10)

        with pytest.raises(ValidationError):
            services.production.update_status(order["id"], "COMPLETED")

    def test_same_status_is_noop(self, services, notifier):
        resin = make_material(services, stock=100)
        order = _order(services, _bom(services, resin), 10)
        calls = len(notifier.calls)

        assert services.production.update_status(order["id"], "PENDING")["status"] == "PENDING"
        assert len(notifier.calls) == calls

    def test_terminal_states_are_final(self, services):
        resin = make_material(services, stock=100)
        order = _order(services, _bom(services, resin), 10)
        services.production.update_status(order["id"], "CANCELLED")

        with pytest.raises(ValidationError):
            services.production.update_status(order["id"], "IN_PRODUCTION")

    def test_complete_deducts_stock_and_receives_product(self, services):
        resin = make_material(services, "Resin", stock=100, purchase_price=1000)
        bom = _bom(services, resin, per_unit=2)
        order = _order(services, bom, 10)
        assert order["total_cost"] == 20000

        services.production.update_status(order["id"], "IN_PRODUCTION")
        assert services.commitments.committed_quantity(resin["id"]) == 20

        completed = services.production.update_status(order["id"], "COMPLETED")

        assert completed["status"] == "COMPLETED"
        assert completed["completed_at"] is not None
        material = services.repos.materials.get(resin["id"])
        assert material["stock"] == 80
        assert material["committed_quantity"] == 0
        product = services.repos.products.find_one(sku="WIDGET")
        assert product["stock"] == 10
        assert product["cost_price"] == 2000

    def test_complete_averages_cost_into_existing_product(self, services):
        resin = make_material(services, "Resin", stock=100, purchase_price=1000)
        services.inventory.create_product({"name": "Widget", "sku": "WIDGET", "stock": 10, "cost_price": 1000})
        order = _order(services, _bom(services, resin), 10)
        services.production.update_status(order["id"], "IN_PRODUCTION")

        services.production.update_status(order["id"], "COMPLETED")

        product = services.repos.products.find_one(sku="WIDGET")
        assert product["stock"] == 20
        assert product["cost_price"] == 1000

    def test_complete_uses_actual_quantity_used(self, services):
        resin = make_material(services, "Resin", stock=100)
        order = _order(services, _bom(services, resin), 10)
        services.production.update_status(order["id"], "IN_PRODUCTION")
        services.production.complete_order(order["id"], {
            "material_costs": [{"material_id": resin["id"], "actual_cost": 12000, "actual_quantity_used": 12}],
        })

        services.production.update_status(order["id"], "COMPLETED")

        assert services.repos.materials.get(resin["id"])["stock"] == 88

    def test_overage_cannot_consume_another_orders_reservation(self, services):
        resin = make_material(services, "Resin", stock=100)
        bom = _bom(services, resin)
        first = _order(services, bom, 60)
        second = _order(services, bom, 40)
        services.production.complete_order(first["id"], {
            "material_costs": [{"material_id": resin["id"], "actual_quantity_used": 80}],
        })
        services.production.update_status(first["id"], "IN_PRODUCTION")

        with pytest.raises(ValidationError) as exc:
            services.production.update_status(first["id"], "COMPLETED")

        assert "cần 80, có 60" in exc.value.message
        material = services.repos.materials.get(resin["id"])
        assert material["stock"] == 100
        assert services.commitments.committed_quantity(resin["id"]) == 100
        assert services.repos.production_orders.get(first["id"])["status"] == "IN_PRODUCTION"
        assert services.repos.production_orders.get(second["id"])["status"] == "PENDING"

    def test_overage_within_free_stock_keeps_reservations_covered(self, services):
        resin = make_material(services, "Resin", stock=100)
        bom = _bom(services, resin)
        first = _order(services, bom, 50)
        _order(services, bom, 40)
        services.production.complete_order(first["id"], {
            "material_costs": [{"material_id": resin["id"], "actual_quantity_used": 55}],
        })
        services.production.update_status(first["id"], "IN_PRODUCTION")

        services.production.update_status(first["id"], "COMPLETED")

        material = services.repos.materials.get(resin["id"])
        assert material["stock"] == 45
        assert material["committed_quantity"] == 40
        assert services.commitments.committed_quantity(resin["id"]) <= material["stock"]

    def test_underuse_deducts_only_what_was_used(self, services):
        resin = make_material(services, "Resin", stock=100)
        order = _order(services, _bom(services, resin), 10)
        services.production.complete_order(order["id"], {
            "material_costs": [{"material_id": resin["id"], "actual_quantity_used": 7}],
        })
        services.production.update_status(order["id"], "IN_PRODUCTION")

        services.production.update_status(order["id"], "COMPLETED")

        material = services.repos.materials.get(resin["id"])
        assert material["stock"] == 93
        assert material["committed_quantity"] == 0

    def test_complete_rejected_when_stock_went_short(self, services):
        resin = make_material(services, "Resin", stock=100)
        order = _order(services, _bom(services, resin), 50)
        services.production.update_status(order["id"], "IN_PRODUCTION")
        services.inventory.adjust_stock("material", resin["id"], -60)

        with pytest.raises(ValidationError):
            services.production.update_status(order["id"], "COMPLETED")

        assert services.repos.production_orders.get(order["id"])["status"] == "IN_PRODUCTION"
        assert services.repos.materials.get(resin["id"])["stock"] == 40


class TestCostAnalysis:
    def test_variance_figures(self):
        order = {
            "total_cost": 10000,
            "materials_cost": 8000,
            "additional_costs": [{"description": "Điện", "amount": 2000}],
            "committed_materials": [{"material_id": "m1", "estimated_cost": 8000}],
        }
        actual = {
            "total_actual_cost": 11000,
            "material_costs": [{"material_id": "m1", "actual_cost": 8500}],
            "other_costs": [{"description": "Điện", "amount": 2500}],
        }

        analysis = calculate_cost_analysis(order, actual)

        assert analysis["variance"] == 1000
        assert analysis["variance_percentage"] == 10
        assert analysis["material_variance"] == 500
        assert analysis["material_variances"][0]["variance"] == 500
        assert analysis["additional_costs_variance"] == 500

    def test_zero_estimate_gives_zero_percentage(self):
        analysis = calculate_cost_analysis({"total_cost": 0}, {"total_actual_cost": 500})
        assert analysis["variance"] == 500
        assert analysis["variance_percentage"] == 0

    def test_complete_order_computes_total_when_missing(self, services):
        resin = make_material(services, "Resin", stock=100, purchase_price=100)
        order = _order(services, _bom(services, resin), 10)

        updated = services.production.complete_order(order["id"], {
            "material_costs": [{"material_id": resin["id"], "actual_cost": 1200}],
            "labor_cost": 300,
            "other_costs": [{"description": "Vận chuyển", "amount": 100}],
        })

        assert updated["actual_costs"]["total_actual_cost"] == 1600
        assert updated["cost_analysis"]["variance"] == 600
        assert updated["committed_materials"][0]["actual_cost"] == 1200
        assert updated["status"] == "PENDING"

    def test_complete_order_rejects_cancelled(self, services):
        resin = make_material(services, stock=100)
        order = _order(services, _bom(services, resin), 1)
        services.production.update_status(order["id"], "CANCELLED")

        with pytest.raises(ValidationError):
            services.production.complete_order(order["id"], {"total_actual_cost": 1})


class TestPartialFailure:
    def test_failed_commitment_write_is_reported_and_reconciled(self, services, monkeypatch):
        resin = make_material(services, "Resin", stock=100)
        bom = _bom(services, resin)

        def broken_increment(*args, **kwargs):
            raise StorageError("connection reset")

        monkeypatch.setattr(services.repos.materials, "increment", broken_increment)
        with pytest.raises(InconsistentStateError) as exc:
            _order(services, bom, 30)
        monkeypatch.undo()

        batch_id = exc.value.details["batch_id"]
        order_id = exc.value.details["reference_id"]
        assert exc.value.details["applied_steps"] == 1
        assert services.repos.production_orders.get(order_id) is not None
        assert services.repos.write_batches.get(batch_id)["status"] == FAILED
        assert [b["id"] for b in services.journal.pending()] == [batch_id]

        reports = services.journal.reconcile(batch_id)

        assert reports[0]["reverted_steps"] == 1
        assert len(reports[0]["unverified_steps"]) == 1
        assert services.repos.production_orders.get(order_id) is None
        assert services.repos.write_batches.get(batch_id)["status"] == REVERTED
        assert services.repos.materials.get(resin["id"])["committed_quantity"] == 0
        assert services.journal.pending() == []


def _produce(services, material, quantity, per_unit=2):
    order = _order(services, _bom(services, material, per_unit=per_unit), quantity)
    services.production.update_status(order["id"], "IN_PRODUCTION")
    services.production.update_status(order["id"], "COMPLETED")
    return order, services.repos.products.find_one(sku="WIDGET")


class TestDisassembly:
    def test_partial_removal_returns_materials(self, services):
        resin = make_material(services, "Resin", stock=100)
        order, widget = _produce(services, resin, 10)
        assert services.repos.materials.get(resin["id"])["stock"] == 80

        result = services.production.remove_product_and_return_materials(widget["id"], 3.7)

        assert result["removed"] == 3
        assert result["remaining"] == 7
        assert not result["deleted"]
        assert result["returned"] == [{"material_id": resin["id"], "quantity": 6}]
        assert services.repos.products.get(widget["id"])["stock"] == 7
        assert services.repos.materials.get(resin["id"])["stock"] == 86
        assert services.repos.production_orders.get(order["id"])["status"] == "COMPLETED"

    def test_removing_everything_cancels_orders_and_deletes_product(self, services):
        resin = make_material(services, "Resin", stock=100)
        order, widget = _produce(services, resin, 10)

        result = services.production.remove_product_and_return_materials(widget["id"], 50)

        assert result["removed"] == 10
        assert result["deleted"]
        assert result["cancelled_orders"] == [order["id"]]
        assert services.repos.products.get(widget["id"]) is None
        assert services.repos.production_orders.get(order["id"])["status"] == "CANCELLED"
        material = services.repos.materials.get(resin["id"])
        assert material["stock"] == 100
        assert material["committed_quantity"] == 0
        assert services.repos.write_batches.find_one(reference_id=widget["id"])["status"] == "committed"

    def test_returns_are_recorded_in_history(self, services):
        resin = make_material(services, "Resin", stock=100)
        _, widget = _produce(services, resin, 10)

        services.production.remove_product_and_return_materials(widget["id"], 1)

        entries = [r for r in services.stock.history_for(resin["id"]) if r["reference_id"] == widget["id"]]
        assert [e["quantity_change"] for e in entries] == [2]
        assert entries[0]["transaction_type"] == "import"

    def test_without_bom_is_rejected(self, services):
        widget = services.inventory.create_product({"name": "Loose", "sku": "LOOSE", "stock": 5})

        with pytest.raises(ValidationError) as exc:
            services.production.remove_product_and_return_materials(widget["id"], 1)

        assert "Không tìm thấy BOM" in exc.value.message
        assert services.repos.products.get(widget["id"])["stock"] == 5

    def test_empty_stock_is_rejected(self, services):
        resin = make_material(services, "Resin", stock=100)
        _bom(services, resin)
        widget = services.inventory.create_product({"name": "Widget", "sku": "WIDGET", "stock": 0})

        with pytest.raises(ValidationError) as exc:
            services.production.remove_product_and_return_materials(widget["id"], 2)

        assert exc.value.message == "Số lượng không hợp lệ"
        assert services.repos.materials.get(resin["id"])["stock"] == 100
