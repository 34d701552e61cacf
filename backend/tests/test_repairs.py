"""Repair settlement: exactly-once material deduction and derived cash rows."""

import pytest

from pincorp.errors import ValidationError

from conftest import make_material


def _intake(services, material, quantity=3, **extra):
    return services.repairs.save_repair_order({
        "customer_name": "Anh Minh",
        "customer_phone": "0909000000",
        "device_name": "Máy khoan",
        "materials_used": [{"material_id": material["id"], "material_name": material["name"], "quantity": quantity}],
        "deposit_amount": 50000,
        "total": 200000,
        "status": "INTAKE",
        **extra,
    })


def _return(services, order, **extra):
    return services.repairs.save_repair_order({**order, "status": "RETURNED", "payment_status": "paid", **extra})


class TestSettlement:
    def test_returned_and_paid(self, services):
        m1 = make_material(services, "M1", stock=10)

        order = _intake(services, m1)
        assert services.repos.materials.get(m1["id"])["stock"] == 10
        deposit = services.ledger.cash_transactions.get(f"repair-{order['id']}-deposit")
        assert deposit["amount"] == 50000
        assert deposit["category"] == "service_deposit"
        assert services.ledger.cash_transactions.get(f"repair-{order['id']}-final") is None

        returned = _return(services, order)

        assert returned["materials_deducted"] is True
        assert returned["materials_deducted_at"] is not None
        assert services.repos.materials.get(m1["id"])["stock"] == 7
        final = services.ledger.cash_transactions.get(f"repair-{order['id']}-final")
        assert final["amount"] == 150000
        assert final["category"] == "service_income"
        assert len(services.ledger.for_work_order(order["id"])) == 2

    def test_repeated_saves_deduct_once(self, services):
        m1 = make_material(services, "M1", stock=10)
        order = _return(services, _intake(services, m1))

        for _ in range(3):
            order = services.repairs.save_repair_order({**order, "notes": "khách gọi lại"})

        assert services.repos.materials.get(m1["id"])["stock"] == 7
        assert len(services.ledger.for_work_order(order["id"])) == 2

    def test_client_cannot_reset_deducted_flag(self, services):
        m1 = make_material(services, "M1", stock=10)
        order = _return(services, _intake(services, m1))

        services.repairs.save_repair_order({**order, "materials_deducted": False})

        assert services.repos.materials.get(m1["id"])["stock"] == 7

    def test_second_process_with_stale_collections_does_not_deduct_again(self, services, other_process):
        m1 = make_material(services, "M1", stock=10)
        order = _intake(services, m1)
        other_process.refresh_all()

        _return(services, order)
        # other_process still sees materials_deducted=False in its collection
        _return(other_process, other_process.repos.repair_orders.get(order["id"]))

        other_process.repos.materials.refresh()
        assert other_process.repos.materials.get(m1["id"])["stock"] == 7

    def test_lock_is_compare_and_set(self, services):
        m1 = make_material(services, "M1", stock=10)
        order = _intake(services, m1)

        assert services.repairs._acquire_deduction_lock(order["id"]) is True
        assert services.repairs._acquire_deduction_lock(order["id"]) is False

    def test_shortage_rolls_back_applied_lines(self, services):
        m1 = make_material(services, "M1", stock=10)
        m2 = make_material(services, "M2", stock=1)
        order = services.repairs.save_repair_order({
            "customer_name": "Chị Hoa",
            "materials_used": [
                {"material_id": m1["id"], "material_name": "M1", "quantity": 3},
                {"material_id": m2["id"], "material_name": "M2", "quantity": 5},
            ],
            "total": 100000,
        })

        with pytest.raises(ValidationError) as exc:
            _return(services, order)

        assert 'Vật tư "M2" không đủ' in exc.value.message
        assert services.repos.materials.get(m1["id"])["stock"] == 10
        assert services.repos.materials.get(m2["id"])["stock"] == 1
        assert services.repos.repair_orders.get(order["id"])["materials_deducted"] is False
        # the ledger still follows the saved order
        assert services.ledger.cash_transactions.get(f"repair-{order['id']}-final")["amount"] == 100000

    def test_material_resolved_by_name(self, services):
        m1 = make_material(services, "Dây Điện", stock=10)
        order = services.repairs.save_repair_order({
            "customer_name": "Anh Tú",
            "materials_used": [{"material_name": "dây điện", "quantity": 2}],
            "status": "RETURNED",
            "payment_status": "unpaid",
        })

        assert order["materials_deducted"] is True
        assert services.repos.materials.get(m1["id"])["stock"] == 8

    def test_partial_payment_final_amount(self, services):
        m1 = make_material(services, "M1", stock=10)
        order = _return(services, _intake(services, m1), payment_status="partial", partial_payment_amount=60000)

        final = services.ledger.cash_transactions.get(f"repair-{order['id']}-final")
        assert final["amount"] == 60000

    def test_cleared_deposit_removes_cash_row(self, services):
        m1 = make_material(services, "M1", stock=10)
        order = _intake(services, m1)

        services.repairs.save_repair_order({**order, "deposit_amount": 0})

        assert services.ledger.for_work_order(order["id"]) == []

    def test_validation(self, services):
        with pytest.raises(ValidationError):
            services.repairs.save_repair_order({"customer_name": ""})
        with pytest.raises(ValidationError):
            services.repairs.save_repair_order({"customer_name": "A", "status": "LOST"})


class TestDelete:
    def test_delete_restores_stock_and_clears_cash(self, services):
        m1 = make_material(services, "M1", stock=10)
        order = _return(services, _intake(services, m1))

        result = services.repairs.delete_repair_order(order["id"])

        assert result["cash_removed"] == 2
        assert result["restored"] == [{"material_id": m1["id"], "quantity": 3}]
        assert services.repos.materials.get(m1["id"])["stock"] == 10
        assert services.repos.repair_orders.get(order["id"]) is None
        assert services.ledger.for_work_order(order["id"]) == []

    def test_delete_before_deduction_leaves_stock(self, services):
        m1 = make_material(services, "M1", stock=10)
        order = _intake(services, m1)

        result = services.repairs.delete_repair_order(order["id"])

        assert result["restored"] == []
        assert services.repos.materials.get(m1["id"])["stock"] == 10

    def test_cash_cleanup_failure_is_reported_not_raised(self, services, notifier, monkeypatch):
        from pincorp.errors import StorageError

        m1 = make_material(services, "M1", stock=10)
        order = _intake(services, m1)

        def broken_delete(**filters):
            raise StorageError("timeout")

        monkeypatch.setattr(services.ledger, "delete_cash_transactions", broken_delete)
        result = services.repairs.delete_repair_order(order["id"])

        assert result["cash_removed"] == 0
        assert services.repos.repair_orders.get(order["id"]) is None
        assert notifier.of_type("warn")
