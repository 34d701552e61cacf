"""Stock ledger: atomic adjustments, never-negative guard, legacy fallback."""

from pincorp.errors import StorageError
from pincorp.extensions import db
from pincorp.models import Material

from conftest import make_material, make_product


def _stored_stock(material_id):
    db.session.expire_all()
    return db.session.get(Material, material_id).stock


class TestProcedurePath:
    def test_decrement_and_increment(self, services):
        material = make_material(services, stock=10)

        result = services.stock.adjust_material(material["id"], -4)
        assert result.ok
        assert result.next_stock == 6
        assert services.repos.materials.get(material["id"])["stock"] == 6

        result = services.stock.adjust_material(material["id"], 2.5)
        assert result.ok
        assert result.next_stock == 8.5
        assert _stored_stock(material["id"]) == 8.5

    def test_rejects_going_negative_and_leaves_stock_alone(self, services):
        material = make_material(services, stock=3)

        result = services.stock.adjust_material(material["id"], -5)

        assert not result.ok
        assert "Insufficient stock" in result.reason
        assert services.repos.materials.get(material["id"])["stock"] == 3
        assert _stored_stock(material["id"]) == 3

    def test_unknown_item_is_not_ok(self, services):
        result = services.stock.adjust_product("missing", 1)
        assert not result.ok
        assert "not found" in result.reason

    def test_dispatch_on_item_type(self, services):
        material = make_material(services, stock=5)
        product = make_product(services, stock=5)

        assert services.stock.adjust("material", material["id"], -1).next_stock == 4
        assert services.stock.adjust("product", product["id"], -2).next_stock == 3
        assert services.repos.materials.get(material["id"])["stock"] == 4
        assert services.repos.products.get(product["id"])["stock"] == 3

    def test_clamped_decrement_stops_at_zero(self, services):
        product = make_product(services, stock=2)

        result = services.stock.clamped_decrement("product", product["id"], 5)

        assert result.ok
        assert result.next_stock == 0
        assert services.repos.products.get(product["id"])["stock"] == 0


class TestFallbackPath:
    def test_conditional_write_when_procedure_missing(self, legacy_services):
        material = make_material(legacy_services, stock=10)

        result = legacy_services.stock.adjust_material(material["id"], -4)

        assert result.ok
        assert result.next_stock == 6
        assert _stored_stock(material["id"]) == 6

    def test_cached_check_rejects_negative(self, legacy_services):
        material = make_material(legacy_services, stock=2)

        result = legacy_services.stock.adjust_material(material["id"], -3)

        assert not result.ok
        assert _stored_stock(material["id"]) == 2

    def test_guard_holds_when_cache_is_stale(self, legacy_services, other_process):
        material = make_material(legacy_services, stock=10)
        other_process.refresh_all()
        assert other_process.stock.adjust_material(material["id"], -7).ok

        # legacy_services still believes stock is 10
        result = legacy_services.stock.adjust_material(material["id"], -5)

        assert not result.ok
        assert _stored_stock(material["id"]) == 3
        assert legacy_services.repos.materials.get(material["id"])["stock"] == 3


class TestOffline:
    def test_adjusts_cached_rows(self, offline_services):
        material = make_material(offline_services, stock=4)

        assert offline_services.stock.adjust_material(material["id"], -4).ok
        assert not offline_services.stock.adjust_material(material["id"], -1).ok
        assert offline_services.repos.materials.get(material["id"])["stock"] == 0


class TestHistory:
    def test_each_successful_adjustment_is_recorded(self, services):
        material = make_material(services, stock=10)

        services.stock.adjust_material(material["id"], -4, reason="Kiểm kho", reference_id="REF-1")
        services.stock.adjust_material(material["id"], -50)

        rows = services.stock.history_for(material["id"])
        assert len(rows) == 1
        entry = rows[0]
        assert entry["item_type"] == "material"
        assert entry["transaction_type"] == "export"
        assert entry["quantity_change"] == -4
        assert entry["quantity_before"] == 10
        assert entry["quantity_after"] == 6
        assert entry["reason"] == "Kiểm kho"
        assert entry["reference_id"] == "REF-1"

    def test_import_gets_default_reason(self, services):
        product = make_product(services, stock=1)

        services.stock.adjust("product", product["id"], 3)

        entry = services.stock.history_for(product["id"], "product")[0]
        assert entry["transaction_type"] == "import"
        assert entry["quantity_after"] == 4
        assert entry["reason"] == "Điều chỉnh tồn kho"

    def test_fallback_path_is_recorded(self, legacy_services):
        material = make_material(legacy_services, stock=10)

        legacy_services.stock.adjust_material(material["id"], -2, reason="Xuất kho")

        rows = legacy_services.stock.history_for(material["id"])
        assert [(r["quantity_before"], r["quantity_after"]) for r in rows] == [(10, 8)]

    def test_offline_history_stays_in_memory(self, offline_services):
        material = make_material(offline_services, stock=5)

        offline_services.stock.adjust_material(material["id"], -1)

        assert offline_services.stock.history_for(material["id"])[0]["quantity_after"] == 4

    def test_flows_tag_entries_with_their_reference(self, services):
        resin = make_material(services, "Resin", stock=100)
        bom = services.production.upsert_bom({
            "product_name": "Widget",
            "product_sku": "WIDGET",
            "materials": [{"material_id": resin["id"], "quantity": 2}],
        })
        order = services.production.create_order({"bom_id": bom["id"], "quantity_produced": 5})
        services.production.update_status(order["id"], "IN_PRODUCTION")
        services.production.update_status(order["id"], "COMPLETED")

        entry = services.stock.history_for(resin["id"])[0]
        assert entry["reference_id"] == order["id"]
        assert entry["reason"] == f"Sản xuất: Widget ({order['id']})"
        assert entry["quantity_change"] == -10

        widget = services.repos.products.find_one(sku="WIDGET")
        sale = services.sales.handle_sale({
            "items": [{"product_id": widget["id"], "quantity": 2, "unit_price": 1000}],
            "total": 2000,
        })
        services.sales.delete_sale(sale["id"])

        reasons = sorted(r["reason"] for r in services.stock.history_for(widget["id"], "product"))
        assert reasons == [f"Bán hàng: {sale['code']}", f"Xóa đơn hàng: {sale['code']}"]
        assert {r["reference_id"] for r in services.stock.history_for(widget["id"])} == {sale["id"]}

    def test_failed_history_write_keeps_the_adjustment(self, services, monkeypatch):
        material = make_material(services, stock=10)

        def broken_insert(values):
            raise StorageError("stock_history unavailable")

        monkeypatch.setattr(services.repos.stock_history, "insert", broken_insert)

        result = services.stock.adjust_material(material["id"], -3)

        assert result.ok
        assert _stored_stock(material["id"]) == 7
