"""
Warehouse stock cache tests.

WarehouseStock is rebuilt from the ledgers on every warehouse or sales
write, so it always equals max(0, received - sold) and lists each storage
location once.
"""

import pytest

from stitchline.extensions import db
from stitchline.models import WarehouseRecord, WarehouseStock
from stitchline.services import ledger_service, stock_service
from stitchline.validation import NotFoundError


def _expected(sku_id):
    received = sum(r.quantity_received for r in db.session.query(WarehouseRecord).filter_by(sku_id=sku_id))
    sold = sum(r.quantity_sold for r in ledger_service.list_records("sales", sku_id=sku_id))
    return max(0, received - sold)


class TestStockCache:

    def test_stock_tracks_creates_updates_and_deletes(self, admin, stocked_sku, record_event):
        sku_id = stocked_sku.id
        assert stock_service.get_warehouse_stock(sku_id) == _expected(sku_id) == 50

        sale = record_event(admin, "sales", sku_id, quantity_sold=12, platform_name="Shop", unit_price_cents=100)
        assert stock_service.get_warehouse_stock(sku_id) == _expected(sku_id) == 38

        intake = record_event(admin, "warehouse", sku_id, quantity_received=5, storage_location="Rack B")
        assert stock_service.get_warehouse_stock(sku_id) == _expected(sku_id) == 43

        ledger_service.update_record("sales", sale.id, actor=admin, payload={"quantity_sold": 2})
        assert stock_service.get_warehouse_stock(sku_id) == _expected(sku_id) == 53

        ledger_service.delete_record("warehouse", intake.id, actor=admin)
        assert stock_service.get_warehouse_stock(sku_id) == _expected(sku_id) == 48

    def test_locations_are_distinct_and_sorted(self, admin, stocked_sku, record_event):
        record_event(admin, "warehouse", stocked_sku.id, quantity_received=2, storage_location="Rack B")
        record_event(admin, "warehouse", stocked_sku.id, quantity_received=2, storage_location="Rack A")

        stock = db.session.query(WarehouseStock).filter_by(sku_id=stocked_sku.id).one()
        assert stock.storage_location == "Rack A, Rack B"

    def test_recompute_all_repairs_a_drifted_cache(self, stocked_sku):
        stock = db.session.query(WarehouseStock).filter_by(sku_id=stocked_sku.id).one()
        stock.available_quantity = 999
        db.session.commit()

        touched = stock_service.recompute_all_warehouse_stock()

        assert touched == 1
        assert stock_service.get_warehouse_stock(stocked_sku.id) == 50

    def test_sku_without_warehouse_rows_has_zero_stock(self, sku):
        assert stock_service.get_warehouse_stock(sku.id) == 0

    def test_unknown_sku(self, db_session):
        with pytest.raises(NotFoundError):
            stock_service.get_warehouse_stock(31337)


class TestFabricStock:

    def test_fabric_stock_is_computed_on_read(self, admin, sku, record_event):
        record_event(admin, "fabric", sku.id, fabric_type="Cotton", meters_received_cm=5_000)
        record_event(admin, "fabric", sku.id, fabric_type="Linen", meters_received_cm=2_500)
        record_event(admin, "cutting", sku.id, total_fabric_used_cm=3_000, total_pieces_cut=20)

        [row] = stock_service.get_fabric_stock()
        assert row["sku"] == "AB-1"
        assert row["fabric_types"] == ["Cotton", "Linen"]
        assert row["received_cm"] == 7_500
        assert row["used_cm"] == 3_000
        assert row["available_cm"] == 4_500
