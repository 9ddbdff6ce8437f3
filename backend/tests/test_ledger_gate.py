"""
Stage ledger gate tests.

Verifies:
- No stage consumes more than its upstream has produced for the SKU
- Rejections carry the available and requested quantities
- Admin edits and deletes cannot strand downstream consumption
- Non-admins may record events but not edit or delete them
"""

import pytest

from stitchline.models import CuttingRecord, SalesRecord
from stitchline.services import ledger_service, stock_service
from stitchline.services.permission_service import PermissionDeniedError
from stitchline.services.stages import PIPELINE_ORDER, available_for, get_stage
from stitchline.validation import CapacityError, NotFoundError, ValidationError


def _assert_balances_hold(sku_id):
    for key in PIPELINE_ORDER[1:]:
        assert available_for(get_stage(key), sku_id) >= 0, key


# =============================================================================
# FABRIC -> CUTTING
# =============================================================================


class TestCuttingGate:

    def test_cutting_more_than_received_is_rejected(self, line_master, sku, record_event):
        record_event(line_master, "fabric", sku.id, fabric_type="Cotton", meters_received_cm=10_000)

        with pytest.raises(CapacityError) as exc:
            record_event(line_master, "cutting", sku.id, total_fabric_used_cm=15_000, total_pieces_cut=100)

        assert exc.value.available == 10_000
        assert exc.value.requested == 15_000
        assert str(exc.value) == "Insufficient fabric. Available: 100.00m, Required: 150.00m"

    def test_cutting_within_balance_leaves_remainder(self, line_master, sku, record_event):
        record_event(line_master, "fabric", sku.id, fabric_type="Cotton", meters_received_cm=10_000)
        record_event(line_master, "cutting", sku.id, total_fabric_used_cm=8_000, total_pieces_cut=60)

        assert stock_service.get_fabric_available(sku.id) == 2_000
        assert ledger_service.get_available("cutting", sku.id) == 2_000

    def test_cutting_without_fabric_is_rejected(self, line_master, sku, record_event):
        with pytest.raises(CapacityError) as exc:
            record_event(line_master, "cutting", sku.id, total_fabric_used_cm=100, total_pieces_cut=1)
        assert exc.value.available == 0
        assert "Please add fabric first" in str(exc.value)

    def test_fabric_fully_used_is_empty(self, line_master, sku, record_event):
        record_event(line_master, "fabric", sku.id, fabric_type="Cotton", meters_received_cm=1_000)
        record_event(line_master, "cutting", sku.id, total_fabric_used_cm=1_000, total_pieces_cut=10)

        with pytest.raises(CapacityError) as exc:
            record_event(line_master, "cutting", sku.id, total_fabric_used_cm=1, total_pieces_cut=1)
        assert exc.value.available == 0

    def test_balances_are_per_sku(self, admin, line_master, sku, record_event):
        from stitchline.services import sku_service

        other = sku_service.create_sku(actor=admin, payload={"sku": "CD-1", "product_name": "Other"})
        record_event(line_master, "fabric", other.id, fabric_type="Linen", meters_received_cm=5_000)

        with pytest.raises(CapacityError):
            record_event(line_master, "cutting", sku.id, total_fabric_used_cm=100, total_pieces_cut=1)


# =============================================================================
# CUTTING -> PRODUCTION -> FINISHING -> WAREHOUSE
# =============================================================================


class TestPieceStages:

    def test_production_requires_cutting(self, line_master, sku, record_event):
        record_event(line_master, "fabric", sku.id, fabric_type="Cotton", meters_received_cm=1_000)
        with pytest.raises(CapacityError) as exc:
            record_event(line_master, "production", sku.id, total_stitched=1)
        assert str(exc.value) == "Please complete cutting for this SKU before recording production."

    def test_stitching_more_than_cut_is_rejected(self, line_master, sku, record_event):
        record_event(line_master, "fabric", sku.id, fabric_type="Cotton", meters_received_cm=1_000)
        record_event(line_master, "cutting", sku.id, total_fabric_used_cm=1_000, total_pieces_cut=10)
        record_event(line_master, "production", sku.id, total_stitched=6)

        with pytest.raises(CapacityError) as exc:
            record_event(line_master, "production", sku.id, total_stitched=5)

        assert exc.value.available == 4
        assert exc.value.requested == 5
        assert str(exc.value) == "Cannot stitch 5 pieces. Only 4 pieces available from cutting."

    def test_finishing_counts_rejects_against_stitched(self, line_master, sku, record_event):
        record_event(line_master, "fabric", sku.id, fabric_type="Cotton", meters_received_cm=1_000)
        record_event(line_master, "cutting", sku.id, total_fabric_used_cm=1_000, total_pieces_cut=10)
        record_event(line_master, "production", sku.id, total_stitched=10)
        record_event(line_master, "finishing", sku.id, finished_pieces=7, rejected_pieces=2)

        with pytest.raises(CapacityError) as exc:
            record_event(line_master, "finishing", sku.id, finished_pieces=2)
        assert exc.value.available == 1

    def test_finishing_defaults(self, line_master, sku, record_event):
        record_event(line_master, "fabric", sku.id, fabric_type="Cotton", meters_received_cm=1_000)
        record_event(line_master, "cutting", sku.id, total_fabric_used_cm=1_000, total_pieces_cut=10)
        record_event(line_master, "production", sku.id, total_stitched=10)
        row = record_event(line_master, "finishing", sku.id, finished_pieces=3)

        assert row.rejected_pieces == 0
        assert row.source == "production"
        assert row.record_date is not None

    def test_empty_finishing_row_is_rejected(self, line_master, sku, record_event):
        record_event(line_master, "fabric", sku.id, fabric_type="Cotton", meters_received_cm=1_000)
        record_event(line_master, "cutting", sku.id, total_fabric_used_cm=1_000, total_pieces_cut=10)
        record_event(line_master, "production", sku.id, total_stitched=10)
        with pytest.raises(ValidationError):
            record_event(line_master, "finishing", sku.id, finished_pieces=0, rejected_pieces=0)

    def test_warehouse_cannot_exceed_finished(self, line_master, stocked_sku, record_event):
        with pytest.raises(CapacityError) as exc:
            record_event(line_master, "warehouse", stocked_sku.id, quantity_received=6)
        assert exc.value.available == 5
        record_event(line_master, "warehouse", stocked_sku.id, quantity_received=5)
        assert stock_service.get_warehouse_stock(stocked_sku.id) == 55
        _assert_balances_hold(stocked_sku.id)


# =============================================================================
# WAREHOUSE -> SALES
# =============================================================================


class TestSalesGate:

    def test_overselling_is_rejected_and_exact_sale_empties_stock(self, sales_user, stocked_sku, record_event):
        with pytest.raises(CapacityError) as exc:
            record_event(
                sales_user, "sales", stocked_sku.id,
                quantity_sold=60, platform_name="Amazon", unit_price_cents=89900,
            )
        assert str(exc.value) == "Insufficient stock. Available: 50, Required: 60"
        assert stock_service.get_warehouse_stock(stocked_sku.id) == 50

        sale = record_event(
            sales_user, "sales", stocked_sku.id,
            quantity_sold=50, platform_name="Amazon", unit_price_cents=89900,
        )
        assert sale.total_amount_cents == 50 * 89900
        assert stock_service.get_warehouse_stock(stocked_sku.id) == 0

    def test_sales_without_warehouse_rows(self, sales_user, sku, record_event):
        with pytest.raises(CapacityError) as exc:
            record_event(sales_user, "sales", sku.id, quantity_sold=1, platform_name="Shop", unit_price_cents=1)
        assert exc.value.available == 0

    def test_sales_requires_platform_and_price(self, sales_user, stocked_sku, record_event):
        with pytest.raises(ValidationError):
            record_event(sales_user, "sales", stocked_sku.id, quantity_sold=1)


# =============================================================================
# INPUT VALIDATION
# =============================================================================


class TestRecordValidation:

    def test_zero_quantity_is_rejected(self, line_master, sku, record_event):
        with pytest.raises(ValidationError):
            record_event(line_master, "fabric", sku.id, fabric_type="Cotton", meters_received_cm=0)

    def test_negative_quantity_is_rejected(self, line_master, sku, record_event):
        with pytest.raises(ValidationError):
            record_event(line_master, "fabric", sku.id, fabric_type="Cotton", meters_received_cm=-5)

    def test_unknown_sku(self, line_master, db_session, record_event):
        with pytest.raises(NotFoundError):
            record_event(line_master, "fabric", 4242, fabric_type="Cotton", meters_received_cm=10)

    def test_unknown_stage(self, line_master, sku, record_event):
        with pytest.raises(NotFoundError):
            record_event(line_master, "dyeing", sku.id)

    def test_flexible_record_date(self, line_master, sku, record_event):
        row = record_event(
            line_master, "fabric", sku.id,
            fabric_type="Cotton", meters_received_cm=10, record_date="05/02/2024",
        )
        assert row.record_date.isoformat() == "2024-02-05"


# =============================================================================
# ADMIN EDITS AND DELETES
# =============================================================================


class TestAdminCorrections:

    def test_non_admin_cannot_edit_or_delete(self, line_master, stocked_sku, db_session):
        row = db_session.query(CuttingRecord).first()
        with pytest.raises(PermissionDeniedError):
            ledger_service.update_record("cutting", row.id, actor=line_master, payload={"total_pieces_cut": 70})
        with pytest.raises(PermissionDeniedError):
            ledger_service.delete_record("cutting", row.id, actor=line_master)

    def test_deleting_consumed_upstream_row_is_rejected(self, admin, stocked_sku, db_session):
        row = db_session.query(CuttingRecord).first()
        with pytest.raises(CapacityError):
            ledger_service.delete_record("cutting", row.id, actor=admin)
        assert db_session.query(CuttingRecord).count() == 1

    def test_shrinking_output_below_downstream_use_is_rejected(self, admin, stocked_sku, db_session):
        row = db_session.query(CuttingRecord).first()
        with pytest.raises(CapacityError) as exc:
            ledger_service.update_record("cutting", row.id, actor=admin, payload={"total_pieces_cut": 59})
        assert exc.value.available == 59
        assert exc.value.requested == 60

    def test_growing_consumption_beyond_upstream_is_rejected(self, admin, stocked_sku, db_session):
        row = db_session.query(CuttingRecord).first()
        with pytest.raises(CapacityError):
            ledger_service.update_record(
                "cutting", row.id, actor=admin, payload={"total_fabric_used_cm": 10_001}
            )
        updated = ledger_service.update_record(
            "cutting", row.id, actor=admin, payload={"total_fabric_used_cm": 10_000}
        )
        assert updated.total_fabric_used_cm == 10_000
        _assert_balances_hold(stocked_sku.id)

    def test_sku_of_an_event_cannot_change(self, admin, stocked_sku, db_session):
        row = db_session.query(CuttingRecord).first()
        with pytest.raises(ValidationError):
            ledger_service.update_record("cutting", row.id, actor=admin, payload={"sku_id": 99})

    def test_sales_edit_recomputes_total_and_stock(self, admin, stocked_sku, record_event):
        sale = record_event(
            admin, "sales", stocked_sku.id, quantity_sold=10, platform_name="Shop", unit_price_cents=500,
        )
        updated = ledger_service.update_record("sales", sale.id, actor=admin, payload={"quantity_sold": 20})
        assert updated.total_amount_cents == 10_000
        assert stock_service.get_warehouse_stock(stocked_sku.id) == 30

    def test_deleting_unconsumed_row_succeeds(self, admin, stocked_sku, record_event, db_session):
        sale = record_event(
            admin, "sales", stocked_sku.id, quantity_sold=10, platform_name="Shop", unit_price_cents=500,
        )
        ledger_service.delete_record("sales", sale.id, actor=admin)
        assert db_session.query(SalesRecord).count() == 0
        assert stock_service.get_warehouse_stock(stocked_sku.id) == 50

    def test_delete_missing_row(self, admin, db_session):
        with pytest.raises(NotFoundError):
            ledger_service.delete_record("fabric", 777, actor=admin)


# =============================================================================
# LISTING
# =============================================================================


class TestListRecords:

    def test_list_filters_by_sku(self, admin, stocked_sku, record_event):
        from stitchline.services import sku_service

        other = sku_service.create_sku(actor=admin, payload={"sku": "CD-1", "product_name": "Other"})
        record_event(admin, "fabric", other.id, fabric_type="Linen", meters_received_cm=500)

        assert len(ledger_service.list_records("fabric")) == 2
        rows = ledger_service.list_records("fabric", sku_id=other.id)
        assert [r.sku_id for r in rows] == [other.id]
