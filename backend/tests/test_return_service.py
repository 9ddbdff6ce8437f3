"""
Return processing tests.

Verifies:
- Saleable returns add warehouse stock in the same write
- Refinishing returns wait in exactly one pending processing row
- pending -> refinished spawns exactly one finishing row; terminal states stick
- Order ids are unique
- Only admin and qc_team may process returns
"""

import pytest

from stitchline.extensions import db
from stitchline.models import ActivityLog, FinishingRecord, ReturnProcessing, ReturnRecord, WarehouseRecord
from stitchline.services import ledger_service, return_service, stock_service
from stitchline.services.permission_service import PermissionDeniedError
from stitchline.validation import CapacityError, ConflictError, ValidationError


def _return(actor, sku_id, *, order_id="ORD-100", quantity=3, condition="saleable", **extra):
    payload = {
        "sku_id": sku_id,
        "order_id": order_id,
        "quantity": quantity,
        "return_type": "e-commerce",
        "ecommerce_subtype": "customer_return",
        "return_condition": condition,
        "return_source_panel": "Myntra",
    }
    payload.update(extra)
    return return_service.create_return(actor=actor, payload=payload)


# =============================================================================
# CREATION
# =============================================================================


class TestCreateReturn:

    def test_saleable_return_adds_stock(self, qc, stocked_sku):
        ret = _return(qc, stocked_sku.id, quantity=3)

        assert stock_service.get_warehouse_stock(stocked_sku.id) == 53
        row = db.session.query(WarehouseRecord).filter_by(return_id=ret.id).one()
        assert row.quantity_received == 3
        assert row.storage_location == "Return via Myntra"
        assert db.session.query(ReturnProcessing).count() == 0
        assert db.session.query(ActivityLog).filter_by(action="add_stock_from_return").count() == 1

    def test_saleable_return_does_not_use_finishing_balance(self, qc, stocked_sku, record_event):
        _return(qc, stocked_sku.id, quantity=3)
        # 55 finished, 50 received from finishing: 5 still receivable
        assert ledger_service.get_available("warehouse", stocked_sku.id) == 5

    def test_refinishing_return_waits_pending(self, qc, stocked_sku):
        ret = _return(qc, stocked_sku.id, condition="refinishing_required")

        processing = db.session.query(ReturnProcessing).filter_by(return_id=ret.id).all()
        assert [p.status for p in processing] == ["pending"]
        assert stock_service.get_warehouse_stock(stocked_sku.id) == 50

        pending = return_service.get_pending_refinishing()
        assert [p["order_id"] for p in pending] == ["ORD-100"]
        assert pending[0]["processing"]["status"] == "pending"

    def test_rejected_return_is_informational(self, qc, stocked_sku):
        _return(qc, stocked_sku.id, condition="rejected")
        assert db.session.query(ReturnProcessing).count() == 0
        assert stock_service.get_warehouse_stock(stocked_sku.id) == 50

    def test_duplicate_order_id_conflicts(self, qc, stocked_sku):
        _return(qc, stocked_sku.id, order_id="ORD-7")
        assert return_service.order_id_exists("ORD-7")

        with pytest.raises(ConflictError) as exc:
            _return(qc, stocked_sku.id, order_id="ORD-7", condition="rejected")
        assert exc.value.field == "order_id"
        assert db.session.query(ReturnRecord).count() == 1

    def test_ecommerce_requires_subtype(self, qc, stocked_sku):
        with pytest.raises(ValidationError):
            _return(qc, stocked_sku.id, ecommerce_subtype=None)

    def test_offline_forbids_subtype(self, qc, stocked_sku):
        with pytest.raises(ValidationError):
            _return(qc, stocked_sku.id, return_type="offline")

    def test_unknown_condition(self, qc, stocked_sku):
        with pytest.raises(ValidationError):
            _return(qc, stocked_sku.id, condition="lost")


# =============================================================================
# STATE TRANSITIONS
# =============================================================================


class TestRefinishing:

    def test_refinish_spawns_exactly_one_finishing_row(self, qc, stocked_sku):
        ret = _return(qc, stocked_sku.id, quantity=4, condition="refinishing_required")

        processing = return_service.mark_refinished(ret.id, actor=qc, notes="pressed")

        assert processing.status == "refinished"
        assert processing.processed_by_user_id == qc.user_id
        finishing = db.session.get(FinishingRecord, processing.finishing_record_id)
        assert finishing.source == "return"
        assert finishing.finished_pieces == 4
        assert finishing.rejected_pieces == 0
        assert return_service.get_pending_refinishing() == []

    def test_second_refinish_is_rejected(self, qc, stocked_sku):
        ret = _return(qc, stocked_sku.id, quantity=4, condition="refinishing_required")
        return_service.mark_refinished(ret.id, actor=qc)

        with pytest.raises(return_service.ReturnError):
            return_service.mark_refinished(ret.id, actor=qc)
        assert db.session.query(FinishingRecord).filter_by(source="return").count() == 1

    def test_refinished_pieces_can_be_received(self, qc, line_master, stocked_sku, record_event):
        ret = _return(qc, stocked_sku.id, quantity=4, condition="refinishing_required")
        return_service.mark_refinished(ret.id, actor=qc)

        assert ledger_service.get_available("warehouse", stocked_sku.id) == 9
        record_event(line_master, "warehouse", stocked_sku.id, quantity_received=9)
        with pytest.raises(CapacityError):
            record_event(line_master, "warehouse", stocked_sku.id, quantity_received=1)

    def test_reject_is_terminal(self, qc, stocked_sku):
        ret = _return(qc, stocked_sku.id, condition="refinishing_required")
        processing = return_service.reject_return(ret.id, actor=qc, notes="torn")

        assert processing.status == "rejected"
        assert db.session.query(FinishingRecord).filter_by(source="return").count() == 0
        with pytest.raises(return_service.ReturnError):
            return_service.mark_refinished(ret.id, actor=qc)

    def test_saleable_return_cannot_be_refinished(self, qc, stocked_sku):
        ret = _return(qc, stocked_sku.id)
        with pytest.raises(return_service.ReturnError):
            return_service.mark_refinished(ret.id, actor=qc)

    def test_sales_team_cannot_process(self, qc, sales_user, stocked_sku):
        ret = _return(qc, stocked_sku.id, condition="refinishing_required")
        with pytest.raises(PermissionDeniedError):
            return_service.mark_refinished(ret.id, actor=sales_user)
        with pytest.raises(PermissionDeniedError):
            return_service.reject_return(ret.id, actor=sales_user)

    def test_spawned_finishing_row_is_owned_by_the_return(self, admin, qc, stocked_sku):
        ret = _return(qc, stocked_sku.id, quantity=2, condition="refinishing_required")
        processing = return_service.mark_refinished(ret.id, actor=qc)
        finishing_id = processing.finishing_record_id

        with pytest.raises(ValidationError) as exc:
            ledger_service.update_record("finishing", finishing_id, actor=admin, payload={"finished_pieces": 500})
        assert exc.value.field == "source"
        assert db.session.get(FinishingRecord, finishing_id).finished_pieces == 2
        assert ledger_service.get_available("warehouse", stocked_sku.id) == 7

    def test_deleting_spawned_finishing_row_detaches_processing(self, admin, qc, stocked_sku):
        ret = _return(qc, stocked_sku.id, quantity=2, condition="refinishing_required")
        processing = return_service.mark_refinished(ret.id, actor=qc)

        ledger_service.delete_record("finishing", processing.finishing_record_id, actor=admin)

        processing = return_service.get_processing_for_return(ret.id)
        assert processing.status == "refinished"
        assert processing.finishing_record_id is None
        assert ledger_service.get_available("warehouse", stocked_sku.id) == 5


# =============================================================================
# ADMIN EDITS
# =============================================================================


class TestReturnEdits:

    def test_delete_saleable_return_removes_its_stock(self, admin, qc, stocked_sku):
        ret = _return(qc, stocked_sku.id, quantity=3)
        return_service.delete_return(ret.id, actor=admin)

        assert db.session.query(ReturnRecord).count() == 0
        assert db.session.query(WarehouseRecord).filter(WarehouseRecord.return_id.isnot(None)).count() == 0
        assert stock_service.get_warehouse_stock(stocked_sku.id) == 50

    def test_return_intake_cannot_be_edited_through_the_ledger(self, admin, qc, stocked_sku):
        ret = _return(qc, stocked_sku.id, quantity=5)
        row = db.session.query(WarehouseRecord).filter_by(return_id=ret.id).one()

        with pytest.raises(ValidationError) as exc:
            ledger_service.update_record("warehouse", row.id, actor=admin, payload={"quantity_received": 900})
        assert exc.value.field == "return_id"
        assert stock_service.get_warehouse_stock(stocked_sku.id) == 55

    def test_return_intake_cannot_be_deleted_through_the_ledger(self, admin, qc, stocked_sku):
        ret = _return(qc, stocked_sku.id, quantity=5)
        row = db.session.query(WarehouseRecord).filter_by(return_id=ret.id).one()

        with pytest.raises(ValidationError):
            ledger_service.delete_record("warehouse", row.id, actor=admin)

        assert db.session.query(WarehouseRecord).filter_by(return_id=ret.id).count() == 1
        assert stock_service.get_warehouse_stock(stocked_sku.id) == 55

        return_service.delete_return(ret.id, actor=admin)
        assert stock_service.get_warehouse_stock(stocked_sku.id) == 50

    def test_delete_refinishing_return_removes_processing(self, admin, qc, stocked_sku):
        ret = _return(qc, stocked_sku.id, condition="refinishing_required")
        return_service.delete_return(ret.id, actor=admin)
        assert db.session.query(ReturnProcessing).count() == 0

    def test_update_descriptive_fields_only(self, admin, qc, stocked_sku):
        ret = _return(qc, stocked_sku.id)
        updated = return_service.update_return(ret.id, actor=admin, payload={"return_reason": "Wrong size"})
        assert updated.return_reason == "Wrong size"
        with pytest.raises(ValidationError):
            return_service.update_return(ret.id, actor=admin, payload={"quantity": 10})

    def test_qc_cannot_edit(self, qc, stocked_sku):
        ret = _return(qc, stocked_sku.id)
        with pytest.raises(PermissionDeniedError):
            return_service.delete_return(ret.id, actor=qc)


# =============================================================================
# ANALYTICS
# =============================================================================


class TestReturnAnalytics:

    def test_panel_breakdown_against_sales(self, admin, qc, stocked_sku, record_event):
        record_event(admin, "sales", stocked_sku.id, quantity_sold=20, platform_name="Myntra", unit_price_cents=100)
        _return(qc, stocked_sku.id, order_id="R-1", quantity=2)
        _return(qc, stocked_sku.id, order_id="R-2", quantity=3, condition="rejected")

        analytics = return_service.get_return_analytics(actor=admin)

        assert analytics["total_returns"] == 2
        assert analytics["total_returned_quantity"] == 5
        [panel] = analytics["by_panel"]
        assert panel["panel"] == "Myntra"
        assert panel["sold_quantity"] == 20
        assert panel["return_rate_pct"] == 25.0
        assert {c["condition"] for c in analytics["by_condition"]} == {"saleable", "rejected"}

    def test_analytics_is_admin_only(self, qc, db_session):
        with pytest.raises(PermissionDeniedError):
            return_service.get_return_analytics(actor=qc)
