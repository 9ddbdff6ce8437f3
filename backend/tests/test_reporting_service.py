"""
Reporting tests: WIP stage, inventory status and overview numbers.
"""

from datetime import timedelta

import pytest

from stitchline.services import reporting_service, sku_service
from stitchline.time_utils import today


def _balances(**overrides):
    backlog = {
        "fabric_available_cm": 0, "cutting": 0, "production": 0, "finishing": 0, "warehouse": 0,
    }
    backlog.update(overrides.pop("in_process", {}))
    balances = {"pieces_sold": 0, "warehouse_stock": 0, "in_process": backlog}
    balances.update(overrides)
    return balances


# =============================================================================
# CURRENT STAGE
# =============================================================================


class TestCurrentStage:

    @pytest.mark.parametrize("balances, expected", [
        (_balances(pieces_sold=5, warehouse_stock=0), "completed"),
        (_balances(pieces_sold=5, warehouse_stock=1), "warehouse"),
        (_balances(warehouse_stock=3, in_process={"cutting": 4}), "warehouse"),
        (_balances(in_process={"finishing": 2, "production": 9}), "finishing"),
        (_balances(in_process={"production": 2, "cutting": 9}), "production"),
        (_balances(in_process={"cutting": 1}), "cutting"),
        (_balances(in_process={"fabric_available_cm": 500}), "fabric"),
        (_balances(), "fabric"),
    ])
    def test_first_match_wins(self, balances, expected):
        assert reporting_service.current_stage(balances) == expected

    def test_wip_tracker_follows_the_sku(self, admin, stocked_sku, record_event):
        [row] = reporting_service.get_wip_tracker()
        assert row["sku"] == "AB-1"
        assert row["current_stage"] == "warehouse"
        assert row["in_process"]["fabric_available_cm"] == 2_000
        assert row["in_process"]["finishing"] == 5
        assert row["last_activity"].endswith("Z")

        record_event(admin, "sales", stocked_sku.id, quantity_sold=50, platform_name="Shop", unit_price_cents=1)
        [row] = reporting_service.get_wip_tracker()
        assert row["current_stage"] == "completed"

    def test_wip_tracker_skips_idle_skus(self, admin, sku, record_event):
        assert reporting_service.get_wip_tracker() == []
        record_event(admin, "fabric", sku.id, fabric_type="Cotton", meters_received_cm=300)
        [row] = reporting_service.get_wip_tracker()
        assert row["current_stage"] == "fabric"

    def test_skus_with_status_flags(self, admin, stocked_sku):
        sku_service.create_sku(actor=admin, payload={"sku": "CD-1", "product_name": "Idle"})
        rows = {r["sku"]: r for r in reporting_service.get_skus_with_status()}

        stocked = rows["AB-1"]
        assert stocked["can_cut"] is True
        assert stocked["can_stitch"] is False
        assert stocked["can_warehouse"] is True
        assert stocked["can_sell"] is True

        idle = rows["CD-1"]
        assert not any(idle[k] for k in ("can_cut", "can_stitch", "can_finish", "can_warehouse", "can_sell"))
        assert idle["current_stage"] == "fabric"


# =============================================================================
# INVENTORY
# =============================================================================


class TestInventory:

    def test_stock_status_thresholds(self, app):
        assert reporting_service.stock_status(0, threshold=10) == "out_of_stock"
        assert reporting_service.stock_status(9, threshold=10) == "low_stock"
        assert reporting_service.stock_status(10, threshold=10) == "in_stock"

    def test_status_moves_as_stock_sells(self, admin, stocked_sku, record_event):
        def status():
            [row] = reporting_service.get_inventory_summary()
            return row["status"]

        assert status() == "in_stock"
        record_event(admin, "sales", stocked_sku.id, quantity_sold=45, platform_name="Shop", unit_price_cents=1)
        assert status() == "low_stock"
        record_event(admin, "sales", stocked_sku.id, quantity_sold=5, platform_name="Shop", unit_price_cents=1)
        assert status() == "out_of_stock"


# =============================================================================
# OVERVIEW
# =============================================================================


class TestOverview:

    def test_overview_numbers(self, admin, stocked_sku, record_event):
        record_event(admin, "sales", stocked_sku.id, quantity_sold=7, platform_name="Shop", unit_price_cents=1)
        record_event(
            admin, "sales", stocked_sku.id, quantity_sold=3, platform_name="Shop", unit_price_cents=1,
            record_date=(today() - timedelta(days=1)).isoformat(),
        )

        stats = reporting_service.get_overview_stats()

        assert stats["total_skus"] == 1
        assert stats["in_production"] == 0
        assert stats["ready_stock"] == 40
        assert stats["todays_sales"] == 7

    def test_in_production_counts_unfinished_stitched_pieces(self, admin, sku, record_event):
        record_event(admin, "fabric", sku.id, fabric_type="Cotton", meters_received_cm=1_000)
        record_event(admin, "cutting", sku.id, total_fabric_used_cm=1_000, total_pieces_cut=10)
        record_event(admin, "production", sku.id, total_stitched=8)
        record_event(admin, "finishing", sku.id, finished_pieces=3, rejected_pieces=1)

        assert reporting_service.get_overview_stats()["in_production"] == 4
