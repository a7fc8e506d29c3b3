# Overview: Pytest coverage for manufacturing reports built from recorded movements.

from datetime import timedelta

import pytest

from manufacturing.extensions import db
from manufacturing.services import analytics_service, production_service
from manufacturing.services.analytics_service import ReportError
from manufacturing.time_utils import utcnow

from conftest import AUTHOR_ID


@pytest.fixture
def completed_order(db_session, stocked_bakery):
    order = production_service.create_order(bom_id=stocked_bakery.id, quantity="1", author_id=AUTHOR_ID)
    db.session.commit()
    production_service.complete_order(order.id, author_id=AUTHOR_ID)
    return order


@pytest.fixture
def planned_order(db_session, stocked_bakery):
    order = production_service.create_order(bom_id=stocked_bakery.id, quantity="2", author_id=AUTHOR_ID)
    db.session.commit()
    return order


class TestSummary:

    def test_counts_and_values(self, db_session, completed_order, planned_order):
        summary = analytics_service.get_summary()

        assert summary["total_orders"] == 2
        assert summary["completed"] == 1
        assert summary["pending"] == 1
        assert summary["total_production_value"] == "5.0000"
        assert summary["top_products"] == [
            {"product_id": completed_order.output_product_id, "name": "Bread", "quantity": "10.0000"}
        ]

    def test_recent_orders_value(self, db_session, completed_order, planned_order):
        recent = {row["code"]: row for row in analytics_service.get_recent_orders()}

        # Recorded value once completed, current estimate before
        assert recent[completed_order.code]["value"] == "5.0000"
        assert recent[planned_order.code]["value"] == "10.0000"
        assert recent[planned_order.code]["status"] == "planned"
        assert recent[completed_order.code]["unit_name"] == "Piece"

    def test_range_excludes_older_movements(self, db_session, completed_order):
        tomorrow = utcnow() + timedelta(days=1)
        summary = analytics_service.get_summary(from_dt=tomorrow)

        assert summary["completed"] == 0
        assert summary["total_production_value"] == "0.0000"
        assert summary["top_products"] == []

    def test_inverted_range_is_rejected(self, db_session):
        now = utcnow()
        with pytest.raises(ReportError):
            analytics_service.get_summary(from_dt=now, to_dt=now - timedelta(days=1))

    def test_soft_deleted_orders_are_not_counted(self, db_session, planned_order):
        production_service.soft_delete_order(planned_order.id)
        db.session.commit()

        assert analytics_service.get_summary()["total_orders"] == 0


class TestConsumptionAndUsage:

    def test_consumption_report(self, db_session, completed_order):
        rows = {row["ingredient"]: row for row in analytics_service.get_consumption()}

        assert rows["Flour"]["quantity"] == "2.0000"
        assert rows["Flour"]["total_cost"] == "3.0000"
        assert rows["Yeast"]["quantity"] == "0.5000"
        assert rows["Yeast"]["total_cost"] == "2.0000"
        assert rows["Yeast"]["unit"] == "Kilogram"

    def test_bom_usage(self, db_session, completed_order, planned_order, stocked_bakery):
        usage = analytics_service.get_bom_usage(stocked_bakery.id)

        assert usage == {
            "bom_id": stocked_bakery.id,
            "total_orders": 2,
            "completed_orders": 1,
            "total_quantity_produced": "10.0000",
        }
