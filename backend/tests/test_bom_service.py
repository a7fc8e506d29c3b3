# Overview: Pytest coverage for BOM dependency validation, cost estimation and CRUD.

"""
BOM Service Tests

Graph tests build small product graphs out of BOMs:
- direct and indirect self-requirements are refused
- diamonds (two paths to one component) are not cycles
- cycles already present in the data do not hang the walk
- soft-deleted BOMs drop out of the graph, inactive ones stay in
"""

from decimal import Decimal

import pytest

from manufacturing.extensions import db
from manufacturing.models import BillOfMaterials, BomItem, ProductionOrder
from manufacturing.services import bom_service
from manufacturing.services.bom_service import (
    BomError,
    BomNotFoundError,
    CircularDependencyError,
)
from manufacturing.services.stock_ledger_service import set_cogs
from manufacturing.validation import ValidationError

from conftest import AUTHOR_ID


def _bom(output, *components):
    bom = bom_service.create_bom(name=f"{output.name} BOM", output_product_id=output.id, author_id=AUTHOR_ID)
    for component in components:
        bom_service.add_bom_item(bom.id, component_product_id=component.id, quantity="1", author_id=AUTHOR_ID)
    db.session.commit()
    return bom


def _raw_bom(output, *components):
    """Insert a BOM without validation, the way legacy or imported data arrives."""
    bom = BillOfMaterials(name=f"{output.name} BOM", output_product_id=output.id, author_id=AUTHOR_ID)
    db.session.add(bom)
    db.session.flush()
    for component in components:
        db.session.add(BomItem(
            bom_id=bom.id, component_product_id=component.id, quantity=Decimal("1"), author_id=AUTHOR_ID,
        ))
    db.session.commit()
    return bom


class TestCircularDependencyValidation:

    def test_output_product_cannot_be_its_own_component(self, db_session, bread_bom, bread):
        assert bom_service.validate_circular_dependency(bread_bom.id, bread.id) is False

    def test_unrelated_component_is_allowed(self, db_session, bread_bom, make_product):
        salt = make_product("Salt")
        assert bom_service.validate_circular_dependency(bread_bom.id, salt.id) is True

    def test_unknown_bom_is_safe(self, db_session, flour):
        assert bom_service.validate_circular_dependency(999999, flour.id) is True

    def test_indirect_cycle_is_detected(self, db_session, make_product):
        """Bread <- Dough <- Flour; Flour may not be made from Bread."""
        flour, dough, bread = make_product("Flour"), make_product("Dough"), make_product("Bread")
        _bom(dough, flour)
        _bom(bread, dough)
        flour_bom = _bom(flour)

        assert bom_service.validate_circular_dependency(flour_bom.id, bread.id) is False
        assert bom_service.validate_circular_dependency(flour_bom.id, dough.id) is False

    def test_add_item_raises_on_cycle_and_adds_nothing(self, db_session, make_product):
        a, b = make_product("Alpha"), make_product("Beta")
        _bom(b, a)
        bom_a = _bom(a)

        with pytest.raises(CircularDependencyError) as exc_info:
            bom_service.add_bom_item(bom_a.id, component_product_id=b.id, quantity="1", author_id=AUTHOR_ID)
        db_session.rollback()

        assert exc_info.value.bom_id == bom_a.id
        assert exc_info.value.product_id == b.id
        assert db_session.query(BomItem).filter_by(bom_id=bom_a.id).count() == 0

    def test_diamond_is_not_a_cycle(self, db_session, make_product):
        """A needs B and C, both need D. D is reachable twice but never requires A."""
        a, b, c, d = (make_product(n) for n in ("Apex", "Left", "Right", "Base"))
        _bom(b, d)
        _bom(c, d)
        bom_a = _bom(a, b, c)

        assert bom_service.validate_circular_dependency(bom_a.id, d.id) is True

        bom_d = _bom(d)
        assert bom_service.validate_circular_dependency(bom_d.id, a.id) is False

    def test_cycle_reached_through_second_path(self, db_session, make_product):
        """The walk must not stop at a product it already saw on another branch."""
        a, b, c, d, target = (make_product(n) for n in ("Root", "First", "Second", "Shared", "Goal"))
        _bom(a, b, c)
        _bom(b, d)
        _bom(c, d)
        _bom(d, target)
        target_bom = _bom(target)

        assert bom_service.validate_circular_dependency(target_bom.id, a.id) is False

    def test_existing_cycle_in_data_terminates(self, db_session, make_product):
        p, q, r = make_product("Pea"), make_product("Queue"), make_product("Arr")
        _raw_bom(p, q)
        _raw_bom(q, p)
        bom_r = _bom(r)

        assert bom_service.validate_circular_dependency(bom_r.id, p.id) is True

    def test_find_cycles_reports_legacy_cycles(self, db_session, make_product):
        p, q = make_product("Pea"), make_product("Queue")
        bom_p = _raw_bom(p, q)
        bom_q = _raw_bom(q, p)

        cycles = bom_service.find_cycles()

        assert {c["bom_id"] for c in cycles} == {bom_p.id, bom_q.id}

    def test_find_cycles_empty_for_valid_graph(self, db_session, bread_bom):
        assert bom_service.find_cycles() == []

    def test_soft_deleted_bom_leaves_graph(self, db_session, make_product):
        a, b = make_product("Alpha"), make_product("Beta")
        bom_b = _bom(b, a)
        bom_a = _bom(a)
        assert bom_service.validate_circular_dependency(bom_a.id, b.id) is False

        bom_service.soft_delete_bom(bom_b.id)
        db_session.commit()

        assert bom_service.validate_circular_dependency(bom_a.id, b.id) is True

    def test_inactive_bom_stays_in_graph(self, db_session, make_product):
        a, b = make_product("Alpha"), make_product("Beta")
        bom_b = _bom(b, a)
        bom_a = _bom(a)
        bom_service.update_bom(bom_b.id, author_id=AUTHOR_ID, is_active=False)
        db_session.commit()

        assert bom_service.validate_circular_dependency(bom_a.id, b.id) is False

    def test_changing_output_rechecks_items(self, db_session, bread_bom, flour):
        with pytest.raises(CircularDependencyError):
            bom_service.update_bom(bread_bom.id, author_id=AUTHOR_ID, output_product_id=flour.id)

    def test_update_item_component_is_validated(self, db_session, bread_bom, bread):
        item = bread_bom.items[0]
        with pytest.raises(CircularDependencyError):
            bom_service.update_bom_item(item.id, author_id=AUTHOR_ID, component_product_id=bread.id)

    def test_string_ids_are_compared_as_integers(self, db_session, bread_bom, bread):
        assert bom_service.validate_circular_dependency(bread_bom.id, str(bread.id)) is False
        with pytest.raises(CircularDependencyError):
            bom_service.update_bom_item(bread_bom.items[0].id, author_id=AUTHOR_ID, component_product_id=str(bread.id))
        with pytest.raises(ValidationError):
            bom_service.validate_circular_dependency(bread_bom.id, "²")


class TestCostEstimation:

    def test_estimated_cost_sums_items_at_current_cogs(self, db_session, stocked_bakery):
        assert bom_service.calculate_estimated_cost(stocked_bakery) == Decimal("5.00")
        assert bom_service.calculate_unit_cost(stocked_bakery) == Decimal("0.5000")

    def test_cost_follows_price_drift(self, db_session, stocked_bakery, flour, kg):
        before = bom_service.calculate_estimated_cost(stocked_bakery)

        set_cogs(flour.id, kg.id, Decimal("3.00"))
        db_session.commit()

        assert before == Decimal("5.00")
        assert bom_service.calculate_estimated_cost(stocked_bakery) == Decimal("8.00")

    def test_missing_cogs_counts_as_zero(self, db_session, bread_bom):
        assert bom_service.calculate_estimated_cost(bread_bom) == Decimal("0")

    def test_waste_percent_does_not_change_cost(self, db_session, stocked_bakery):
        item = stocked_bakery.items[0]
        bom_service.update_bom_item(item.id, author_id=AUTHOR_ID, waste_percent="25")
        db_session.commit()

        assert bom_service.calculate_estimated_cost(stocked_bakery) == Decimal("5.00")

    def test_explode_scales_by_runs(self, db_session, bread_bom):
        requirements = bom_service.explode_bom(bread_bom, Decimal("3"))

        by_name = {r.product_name: r for r in requirements}
        assert by_name["Flour"].required == Decimal("6")
        assert by_name["Yeast"].required == Decimal("1.5")
        assert by_name["Yeast"].unit_name == "Kilogram"


class TestBomCrud:

    def test_create_requires_existing_product(self, db_session):
        with pytest.raises(ValidationError):
            bom_service.create_bom(name="Ghost", output_product_id=424242, author_id=AUTHOR_ID)

    def test_create_rejects_non_positive_output_quantity(self, db_session, bread):
        with pytest.raises(ValidationError):
            bom_service.create_bom(name="Bread", output_product_id=bread.id, output_quantity="0", author_id=AUTHOR_ID)

    def test_create_requires_name(self, db_session, bread):
        with pytest.raises(ValidationError):
            bom_service.create_bom(name="  ", output_product_id=bread.id, author_id=AUTHOR_ID)

    def test_item_percent_defaults(self, db_session, bread_bom):
        item = bread_bom.items[0]
        assert item.waste_percent == Decimal("0")
        assert item.cost_allocation_percent == Decimal("100")

    @pytest.mark.parametrize("quantity", ["0", "-1", "abc", True])
    def test_item_quantity_must_be_positive_number(self, db_session, bread_bom, make_product, quantity):
        salt = make_product("Salt")
        with pytest.raises(ValidationError):
            bom_service.add_bom_item(bread_bom.id, component_product_id=salt.id, quantity=quantity, author_id=AUTHOR_ID)

    def test_waste_percent_capped_at_100(self, db_session, bread_bom, make_product):
        salt = make_product("Salt")
        with pytest.raises(ValidationError):
            bom_service.add_bom_item(
                bread_bom.id, component_product_id=salt.id, quantity="1", waste_percent="150", author_id=AUTHOR_ID,
            )

    def test_update_rejects_unknown_fields(self, db_session, bread_bom):
        with pytest.raises(ValidationError):
            bom_service.update_bom(bread_bom.id, author_id=AUTHOR_ID, colour="brown")

    def test_remove_item(self, db_session, bread_bom):
        item_id = bread_bom.items[0].id
        bom_service.remove_bom_item(item_id)
        db_session.commit()

        assert db_session.get(BomItem, item_id) is None
        assert len(bread_bom.items) == 1

    def test_soft_deleted_bom_is_not_found(self, db_session, bread_bom):
        bom_service.soft_delete_bom(bread_bom.id)
        db_session.commit()

        with pytest.raises(BomNotFoundError):
            bom_service.get_bom(bread_bom.id)
        assert bom_service.get_bom(bread_bom.id, include_deleted=True).is_active is False

    def test_hard_delete_cascades_items(self, db_session, bread_bom):
        bom_id = bread_bom.id
        bom_service.delete_bom(bom_id)
        db_session.commit()

        assert db_session.get(BillOfMaterials, bom_id) is None
        assert db_session.query(BomItem).filter_by(bom_id=bom_id).count() == 0

    def test_hard_delete_refused_when_orders_reference_bom(self, db_session, bread_bom, bread):
        db_session.add(ProductionOrder(
            code="MO-TEST-1", bom_id=bread_bom.id, output_product_id=bread.id,
            quantity=Decimal("1"), author_id=AUTHOR_ID,
        ))
        db_session.commit()

        with pytest.raises(BomError):
            bom_service.delete_bom(bread_bom.id)
