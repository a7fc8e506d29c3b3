# Overview: Pytest coverage for the manufacturing and orders CLI groups.

from decimal import Decimal

from manufacturing.models import BillOfMaterials, BomItem, OrderStatus, Product, ProductionOrder

from conftest import AUTHOR_ID


def _seed(runner):
    result = runner.invoke(args=["manufacturing", "seed-demo"])
    assert result.exit_code == 0, result.output
    return result


class TestManufacturingCommands:

    def test_seed_demo_is_idempotent(self, runner, db_session):
        _seed(runner)
        second = _seed(runner)

        assert "already exists" in second.output
        assert db_session.query(Product).count() == 3
        assert db_session.query(BillOfMaterials).count() == 1
        bom = db_session.query(BillOfMaterials).one()
        assert bom.output_quantity == Decimal("10")
        assert len(bom.items) == 2

    def test_check_cycles_clean(self, runner, db_session):
        _seed(runner)
        result = runner.invoke(args=["manufacturing", "check-cycles"])

        assert result.exit_code == 0
        assert "No circular BOM dependencies" in result.output

    def test_check_cycles_reports_legacy_cycle(self, runner, db_session):
        _seed(runner)
        bom = db_session.query(BillOfMaterials).one()
        flour = db_session.query(Product).filter_by(sku="FLOUR").one()
        bread = db_session.query(Product).filter_by(sku="BREAD").one()
        flour_bom = BillOfMaterials(name="Flour from bread", output_product_id=flour.id, author_id=AUTHOR_ID)
        db_session.add(flour_bom)
        db_session.flush()
        db_session.add(BomItem(
            bom_id=flour_bom.id, component_product_id=bread.id, quantity=Decimal("1"), author_id=AUTHOR_ID,
        ))
        db_session.commit()

        result = runner.invoke(args=["manufacturing", "check-cycles"])

        assert result.exit_code == 1
        assert f"BOM {bom.id}" in result.output
        assert f"BOM {flour_bom.id}" in result.output

    def test_cost(self, runner, db_session):
        _seed(runner)
        bom = db_session.query(BillOfMaterials).one()

        result = runner.invoke(args=["manufacturing", "cost", str(bom.id)])

        assert result.exit_code == 0
        assert "Unit cost:          0.5000" in result.output


class TestOrderCommands:

    def test_create_start_complete(self, runner, db_session):
        _seed(runner)
        bom = db_session.query(BillOfMaterials).one()

        result = runner.invoke(args=[
            "orders", "create", "--bom-id", str(bom.id), "--quantity", "1",
            "--code", "MO-CLI-1", "--author-id", str(AUTHOR_ID),
        ])
        assert result.exit_code == 0, result.output
        order = db_session.query(ProductionOrder).filter_by(code="MO-CLI-1").one()

        result = runner.invoke(args=["orders", "start", str(order.id), "--author-id", str(AUTHOR_ID)])
        assert result.exit_code == 0, result.output
        assert "MO-CLI-1 is now in_progress" in result.output

        result = runner.invoke(args=["orders", "complete", str(order.id), "--author-id", str(AUTHOR_ID)])
        assert result.exit_code == 0, result.output
        assert db_session.get(ProductionOrder, order.id).status == OrderStatus.COMPLETED

        result = runner.invoke(args=["orders", "list", "--status", "completed"])
        assert "MO-CLI-1" in result.output

    def test_invalid_transition_fails(self, runner, db_session):
        _seed(runner)
        bom = db_session.query(BillOfMaterials).one()
        runner.invoke(args=[
            "orders", "create", "--bom-id", str(bom.id), "--quantity", "1",
            "--code", "MO-CLI-2", "--author-id", str(AUTHOR_ID),
        ])
        order = db_session.query(ProductionOrder).filter_by(code="MO-CLI-2").one()
        runner.invoke(args=["orders", "cancel", str(order.id), "--author-id", str(AUTHOR_ID)])

        result = runner.invoke(args=["orders", "start", str(order.id), "--author-id", str(AUTHOR_ID)])

        assert result.exit_code != 0
        assert "cancelled" in result.output

    def test_shortfall_exits_with_error(self, runner, db_session):
        _seed(runner)
        bom = db_session.query(BillOfMaterials).one()
        runner.invoke(args=[
            "orders", "create", "--bom-id", str(bom.id), "--quantity", "50",
            "--code", "MO-CLI-3", "--author-id", str(AUTHOR_ID),
        ])
        order = db_session.query(ProductionOrder).filter_by(code="MO-CLI-3").one()

        result = runner.invoke(args=["orders", "start", str(order.id), "--author-id", str(AUTHOR_ID)])

        assert result.exit_code == 1
        assert "Insufficient stock" in result.output
