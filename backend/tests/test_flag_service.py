# Overview: Pytest coverage for manufacturing role flags on product unit balances.

import pytest

from manufacturing.services import bom_service, flag_service
from manufacturing.services.flag_service import BalanceNotFoundError
from manufacturing.validation import ConflictError, ValidationError

from conftest import AUTHOR_ID, actor_headers


class TestSetFlags:

    def test_set_and_list_by_role(self, db_session, set_stock, flour, bread, kg, pc):
        flour_kg = set_stock(flour, kg, "20")
        bread_pc = set_stock(bread, pc, "0")

        flag_service.set_flags(flour_kg.id, is_manufactured=False, is_raw_material=True)
        flag_service.set_flags(bread_pc.id, is_manufactured=True, is_raw_material=False)
        db_session.commit()

        assert [b.id for b in flag_service.raw_material_units()] == [flour_kg.id]
        assert [b.id for b in flag_service.production_units()] == [bread_pc.id]
        assert [b.id for b in flag_service.component_units()] == [flour_kg.id, bread_pc.id]
        assert flag_service.can_be_used_for_production(bread_pc.id) is True
        assert flag_service.can_be_used_for_production(flour_kg.id) is False
        assert flag_service.can_be_used_as_component(flour_kg.id) is True

    def test_at_least_one_flag_required(self, db_session, set_stock, flour, kg):
        balance = set_stock(flour, kg, "1")
        with pytest.raises(ValidationError):
            flag_service.set_flags(balance.id, is_manufactured=False, is_raw_material=False)

    def test_unknown_balance(self, db_session):
        with pytest.raises(BalanceNotFoundError):
            flag_service.set_flags(424242, is_manufactured=True, is_raw_material=False)

    def test_unflagged_balance_is_not_a_component(self, db_session, set_stock, flour, kg):
        balance = set_stock(flour, kg, "1")
        assert flag_service.can_be_used_as_component(balance.id) is False
        assert flag_service.can_be_used_as_component(424242) is False


class TestActiveBomGuard:

    def test_flags_locked_while_active_bom_uses_unit(self, db_session, bread_bom, set_stock, flour, kg):
        balance = set_stock(flour, kg, "20")

        with pytest.raises(ConflictError):
            flag_service.set_flags(balance.id, is_manufactured=False, is_raw_material=True)
        with pytest.raises(ConflictError):
            flag_service.clear_flags(balance.id)

    def test_other_unit_of_same_product_is_free(self, db_session, bread_bom, set_stock, flour, pc):
        balance = set_stock(flour, pc, "3")
        flag_service.set_flags(balance.id, is_manufactured=False, is_raw_material=True)
        assert balance.is_raw_material is True

    def test_inactive_bom_releases_the_lock(self, db_session, bread_bom, set_stock, flour, kg):
        balance = set_stock(flour, kg, "20")
        bom_service.update_bom(bread_bom.id, author_id=AUTHOR_ID, is_active=False)
        db_session.commit()

        flag_service.set_flags(balance.id, is_manufactured=True, is_raw_material=True)
        flag_service.clear_flags(balance.id)

        assert balance.is_manufactured is False
        assert balance.is_raw_material is False

    def test_bulk_is_all_or_nothing(self, db_session, bread_bom, set_stock, flour, bread, kg, pc):
        free = set_stock(bread, pc, "0")
        locked = set_stock(flour, kg, "20")

        with pytest.raises(ConflictError):
            flag_service.bulk_set_flags([free.id, locked.id], is_manufactured=True, is_raw_material=False)
        db_session.rollback()

        assert flag_service.production_units() == []
        assert flag_service.bulk_set_flags([free.id], is_manufactured=True, is_raw_material=False) == 1


class TestFlagRoutes:

    def test_set_and_list(self, client, db_session, set_stock, bread, pc):
        balance = set_stock(bread, pc, "0")

        response = client.put(
            f"/api/manufacturing/product-units/{balance.id}/flags",
            json={"is_manufactured": True},
            headers=actor_headers(),
        )
        assert response.status_code == 200
        assert response.get_json()["product_unit"]["is_manufactured"] is True

        response = client.get("/api/manufacturing/product-units?role=production", headers=actor_headers())
        assert [row["id"] for row in response.get_json()["data"]] == [balance.id]

    def test_in_use_conflicts(self, client, db_session, bread_bom, set_stock, flour, kg):
        balance = set_stock(flour, kg, "20")
        response = client.delete(f"/api/manufacturing/product-units/{balance.id}/flags", headers=actor_headers())
        assert response.status_code == 409

    def test_non_boolean_flag_is_bad_request(self, client, db_session, set_stock, bread, pc):
        balance = set_stock(bread, pc, "0")
        response = client.put(
            f"/api/manufacturing/product-units/{balance.id}/flags",
            json={"is_manufactured": "yes"},
            headers=actor_headers(),
        )
        assert response.status_code == 400

    def test_unknown_role_and_balance(self, client, db_session):
        assert client.get("/api/manufacturing/product-units?role=x", headers=actor_headers()).status_code == 400
        response = client.put(
            "/api/manufacturing/product-units/424242/flags", json={"is_manufactured": True}, headers=actor_headers(),
        )
        assert response.status_code == 404

    def test_bulk(self, client, db_session, set_stock, flour, yeast, kg):
        ids = [set_stock(flour, kg, "1").id, set_stock(yeast, kg, "1").id]
        response = client.put(
            "/api/manufacturing/product-units/flags",
            json={"ids": ids, "is_raw_material": True},
            headers=actor_headers(),
        )
        assert response.status_code == 200
        assert response.get_json()["updated"] == 2
