"""Shop registry: creation, visibility, archival and staff membership."""

import pytest

from brewops.extensions import db
from brewops.errors import Conflict, Forbidden, NotFound, ShopNotFound, ValidationError
from brewops.models import ActivityLog
from brewops.services import shop_service

SHOP_PAYLOAD = {
    "name": "Daily Grind",
    "description": "Specialty coffee and pastries",
    "city": "Porto",
    "address": "Rua das Flores 40",
}


class TestCreateShop:

    def test_owner_is_listed_as_staff(self, db_session, owner):
        shop = shop_service.create_shop(owner, SHOP_PAYLOAD)
        assert shop.owner_id == owner.id
        assert shop.status == "open"
        assert [(m.user_id, m.role) for m in shop.staff] == [(owner.id, "owner")]

    def test_required_fields(self, db_session, owner):
        with pytest.raises(ValidationError) as exc:
            shop_service.create_shop(owner, {"name": "No"})
        fields = {err["field"] for err in exc.value.errors}
        assert {"name", "description", "city", "address"} <= fields

    def test_create_is_audited(self, db_session, owner):
        shop = shop_service.create_shop(owner, SHOP_PAYLOAD)
        entry = db.session.query(ActivityLog).filter_by(action="create_shop").one()
        assert entry.entity_type == "shop"
        assert entry.entity_id == shop.id


class TestVisibility:

    def test_users_never_see_archived(self, db_session, owner, customer, make_shop):
        live = make_shop(owner, name="Live Shop")
        make_shop(owner, name="Gone Shop", archived=True)

        result = shop_service.list_shops(customer, {"include_archived": "true"})
        assert [shop.id for shop in result["items"]] == [live.id]

    def test_admin_can_include_archived(self, db_session, owner, admin, make_shop):
        make_shop(owner, name="Live Shop")
        gone = make_shop(owner, name="Gone Shop", archived=True)

        assert shop_service.list_shops(admin, {})["total"] == 1
        assert shop_service.list_shops(admin, {"include_archived": "true"})["total"] == 2
        only_archived = shop_service.list_shops(admin, {"archived": "true"})
        assert [shop.id for shop in only_archived["items"]] == [gone.id]

    def test_get_archived_is_404_for_users(self, db_session, owner, customer, make_shop):
        gone = make_shop(owner, name="Gone Shop", archived=True)
        with pytest.raises(ShopNotFound):
            shop_service.get_shop(customer, gone.id)

    def test_get_closed_is_403_for_outsiders(self, db_session, owner, customer, make_shop):
        closed = make_shop(owner, name="Night Owl", status="closed")
        with pytest.raises(Forbidden):
            shop_service.get_shop(customer, closed.id)
        assert shop_service.get_shop(owner, closed.id).id == closed.id


class TestUpdateAndArchive:

    def test_owner_updates(self, db_session, owner, shop):
        updated = shop_service.update_shop(owner, shop.id, {"status": "maintenance"})
        assert updated.status == "maintenance"

    def test_outsider_cannot_update(self, db_session, customer, shop):
        with pytest.raises(Forbidden):
            shop_service.update_shop(customer, shop.id, {"status": "closed"})

    def test_only_admin_changes_archived(self, db_session, owner, shop):
        with pytest.raises(Forbidden):
            shop_service.update_shop(owner, shop.id, {"archived": True})

    def test_archive_twice_conflicts(self, db_session, admin, shop):
        shop_service.archive_shop(admin, shop.id)
        with pytest.raises(Conflict):
            shop_service.archive_shop(admin, shop.id)

    def test_archive_is_admin_only(self, db_session, owner, shop):
        with pytest.raises(Forbidden):
            shop_service.archive_shop(owner, shop.id)


class TestStaff:

    def test_add_and_remove_staff(self, db_session, owner, customer, shop):
        shop = shop_service.add_staff(owner, shop.id, {"user_id": customer.id, "role": "cashier"})
        assert customer.id in shop.staff_user_ids()

        shop = shop_service.remove_staff(owner, shop.id, customer.id)
        assert customer.id not in shop.staff_user_ids()

    def test_duplicate_staff_conflicts(self, db_session, owner, customer, shop):
        shop_service.add_staff(owner, shop.id, {"user_id": customer.id})
        with pytest.raises(Conflict):
            shop_service.add_staff(owner, shop.id, {"user_id": customer.id})

    def test_unknown_user(self, db_session, owner, shop):
        with pytest.raises(NotFound):
            shop_service.add_staff(owner, shop.id, {"user_id": 9999})

    def test_owner_cannot_be_removed(self, db_session, owner, admin, shop):
        with pytest.raises(ValidationError):
            shop_service.remove_staff(admin, shop.id, owner.id)

    def test_staff_cannot_manage_staff(self, db_session, owner, customer, make_user, shop):
        shop_service.add_staff(owner, shop.id, {"user_id": customer.id})
        with pytest.raises(Forbidden):
            shop_service.add_staff(customer, shop.id, {"user_id": make_user("friend").id})


class TestShopRoutes:

    def test_create_and_fetch(self, client, owner, auth_headers):
        headers = auth_headers(owner)
        resp = client.post("/api/v1/shops", json=SHOP_PAYLOAD, headers=headers)
        assert resp.status_code == 201
        shop_id = resp.get_json()["id"]

        resp = client.get(f"/api/v1/shops/{shop_id}", headers=headers)
        assert resp.status_code == 200
        assert resp.get_json()["staff"][0]["role"] == "owner"

    def test_archive_route(self, client, admin, shop, auth_headers):
        headers = auth_headers(admin)
        assert client.delete(f"/api/v1/shops/{shop.id}", headers=headers).status_code == 200
        assert client.delete(f"/api/v1/shops/{shop.id}", headers=headers).status_code == 409
