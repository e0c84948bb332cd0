"""
Cart service and routes: guest and user carts, line merging, quantity
updates, removal, clearing and the guest-cart hand-over at login.
"""

from bson import ObjectId

import carts


# ============================================================================
# Adding items
# ============================================================================

class TestAddItem:

    def test_first_add_creates_single_line(self, client, product):
        resp = client.post("/add_cart_guest", json={"product": product["id"], "quantity": 2})
        assert resp.status_code == 200
        cart = resp.json()["cart"]
        assert len(cart["items"]) == 1
        assert cart["items"][0]["product"] == product["id"]
        assert cart["items"][0]["quantity"] == 2

    def test_same_product_sums_quantities(self, client, product):
        client.post("/add_cart_guest", json={"product": product["id"], "quantity": 2})
        client.post("/add_cart_guest", json={"product": product["id"], "quantity": 3})

        cart = client.get("/cart_guest").json()["cart"]
        assert len(cart["items"]) == 1
        assert cart["items"][0]["product"] == product["id"]
        assert cart["items"][0]["quantity"] == 5

    def test_id_letter_case_does_not_split_lines(self, client, product):
        client.post("/add_cart_guest", json={"product": product["id"].upper(), "quantity": 2})
        client.post("/add_cart_guest", json={"product": product["id"].lower(), "quantity": 3})

        cart = client.get("/cart_guest").json()["cart"]
        assert len(cart["items"]) == 1
        assert cart["items"][0]["product"] == product["id"]
        assert cart["items"][0]["quantity"] == 5

    def test_distinct_products_append(self, client, make_product):
        first = make_product("Dune", price=10)
        second = make_product("Emma", price=4)
        client.post("/add_cart_guest", json={"product": first["id"], "quantity": 1})
        client.post("/add_cart_guest", json={"product": second["id"], "quantity": 2})

        cart = client.get("/cart_guest").json()["cart"]
        assert [i["product"] for i in cart["items"]] == [first["id"], second["id"]]
        assert cart["total"] == 18

    def test_joined_with_product_details(self, client, product):
        client.post("/add_cart_guest", json={"product": product["id"], "quantity": 2})
        line = client.get("/cart_guest").json()["cart"]["items"][0]
        assert line["name"] == "Dune"
        assert line["price"] == 12.5
        assert line["subtotal"] == 25

    def test_unknown_product_is_not_found(self, client, db):
        resp = client.post("/add_cart_guest", json={"product": str(ObjectId()), "quantity": 1})
        assert resp.status_code == 404
        assert db["cart"].count_documents({}) == 0

    def test_invalid_product_id_is_validation_error(self, client):
        resp = client.post("/add_cart_guest", json={"product": "P1", "quantity": 1})
        assert resp.status_code == 400
        assert resp.json()["errors"][0]["field"] == "product"

    def test_non_positive_quantity_rejected(self, client, product):
        resp = client.post("/add_cart_guest", json={"product": product["id"], "quantity": 0})
        assert resp.status_code == 400

    def test_user_cart_is_separate_from_guest_cart(self, client, user, product):
        _, headers = user
        client.post("/add_cart_auth", json={"product": product["id"], "quantity": 4}, headers=headers)

        assert client.get("/cart_guest").json()["cart"]["items"] == []
        mine = client.get("/cart_user", headers=headers).json()["cart"]
        assert mine["items"][0]["quantity"] == 4

    def test_auth_routes_require_token(self, client, product):
        resp = client.post("/add_cart_auth", json={"product": product["id"], "quantity": 1})
        assert resp.status_code == 401
        assert client.get("/cart_user").status_code == 401


# ============================================================================
# Updating, removing, clearing
# ============================================================================

class TestChangeItems:

    def test_update_sets_quantity(self, client, product):
        client.post("/add_cart_guest", json={"product": product["id"], "quantity": 2})
        resp = client.put(f"/cart/update_guest/{product['id']}", json={"quantity": 7})
        assert resp.status_code == 200
        assert resp.json()["cart"]["items"][0]["quantity"] == 7

    def test_update_and_remove_ignore_id_letter_case(self, client, product):
        client.post("/add_cart_guest", json={"product": product["id"], "quantity": 2})

        resp = client.put(f"/cart/update_guest/{product['id'].upper()}", json={"quantity": 4})
        assert resp.status_code == 200
        assert resp.json()["cart"]["items"][0]["quantity"] == 4

        resp = client.delete(f"/cart/remove_guest/{product['id'].upper()}")
        assert resp.status_code == 200
        assert resp.json()["cart"]["items"] == []

    def test_update_absent_product_is_not_found(self, client, make_product):
        in_cart = make_product("Dune")
        absent = make_product("Emma")
        client.post("/add_cart_guest", json={"product": in_cart["id"], "quantity": 1})

        resp = client.put(f"/cart/update_guest/{absent['id']}", json={"quantity": 3})
        assert resp.status_code == 404
        assert resp.json()["message"] == "Product not found in cart"

    def test_update_without_cart_is_not_found(self, client, user, product):
        _, headers = user
        resp = client.put(f"/cart/update_auth/{product['id']}", json={"quantity": 3}, headers=headers)
        assert resp.status_code == 404

    def test_remove_item(self, client, user, make_product):
        _, headers = user
        keep = make_product("Dune")
        drop = make_product("Emma")
        client.post("/add_cart_auth", json={"product": keep["id"], "quantity": 1}, headers=headers)
        client.post("/add_cart_auth", json={"product": drop["id"], "quantity": 1}, headers=headers)

        resp = client.delete(f"/cart/remove_auth/{drop['id']}", headers=headers)
        assert resp.status_code == 200
        assert [i["product"] for i in resp.json()["cart"]["items"]] == [keep["id"]]

    def test_remove_absent_item_is_not_found(self, client, product):
        client.post("/add_cart_guest", json={"product": product["id"], "quantity": 1})
        resp = client.delete(f"/cart/remove_guest/{ObjectId()}")
        assert resp.status_code == 404

    def test_clear_guest_cart(self, client, product):
        client.post("/add_cart_guest", json={"product": product["id"], "quantity": 1})
        resp = client.delete("/clear_cart")
        assert resp.status_code == 200
        assert resp.json()["cart"]["items"] == []

    def test_clear_user_cart_leaves_guest_cart(self, client, user, product):
        _, headers = user
        client.post("/add_cart_auth", json={"product": product["id"], "quantity": 1}, headers=headers)
        client.post("/add_cart_guest", json={"product": product["id"], "quantity": 2})

        client.delete("/clear_cart", headers=headers)
        assert client.get("/cart_user", headers=headers).json()["cart"]["items"] == []
        assert client.get("/cart_guest").json()["cart"]["items"][0]["quantity"] == 2

    def test_deleted_product_dropped_from_view(self, client, user, product):
        _, headers = user
        client.post("/add_cart_guest", json={"product": product["id"], "quantity": 1})
        client.delete(f"/delete_product/{product['id']}", headers=headers)
        assert client.get("/cart_guest").json()["cart"]["items"] == []


# ============================================================================
# Guest cart hand-over at login
# ============================================================================

class TestGuestHandOver:

    def test_login_reassigns_guest_cart(self, client, db, make_user, product):
        client.post("/add_cart_guest", json={"product": product["id"], "quantity": 2})
        guest_id = db["cart"].find_one({"user_id": None})["_id"]

        user_id, headers = make_user(email="new@example.com")

        assert db["cart"].find_one({"user_id": None}) is None
        assert db["cart"].find_one({"_id": guest_id})["user_id"] == user_id
        assert client.get("/cart_guest").json()["cart"]["items"] == []
        mine = client.get("/cart_user", headers=headers).json()["cart"]
        assert mine["items"][0]["quantity"] == 2

    def test_login_merges_into_existing_user_cart(self, client, db, user, make_product):
        user_id, headers = user
        dune = make_product("Dune")
        emma = make_product("Emma")
        client.post("/add_cart_auth", json={"product": dune["id"], "quantity": 1}, headers=headers)
        client.post("/add_cart_guest", json={"product": dune["id"], "quantity": 2})
        client.post("/add_cart_guest", json={"product": emma["id"], "quantity": 3})

        resp = client.post("/login", json={"email": "ada@example.com", "password": "secret"})
        assert resp.status_code == 200

        assert db["cart"].count_documents({}) == 1
        items = {i["product_id"]: i["quantity"] for i in db["cart"].find_one({"user_id": user_id})["items"]}
        assert items == {dune["id"]: 3, emma["id"]: 3}

    def test_no_guest_cart_is_noop(self, db):
        assert carts.hand_over_guest_cart(str(ObjectId())) is None
        assert db["cart"].count_documents({}) == 0


class TestOwnerResolution:

    def test_guest_owner(self):
        assert carts.owner_of(None) is carts.GUEST

    def test_user_owner(self):
        oid = ObjectId()
        assert carts.owner_of({"_id": oid}) == str(oid)
