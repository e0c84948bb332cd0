"""
Cart service.

Every operation takes an *owner*: the authenticated user's id, or ``None`` for
the shared guest cart. Guest and user routes go through the same functions.
Writes are read-modify-write on the whole ``items`` array; concurrent writers
to the same cart are last-write-wins.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import database
from errors import NotFoundError
from schemas import Cart

logger = logging.getLogger(__name__)

GUEST = None


def owner_of(user: Optional[dict]) -> Optional[str]:
    return str(user["_id"]) if user else GUEST


def _find(owner: Optional[str]) -> Optional[dict]:
    return database.collection("cart").find_one({"user_id": owner})


def _save_items(cart: dict, items: List[Dict[str, Any]]) -> None:
    database.collection("cart").update_one(
        {"_id": cart["_id"]},
        {"$set": {"items": items, "updated_at": datetime.now(timezone.utc)}},
    )


def _merge_line(items: List[Dict[str, Any]], product_id: str, quantity: int) -> None:
    for it in items:
        if it["product_id"] == product_id:
            it["quantity"] += quantity
            return
    items.append({"product_id": product_id, "quantity": quantity})


def add_item(owner: Optional[str], product_id: str, quantity: int) -> dict:
    product_id = database.object_id_str(product_id, "product ID")
    if not database.collection("product").find_one({"_id": database.parse_object_id(product_id)}):
        raise NotFoundError("Product not found")
    cart = _find(owner)
    if not cart:
        cart_doc = Cart(user_id=owner, items=[{"product_id": product_id, "quantity": quantity}])
        database.create_document("cart", cart_doc)
    else:
        items = cart.get("items", [])
        _merge_line(items, product_id, quantity)
        _save_items(cart, items)
    return _find(owner)


def get_cart(owner: Optional[str]) -> dict:
    """Return the owner's lines joined with product name and price."""
    cart = _find(owner)
    if not cart:
        return {"id": None, "user_id": owner, "items": [], "total": 0.0}
    items = []
    total = 0.0
    for it in cart.get("items", []):
        pid = it["product_id"]
        prod = database.collection("product").find_one({"_id": database.parse_object_id(pid, "product ID")})
        if not prod:
            continue
        price = float(prod.get("price", 0))
        qty = int(it.get("quantity", 1))
        subtotal = price * qty
        total += subtotal
        items.append({
            "product": pid,
            "name": prod.get("name"),
            "price": price,
            "image": prod.get("image"),
            "quantity": qty,
            "subtotal": subtotal,
        })
    return {"id": str(cart["_id"]), "user_id": owner, "items": items, "total": total}


def _require_cart(owner: Optional[str]) -> dict:
    cart = _find(owner)
    if not cart:
        raise NotFoundError("Cart not found")
    return cart


def update_item(owner: Optional[str], product_id: str, quantity: int) -> dict:
    product_id = database.object_id_str(product_id, "product ID")
    cart = _require_cart(owner)
    items = cart.get("items", [])
    for it in items:
        if it["product_id"] == product_id:
            it["quantity"] = quantity
            break
    else:
        raise NotFoundError("Product not found in cart")
    _save_items(cart, items)
    return _find(owner)


def remove_item(owner: Optional[str], product_id: str) -> dict:
    product_id = database.object_id_str(product_id, "product ID")
    cart = _require_cart(owner)
    items = cart.get("items", [])
    remaining = [it for it in items if it["product_id"] != product_id]
    if len(remaining) == len(items):
        raise NotFoundError("Product not found in cart")
    _save_items(cart, remaining)
    return _find(owner)


def clear_cart(owner: Optional[str]) -> dict:
    cart = _require_cart(owner)
    _save_items(cart, [])
    return _find(owner)


def hand_over_guest_cart(user_id: str) -> Optional[dict]:
    """Give the guest cart to ``user_id`` at login.

    A user without a cart takes the guest cart over. A user who already has
    one gets the guest lines summed into it and the guest cart is removed.
    Either way no guest cart is left behind.
    """
    carts = database.collection("cart")
    guest = _find(GUEST)
    if not guest:
        return None
    mine = _find(user_id)
    if not mine:
        carts.update_one(
            {"_id": guest["_id"]},
            {"$set": {"user_id": user_id, "updated_at": datetime.now(timezone.utc)}},
        )
        logger.info("Guest cart %s reassigned to user %s", guest["_id"], user_id)
        return _find(user_id)
    items = mine.get("items", [])
    for it in guest.get("items", []):
        _merge_line(items, it["product_id"], int(it["quantity"]))
    _save_items(mine, items)
    carts.delete_one({"_id": guest["_id"]})
    logger.info("Guest cart %s merged into cart %s of user %s", guest["_id"], mine["_id"], user_id)
    return _find(user_id)
