"""
Order service.

Totals are stored exactly as submitted. Status is a plain field; any of the
OrderStatus values can be written through ``update_order``.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

import database
from errors import NotFoundError
from schemas import Order as OrderSchema

logger = logging.getLogger(__name__)


def create_order(user: dict, items: List[Dict[str, Any]], total_amount: float, status: str) -> dict:
    user_id = str(user["_id"])
    order = OrderSchema(user_id=user_id, items=items, total_amount=total_amount, status=status)
    order_id = database.create_document("order", order)
    database.collection("user").update_one({"_id": user["_id"]}, {"$push": {"orders": order_id}})
    logger.info("Order %s created for user %s", order_id, user_id)
    return get_order(order_id)


def list_orders() -> List[dict]:
    return database.get_documents("order", {})


def get_order(order_id: str) -> dict:
    order = database.collection("order").find_one({"_id": database.parse_object_id(order_id, "Order ID")})
    if not order:
        raise NotFoundError("Order not found")
    return order


def update_order(order_id: str, changes: Dict[str, Any]) -> dict:
    """Write only the keys present in ``changes``."""
    oid = database.parse_object_id(order_id, "Order ID")
    updates = dict(changes)
    updates["updated_at"] = datetime.now(timezone.utc)
    result = database.collection("order").update_one({"_id": oid}, {"$set": updates})
    if result.matched_count == 0:
        raise NotFoundError("Order not found")
    return get_order(order_id)


def delete_order(order_id: str) -> None:
    order = get_order(order_id)
    database.collection("order").delete_one({"_id": order["_id"]})
    database.collection("user").update_one(
        {"_id": database.parse_object_id(order["user_id"], "User ID")},
        {"$pull": {"orders": str(order["_id"])}},
    )
    logger.info("Order %s deleted", order_id)
