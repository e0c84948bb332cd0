"""
Payment service.

Paying writes two documents: the Payment and the Order it settles. The store
gives no multi-document transaction, so the payment is inserted as Pending,
the order is flipped with a conditional update, and only then is the payment
marked Paid. If the order write fails the payment is kept as Failed. If
another payment settled the order first, the losing Pending payment is
deleted, so an order never gains a second payment record. A Paid payment
always has a Paid order behind it.
"""
import logging
import math
from datetime import datetime, timezone
from typing import List

from bson import ObjectId
from pymongo.errors import PyMongoError

import database
from errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from orders import get_order
from schemas import OrderStatus, Payment as PaymentSchema, PaymentStatus

logger = logging.getLogger(__name__)


def _set_payment_status(payment_id: ObjectId, status: PaymentStatus) -> None:
    database.collection("payment").update_one(
        {"_id": payment_id},
        {"$set": {"status": status.value, "updated_at": datetime.now(timezone.utc)}},
    )


def _coerce_amount(value) -> float:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationError("Invalid total amount")
    if math.isnan(amount):
        raise ValidationError("Invalid total amount")
    return amount


def make_payment(user: dict, order_id: str, payment_method: str = "card") -> dict:
    order = get_order(order_id)
    user_id = str(user["_id"])
    if str(order.get("user_id")) != user_id:
        raise AuthorizationError("Unauthorized access to the order")
    if order.get("status") == OrderStatus.PAID.value:
        raise ConflictError("Order is already paid")
    amount = _coerce_amount(order.get("total_amount"))

    payment = PaymentSchema(user_id=user_id, order_id=str(order["_id"]), amount=amount,
                            payment_method=payment_method)
    payment_id = ObjectId(database.create_document("payment", payment))

    try:
        result = database.collection("order").update_one(
            {"_id": order["_id"], "status": {"$ne": OrderStatus.PAID.value}},
            {"$set": {"status": OrderStatus.PAID.value, "payment_id": str(payment_id),
                      "updated_at": datetime.now(timezone.utc)}},
        )
    except PyMongoError:
        logger.exception("Order %s could not be marked paid; failing payment %s", order_id, payment_id)
        _set_payment_status(payment_id, PaymentStatus.FAILED)
        raise

    if result.matched_count == 0:
        database.collection("payment").delete_one({"_id": payment_id})
        logger.warning("Order %s was paid concurrently; payment %s discarded", order_id, payment_id)
        raise ConflictError("Order is already paid")

    _set_payment_status(payment_id, PaymentStatus.PAID)
    logger.info("Payment %s of %.2f made for order %s", payment_id, amount, order_id)
    return database.collection("payment").find_one({"_id": payment_id})


def list_user_payments(user_id: str) -> List[dict]:
    return database.get_documents("payment", {"user_id": database.object_id_str(user_id, "User ID")})


def get_payment(user: dict, payment_id: str) -> dict:
    payment = database.collection("payment").find_one({"_id": database.parse_object_id(payment_id, "Payment ID")})
    if not payment:
        raise NotFoundError("Payment not found")
    if payment.get("user_id") != str(user["_id"]):
        raise AuthorizationError("Unauthorized access to the payment")
    return payment


def delete_payment(user: dict, payment_id: str) -> None:
    """Remove a payment and clear the order's reference to it."""
    payment = get_payment(user, payment_id)
    database.collection("payment").delete_one({"_id": payment["_id"]})
    database.collection("order").update_many(
        {"payment_id": str(payment["_id"])},
        {"$set": {"payment_id": None, "updated_at": datetime.now(timezone.utc)}},
    )
    logger.info("Payment %s deleted", payment_id)
