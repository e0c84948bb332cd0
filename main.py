import html
import logging
import os
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional

from bson import ObjectId
from fastapi import BackgroundTasks, Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, EmailStr, Field, HttpUrl, StringConstraints, field_validator
from pymongo.errors import PyMongoError

import auth
import carts
import config
import database
import mailer
import orders
import payments
from auth import get_current_user, get_optional_user, get_token_claims
from database import create_document, get_documents, object_id_str, parse_object_id, serialize_doc
from errors import AuthorizationError, ConflictError, NotFoundError, ValidationError, install_error_handlers
from schemas import (
    Address as AddressSchema,
    Category as CategorySchema,
    ObjectIdStr,
    OrderStatus,
    Product as ProductSchema,
    Review as ReviewSchema,
)

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# App init
app = FastAPI(title="Storefront API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

install_error_handlers(app)


NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
DigitStr = Annotated[str, StringConstraints(strip_whitespace=True, pattern=r"^\d+$")]


def present_fields(req: BaseModel, nullable=()) -> Dict[str, Any]:
    """Keys the client actually sent. Explicit nulls are dropped unless the field may be cleared."""
    data = req.model_dump(exclude_unset=True)
    return {k: v for k, v in data.items() if v is not None or k in nullable}


def _stamp(changes: Dict[str, Any]) -> Dict[str, Any]:
    changes["updated_at"] = datetime.now(timezone.utc)
    return changes


def _require_owner(doc: dict, user: dict, what: str) -> None:
    if doc.get("user_id") != str(user["_id"]):
        raise AuthorizationError(f"Unauthorized access to the {what}")


# Request models
class SignupRequest(BaseModel):
    first_name: NonEmptyStr
    last_name: NonEmptyStr
    email: EmailStr
    password: Annotated[str, StringConstraints(strip_whitespace=True, min_length=3)]
    confirm_password: str

    @field_validator("first_name", "last_name")
    @classmethod
    def escape_name(cls, v: str) -> str:
        return html.escape(v)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    password: Annotated[str, StringConstraints(strip_whitespace=True, min_length=3)]
    confirm_password: str


class ProfileUpdateRequest(BaseModel):
    first_name: Optional[NonEmptyStr] = None
    last_name: Optional[NonEmptyStr] = None

    @field_validator("first_name", "last_name")
    @classmethod
    def escape_name(cls, v: Optional[str]) -> Optional[str]:
        return html.escape(v) if v is not None else v


class ProductCreateRequest(BaseModel):
    name: NonEmptyStr
    description: NonEmptyStr
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=0)
    category: ObjectIdStr
    image: Optional[HttpUrl] = None


class ProductUpdateRequest(BaseModel):
    name: Optional[NonEmptyStr] = None
    description: Optional[NonEmptyStr] = None
    price: Optional[float] = Field(None, ge=0)
    quantity: Optional[int] = Field(None, ge=0)
    category: Optional[ObjectIdStr] = None
    image: Optional[HttpUrl] = None


class CategoryRequest(BaseModel):
    name: NonEmptyStr
    description: Optional[str] = None


class CategoryUpdateRequest(BaseModel):
    name: Optional[NonEmptyStr] = None
    description: Optional[str] = None


class CartItemRequest(BaseModel):
    product: ObjectIdStr
    quantity: int = Field(..., ge=1)


class CartQuantityRequest(BaseModel):
    quantity: int = Field(..., ge=1)


class OrderItemRequest(BaseModel):
    product: ObjectIdStr
    quantity: int = Field(..., ge=1)


class OrderCreateRequest(BaseModel):
    items: List[OrderItemRequest] = Field(..., min_length=1)
    total_amount: float = Field(..., ge=0)
    status: Literal["Pending", "Shipped", "Delivered"] = "Pending"


class OrderUpdateRequest(BaseModel):
    items: Optional[List[OrderItemRequest]] = Field(None, min_length=1)
    total_amount: Optional[float] = Field(None, ge=0)
    status: Optional[OrderStatus] = None


class PaymentRequest(BaseModel):
    payment_method: NonEmptyStr = "card"


class AddressRequest(BaseModel):
    address_line: NonEmptyStr
    postal_code: DigitStr
    phone: DigitStr


class AddressUpdateRequest(BaseModel):
    address_line: Optional[NonEmptyStr] = None
    postal_code: Optional[DigitStr] = None
    phone: Optional[DigitStr] = None


class ReviewRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    title: str = ""
    comment: str = ""


class ReviewUpdateRequest(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    title: Optional[str] = None
    comment: Optional[str] = None


# Routes
@app.get("/")
def root():
    return {"message": "Storefront API running"}


@app.get("/test")
def test_database():
    """Report whether the configured database answers."""
    report = {"backend": "running", "database": "not configured", "database_name": None, "collections": []}
    if database.db is None:
        return report
    report["database_name"] = database.db.name
    try:
        report["collections"] = sorted(database.db.list_collection_names())
        report["database"] = "connected"
    except PyMongoError as e:
        logger.warning("Database check failed: %s", e)
        report["database"] = "unreachable"
    return report


# Auth
@app.post("/sign-up", status_code=201)
def signup(req: SignupRequest):
    if req.password != req.confirm_password.strip():
        raise ValidationError("Passwords do not match")
    user = auth.signup(req.first_name, req.last_name, req.email, req.password)
    return {"message": "User created successfully", "user": serialize_doc(user)}


@app.post("/login")
def login(req: LoginRequest):
    token = auth.login(req.email, req.password)
    return {"message": "Login successful", "token": token}


@app.post("/logout")
def logout(claims: dict = Depends(get_token_claims)):
    auth.logout(claims)
    return {"message": "Logout successful"}


@app.post("/forgot-password")
def forgot_password(req: ForgotPasswordRequest, background_tasks: BackgroundTasks):
    started = auth.start_password_reset(req.email)
    if started:
        user, token = started
        background_tasks.add_task(mailer.send_password_reset, user["email"], user.get("first_name", ""),
                                  auth.reset_link(token))
    # Same answer whether or not the address is registered
    return {"message": "If the email is registered, a reset link has been sent"}


@app.post("/reset-password/{token}")
def reset_password(token: str, req: ResetPasswordRequest):
    if req.password != req.confirm_password.strip():
        raise ValidationError("Passwords do not match")
    auth.complete_password_reset(token, req.password)
    return {"message": "Password has been reset"}


@app.get("/user")
def get_profile(user=Depends(get_current_user)):
    return {"message": "Get request is a success", "user": serialize_doc(user)}


@app.put("/user")
def update_profile(req: ProfileUpdateRequest, user=Depends(get_current_user)):
    changes = present_fields(req)
    if changes:
        database.collection("user").update_one({"_id": user["_id"]}, {"$set": _stamp(changes)})
    updated = database.collection("user").find_one({"_id": user["_id"]})
    return {"message": "User updated successfully", "user": serialize_doc(updated)}


# Products
def _find_product(product_id: str) -> dict:
    product = database.collection("product").find_one({"_id": parse_object_id(product_id, "Product ID")})
    if not product:
        raise NotFoundError("Product not found")
    return product


def _product_fields(changes: Dict[str, Any]) -> Dict[str, Any]:
    if changes.get("image") is not None:
        changes["image"] = str(changes["image"])
    return changes


@app.post("/create_product", status_code=201)
def create_product(req: ProductCreateRequest, user=Depends(get_current_user)):
    prod = ProductSchema(**_product_fields(req.model_dump()))
    product_id = create_document("product", prod)
    return {"message": "Product created successfully", "product": serialize_doc(_find_product(product_id))}


@app.get("/product_list")
def product_list():
    products = get_documents("product")
    return {"message": "List retrieved successfully", "products": [serialize_doc(p) for p in products]}


@app.get("/product/{product_id}")
def get_product(product_id: str):
    return {"message": "Get request is a success", "product": serialize_doc(_find_product(product_id))}


@app.put("/update_product/{product_id}")
def update_product(product_id: str, req: ProductUpdateRequest, user=Depends(get_current_user)):
    product = _find_product(product_id)
    changes = _product_fields(present_fields(req, nullable=("image",)))
    if changes:
        database.collection("product").update_one({"_id": product["_id"]}, {"$set": _stamp(changes)})
    return {"message": "Product updated successfully", "product": serialize_doc(_find_product(product_id))}


@app.delete("/delete_product/{product_id}")
def delete_product(product_id: str, user=Depends(get_current_user)):
    result = database.collection("product").delete_one({"_id": parse_object_id(product_id, "Product ID")})
    if result.deleted_count == 0:
        raise NotFoundError("Product not found")
    return {"message": "Product deleted successfully"}


# Categories
def _find_category(category_id: str) -> dict:
    category = database.collection("category").find_one({"_id": parse_object_id(category_id, "Category ID")})
    if not category:
        raise NotFoundError("Category not found")
    return category


@app.post("/create_category", status_code=201)
def create_category(req: CategoryRequest, user=Depends(get_current_user)):
    if database.collection("category").find_one({"name": req.name}):
        raise ConflictError("Category with this name already exists")
    category_id = create_document("category", CategorySchema(**req.model_dump()))
    return {"message": "Category created successfully", "category": serialize_doc(_find_category(category_id))}


@app.get("/category_list")
def category_list():
    categories = get_documents("category")
    return {"message": "List retrieved successfully", "categories": [serialize_doc(c) for c in categories]}


@app.get("/category/{category_id}")
def get_category(category_id: str):
    return {"message": "Get request is a success", "category": serialize_doc(_find_category(category_id))}


@app.put("/update_category/{category_id}")
def update_category(category_id: str, req: CategoryUpdateRequest, user=Depends(get_current_user)):
    category = _find_category(category_id)
    changes = present_fields(req, nullable=("description",))
    if "name" in changes and database.collection("category").find_one(
            {"name": changes["name"], "_id": {"$ne": category["_id"]}}):
        raise ConflictError("Category with this name already exists")
    if changes:
        database.collection("category").update_one({"_id": category["_id"]}, {"$set": _stamp(changes)})
    return {"message": "Category updated successfully", "category": serialize_doc(_find_category(category_id))}


@app.delete("/delete_category/{category_id}")
def delete_category(category_id: str, user=Depends(get_current_user)):
    result = database.collection("category").delete_one({"_id": parse_object_id(category_id, "Category ID")})
    if result.deleted_count == 0:
        raise NotFoundError("Category not found")
    return {"message": "Category deleted successfully"}


# Cart
def _cart_response(message: str, owner: Optional[str]):
    return {"message": message, "cart": carts.get_cart(owner)}


@app.post("/add_cart_guest")
def add_cart_guest(req: CartItemRequest):
    carts.add_item(carts.GUEST, req.product, req.quantity)
    return _cart_response("Product added to the cart successfully", carts.GUEST)


@app.post("/add_cart_auth")
def add_cart_auth(req: CartItemRequest, user=Depends(get_current_user)):
    owner = carts.owner_of(user)
    carts.add_item(owner, req.product, req.quantity)
    return _cart_response("Product added to the cart successfully", owner)


@app.get("/cart_guest")
def cart_guest():
    return _cart_response("Get request is a success", carts.GUEST)


@app.get("/cart_user")
def cart_user(user=Depends(get_current_user)):
    return _cart_response("Get request is a success", carts.owner_of(user))


@app.put("/cart/update_guest/{product_id}")
def update_cart_guest(product_id: str, req: CartQuantityRequest):
    carts.update_item(carts.GUEST, product_id, req.quantity)
    return _cart_response("Cart updated successfully", carts.GUEST)


@app.put("/cart/update_auth/{product_id}")
def update_cart_auth(product_id: str, req: CartQuantityRequest, user=Depends(get_current_user)):
    owner = carts.owner_of(user)
    carts.update_item(owner, product_id, req.quantity)
    return _cart_response("Cart updated successfully", owner)


@app.delete("/cart/remove_guest/{product_id}")
def remove_cart_guest(product_id: str):
    carts.remove_item(carts.GUEST, product_id)
    return _cart_response("Product removed from the cart successfully", carts.GUEST)


@app.delete("/cart/remove_auth/{product_id}")
def remove_cart_auth(product_id: str, user=Depends(get_current_user)):
    owner = carts.owner_of(user)
    carts.remove_item(owner, product_id)
    return _cart_response("Product removed from the cart successfully", owner)


@app.delete("/clear_cart")
def clear_cart(user: Optional[dict] = Depends(get_optional_user)):
    owner = carts.owner_of(user)
    carts.clear_cart(owner)
    return _cart_response("Cart cleared successfully", owner)


# Orders
def _order_items(items: List[OrderItemRequest]) -> List[Dict[str, Any]]:
    return [{"product_id": i.product, "quantity": i.quantity} for i in items]


@app.post("/create_order", status_code=201)
def create_order(req: OrderCreateRequest, user=Depends(get_current_user)):
    order = orders.create_order(user, _order_items(req.items), req.total_amount, req.status)
    return {"message": "Order created successfully", "order": serialize_doc(order)}


@app.get("/order_list")
def order_list(user=Depends(get_current_user)):
    return {"message": "List retrieved successfully", "orders": [serialize_doc(o) for o in orders.list_orders()]}


@app.get("/order/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user)):
    return {"message": "Get request is a success", "order": serialize_doc(orders.get_order(order_id))}


@app.put("/update_order/{order_id}")
def update_order(order_id: str, req: OrderUpdateRequest, user=Depends(get_current_user)):
    changes = present_fields(req)
    if "items" in changes:
        changes["items"] = _order_items(req.items)
    if "status" in changes:
        changes["status"] = OrderStatus(changes["status"]).value
    order = orders.update_order(order_id, changes) if changes else orders.get_order(order_id)
    return {"message": "Order updated successfully", "order": serialize_doc(order)}


@app.delete("/delete_order/{order_id}")
def delete_order(order_id: str, user=Depends(get_current_user)):
    orders.delete_order(order_id)
    return {"message": "Order deleted successfully"}


# Payments
@app.post("/payment/{order_id}", status_code=201)
def make_payment(order_id: str, req: Optional[PaymentRequest] = None, user=Depends(get_current_user)):
    method = req.payment_method if req else "card"
    payment = payments.make_payment(user, order_id, method)
    return {"message": "Payment made successfully", "payment": serialize_doc(payment)}


@app.get("/payment/user/{user_id}")
def user_payments(user_id: str, user=Depends(get_current_user)):
    user_id = object_id_str(user_id, "User ID")
    if user_id != str(user["_id"]):
        raise AuthorizationError("Unauthorized access to the payments")
    found = payments.list_user_payments(user_id)
    return {"message": "Get request is a success", "payments": [serialize_doc(p) for p in found]}


@app.get("/payment/{payment_id}")
def get_payment(payment_id: str, user=Depends(get_current_user)):
    return {"message": "Get request is a success", "payment": serialize_doc(payments.get_payment(user, payment_id))}


@app.delete("/payment/{payment_id}")
def delete_payment(payment_id: str, user=Depends(get_current_user)):
    payments.delete_payment(user, payment_id)
    return {"message": "Payment deleted successfully"}


# Addresses
def _find_address(address_id: str, user: dict) -> dict:
    address = database.collection("address").find_one({"_id": parse_object_id(address_id, "Address ID")})
    if not address:
        raise NotFoundError("Address not found")
    _require_owner(address, user, "address")
    return address


@app.post("/create_address", status_code=201)
def create_address(req: AddressRequest, user=Depends(get_current_user)):
    address_id = create_document("address", AddressSchema(user_id=str(user["_id"]), **req.model_dump()))
    database.collection("user").update_one({"_id": user["_id"]}, {"$push": {"address": address_id}})
    return {"message": "Address created successfully", "address": serialize_doc(_find_address(address_id, user))}


@app.get("/address_list")
def address_list(user=Depends(get_current_user)):
    found = get_documents("address", {"user_id": str(user["_id"])})
    return {"message": "List retrieved successfully", "addresses": [serialize_doc(a) for a in found]}


@app.get("/address/{address_id}")
def get_address(address_id: str, user=Depends(get_current_user)):
    return {"message": "Get request is a success", "address": serialize_doc(_find_address(address_id, user))}


@app.put("/update_address/{address_id}")
def update_address(address_id: str, req: AddressUpdateRequest, user=Depends(get_current_user)):
    address = _find_address(address_id, user)
    changes = present_fields(req)
    if changes:
        database.collection("address").update_one({"_id": address["_id"]}, {"$set": _stamp(changes)})
    return {"message": "Address updated successfully", "address": serialize_doc(_find_address(address_id, user))}


@app.delete("/delete_address/{address_id}")
def delete_address(address_id: str, user=Depends(get_current_user)):
    address = _find_address(address_id, user)
    database.collection("address").delete_one({"_id": address["_id"]})
    database.collection("user").update_one({"_id": user["_id"]}, {"$pull": {"address": address_id}})
    return {"message": "Address deleted successfully"}


# Reviews
def _find_review(review_id: str) -> dict:
    review = database.collection("review").find_one({"_id": parse_object_id(review_id, "Review ID")})
    if not review:
        raise NotFoundError("Review not found")
    return review


def _with_reviewer(review: dict) -> dict:
    out = serialize_doc(review)
    reviewer = None
    if ObjectId.is_valid(review.get("user_id", "")):
        reviewer = database.collection("user").find_one(
            {"_id": ObjectId(review["user_id"])}, {"first_name": 1, "last_name": 1})
    out["user"] = {
        "id": review.get("user_id"),
        "first_name": reviewer.get("first_name") if reviewer else None,
        "last_name": reviewer.get("last_name") if reviewer else None,
    }
    return out


@app.post("/review/{product_id}", status_code=201)
def create_review(product_id: str, req: ReviewRequest, user=Depends(get_current_user)):
    product = _find_product(product_id)
    review = ReviewSchema(user_id=str(user["_id"]), product_id=str(product["_id"]), **req.model_dump())
    review_id = create_document("review", review)
    database.collection("user").update_one({"_id": user["_id"]}, {"$push": {"review": review_id}})
    return {"message": "Review added successfully", "review": serialize_doc(_find_review(review_id))}


@app.get("/review_list")
def review_list():
    reviews = get_documents("review")
    return {"message": "List retrieved successfully", "reviews": [serialize_doc(r) for r in reviews]}


@app.get("/review/product/{product_id}")
def product_reviews(product_id: str):
    product_id = object_id_str(product_id, "Product ID")
    reviews = get_documents("review", {"product_id": product_id}, sort=[("created_at", -1), ("_id", -1)])
    return {"message": "Reviews retrieved successfully", "reviews": [_with_reviewer(r) for r in reviews]}


@app.get("/review/user/{user_id}")
def user_reviews(user_id: str):
    reviews = get_documents("review", {"user_id": object_id_str(user_id, "User ID")})
    return {"message": "Reviews retrieved successfully", "reviews": [serialize_doc(r) for r in reviews]}


@app.put("/review/{review_id}")
def update_review(review_id: str, req: ReviewUpdateRequest, user=Depends(get_current_user)):
    review = _find_review(review_id)
    _require_owner(review, user, "review")
    changes = present_fields(req)
    if changes:
        database.collection("review").update_one({"_id": review["_id"]}, {"$set": _stamp(changes)})
    return {"message": "Review updated successfully", "review": serialize_doc(_find_review(review_id))}


@app.delete("/review/{review_id}")
def delete_review(review_id: str, user=Depends(get_current_user)):
    review = _find_review(review_id)
    _require_owner(review, user, "review")
    database.collection("review").delete_one({"_id": review["_id"]})
    database.collection("user").update_one({"_id": user["_id"]}, {"$pull": {"review": review_id}})
    return {"message": "Review deleted successfully"}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
