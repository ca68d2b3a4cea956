"""Order placement and order administration.

``place_order`` is the only multi-document write in the service: it reads
live price and stock, writes the order and its items, and takes the stock
off with a conditional decrement, all inside one store transaction. Either
every write lands or none does.
"""
import logging
from decimal import Decimal
from typing import List

from pymongo.errors import PyMongoError

from errors import Forbidden, InsufficientStock, InvalidRequest, NotFound, ProductUnavailable, StoreFailure
from schemas import Caller, CartRequest, Order, OrderItem, OrderPlaced
from storage import Store, Transaction

logger = logging.getLogger(__name__)

CUSTOMER_ROLE = "customer"
ADMIN_ROLE = "admin"
DEFAULT_PAYMENT_METHOD = "manual_transfer"
INITIAL_STATUS = "pending"


def _require_role(caller: Caller, role: str) -> None:
    if caller is None or caller.role != role:
        raise Forbidden(f"{role.capitalize()} access required")


def validate_cart(cart: CartRequest) -> None:
    if not cart.items:
        raise InvalidRequest("Cart must contain at least one item")
    if not cart.shipping_address or not cart.shipping_address.strip():
        raise InvalidRequest("Shipping address is required")
    for index, line in enumerate(cart.items):
        if not line.product_id or not line.product_id.strip():
            raise InvalidRequest("Product id is required", line=index)
        if line.quantity <= 0:
            raise InvalidRequest("Quantity must be a positive integer", line=index)


def place_order(store: Store, caller: Caller, cart: CartRequest) -> OrderPlaced:
    _require_role(caller, CUSTOMER_ROLE)
    validate_cart(cart)

    def _place(tx: Transaction) -> OrderPlaced:
        total = Decimal("0")
        prices: List[Decimal] = []
        for line in cart.items:
            product = tx.get_product(line.product_id)
            if product is None or not product.get("is_active"):
                raise ProductUnavailable(
                    f"Product {line.product_id} is not available", product_id=line.product_id
                )
            if line.quantity > product["stock"]:
                raise InsufficientStock(
                    f"Insufficient stock for product {line.product_id}",
                    product_id=line.product_id,
                    requested=line.quantity,
                    available=product["stock"],
                )
            prices.append(product["price"])
            total += product["price"] * line.quantity

        order = Order(
            user_id=caller.id,
            total_amount=total,
            status=INITIAL_STATUS,
            payment_method=cart.payment_method or DEFAULT_PAYMENT_METHOD,
            shipping_address=cart.shipping_address.strip(),
        )
        order_id = tx.insert_order(order.model_dump())

        for line, price in zip(cart.items, prices):
            item = OrderItem(order_id=order_id, product_id=line.product_id, quantity=line.quantity, price=price)
            tx.insert_order_item(item.model_dump())
            # Stock may have been claimed since the read above, by another
            # order or by an earlier line of this cart.
            if not tx.decrement_stock(line.product_id, line.quantity):
                raise InsufficientStock(
                    f"Insufficient stock for product {line.product_id}",
                    product_id=line.product_id,
                    requested=line.quantity,
                )
        return OrderPlaced(order_id=order_id, total=total)

    try:
        placed = store.run_transaction(_place)
    except (ProductUnavailable, InsufficientStock) as e:
        logger.warning(f"Order rejected for user {caller.id}: {e.message}")
        raise
    except PyMongoError as e:
        logger.exception(f"Order placement failed for user {caller.id}")
        raise StoreFailure("Order creation failed") from e

    logger.info(f"Order {placed.order_id} placed by user {caller.id}, total {placed.total}")
    return placed


def set_order_status(store: Store, caller: Caller, order_id: str, status: str) -> dict:
    # Any status string is accepted; there is no transition graph.
    _require_role(caller, ADMIN_ROLE)
    if not isinstance(status, str) or not status.strip():
        raise InvalidRequest("Status is required")
    try:
        order = store.update_order_status(order_id, status.strip())
    except PyMongoError as e:
        logger.exception(f"Status update failed for order {order_id}")
        raise StoreFailure("Update status failed") from e
    if order is None:
        raise NotFound("Order not found", order_id=order_id)
    logger.info(f"Order {order_id} status set to '{order['status']}' by {caller.id}")
    return order


def delete_order(store: Store, caller: Caller, order_id: str) -> None:
    _require_role(caller, ADMIN_ROLE)
    try:
        deleted = store.delete_order(order_id)
    except PyMongoError as e:
        logger.exception(f"Delete failed for order {order_id}")
        raise StoreFailure("Delete order failed") from e
    if deleted:
        logger.info(f"Order {order_id} deleted by {caller.id}")


def list_orders(store: Store, caller: Caller) -> List[dict]:
    """Every order for an admin; a customer's own orders otherwise."""
    user_id = None if caller.role == ADMIN_ROLE else caller.id
    try:
        return store.list_orders(user_id)
    except PyMongoError as e:
        logger.exception("Listing orders failed")
        raise StoreFailure("List orders failed") from e


def get_order(store: Store, caller: Caller, order_id: str) -> dict:
    """Return an order with its items, for its owner or an admin."""
    try:
        order = store.get_order(order_id)
        if order is None:
            raise NotFound("Order not found", order_id=order_id)
        if caller.role != ADMIN_ROLE and order["user_id"] != caller.id:
            raise Forbidden("Not allowed")
        order["items"] = store.list_order_items(order_id)
    except PyMongoError as e:
        logger.exception(f"Fetching order {order_id} failed")
        raise StoreFailure("Get order failed") from e
    return order
