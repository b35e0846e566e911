"""Checkout: turn a cart into an order and collect payment for it."""
import logging
from typing import List, Optional

from pymongo import DESCENDING

from catalog import id_filter
from config import DEFAULT_CURRENCY
from database import create_document, get_documents, utcnow
from errors import NotFound, ValidationError
from payments import to_minor_units
from schemas import AuthSession, Order, OrderItem, PaymentOutcome, PaymentPrefill, PaymentRequest

logger = logging.getLogger(__name__)


def build_order(cart, session: AuthSession, currency: str = DEFAULT_CURRENCY) -> Order:
    items: List[OrderItem] = [
        OrderItem(
            product_id=item.product_id,
            name=item.name,
            unit_price=item.unit_price,
            quantity=item.quantity,
            line_total=item.line_total,
        )
        for item in cart.items
    ]
    return Order(
        user_id=session.current_user.id,
        user_email=session.current_user.email,
        items=items,
        total=cart.get_cart_total(),
        currency=currency,
    )


def place_order(db, cart, catalog, session: AuthSession, gateway, notifier=None,
                contact: Optional[str] = None) -> dict:
    """Create a pending order for the cart and open the payment widget.

    Raises ValidationError when the cart is empty or no longer matches stock.
    """
    if not cart.items:
        raise ValidationError("Cart is empty")

    products = catalog.get_products({item.product_id for item in cart.items})
    invalid = cart.validate_against(products)
    if invalid:
        if notifier is not None:
            names = ", ".join(item.name for item in invalid)
            notifier.error("Some items are no longer available", names)
        raise ValidationError("Cart contains unavailable items")

    order = build_order(cart, session)
    order_id = create_document("order", order.model_dump(), database=db)

    request = PaymentRequest(
        amount=to_minor_units(order.total),
        currency=order.currency,
        description=f"Order {order_id}",
        prefill=PaymentPrefill(
            name=session.current_user.name,
            email=session.current_user.email,
            contact=contact,
        ),
    )
    widget = gateway.open(request, reference=order_id)
    db["order"].update_one(id_filter(order_id), {"$set": {"payment_session_id": widget["sessionId"]}})
    logger.info("Order %s opened for payment (%s)", order_id, widget["sessionId"])
    return {"orderId": order_id, "amount": request.amount, "currency": order.currency, "payment": widget}


def confirm_order(db, order_id: str, session: AuthSession, gateway, cart, notifier=None,
                  dismissed: bool = False) -> PaymentOutcome:
    """Record the payment widget's result on the order.

    A successful payment marks the order paid and empties the cart; a
    dismissed widget cancels the order and leaves the cart as it was.
    """
    order = db["order"].find_one({**id_filter(order_id), "user_id": session.current_user.id})
    if not order:
        raise NotFound("Order not found")
    if order.get("status") == "paid":
        return PaymentOutcome(status="succeeded", payment_id=order.get("payment_id"))

    outcome = gateway.resolve(order.get("payment_session_id") or "", dismissed=dismissed)
    status = {"succeeded": "paid", "cancelled": "cancelled", "failed": "failed"}[outcome.status]
    db["order"].update_one(
        {"_id": order["_id"]},
        {"$set": {"status": status, "payment_id": outcome.payment_id, "updated_at": utcnow()}},
    )

    if outcome.status == "succeeded":
        cart.clear_cart()
        if notifier is not None:
            notifier.success("Payment successful", f"Payment id {outcome.payment_id}")
    elif outcome.status == "cancelled":
        if notifier is not None:
            notifier.info("Payment cancelled", "Your cart has been kept.")
    elif notifier is not None:
        notifier.error("Payment failed", outcome.message or "")
    return outcome


def list_orders(db, user_id: Optional[str] = None, limit: int = 100) -> List[dict]:
    filt = {"user_id": user_id} if user_id else {}
    orders = get_documents("order", filt, limit, sort=[("created_at", DESCENDING)], database=db)
    for o in orders:
        o["id"] = str(o.pop("_id"))
    return orders
