"""Payment widget boundary (Stripe Checkout).

``open`` starts a hosted checkout for an amount in minor currency units and
returns the options the client needs to show it. ``resolve`` turns the
widget's result into a PaymentOutcome. A shopper closing the widget is a
``cancelled`` outcome, not a failure.

Without STRIPE_SECRET_KEY the gateway simulates the widget so the rest of the
checkout flow can run locally.
"""
import logging
import uuid
from typing import Optional

import stripe

from config import FRONTEND_URL, STRIPE_SECRET_KEY, THEME_COLOR
from errors import RemoteError
from schemas import PaymentOutcome, PaymentRequest

logger = logging.getLogger(__name__)

SIMULATED_PREFIX = "sim_"


def to_minor_units(amount: float) -> int:
    # Stripe expects amount in smallest unit (paise)
    return int(round(amount * 100))


class PaymentGateway:
    def __init__(self, secret_key: str = STRIPE_SECRET_KEY, frontend_url: str = FRONTEND_URL,
                 theme_color: str = THEME_COLOR):
        self.secret_key = secret_key
        self.frontend_url = frontend_url.rstrip("/")
        self.theme_color = theme_color
        if secret_key:
            stripe.api_key = secret_key

    @property
    def simulated(self) -> bool:
        return not self.secret_key

    def open(self, request: PaymentRequest, reference: str) -> dict:
        """Create a checkout session and return the widget options."""
        options = {
            "amount": request.amount,
            "currency": request.currency,
            "description": request.description,
            "prefill": request.prefill.model_dump(exclude_none=True),
            "theme": {"color": request.theme_color or self.theme_color},
            "reference": reference,
        }
        if self.simulated:
            options.update(sessionId=SIMULATED_PREFIX + uuid.uuid4().hex, url=None, simulated=True)
            return options

        try:
            session = stripe.checkout.Session.create(
                mode="payment",
                line_items=[{
                    "price_data": {
                        "currency": request.currency,
                        "product_data": {"name": request.description},
                        "unit_amount": request.amount,
                    },
                    "quantity": 1,
                }],
                success_url=self.frontend_url + "/checkout/success?session_id={CHECKOUT_SESSION_ID}",
                cancel_url=self.frontend_url + "/checkout/cancel",
                customer_email=request.prefill.email,
                client_reference_id=reference,
                metadata={"reference": reference, "contact": request.prefill.contact or ""},
            )
        except stripe.StripeError as e:
            logger.exception("Could not open checkout for %s", reference)
            raise RemoteError(str(e)) from e

        options.update(sessionId=session.id, url=session.url, simulated=False)
        return options

    def resolve(self, session_id: str, dismissed: bool = False) -> PaymentOutcome:
        if dismissed:
            logger.info("Payment widget closed by user (%s)", session_id)
            return PaymentOutcome(status="cancelled", message="Payment cancelled")

        if self.simulated or session_id.startswith(SIMULATED_PREFIX):
            return PaymentOutcome(status="succeeded", payment_id="pay_" + session_id[len(SIMULATED_PREFIX):])

        try:
            session = stripe.checkout.Session.retrieve(session_id)
        except stripe.StripeError as e:
            logger.exception("Could not retrieve checkout session %s", session_id)
            return PaymentOutcome(status="failed", message=str(e))

        if session.payment_status == "paid":
            payment_id: Optional[str] = session.payment_intent
            return PaymentOutcome(status="succeeded", payment_id=payment_id)
        if session.status in ("open", "expired"):
            return PaymentOutcome(status="cancelled", message="Payment not completed")
        return PaymentOutcome(status="failed", message=f"Unexpected payment status: {session.payment_status}")
