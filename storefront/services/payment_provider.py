"""
Hosted payment provider adapter.

The storefront never touches card data: checkout creates a hosted payment
session and the provider reports back through a signed webhook (and the
return URL). `MercadoPagoProvider` drives Mercado Pago Checkout Pro through
the official SDK; tests swap in their own `PaymentProvider` subclass.
"""
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import mercadopago  # type: ignore
from flask import Flask, current_app

from storefront.exceptions import InvalidWebhookSignatureError, PaymentProviderError

logger = logging.getLogger(__name__)

EVENT_COMPLETED = 'completed'
EVENT_EXPIRED = 'expired'
EVENT_IGNORED = 'ignored'

# Mercado Pago payment statuses mapped to our event types
MP_COMPLETED_STATUSES = {'approved'}
MP_EXPIRED_STATUSES = {'cancelled', 'expired'}


@dataclass
class LineItem:
    """A line shown on the hosted payment page. Prices are computed server-side."""
    name: str
    unit_price: Decimal
    quantity: int = 1
    sku: Optional[str] = None


@dataclass
class PaymentSession:
    id: str
    redirect_url: str


@dataclass
class PaymentEvent:
    type: str
    order_id: Optional[int] = None
    reference: Optional[str] = None
    order_number: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


class PaymentProvider:
    """Base adapter. Signature checking is shared; the rest is provider specific."""

    def __init__(self, webhook_secret: Optional[str] = None):
        self.webhook_secret = webhook_secret

    def create_session(
        self,
        line_items: List[LineItem],
        customer_email: str,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, Any],
        expires_at: datetime,
    ) -> PaymentSession:
        raise NotImplementedError

    def get_payment(self, reference: str) -> PaymentEvent:
        raise NotImplementedError

    def parse_event(self, payload: Dict[str, Any]) -> PaymentEvent:
        raise NotImplementedError

    def verify_signature(self, raw_payload: bytes, signature: str) -> None:
        """
        Check the HMAC-SHA256 of the raw body against the signature header.

        Raises:
            InvalidWebhookSignatureError: secret missing, header missing or mismatch
        """
        if not self.webhook_secret:
            logger.error("[WEBHOOK] PAYMENT_WEBHOOK_SECRET is not configured, rejecting event")
            raise InvalidWebhookSignatureError()
        if not signature:
            logger.warning("[WEBHOOK] Missing signature header")
            raise InvalidWebhookSignatureError()

        # Accept both "<hex>" and "sha256=<hex>"
        if signature.startswith('sha256='):
            signature = signature[len('sha256='):]

        expected = hmac.new(
            self.webhook_secret.encode('utf-8'),
            raw_payload,
            hashlib.sha256
        ).hexdigest()
        if not hmac.compare_digest(signature.strip(), expected):
            logger.warning("[WEBHOOK] Invalid signature")
            raise InvalidWebhookSignatureError()

    def verify_webhook(self, raw_payload: bytes, signature: str) -> PaymentEvent:
        """Verify the signature first, then decode the payload into an event."""
        self.verify_signature(raw_payload, signature)
        try:
            payload = json.loads(raw_payload.decode('utf-8'))
        except (UnicodeDecodeError, ValueError):
            raise InvalidWebhookSignatureError('Invalid webhook payload')
        if not isinstance(payload, dict):
            raise InvalidWebhookSignatureError('Invalid webhook payload')
        return self.parse_event(payload)


class MercadoPagoProvider(PaymentProvider):
    """Mercado Pago Checkout Pro: a preference is the hosted session."""

    def __init__(self, access_token: Optional[str], webhook_secret: Optional[str] = None,
                 sandbox: bool = True, currency: str = 'EUR', notification_url: Optional[str] = None):
        super().__init__(webhook_secret)
        self.sandbox = sandbox
        self.currency = currency
        self.notification_url = notification_url
        if not access_token:
            logger.warning("Mercado Pago ACCESS_TOKEN not found in config.")
            self.sdk = None
        else:
            self.sdk = mercadopago.SDK(access_token)

    def _check_sdk(self):
        if not self.sdk:
            raise PaymentProviderError("Mercado Pago SDK not initialized. Missing MP_ACCESS_TOKEN.")

    def create_session(self, line_items, customer_email, success_url, cancel_url, metadata, expires_at):
        self._check_sdk()

        preference_data = {
            "items": [
                {
                    "id": item.sku or str(index),
                    "title": item.name,
                    "quantity": item.quantity,
                    "unit_price": float(item.unit_price),
                    "currency_id": self.currency,
                }
                for index, item in enumerate(line_items, start=1)
            ],
            "payer": {"email": customer_email},
            "back_urls": {
                "success": success_url,
                "pending": success_url,
                "failure": cancel_url,
            },
            "auto_return": "approved",
            "external_reference": str(metadata.get('order_id', '')),
            "metadata": metadata,
            "expires": True,
            "expiration_date_to": expires_at.isoformat(timespec='milliseconds'),
        }
        if self.notification_url:
            preference_data["notification_url"] = self.notification_url

        try:
            response = self.sdk.preference().create(preference_data)
        except Exception as e:
            logger.exception("Exception creating Mercado Pago preference")
            raise PaymentProviderError(order_id=metadata.get('order_id')) from e

        if response.get("status") != 201:
            logger.error(f"Error creating MP preference: {response}")
            raise PaymentProviderError(order_id=metadata.get('order_id'))

        preference = response["response"]
        redirect_url = preference.get("sandbox_init_point") if self.sandbox else None
        redirect_url = redirect_url or preference.get("init_point")
        logger.info(f"MP preference created: {preference.get('id')} for order {metadata.get('order_number')}")
        return PaymentSession(id=str(preference["id"]), redirect_url=redirect_url)

    def get_payment(self, reference):
        self._check_sdk()
        try:
            response = self.sdk.payment().get(reference)
        except Exception as e:
            logger.exception(f"Exception fetching payment {reference}")
            raise PaymentProviderError() from e

        if response.get("status") != 200:
            logger.error(f"Error fetching payment {reference}: {response}")
            raise PaymentProviderError()

        payment = response["response"]
        status = payment.get("status")
        metadata = payment.get("metadata") or {}
        order_id = payment.get("external_reference") or metadata.get("order_id")

        if status in MP_COMPLETED_STATUSES:
            event_type = EVENT_COMPLETED
        elif status in MP_EXPIRED_STATUSES:
            event_type = EVENT_EXPIRED
        else:
            event_type = EVENT_IGNORED

        return PaymentEvent(
            type=event_type,
            order_id=int(order_id) if order_id not in (None, '') else None,
            reference=str(payment.get("id", reference)),
            order_number=metadata.get("order_number"),
            raw=payment,
        )

    def parse_event(self, payload):
        # Notifications only carry the payment id; the state lives on the payment.
        event_type = payload.get('type') or payload.get('topic')
        payment_id = (payload.get('data') or {}).get('id') or payload.get('id')

        if event_type != 'payment' or not payment_id:
            logger.info(f"[WEBHOOK] Unhandled MP notification type: {event_type}")
            return PaymentEvent(type=EVENT_IGNORED, raw=payload)

        return self.get_payment(str(payment_id))


def init_payment_provider(app: Flask) -> None:
    """Register the configured provider on the app."""
    app.extensions['payment_provider'] = MercadoPagoProvider(
        access_token=app.config.get('MP_ACCESS_TOKEN'),
        webhook_secret=app.config.get('PAYMENT_WEBHOOK_SECRET'),
        sandbox=app.config.get('MP_SANDBOX', True),
        currency=app.config.get('CURRENCY', 'EUR'),
        notification_url=f"{app.config.get('APP_URL', '')}/webhooks/payments",
    )


def get_payment_provider() -> PaymentProvider:
    provider = current_app.extensions.get('payment_provider')
    if provider is None:
        raise RuntimeError("Payment provider not initialized.")
    return provider
