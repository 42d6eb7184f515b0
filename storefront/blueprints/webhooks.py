"""
Webhooks Blueprint for payment provider notifications.

The signature is checked before anything else; the provider retries on any
non-2xx answer, so an event that was already applied still answers 200.
"""

import logging
from flask import Blueprint, request, jsonify

from storefront.database import get_session
from storefront.exceptions import InvalidWebhookSignatureError, OutOfStockError, PaymentProviderError
from storefront.services import fulfillment_service
from storefront.services.payment_provider import get_payment_provider

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint('webhooks', __name__, url_prefix='/webhooks')

SIGNATURE_HEADERS = ('X-Signature', 'X-Webhook-Signature')


def _signature_header() -> str:
    for header in SIGNATURE_HEADERS:
        value = request.headers.get(header)
        if value:
            return value
    return ''


@webhooks_bp.route('/payments', methods=['POST'])
def payment_webhook():
    """
    Handle payment provider notifications.

    Returns:
        200: processed, already applied or ignored
        400: invalid signature or payload
        409: paid but stock could not be decremented (order left pending)
        502: provider could not be queried, retry later
    """
    from storefront.blueprints.metrics import webhook_events_total

    provider = get_payment_provider()
    try:
        event = provider.verify_webhook(request.get_data(), _signature_header())
    except InvalidWebhookSignatureError as e:
        webhook_events_total.labels(result='rejected').inc()
        logger.warning(f"[WEBHOOK] Rejected: {e.message}")
        return jsonify({'success': False, 'error': e.message}), 400
    except PaymentProviderError as e:
        webhook_events_total.labels(result='provider_error').inc()
        logger.error(f"[WEBHOOK] Provider lookup failed: {e.message}")
        return jsonify({'success': False, 'error': e.message}), 502

    logger.info(f"[WEBHOOK] Event {event.type} for order {event.order_id}")

    session = get_session()
    try:
        result = fulfillment_service.apply_payment_event(session, event)
    except OutOfStockError as e:
        webhook_events_total.labels(result='stock').inc()
        logger.error(f"[WEBHOOK] Order {event.order_id} could not be fulfilled: {e.message}")
        return jsonify({'success': False, 'error': e.message}), 409

    webhook_events_total.labels(result=result).inc()
    return jsonify({'success': True, 'status': result}), 200
