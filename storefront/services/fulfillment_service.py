"""
Order fulfillment - reacts to payment outcomes.

pending -> paid happens at most once per order: the status flip is a guarded
UPDATE (WHERE status = 'pending') sharing its transaction with the
compare-and-decrement stock updates, so duplicate webhooks, the return URL and
concurrent deliveries all collapse into a single decrement and a single email.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from flask import current_app, has_app_context
from sqlalchemy import func, update

from storefront.exceptions import BusinessLogicError, NotFoundError, OutOfStockError
from storefront.models import (
    Order, OrderItem, OrderStatus, Product, PromoCode, StockMovement, StockMovementReason, AuditAction
)
from storefront.services import audit_service, email_service
from storefront.services.payment_provider import (
    EVENT_COMPLETED, EVENT_EXPIRED, PaymentEvent, get_payment_provider
)

logger = logging.getLogger(__name__)

RESULT_PROCESSED = 'processed'
RESULT_ALREADY_APPLIED = 'already_applied'
RESULT_IGNORED = 'ignored'


def _setting(name, default):
    if has_app_context():
        return current_app.config.get(name, default)
    return default


def _guarded_transition(session, order_id: int, target: OrderStatus, **values) -> bool:
    """Move an order out of `pending`. Returns False when another writer got there first."""
    result = session.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == OrderStatus.PENDING)
        .values(status=target, updated_at=datetime.now(timezone.utc), **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _decrement_stock(session, order_id: int):
    """Compare-and-decrement every line. Returns the touched product ids."""
    lines = (
        session.query(OrderItem.product_id, OrderItem.product_name, OrderItem.quantity)
        .filter(OrderItem.order_id == order_id)
        .order_by(OrderItem.product_id)
        .all()
    )
    for product_id, product_name, quantity in lines:
        result = session.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise OutOfStockError(product_name)

        session.add(StockMovement(
            product_id=product_id,
            quantity_change=-quantity,
            reason=StockMovementReason.SALE,
            order_id=order_id,
        ))
    return [line.product_id for line in lines]


def _count_promo_use(session, promo_code: Optional[str]) -> None:
    if not promo_code or not _setting('PROMO_COUNT_USES', False):
        return
    session.execute(
        update(PromoCode)
        .where(func.upper(PromoCode.code) == promo_code.upper())
        .values(current_uses=PromoCode.current_uses + 1)
        .execution_options(synchronize_session=False)
    )


def _notify_paid(session, order_id: int, product_ids) -> None:
    order = session.get(Order, order_id)
    email_service.send_order_confirmation(order)
    email_service.send_admin_alert(order.order_number, order.total)

    low_stock = [
        p for p in session.query(Product).filter(Product.id.in_(product_ids)).all()
        if p.stock <= p.stock_alert_threshold
    ]
    if low_stock:
        email_service.send_low_stock_alert(low_stock)


def mark_order_paid(session, order_id: int, payment_reference: Optional[str] = None) -> bool:
    """
    pending -> paid, decrement stock, record the sale movements, then notify.

    Returns:
        True if this call applied the transition, False if the order was no
        longer pending (already paid, cancelled, ...).

    Raises:
        NotFoundError: unknown order
        OutOfStockError: a line cannot be covered; nothing is written and the
            order stays pending
    """
    from storefront.blueprints.metrics import orders_paid_total

    order = session.get(Order, order_id)
    if order is None:
        raise NotFoundError(f'Order {order_id} not found')
    promo_code = order.promo_code
    order_number = order.order_number

    try:
        if not _guarded_transition(session, order_id, OrderStatus.PAID,
                                   payment_reference=payment_reference,
                                   paid_at=datetime.now(timezone.utc)):
            session.rollback()
            logger.info(f"[FULFILLMENT] Order {order_number} is not pending, payment already applied")
            return False

        product_ids = _decrement_stock(session, order_id)
        _count_promo_use(session, promo_code)
        session.commit()
    except OutOfStockError as e:
        session.rollback()
        logger.error(f"[FULFILLMENT] Order {order_number} paid but stock is short: {e.message}. Left pending.")
        raise
    except Exception:
        session.rollback()
        raise

    orders_paid_total.inc()
    logger.info(f"[FULFILLMENT] Order {order_number} marked paid (ref {payment_reference})")

    _notify_paid(session, order_id, product_ids)
    return True


def mark_order_cancelled(session, order_id: int) -> bool:
    """pending -> cancelled. No stock or notification side effects."""
    try:
        changed = _guarded_transition(session, order_id, OrderStatus.CANCELLED)
        session.commit()
    except Exception:
        session.rollback()
        raise
    if changed:
        logger.info(f"[FULFILLMENT] Order {order_id} cancelled (payment session expired)")
    return changed


def update_order_status(session, order_id: int, status, actor: Optional[str] = None) -> Order:
    """
    Back-office status edit. Only checks the value belongs to the lifecycle.
    """
    new_status = OrderStatus.parse(status)
    if new_status is None:
        raise BusinessLogicError('Invalid status')

    order = session.get(Order, order_id)
    if order is None:
        raise NotFoundError('Order not found')

    previous = order.status
    order.status = new_status
    audit_service.log_action(
        session,
        AuditAction.ORDER_STATUS_UPDATE,
        resource_type='order',
        resource_id=order.id,
        details={'order_number': order.order_number, 'from': previous.value, 'to': new_status.value},
        actor=actor,
    )
    try:
        session.commit()
    except Exception:
        session.rollback()
        raise
    logger.info(f"[ADMIN] Order {order.order_number}: {previous.value} -> {new_status.value}")
    return order


def apply_payment_event(session, event: PaymentEvent) -> str:
    """Apply a verified provider event. Returns processed / already_applied / ignored."""
    if event.type not in (EVENT_COMPLETED, EVENT_EXPIRED) or event.order_id is None:
        return RESULT_IGNORED

    if session.get(Order, event.order_id) is None:
        logger.warning(f"[FULFILLMENT] Payment event for unknown order {event.order_id}")
        return RESULT_IGNORED

    if event.type == EVENT_COMPLETED:
        applied = mark_order_paid(session, event.order_id, event.reference)
    else:
        applied = mark_order_cancelled(session, event.order_id)
    return RESULT_PROCESSED if applied else RESULT_ALREADY_APPLIED


def reconcile_return(session, order: Order, payment_reference: Optional[str], provider=None) -> str:
    """
    Return-URL path: ask the provider what happened to the payment and apply it.

    Redundant with the webhook by design of the guard: whichever arrives second
    is a no-op.
    """
    if order.status != OrderStatus.PENDING or not payment_reference:
        return RESULT_IGNORED

    provider = provider or get_payment_provider()
    event = provider.get_payment(payment_reference)
    if event.order_id != order.id:
        logger.warning(
            f"[FULFILLMENT] Payment {payment_reference} belongs to order {event.order_id}, not {order.id}"
        )
        return RESULT_IGNORED
    return apply_payment_event(session, event)


def cancel_stale_pending_orders(session, older_than: Optional[timedelta] = None,
                                now: Optional[datetime] = None) -> int:
    """Cancel pending orders whose payment session can no longer complete."""
    now = now or datetime.now(timezone.utc)
    if older_than is None:
        older_than = timedelta(minutes=int(_setting('PAYMENT_SESSION_TTL_MINUTES', 30)))
    cutoff = now - older_than

    stale_ids = [
        row.id for row in session.query(Order.id)
        .filter(Order.status == OrderStatus.PENDING, Order.created_at < cutoff)
        .all()
    ]
    cancelled = [order_id for order_id in stale_ids if mark_order_cancelled(session, order_id)]

    if cancelled:
        audit_service.log_action(
            session,
            AuditAction.ORDERS_EXPIRED,
            resource_type='order',
            details={'order_ids': cancelled, 'cutoff': cutoff.isoformat()},
        )
        session.commit()
    logger.info(f"[FULFILLMENT] {len(cancelled)} stale pending order(s) cancelled")
    return len(cancelled)
