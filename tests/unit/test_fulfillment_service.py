"""
Unit tests for order fulfillment: paid transition, stock decrement, notifications.
"""

import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, update
from sqlalchemy.orm import sessionmaker

from storefront.database import Base
from storefront.exceptions import BusinessLogicError, NotFoundError, OutOfStockError
from storefront.models import (
    AuditLog, AuditAction, Category, DeliveryMethod, Order, OrderItem, OrderStatus, Product, PromoCode,
    StockMovement, StockMovementReason,
)
from storefront.services import fulfillment_service
from storefront.services.payment_provider import (
    EVENT_COMPLETED, EVENT_EXPIRED, EVENT_IGNORED, PaymentEvent
)


@pytest.fixture
def last_unit(session, category):
    """A product with a single unit left."""
    product = Product(
        category_id=category.id,
        name='Saint-Honoré',
        slug='saint-honore',
        price=Decimal('32.00'),
        stock=1,
        stock_alert_threshold=0,
        images=[],
    )
    session.add(product)
    session.commit()
    return product


def stock_of(session, product_id):
    return session.get(Product, product_id).stock


class TestMarkOrderPaid:
    """pending -> paid."""

    def test_marks_paid_and_decrements_stock(self, session, place_order, product, mail_spy):
        order = place_order((product, 2))
        order_id, product_id = order.id, product.id

        applied = fulfillment_service.mark_order_paid(session, order_id, 'pay-123')

        assert applied is True
        order = session.get(Order, order_id)
        assert order.status == OrderStatus.PAID
        assert order.payment_reference == 'pay-123'
        assert order.paid_at is not None
        assert stock_of(session, product_id) == 8

        movement = session.query(StockMovement).filter_by(order_id=order_id).one()
        assert movement.product_id == product_id
        assert movement.quantity_change == -2
        assert movement.reason == StockMovementReason.SALE

        mail_spy.assert_called_once()
        assert mail_spy.call_args[0][0].id == order_id

    def test_second_call_is_a_no_op(self, session, place_order, product, mail_spy):
        """Duplicate notifications: one decrement, one email."""
        order_id, product_id = place_order((product, 2)).id, product.id

        assert fulfillment_service.mark_order_paid(session, order_id, 'pay-123') is True
        assert fulfillment_service.mark_order_paid(session, order_id, 'pay-123') is False

        assert stock_of(session, product_id) == 8
        assert session.query(StockMovement).filter_by(order_id=order_id).count() == 1
        assert mail_spy.call_count == 1

    def test_unknown_order(self, session, mail_spy):
        with pytest.raises(NotFoundError):
            fulfillment_service.mark_order_paid(session, 12345)

    def test_last_unit_race(self, session, place_order, last_unit, mail_spy):
        """Two paid orders for the last unit: the second stays pending, stock never negative."""
        first_id = place_order((last_unit, 1), email='a@example.com').id
        second_id = place_order((last_unit, 1), email='b@example.com').id
        product_id = last_unit.id

        assert fulfillment_service.mark_order_paid(session, first_id, 'pay-a') is True

        with pytest.raises(OutOfStockError):
            fulfillment_service.mark_order_paid(session, second_id, 'pay-b')

        assert stock_of(session, product_id) == 0
        assert session.get(Order, first_id).status == OrderStatus.PAID
        second = session.get(Order, second_id)
        assert second.status == OrderStatus.PENDING
        assert second.paid_at is None
        assert session.query(StockMovement).filter_by(order_id=second_id).count() == 0
        assert mail_spy.call_count == 1

    def test_multi_line_shortfall_rolls_back_every_line(self, session, place_order, product, last_unit,
                                                        mail_spy):
        """A short line undoes the decrements already made for the other lines."""
        order_id = place_order((product, 3), (last_unit, 1)).id
        product_id, last_id = product.id, last_unit.id
        session.execute(update(Product).where(Product.id == last_id).values(stock=0))
        session.commit()

        with pytest.raises(OutOfStockError):
            fulfillment_service.mark_order_paid(session, order_id)

        assert stock_of(session, product_id) == 10
        assert session.get(Order, order_id).status == OrderStatus.PENDING
        mail_spy.assert_not_called()

    def test_cancelled_order_is_not_paid(self, session, place_order, product, mail_spy):
        order_id, product_id = place_order((product, 1)).id, product.id
        fulfillment_service.mark_order_cancelled(session, order_id)

        assert fulfillment_service.mark_order_paid(session, order_id, 'late') is False
        assert stock_of(session, product_id) == 10
        assert session.get(Order, order_id).status == OrderStatus.CANCELLED

    def test_low_stock_alert(self, session, place_order, product, mocker):
        send_low_stock = mocker.patch('storefront.services.email_service.send_low_stock_alert')
        mocker.patch('storefront.services.email_service.send_order_confirmation')
        mocker.patch('storefront.services.email_service.send_admin_alert')
        order_id = place_order((product, 8)).id

        fulfillment_service.mark_order_paid(session, order_id)

        send_low_stock.assert_called_once()
        assert [p.slug for p in send_low_stock.call_args[0][0]] == ['macaron-framboise']

    def test_email_failure_does_not_undo_payment(self, app, session, place_order, product, mocker):
        """Mail errors are reported as False, the order stays paid."""
        app.config.update(MAIL_SUPPRESS_SEND=False, MAIL_SERVER='smtp.test', MAIL_USERNAME='boutique')
        send = mocker.patch('storefront.services.email_service.mail.send', side_effect=OSError('smtp down'))
        order_id = place_order((product, 1)).id

        assert fulfillment_service.mark_order_paid(session, order_id) is True
        assert session.get(Order, order_id).status == OrderStatus.PAID
        assert send.called


class TestPromoUsage:

    def test_not_counted_by_default(self, session, place_order, product, save10, mail_spy):
        order_id = place_order((product, 2), promo='SAVE10').id
        fulfillment_service.mark_order_paid(session, order_id)

        assert session.get(PromoCode, save10.id).current_uses == 0

    def test_counted_when_enabled(self, app, session, place_order, product, save10, mail_spy):
        app.config['PROMO_COUNT_USES'] = True
        order_id = place_order((product, 2), promo='SAVE10').id

        fulfillment_service.mark_order_paid(session, order_id)
        fulfillment_service.mark_order_paid(session, order_id)

        assert session.get(PromoCode, save10.id).current_uses == 1


class TestPaymentEvents:
    """Verified provider events."""

    def test_completed(self, session, place_order, product, mail_spy):
        order_id = place_order((product, 1)).id
        event = PaymentEvent(type=EVENT_COMPLETED, order_id=order_id, reference='pay-1')

        assert fulfillment_service.apply_payment_event(session, event) == fulfillment_service.RESULT_PROCESSED
        assert fulfillment_service.apply_payment_event(session, event) == fulfillment_service.RESULT_ALREADY_APPLIED

    def test_expired_cancels(self, session, place_order, product, mail_spy):
        order_id = place_order((product, 1)).id
        event = PaymentEvent(type=EVENT_EXPIRED, order_id=order_id)

        assert fulfillment_service.apply_payment_event(session, event) == fulfillment_service.RESULT_PROCESSED
        assert session.get(Order, order_id).status == OrderStatus.CANCELLED
        mail_spy.assert_not_called()

    def test_unknown_order_ignored(self, session, mail_spy):
        event = PaymentEvent(type=EVENT_COMPLETED, order_id=999, reference='pay-x')
        assert fulfillment_service.apply_payment_event(session, event) == fulfillment_service.RESULT_IGNORED

    def test_other_event_ignored(self, session, place_order, product, mail_spy):
        order_id = place_order((product, 1)).id
        event = PaymentEvent(type=EVENT_IGNORED, order_id=order_id)

        assert fulfillment_service.apply_payment_event(session, event) == fulfillment_service.RESULT_IGNORED
        assert session.get(Order, order_id).status == OrderStatus.PENDING


class TestReconcileReturn:
    """Return URL asks the provider about the payment."""

    def test_approved_payment_marks_paid(self, session, place_order, provider, product, mail_spy):
        order = place_order((product, 1))
        provider.payments['pay-9'] = PaymentEvent(type=EVENT_COMPLETED, order_id=order.id, reference='pay-9')

        result = fulfillment_service.reconcile_return(session, order, 'pay-9', provider)

        assert result == fulfillment_service.RESULT_PROCESSED
        assert session.get(Order, order.id).status == OrderStatus.PAID

    def test_payment_for_another_order(self, session, place_order, provider, product, mail_spy):
        order = place_order((product, 1))
        provider.payments['pay-9'] = PaymentEvent(type=EVENT_COMPLETED, order_id=order.id + 100,
                                                  reference='pay-9')

        result = fulfillment_service.reconcile_return(session, order, 'pay-9', provider)

        assert result == fulfillment_service.RESULT_IGNORED
        assert session.get(Order, order.id).status == OrderStatus.PENDING

    def test_payment_without_order_id(self, session, place_order, provider, product, mail_spy):
        """A payment that names no order is never attached to the visited one."""
        order = place_order((product, 1))
        order_id, product_id = order.id, product.id
        provider.payments['foreign-pay'] = PaymentEvent(type=EVENT_COMPLETED, order_id=None,
                                                        reference='foreign-pay')

        result = fulfillment_service.reconcile_return(session, order, 'foreign-pay', provider)

        assert result == fulfillment_service.RESULT_IGNORED
        assert session.get(Order, order_id).status == OrderStatus.PENDING
        assert session.get(Product, product_id).stock == 10
        mail_spy.assert_not_called()

    def test_without_reference(self, session, place_order, provider, product, mail_spy):
        order = place_order((product, 1))
        assert fulfillment_service.reconcile_return(session, order, None, provider) == \
            fulfillment_service.RESULT_IGNORED


class TestUpdateOrderStatus:
    """Back-office status edits."""

    def test_valid_status_is_audited(self, session, place_order, product):
        order_id = place_order((product, 1)).id

        order = fulfillment_service.update_order_status(session, order_id, 'preparing', actor='gerant@example.com')

        assert order.status == OrderStatus.PREPARING
        entry = session.query(AuditLog).filter_by(action=AuditAction.ORDER_STATUS_UPDATE).one()
        assert entry.admin_email == 'gerant@example.com'
        assert '"to": "preparing"' in entry.details

    def test_invalid_status(self, session, place_order, product):
        order_id = place_order((product, 1)).id

        with pytest.raises(BusinessLogicError):
            fulfillment_service.update_order_status(session, order_id, 'lost-in-space')

        assert session.get(Order, order_id).status == OrderStatus.PENDING
        assert session.query(AuditLog).count() == 0

    def test_unknown_order(self, session):
        with pytest.raises(NotFoundError):
            fulfillment_service.update_order_status(session, 777, 'paid')


class TestStalePendingOrders:

    def test_cancels_only_old_pending_orders(self, session, place_order, product):
        old_id = place_order((product, 1), email='old@example.com').id
        fresh_id = place_order((product, 1), email='fresh@example.com').id
        session.execute(
            update(Order).where(Order.id == old_id)
            .values(created_at=datetime.now(timezone.utc) - timedelta(hours=2))
        )
        session.commit()

        count = fulfillment_service.cancel_stale_pending_orders(session, older_than=timedelta(minutes=30))

        assert count == 1
        assert session.get(Order, old_id).status == OrderStatus.CANCELLED
        assert session.get(Order, fresh_id).status == OrderStatus.PENDING
        assert session.query(AuditLog).filter_by(action=AuditAction.ORDERS_EXPIRED).count() == 1

    def test_nothing_to_cancel(self, session, place_order, product):
        place_order((product, 1))

        assert fulfillment_service.cancel_stale_pending_orders(session) == 0
        assert session.query(AuditLog).count() == 0


@pytest.fixture
def file_db(tmp_path):
    """A file-backed SQLite database so two connections really compete."""
    engine = create_engine(f"sqlite:///{tmp_path / 'race.db'}", connect_args={'timeout': 30})
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine)
    engine.dispose()


class TestConcurrentPayments:

    def test_two_threads_for_the_last_unit(self, file_db, mail_spy):
        """Both payments land at once: one order paid, one refused, stock at zero."""
        setup = file_db()
        category = Category(name='Entremets', slug='entremets', display_order=1)
        setup.add(category)
        setup.flush()
        product = Product(category_id=category.id, name='Fraisier', slug='fraisier', price=Decimal('28.00'),
                          stock=1, stock_alert_threshold=0, images=[])
        setup.add(product)
        setup.flush()
        order_ids = []
        for n in (1, 2):
            order = Order(
                order_number=f'IGR-20260101-RAC{n}', customer_name='Client', customer_email=f'c{n}@example.com',
                delivery_method=DeliveryMethod.PICKUP, status=OrderStatus.PENDING,
                subtotal=Decimal('28.00'), shipping_cost=Decimal('0.00'), discount=Decimal('0.00'),
                total=Decimal('28.00'),
            )
            order.items.append(OrderItem(product_id=product.id, product_name='Fraisier', quantity=1,
                                         unit_price=Decimal('28.00'), total_price=Decimal('28.00')))
            setup.add(order)
            setup.flush()
            order_ids.append(order.id)
        product_id = product.id
        setup.commit()
        setup.close()

        barrier = threading.Barrier(2)
        outcomes = {}

        def pay(order_id):
            session = file_db()
            try:
                barrier.wait()
                outcomes[order_id] = fulfillment_service.mark_order_paid(session, order_id, f'pay-{order_id}')
            except OutOfStockError:
                outcomes[order_id] = 'short'
            finally:
                session.close()

        threads = [threading.Thread(target=pay, args=(order_id,)) for order_id in order_ids]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(outcomes.values(), key=str) == [True, 'short']

        check = file_db()
        statuses = sorted(check.get(Order, order_id).status.value for order_id in order_ids)
        assert statuses == ['paid', 'pending']
        assert check.get(Product, product_id).stock == 0
        assert check.query(StockMovement).count() == 1
        check.close()
        assert mail_spy.call_count == 1
