"""
Promo code rules and administration.

The rules are pure functions, so the discount shown when a code is applied to the cart can be
reproduced at checkout when PROMO_REVALIDATE_AT_CHECKOUT is on.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import func

from storefront.exceptions import (
    BusinessLogicError, NotFoundError,
    InvalidPromoError, ExpiredPromoError, PromoExhaustedError, MinimumNotMetError
)
from storefront.models import PromoCode, DiscountType, AuditAction
from storefront.services import audit_service
from storefront.utils.money import round_money, to_money, optional_money


def normalize_code(code: str) -> str:
    return (code or '').strip().upper()


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def find_promo(session, code: str) -> Optional[PromoCode]:
    """Case-insensitive lookup by code."""
    normalized = normalize_code(code)
    if not normalized:
        return None
    return session.query(PromoCode).filter(func.upper(PromoCode.code) == normalized).first()


def check_promo_usable(promo: Optional[PromoCode], subtotal: Decimal, now: Optional[datetime] = None) -> None:
    """
    Raise the first rule the promo breaks: invalid, expired, exhausted, minimum.
    """
    now = now or datetime.now(timezone.utc)

    if promo is None or not promo.is_active:
        raise InvalidPromoError()

    expires_at = as_utc(promo.expires_at)
    if expires_at is not None and expires_at < now:
        raise ExpiredPromoError()

    if promo.max_uses is not None and promo.current_uses >= promo.max_uses:
        raise PromoExhaustedError()

    if promo.min_order_amount is not None and subtotal < promo.min_order_amount:
        raise MinimumNotMetError(promo.min_order_amount)


def compute_discount(discount_type, discount_value, subtotal: Decimal) -> Decimal:
    """
    percentage: round(subtotal * value / 100, 2)
    fixed: value verbatim (total is floored at zero by the cart, not here)
    """
    if isinstance(discount_type, str):
        discount_type = DiscountType(discount_type)
    value = Decimal(str(discount_value))
    if discount_type == DiscountType.PERCENTAGE:
        return round_money(subtotal * value / Decimal('100'))
    return round_money(value)


def evaluate_promo(session, code: str, subtotal: Decimal, now: Optional[datetime] = None):
    """Look up and validate a code. Returns (promo, discount)."""
    promo = find_promo(session, code)
    check_promo_usable(promo, subtotal, now)
    return promo, compute_discount(promo.discount_type, promo.discount_value, subtotal)


# =====================================================
# BACK-OFFICE
# =====================================================

def _parse_expires_at(value) -> Optional[datetime]:
    if value in (None, ''):
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    try:
        return as_utc(datetime.fromisoformat(str(value)))
    except ValueError:
        raise BusinessLogicError('Invalid expiry date')


def _clean_promo_values(data: dict, partial: bool = False) -> dict:
    values = {}
    try:
        if 'code' in data or not partial:
            values['code'] = normalize_code(data.get('code'))
            if not values['code']:
                raise BusinessLogicError('Code is required')
        if 'discount_type' in data or not partial:
            values['discount_type'] = DiscountType(data.get('discount_type'))
        if 'discount_value' in data or not partial:
            values['discount_value'] = to_money(data.get('discount_value'))
            if values['discount_value'] <= 0:
                raise BusinessLogicError('Discount value must be greater than 0')
        if 'min_order_amount' in data:
            values['min_order_amount'] = optional_money(data.get('min_order_amount'))
        if 'max_uses' in data:
            max_uses = data.get('max_uses')
            values['max_uses'] = int(max_uses) if max_uses not in (None, '') else None
        if 'expires_at' in data:
            values['expires_at'] = _parse_expires_at(data.get('expires_at'))
        if 'is_active' in data:
            values['is_active'] = bool(data.get('is_active'))
    except ValueError:
        raise BusinessLogicError('Invalid promo code data')

    if values.get('discount_type') == DiscountType.PERCENTAGE and values.get('discount_value', 0) > 100:
        raise BusinessLogicError('A percentage cannot exceed 100')
    return values


def list_promos(session):
    return session.query(PromoCode).order_by(PromoCode.created_at.desc(), PromoCode.id.desc()).all()


def create_promo(session, data: dict, actor: Optional[str] = None) -> PromoCode:
    values = _clean_promo_values(data)
    if find_promo(session, values['code']):
        raise BusinessLogicError('This code already exists')

    promo = PromoCode(**values)
    session.add(promo)
    session.flush()
    audit_service.log_action(session, AuditAction.PROMO_CREATE, 'promo_code', promo.id,
                             {'code': promo.code}, actor=actor)
    try:
        session.commit()
    except Exception:
        session.rollback()
        raise
    return promo


def update_promo(session, promo_id: int, data: dict, actor: Optional[str] = None) -> PromoCode:
    promo = session.get(PromoCode, promo_id)
    if not promo:
        raise NotFoundError('Promo code not found')

    values = _clean_promo_values(data, partial=True)
    if 'code' in values and values['code'] != promo.code:
        if find_promo(session, values['code']):
            raise BusinessLogicError('This code already exists')

    for field, value in values.items():
        setattr(promo, field, value)
    audit_service.log_action(session, AuditAction.PROMO_UPDATE, 'promo_code', promo.id,
                             {k: str(v) for k, v in values.items()}, actor=actor)
    try:
        session.commit()
    except Exception:
        session.rollback()
        raise
    return promo


def delete_promo(session, promo_id: int, actor: Optional[str] = None) -> None:
    promo = session.get(PromoCode, promo_id)
    if not promo:
        raise NotFoundError('Promo code not found')

    code = promo.code
    session.delete(promo)
    audit_service.log_action(session, AuditAction.PROMO_DELETE, 'promo_code', promo_id,
                             {'code': code}, actor=actor)
    try:
        session.commit()
    except Exception:
        session.rollback()
        raise
