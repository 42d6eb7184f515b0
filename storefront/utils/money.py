"""Money helpers: parsing, rounding and display of euro amounts."""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal('0.01')
ZERO = Decimal('0.00')


def to_money(value) -> Decimal:
    """
    Coerce a number/string/Decimal to a 2-place Decimal (half-up).

    Raises:
        ValueError: if the value is not numeric.
    """
    if value is None or value == '':
        raise ValueError('Montant invalide')
    if isinstance(value, float):
        value = repr(value)
    try:
        amount = Decimal(str(value).strip().replace(',', '.'))
    except (InvalidOperation, ValueError):
        raise ValueError('Montant invalide')
    if not amount.is_finite():
        raise ValueError('Montant invalide')
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def round_money(value: Decimal) -> Decimal:
    """Round an already-Decimal amount to cents."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def optional_money(value):
    """Like to_money but maps None/'' to None."""
    if value is None or value == '':
        return None
    return to_money(value)


def format_price(value) -> str:
    """Format an amount the French way: 1 234,50 €."""
    amount = round_money(Decimal(str(value)))
    whole, cents = f"{amount:.2f}".split('.')
    sign = ''
    if whole.startswith('-'):
        sign, whole = '-', whole[1:]
    groups = []
    while len(whole) > 3:
        groups.insert(0, whole[-3:])
        whole = whole[:-3]
    groups.insert(0, whole)
    return f"{sign}{' '.join(groups)},{cents} €"
