"""School fee arithmetic: which standard fee applies to a class and what a student still owes."""

from decimal import Decimal

FEE_CATEGORIES = ('JSS', 'SSS', 'BASIC')


def fee_category_for_level(level):
    """Map a class level (e.g. 'JSS2') to its fee category."""
    text = (level or '').strip().upper()
    if text.startswith('JSS'):
        return 'JSS'
    if text.startswith('SSS'):
        return 'SSS'
    return 'BASIC'


def _money(value):
    if value is None:
        return Decimal('0')
    return Decimal(str(value))


def fee_statement(standard_fee, fees=None):
    """
    Build the fee statement shown on a student's profile.

    net payable = standard fee + previous debt - scholarship
    balance     = net payable - amount paid
    """
    fees = fees or {}
    standard = _money(standard_fee)
    previous_debt = _money(fees.get('previous_debt'))
    scholarship = _money(fees.get('scholarship_amount'))
    paid = _money(fees.get('amount_paid'))

    net_payable = standard + previous_debt - scholarship
    balance = net_payable - paid
    if balance <= 0:
        status = 'paid'
    elif paid > 0:
        status = 'partial'
    else:
        status = 'owing'
    return {
        'standard_fee': float(standard),
        'previous_debt': float(previous_debt),
        'scholarship_amount': float(scholarship),
        'amount_paid': float(paid),
        'net_payable': float(net_payable),
        'balance': float(balance),
        'status': status,
    }
