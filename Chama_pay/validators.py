import re
from decimal import Decimal, InvalidOperation

WALLET_ADDRESS_RE = re.compile(r'^0x[a-fA-F0-9]{40}$')


class InvalidPhoneNumber(ValueError):
    pass


class InvalidWalletAddress(ValueError):
    pass


class InvalidAmount(ValueError):
    pass


def normalize_phone_number(phone):
    return re.sub(r'\D', '', phone or '')


def is_valid_phone(phone):
    if not phone:
        return False
    raw = normalize_phone_number(phone)
    return 8 <= len(raw) <= 15


def format_phone_number(phone, country_code='254'):
    """Return the bare country-code-prefixed form the gateway expects.

    "0712345678", "+254712345678" and "712345678" all become "254712345678".
    """
    if not is_valid_phone(phone):
        raise InvalidPhoneNumber(f'Invalid phone number: {phone!r}')

    digits = normalize_phone_number(phone)
    if digits.startswith('0'):
        digits = country_code + digits[1:]
    if digits.startswith(country_code):
        return digits
    return country_code + digits


def mask_phone_number(phone):
    raw = normalize_phone_number(phone)
    if len(raw) <= 4:
        return '••••'
    return f"{'•' * (len(raw) - 4)}{raw[-4:]}"


def is_valid_wallet_address(address):
    if not address or not isinstance(address, str):
        return False
    return bool(WALLET_ADDRESS_RE.match(address))


def require_wallet_address(address):
    if not is_valid_wallet_address(address):
        raise InvalidWalletAddress(f'Invalid wallet address: {address!r}')
    return address


def parse_amount(raw, allow_zero=False):
    if raw is None or str(raw).strip() == '':
        raise InvalidAmount('Amount is required')
    try:
        amount = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        raise InvalidAmount('Invalid amount format')
    if not amount.is_finite():
        raise InvalidAmount('Invalid amount format')
    if amount < 0 or (amount == 0 and not allow_zero):
        raise InvalidAmount('Amount must be greater than zero')
    return amount
