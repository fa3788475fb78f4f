"""Flatten M-Pesa result callbacks into plain dicts.

Push-payment (STK) callbacks nest their values under
Body.stkCallback.CallbackMetadata.Item as Name/Value pairs; business-payment
(B2C) callbacks use Result.ResultParameters.ResultParameter as Key/Value pairs.
"""
from decimal import Decimal, InvalidOperation

from ..validators import normalize_phone_number

SUCCESS_CODE = 0


class CallbackFormatError(ValueError):
    pass


def _result_code(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise CallbackFormatError(f'Invalid ResultCode: {value!r}')


def _text(value):
    if value is None:
        return None
    return str(value).strip()


def _amount(value):
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _section(container, name, list_name):
    section = container.get(name)
    if not isinstance(section, dict):
        return []
    items = section.get(list_name)
    return items if isinstance(items, list) else []


def _pairs(items, key_name, value_name):
    values = {}
    for item in items:
        if isinstance(item, dict) and key_name in item:
            values[item[key_name]] = item.get(value_name)
    return values


def _recipient_phone(value):
    # "254708374149 - John Doe"
    text = _text(value)
    if not text:
        return None
    return normalize_phone_number(text.split(' - ')[0]) or None


def parse_stk_callback(payload):
    if not isinstance(payload, dict):
        raise CallbackFormatError('Callback body must be a JSON object')
    body = payload.get('Body')
    stk = body.get('stkCallback') if isinstance(body, dict) else None
    if not isinstance(stk, dict):
        raise CallbackFormatError('Callback has no Body.stkCallback')

    values = _pairs(_section(stk, 'CallbackMetadata', 'Item'), 'Name', 'Value')
    phone = _text(values.get('PhoneNumber'))

    return {
        'merchant_request_id': _text(stk.get('MerchantRequestID')) or '',
        'checkout_request_id': _text(stk.get('CheckoutRequestID')) or '',
        'result_code': _result_code(stk.get('ResultCode')),
        'result_desc': _text(stk.get('ResultDesc')) or '',
        'amount': _amount(values.get('Amount')),
        'receipt': _text(values.get('MpesaReceiptNumber')),
        'transaction_date': _text(values.get('TransactionDate')),
        'phone_number': normalize_phone_number(phone) if phone else None,
    }


def parse_b2c_callback(payload):
    if not isinstance(payload, dict):
        raise CallbackFormatError('Callback body must be a JSON object')
    result = payload.get('Result')
    if not isinstance(result, dict):
        raise CallbackFormatError('Callback has no Result')

    values = _pairs(_section(result, 'ResultParameters', 'ResultParameter'), 'Key', 'Value')

    return {
        'conversation_id': _text(result.get('ConversationID')) or '',
        'originator_conversation_id': _text(result.get('OriginatorConversationID')) or '',
        'transaction_id': _text(result.get('TransactionID')) or '',
        'result_code': _result_code(result.get('ResultCode')),
        'result_desc': _text(result.get('ResultDesc')) or '',
        'amount': _amount(values.get('TransactionAmount')),
        'receipt': _text(values.get('TransactionReceipt')),
        'transaction_date': _text(values.get('TransactionCompletionDate')),
        'phone_number': _recipient_phone(values.get('RecipientPhoneNumber')),
    }
