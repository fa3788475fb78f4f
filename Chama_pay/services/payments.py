"""Deposit and withdrawal orchestration.

Initiation talks to the gateway first and only records a PENDING settlement
once the gateway has accepted the request; any failure before that leaves no
ledger state. Callbacks are correlated by the gateway's request id, falling
back to the single pending record for the phone number, and never raise
towards the gateway.
"""
import logging
from decimal import Decimal

from django.conf import settings
from django.db import transaction as db_transaction

from ..validators import format_phone_number, mask_phone_number, parse_amount, require_wallet_address
from . import exchange_rates, ledger, mpesa_client, settlement_legs
from .mpesa_callbacks import SUCCESS_CODE, parse_b2c_callback, parse_stk_callback

logger = logging.getLogger(__name__)


def _outcome(processed, reason, record=None):
    return {
        'processed': processed,
        'reason': reason,
        'settlement_id': record.id if record else None,
    }


def _canonical_phone(phone_number):
    return format_phone_number(phone_number, getattr(settings, 'MPESA_COUNTRY_CODE', '254'))


def _ensure_no_pending(phone, direction):
    if ledger.has_pending(phone, direction):
        raise ledger.DuplicatePendingSettlement(
            f'A {direction.lower()} for {phone} is already awaiting confirmation'
        )


def initiate_deposit(owner_address, phone_number, amount_local):
    require_wallet_address(owner_address)
    amount = parse_amount(amount_local)
    phone = _canonical_phone(phone_number)
    logger.info('Initiating deposit for wallet %s, phone %s, amount %s',
                owner_address, mask_phone_number(phone), amount)

    _ensure_no_pending(phone, 'DEPOSIT')

    response = mpesa_client.stk_push(phone, amount)
    record = ledger.create_pending(
        'DEPOSIT', owner_address, phone, amount,
        amount_token=Decimal('0'),
        gateway_request_id=response['checkout_request_id'],
        merchant_request_id=response['merchant_request_id'],
        description='M-Pesa deposit initiated',
    )

    logger.info('Successfully initiated deposit: %s', response['checkout_request_id'])
    return {**response, 'transaction_id': record.id}


def initiate_withdrawal(owner_address, phone_number, amount_local):
    require_wallet_address(owner_address)
    amount = parse_amount(amount_local)
    phone = _canonical_phone(phone_number)
    logger.info('Initiating withdrawal for wallet %s, phone %s, amount %s',
                owner_address, mask_phone_number(phone), amount)

    _ensure_no_pending(phone, 'WITHDRAWAL')

    # token debit is sized at initiation, not at resolution
    amount_token = exchange_rates.local_to_token(amount)

    response = mpesa_client.b2c_payment(phone, amount)
    record = ledger.create_pending(
        'WITHDRAWAL', owner_address, phone, amount,
        amount_token=amount_token,
        gateway_request_id=response['conversation_id'],
        merchant_request_id=response['originator_conversation_id'],
        description='M-Pesa withdrawal initiated',
    )

    logger.info('Successfully initiated withdrawal: %s', response['conversation_id'])
    return {**response, 'amount_token': amount_token, 'transaction_id': record.id}


def _correlate(gateway_request_id, phone_number, direction):
    record = ledger.find_by_gateway_request(gateway_request_id, direction)
    if record is not None:
        return record
    if not phone_number:
        return None
    return ledger.find_matching_pending(phone_number, direction)


def _fail_correlated(gateway_request_id, direction, reason):
    record = ledger.find_by_gateway_request(gateway_request_id, direction)
    if record is None or record.is_terminal:
        return None
    try:
        return ledger.fail(record, reason)
    except ledger.SettlementStateError:
        return None


def _complete(record, receipt, amount_token, with_chain_leg):
    try:
        with db_transaction.atomic():
            record = ledger.complete(record, receipt, amount_token)
            leg = settlement_legs.create_leg(record) if with_chain_leg else None
    except ledger.SettlementStateError:
        logger.info('Settlement #%s already resolved, ignoring repeated callback', record.id)
        return None, None
    return record, leg


def process_deposit_callback(payload):
    callback = parse_stk_callback(payload)
    request_id = callback['checkout_request_id']
    logger.info('Processing deposit callback: %s', request_id)

    if callback['result_code'] != SUCCESS_CODE:
        logger.warning('Deposit failed: %s', callback['result_desc'])
        record = _fail_correlated(request_id, 'DEPOSIT', callback['result_desc'])
        return _outcome(False, 'gateway_failure', record)

    record = _correlate(request_id, callback['phone_number'], 'DEPOSIT')
    if record is None:
        logger.warning('Transaction not found for phone number: %s', mask_phone_number(callback['phone_number']))
        return _outcome(False, 'no_match')

    if record.is_terminal:
        logger.info('Deposit #%s is already %s, callback ignored', record.id, record.status)
        return _outcome(False, 'already_processed', record)

    if callback['amount'] is not None and callback['amount'] != record.amount_local:
        logger.warning('Deposit #%s callback amount %s differs from requested %s',
                       record.id, callback['amount'], record.amount_local)

    amount_token = exchange_rates.local_to_token(record.amount_local)
    try:
        completed, leg = _complete(record, callback['receipt'], amount_token, with_chain_leg=True)
    except ledger.DuplicateReceipt as error:
        logger.warning('Deposit callback dropped: %s', error)
        return _outcome(False, 'duplicate_receipt', record)
    if completed is None:
        return _outcome(False, 'already_processed', record)

    logger.info('Initiating token transfer of %s to wallet: %s', amount_token, completed.owner_address)
    settlement_legs.dispatch(leg)

    logger.info('Deposit completed: %s', callback['receipt'])
    return _outcome(True, 'completed', completed)


def process_withdrawal_callback(payload):
    callback = parse_b2c_callback(payload)
    request_id = callback['conversation_id']
    logger.info('Processing withdrawal callback: %s', request_id)

    if callback['result_code'] != SUCCESS_CODE:
        logger.warning('Withdrawal failed: %s', callback['result_desc'])
        record = _fail_correlated(request_id, 'WITHDRAWAL', callback['result_desc'])
        return _outcome(False, 'gateway_failure', record)

    record = _correlate(request_id, callback['phone_number'], 'WITHDRAWAL')
    if record is None:
        logger.warning('Transaction not found for phone number: %s', mask_phone_number(callback['phone_number']))
        return _outcome(False, 'no_match')

    if record.is_terminal:
        logger.info('Withdrawal #%s is already %s, callback ignored', record.id, record.status)
        return _outcome(False, 'already_processed', record)

    try:
        completed, _leg = _complete(record, callback['receipt'], record.amount_token, with_chain_leg=False)
    except ledger.DuplicateReceipt as error:
        logger.warning('Withdrawal callback dropped: %s', error)
        return _outcome(False, 'duplicate_receipt', record)
    if completed is None:
        return _outcome(False, 'already_processed', record)

    logger.info('Withdrawal completed: %s', callback['receipt'])
    return _outcome(True, 'completed', completed)
