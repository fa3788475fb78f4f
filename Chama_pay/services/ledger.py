import logging
from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.db import IntegrityError
from django.db import transaction as db_transaction
from django.utils import timezone

from ..models import SettlementRecord
from ..validators import mask_phone_number, normalize_phone_number

logger = logging.getLogger(__name__)


class SettlementError(Exception):
    pass


class DuplicatePendingSettlement(SettlementError):
    pass


class DuplicateReceipt(SettlementError):
    pass


class SettlementStateError(SettlementError):
    pass


class SettlementNotFound(SettlementError):
    pass


def has_pending(phone_number, direction):
    return SettlementRecord.objects.filter(
        phone_number=normalize_phone_number(phone_number),
        direction=direction,
        status='PENDING',
    ).exists()


def create_pending(direction, owner_address, phone_number, amount_local, amount_token=Decimal('0'),
                   gateway_request_id='', merchant_request_id='', description=''):
    phone = normalize_phone_number(phone_number)

    with db_transaction.atomic():
        if has_pending(phone, direction):
            raise DuplicatePendingSettlement(
                f'A {direction.lower()} for {phone} is already awaiting confirmation'
            )

        # a concurrent insert that passed the check above is stopped by the partial unique constraint
        try:
            with db_transaction.atomic():
                record = SettlementRecord.objects.create(
                    owner_address=owner_address,
                    phone_number=phone,
                    direction=direction,
                    amount_local=amount_local,
                    amount_token=amount_token,
                    gateway_request_id=gateway_request_id or '',
                    merchant_request_id=merchant_request_id or '',
                    description=description[:255],
                    status='PENDING',
                )
        except IntegrityError:
            raise DuplicatePendingSettlement(
                f'A {direction.lower()} for {phone} is already awaiting confirmation'
            )

    logger.info('Created pending %s #%s for %s (%s)',
                direction.lower(), record.id, mask_phone_number(phone), amount_local)
    return record


def find_matching_pending(phone_number, direction):
    """Return the single PENDING record for (phone, direction), or None when zero or several match."""
    phone = normalize_phone_number(phone_number)
    candidates = list(
        SettlementRecord.objects.filter(phone_number=phone, direction=direction, status='PENDING')[:2]
    )
    if len(candidates) != 1:
        if candidates:
            logger.warning('Ambiguous correlation: several pending %s records for %s',
                           direction.lower(), mask_phone_number(phone))
        return None
    return candidates[0]


def find_by_gateway_request(gateway_request_id, direction=None):
    if not gateway_request_id:
        return None
    records = SettlementRecord.objects.filter(gateway_request_id=gateway_request_id)
    if direction:
        records = records.filter(direction=direction)
    return records.first()


def _locked_pending(record):
    locked = SettlementRecord.objects.select_for_update().get(id=record.id)
    if locked.is_terminal:
        raise SettlementStateError(f'Settlement #{locked.id} is already {locked.status}')
    return locked


def complete(record, gateway_receipt_id, amount_token):
    with db_transaction.atomic():
        locked = _locked_pending(record)

        if gateway_receipt_id and SettlementRecord.objects.filter(
                gateway_receipt_id=gateway_receipt_id).exclude(id=locked.id).exists():
            raise DuplicateReceipt(f'Receipt {gateway_receipt_id} was already applied to another settlement')

        locked.gateway_receipt_id = (gateway_receipt_id or '')[:100]
        locked.amount_token = amount_token
        locked.status = 'COMPLETED'
        locked.completed_at = timezone.now()
        locked.save(update_fields=['gateway_receipt_id', 'amount_token', 'status', 'completed_at', 'updated_at'])

    logger.info('Settlement #%s completed with receipt %s', locked.id, gateway_receipt_id)
    return locked


def _close(record, status, reason):
    with db_transaction.atomic():
        locked = _locked_pending(record)
        locked.status = status
        locked.failure_reason = (reason or '')[:255]
        locked.completed_at = timezone.now()
        locked.save(update_fields=['status', 'failure_reason', 'completed_at', 'updated_at'])

    logger.info('Settlement #%s marked %s: %s', locked.id, status, reason)
    return locked


def fail(record, reason=''):
    return _close(record, 'FAILED', reason)


def cancel(record, reason=''):
    return _close(record, 'CANCELLED', reason)


def expire_stale_pending(older_than_minutes=None, now=None):
    minutes = older_than_minutes
    if minutes is None:
        minutes = int(getattr(settings, 'SETTLEMENT_PENDING_TIMEOUT_MINUTES', 30))
    cutoff = (now or timezone.now()) - timedelta(minutes=minutes)

    expired = 0
    stale = SettlementRecord.objects.filter(status='PENDING', created_at__lt=cutoff).order_by('created_at')
    for record in stale:
        try:
            fail(record, reason='timeout')
        except SettlementStateError:
            # resolved by a callback since the query ran
            continue
        expired += 1

    if expired:
        logger.warning('Expired %s pending settlement(s) older than %s minutes', expired, minutes)
    return expired


def settlements_for_owner(owner_address):
    return SettlementRecord.objects.filter(owner_address=owner_address)


def settlement_to_dict(record):
    return {
        'id': record.id,
        'walletAddress': record.owner_address,
        'phoneNumber': record.phone_number,
        'type': record.direction,
        'amountKES': str(record.amount_local),
        'amountUSDT': str(record.amount_token),
        'mpesaReceiptNumber': record.gateway_receipt_id or None,
        'gatewayRequestId': record.gateway_request_id or None,
        'blockchainTxHash': record.chain_tx_id or None,
        'status': record.status,
        'failureReason': record.failure_reason or None,
        'createdAt': record.created_at.isoformat() if record.created_at else None,
        'completedAt': record.completed_at.isoformat() if record.completed_at else None,
    }


def settlement_detail(settlement_id):
    record = SettlementRecord.objects.filter(id=settlement_id).first()
    if not record:
        raise SettlementNotFound(f'Transaction {settlement_id} not found')
    return record
