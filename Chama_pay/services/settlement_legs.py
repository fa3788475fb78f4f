"""Outbox for the on-chain leg of a completed deposit.

A ChainTransferLeg is written in the same database transaction that completes
the deposit. It is dispatched right away and, when that fails, retried by the
process_chain_transfers command with exponential backoff until it is submitted
or dead-lettered. The settlement record's own status never depends on it.
"""
import logging
import threading
from concurrent.futures import CancelledError
from datetime import timedelta

from django.conf import settings
from django.db import connection
from django.db import transaction as db_transaction
from django.db.models import Q
from django.utils import timezone

from ..models import ChainTransferLeg, SettlementRecord
from . import chain_client

logger = logging.getLogger(__name__)


def _max_attempts():
    return int(getattr(settings, 'CHAIN_TRANSFER_MAX_ATTEMPTS', 5))


def _backoff_seconds():
    return int(getattr(settings, 'CHAIN_TRANSFER_BACKOFF_SECONDS', 30))


def retry_delay(attempts):
    return timedelta(seconds=_backoff_seconds() * (2 ** max(attempts - 1, 0)))


def leg_reference(leg):
    return f'settlement-{leg.settlement_id}'


def create_leg(record):
    # next_attempt_at acts as a lease so the worker leaves the inline dispatch alone
    return ChainTransferLeg.objects.create(
        settlement=record,
        destination_address=record.owner_address,
        amount_token=record.amount_token,
        status='PENDING',
        next_attempt_at=timezone.now() + retry_delay(1),
    )


def mark_submitted(leg_id, chain_tx_id):
    with db_transaction.atomic():
        leg = ChainTransferLeg.objects.select_for_update().get(id=leg_id)
        if leg.status != 'PENDING':
            logger.warning('Chain leg #%s already %s, ignoring tx %s', leg.id, leg.status, chain_tx_id)
            return leg

        leg.status = 'SUBMITTED'
        leg.attempts += 1
        leg.chain_tx_id = chain_tx_id[:100]
        leg.submitted_at = timezone.now()
        leg.next_attempt_at = None
        leg.last_error = ''
        leg.save()
        SettlementRecord.objects.filter(id=leg.settlement_id).update(chain_tx_id=leg.chain_tx_id)

    logger.info('Token transfer for settlement #%s submitted: %s', leg.settlement_id, chain_tx_id)
    return leg


def mark_failed(leg_id, error):
    retryable = getattr(error, 'retryable', True)

    with db_transaction.atomic():
        leg = ChainTransferLeg.objects.select_for_update().get(id=leg_id)
        if leg.status != 'PENDING':
            return leg

        leg.attempts += 1
        leg.last_error = str(error)[:255]
        if not retryable or leg.attempts >= _max_attempts():
            leg.status = 'DEAD'
            leg.next_attempt_at = None
        else:
            leg.next_attempt_at = timezone.now() + retry_delay(leg.attempts)
        leg.save()

    if leg.status == 'DEAD':
        logger.error('Token transfer for settlement #%s dead-lettered after %s attempt(s): %s',
                     leg.settlement_id, leg.attempts, error)
    else:
        logger.error('Token transfer for settlement #%s failed (attempt %s), retry at %s: %s',
                     leg.settlement_id, leg.attempts, leg.next_attempt_at.isoformat(), error)
    return leg


def _apply_outcome(leg_id, future):
    try:
        error = future.exception()
    except CancelledError as cancelled:
        error = cancelled
    if error is None:
        return mark_submitted(leg_id, future.result())
    return mark_failed(leg_id, error)


def dispatch(leg):
    """Fire the transfer without waiting; the outcome is recorded when the future settles."""
    origin = threading.get_ident()

    def _done(future):
        try:
            _apply_outcome(leg.id, future)
        finally:
            if threading.get_ident() != origin:
                connection.close()

    future = chain_client.transfer(leg.destination_address, leg.amount_token, leg_reference(leg))
    future.add_done_callback(_done)
    return future


def dispatch_and_wait(leg):
    future = chain_client.transfer(leg.destination_address, leg.amount_token, leg_reference(leg))
    try:
        future.exception()
    except CancelledError:
        pass
    return _apply_outcome(leg.id, future)


def due_legs(now=None, limit=50):
    now = now or timezone.now()
    return ChainTransferLeg.objects.filter(
        Q(next_attempt_at__isnull=True) | Q(next_attempt_at__lte=now),
        status='PENDING',
    ).order_by('created_at')[:limit]


def process_due_legs(now=None, limit=50):
    stats = {'submitted': 0, 'retrying': 0, 'dead': 0}
    for leg in list(due_legs(now=now, limit=limit)):
        result = dispatch_and_wait(leg)
        if result.status == 'SUBMITTED':
            stats['submitted'] += 1
        elif result.status == 'DEAD':
            stats['dead'] += 1
        else:
            stats['retrying'] += 1
    return stats


def poll_submitted_legs(limit=50):
    confirmed = 0
    legs = ChainTransferLeg.objects.filter(status='SUBMITTED').order_by('submitted_at')[:limit]
    for leg in list(legs):
        if not chain_client.is_confirmed(leg.chain_tx_id):
            continue
        updated = ChainTransferLeg.objects.filter(id=leg.id, status='SUBMITTED').update(
            status='CONFIRMED', confirmed_at=timezone.now(),
        )
        confirmed += updated
    return confirmed
