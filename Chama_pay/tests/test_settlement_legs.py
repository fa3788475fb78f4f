from concurrent.futures import Future
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from django.test import TestCase, override_settings
from django.utils import timezone

from Chama_pay.models import ChainTransferLeg
from Chama_pay.services import ledger, settlement_legs
from Chama_pay.services.chain_client import ChainTransferError

WALLET = '0x' + 'e' * 40


def done_future(result=None, error=None):
    future = Future()
    if error is not None:
        future.set_exception(error)
    else:
        future.set_result(result)
    return future


@override_settings(CHAIN_TRANSFER_BACKOFF_SECONDS=30, CHAIN_TRANSFER_MAX_ATTEMPTS=5, CHAIN_MODE='manual')
class SettlementLegTests(TestCase):
    def setUp(self):
        record = ledger.create_pending('DEPOSIT', WALLET, '254712345678', Decimal('1000'))
        self.record = ledger.complete(record, 'NLJ7RT61SV', Decimal('7.692308'))
        self.leg = settlement_legs.create_leg(self.record)

    def test_leg_created_pending(self):
        self.assertEqual(self.leg.status, 'PENDING')
        self.assertEqual(self.leg.attempts, 0)
        self.assertEqual(self.leg.destination_address, WALLET)
        self.assertEqual(self.leg.amount_token, Decimal('7.692308'))
        self.assertGreater(self.leg.next_attempt_at, timezone.now())

    def test_retry_delay_doubles(self):
        self.assertEqual(settlement_legs.retry_delay(1), timedelta(seconds=30))
        self.assertEqual(settlement_legs.retry_delay(2), timedelta(seconds=60))
        self.assertEqual(settlement_legs.retry_delay(3), timedelta(seconds=120))

    @patch('Chama_pay.services.chain_client.transfer')
    def test_successful_dispatch_marks_submitted(self, mock_transfer):
        mock_transfer.return_value = done_future('0xabc')

        settlement_legs.dispatch(self.leg)

        mock_transfer.assert_called_once_with(WALLET, Decimal('7.692308'), f'settlement-{self.record.id}')
        self.leg.refresh_from_db()
        self.record.refresh_from_db()
        self.assertEqual(self.leg.status, 'SUBMITTED')
        self.assertEqual(self.leg.attempts, 1)
        self.assertEqual(self.leg.chain_tx_id, '0xabc')
        self.assertIsNone(self.leg.next_attempt_at)
        self.assertEqual(self.record.chain_tx_id, '0xabc')
        self.assertEqual(self.record.status, 'COMPLETED')

    @patch('Chama_pay.services.chain_client.transfer')
    def test_retryable_failure_schedules_retry(self, mock_transfer):
        mock_transfer.return_value = done_future(error=ChainTransferError('relay down'))
        before = timezone.now()

        settlement_legs.dispatch(self.leg)

        self.leg.refresh_from_db()
        self.assertEqual(self.leg.status, 'PENDING')
        self.assertEqual(self.leg.attempts, 1)
        self.assertEqual(self.leg.last_error, 'relay down')
        self.assertGreaterEqual(self.leg.next_attempt_at, before + timedelta(seconds=30))

    @patch('Chama_pay.services.chain_client.transfer')
    def test_failure_never_touches_settlement_status(self, mock_transfer):
        mock_transfer.return_value = done_future(error=ChainTransferError('relay down', retryable=False))

        settlement_legs.dispatch(self.leg)

        self.record.refresh_from_db()
        self.assertEqual(self.record.status, 'COMPLETED')
        self.assertEqual(self.record.chain_tx_id, '')

    @patch('Chama_pay.services.chain_client.transfer')
    def test_non_retryable_failure_dead_letters(self, mock_transfer):
        mock_transfer.return_value = done_future(error=ChainTransferError('bad address', retryable=False))

        settlement_legs.dispatch(self.leg)

        self.leg.refresh_from_db()
        self.assertEqual(self.leg.status, 'DEAD')
        self.assertIsNone(self.leg.next_attempt_at)

    @patch('Chama_pay.services.chain_client.transfer')
    def test_last_attempt_dead_letters(self, mock_transfer):
        ChainTransferLeg.objects.filter(id=self.leg.id).update(attempts=4)
        mock_transfer.return_value = done_future(error=ChainTransferError('relay down'))

        settlement_legs.dispatch(self.leg)

        self.leg.refresh_from_db()
        self.assertEqual(self.leg.status, 'DEAD')
        self.assertEqual(self.leg.attempts, 5)

    def test_late_result_for_submitted_leg_ignored(self):
        settlement_legs.mark_submitted(self.leg.id, '0xfirst')
        leg = settlement_legs.mark_submitted(self.leg.id, '0xsecond')
        self.assertEqual(leg.chain_tx_id, '0xfirst')

    def test_freshly_created_leg_not_due(self):
        self.assertFalse(settlement_legs.due_legs().exists())

    def test_leg_due_after_lease(self):
        later = timezone.now() + timedelta(minutes=5)
        self.assertEqual(list(settlement_legs.due_legs(now=later)), [self.leg])

    @patch('Chama_pay.services.chain_client.transfer')
    def test_process_due_legs_stats(self, mock_transfer):
        mock_transfer.return_value = done_future('0xabc')
        ChainTransferLeg.objects.filter(id=self.leg.id).update(next_attempt_at=timezone.now() - timedelta(seconds=1))

        stats = settlement_legs.process_due_legs()

        self.assertEqual(stats, {'submitted': 1, 'retrying': 0, 'dead': 0})

    @patch('Chama_pay.services.chain_client.transfer')
    def test_process_due_legs_counts_retries(self, mock_transfer):
        mock_transfer.return_value = done_future(error=ChainTransferError('relay down'))
        ChainTransferLeg.objects.filter(id=self.leg.id).update(next_attempt_at=None)

        stats = settlement_legs.process_due_legs()

        self.assertEqual(stats, {'submitted': 0, 'retrying': 1, 'dead': 0})

    def test_dead_legs_not_due(self):
        ChainTransferLeg.objects.filter(id=self.leg.id).update(status='DEAD', next_attempt_at=None)
        self.assertFalse(settlement_legs.due_legs().exists())

    def test_poll_confirms_submitted_legs(self):
        settlement_legs.mark_submitted(self.leg.id, '0xabc')

        self.assertEqual(settlement_legs.poll_submitted_legs(), 1)
        self.leg.refresh_from_db()
        self.assertEqual(self.leg.status, 'CONFIRMED')
        self.assertIsNotNone(self.leg.confirmed_at)

    @patch('Chama_pay.services.chain_client.is_confirmed', return_value=False)
    def test_poll_leaves_unconfirmed_legs(self, _mock_confirmed):
        settlement_legs.mark_submitted(self.leg.id, '0xabc')

        self.assertEqual(settlement_legs.poll_submitted_legs(), 0)
        self.leg.refresh_from_db()
        self.assertEqual(self.leg.status, 'SUBMITTED')

