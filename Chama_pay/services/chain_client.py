import hashlib
import json
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urljoin
from urllib.request import Request, urlopen

from django.conf import settings

from ..validators import is_valid_wallet_address

logger = logging.getLogger(__name__)

_executor = None
_executor_lock = threading.Lock()


class ChainTransferError(Exception):
    def __init__(self, message, retryable=True):
        super().__init__(message)
        self.retryable = retryable


def _chain_mode():
    return getattr(settings, 'CHAIN_MODE', 'manual').strip().lower()


def _get_executor():
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(
                max_workers=getattr(settings, 'CHAIN_TRANSFER_WORKERS', 4),
                thread_name_prefix='chain-transfer',
            )
        return _executor


def _relay_url(path):
    base_url = getattr(settings, 'CHAIN_API_BASE_URL', '').strip()
    if not base_url:
        raise ChainTransferError('Chain relay base URL is not configured', retryable=False)
    return urljoin(base_url.rstrip('/') + '/', path.lstrip('/'))


def _relay_headers(idempotency_key=None):
    headers = {
        'Content-Type': 'application/json',
        'Accept': 'application/json',
    }
    if idempotency_key:
        headers['X-Idempotency-Key'] = idempotency_key

    api_key = getattr(settings, 'CHAIN_API_KEY', '').strip()
    api_key_header = getattr(settings, 'CHAIN_API_KEY_HEADER', '').strip() or 'X-API-Key'
    if api_key:
        headers[api_key_header] = api_key

    token = getattr(settings, 'CHAIN_API_TOKEN', '').strip()
    if token:
        headers['Authorization'] = f'Bearer {token}'
    return headers


def _call_relay(request):
    try:
        with urlopen(request, timeout=getattr(settings, 'CHAIN_API_TIMEOUT', 30)) as response:
            raw = response.read().decode('utf-8')
            return json.loads(raw) if raw else {}
    except HTTPError as error:
        detail = error.read().decode('utf-8', errors='ignore')
        raise ChainTransferError(f'Chain relay error ({error.code}): {detail[:200]}',
                                 retryable=error.code >= 500 or error.code == 429)
    except URLError as error:
        raise ChainTransferError(f'Chain relay unreachable: {error.reason}')
    except TimeoutError:
        raise ChainTransferError('Chain relay timeout reached')
    except json.JSONDecodeError:
        raise ChainTransferError('Chain relay returned invalid JSON')


def submit_transfer(owner_address, amount_token, reference):
    """Submit the token transfer and return its transaction id. Blocking."""
    logger.info('Sending %s %s to %s (ref %s)', amount_token,
                getattr(settings, 'TOKEN_CURRENCY', 'USDT'), owner_address, reference)

    if _chain_mode() == 'manual':
        digest = hashlib.sha256(f'{reference}:{owner_address}:{amount_token}'.encode('utf-8')).hexdigest()
        return f'0x{digest}'

    payload = {
        'reference_id': reference,
        'to_address': owner_address,
        'amount': str(amount_token),
        'token': getattr(settings, 'TOKEN_CURRENCY', 'USDT'),
    }
    request = Request(
        url=_relay_url(getattr(settings, 'CHAIN_API_TRANSFER_PATH', '/transfers')),
        data=json.dumps(payload).encode('utf-8'),
        headers=_relay_headers(idempotency_key=reference),
        method='POST'
    )
    data = _call_relay(request)

    tx_id = str(data.get('tx_hash') or data.get('transaction_hash') or '').strip()
    if not tx_id:
        raise ChainTransferError('Chain relay response has no transaction hash')
    logger.info('Token transfer submitted. Transaction hash: %s', tx_id)
    return tx_id


def transfer(owner_address, amount_token, reference):
    """Start a token transfer and return a Future resolving to the chain transaction id.

    An invalid destination fails the future immediately and nothing is submitted.
    Submission does not imply finality; poll is_confirmed().
    """
    if not is_valid_wallet_address(owner_address):
        logger.error('Invalid wallet address: %s', owner_address)
        future = Future()
        future.set_exception(ChainTransferError(f'Invalid wallet address: {owner_address}', retryable=False))
        return future

    return _get_executor().submit(submit_transfer, owner_address, amount_token, reference)


def is_confirmed(chain_tx_id):
    if not chain_tx_id:
        return False
    if _chain_mode() == 'manual':
        return True

    status_path = getattr(settings, 'CHAIN_API_STATUS_PATH', '/transfers/{tx_id}')
    try:
        request = Request(
            url=_relay_url(status_path.format(tx_id=quote(chain_tx_id))),
            headers=_relay_headers(),
            method='GET'
        )
        data = _call_relay(request)
    except ChainTransferError as error:
        logger.error('Failed to check transaction status for %s: %s', chain_tx_id, error)
        return False

    status_value = str(data.get('status', '')).upper()
    confirmed = status_value in {'CONFIRMED', 'SUCCESS'} or data.get('block_number') is not None
    logger.info('Transaction %s is %s', chain_tx_id, 'confirmed' if confirmed else 'pending')
    return confirmed
