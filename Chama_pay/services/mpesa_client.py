import base64
import json
import logging
import uuid
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from django.conf import settings
from django.core.cache import cache
from django.utils import timezone

logger = logging.getLogger(__name__)

ACCESS_TOKEN_CACHE_KEY = 'mpesa:access_token'


class MpesaAPIError(Exception):
    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


def _gateway_config():
    return {
        'consumer_key': getattr(settings, 'MPESA_CONSUMER_KEY', '').strip(),
        'consumer_secret': getattr(settings, 'MPESA_CONSUMER_SECRET', '').strip(),
        'passkey': getattr(settings, 'MPESA_PASSKEY', '').strip(),
        'short_code': str(getattr(settings, 'MPESA_BUSINESS_SHORT_CODE', '')).strip(),
        'transaction_type': getattr(settings, 'MPESA_TRANSACTION_TYPE', 'CustomerPayBillOnline').strip(),
        'access_token_url': getattr(settings, 'MPESA_ACCESS_TOKEN_URL', '').strip(),
        'stk_push_url': getattr(settings, 'MPESA_STK_PUSH_URL', '').strip(),
        'b2c_url': getattr(settings, 'MPESA_B2C_URL', '').strip(),
        'callback_url': getattr(settings, 'MPESA_CALLBACK_URL', '').strip(),
        'b2c_result_url': getattr(settings, 'MPESA_B2C_RESULT_URL', '').strip(),
        'timeout_url': getattr(settings, 'MPESA_TIMEOUT_URL', '').strip(),
        'account_reference': getattr(settings, 'MPESA_ACCOUNT_REFERENCE', 'ChamaDAO').strip(),
        'transaction_description': getattr(settings, 'MPESA_TRANSACTION_DESCRIPTION', 'ChamaDAO deposit').strip(),
        'initiator_name': getattr(settings, 'MPESA_INITIATOR_NAME', 'ChamaDAO').strip(),
        'security_credential': getattr(settings, 'MPESA_SECURITY_CREDENTIAL', '').strip(),
    }


def _mpesa_mode():
    return getattr(settings, 'MPESA_MODE', 'manual').strip().lower()


def _send(request):
    try:
        with urlopen(request, timeout=getattr(settings, 'MPESA_API_TIMEOUT', 20)) as response:
            raw = response.read().decode('utf-8')
            return json.loads(raw) if raw else {}
    except HTTPError as error:
        detail = error.read().decode('utf-8', errors='ignore')
        raise MpesaAPIError(f'M-Pesa API error ({error.code}): {detail[:400]}', status_code=error.code)
    except URLError as error:
        raise MpesaAPIError(f'M-Pesa API unreachable: {error.reason}')
    except TimeoutError:
        raise MpesaAPIError('M-Pesa API timeout reached')
    except json.JSONDecodeError:
        raise MpesaAPIError('M-Pesa API returned invalid JSON')


def generate_access_token():
    config = _gateway_config()
    credentials = f"{config['consumer_key']}:{config['consumer_secret']}".encode('utf-8')
    request = Request(
        url=config['access_token_url'],
        headers={
            'Authorization': 'Basic ' + base64.b64encode(credentials).decode('ascii'),
            'Accept': 'application/json',
        },
        method='GET'
    )

    data = _send(request)
    access_token = str(data.get('access_token') or '').strip()
    if not access_token:
        raise MpesaAPIError('M-Pesa token response has no access_token')

    try:
        expires_in = int(data.get('expires_in') or 3599)
    except (TypeError, ValueError):
        expires_in = 3599

    logger.info('Generated M-Pesa access token %s... (expires in %ss)', access_token[:6], expires_in)
    return {'access_token': access_token, 'expires_in': expires_in}


def get_access_token(force_refresh=False):
    if not force_refresh:
        cached = cache.get(ACCESS_TOKEN_CACHE_KEY)
        if cached:
            return cached

    token = generate_access_token()
    cache.set(ACCESS_TOKEN_CACHE_KEY, token['access_token'], timeout=max(token['expires_in'] - 60, 1))
    return token['access_token']


def invalidate_access_token():
    cache.delete(ACCESS_TOKEN_CACHE_KEY)


def request_timestamp(now=None):
    return timezone.localtime(now or timezone.now()).strftime('%Y%m%d%H%M%S')


def build_password(short_code, passkey, timestamp):
    return base64.b64encode(f'{short_code}{passkey}{timestamp}'.encode('utf-8')).decode('ascii')


def _post_json(url, token, payload):
    request = Request(
        url=url,
        data=json.dumps(payload).encode('utf-8'),
        headers={
            'Authorization': f'Bearer {token}',
            'Content-Type': 'application/json',
            'Accept': 'application/json',
        },
        method='POST'
    )
    return _send(request)


def _post_authorized(url, payload):
    token = get_access_token()
    try:
        return _post_json(url, token, payload)
    except MpesaAPIError as error:
        if error.status_code != 401:
            raise
        logger.warning('M-Pesa rejected the cached access token, refreshing')
        invalidate_access_token()
        token = get_access_token(force_refresh=True)
        return _post_json(url, token, payload)


def _check_accepted(response_code, description):
    if response_code not in ('', '0'):
        raise MpesaAPIError(f'M-Pesa declined the request ({response_code}): {description}')


def build_stk_push_request(phone_number, amount, timestamp):
    config = _gateway_config()
    return {
        'BusinessShortCode': config['short_code'],
        'Password': build_password(config['short_code'], config['passkey'], timestamp),
        'Timestamp': timestamp,
        'TransactionType': config['transaction_type'],
        'Amount': str(amount),
        'PartyA': phone_number,
        'PartyB': config['short_code'],
        'PhoneNumber': phone_number,
        'CallBackURL': config['callback_url'],
        'AccountReference': config['account_reference'],
        'TransactionDesc': config['transaction_description'],
    }


def stk_push(phone_number, amount):
    """Send a push-payment prompt to the customer's phone.

    phone_number must already be in canonical gateway form (e.g. 254712345678).
    """
    timestamp = request_timestamp()
    payload = build_stk_push_request(phone_number, amount, timestamp)

    if _mpesa_mode() == 'manual':
        suffix = uuid.uuid4().hex[:12]
        return {
            'merchant_request_id': f'sim-{suffix[:6]}',
            'checkout_request_id': f'ws_CO_{timestamp}{suffix}',
            'response_code': '0',
            'response_description': 'Success. Request accepted for processing',
            'customer_message': 'Simulated push payment',
        }

    data = _post_authorized(_gateway_config()['stk_push_url'], payload)
    result = {
        'merchant_request_id': str(data.get('MerchantRequestID') or '').strip(),
        'checkout_request_id': str(data.get('CheckoutRequestID') or '').strip(),
        'response_code': str(data.get('ResponseCode') or '').strip(),
        'response_description': str(data.get('ResponseDescription') or '').strip(),
        'customer_message': str(data.get('CustomerMessage') or '').strip(),
    }
    _check_accepted(result['response_code'], result['response_description'])
    return result


def build_b2c_request(phone_number, amount):
    config = _gateway_config()
    return {
        'InitiatorName': config['initiator_name'],
        'SecurityCredential': config['security_credential'],
        'CommandID': 'BusinessPayment',
        'Amount': str(amount),
        'PartyA': config['short_code'],
        'PartyB': phone_number,
        'Remarks': 'ChamaDAO Withdrawal',
        'QueueTimeOutURL': config['timeout_url'],
        'ResultURL': config['b2c_result_url'] or config['callback_url'],
        'Occasion': 'Withdrawal',
    }


def b2c_payment(phone_number, amount):
    payload = build_b2c_request(phone_number, amount)

    if _mpesa_mode() == 'manual':
        suffix = uuid.uuid4().hex[:16]
        return {
            'conversation_id': f'AG_{request_timestamp()}_{suffix}',
            'originator_conversation_id': f'sim-{suffix[:8]}',
            'response_code': '0',
            'response_description': 'Accept the service request successfully.',
        }

    data = _post_authorized(_gateway_config()['b2c_url'], payload)
    result = {
        'conversation_id': str(data.get('ConversationID') or '').strip(),
        'originator_conversation_id': str(data.get('OriginatorConversationID') or '').strip(),
        'response_code': str(data.get('ResponseCode') or '').strip(),
        'response_description': str(data.get('ResponseDescription') or '').strip(),
    }
    _check_accepted(result['response_code'], result['response_description'])
    return result
