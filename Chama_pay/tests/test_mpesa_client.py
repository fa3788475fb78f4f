import base64
import io
import json
from datetime import datetime, timezone as dt_timezone
from decimal import Decimal
from unittest.mock import MagicMock, patch
from urllib.error import HTTPError, URLError

from django.core.cache import cache
from django.test import SimpleTestCase, override_settings

from Chama_pay.services import mpesa_client
from Chama_pay.services.mpesa_client import MpesaAPIError

PHONE = '254712345678'

LIVE_SETTINGS = dict(
    MPESA_MODE='live',
    MPESA_CONSUMER_KEY='consumer',
    MPESA_CONSUMER_SECRET='secret',
    MPESA_PASSKEY='passkey',
    MPESA_BUSINESS_SHORT_CODE='174379',
    MPESA_CALLBACK_URL='https://chama.example.test/api/v1/payments/mpesa/stk-callback',
    MPESA_B2C_RESULT_URL='https://chama.example.test/api/v1/payments/mpesa/b2c-callback',
    MPESA_TIMEOUT_URL='https://chama.example.test/api/v1/payments/mpesa/timeout',
    MPESA_SECURITY_CREDENTIAL='credential',
)


def json_response(body):
    response = MagicMock()
    response.__enter__.return_value.read.return_value = json.dumps(body).encode('utf-8')
    return response


def token_response(token='token-1', expires_in=3599):
    return json_response({'access_token': token, 'expires_in': str(expires_in)})


def http_error(code, body=b'{}'):
    return HTTPError('https://sandbox.example.test', code, 'error', {}, io.BytesIO(body))


STK_ACCEPTED = {
    'MerchantRequestID': '29115-34620561-1',
    'CheckoutRequestID': 'ws_CO_191220191020363925',
    'ResponseCode': '0',
    'ResponseDescription': 'Success. Request accepted for processing',
    'CustomerMessage': 'Success. Request accepted for processing',
}

B2C_ACCEPTED = {
    'ConversationID': 'AG_20191219_00005797af5d7d75f652',
    'OriginatorConversationID': '16740-34861180-1',
    'ResponseCode': '0',
    'ResponseDescription': 'Accept the service request successfully.',
}


class PasswordTests(SimpleTestCase):
    def test_password_is_base64_of_shortcode_passkey_timestamp(self):
        password = mpesa_client.build_password('174379', 'passkey', '20240101120000')
        self.assertEqual(base64.b64decode(password).decode('utf-8'), '174379passkey20240101120000')

    def test_timestamp_in_local_time(self):
        moment = datetime(2024, 1, 1, 9, 0, 0, tzinfo=dt_timezone.utc)
        self.assertEqual(mpesa_client.request_timestamp(moment), '20240101120000')

    @override_settings(**LIVE_SETTINGS)
    def test_stk_request_fields(self):
        payload = mpesa_client.build_stk_push_request(PHONE, Decimal('1000'), '20240101120000')

        self.assertEqual(payload['BusinessShortCode'], '174379')
        self.assertEqual(payload['PartyA'], PHONE)
        self.assertEqual(payload['PartyB'], '174379')
        self.assertEqual(payload['PhoneNumber'], PHONE)
        self.assertEqual(payload['Amount'], '1000')
        self.assertEqual(payload['TransactionType'], 'CustomerPayBillOnline')
        self.assertEqual(payload['CallBackURL'], LIVE_SETTINGS['MPESA_CALLBACK_URL'])
        self.assertEqual(payload['Password'], mpesa_client.build_password('174379', 'passkey', '20240101120000'))

    @override_settings(**LIVE_SETTINGS)
    def test_b2c_request_fields(self):
        payload = mpesa_client.build_b2c_request(PHONE, Decimal('500'))

        self.assertEqual(payload['CommandID'], 'BusinessPayment')
        self.assertEqual(payload['PartyA'], '174379')
        self.assertEqual(payload['PartyB'], PHONE)
        self.assertEqual(payload['SecurityCredential'], 'credential')
        self.assertEqual(payload['ResultURL'], LIVE_SETTINGS['MPESA_B2C_RESULT_URL'])


@override_settings(MPESA_MODE='manual')
class ManualModeTests(SimpleTestCase):
    @patch('Chama_pay.services.mpesa_client.urlopen')
    def test_stk_push_simulated(self, mock_urlopen):
        result = mpesa_client.stk_push(PHONE, Decimal('1000'))

        self.assertTrue(result['checkout_request_id'].startswith('ws_CO_'))
        self.assertEqual(result['response_code'], '0')
        mock_urlopen.assert_not_called()

    @patch('Chama_pay.services.mpesa_client.urlopen')
    def test_b2c_simulated(self, mock_urlopen):
        result = mpesa_client.b2c_payment(PHONE, Decimal('500'))

        self.assertTrue(result['conversation_id'].startswith('AG_'))
        mock_urlopen.assert_not_called()

    def test_simulated_ids_unique(self):
        first = mpesa_client.stk_push(PHONE, Decimal('1'))
        second = mpesa_client.stk_push(PHONE, Decimal('1'))
        self.assertNotEqual(first['checkout_request_id'], second['checkout_request_id'])


@override_settings(**LIVE_SETTINGS)
class LiveModeTests(SimpleTestCase):
    def setUp(self):
        cache.clear()

    @patch('Chama_pay.services.mpesa_client.urlopen')
    def test_stk_push_sends_bearer_token(self, mock_urlopen):
        mock_urlopen.side_effect = [token_response('abc123'), json_response(STK_ACCEPTED)]

        result = mpesa_client.stk_push(PHONE, Decimal('1000'))

        self.assertEqual(result['checkout_request_id'], 'ws_CO_191220191020363925')
        self.assertEqual(result['merchant_request_id'], '29115-34620561-1')
        token_request = mock_urlopen.call_args_list[0][0][0]
        self.assertTrue(token_request.get_header('Authorization').startswith('Basic '))
        push_request = mock_urlopen.call_args_list[1][0][0]
        self.assertEqual(push_request.get_header('Authorization'), 'Bearer abc123')
        self.assertEqual(json.loads(push_request.data)['PhoneNumber'], PHONE)

    @patch('Chama_pay.services.mpesa_client.urlopen')
    def test_access_token_reused_from_cache(self, mock_urlopen):
        mock_urlopen.side_effect = [
            token_response(), json_response(STK_ACCEPTED), json_response(STK_ACCEPTED),
        ]

        mpesa_client.stk_push(PHONE, Decimal('1000'))
        mpesa_client.stk_push(PHONE, Decimal('1000'))

        self.assertEqual(mock_urlopen.call_count, 3)

    @patch('Chama_pay.services.mpesa_client.urlopen')
    def test_rejected_token_refreshed_once(self, mock_urlopen):
        mock_urlopen.side_effect = [
            token_response('stale'), http_error(401), token_response('fresh'), json_response(B2C_ACCEPTED),
        ]

        result = mpesa_client.b2c_payment(PHONE, Decimal('500'))

        self.assertEqual(result['conversation_id'], 'AG_20191219_00005797af5d7d75f652')
        retried = mock_urlopen.call_args_list[3][0][0]
        self.assertEqual(retried.get_header('Authorization'), 'Bearer fresh')
        self.assertEqual(cache.get(mpesa_client.ACCESS_TOKEN_CACHE_KEY), 'fresh')

    @patch('Chama_pay.services.mpesa_client.urlopen')
    def test_declined_request_raises(self, mock_urlopen):
        declined = dict(STK_ACCEPTED, ResponseCode='1', ResponseDescription='Invalid PhoneNumber')
        mock_urlopen.side_effect = [token_response(), json_response(declined)]

        with self.assertRaises(MpesaAPIError):
            mpesa_client.stk_push(PHONE, Decimal('1000'))

    @patch('Chama_pay.services.mpesa_client.urlopen')
    def test_server_error_raises_with_status(self, mock_urlopen):
        mock_urlopen.side_effect = [token_response(), http_error(500, b'{"errorMessage": "boom"}')]

        with self.assertRaises(MpesaAPIError) as context:
            mpesa_client.stk_push(PHONE, Decimal('1000'))
        self.assertEqual(context.exception.status_code, 500)

    @patch('Chama_pay.services.mpesa_client.urlopen', side_effect=URLError('no route'))
    def test_unreachable_gateway_raises(self, _mock_urlopen):
        with self.assertRaises(MpesaAPIError):
            mpesa_client.get_access_token()

    @patch('Chama_pay.services.mpesa_client.urlopen')
    def test_token_response_without_token_raises(self, mock_urlopen):
        mock_urlopen.return_value = json_response({'errorMessage': 'Invalid credentials'})

        with self.assertRaises(MpesaAPIError):
            mpesa_client.generate_access_token()
