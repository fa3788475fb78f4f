from decimal import Decimal

from django.test import SimpleTestCase

from Chama_pay.services.mpesa_callbacks import CallbackFormatError, parse_b2c_callback, parse_stk_callback

from .payloads import b2c_callback, stk_callback


class StkCallbackParsingTests(SimpleTestCase):
    def test_successful_callback_flattened(self):
        parsed = parse_stk_callback(stk_callback())

        self.assertEqual(parsed['result_code'], 0)
        self.assertEqual(parsed['checkout_request_id'], 'ws_CO_191220191020363925')
        self.assertEqual(parsed['merchant_request_id'], '29115-34620561-1')
        self.assertEqual(parsed['receipt'], 'NLJ7RT61SV')
        self.assertEqual(parsed['amount'], Decimal('1000'))
        self.assertEqual(parsed['phone_number'], '254712345678')
        self.assertEqual(parsed['transaction_date'], '20191219102115')

    def test_failed_callback_has_no_metadata(self):
        parsed = parse_stk_callback(stk_callback(result_code=1032))

        self.assertEqual(parsed['result_code'], 1032)
        self.assertEqual(parsed['result_desc'], 'Request cancelled by user')
        self.assertIsNone(parsed['receipt'])
        self.assertIsNone(parsed['phone_number'])

    def test_string_result_code_accepted(self):
        payload = stk_callback()
        payload['Body']['stkCallback']['ResultCode'] = '0'
        self.assertEqual(parse_stk_callback(payload)['result_code'], 0)

    def test_missing_body_rejected(self):
        with self.assertRaises(CallbackFormatError):
            parse_stk_callback({'Result': {}})

    def test_non_numeric_result_code_rejected(self):
        payload = stk_callback()
        payload['Body']['stkCallback']['ResultCode'] = 'oops'
        with self.assertRaises(CallbackFormatError):
            parse_stk_callback(payload)

    def test_non_object_rejected(self):
        with self.assertRaises(CallbackFormatError):
            parse_stk_callback(['not', 'a', 'dict'])


class B2cCallbackParsingTests(SimpleTestCase):
    def test_successful_callback_flattened(self):
        parsed = parse_b2c_callback(b2c_callback())

        self.assertEqual(parsed['result_code'], 0)
        self.assertEqual(parsed['conversation_id'], 'AG_20191219_00005797af5d7d75f652')
        self.assertEqual(parsed['receipt'], 'NLJ41HAY6Q')
        self.assertEqual(parsed['amount'], Decimal('500'))

    def test_recipient_name_stripped_from_phone(self):
        parsed = parse_b2c_callback(b2c_callback(phone='254708374149 - John Doe'))
        self.assertEqual(parsed['phone_number'], '254708374149')

    def test_failed_callback(self):
        parsed = parse_b2c_callback(b2c_callback(result_code=2001))

        self.assertEqual(parsed['result_code'], 2001)
        self.assertIsNone(parsed['receipt'])
        self.assertIsNone(parsed['phone_number'])

    def test_missing_result_rejected(self):
        with self.assertRaises(CallbackFormatError):
            parse_b2c_callback({'Body': {}})
