from decimal import Decimal

from django.test import SimpleTestCase

from Chama_pay.validators import (
    InvalidAmount,
    InvalidPhoneNumber,
    InvalidWalletAddress,
    format_phone_number,
    is_valid_phone,
    is_valid_wallet_address,
    mask_phone_number,
    normalize_phone_number,
    parse_amount,
    require_wallet_address,
)

WALLET = '0x' + 'a' * 40


class ValidatorPhoneTests(SimpleTestCase):
    def test_leading_zero_replaced_by_country_code(self):
        self.assertEqual(format_phone_number('0712345678'), '254712345678')

    def test_international_prefix_stripped(self):
        self.assertEqual(format_phone_number('+254712345678'), '254712345678')

    def test_bare_subscriber_number_prefixed(self):
        self.assertEqual(format_phone_number('712345678'), '254712345678')

    def test_spaces_and_dashes_ignored(self):
        self.assertEqual(format_phone_number('0712 345-678'), '254712345678')

    def test_other_country_code_supported(self):
        self.assertEqual(format_phone_number('0772123456', country_code='256'), '256772123456')

    def test_empty_phone_rejected(self):
        with self.assertRaises(InvalidPhoneNumber):
            format_phone_number('')

    def test_none_phone_rejected(self):
        self.assertFalse(is_valid_phone(None))

    def test_too_short_phone_rejected(self):
        self.assertFalse(is_valid_phone('12345'))

    def test_too_long_phone_rejected(self):
        self.assertFalse(is_valid_phone('1' * 16))

    def test_normalize_keeps_digits_only(self):
        self.assertEqual(normalize_phone_number('+254 (712) 345-678'), '254712345678')

    def test_mask_shows_last_four_digits(self):
        self.assertEqual(mask_phone_number('254712345678'), '••••••••5678')

    def test_mask_short_number_fully_hidden(self):
        self.assertEqual(mask_phone_number('123'), '••••')


class ValidatorWalletTests(SimpleTestCase):
    def test_lowercase_address_accepted(self):
        self.assertTrue(is_valid_wallet_address(WALLET))

    def test_mixed_case_address_accepted(self):
        self.assertTrue(is_valid_wallet_address('0x' + 'aBcDeF0123' * 4))

    def test_missing_prefix_rejected(self):
        self.assertFalse(is_valid_wallet_address('a' * 42))

    def test_short_address_rejected(self):
        self.assertFalse(is_valid_wallet_address('0x' + 'a' * 39))

    def test_non_hex_rejected(self):
        self.assertFalse(is_valid_wallet_address('0x' + 'g' * 40))

    def test_none_rejected(self):
        self.assertFalse(is_valid_wallet_address(None))

    def test_require_raises_on_invalid(self):
        with self.assertRaises(InvalidWalletAddress):
            require_wallet_address('0x123')

    def test_require_returns_valid_address(self):
        self.assertEqual(require_wallet_address(WALLET), WALLET)


class ValidatorAmountTests(SimpleTestCase):
    def test_string_amount_parsed(self):
        self.assertEqual(parse_amount('1000.50'), Decimal('1000.50'))

    def test_integer_amount_parsed(self):
        self.assertEqual(parse_amount(250), Decimal('250'))

    def test_missing_amount_rejected(self):
        with self.assertRaises(InvalidAmount):
            parse_amount(None)

    def test_garbage_amount_rejected(self):
        with self.assertRaises(InvalidAmount):
            parse_amount('ten')

    def test_zero_rejected_by_default(self):
        with self.assertRaises(InvalidAmount):
            parse_amount('0')

    def test_zero_allowed_when_requested(self):
        self.assertEqual(parse_amount('0', allow_zero=True), Decimal('0'))

    def test_negative_rejected(self):
        with self.assertRaises(InvalidAmount):
            parse_amount('-5', allow_zero=True)

    def test_infinity_rejected(self):
        with self.assertRaises(InvalidAmount):
            parse_amount('Infinity')
