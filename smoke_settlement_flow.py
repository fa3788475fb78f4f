"""
End-to-end check of the deposit flow against a running server.
Initiates a deposit, plays the gateway's STK callback, then reads the settlement back.

Usage:
    python smoke_settlement_flow.py
    python smoke_settlement_flow.py --phone 0712345678 --amount 750
    python smoke_settlement_flow.py --base-url http://192.168.1.50:8000 --fail

Prerequisites:
    pip install -e .[smoke]
    MPESA_MODE=manual and CHAIN_MODE=manual on the server
"""

import argparse
import json
import sys
import uuid

import requests


DEFAULT_BASE = 'http://127.0.0.1:8000'
DEFAULT_WALLET = '0x' + '7' * 40
DEFAULT_PHONE = '0712345678'
DEFAULT_AMOUNT = '500'


def show(title, resp):
    print(f'\n  {title}')
    print(f'  HTTP Status : {resp.status_code}')
    try:
        print(json.dumps(resp.json(), indent=4, ensure_ascii=False))
    except ValueError:
        print(f'  Raw body    : {resp.text[:500]}')


def stk_callback(checkout_request_id, merchant_request_id, amount, phone, failed=False):
    callback = {
        'MerchantRequestID': merchant_request_id,
        'CheckoutRequestID': checkout_request_id,
        'ResultCode': 1032 if failed else 0,
        'ResultDesc': 'Request cancelled by user' if failed else 'The service request is processed successfully.',
    }
    if not failed:
        callback['CallbackMetadata'] = {
            'Item': [
                {'Name': 'Amount', 'Value': float(amount)},
                {'Name': 'MpesaReceiptNumber', 'Value': f'SIM{uuid.uuid4().hex[:7].upper()}'},
                {'Name': 'PhoneNumber', 'Value': int(phone)},
            ]
        }
    return {'Body': {'stkCallback': callback}}


def main():
    parser = argparse.ArgumentParser(description='Smoke test the M-Pesa deposit settlement flow')
    parser.add_argument('--base-url', default=DEFAULT_BASE, help=f'Server URL (default: {DEFAULT_BASE})')
    parser.add_argument('--wallet', default=DEFAULT_WALLET, help='Member wallet address')
    parser.add_argument('--phone', default=DEFAULT_PHONE, help='Customer phone number')
    parser.add_argument('--amount', default=DEFAULT_AMOUNT, help='Deposit amount in local currency')
    parser.add_argument('--webhook-token', default='', help='Value for X-Webhook-Token, if the server checks it')
    parser.add_argument('--fail', action='store_true', help='Play a cancelled-by-user callback instead')
    args = parser.parse_args()

    base = args.base_url.rstrip('/')

    print('=' * 50)
    print('  DEPOSIT SETTLEMENT SMOKE TEST')
    print('=' * 50)
    print(f'  Server      : {base}')
    print(f'  Wallet      : {args.wallet}')
    print(f'  Phone       : {args.phone}')
    print(f'  Amount      : {args.amount}')
    print('-' * 50)

    try:
        resp = requests.post(f'{base}/api/v1/payments/deposit', json={
            'walletAddress': args.wallet,
            'phoneNumber': args.phone,
            'amount': args.amount,
        }, timeout=10)
    except requests.ConnectionError:
        print(f'\n  ERROR: cannot reach {base}')
        print('  Start the server with:')
        print('      python manage.py runserver')
        sys.exit(1)

    show('1) Deposit initiation', resp)
    if resp.status_code != 200:
        sys.exit(1)
    deposit = resp.json()

    # the callback carries the canonical phone the server stored
    detail = requests.get(f"{base}/api/v1/payments/transaction/{deposit['transactionId']}", timeout=10).json()
    phone = detail['transaction']['phoneNumber']

    headers = {'X-Webhook-Token': args.webhook_token} if args.webhook_token else {}
    payload = stk_callback(deposit['checkoutRequestId'], deposit['merchantRequestId'],
                           args.amount, phone, failed=args.fail)
    resp = requests.post(f'{base}/api/v1/payments/mpesa/stk-callback', json=payload,
                         headers=headers, timeout=10)
    print('\n  2) Gateway callback')
    print(f'  HTTP Status : {resp.status_code}')
    print(f'  Body        : {resp.text[:200]}')

    resp = requests.get(f"{base}/api/v1/payments/transaction/{deposit['transactionId']}", timeout=10)
    show('3) Settlement after callback', resp)

    status = resp.json().get('transaction', {}).get('status')
    print('=' * 50)
    expected = 'FAILED' if args.fail else 'COMPLETED'
    if status == expected:
        print(f'  OK: settlement is {status}')
    else:
        print(f'  UNEXPECTED: settlement is {status}, wanted {expected}')
        sys.exit(1)


if __name__ == '__main__':
    main()
