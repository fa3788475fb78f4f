import json
import logging

from django.conf import settings
from django.http import HttpResponse, JsonResponse
from django.views.decorators.csrf import csrf_exempt

from .models import Member, SystemActivity
from .services import exchange_rates, ledger, loans, payments
from .services.mpesa_callbacks import CallbackFormatError
from .services.mpesa_client import MpesaAPIError
from .validators import InvalidAmount, InvalidPhoneNumber, InvalidWalletAddress, parse_amount

logger = logging.getLogger(__name__)

CALLBACK_OK = 'Callback processed successfully'
CALLBACK_FAILED = 'Callback processing failed'

INPUT_ERRORS = (InvalidWalletAddress, InvalidPhoneNumber, InvalidAmount)


def get_client_ip(request):
    forwarded = request.META.get('HTTP_X_FORWARDED_FOR')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR')


def log_activity(request, action, status='SUCCESS', member=None, detail=''):
    SystemActivity.objects.create(
        member=member,
        action=action,
        status=status,
        detail=sanitize_error_message(detail, limit=255),
        ip_address=get_client_ip(request),
        user_agent=(request.META.get('HTTP_USER_AGENT', '')[:255])
    )


def sanitize_error_message(message, limit=120):
    text = str(message or '')
    if len(text) > limit:
        return text[:limit]
    return text


def find_member(wallet_address):
    if not wallet_address:
        return None
    return Member.objects.filter(wallet_address=wallet_address).first()


def _read_json(request):
    try:
        payload = json.loads(request.body.decode('utf-8'))
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return payload if isinstance(payload, dict) else None


def _error(message, status=400):
    return JsonResponse({'success': False, 'error': message}, status=status)


# ============================================================
# PAYMENTS
# ============================================================

def _initiate(request, direction):
    if request.method != 'POST':
        return JsonResponse({'error': 'Method not allowed'}, status=405)

    payload = _read_json(request)
    if payload is None:
        return _error('Invalid JSON body')

    wallet_address = str(payload.get('walletAddress', '')).strip()
    phone_number = str(payload.get('phoneNumber', '')).strip()
    amount = payload.get('amount')
    action = 'DEPOSIT' if direction == 'DEPOSIT' else 'WITHDRAW'
    member = find_member(wallet_address)

    try:
        if direction == 'DEPOSIT':
            result = payments.initiate_deposit(wallet_address, phone_number, amount)
        else:
            result = payments.initiate_withdrawal(wallet_address, phone_number, amount)
    except INPUT_ERRORS as error:
        log_activity(request, action=action, status='FAILED', member=member, detail=str(error))
        return _error(str(error))
    except ledger.DuplicatePendingSettlement as error:
        log_activity(request, action=action, status='FAILED', member=member, detail=str(error))
        return _error(str(error), status=409)
    except MpesaAPIError as error:
        logger.error('M-Pesa %s initiation failed: %s', direction.lower(), error)
        log_activity(request, action=action, status='FAILED', member=member, detail='M-Pesa API error')
        return _error(f'Payment service unavailable: {sanitize_error_message(error)}', status=502)

    log_activity(
        request,
        action=action,
        status='SUCCESS',
        member=member,
        detail=f'M-Pesa {direction.lower()} #{result["transaction_id"]} initiated for {amount}'
    )

    if direction == 'DEPOSIT':
        return JsonResponse({
            'success': True,
            'transactionId': result['transaction_id'],
            'merchantRequestId': result['merchant_request_id'],
            'checkoutRequestId': result['checkout_request_id'],
            'responseCode': result['response_code'],
            'responseDescription': result['response_description'],
            'customerMessage': result['customer_message'],
        })
    return JsonResponse({
        'success': True,
        'transactionId': result['transaction_id'],
        'conversationId': result['conversation_id'],
        'originatorConversationId': result['originator_conversation_id'],
        'amountUSDT': str(result['amount_token']),
        'responseCode': result['response_code'],
        'responseDescription': result['response_description'],
    })


@csrf_exempt
def deposit(request):
    return _initiate(request, 'DEPOSIT')


@csrf_exempt
def withdraw(request):
    return _initiate(request, 'WITHDRAWAL')


def _handle_callback(request, action, processor):
    if request.method != 'POST':
        return JsonResponse({'error': 'Method not allowed'}, status=405)

    expected_token = getattr(settings, 'MPESA_WEBHOOK_TOKEN', '').strip()
    provided_token = request.headers.get('X-Webhook-Token', '').strip()
    if expected_token and provided_token != expected_token:
        return JsonResponse({'error': 'Unauthorized webhook'}, status=401)

    payload = _read_json(request)
    if payload is None:
        return JsonResponse({'error': 'Invalid JSON body'}, status=400)

    # every parsed body is acknowledged with 200
    try:
        outcome = processor(payload)
    except CallbackFormatError as error:
        logger.error('Malformed %s payload: %s', action, error)
        log_activity(request, action=action, status='FAILED', detail=f'Malformed callback: {error}')
        return HttpResponse(CALLBACK_FAILED, content_type='text/plain')
    except Exception:
        logger.exception('Error processing %s', action)
        log_activity(request, action=action, status='FAILED', detail='Unhandled callback error')
        return HttpResponse(CALLBACK_FAILED, content_type='text/plain')

    log_activity(
        request,
        action=action,
        status='SUCCESS' if outcome['processed'] else 'FAILED',
        detail=f'Settlement {outcome["settlement_id"]}: {outcome["reason"]}'
    )
    return HttpResponse(CALLBACK_OK, content_type='text/plain')


@csrf_exempt
def stk_callback(request):
    return _handle_callback(request, 'STK_CALLBACK', payments.process_deposit_callback)


@csrf_exempt
def b2c_callback(request):
    return _handle_callback(request, 'B2C_CALLBACK', payments.process_withdrawal_callback)


def wallet_transactions(request, wallet_address):
    if request.method != 'GET':
        return JsonResponse({'error': 'Method not allowed'}, status=405)

    records = ledger.settlements_for_owner(wallet_address)
    return JsonResponse({
        'success': True,
        'transactions': [ledger.settlement_to_dict(record) for record in records],
    })


def transaction_detail(request, transaction_id):
    if request.method != 'GET':
        return JsonResponse({'error': 'Method not allowed'}, status=405)

    try:
        record = ledger.settlement_detail(transaction_id)
    except ledger.SettlementNotFound as error:
        return _error(str(error), status=404)
    return JsonResponse({'success': True, 'transaction': ledger.settlement_to_dict(record)})


def convert_currency(request):
    if request.method != 'GET':
        return JsonResponse({'error': 'Method not allowed'}, status=405)

    source = request.GET.get('from', '')
    target = request.GET.get('to', '')
    try:
        amount = parse_amount(request.GET.get('amount'), allow_zero=True)
        result = exchange_rates.convert(amount, source, target)
    except (InvalidAmount, exchange_rates.UnsupportedCurrencyPair) as error:
        return _error(str(error))

    return JsonResponse({
        'success': True,
        'amount': str(amount),
        'from': source.upper(),
        'to': target.upper(),
        'result': str(result),
    })


# ============================================================
# LOANS
# ============================================================

def _loan_error(error):
    if isinstance(error, (loans.LoanNotFound, loans.MemberNotFound)):
        return _error(str(error), status=404)
    if isinstance(error, loans.LoanTransitionError):
        return _error(str(error), status=409)
    return _error(str(error))


@csrf_exempt
def create_loan(request):
    if request.method != 'POST':
        return JsonResponse({'error': 'Method not allowed'}, status=405)

    payload = _read_json(request)
    if payload is None:
        return _error('Invalid JSON body')

    group_ref = str(payload.get('chamaAddress', '')).strip()
    borrower_address = str(payload.get('borrowerWalletAddress', '')).strip()
    term = str(payload.get('term', '')).strip()
    if not group_ref or not borrower_address or not term:
        return _error('chamaAddress, borrowerWalletAddress and term are required')

    try:
        loan = loans.create_loan(
            group_ref=group_ref,
            borrower_address=borrower_address,
            principal=parse_amount(payload.get('loanAmount')),
            interest_rate=parse_amount(payload.get('interestRate', 0), allow_zero=True),
            term=term,
            required_guarantor_count=int(payload.get('requiredGuarantors', 0)),
            penalty=parse_amount(payload.get('penalty', 0), allow_zero=True),
            penalty_period_days=int(payload.get('penaltyPeriod', 0)),
        )
    except (InvalidAmount, TypeError, ValueError) as error:
        log_activity(request, action='LOAN_CREATE', status='FAILED',
                     member=find_member(borrower_address), detail=str(error))
        return _error(str(error))
    except loans.LoanError as error:
        log_activity(request, action='LOAN_CREATE', status='FAILED',
                     member=find_member(borrower_address), detail=str(error))
        return _loan_error(error)

    log_activity(request, action='LOAN_CREATE', status='SUCCESS', member=loan.borrower,
                 detail=f'Loan #{loan.id} of {loan.principal} requested in {group_ref}')
    return JsonResponse({'success': True, 'loan': loans.loan_to_dict(loan)}, status=201)


def group_loans(request, group_ref):
    if request.method != 'GET':
        return JsonResponse({'error': 'Method not allowed'}, status=405)
    return JsonResponse({
        'success': True,
        'loans': [loans.loan_to_dict(loan) for loan in loans.loans_for_group(group_ref)],
    })


def borrower_loans(request, wallet_address):
    if request.method != 'GET':
        return JsonResponse({'error': 'Method not allowed'}, status=405)
    return JsonResponse({
        'success': True,
        'loans': [loans.loan_to_dict(loan) for loan in loans.loans_for_borrower(wallet_address)],
    })


@csrf_exempt
def loan_guarantors(request, loan_id):
    if request.method == 'GET':
        try:
            guarantees = loans.guarantees_for_loan(loan_id)
        except loans.LoanError as error:
            return _loan_error(error)
        return JsonResponse({
            'success': True,
            'guarantors': [loans.guarantee_to_dict(guarantee) for guarantee in guarantees],
        })

    if request.method != 'PUT':
        return JsonResponse({'error': 'Method not allowed'}, status=405)

    payload = _read_json(request)
    if payload is None:
        return _error('Invalid JSON body')

    guarantor_address = str(payload.get('walletAddress', '')).strip()
    try:
        loan = loans.get_loan(loan_id)
        guarantee = loans.add_or_update_guarantee(
            loan,
            guarantor_address,
            parse_amount(payload.get('guaranteedAmount'), allow_zero=True),
            str(payload.get('status', 'PENDING')),
        )
    except InvalidAmount as error:
        return _error(str(error))
    except loans.LoanError as error:
        log_activity(request, action='GUARANTEE_UPDATE', status='FAILED',
                     member=find_member(guarantor_address), detail=str(error))
        return _loan_error(error)

    log_activity(request, action='GUARANTEE_UPDATE', status='SUCCESS', member=guarantee.guarantor,
                 detail=f'Guarantee {guarantee.guaranteed_amount} {guarantee.status} on loan #{loan.id}')
    return JsonResponse({
        'success': True,
        'guarantee': loans.guarantee_to_dict(guarantee),
        'loanStatus': loan.status,
        'totalGuaranteedAmount': str(loan.total_guaranteed_amount),
    })


@csrf_exempt
def loan_status(request, loan_id):
    if request.method != 'PUT':
        return JsonResponse({'error': 'Method not allowed'}, status=405)

    payload = _read_json(request)
    if payload is None:
        return _error('Invalid JSON body')

    try:
        loan = loans.update_loan_status(loans.get_loan(loan_id), str(payload.get('status', '')))
    except loans.LoanError as error:
        log_activity(request, action='LOAN_STATUS', status='FAILED', detail=str(error))
        return _loan_error(error)

    log_activity(request, action='LOAN_STATUS', status='SUCCESS', member=loan.borrower,
                 detail=f'Loan #{loan.id} is now {loan.status}')
    return JsonResponse({'success': True, 'loan': loans.loan_to_dict(loan)})


@csrf_exempt
def loan_repayments(request, loan_id):
    if request.method != 'POST':
        return JsonResponse({'error': 'Method not allowed'}, status=405)

    payload = _read_json(request)
    if payload is None:
        return _error('Invalid JSON body')

    try:
        loan = loans.record_repayment(loans.get_loan(loan_id), parse_amount(payload.get('amount')))
    except InvalidAmount as error:
        return _error(str(error))
    except loans.LoanError as error:
        log_activity(request, action='LOAN_REPAYMENT', status='FAILED', detail=str(error))
        return _loan_error(error)

    log_activity(request, action='LOAN_REPAYMENT', status='SUCCESS', member=loan.borrower,
                 detail=f'Repayment on loan #{loan.id}, outstanding {loan.outstanding_amount}')
    return JsonResponse({'success': True, 'loan': loans.loan_to_dict(loan)})
