"""
LOAN GUARANTEE TRACKER
======================

Handles:
- Creating loan requests for a chama member
- Recording guarantor pledges and recomputing the approved total
- Auto-approving a pending loan once guarantees cover it
- Guarded status changes and repayments
"""
import calendar
import logging
import re
from datetime import timedelta
from decimal import Decimal

from django.db import transaction as db_transaction
from django.db.models import Sum
from django.utils import timezone

from ..models import Guarantee, Loan, Member

logger = logging.getLogger(__name__)

PERIOD_RE = re.compile(r'^P(?:(\d+)Y)?(?:(\d+)M)?(?:(\d+)W)?(?:(\d+)D)?$')

GUARANTEE_STATUSES = {'PENDING', 'APPROVED', 'REJECTED'}

ALLOWED_LOAN_TRANSITIONS = {
    'PENDING': {'APPROVED', 'REJECTED'},
    'APPROVED': {'ACTIVE', 'REJECTED'},
    'ACTIVE': {'OVERDUE', 'PAID'},
    'OVERDUE': {'ACTIVE', 'PAID', 'DEFAULTED'},
    'PAID': set(),
    'DEFAULTED': set(),
    'REJECTED': set(),
}


class LoanError(Exception):
    """Base exception for loan operations"""
    pass


class LoanNotFound(LoanError):
    pass


class MemberNotFound(LoanError):
    pass


class LoanTransitionError(LoanError):
    def __init__(self, current, requested):
        super().__init__(f'Loan cannot move from {current} to {requested}')
        self.current = current
        self.requested = requested


# ============================================================
# PURE RULES
# ============================================================

def can_transition(current, requested):
    if current == requested:
        return True
    return requested in ALLOWED_LOAN_TRANSITIONS.get(current, set())


def meets_auto_approval(status, total_guaranteed, principal, guarantor_count, required_count):
    return (
        status == 'PENDING'
        and total_guaranteed >= principal
        and guarantor_count >= required_count
    )


def add_period(start, term):
    """Add an ISO-8601 period such as 'P3M', 'P1Y2M' or 'P2W' to start."""
    match = PERIOD_RE.match((term or '').strip().upper())
    if not match or not any(match.groups()):
        raise LoanError(f'Invalid loan term: {term!r}')

    years, months, weeks, days = (int(part or 0) for part in match.groups())
    month_index = start.month - 1 + months + 12 * years
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day) + timedelta(weeks=weeks, days=days)


# ============================================================
# LOOKUPS
# ============================================================

def get_member(wallet_address):
    member = Member.objects.filter(wallet_address=wallet_address).first()
    if not member:
        raise MemberNotFound(f'Member {wallet_address} not found')
    return member


def get_loan(loan_id):
    loan = Loan.objects.select_related('borrower').filter(id=loan_id).first()
    if not loan:
        raise LoanNotFound(f'Loan {loan_id} not found')
    return loan


def loans_for_group(group_ref):
    return Loan.objects.select_related('borrower').filter(group_ref=group_ref)


def loans_for_borrower(wallet_address):
    return Loan.objects.select_related('borrower').filter(borrower__wallet_address=wallet_address)


def guarantees_for_loan(loan_id):
    loan = get_loan(loan_id)
    return loan.guarantees.select_related('guarantor').order_by('created_at', 'id')


# ============================================================
# CREATE LOAN
# ============================================================

def create_loan(group_ref, borrower_address, principal, interest_rate, term,
                required_guarantor_count, penalty=Decimal('0'), penalty_period_days=0):
    borrower = get_member(borrower_address)
    principal = Decimal(str(principal))
    if principal <= 0:
        raise LoanError('Loan amount must be greater than 0')
    if int(required_guarantor_count) < 0:
        raise LoanError('Required guarantor count cannot be negative')

    due_date = add_period(timezone.now(), term)

    loan = Loan.objects.create(
        group_ref=group_ref,
        borrower=borrower,
        principal=principal,
        interest_rate=Decimal(str(interest_rate or 0)),
        term=term.strip().upper(),
        due_date=due_date,
        required_guarantor_count=int(required_guarantor_count),
        penalty=Decimal(str(penalty or 0)),
        penalty_period_days=int(penalty_period_days or 0),
        total_guaranteed_amount=Decimal('0'),
        amount_repaid=Decimal('0'),
        outstanding_amount=principal,
        status='PENDING',
    )
    logger.info('Loan #%s of %s created for %s in chama %s', loan.id, principal, borrower_address, group_ref)
    return loan


# ============================================================
# GUARANTEES
# ============================================================

def recompute_guarantees(loan):
    """Refresh the approved total and apply the auto-approval rule. Caller holds the loan lock."""
    approved_total = loan.guarantees.filter(status='APPROVED').aggregate(
        total=Sum('guaranteed_amount'))['total'] or Decimal('0')
    guarantor_count = loan.guarantees.count()

    loan.total_guaranteed_amount = approved_total
    if meets_auto_approval(loan.status, approved_total, loan.principal,
                           guarantor_count, loan.required_guarantor_count):
        loan.status = 'APPROVED'
        logger.info('Loan #%s auto-approved: %s guaranteed by %s guarantor(s)',
                    loan.id, approved_total, guarantor_count)
    loan.save(update_fields=['total_guaranteed_amount', 'status', 'last_updated'])
    return loan


def add_or_update_guarantee(loan, guarantor_address, amount, status):
    status = (status or '').strip().upper()
    if status not in GUARANTEE_STATUSES:
        raise LoanError(f'Invalid guarantee status: {status!r}')

    guarantor = get_member(guarantor_address)

    with db_transaction.atomic():
        locked = Loan.objects.select_for_update().get(id=loan.id)
        guarantee, created = Guarantee.objects.get_or_create(
            loan=locked,
            guarantor=guarantor,
            defaults={'status': 'PENDING', 'guaranteed_amount': Decimal('0')},
        )
        guarantee.guaranteed_amount = Decimal(str(amount))
        guarantee.status = status
        guarantee.save()

        recompute_guarantees(locked)

    loan.total_guaranteed_amount = locked.total_guaranteed_amount
    loan.status = locked.status
    logger.info('%s guarantee by %s on loan #%s: %s %s', 'New' if created else 'Updated',
                guarantor_address, locked.id, guarantee.guaranteed_amount, status)
    return guarantee


# ============================================================
# STATUS & REPAYMENT
# ============================================================

def update_loan_status(loan, new_status):
    new_status = (new_status or '').strip().upper()
    if new_status not in ALLOWED_LOAN_TRANSITIONS:
        raise LoanError(f'Invalid loan status: {new_status!r}')

    with db_transaction.atomic():
        locked = Loan.objects.select_for_update().get(id=loan.id)
        if not can_transition(locked.status, new_status):
            raise LoanTransitionError(locked.status, new_status)
        previous = locked.status
        locked.status = new_status
        locked.save(update_fields=['status', 'last_updated'])

    loan.status = locked.status
    logger.info('Loan #%s status %s -> %s', locked.id, previous, new_status)
    return locked


def record_repayment(loan, amount):
    amount = Decimal(str(amount))
    if amount <= 0:
        raise LoanError('Repayment amount must be greater than 0')

    with db_transaction.atomic():
        locked = Loan.objects.select_for_update().get(id=loan.id)
        if locked.status not in {'ACTIVE', 'OVERDUE'}:
            raise LoanError(f'Cannot repay a loan that is {locked.status}')
        if amount > locked.outstanding_amount:
            raise LoanError(f'Repayment {amount} exceeds outstanding {locked.outstanding_amount}')

        locked.amount_repaid += amount
        locked.outstanding_amount -= amount
        if locked.outstanding_amount == 0:
            locked.status = 'PAID'
        locked.save(update_fields=['amount_repaid', 'outstanding_amount', 'status', 'last_updated'])

    logger.info('Repayment of %s on loan #%s, outstanding %s', amount, locked.id, locked.outstanding_amount)
    return locked


def mark_overdue_loans(now=None):
    now = now or timezone.now()
    overdue = 0
    for loan in Loan.objects.filter(status='ACTIVE', due_date__lt=now):
        try:
            update_loan_status(loan, 'OVERDUE')
        except LoanTransitionError:
            continue
        overdue += 1
    return overdue


# ============================================================
# SERIALIZATION
# ============================================================

def loan_to_dict(loan):
    return {
        'id': loan.id,
        'chamaAddress': loan.group_ref,
        'borrowerWalletAddress': loan.borrower.wallet_address,
        'borrowerName': loan.borrower.full_name,
        'loanAmount': str(loan.principal),
        'interestRate': str(loan.interest_rate),
        'term': loan.term,
        'dueDate': loan.due_date.isoformat(),
        'status': loan.status,
        'requiredGuarantors': loan.required_guarantor_count,
        'totalGuaranteedAmount': str(loan.total_guaranteed_amount),
        'amountRepaid': str(loan.amount_repaid),
        'outstandingAmount': str(loan.outstanding_amount),
    }


def guarantee_to_dict(guarantee):
    return {
        'walletAddress': guarantee.guarantor.wallet_address,
        'name': guarantee.guarantor.full_name,
        'guaranteedAmount': str(guarantee.guaranteed_amount),
        'status': guarantee.status,
    }
