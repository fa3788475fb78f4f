from decimal import Decimal

from django.db import models
from django.db.models import Q


class Member(models.Model):
    """A chama member, identified by the wallet address used on-chain."""

    id = models.AutoField(primary_key=True)
    wallet_address = models.CharField(max_length=42, unique=True)
    full_name = models.CharField(max_length=150)
    phone_number = models.CharField(max_length=20, blank=True)
    email = models.EmailField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.full_name} ({self.wallet_address})"


class SettlementRecord(models.Model):
    """One mobile-money deposit or withdrawal attempt, from initiation to terminal status."""

    DIRECTION_CHOICES = [
        ('DEPOSIT', 'Deposit'),
        ('WITHDRAWAL', 'Withdrawal'),
    ]

    STATUS_CHOICES = [
        ('PENDING', 'Pending'),
        ('COMPLETED', 'Completed'),
        ('FAILED', 'Failed'),
        ('CANCELLED', 'Cancelled'),
    ]

    TERMINAL_STATUSES = {'COMPLETED', 'FAILED', 'CANCELLED'}

    id = models.AutoField(primary_key=True)
    owner_address = models.CharField(max_length=42)
    phone_number = models.CharField(max_length=20)
    direction = models.CharField(max_length=10, choices=DIRECTION_CHOICES)
    amount_local = models.DecimalField(max_digits=14, decimal_places=2)
    amount_token = models.DecimalField(max_digits=20, decimal_places=6, default=Decimal('0'))
    gateway_request_id = models.CharField(max_length=100, blank=True)
    merchant_request_id = models.CharField(max_length=100, blank=True)
    gateway_receipt_id = models.CharField(max_length=100, blank=True)
    chain_tx_id = models.CharField(max_length=100, blank=True)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='PENDING')
    failure_reason = models.CharField(max_length=255, blank=True)
    description = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['phone_number', 'direction'],
                condition=Q(status='PENDING'),
                name='unique_pending_settlement_per_phone',
            ),
            models.UniqueConstraint(
                fields=['gateway_request_id'],
                condition=~Q(gateway_request_id=''),
                name='unique_settlement_gateway_request',
            ),
            models.UniqueConstraint(
                fields=['gateway_receipt_id'],
                condition=~Q(gateway_receipt_id=''),
                name='unique_settlement_gateway_receipt',
            ),
        ]

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    def __str__(self):
        return f"{self.direction} {self.amount_local} - {self.phone_number} ({self.status})"


class ChainTransferLeg(models.Model):
    """Outbox entry driving the on-chain token transfer after a completed deposit."""

    STATUS_CHOICES = [
        ('PENDING', 'Pending'),
        ('SUBMITTED', 'Submitted'),
        ('CONFIRMED', 'Confirmed'),
        ('DEAD', 'Dead letter'),
    ]

    id = models.AutoField(primary_key=True)
    settlement = models.OneToOneField(SettlementRecord, on_delete=models.CASCADE, related_name='chain_leg')
    destination_address = models.CharField(max_length=42)
    amount_token = models.DecimalField(max_digits=20, decimal_places=6)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='PENDING')
    attempts = models.PositiveIntegerField(default=0)
    next_attempt_at = models.DateTimeField(null=True, blank=True)
    chain_tx_id = models.CharField(max_length=100, blank=True)
    last_error = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    submitted_at = models.DateTimeField(null=True, blank=True)
    confirmed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['created_at']

    def __str__(self):
        return f"Chain leg #{self.settlement_id} {self.amount_token} -> {self.destination_address} ({self.status})"


class Loan(models.Model):
    STATUS_CHOICES = [
        ('PENDING', 'Pending'),
        ('APPROVED', 'Approved'),
        ('ACTIVE', 'Active'),
        ('OVERDUE', 'Overdue'),
        ('PAID', 'Paid'),
        ('DEFAULTED', 'Defaulted'),
        ('REJECTED', 'Rejected'),
    ]

    id = models.AutoField(primary_key=True)
    group_ref = models.CharField(max_length=64, db_index=True)
    borrower = models.ForeignKey(Member, on_delete=models.PROTECT, related_name='loans')
    principal = models.DecimalField(max_digits=14, decimal_places=2)
    interest_rate = models.DecimalField(max_digits=6, decimal_places=2, default=Decimal('0'))
    term = models.CharField(max_length=20)
    due_date = models.DateTimeField()
    required_guarantor_count = models.PositiveIntegerField(default=0)
    total_guaranteed_amount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0'))
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='PENDING')
    penalty = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0'))
    penalty_period_days = models.PositiveIntegerField(default=0)
    amount_repaid = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0'))
    outstanding_amount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0'))
    date_issued = models.DateTimeField(auto_now_add=True)
    last_updated = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-date_issued']

    def __str__(self):
        return f"Loan #{self.id} {self.principal} to {self.borrower.wallet_address} ({self.status})"


class Guarantee(models.Model):
    STATUS_CHOICES = [
        ('PENDING', 'Pending'),
        ('APPROVED', 'Approved'),
        ('REJECTED', 'Rejected'),
    ]

    id = models.AutoField(primary_key=True)
    loan = models.ForeignKey(Loan, on_delete=models.CASCADE, related_name='guarantees')
    guarantor = models.ForeignKey(Member, on_delete=models.PROTECT, related_name='guarantees')
    guaranteed_amount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0'))
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='PENDING')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['created_at']
        constraints = [
            models.UniqueConstraint(fields=['loan', 'guarantor'], name='unique_guarantor_per_loan'),
        ]

    def __str__(self):
        return f"{self.guarantor.wallet_address} guarantees {self.guaranteed_amount} on loan #{self.loan_id} ({self.status})"


class SystemActivity(models.Model):
    ACTION_CHOICES = [
        ('DEPOSIT', 'Mobile money deposit'),
        ('WITHDRAW', 'Mobile money withdrawal'),
        ('STK_CALLBACK', 'Deposit callback'),
        ('B2C_CALLBACK', 'Withdrawal callback'),
        ('LOAN_CREATE', 'Loan created'),
        ('GUARANTEE_UPDATE', 'Guarantee updated'),
        ('LOAN_STATUS', 'Loan status changed'),
        ('LOAN_REPAYMENT', 'Loan repayment'),
    ]

    STATUS_CHOICES = [
        ('SUCCESS', 'Success'),
        ('FAILED', 'Failed'),
    ]

    id = models.AutoField(primary_key=True)
    member = models.ForeignKey(Member, on_delete=models.SET_NULL, null=True, blank=True, related_name='activities')
    action = models.CharField(max_length=20, choices=ACTION_CHOICES)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='SUCCESS')
    detail = models.CharField(max_length=255, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        who = self.member.full_name if self.member else "Unknown member"
        return f"[{self.status}] {self.action} - {who}"
