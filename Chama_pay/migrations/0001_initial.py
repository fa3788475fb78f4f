from decimal import Decimal

from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Member',
            fields=[
                ('id', models.AutoField(primary_key=True, serialize=False)),
                ('wallet_address', models.CharField(max_length=42, unique=True)),
                ('full_name', models.CharField(max_length=150)),
                ('phone_number', models.CharField(blank=True, max_length=20)),
                ('email', models.EmailField(blank=True, max_length=254)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
        ),
        migrations.CreateModel(
            name='SettlementRecord',
            fields=[
                ('id', models.AutoField(primary_key=True, serialize=False)),
                ('owner_address', models.CharField(max_length=42)),
                ('phone_number', models.CharField(max_length=20)),
                ('direction', models.CharField(choices=[('DEPOSIT', 'Deposit'), ('WITHDRAWAL', 'Withdrawal')], max_length=10)),
                ('amount_local', models.DecimalField(decimal_places=2, max_digits=14)),
                ('amount_token', models.DecimalField(decimal_places=6, default=Decimal('0'), max_digits=20)),
                ('gateway_request_id', models.CharField(blank=True, max_length=100)),
                ('merchant_request_id', models.CharField(blank=True, max_length=100)),
                ('gateway_receipt_id', models.CharField(blank=True, max_length=100)),
                ('chain_tx_id', models.CharField(blank=True, max_length=100)),
                ('status', models.CharField(choices=[('PENDING', 'Pending'), ('COMPLETED', 'Completed'), ('FAILED', 'Failed'), ('CANCELLED', 'Cancelled')], default='PENDING', max_length=10)),
                ('failure_reason', models.CharField(blank=True, max_length=255)),
                ('description', models.CharField(blank=True, max_length=255)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='ChainTransferLeg',
            fields=[
                ('id', models.AutoField(primary_key=True, serialize=False)),
                ('destination_address', models.CharField(max_length=42)),
                ('amount_token', models.DecimalField(decimal_places=6, max_digits=20)),
                ('status', models.CharField(choices=[('PENDING', 'Pending'), ('SUBMITTED', 'Submitted'), ('CONFIRMED', 'Confirmed'), ('DEAD', 'Dead letter')], default='PENDING', max_length=10)),
                ('attempts', models.PositiveIntegerField(default=0)),
                ('next_attempt_at', models.DateTimeField(blank=True, null=True)),
                ('chain_tx_id', models.CharField(blank=True, max_length=100)),
                ('last_error', models.CharField(blank=True, max_length=255)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('submitted_at', models.DateTimeField(blank=True, null=True)),
                ('confirmed_at', models.DateTimeField(blank=True, null=True)),
                ('settlement', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='chain_leg', to='Chama_pay.settlementrecord')),
            ],
            options={
                'ordering': ['created_at'],
            },
        ),
        migrations.CreateModel(
            name='Loan',
            fields=[
                ('id', models.AutoField(primary_key=True, serialize=False)),
                ('group_ref', models.CharField(db_index=True, max_length=64)),
                ('principal', models.DecimalField(decimal_places=2, max_digits=14)),
                ('interest_rate', models.DecimalField(decimal_places=2, default=Decimal('0'), max_digits=6)),
                ('term', models.CharField(max_length=20)),
                ('due_date', models.DateTimeField()),
                ('required_guarantor_count', models.PositiveIntegerField(default=0)),
                ('total_guaranteed_amount', models.DecimalField(decimal_places=2, default=Decimal('0'), max_digits=14)),
                ('status', models.CharField(choices=[('PENDING', 'Pending'), ('APPROVED', 'Approved'), ('ACTIVE', 'Active'), ('OVERDUE', 'Overdue'), ('PAID', 'Paid'), ('DEFAULTED', 'Defaulted'), ('REJECTED', 'Rejected')], default='PENDING', max_length=10)),
                ('penalty', models.DecimalField(decimal_places=2, default=Decimal('0'), max_digits=14)),
                ('penalty_period_days', models.PositiveIntegerField(default=0)),
                ('amount_repaid', models.DecimalField(decimal_places=2, default=Decimal('0'), max_digits=14)),
                ('outstanding_amount', models.DecimalField(decimal_places=2, default=Decimal('0'), max_digits=14)),
                ('date_issued', models.DateTimeField(auto_now_add=True)),
                ('last_updated', models.DateTimeField(auto_now=True)),
                ('borrower', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='loans', to='Chama_pay.member')),
            ],
            options={
                'ordering': ['-date_issued'],
            },
        ),
        migrations.CreateModel(
            name='Guarantee',
            fields=[
                ('id', models.AutoField(primary_key=True, serialize=False)),
                ('guaranteed_amount', models.DecimalField(decimal_places=2, default=Decimal('0'), max_digits=14)),
                ('status', models.CharField(choices=[('PENDING', 'Pending'), ('APPROVED', 'Approved'), ('REJECTED', 'Rejected')], default='PENDING', max_length=10)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('guarantor', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='guarantees', to='Chama_pay.member')),
                ('loan', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='guarantees', to='Chama_pay.loan')),
            ],
            options={
                'ordering': ['created_at'],
            },
        ),
        migrations.CreateModel(
            name='SystemActivity',
            fields=[
                ('id', models.AutoField(primary_key=True, serialize=False)),
                ('action', models.CharField(choices=[('DEPOSIT', 'Mobile money deposit'), ('WITHDRAW', 'Mobile money withdrawal'), ('STK_CALLBACK', 'Deposit callback'), ('B2C_CALLBACK', 'Withdrawal callback'), ('LOAN_CREATE', 'Loan created'), ('GUARANTEE_UPDATE', 'Guarantee updated'), ('LOAN_STATUS', 'Loan status changed'), ('LOAN_REPAYMENT', 'Loan repayment')], max_length=20)),
                ('status', models.CharField(choices=[('SUCCESS', 'Success'), ('FAILED', 'Failed')], default='SUCCESS', max_length=10)),
                ('detail', models.CharField(blank=True, max_length=255)),
                ('ip_address', models.GenericIPAddressField(blank=True, null=True)),
                ('user_agent', models.CharField(blank=True, max_length=255)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('member', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='activities', to='Chama_pay.member')),
            ],
            options={
                'ordering': ['-created_at'],
            },
        ),
        migrations.AddConstraint(
            model_name='settlementrecord',
            constraint=models.UniqueConstraint(condition=models.Q(('status', 'PENDING')), fields=('phone_number', 'direction'), name='unique_pending_settlement_per_phone'),
        ),
        migrations.AddConstraint(
            model_name='settlementrecord',
            constraint=models.UniqueConstraint(condition=models.Q(('gateway_request_id', ''), _negated=True), fields=('gateway_request_id',), name='unique_settlement_gateway_request'),
        ),
        migrations.AddConstraint(
            model_name='settlementrecord',
            constraint=models.UniqueConstraint(condition=models.Q(('gateway_receipt_id', ''), _negated=True), fields=('gateway_receipt_id',), name='unique_settlement_gateway_receipt'),
        ),
        migrations.AddConstraint(
            model_name='guarantee',
            constraint=models.UniqueConstraint(fields=('loan', 'guarantor'), name='unique_guarantor_per_loan'),
        ),
    ]
