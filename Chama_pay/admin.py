from django.contrib import admin
from django.utils import timezone
from .models import ChainTransferLeg, Guarantee, Loan, Member, SettlementRecord, SystemActivity
from .services import ledger, loans


@admin.register(Member)
class MemberAdmin(admin.ModelAdmin):
	list_display = ('id', 'full_name', 'wallet_address', 'phone_number', 'email')
	search_fields = ('full_name', 'wallet_address', 'phone_number', 'email')
	list_per_page = 25


@admin.register(SettlementRecord)
class SettlementRecordAdmin(admin.ModelAdmin):
	list_display = ('id', 'direction', 'status', 'owner_address', 'phone_number', 'amount_local', 'amount_token', 'gateway_receipt_id', 'created_at')
	search_fields = ('owner_address', 'phone_number', 'gateway_request_id', 'gateway_receipt_id', 'chain_tx_id')
	list_filter = ('direction', 'status', 'created_at')
	date_hierarchy = 'created_at'
	readonly_fields = (
		'owner_address', 'phone_number', 'direction', 'amount_local', 'amount_token', 'status',
		'gateway_request_id', 'merchant_request_id', 'gateway_receipt_id', 'chain_tx_id',
		'failure_reason', 'created_at', 'updated_at', 'completed_at',
	)
	actions = ['cancel_pending_settlements']
	list_per_page = 30

	def has_add_permission(self, request):
		return False

	@admin.action(description='Cancel selected pending settlements')
	def cancel_pending_settlements(self, request, queryset):
		count = 0
		for record in queryset.filter(status='PENDING'):
			try:
				ledger.cancel(record, reason=f'Cancelled by {request.user}')
			except ledger.SettlementStateError:
				continue
			count += 1
		if count:
			self.message_user(request, f'{count} settlement(s) cancelled.')
		else:
			self.message_user(request, 'No pending settlements in selection.', level='warning')


@admin.register(ChainTransferLeg)
class ChainTransferLegAdmin(admin.ModelAdmin):
	list_display = ('settlement', 'status', 'destination_address', 'amount_token', 'attempts', 'next_attempt_at', 'chain_tx_id')
	search_fields = ('destination_address', 'chain_tx_id', 'settlement__gateway_receipt_id')
	list_filter = ('status', 'created_at')
	list_select_related = ('settlement',)
	readonly_fields = ('created_at', 'submitted_at', 'confirmed_at')
	actions = ['requeue_dead_legs']
	list_per_page = 30

	@admin.action(description='Requeue selected dead-lettered transfers')
	def requeue_dead_legs(self, request, queryset):
		count = queryset.filter(status='DEAD').update(status='PENDING', attempts=0, next_attempt_at=timezone.now())
		if count:
			self.message_user(request, f'{count} transfer(s) requeued.')
		else:
			self.message_user(request, 'No dead-lettered transfers in selection.', level='warning')


class GuaranteeInline(admin.TabularInline):
	model = Guarantee
	extra = 0
	can_delete = False
	readonly_fields = ('guarantor', 'guaranteed_amount', 'status', 'created_at', 'updated_at')

	def has_add_permission(self, request, obj=None):
		return False


@admin.register(Loan)
class LoanAdmin(admin.ModelAdmin):
	list_display = ('id', 'group_ref', 'borrower', 'principal', 'total_guaranteed_amount', 'outstanding_amount', 'status', 'due_date')
	search_fields = ('group_ref', 'borrower__full_name', 'borrower__wallet_address')
	list_filter = ('status', 'date_issued', 'due_date')
	list_select_related = ('borrower',)
	readonly_fields = (
		'group_ref', 'borrower', 'principal', 'term', 'required_guarantor_count', 'status',
		'total_guaranteed_amount', 'amount_repaid', 'outstanding_amount', 'date_issued', 'last_updated',
	)
	inlines = [GuaranteeInline]
	actions = ['activate_loans', 'reject_loans', 'mark_defaulted']
	list_per_page = 25

	def has_add_permission(self, request):
		return False

	def _move_loans(self, request, queryset, status):
		moved, refused = 0, []
		for loan in queryset:
			try:
				loans.update_loan_status(loan, status)
			except loans.LoanTransitionError as error:
				refused.append(f'#{loan.id} ({error.current})')
				continue
			moved += 1
		if moved:
			self.message_user(request, f'{moved} loan(s) moved to {status}.')
		if refused:
			self.message_user(request, f'Not allowed for loan(s) {", ".join(refused)}.', level='warning')

	@admin.action(description='Activate selected approved loans')
	def activate_loans(self, request, queryset):
		self._move_loans(request, queryset, 'ACTIVE')

	@admin.action(description='Reject selected loans')
	def reject_loans(self, request, queryset):
		self._move_loans(request, queryset, 'REJECTED')

	@admin.action(description='Mark selected overdue loans as defaulted')
	def mark_defaulted(self, request, queryset):
		self._move_loans(request, queryset, 'DEFAULTED')


@admin.register(Guarantee)
class GuaranteeAdmin(admin.ModelAdmin):
	list_display = ('loan', 'guarantor', 'guaranteed_amount', 'status', 'updated_at')
	search_fields = ('guarantor__full_name', 'guarantor__wallet_address')
	list_filter = ('status',)
	list_select_related = ('loan', 'guarantor')
	readonly_fields = ('loan', 'guarantor', 'guaranteed_amount', 'status', 'created_at', 'updated_at')
	list_per_page = 25

	def has_add_permission(self, request):
		return False

	def has_delete_permission(self, request, obj=None):
		return False


@admin.register(SystemActivity)
class SystemActivityAdmin(admin.ModelAdmin):
	list_display = ('created_at', 'action', 'status', 'member', 'ip_address', 'detail')
	search_fields = ('member__full_name', 'member__wallet_address', 'detail', 'ip_address')
	list_filter = ('action', 'status', 'created_at')
	date_hierarchy = 'created_at'
	list_select_related = ('member',)
	readonly_fields = ('created_at',)
	list_per_page = 40
