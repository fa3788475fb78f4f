from django.urls import path
from . import views

urlpatterns = [
    path('api/v1/payments/deposit', views.deposit, name='deposit'),
    path('api/v1/payments/withdraw', views.withdraw, name='withdraw'),
    path('api/v1/payments/mpesa/stk-callback', views.stk_callback, name='stk_callback'),
    path('api/v1/payments/mpesa/b2c-callback', views.b2c_callback, name='b2c_callback'),
    path('api/v1/payments/transactions/<str:wallet_address>', views.wallet_transactions, name='wallet_transactions'),
    path('api/v1/payments/transaction/<int:transaction_id>', views.transaction_detail, name='transaction_detail'),
    path('api/v1/payments/convert', views.convert_currency, name='convert_currency'),

    # Loans
    path('api/v1/loans', views.create_loan, name='create_loan'),
    path('api/v1/loans/chama/<str:group_ref>', views.group_loans, name='group_loans'),
    path('api/v1/loans/borrower/<str:wallet_address>', views.borrower_loans, name='borrower_loans'),
    path('api/v1/loans/<int:loan_id>/guarantors', views.loan_guarantors, name='loan_guarantors'),
    path('api/v1/loans/<int:loan_id>/status', views.loan_status, name='loan_status'),
    path('api/v1/loans/<int:loan_id>/repayments', views.loan_repayments, name='loan_repayments'),
]
