from django.urls import path

from .views import (
    collect_fee,
    collection_report,
    dashboard_report,
    defaulters_report,
    fee_receipt_pdf,
    fee_templates,
    ledger_concession,
    ledger_search,
    student_ledger,
    student_payment_history,
)

urlpatterns = [
    path('templates/', fee_templates, name='fee_templates'),
    path('pay/', collect_fee, name='fee_collect'),
    path('history/<int:student_id>/', student_payment_history, name='fee_payment_history'),
    path('ledger/', ledger_search, name='fee_ledger_search'),
    path('ledger/<int:student_id>/', student_ledger, name='fee_student_ledger'),
    path('ledger/<int:ledger_id>/concession/', ledger_concession, name='fee_ledger_concession'),

    path('reports/collection/', collection_report, name='fee_collection_report'),
    path('reports/defaulters/', defaulters_report, name='fee_defaulters_report'),
    path('reports/dashboard/', dashboard_report, name='fee_dashboard'),

    path('receipts/<int:receipt_id>/pdf/', fee_receipt_pdf, name='fee_receipt_pdf'),
]
