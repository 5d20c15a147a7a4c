"""
Read-only fee reports.

Aggregates are cached under a shared version number; every committed ledger
write bumps the version so stale entries are never read again and simply
expire after ``FEES_REPORT_CACHE_TIMEOUT``.
"""
import logging
import time

from django.conf import settings
from django.core.cache import cache
from django.db.models import Count, Q, Sum
from django.utils import timezone

from apps.core.academics.models import ClassLevel
from apps.core.utils.money import ZERO, quantize

from .exceptions import NotFound
from .models import FeeReceipt, StudentLedger

logger = logging.getLogger(__name__)

REPORTS_VERSION_KEY = 'fees:reports:version'


def _reports_version():
    version = cache.get(REPORTS_VERSION_KEY)
    if version is None:
        cache.add(REPORTS_VERSION_KEY, time.time_ns(), None)
        version = cache.get(REPORTS_VERSION_KEY)
    return version


def invalidate_fee_reports():
    try:
        cache.incr(REPORTS_VERSION_KEY)
    except ValueError:
        cache.set(REPORTS_VERSION_KEY, time.time_ns(), None)
    logger.debug('Fee report cache invalidated')


def _cached(name, params, builder):
    key = f"fees:reports:{_reports_version()}:{name}:{params}"
    value = cache.get(key)
    if value is None:
        value = builder()
        cache.set(key, value, settings.FEES_REPORT_CACHE_TIMEOUT)
    return value


def _sum(queryset, field_name):
    return quantize(queryset.aggregate(total=Sum(field_name)).get('total') or ZERO)


def collection_summary(*, start_date, end_date):
    """Total collected between two dates (inclusive), broken down by payment mode."""

    def build():
        rows = (
            FeeReceipt.objects.filter(payment_date__gte=start_date, payment_date__lte=end_date)
            .values('payment_mode')
            .annotate(total_amount=Sum('amount_paid'), count=Count('id'))
            .order_by('payment_mode')
        )
        breakdown = [
            {
                'payment_mode': row['payment_mode'],
                'total_amount': quantize(row['total_amount']),
                'count': row['count'],
            }
            for row in rows
        ]
        return {
            'start_date': start_date,
            'end_date': end_date,
            'total_collection': quantize(sum((row['total_amount'] for row in breakdown), ZERO)),
            'breakdown': breakdown,
        }

    return _cached('collection', f"{start_date}:{end_date}", build)


def defaulters(*, class_level=None, academic_year=None):
    """Ledgers still PENDING or PARTIAL, optionally limited to one class and year."""
    class_level_id = getattr(class_level, 'pk', class_level)
    academic_year_id = getattr(academic_year, 'pk', academic_year)

    if class_level_id is not None:
        try:
            known_class = ClassLevel.objects.filter(pk=class_level_id).exists()
        except (TypeError, ValueError):
            known_class = False
        if not known_class:
            return []

    def build():
        ledgers = StudentLedger.objects.filter(
            status__in=StudentLedger.OPEN_STATUSES,
        ).select_related('student', 'class_level', 'academic_year')
        if class_level_id is not None:
            ledgers = ledgers.filter(class_level_id=class_level_id)
        if academic_year_id is not None:
            ledgers = ledgers.filter(academic_year_id=academic_year_id)

        return [
            {
                'ledger_id': ledger.pk,
                'student_id': ledger.student_id,
                'admission_number': ledger.student.admission_number,
                'student_name': ledger.student.full_name,
                'class_level': ledger.class_level.name,
                'academic_year': ledger.academic_year.name,
                'final_amount': ledger.final_amount,
                'paid_amount': ledger.paid_amount,
                'due_amount': ledger.due_amount,
                'status': ledger.status,
            }
            for ledger in ledgers.order_by('class_level__display_order', 'student__admission_number')
        ]

    return _cached('defaulters', f"{class_level_id}:{academic_year_id}", build)


def dashboard_stats(*, today=None):
    today = today or timezone.localdate()

    def build():
        open_ledgers = StudentLedger.objects.filter(status__in=StudentLedger.OPEN_STATUSES)
        return {
            'today_collection': _sum(FeeReceipt.objects.filter(payment_date=today), 'amount_paid'),
            'total_collection': _sum(FeeReceipt.objects.all(), 'amount_paid'),
            'pending_amount': _sum(open_ledgers, 'due_amount'),
            'defaulters_count': open_ledgers.count(),
            'total_concession': _sum(StudentLedger.objects.all(), 'concession_amount'),
        }

    return _cached('dashboard', str(today), build)


def payment_history(*, student, academic_year=None):
    receipts = FeeReceipt.objects.filter(student=student).select_related('collected_by', 'academic_year')
    if academic_year is not None:
        receipts = receipts.filter(academic_year=academic_year)
    return receipts.order_by('-payment_date', '-id')


def get_student_ledger(*, student, academic_year):
    ledger = (
        StudentLedger.objects.filter(student=student, academic_year=academic_year)
        .select_related('student', 'academic_year', 'class_level', 'fee_template')
        .prefetch_related('installments')
        .first()
    )
    if ledger is None:
        raise NotFound('Fee ledger not found for this student and academic year.')
    return ledger


def search_ledgers(*, query, academic_year=None, limit=50):
    """Ledgers whose student matches an exact admission number or every word of a name."""
    query = (query or '').strip()
    if not query:
        return StudentLedger.objects.none()

    name_match = Q()
    for term in query.split():
        name_match &= Q(student__first_name__icontains=term) | Q(student__last_name__icontains=term)

    ledgers = StudentLedger.objects.filter(
        Q(student__admission_number=query) | name_match,
    ).select_related('student', 'academic_year', 'class_level')
    if academic_year is not None:
        ledgers = ledgers.filter(academic_year=academic_year)
    return ledgers.order_by('student__admission_number', '-academic_year__start_date')[:limit]
