import logging

from django.db import transaction

from apps.core.academic_years.models import AcademicYear
from apps.core.academics.models import ClassLevel
from apps.core.fees.exceptions import get_or_not_found
from apps.core.fees.services import generate_ledger

from .models import Parent, Student

logger = logging.getLogger(__name__)


def _find_or_create_parent(*, phone, father_name='', mother_name='', email='', address=''):
    phone = phone.strip()
    parent = Parent.objects.filter(primary_phone=phone).first()
    if parent is not None:
        return parent

    parent = Parent(
        primary_phone=phone,
        father_name=father_name,
        mother_name=mother_name,
        email=email,
        address=address,
    )
    parent.full_clean()
    parent.save()
    return parent


@transaction.atomic
def admit_student(
    *,
    first_name,
    last_name,
    date_of_birth,
    gender,
    academic_year,
    class_level,
    parent_phone,
    father_name='',
    mother_name='',
    parent_email='',
    address='',
):
    """Register a student and open their fee ledger in one unit of work.

    Returns ``(student, ledger)``; ``ledger`` is None when the class has no fee
    template for the year. Any failure rolls back the student and parent too.
    """
    academic_year = get_or_not_found(AcademicYear, academic_year, 'Academic year')
    class_level = get_or_not_found(ClassLevel, class_level, 'Class')

    parent = _find_or_create_parent(
        phone=parent_phone,
        father_name=father_name,
        mother_name=mother_name,
        email=parent_email,
        address=address,
    )

    student = Student(
        first_name=first_name.strip(),
        last_name=(last_name or '').strip(),
        date_of_birth=date_of_birth,
        gender=gender,
        parent=parent,
        academic_year=academic_year,
        class_level=class_level,
    )
    student.full_clean(exclude=['admission_number'])
    student.save()

    ledger = generate_ledger(student=student, academic_year=academic_year, class_level=class_level)

    logger.info(
        'Admitted student %s to %s (%s); ledger %s',
        student.admission_number,
        class_level.name,
        academic_year.name,
        f"#{ledger.pk}" if ledger else 'not generated',
    )
    return student, ledger
