from django.db import transaction

from apps.core.academic_years.models import AcademicYear


def activate_academic_year(*, academic_year: AcademicYear) -> AcademicYear:
    with transaction.atomic():
        AcademicYear.objects.filter(
            is_current=True,
        ).exclude(pk=academic_year.pk).update(is_current=False)

        if not academic_year.is_current:
            academic_year.is_current = True
            academic_year.save(update_fields=['is_current'])

    return academic_year


def get_current_academic_year():
    return AcademicYear.objects.filter(is_current=True).first()
