from datetime import date

from django.db import models
from django.db.models import F, Q


class AcademicYear(models.Model):
    name = models.CharField(max_length=20, unique=True)  # e.g. 2025-26
    start_date = models.DateField()
    end_date = models.DateField()
    is_current = models.BooleanField(default=False)
    # Locked years accept no fee or marks changes.
    is_locked = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-start_date', '-id']
        constraints = [
            models.UniqueConstraint(
                fields=['is_current'],
                condition=Q(is_current=True),
                name='unique_current_academic_year',
            ),
            models.CheckConstraint(
                condition=Q(end_date__gt=F('start_date')),
                name='academic_year_end_after_start',
            ),
        ]
        indexes = [
            models.Index(fields=['is_current'], name='academic_year_current_idx'),
        ]

    def contains(self, value: date) -> bool:
        return self.start_date <= value <= self.end_date

    def __str__(self):
        return self.name
