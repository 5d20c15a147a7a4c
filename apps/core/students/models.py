from django.core.exceptions import ValidationError
from django.db import models, transaction
from django.db.models import F
from django.utils import timezone

from apps.core.academic_years.models import AcademicYear
from apps.core.academics.models import ClassLevel


class Parent(models.Model):
    primary_phone = models.CharField(max_length=20, unique=True)
    father_name = models.CharField(max_length=120, blank=True)
    mother_name = models.CharField(max_length=120, blank=True)
    email = models.EmailField(blank=True)
    address = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['primary_phone']

    def __str__(self):
        return f"Parent: {self.father_name or self.mother_name or self.primary_phone}"


class AdmissionCounter(models.Model):
    year_code = models.CharField(max_length=2, unique=True)  # e.g. 25
    last_sequence = models.PositiveIntegerField(default=0)

    def __str__(self):
        return f"{self.year_code}: {self.last_sequence}"


def next_admission_number(today=None) -> str:
    """Return the next admission number, e.g. ``125001`` for the first admission of 2025."""
    today = today or timezone.localdate()
    year_code = today.strftime('%y')

    with transaction.atomic():
        counter, _ = AdmissionCounter.objects.select_for_update().get_or_create(year_code=year_code)
        counter.last_sequence = F('last_sequence') + 1
        counter.save(update_fields=['last_sequence'])
        counter.refresh_from_db(fields=['last_sequence'])

    return f"1{year_code}{counter.last_sequence:03d}"


class Student(models.Model):
    STATUS_ACTIVE = 'active'
    STATUS_ALUMNI = 'alumni'
    STATUS_TRANSFERRED = 'transferred'
    STATUS_SUSPENDED = 'suspended'
    STATUS_WITHDRAWN = 'withdrawn'
    STATUS_CHOICES = (
        (STATUS_ACTIVE, 'Active'),
        (STATUS_ALUMNI, 'Alumni'),
        (STATUS_TRANSFERRED, 'Transferred'),
        (STATUS_SUSPENDED, 'Suspended'),
        (STATUS_WITHDRAWN, 'Withdrawn'),
    )

    GENDER_CHOICES = (
        ('male', 'Male'),
        ('female', 'Female'),
        ('other', 'Other'),
    )

    admission_number = models.CharField(max_length=20, unique=True, blank=True)
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100, blank=True)
    date_of_birth = models.DateField()
    gender = models.CharField(max_length=10, choices=GENDER_CHOICES)

    parent = models.ForeignKey(Parent, on_delete=models.PROTECT, related_name='children')
    academic_year = models.ForeignKey(AcademicYear, on_delete=models.PROTECT, related_name='students')
    class_level = models.ForeignKey(ClassLevel, on_delete=models.PROTECT, related_name='students')

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_ACTIVE)
    admission_date = models.DateField(default=timezone.localdate)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['admission_number', 'id']
        indexes = [
            models.Index(fields=['academic_year', 'class_level', 'status'], name='student_year_class_status_idx'),
        ]

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()

    def clean(self):
        super().clean()
        if self.date_of_birth and self.date_of_birth >= timezone.localdate():
            raise ValidationError({'date_of_birth': 'Date of birth must be in the past.'})

    def save(self, *args, **kwargs):
        if not self.admission_number:
            self.admission_number = next_admission_number()
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.admission_number} - {self.full_name}"
