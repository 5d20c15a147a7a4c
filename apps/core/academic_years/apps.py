from django.apps import AppConfig


class AcademicYearsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core.academic_years'
    label = 'academic_years'
