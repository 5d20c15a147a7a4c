from django.contrib import admin

from .models import AdmissionCounter, Parent, Student


@admin.register(Parent)
class ParentAdmin(admin.ModelAdmin):
    list_display = ('primary_phone', 'father_name', 'mother_name', 'email')
    search_fields = ('primary_phone', 'father_name', 'mother_name', 'email')


@admin.register(Student)
class StudentAdmin(admin.ModelAdmin):
    list_display = ('admission_number', 'full_name', 'class_level', 'academic_year', 'status')
    list_filter = ('academic_year', 'class_level', 'status')
    search_fields = ('admission_number', 'first_name', 'last_name', 'parent__primary_phone')


@admin.register(AdmissionCounter)
class AdmissionCounterAdmin(admin.ModelAdmin):
    list_display = ('year_code', 'last_sequence')
