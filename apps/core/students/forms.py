from django import forms

from .models import Student


class AdmissionForm(forms.Form):
    first_name = forms.CharField(max_length=100)
    last_name = forms.CharField(max_length=100, required=False)
    date_of_birth = forms.DateField()
    gender = forms.ChoiceField(choices=Student.GENDER_CHOICES)
    academic_year = forms.IntegerField(min_value=1)
    class_level = forms.IntegerField(min_value=1)

    parent_phone = forms.CharField(max_length=20)
    father_name = forms.CharField(max_length=120, required=False)
    mother_name = forms.CharField(max_length=120, required=False)
    parent_email = forms.EmailField(required=False)
    address = forms.CharField(required=False)

    def clean_parent_phone(self):
        phone = self.cleaned_data['parent_phone'].strip()
        digits = phone.lstrip('+')
        if not digits.isdigit() or len(digits) < 7:
            raise forms.ValidationError('Enter a valid phone number.')
        return phone
