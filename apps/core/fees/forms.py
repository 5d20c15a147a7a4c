from django import forms
from django.conf import settings

from .models import FeeComponent, FeeReceipt


class FeeTemplateForm(forms.Form):
    name = forms.CharField(max_length=150)
    academic_year = forms.IntegerField(min_value=1)
    class_level = forms.IntegerField(min_value=1)


class FeeComponentForm(forms.Form):
    name = forms.CharField(max_length=120)
    amount = forms.DecimalField(max_digits=12, decimal_places=2, min_value=0)
    frequency = forms.ChoiceField(choices=FeeComponent.FREQUENCY_CHOICES)
    due_day = forms.IntegerField(min_value=1, max_value=31, required=False)
    is_mandatory = forms.BooleanField(required=False)

    def clean_due_day(self):
        return self.cleaned_data.get('due_day') or settings.FEES_DEFAULT_DUE_DAY

    def clean_is_mandatory(self):
        if 'is_mandatory' not in self.data:
            return True
        return self.cleaned_data.get('is_mandatory', False)


class FeePaymentCollectionForm(forms.Form):
    ledger = forms.IntegerField(min_value=1)
    amount_paid = forms.DecimalField(max_digits=12, decimal_places=2)
    payment_mode = forms.ChoiceField(choices=FeeReceipt.PAYMENT_MODE_CHOICES)
    payment_date = forms.DateField(required=False)
    reference_number = forms.CharField(max_length=120, required=False)
    remarks = forms.CharField(max_length=255, required=False)
    idempotency_key = forms.CharField(max_length=64, required=False)


class ConcessionForm(forms.Form):
    concession_amount = forms.DecimalField(max_digits=12, decimal_places=2)
    reason = forms.CharField(max_length=255)
