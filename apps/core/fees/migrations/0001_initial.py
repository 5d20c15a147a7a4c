from decimal import Decimal

import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


STATUS_CHOICES = [('PENDING', 'Pending'), ('PARTIAL', 'Partially paid'), ('PAID', 'Paid')]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('academic_years', '0001_initial'),
        ('academics', '0001_initial'),
        ('students', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='FeeTemplate',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=150)),
                ('total_yearly_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('academic_year', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='fee_templates', to='academic_years.academicyear')),
                ('class_level', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='fee_templates', to='academics.classlevel')),
            ],
            options={
                'ordering': ['academic_year__start_date', 'class_level__display_order', 'id'],
                'constraints': [
                    models.UniqueConstraint(fields=('academic_year', 'class_level'), name='unique_fee_template_per_class_year'),
                    models.CheckConstraint(condition=models.Q(('total_yearly_amount__gte', 0)), name='fee_template_total_non_negative'),
                ],
            },
        ),
        migrations.CreateModel(
            name='FeeComponent',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('position', models.PositiveSmallIntegerField(default=0)),
                ('name', models.CharField(max_length=120)),
                ('amount', models.DecimalField(decimal_places=2, max_digits=12, validators=[django.core.validators.MinValueValidator(Decimal('0.00'))])),
                ('frequency', models.CharField(choices=[('MONTHLY', 'Monthly'), ('QUARTERLY', 'Quarterly'), ('YEARLY', 'Yearly'), ('ONE_TIME', 'One time')], max_length=20)),
                ('due_day', models.PositiveSmallIntegerField(default=10, validators=[django.core.validators.MinValueValidator(1), django.core.validators.MaxValueValidator(31)])),
                ('is_mandatory', models.BooleanField(default=True)),
                ('template', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='components', to='fees.feetemplate')),
            ],
            options={
                'ordering': ['position', 'id'],
                'constraints': [
                    models.UniqueConstraint(fields=('template', 'position'), name='unique_fee_component_position'),
                    models.CheckConstraint(condition=models.Q(('amount__gte', 0)), name='fee_component_amount_non_negative'),
                ],
            },
        ),
        migrations.CreateModel(
            name='StudentLedger',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('total_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12)),
                ('concession_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12)),
                ('final_amount', models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ('paid_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12)),
                ('due_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12)),
                ('status', models.CharField(choices=STATUS_CHOICES, default='PENDING', max_length=10)),
                ('remarks', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('academic_year', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='ledgers', to='academic_years.academicyear')),
                ('class_level', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='ledgers', to='academics.classlevel')),
                ('fee_template', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='ledgers', to='fees.feetemplate')),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='ledgers', to='students.student')),
            ],
            options={
                'ordering': ['academic_year__start_date', 'student__admission_number', 'id'],
                'indexes': [
                    models.Index(fields=['status'], name='ledger_status_idx'),
                    models.Index(fields=['academic_year', 'class_level', 'status'], name='ledger_year_class_status_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('student', 'academic_year'), name='unique_ledger_per_student_year'),
                    models.CheckConstraint(
                        condition=models.Q(
                            ('total_amount__gte', 0),
                            ('concession_amount__gte', 0),
                            ('paid_amount__gte', 0),
                            ('due_amount__gte', 0),
                        ),
                        name='ledger_non_negative_amounts',
                    ),
                    models.CheckConstraint(
                        condition=models.Q(('concession_amount__lte', models.F('total_amount'))),
                        name='ledger_concession_not_above_total',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='LedgerInstallment',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('position', models.PositiveSmallIntegerField()),
                ('name', models.CharField(max_length=150)),
                ('amount', models.DecimalField(decimal_places=2, max_digits=12)),
                ('due_date', models.DateField()),
                ('paid_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12)),
                ('waived_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12)),
                ('status', models.CharField(choices=STATUS_CHOICES, default='PENDING', max_length=10)),
                ('ledger', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='installments', to='fees.studentledger')),
            ],
            options={
                'ordering': ['position', 'id'],
                'indexes': [models.Index(fields=['due_date'], name='installment_due_date_idx')],
                'constraints': [
                    models.UniqueConstraint(fields=('ledger', 'position'), name='unique_installment_position'),
                    models.CheckConstraint(
                        condition=models.Q(('amount__gte', 0), ('paid_amount__gte', 0), ('waived_amount__gte', 0)),
                        name='installment_non_negative_amounts',
                    ),
                    models.CheckConstraint(
                        condition=models.Q(('paid_amount__lte', models.F('amount'))),
                        name='installment_paid_not_above_amount',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='FeeReceipt',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('receipt_number', models.CharField(max_length=40, unique=True)),
                ('amount_paid', models.DecimalField(decimal_places=2, max_digits=12)),
                ('payment_date', models.DateField(default=django.utils.timezone.localdate)),
                ('payment_mode', models.CharField(choices=[('CASH', 'Cash'), ('UPI', 'UPI'), ('CHEQUE', 'Cheque'), ('BANK_TRANSFER', 'Bank transfer')], max_length=20)),
                ('reference_number', models.CharField(blank=True, max_length=120)),
                ('remarks', models.CharField(blank=True, max_length=255)),
                ('idempotency_key', models.CharField(blank=True, max_length=64)),
                ('paid_after', models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ('due_after', models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('academic_year', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='fee_receipts', to='academic_years.academicyear')),
                ('collected_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='collected_fee_receipts', to=settings.AUTH_USER_MODEL)),
                ('ledger', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='receipts', to='fees.studentledger')),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='fee_receipts', to='students.student')),
            ],
            options={
                'ordering': ['-payment_date', '-id'],
                'indexes': [
                    models.Index(fields=['student', 'academic_year'], name='receipt_student_year_idx'),
                    models.Index(fields=['payment_date'], name='receipt_payment_date_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(
                        condition=models.Q(('idempotency_key', ''), _negated=True),
                        fields=('ledger', 'idempotency_key'),
                        name='unique_receipt_idempotency_key',
                    ),
                    models.CheckConstraint(condition=models.Q(('amount_paid__gt', 0)), name='receipt_amount_positive'),
                ],
            },
        ),
        migrations.CreateModel(
            name='LedgerConcession',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('amount', models.DecimalField(decimal_places=2, max_digits=12)),
                ('previous_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12)),
                ('reason', models.CharField(max_length=255)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('applied_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='applied_fee_concessions', to=settings.AUTH_USER_MODEL)),
                ('ledger', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='concessions', to='fees.studentledger')),
            ],
            options={
                'ordering': ['-created_at', '-id'],
            },
        ),
    ]
