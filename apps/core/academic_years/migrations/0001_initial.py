from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='AcademicYear',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=20, unique=True)),
                ('start_date', models.DateField()),
                ('end_date', models.DateField()),
                ('is_current', models.BooleanField(default=False)),
                ('is_locked', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'ordering': ['-start_date', '-id'],
                'indexes': [models.Index(fields=['is_current'], name='academic_year_current_idx')],
                'constraints': [
                    models.UniqueConstraint(
                        condition=models.Q(('is_current', True)),
                        fields=('is_current',),
                        name='unique_current_academic_year',
                    ),
                    models.CheckConstraint(
                        condition=models.Q(('end_date__gt', models.F('start_date'))),
                        name='academic_year_end_after_start',
                    ),
                ],
            },
        ),
    ]
