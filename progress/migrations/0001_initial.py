import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Medication',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=200)),
                ('dosage', models.CharField(blank=True, max_length=100)),
                ('frequency', models.CharField(choices=[('Daily', 'Daily'), ('Twice Daily', 'Twice Daily'), ('Weekly', 'Weekly'), ('Monthly', 'Monthly')], default='Daily', max_length=20)),
                ('program_type', models.CharField(blank=True, max_length=50)),
                ('status', models.CharField(choices=[('Active', 'Active'), ('Inactive', 'Inactive')], default='Active', max_length=10)),
            ],
            options={
                'db_table': 'medications',
            },
        ),
        migrations.CreateModel(
            name='Patient',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('full_name', models.CharField(max_length=200)),
                ('patient_code', models.CharField(max_length=20, unique=True)),
                ('status', models.CharField(choices=[('Active', 'Active'), ('Inactive', 'Inactive')], default='Active', max_length=10)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'db_table': 'patients',
            },
        ),
        migrations.CreateModel(
            name='Program',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(db_index=True, max_length=200)),
                ('type', models.CharField(db_index=True, max_length=50)),
                ('description', models.TextField(blank=True)),
                ('status', models.CharField(choices=[('Active', 'Active'), ('Inactive', 'Inactive')], db_index=True, default='Active', max_length=10)),
                ('session_frequency', models.CharField(choices=[('Daily', 'Daily'), ('Twice Daily', 'Twice Daily'), ('Weekly', 'Weekly'), ('Monthly', 'Monthly')], default='Weekly', max_length=20)),
                ('duration', models.PositiveIntegerField(blank=True, null=True)),
                ('duration_unit', models.CharField(blank=True, choices=[('days', 'Days'), ('weeks', 'Weeks'), ('months', 'Months')], max_length=10, null=True)),
                ('duration_in_days', models.PositiveIntegerField(default=90)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('medications', models.ManyToManyField(blank=True, db_table='program_medications', related_name='programs', to='progress.medication')),
            ],
            options={
                'db_table': 'programs',
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('duration_in_days__gt', 0)), name='program_duration_in_days_positive'),
                ],
            },
        ),
        migrations.CreateModel(
            name='PatientEnrollment',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('enrollment_date', models.DateField()),
                ('completed_date', models.DateField(blank=True, db_index=True, null=True)),
                ('ended_on', models.DateField(blank=True, null=True)),
                ('status', models.CharField(choices=[('active', 'Active'), ('completed', 'Completed'), ('cancelled', 'Cancelled')], db_index=True, default='active', max_length=20)),
                ('completion_notes', models.TextField(blank=True)),
                ('sessions_expected', models.PositiveIntegerField(default=0)),
                ('sessions_completed', models.PositiveIntegerField(default=0)),
                ('sessions_missed', models.PositiveIntegerField(default=0)),
                ('attendance_rate', models.FloatField(default=0)),
                ('adherence_rate', models.FloatField(default=0)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('patient', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='enrollments', to='progress.patient')),
                ('program', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='enrollments', to='progress.program')),
            ],
            options={
                'db_table': 'patient_enrollments',
                'indexes': [
                    models.Index(fields=['patient', 'program'], name='idx_enrollment_patient_program'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Attendance',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('attendance_date', models.DateField()),
                ('status', models.CharField(choices=[('Present', 'Present'), ('Absent', 'Absent'), ('Late', 'Late'), ('Excused', 'Excused'), ('Canceled', 'Canceled')], default='Absent', max_length=10)),
                ('check_in_time', models.DateTimeField(blank=True, null=True)),
                ('marked_by', models.CharField(blank=True, max_length=100)),
                ('notes', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('enrollment', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='attendances', to='progress.patientenrollment')),
                ('patient', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='attendances', to='progress.patient')),
                ('program', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='attendances', to='progress.program')),
            ],
            options={
                'db_table': 'attendances',
                'indexes': [
                    models.Index(fields=['program', 'attendance_date'], name='idx_attendance_program_date'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Dispensation',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('frequency', models.CharField(choices=[('Daily', 'Daily'), ('Twice Daily', 'Twice Daily'), ('Weekly', 'Weekly'), ('Monthly', 'Monthly')], db_index=True, max_length=20)),
                ('bucket_start_at', models.DateTimeField(db_index=True)),
                ('dispensed_at', models.DateTimeField(db_index=True)),
                ('is_deduplicated', models.BooleanField(default=False)),
                ('notes', models.TextField(blank=True)),
                ('dispensed_by', models.CharField(blank=True, max_length=100)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('medication', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='dispensations', to='progress.medication')),
                ('patient', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='dispensations', to='progress.patient')),
                ('program', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='dispensations', to='progress.program')),
            ],
            options={
                'db_table': 'dispensations',
                'indexes': [
                    models.Index(fields=['patient', 'medication', 'frequency', 'bucket_start_at'], name='idx_dispensation_bucket'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('is_deduplicated', True)), fields=('patient', 'medication', 'frequency', 'bucket_start_at'), name='uniq_dispensation_bucket_partial'),
                ],
            },
        ),
        migrations.CreateModel(
            name='MedicationAdherence',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('frequency', models.CharField(choices=[('Daily', 'Daily'), ('Twice Daily', 'Twice Daily'), ('Weekly', 'Weekly'), ('Monthly', 'Monthly')], max_length=20)),
                ('expected_buckets', models.PositiveIntegerField(default=0)),
                ('matched_buckets', models.PositiveIntegerField(default=0)),
                ('adherence_rate', models.FloatField(default=0)),
                ('last_dispensed_bucket', models.DateTimeField(blank=True, null=True)),
                ('last_dispensed_at', models.DateTimeField(blank=True, null=True)),
                ('next_due_bucket', models.DateTimeField(blank=True, null=True)),
                ('status', models.CharField(choices=[('on_time', 'On time'), ('due_today', 'Due today'), ('overdue', 'Overdue')], db_index=True, default='on_time', max_length=20)),
                ('computed_at', models.DateTimeField()),
                ('enrollment', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='medication_adherence', to='progress.patientenrollment')),
                ('medication', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='adherence_rows', to='progress.medication')),
            ],
            options={
                'db_table': 'medication_adherence',
                'constraints': [
                    models.UniqueConstraint(fields=('enrollment', 'medication'), name='uniq_adherence_enrollment_medication'),
                ],
            },
        ),
        migrations.CreateModel(
            name='EnrollmentRecomputeState',
            fields=[
                ('enrollment', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, primary_key=True, related_name='recompute_state', serialize=False, to='progress.patientenrollment')),
                ('state', models.CharField(choices=[('stale', 'Stale'), ('recomputing', 'Recomputing'), ('fresh', 'Fresh'), ('failed', 'Failed')], db_index=True, default='stale', max_length=20)),
                ('pending', models.BooleanField(default=False)),
                ('lease_expires_at', models.DateTimeField(blank=True, null=True)),
                ('attempts', models.PositiveIntegerField(default=0)),
                ('last_error', models.TextField(blank=True)),
                ('requested_at', models.DateTimeField(auto_now_add=True)),
                ('last_completed_at', models.DateTimeField(blank=True, null=True)),
            ],
            options={
                'db_table': 'enrollment_recompute_state',
            },
        ),
    ]
