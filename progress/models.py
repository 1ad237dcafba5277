from django.db import models

"""
频率：发药频率（Medication / Dispensation）和课程 session 频率（Program）共用
值与前端展示一致：Daily / Twice Daily / Weekly / Monthly
"""
class Frequency(models.TextChoices):
    DAILY = 'Daily', 'Daily'
    TWICE_DAILY = 'Twice Daily', 'Twice Daily'
    WEEKLY = 'Weekly', 'Weekly'
    MONTHLY = 'Monthly', 'Monthly'


class RecordStatus(models.TextChoices):
    ACTIVE = 'Active', 'Active'
    INACTIVE = 'Inactive', 'Inactive'


"""
Patient字段:
full_name; patient_code(唯一); status; created_at
患者的增删改不在本服务范围内，这里只保留进度计算需要的字段
"""
class Patient(models.Model):
    full_name = models.CharField(max_length=200)
    patient_code = models.CharField(max_length=20, unique=True)
    status = models.CharField(max_length=10, choices=RecordStatus.choices, default=RecordStatus.ACTIVE)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'patients'

    def __str__(self):
        return f"{self.full_name} ({self.patient_code})"


"""
Medication字段:
name; dosage; frequency(默认发药频率); program_type; status
对引擎只读；单个患者可以在 Dispensation 上覆盖 frequency
"""
class Medication(models.Model):
    name = models.CharField(max_length=200)
    dosage = models.CharField(max_length=100, blank=True)
    frequency = models.CharField(max_length=20, choices=Frequency.choices, default=Frequency.DAILY)
    program_type = models.CharField(max_length=50, blank=True)
    status = models.CharField(max_length=10, choices=RecordStatus.choices, default=RecordStatus.ACTIVE)

    class Meta:
        db_table = 'medications'

    def __str__(self):
        return f"{self.name} {self.dosage}".strip()


"""
Program字段:
name; type; status; session_frequency; duration + duration_unit(仅展示用)
duration_in_days: 课程长度的唯一依据，默认 90，必须 > 0
medications: 课程包含的药物（program_medications 表）
"""
class Program(models.Model):
    DURATION_UNIT_CHOICES = [
        ('days', 'Days'),
        ('weeks', 'Weeks'),
        ('months', 'Months'),
    ]

    name = models.CharField(max_length=200, db_index=True)
    type = models.CharField(max_length=50, db_index=True)
    description = models.TextField(blank=True)
    status = models.CharField(max_length=10, choices=RecordStatus.choices, default=RecordStatus.ACTIVE, db_index=True)
    session_frequency = models.CharField(max_length=20, choices=Frequency.choices, default=Frequency.WEEKLY)
    duration = models.PositiveIntegerField(null=True, blank=True)
    duration_unit = models.CharField(max_length=10, choices=DURATION_UNIT_CHOICES, null=True, blank=True)
    duration_in_days = models.PositiveIntegerField(default=90)
    medications = models.ManyToManyField(Medication, related_name='programs', blank=True, db_table='program_medications')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'programs'
        constraints = [
            models.CheckConstraint(
                condition=models.Q(duration_in_days__gt=0),
                name='program_duration_in_days_positive',
            ),
        ]

    def __str__(self):
        return self.name


"""
PatientEnrollment字段:
patient, program (外键)
enrollment_date; completed_date(= enrollment_date + program.duration_in_days，创建时算一次)
ended_on(工作人员手动结束/取消的日期); status; completion_notes
物化计数：sessions_expected / sessions_completed / sessions_missed / attendance_rate / adherence_rate
"""
class PatientEnrollment(models.Model):
    STATUS_ACTIVE = 'active'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'
    STATUS_CHOICES = [
        (STATUS_ACTIVE, 'Active'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='enrollments')
    program = models.ForeignKey(Program, on_delete=models.CASCADE, related_name='enrollments')
    enrollment_date = models.DateField()
    completed_date = models.DateField(null=True, blank=True, db_index=True)
    ended_on = models.DateField(null=True, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_ACTIVE, db_index=True)
    completion_notes = models.TextField(blank=True)
    sessions_expected = models.PositiveIntegerField(default=0)
    sessions_completed = models.PositiveIntegerField(default=0)
    sessions_missed = models.PositiveIntegerField(default=0)
    attendance_rate = models.FloatField(default=0)
    adherence_rate = models.FloatField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'patient_enrollments'
        indexes = [
            models.Index(fields=['patient', 'program'], name='idx_enrollment_patient_program'),
        ]

    def __str__(self):
        return f"{self.patient} in {self.program} ({self.status})"


class AttendanceStatus(models.TextChoices):
    PRESENT = 'Present', 'Present'
    ABSENT = 'Absent', 'Absent'
    LATE = 'Late', 'Late'
    EXCUSED = 'Excused', 'Excused'
    CANCELED = 'Canceled', 'Canceled'


"""
Attendance字段:
patient, program (外键); enrollment (可空外键，历史数据靠 backfill 按日期范围补上)
attendance_date; status; check_in_time; marked_by; notes
"""
class Attendance(models.Model):
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='attendances')
    program = models.ForeignKey(Program, on_delete=models.CASCADE, related_name='attendances')
    enrollment = models.ForeignKey(
        PatientEnrollment,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='attendances',
    )
    attendance_date = models.DateField()
    status = models.CharField(max_length=10, choices=AttendanceStatus.choices, default=AttendanceStatus.ABSENT)
    check_in_time = models.DateTimeField(null=True, blank=True)
    marked_by = models.CharField(max_length=100, blank=True)
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'attendances'
        indexes = [
            models.Index(fields=['program', 'attendance_date'], name='idx_attendance_program_date'),
        ]

    def __str__(self):
        return f"{self.patient} {self.attendance_date} {self.status}"


"""
Dispensation字段:
patient, medication, program (外键)
frequency; bucket_start_at(该剂量周期的起点); dispensed_at(实际发药时间)
is_deduplicated: 插入时按配置决定，部分唯一索引只约束 is_deduplicated=True 的行
创建后不再修改（更正用新行 + notes）
"""
class Dispensation(models.Model):
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='dispensations')
    medication = models.ForeignKey(Medication, on_delete=models.PROTECT, related_name='dispensations')
    program = models.ForeignKey(Program, on_delete=models.PROTECT, related_name='dispensations')
    frequency = models.CharField(max_length=20, choices=Frequency.choices, db_index=True)
    bucket_start_at = models.DateTimeField(db_index=True)
    dispensed_at = models.DateTimeField(db_index=True)
    is_deduplicated = models.BooleanField(default=False)
    notes = models.TextField(blank=True)
    dispensed_by = models.CharField(max_length=100, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'dispensations'
        indexes = [
            models.Index(
                fields=['patient', 'medication', 'frequency', 'bucket_start_at'],
                name='idx_dispensation_bucket',
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['patient', 'medication', 'frequency', 'bucket_start_at'],
                condition=models.Q(is_deduplicated=True),
                name='uniq_dispensation_bucket_partial',
            ),
        ]

    def __str__(self):
        return f"{self.medication} -> {self.patient} @ {self.dispensed_at.isoformat()}"


class DueStatus(models.TextChoices):
    ON_TIME = 'on_time', 'On time'
    DUE_TODAY = 'due_today', 'Due today'
    OVERDUE = 'overdue', 'Overdue'


"""
MedicationAdherence: 分类器结果的物化表，每个 (enrollment, medication) 一行
dashboard 的 upcoming dispensations 直接读这张表
"""
class MedicationAdherence(models.Model):
    enrollment = models.ForeignKey(PatientEnrollment, on_delete=models.CASCADE, related_name='medication_adherence')
    medication = models.ForeignKey(Medication, on_delete=models.CASCADE, related_name='adherence_rows')
    frequency = models.CharField(max_length=20, choices=Frequency.choices)
    expected_buckets = models.PositiveIntegerField(default=0)
    matched_buckets = models.PositiveIntegerField(default=0)
    adherence_rate = models.FloatField(default=0)
    last_dispensed_bucket = models.DateTimeField(null=True, blank=True)
    last_dispensed_at = models.DateTimeField(null=True, blank=True)
    next_due_bucket = models.DateTimeField(null=True, blank=True)
    status = models.CharField(max_length=20, choices=DueStatus.choices, default=DueStatus.ON_TIME, db_index=True)
    computed_at = models.DateTimeField()

    class Meta:
        db_table = 'medication_adherence'
        constraints = [
            models.UniqueConstraint(fields=['enrollment', 'medication'], name='uniq_adherence_enrollment_medication'),
        ]

    def __str__(self):
        return f"{self.enrollment_id}/{self.medication_id} {self.status}"


"""
EnrollmentRecomputeState: 每个 enrollment 的重算状态机 stale -> recomputing -> fresh / failed
stale: 已有任务排队；failed: 上次失败且没有任务排队
pending: 重算进行中又来了新触发，跑完后再算一次
lease_expires_at: 租约到期后其它 worker 可以接手（防止卡死的重算一直占着）
"""
class EnrollmentRecomputeState(models.Model):
    STATE_STALE = 'stale'
    STATE_RECOMPUTING = 'recomputing'
    STATE_FRESH = 'fresh'
    STATE_FAILED = 'failed'
    STATE_CHOICES = [
        (STATE_STALE, 'Stale'),
        (STATE_RECOMPUTING, 'Recomputing'),
        (STATE_FRESH, 'Fresh'),
        (STATE_FAILED, 'Failed'),
    ]

    enrollment = models.OneToOneField(
        PatientEnrollment,
        on_delete=models.CASCADE,
        primary_key=True,
        related_name='recompute_state',
    )
    state = models.CharField(max_length=20, choices=STATE_CHOICES, default=STATE_STALE, db_index=True)
    pending = models.BooleanField(default=False)
    lease_expires_at = models.DateTimeField(null=True, blank=True)
    attempts = models.PositiveIntegerField(default=0)
    last_error = models.TextField(blank=True)
    requested_at = models.DateTimeField(auto_now_add=True)
    last_completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'enrollment_recompute_state'

    def __str__(self):
        return f"{self.enrollment_id}: {self.state}"
