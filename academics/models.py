from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _


class Class(models.Model):
    """
    Represents a class/stream grouping of students.

    Name is generated from level and stream: G4-A (primary), G8-B (junior
    secondary), F3-EAST (senior secondary).
    """
    class LevelType(models.TextChoices):
        PRE_PRIMARY = 'pre_primary', _('Pre-Primary')
        PRIMARY = 'primary', _('Primary')
        JUNIOR = 'junior', _('Junior Secondary')
        SENIOR = 'senior', _('Senior Secondary')

    NAME_PREFIXES = {
        LevelType.PRE_PRIMARY: 'PP',
        LevelType.PRIMARY: 'G',
        LevelType.JUNIOR: 'G',
        LevelType.SENIOR: 'F',
    }

    level_type = models.CharField(
        max_length=20,
        choices=LevelType.choices,
        default=LevelType.PRIMARY
    )
    level_number = models.PositiveSmallIntegerField(
        help_text="1, 2, 3, etc."
    )
    section = models.CharField(
        max_length=10,
        help_text="Stream: A, B, EAST, etc."
    )

    # Auto-generated class name
    name = models.CharField(
        max_length=30,
        editable=False,
        help_text="Auto-generated: G4-A, F3-EAST"
    )

    curriculum = models.CharField(
        max_length=50,
        blank=True,
        help_text="Curriculum used to grade this class (blank = school default)"
    )

    capacity = models.PositiveIntegerField(
        default=45,
        help_text="Maximum number of students"
    )

    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['level_type', 'level_number', 'section']
        verbose_name = "Class"
        verbose_name_plural = "Classes"
        unique_together = ['level_type', 'level_number', 'section']

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        self.name = self.generate_name()
        super().save(*args, **kwargs)

    def generate_name(self):
        """Generate class name based on level type."""
        prefix = self.NAME_PREFIXES.get(self.level_type, self.level_type.upper())
        return f"{prefix}{self.level_number}-{self.section}"


class Subject(models.Model):
    """
    Represents a subject taught at the school.
    Subjects can be core (mandatory) or elective.
    """
    name = models.CharField(
        max_length=100,
        help_text="e.g., Mathematics, English, Biology"
    )
    short_name = models.CharField(
        max_length=20,
        blank=True,
        help_text="e.g., MATH, ENG, BIO"
    )
    code = models.CharField(
        max_length=20,
        blank=True,
        help_text="Optional subject code"
    )
    is_core = models.BooleanField(
        default=True,
        help_text="Core subjects are mandatory"
    )

    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-is_core', 'name']
        verbose_name = "Subject"
        verbose_name_plural = "Subjects"

    def __str__(self):
        return self.name


class AttendanceSession(models.Model):
    class_assigned = models.ForeignKey(Class, on_delete=models.CASCADE, related_name='attendance_sessions')
    date = models.DateField(default=timezone.now)
    session_type = models.CharField(max_length=20, default='Daily', choices=[('Daily', 'Daily Register')])
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = ['class_assigned', 'date', 'session_type']
        ordering = ['-date']

    def __str__(self):
        return f"{self.class_assigned} - {self.date}"


class AttendanceRecord(models.Model):
    class Status(models.TextChoices):
        PRESENT = 'P', 'Present'
        ABSENT = 'A', 'Absent'
        LATE = 'L', 'Late'
        EXCUSED = 'E', 'Excused'

    # Late arrivals count as present days
    PRESENT_STATUSES = [Status.PRESENT, Status.LATE]

    session = models.ForeignKey(AttendanceSession, on_delete=models.CASCADE, related_name='records')
    student = models.ForeignKey('students.Student', on_delete=models.CASCADE, related_name='attendance_records')
    status = models.CharField(max_length=1, choices=Status.choices, default=Status.PRESENT)
    remarks = models.CharField(max_length=100, blank=True)

    class Meta:
        unique_together = ['session', 'student']

    @classmethod
    def summary_for(cls, student, term):
        """
        Attendance counts for a student within a term's dates.

        Returns {'present', 'absent', 'total'}; total is the number of
        register entries recorded for the student in the term.
        """
        records = cls.objects.filter(
            student=student,
            session__date__gte=term.start_date,
            session__date__lte=term.end_date,
        )
        return {
            'present': records.filter(status__in=cls.PRESENT_STATUSES).count(),
            'absent': records.filter(status=cls.Status.ABSENT).count(),
            'total': records.count(),
        }
