import logging
import uuid
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator, MaxValueValidator
from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from academics.models import Class, Subject
from core.models import AcademicYear, Term
from students.models import Student

from . import config
from .calculations import ScoreRecord
from .exceptions import BadRequest
from .grading import quantize

logger = logging.getLogger(__name__)


def report_card_upload_to(instance, filename):
    return f"{config.PDF_UPLOAD_DIR}/{instance.term_id}/{filename}"


class Exam(models.Model):
    """
    One assessment of a subject for a class in a term.
    e.g., CAT 1, Mid-term Exam, End of Term Exam
    """
    class ExamType(models.TextChoices):
        CAT = 'cat', _('Continuous Assessment Test')
        QUIZ = 'quiz', _('Quiz')
        ASSIGNMENT = 'assignment', _('Assignment')
        PROJECT = 'project', _('Project')
        PRACTICAL = 'practical', _('Practical')
        MIDTERM = 'midterm', _('Mid-term Exam')
        END_TERM = 'end_term', _('End of Term Exam')

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(
        max_length=150,
        help_text='Exam name (e.g., Term 1 Mathematics CAT 1)'
    )
    exam_type = models.CharField(
        max_length=20,
        choices=ExamType.choices,
        default=ExamType.CAT
    )
    subject = models.ForeignKey(
        Subject,
        on_delete=models.CASCADE,
        related_name='exams',
        db_index=True
    )
    school_class = models.ForeignKey(
        Class,
        on_delete=models.CASCADE,
        related_name='exams',
        db_index=True
    )
    term = models.ForeignKey(
        Term,
        on_delete=models.CASCADE,
        related_name='exams',
        db_index=True
    )
    total_marks = models.DecimalField(
        max_digits=6,
        decimal_places=2,
        default=Decimal('100.00'),
        validators=[MinValueValidator(Decimal('0.01'))],
        help_text='Maximum marks available'
    )
    weight_percentage = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[MinValueValidator(Decimal('0.01')), MaxValueValidator(Decimal('100'))],
        help_text='Weight within the subject (blank = 100)'
    )
    exam_date = models.DateField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.subject.name} - {self.name}"

    def save(self, *args, **kwargs):
        total_changed = False
        if not self._state.adding:
            previous = Exam.objects.filter(pk=self.pk).values_list('total_marks', flat=True).first()
            total_changed = previous is not None and previous != Decimal(str(self.total_marks))
        super().save(*args, **kwargs)
        if total_changed:
            self.recalculate_results()

    def recalculate_results(self):
        """Recompute stored percentages after total_marks changes."""
        results = list(self.results.all())
        for result in results:
            result.exam = self
            result.percentage = result.calculate_percentage()
        ExamResult.objects.bulk_update(results, ['percentage'])
        logger.info(f"Recalculated {len(results)} result percentages for exam {self.name}")
        return len(results)

    class Meta:
        db_table = 'exam'
        ordering = ['term', 'subject', 'exam_date', 'name']
        verbose_name = 'Exam'
        verbose_name_plural = 'Exams'
        indexes = [
            models.Index(fields=['school_class', 'term'], name='exam_class_term_idx'),
            models.Index(fields=['subject', 'term'], name='exam_subject_term_idx'),
        ]


class ExamResult(models.Model):
    """
    A student's marks for one exam.

    percentage is derived from marks_obtained and the exam's total marks and
    is recomputed on every save. Changes after entry should go through
    correct() so they leave an audit trail.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    exam = models.ForeignKey(
        Exam,
        on_delete=models.CASCADE,
        related_name='results',
        db_index=True
    )
    student = models.ForeignKey(
        Student,
        on_delete=models.CASCADE,
        related_name='exam_results',
        db_index=True
    )
    marks_obtained = models.DecimalField(
        max_digits=6,
        decimal_places=2,
        default=Decimal('0.00'),
        validators=[MinValueValidator(Decimal('0'))],
    )
    percentage = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=Decimal('0.00'),
        editable=False
    )
    is_absent = models.BooleanField(default=False)
    is_exempted = models.BooleanField(default=False)
    exemption_reason = models.TextField(blank=True)
    teacher_comment = models.TextField(blank=True)
    graded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='graded_results'
    )
    graded_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.student} - {self.exam.name}: {self.marks_obtained}/{self.exam.total_marks}"

    def clean(self):
        """Validate that marks don't exceed the exam's total"""
        if self.marks_obtained > self.exam.total_marks:
            raise ValidationError(
                f'Marks ({self.marks_obtained}) cannot exceed total marks ({self.exam.total_marks})'
            )

    def calculate_percentage(self):
        return quantize(
            Decimal(str(self.marks_obtained)) / Decimal(str(self.exam.total_marks)) * 100
        )

    def save(self, *args, **kwargs):
        self.percentage = self.calculate_percentage()
        update_fields = kwargs.get('update_fields')
        if update_fields is not None and 'marks_obtained' in update_fields:
            kwargs['update_fields'] = set(update_fields) | {'percentage'}
        super().save(*args, **kwargs)

    def correct(self, user, marks_obtained=None, is_absent=None, is_exempted=None, reason=''):
        """Apply a correction and record it in the audit log."""
        correction = ScoreCorrection(
            result=self,
            corrected_by=user,
            old_marks=self.marks_obtained,
            old_is_absent=self.is_absent,
            old_is_exempted=self.is_exempted,
            reason=reason,
        )

        if marks_obtained is not None:
            self.marks_obtained = Decimal(str(marks_obtained))
        if is_absent is not None:
            self.is_absent = is_absent
        if is_exempted is not None:
            self.is_exempted = is_exempted

        self.full_clean(exclude=['student', 'exam'])
        self.graded_by = user
        self.graded_at = timezone.now()
        self.save()

        correction.new_marks = self.marks_obtained
        correction.new_is_absent = self.is_absent
        correction.new_is_exempted = self.is_exempted
        correction.save()
        return correction

    def as_score_record(self):
        """Plain record consumed by the grade calculations."""
        exam = self.exam
        return ScoreRecord(
            exam_id=exam.pk,
            exam_name=exam.name,
            exam_type=exam.exam_type,
            subject_id=exam.subject_id,
            marks_obtained=self.marks_obtained,
            total_marks=exam.total_marks,
            percentage=self.percentage,
            weight=exam.weight_percentage,
            is_absent=self.is_absent,
            is_exempted=self.is_exempted,
        )

    class Meta:
        db_table = 'exam_result'
        ordering = ['student', 'exam']
        verbose_name = 'Exam Result'
        verbose_name_plural = 'Exam Results'
        unique_together = ['exam', 'student']
        indexes = [
            models.Index(fields=['student', 'exam'], name='examresult_student_exam_idx'),
        ]


class ScoreCorrection(models.Model):
    """
    Audit log for corrections to entered exam results.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    result = models.ForeignKey(
        ExamResult,
        on_delete=models.CASCADE,
        related_name='corrections'
    )
    corrected_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        related_name='score_corrections'
    )
    old_marks = models.DecimalField(max_digits=6, decimal_places=2, null=True, blank=True)
    new_marks = models.DecimalField(max_digits=6, decimal_places=2, null=True, blank=True)
    old_is_absent = models.BooleanField(default=False)
    new_is_absent = models.BooleanField(default=False)
    old_is_exempted = models.BooleanField(default=False)
    new_is_exempted = models.BooleanField(default=False)
    reason = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.result}: {self.old_marks} -> {self.new_marks} by {self.corrected_by}"

    class Meta:
        db_table = 'score_correction'
        ordering = ['-created_at']
        verbose_name = 'Score Correction'
        verbose_name_plural = 'Score Corrections'


class ReportCardQuerySet(models.QuerySet):

    def _key(self, field_name, value):
        """Coerce a filter value to the related primary key type."""
        target = self.model._meta.get_field(field_name).target_field
        try:
            return target.to_python(value)
        except ValidationError:
            raise BadRequest(f'Invalid {field_name.replace("_", " ")} id: {value}')

    def filter_by(self, student=None, school_class=None, term=None, academic_year=None, status=None):
        """Filter by any combination of student, class, term, year and status."""
        qs = self
        if student:
            qs = qs.filter(student_id=self._key('student', student))
        if school_class:
            qs = qs.filter(school_class_id=self._key('school_class', school_class))
        if term:
            qs = qs.filter(term_id=self._key('term', term))
        if academic_year:
            qs = qs.filter(academic_year_id=self._key('academic_year', academic_year))
        if status:
            qs = qs.filter(status=status)
        return qs

    def visible_to(self, user):
        """Staff see every card; students and parents only published ones."""
        if getattr(user, 'is_staff_member', False):
            return self
        return self.filter(status=ReportCard.Status.PUBLISHED).filter(
            models.Q(student__user=user) | models.Q(student__guardian_user=user)
        )


class ReportCard(models.Model):
    """
    A student's academic report for one term.

    subject_results and summary are computed by the report-card assembler and
    stored as JSON; at most one card exists per (student, term).
    """
    class Status(models.TextChoices):
        DRAFT = 'draft', _('Draft')
        PENDING_REVIEW = 'pending_review', _('Pending Review')
        APPROVED = 'approved', _('Approved')
        PUBLISHED = 'published', _('Published')
        ARCHIVED = 'archived', _('Archived')

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    student = models.ForeignKey(
        Student,
        on_delete=models.CASCADE,
        related_name='report_cards'
    )
    school_class = models.ForeignKey(
        Class,
        on_delete=models.PROTECT,
        related_name='report_cards'
    )
    academic_year = models.ForeignKey(
        AcademicYear,
        on_delete=models.PROTECT,
        related_name='report_cards'
    )
    term = models.ForeignKey(
        Term,
        on_delete=models.PROTECT,
        related_name='report_cards'
    )
    report_number = models.CharField(max_length=50, blank=True)
    curriculum = models.CharField(max_length=50)

    subject_results = models.JSONField(default=list)
    summary = models.JSONField(null=True, blank=True)

    # Attendance (summary supplied by the attendance register)
    days_present = models.PositiveIntegerField(default=0)
    days_absent = models.PositiveIntegerField(default=0)
    total_school_days = models.PositiveIntegerField(default=0)

    fee_balance = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        null=True,
        blank=True,
        help_text='Outstanding fees when the card was generated (optional)'
    )

    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.DRAFT,
        db_index=True
    )

    # Remarks
    class_teacher_comment = models.TextField(blank=True)
    class_teacher = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )
    principal_comment = models.TextField(blank=True)
    principal = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )
    parent_comment = models.TextField(blank=True)
    parent_acknowledged_at = models.DateTimeField(null=True, blank=True)
    next_term_opens = models.DateField(null=True, blank=True)
    next_term_closes = models.DateField(null=True, blank=True)

    # Rendered document
    pdf_file = models.FileField(upload_to=report_card_upload_to, blank=True)
    pdf_generated_at = models.DateTimeField(null=True, blank=True)

    # Workflow
    generated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )
    approved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )
    approved_at = models.DateTimeField(null=True, blank=True)
    published_at = models.DateTimeField(null=True, blank=True)
    archived_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = ReportCardQuerySet.as_manager()

    def __str__(self):
        return f"{self.student} - {self.term} ({self.get_status_display()})"

    @property
    def has_document(self):
        return bool(self.pdf_file) and self.pdf_generated_at is not None

    def clear_document(self):
        """Forget the rendered PDF so it is rebuilt from current data."""
        if self.pdf_file:
            self.pdf_file.delete(save=False)
        self.pdf_file = ''
        self.pdf_generated_at = None

    def get_subject_result(self, subject_id):
        subject_id = str(subject_id)
        for result in self.subject_results:
            if result.get('subject_id') == subject_id:
                return result
        return None

    class Meta:
        db_table = 'report_card'
        ordering = ['-created_at']
        verbose_name = 'Report Card'
        verbose_name_plural = 'Report Cards'
        constraints = [
            models.UniqueConstraint(
                fields=['student', 'term'],
                name='unique_report_card_per_student_term'
            ),
        ]
        indexes = [
            models.Index(fields=['school_class', 'term'], name='reportcard_class_term_idx'),
            models.Index(fields=['term', 'status'], name='reportcard_term_status_idx'),
        ]
