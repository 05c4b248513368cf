"""
Report card assembly.

A report card is computed from the student's exam results for a term, ranked
against the rest of the class and stored as JSON on the ReportCard row. The
class ranking comes from a CohortSnapshot, which aggregates every active
student of the class once so a bulk pass ranks the class a single time.
"""
import copy
import logging
from collections import defaultdict

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction

from academics.models import AttendanceRecord, Class
from core.models import Term
from finance.models import Invoice
from students.models import Student

from . import config
from .calculations import aggregate_subject, build_summary, overall_percentage, rank_cohort
from .exceptions import BadRequest, Conflict, NotFound, ReportCardError
from .grading import get_curriculum
from .models import ExamResult, ReportCard

logger = logging.getLogger(__name__)


def get_or_not_found(queryset, pk, label):
    try:
        return queryset.get(pk=pk)
    except (queryset.model.DoesNotExist, ValidationError, ValueError, TypeError):
        raise NotFound(f'{label} not found')


def resolve_curriculum(curriculum, school_class):
    """Explicit curriculum, else the class's own, else the school default."""
    curriculum_id = curriculum or school_class.curriculum or config.DEFAULT_CURRICULUM
    return get_curriculum(curriculum_id).id


def report_number(student, term):
    return (
        f"{config.REPORT_NUMBER_PREFIX}-{term.academic_year.start_date.year}"
        f"-T{term.term_number}-{student.admission_number}"
    )


def aggregate_results(results, curriculum_id):
    """
    Turn one student's ExamResult rows into sorted subject results.

    results must have exam and exam__subject loaded.
    """
    by_subject = defaultdict(list)
    subjects = {}
    for result in results:
        subject = result.exam.subject
        subjects[subject.pk] = subject
        by_subject[subject.pk].append(result.as_score_record())

    subject_results = []
    for subject_id, records in by_subject.items():
        subject = subjects[subject_id]
        aggregated = aggregate_subject(
            records,
            curriculum_id,
            subject_id=subject.pk,
            subject_name=subject.name,
            subject_code=subject.code or subject.short_name,
        )
        if aggregated is not None:
            subject_results.append(aggregated)

    subject_results.sort(key=lambda r: (r['subject_name'], r['subject_id']))
    return subject_results


def _term_results(term):
    return ExamResult.objects.filter(exam__term=term).select_related('exam', 'exam__subject')


class CohortSnapshot:
    """
    Every active student of a class aggregated and ranked for one term.

    Build it with CohortSnapshot.build(); the ranking is computed once and
    shared by every report card generated from the snapshot.
    """

    def __init__(self, school_class, term, curriculum_id, subject_results):
        self.school_class = school_class
        self.term = term
        self.curriculum_id = curriculum_id
        self._subject_results = subject_results

        entries = [
            {'student_id': student_id, 'average': overall_percentage(results)}
            for student_id, results in subject_results.items()
            if results
        ]
        self.ranking = rank_cohort(entries)
        self._ranks = {entry['student_id']: entry['rank'] for entry in self.ranking}

    @classmethod
    def build(cls, school_class, term, curriculum_id):
        students = Student.objects.active().in_class(school_class)
        results = _term_results(term).filter(student__in=students).order_by('student_id')

        per_student = defaultdict(list)
        for result in results:
            per_student[result.student_id].append(result)

        subject_results = {
            student_id: aggregate_results(rows, curriculum_id)
            for student_id, rows in per_student.items()
        }
        snapshot = cls(school_class, term, curriculum_id, subject_results)
        logger.info(
            f"Ranked {snapshot.class_size} students in {school_class} for {term} ({curriculum_id})"
        )
        return snapshot

    def covers(self, school_class, term, curriculum_id):
        return (
            self.school_class.pk == school_class.pk
            and self.term.pk == term.pk
            and self.curriculum_id == curriculum_id
        )

    @property
    def class_size(self):
        return len(self.ranking)

    def rank_for(self, student_id):
        return self._ranks.get(student_id)

    def subject_results_for(self, student):
        """
        A copy of the student's subject results.

        Students outside the snapshot (e.g. no longer active) are aggregated
        on demand and are left unranked.
        """
        if student.pk in self._subject_results:
            return copy.deepcopy(self._subject_results[student.pk])
        return aggregate_results(
            _term_results(self.term).filter(student=student), self.curriculum_id
        )


def _carry_subject_comments(previous, current):
    comments = {
        r['subject_id']: r['teacher_comment']
        for r in previous or []
        if r.get('teacher_comment')
    }
    for result in current:
        if result['subject_id'] in comments:
            result['teacher_comment'] = comments[result['subject_id']]


def existing_report_card(student, term):
    return ReportCard.objects.filter(student=student, term=term).first()


def generate_report_card(student_id, term_id, curriculum=None, include_fee_balance=False,
                         regenerate=False, generated_by=None, cohort=None):
    """
    Compute and store a student's report card for a term.

    Raises NotFound for an unknown student or term, Conflict when a card
    already exists (without regenerate, or past draft), and BadRequest when
    the student has no gradable results.
    """
    student = get_or_not_found(Student.objects.select_related('current_class'), student_id, 'Student')
    term = get_or_not_found(Term.objects.select_related('academic_year'), term_id, 'Term')

    school_class = student.current_class
    if school_class is None:
        raise BadRequest(f'{student.full_name} is not assigned to a class')

    curriculum_id = resolve_curriculum(curriculum, school_class)

    existing = existing_report_card(student, term)
    if existing is not None:
        if not regenerate:
            raise Conflict(f'Report card already exists for {student.full_name} in {term}')
        if existing.status != ReportCard.Status.DRAFT:
            raise Conflict(
                f'Report card for {student.full_name} is {existing.get_status_display().lower()} '
                f'and can no longer be regenerated'
            )

    if cohort is None or not cohort.covers(school_class, term, curriculum_id):
        cohort = CohortSnapshot.build(school_class, term, curriculum_id)

    subject_results = cohort.subject_results_for(student)
    if not subject_results:
        raise BadRequest(f'No exam results found for {student.full_name} in {term}')

    summary = build_summary(
        subject_results,
        curriculum_id,
        cohort.rank_for(student.pk),
        cohort.class_size,
    )
    attendance = AttendanceRecord.summary_for(student, term)
    fee_balance = Invoice.outstanding_balance(student) if include_fee_balance else None

    try:
        with transaction.atomic():
            card = None
            if existing is not None:
                card = ReportCard.objects.select_for_update().filter(pk=existing.pk).first()

            if card is None:
                card = ReportCard(student=student, term=term)
            else:
                if card.status != ReportCard.Status.DRAFT:
                    raise Conflict(f'Report card for {student.full_name} is no longer a draft')
                _carry_subject_comments(card.subject_results, subject_results)
                card.clear_document()

            card.school_class = school_class
            card.academic_year = term.academic_year
            card.report_number = report_number(student, term)
            card.curriculum = curriculum_id
            card.subject_results = subject_results
            card.summary = summary
            card.days_present = attendance['present']
            card.days_absent = attendance['absent']
            card.total_school_days = attendance['total']
            card.fee_balance = fee_balance
            card.generated_by = generated_by
            card.save()
    except IntegrityError:
        logger.warning(f"Concurrent report card insert for {student.admission_number} in {term}")
        raise Conflict(f'Report card already exists for {student.full_name} in {term}')

    logger.info(
        f"{'Regenerated' if existing else 'Generated'} report card {card.report_number} "
        f"(rank {summary['class_rank_suffix']} of {summary['class_size']})"
    )
    return card


def bulk_generate_report_cards(class_id, term_id, curriculum=None, include_fee_balance=False,
                               regenerate=False, generated_by=None):
    """
    Generate report cards for every active student in a class.

    Never stops at a failing student: existing cards are counted as skipped
    and other failures are collected in errors.
    """
    school_class = get_or_not_found(Class.objects.all(), class_id, 'Class')
    term = get_or_not_found(Term.objects.select_related('academic_year'), term_id, 'Term')
    curriculum_id = resolve_curriculum(curriculum, school_class)

    students = list(Student.objects.active().in_class(school_class))
    cohort = CohortSnapshot.build(school_class, term, curriculum_id)

    outcome = {
        'total': len(students),
        'generated': 0,
        'skipped': 0,
        'errors': [],
    }

    for student in students:
        try:
            generate_report_card(
                student.pk,
                term.pk,
                curriculum=curriculum_id,
                include_fee_balance=include_fee_balance,
                regenerate=regenerate,
                generated_by=generated_by,
                cohort=cohort,
            )
            outcome['generated'] += 1
        except Conflict:
            outcome['skipped'] += 1
        except ReportCardError as e:
            logger.warning(f"Report card not generated for {student.admission_number}: {e.message}")
            outcome['errors'].append({
                'student_id': student.pk,
                'admission_number': student.admission_number,
                'error': e.message,
            })
        except Exception as e:
            logger.exception(f"Error generating report card for {student.admission_number}")
            outcome['errors'].append({
                'student_id': student.pk,
                'admission_number': student.admission_number,
                'error': str(e),
            })

    logger.info(
        f"Bulk generation for {school_class} {term}: {outcome['generated']} generated, "
        f"{outcome['skipped']} skipped, {len(outcome['errors'])} failed"
    )
    return outcome


def report_card_queryset(student=None, school_class=None, term=None, academic_year=None,
                         status=None, user=None):
    """Report cards matching the filters, limited to what user may see."""
    if status and status not in ReportCard.Status.values:
        raise BadRequest(f'Unknown status: {status}')

    qs = ReportCard.objects.select_related(
        'student', 'school_class', 'term', 'academic_year'
    ).filter_by(
        student=student,
        school_class=school_class,
        term=term,
        academic_year=academic_year,
        status=status,
    )
    if user is not None:
        qs = qs.visible_to(user)
    return qs


def get_report_card(report_card_id, user=None):
    qs = ReportCard.objects.select_related('student', 'school_class', 'term', 'academic_year')
    if user is not None:
        qs = qs.visible_to(user)
    return get_or_not_found(qs, report_card_id, 'Report card')


def delete_report_card(report_card_id):
    card = get_report_card(report_card_id)
    card.clear_document()
    card.delete()
    logger.info(f"Deleted report card {card.report_number}")
