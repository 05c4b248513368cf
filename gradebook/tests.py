import json
import random
import shutil
import tempfile
from datetime import date
from decimal import Decimal
from io import BytesIO
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.test import SimpleTestCase, override_settings
from django.urls import reverse
from django_tenants.test.cases import TenantTestCase
from django_tenants.test.client import TenantClient

from academics.models import AttendanceRecord, AttendanceSession, Class, Subject
from core.models import AcademicYear, Term
from finance.models import Invoice
from students.models import Student

from . import services, workflow
from .calculations import (
    ScoreRecord, aggregate_subject, build_summary, overall_percentage,
    rank_cohort, rank_suffix,
)
from .exceptions import BadRequest, Conflict, NotFound, UnknownCurriculum
from .grading import (
    available_curricula, band, calculate_mean_grade, get_curriculum,
    register_curriculum, resolve_grade, validate_scale,
)
from .models import Exam, ExamResult, ReportCard, ScoreCorrection
from .tasks import (
    bulk_generate_report_cards_task, bulk_publish_report_cards_task,
    render_report_card_pdf_task,
)


User = get_user_model()


def score(percentage, weight=None, subject_id=1, is_absent=False, is_exempted=False, exam_id='e1'):
    return ScoreRecord(
        exam_id=exam_id,
        exam_name=f'Exam {exam_id}',
        exam_type='cat',
        subject_id=subject_id,
        marks_obtained=Decimal(str(percentage)),
        total_marks=Decimal('100'),
        percentage=Decimal(str(percentage)),
        weight=weight,
        is_absent=is_absent,
        is_exempted=is_exempted,
    )


# =============================================================================
# GRADING RULES
# =============================================================================

class ResolveGradeTest(SimpleTestCase):
    """Tests for percentage to grade resolution."""

    def test_band_boundaries(self):
        """Closed bands: both ends of a band resolve to it."""
        self.assertEqual(resolve_grade(100, '8-4-4').grade, 'A')
        self.assertEqual(resolve_grade(80, '8-4-4').grade, 'A')
        self.assertEqual(resolve_grade('79.99', '8-4-4').grade, 'A-')
        self.assertEqual(resolve_grade(75, '8-4-4').grade, 'A-')
        self.assertEqual(resolve_grade(0, '8-4-4').grade, 'E')

    def test_percentage_is_rounded_before_lookup(self):
        """79.996 rounds to 80.00 rather than falling between bands."""
        self.assertEqual(resolve_grade('79.996', '8-4-4').grade, 'A')
        self.assertEqual(resolve_grade('29.994', '8-4-4').grade, 'E')

    def test_points_and_description(self):
        grade = resolve_grade(86, '8-4-4')
        self.assertEqual(grade.points, 12)
        self.assertEqual(grade.description, 'Excellent')

    def test_cbc_and_cambridge(self):
        self.assertEqual(resolve_grade(82, 'CBC').grade, 'EE')
        self.assertEqual(resolve_grade(64.99, 'CBC').grade, 'AE')
        self.assertEqual(resolve_grade(95, 'CAMBRIDGE').grade, 'A*')
        self.assertEqual(resolve_grade(19.99, 'CAMBRIDGE').grade, 'U')

    def test_grades_are_monotonic(self):
        """A higher percentage never earns fewer points."""
        for curriculum_id in ('8-4-4', 'CBC', 'CAMBRIDGE'):
            previous = None
            for hundredths in range(0, 10001, 7):
                points = resolve_grade(Decimal(hundredths) / 100, curriculum_id).points
                if previous is not None:
                    self.assertGreaterEqual(points, previous)
                previous = points

    def test_out_of_range_falls_back_to_lowest_band(self):
        self.assertEqual(resolve_grade(150, '8-4-4').grade, 'E')
        self.assertEqual(resolve_grade(-5, 'CBC').grade, 'BE')

    def test_unknown_curriculum(self):
        with self.assertRaises(UnknownCurriculum):
            resolve_grade(50, 'IGCSE-2099')

    def test_unknown_curriculum_is_bad_request(self):
        self.assertTrue(issubclass(UnknownCurriculum, BadRequest))
        self.assertEqual(UnknownCurriculum().status_code, 400)


class ScaleTableTest(SimpleTestCase):
    """Tests for scale validation and the curriculum registry."""

    def test_builtin_scales_are_exhaustive_and_non_overlapping(self):
        for curriculum_id in ('8-4-4', 'CBC', 'CAMBRIDGE'):
            self.assertEqual(validate_scale(get_curriculum(curriculum_id).scale), [])

    def test_every_hundredth_resolves_without_fallback(self):
        for curriculum_id in ('8-4-4', 'CBC', 'CAMBRIDGE'):
            scale = get_curriculum(curriculum_id).scale
            for hundredths in range(0, 10001):
                value = Decimal(hundredths) / 100
                matches = [b for b in scale if b.min_percentage <= value <= b.max_percentage]
                self.assertEqual(len(matches), 1, f'{curriculum_id} {value}')

    def test_validate_scale_reports_gap(self):
        scale = (band('P', 50, 100, 1), band('F', 0, 48, 0))
        self.assertTrue(any('Gap' in p for p in validate_scale(scale)))

    def test_validate_scale_reports_overlap(self):
        scale = (band('P', 50, 100, 1), band('F', 0, 60, 0))
        self.assertTrue(any('overlaps' in p for p in validate_scale(scale)))

    def test_register_rejects_invalid_scale(self):
        with self.assertRaises(ValueError):
            register_curriculum('BROKEN', [band('P', 50, 90, 1), band('F', 0, 49.99, 0)])

    def test_register_sorts_bands(self):
        curriculum = register_curriculum(
            'PASS-FAIL-SORTED',
            [band('F', 0, 49.99, 0), band('P', 50, 100, 1)],
        )
        self.assertEqual([b.grade for b in curriculum.scale], ['P', 'F'])
        self.assertEqual(resolve_grade(50, 'PASS-FAIL-SORTED').grade, 'P')

    @override_settings(GRADEBOOK_EXTRA_CURRICULA={
        'SETTINGS-PF': {
            'label': 'Pass/Fail',
            'scale': [('P', 50, 100, 1, 'Pass'), ('F', 0, 49.99, 0, 'Fail')],
        },
    })
    def test_curriculum_from_settings(self):
        self.assertIn('SETTINGS-PF', available_curricula())
        self.assertEqual(resolve_grade(49.99, 'SETTINGS-PF').grade, 'F')
        self.assertIsNone(calculate_mean_grade([1, 0], 'SETTINGS-PF'))


class MeanGradeTest(SimpleTestCase):
    """Tests for the best-N mean grade."""

    def test_best_seven_subjects(self):
        """Only the seven best subjects count."""
        result = calculate_mean_grade([12, 12, 12, 12, 12, 12, 12, 1, 1], '8-4-4')
        self.assertEqual(result['mean_points'], Decimal('12.00'))
        self.assertEqual(result['mean_grade'], 'A')

    def test_thresholds(self):
        self.assertEqual(calculate_mean_grade([12, 11], '8-4-4')['mean_grade'], 'A')
        self.assertEqual(calculate_mean_grade([11, 10], '8-4-4')['mean_grade'], 'A-')
        self.assertEqual(calculate_mean_grade([7, 6], '8-4-4')['mean_grade'], 'C+')
        self.assertEqual(calculate_mean_grade([2, 1], '8-4-4')['mean_grade'], 'D-')
        self.assertEqual(calculate_mean_grade([1], '8-4-4')['mean_grade'], 'E')

    def test_mean_points_rounded(self):
        result = calculate_mean_grade([12, 11, 11], '8-4-4')
        self.assertEqual(result['mean_points'], Decimal('11.33'))
        self.assertEqual(result['mean_grade'], 'A-')

    def test_fewer_subjects_than_best_of(self):
        result = calculate_mean_grade([9, 9, 9], '8-4-4')
        self.assertEqual(result['mean_points'], Decimal('9.00'))
        self.assertEqual(result['mean_grade'], 'B')

    def test_curriculum_without_rule(self):
        self.assertIsNone(calculate_mean_grade([4, 3, 2], 'CBC'))
        self.assertIsNone(calculate_mean_grade([9, 8], 'CAMBRIDGE'))


# =============================================================================
# CALCULATIONS
# =============================================================================

class AggregateSubjectTest(SimpleTestCase):
    """Tests for combining exam results into a subject result."""

    def test_weighted_average(self):
        """80 at weight 40 and 90 at weight 60 give 86.00, A, 12 points."""
        result = aggregate_subject(
            [score(80, Decimal('40'), exam_id='cat'), score(90, Decimal('60'), exam_id='end')],
            '8-4-4',
            subject_id=7,
            subject_name='Mathematics',
            subject_code='MATH',
        )
        self.assertEqual(result['average_percentage'], 86.0)
        self.assertEqual(result['final_grade'], 'A')
        self.assertEqual(result['grade_points'], 12)
        self.assertEqual(result['subject_id'], '7')
        self.assertEqual(len(result['exams']), 2)
        self.assertEqual(result['exams'][0]['weight'], 40.0)

    def test_missing_weight_counts_as_hundred(self):
        result = aggregate_subject([score(60, None, exam_id='a'), score(80, Decimal('100'), exam_id='b')], '8-4-4')
        self.assertEqual(result['average_percentage'], 70.0)
        self.assertEqual(result['exams'][0]['weight'], 100.0)

    def test_absent_and_exempted_are_excluded(self):
        """Excluded results count in neither numerator nor denominator."""
        records = [
            score(90, Decimal('50'), exam_id='a'),
            score(0, Decimal('50'), exam_id='b', is_absent=True),
            score(10, Decimal('50'), exam_id='c', is_exempted=True),
        ]
        result = aggregate_subject(records, '8-4-4')
        self.assertEqual(result['average_percentage'], 90.0)
        self.assertEqual([e['exam_id'] for e in result['exams']], ['a'])

    def test_no_valid_results(self):
        records = [score(0, exam_id='a', is_absent=True), score(0, exam_id='b', is_exempted=True)]
        self.assertIsNone(aggregate_subject(records, '8-4-4'))
        self.assertIsNone(aggregate_subject([], '8-4-4'))

    def test_average_rounded_half_up(self):
        result = aggregate_subject(
            [score('66.665', exam_id='a')], '8-4-4'
        )
        self.assertEqual(result['average_percentage'], 66.67)
        self.assertEqual(result['final_grade'], 'B')


class RankCohortTest(SimpleTestCase):
    """Tests for competition ranking."""

    def test_ties_share_rank(self):
        ranking = rank_cohort([
            {'student_id': 'S1', 'average': Decimal('90')},
            {'student_id': 'S2', 'average': Decimal('90')},
            {'student_id': 'S3', 'average': Decimal('80')},
        ])
        ranks = {entry['student_id']: entry['rank'] for entry in ranking}
        self.assertEqual(ranks, {'S1': 1, 'S2': 1, 'S3': 3})

    def test_tie_in_middle(self):
        ranking = rank_cohort([
            {'student_id': 1, 'average': 90},
            {'student_id': 2, 'average': 80},
            {'student_id': 3, 'average': 80},
            {'student_id': 4, 'average': 70},
        ])
        self.assertEqual([entry['rank'] for entry in ranking], [1, 2, 2, 4])

    def test_input_order_does_not_matter(self):
        entries = [{'student_id': i, 'average': avg} for i, avg in enumerate([55, 90, 90, 72.5, 55, 10])]
        expected = rank_cohort(entries)
        shuffled = list(entries)
        random.Random(4).shuffle(shuffled)
        self.assertEqual(rank_cohort(shuffled), expected)

    def test_empty_cohort(self):
        self.assertEqual(rank_cohort([]), [])

    def test_rank_suffix(self):
        cases = {
            1: '1st', 2: '2nd', 3: '3rd', 4: '4th', 11: '11th', 12: '12th', 13: '13th',
            21: '21st', 22: '22nd', 23: '23rd', 101: '101st', 111: '111th', 112: '112th',
        }
        for rank, expected in cases.items():
            self.assertEqual(rank_suffix(rank), expected)


class BuildSummaryTest(SimpleTestCase):
    """Tests for the report card summary."""

    def setUp(self):
        self.results = [
            aggregate_subject([score(86)], '8-4-4', subject_id=1, subject_name='Mathematics'),
            aggregate_subject([score(61)], '8-4-4', subject_id=2, subject_name='English'),
        ]

    def test_overall_is_unweighted_mean_of_subjects(self):
        self.assertEqual(overall_percentage(self.results), Decimal('73.50'))

    def test_summary_fields(self):
        summary = build_summary(self.results, '8-4-4', class_rank=2, class_size=30)
        self.assertEqual(summary['total_subjects'], 2)
        self.assertEqual(summary['total_marks_obtained'], 147.0)
        self.assertEqual(summary['total_marks_possible'], 200)
        self.assertEqual(summary['overall_percentage'], 73.5)
        self.assertEqual(summary['overall_grade'], 'B+')
        self.assertEqual(summary['total_points'], 20)
        self.assertEqual(summary['class_rank_suffix'], '2nd')
        self.assertEqual(summary['class_size'], 30)
        self.assertEqual(summary['mean_grade'], 'B+')
        self.assertEqual(summary['mean_points'], 10.0)

    def test_no_mean_grade_without_rule(self):
        results = [aggregate_subject([score(86)], 'CBC', subject_id=1)]
        summary = build_summary(results, 'CBC', class_rank=None, class_size=0)
        self.assertNotIn('mean_grade', summary)
        self.assertEqual(summary['class_rank_suffix'], '-')


# =============================================================================
# DATABASE TESTS
# =============================================================================

class GradebookTestBase(TenantTestCase):
    """Base class with a class of three ranked students and one without results."""

    @classmethod
    def setup_tenant(cls, tenant):
        """Called when tenant is created."""
        tenant.name = 'Test School'
        tenant.short_name = 'TEST'

    def setUp(self):
        super().setUp()
        self.admin = User.objects.create_school_admin(email='admin@school.com', password='testpass123')
        self.year = AcademicYear.objects.create(
            name='2024/2025',
            start_date=date(2024, 9, 1),
            end_date=date(2025, 7, 31),
            is_current=True,
        )
        self.term = Term.objects.create(
            academic_year=self.year,
            name='Term 1',
            term_number=1,
            start_date=date(2024, 9, 1),
            end_date=date(2024, 12, 20),
            is_current=True,
        )
        self.school_class = Class.objects.create(level_type='primary', level_number=4, section='A')
        self.math = Subject.objects.create(name='Mathematics', short_name='MATH')
        self.english = Subject.objects.create(name='English', short_name='ENG')

        self.s1 = self.make_student('Amina', 'Achieng', 'ADM001')
        self.s2 = self.make_student('Brian', 'Baraka', 'ADM002')
        self.s3 = self.make_student('Cheru', 'Chebet', 'ADM003')
        self.s4 = self.make_student('Dan', 'Dida', 'ADM004')

        self.math_cat = self.make_exam('Math CAT 1', self.math, 'cat', Decimal('40'))
        self.math_end = self.make_exam('Math End Term', self.math, 'end_term', Decimal('60'))
        self.english_end = self.make_exam('English End Term', self.english, 'end_term', None)

        self.record(self.s1, self.math_cat, 80)
        self.record(self.s1, self.math_end, 90)
        self.record(self.s2, self.math_cat, 80)
        self.record(self.s2, self.math_end, 90)
        self.record(self.s3, self.math_cat, 70)
        self.record(self.s3, self.math_end, 70)

    def make_student(self, first_name, last_name, admission_number, **kwargs):
        return Student.objects.create(
            first_name=first_name,
            last_name=last_name,
            admission_number=admission_number,
            current_class=self.school_class,
            **kwargs
        )

    def make_exam(self, name, subject, exam_type, weight):
        return Exam.objects.create(
            name=name,
            subject=subject,
            school_class=self.school_class,
            term=self.term,
            exam_type=exam_type,
            weight_percentage=weight,
        )

    def record(self, student, exam, marks, **kwargs):
        return ExamResult.objects.create(exam=exam, student=student, marks_obtained=marks, **kwargs)

    def generate(self, student, **kwargs):
        return services.generate_report_card(student.pk, self.term.pk, generated_by=self.admin, **kwargs)


class ExamResultModelTest(GradebookTestBase):
    """Tests for ExamResult."""

    def test_percentage_computed_on_save(self):
        exam = Exam.objects.create(
            name='Quiz', subject=self.english, school_class=self.school_class,
            term=self.term, exam_type='quiz', total_marks=Decimal('30'),
        )
        result = self.record(self.s1, exam, 20)
        self.assertEqual(result.percentage, Decimal('66.67'))

    def test_marks_cannot_exceed_total(self):
        result = ExamResult(exam=self.english_end, student=self.s1, marks_obtained=Decimal('101'))
        with self.assertRaises(ValidationError):
            result.clean()

    def test_correction_is_audited(self):
        result = ExamResult.objects.get(exam=self.math_cat, student=self.s3)
        correction = result.correct(self.admin, marks_obtained=75, reason='Marking error')

        result.refresh_from_db()
        self.assertEqual(result.marks_obtained, Decimal('75.00'))
        self.assertEqual(result.percentage, Decimal('75.00'))
        self.assertEqual(result.graded_by, self.admin)
        self.assertEqual(correction.old_marks, Decimal('70.00'))
        self.assertEqual(correction.new_marks, Decimal('75.00'))
        self.assertEqual(ScoreCorrection.objects.filter(result=result).count(), 1)

    def test_invalid_correction_is_rejected(self):
        result = ExamResult.objects.get(exam=self.math_cat, student=self.s3)
        with self.assertRaises(ValidationError):
            result.correct(self.admin, marks_obtained=150)
        self.assertFalse(ScoreCorrection.objects.exists())

    def test_changing_total_marks_recalculates_percentages(self):
        """Lowering an exam's total marks updates stored percentages and grades."""
        result = self.record(self.s4, self.english_end, 50)
        self.assertEqual(result.percentage, Decimal('50.00'))

        self.english_end.total_marks = Decimal('50')
        self.english_end.save()

        result.refresh_from_db()
        self.assertEqual(result.percentage, Decimal('100.00'))

        card = self.generate(self.s4)
        english = card.subject_results[0]
        self.assertEqual(english['average_percentage'], 100.0)
        self.assertEqual(english['final_grade'], 'A')

    def test_saving_exam_without_total_change_keeps_percentages(self):
        result = ExamResult.objects.get(exam=self.math_cat, student=self.s1)
        self.math_cat.name = 'Math CAT 1 (revised)'
        self.math_cat.save()

        result.refresh_from_db()
        self.assertEqual(result.percentage, Decimal('80.00'))


class GenerateReportCardTest(GradebookTestBase):
    """Tests for single report card generation."""

    def test_generate(self):
        card = self.generate(self.s1)

        self.assertEqual(card.status, ReportCard.Status.DRAFT)
        self.assertEqual(card.report_number, 'RC-2024-T1-ADM001')
        self.assertEqual(card.curriculum, '8-4-4')
        self.assertEqual(card.school_class, self.school_class)
        self.assertEqual(card.academic_year, self.year)

        self.assertEqual(len(card.subject_results), 1)
        math = card.subject_results[0]
        self.assertEqual(math['subject_name'], 'Mathematics')
        self.assertEqual(math['average_percentage'], 86.0)
        self.assertEqual(math['final_grade'], 'A')
        self.assertEqual(math['grade_points'], 12)

        self.assertEqual(card.summary['overall_percentage'], 86.0)
        self.assertEqual(card.summary['overall_grade'], 'A')
        self.assertEqual(card.summary['mean_grade'], 'A')
        self.assertIsNone(card.fee_balance)

    def test_class_ranking_shares_ties(self):
        cards = {s.pk: self.generate(s) for s in (self.s1, self.s2, self.s3)}
        self.assertEqual(cards[self.s1.pk].summary['class_rank'], 1)
        self.assertEqual(cards[self.s2.pk].summary['class_rank'], 1)
        self.assertEqual(cards[self.s3.pk].summary['class_rank'], 3)
        self.assertEqual(cards[self.s3.pk].summary['class_rank_suffix'], '3rd')
        self.assertEqual(cards[self.s3.pk].summary['class_size'], 3)

    def test_absent_subject_is_omitted(self):
        self.record(self.s1, self.english_end, 0, is_absent=True)
        card = self.generate(self.s1)
        self.assertEqual([r['subject_name'] for r in card.subject_results], ['Mathematics'])

    def test_subjects_sorted_by_name(self):
        self.record(self.s1, self.english_end, 55)
        card = self.generate(self.s1)
        self.assertEqual([r['subject_name'] for r in card.subject_results], ['English', 'Mathematics'])
        self.assertEqual(card.summary['overall_percentage'], 70.5)

    def test_duplicate_without_regenerate_conflicts(self):
        self.generate(self.s1)
        with self.assertRaises(Conflict):
            self.generate(self.s1)
        self.assertEqual(ReportCard.objects.filter(student=self.s1, term=self.term).count(), 1)

    def test_regenerate_is_idempotent(self):
        first = self.generate(self.s1)
        first.refresh_from_db()
        stored_results, stored_summary = first.subject_results, first.summary

        second = self.generate(self.s1, regenerate=True)
        second.refresh_from_db()

        self.assertEqual(first.pk, second.pk)
        self.assertEqual(second.subject_results, stored_results)
        self.assertEqual(second.summary, stored_summary)
        self.assertEqual(ReportCard.objects.count(), 1)

    def test_database_rejects_second_card_for_student_term(self):
        self.generate(self.s1)
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                ReportCard.objects.create(
                    student=self.s1,
                    school_class=self.school_class,
                    academic_year=self.year,
                    term=self.term,
                    curriculum='8-4-4',
                )
        self.assertEqual(ReportCard.objects.filter(student=self.s1, term=self.term).count(), 1)

    def test_concurrent_insert_surfaces_as_conflict(self):
        """A card inserted after the existence check loses at the constraint."""
        self.generate(self.s1)
        with patch('gradebook.services.existing_report_card', return_value=None):
            with self.assertRaises(Conflict):
                self.generate(self.s1)
        self.assertEqual(ReportCard.objects.filter(student=self.s1, term=self.term).count(), 1)

    def test_regenerate_picks_up_new_marks_and_keeps_comments(self):
        card = self.generate(self.s1)
        workflow.update_subject_comment(card.pk, self.math.pk, 'Keep it up')

        result = ExamResult.objects.get(exam=self.math_end, student=self.s1)
        result.correct(self.admin, marks_obtained=60)

        card = self.generate(self.s1, regenerate=True)
        math = card.get_subject_result(self.math.pk)
        self.assertEqual(math['average_percentage'], 68.0)
        self.assertEqual(math['teacher_comment'], 'Keep it up')

    def test_regenerate_locked_after_review(self):
        card = self.generate(self.s1)
        workflow.submit_for_review(card.pk)
        with self.assertRaises(Conflict):
            self.generate(self.s1, regenerate=True)

    def test_unknown_student_or_term(self):
        with self.assertRaises(NotFound):
            services.generate_report_card(999999, self.term.pk)
        with self.assertRaises(NotFound):
            services.generate_report_card(self.s1.pk, 999999)

    def test_no_results_is_bad_request(self):
        with self.assertRaises(BadRequest):
            self.generate(self.s4)

    def test_student_without_class(self):
        student = Student.objects.create(first_name='No', last_name='Class', admission_number='ADM099')
        with self.assertRaises(BadRequest):
            self.generate(student)

    def test_unknown_curriculum(self):
        with self.assertRaises(UnknownCurriculum):
            self.generate(self.s1, curriculum='NOPE')

    def test_curriculum_from_class(self):
        self.school_class.curriculum = 'CBC'
        self.school_class.save()

        card = self.generate(self.s1)
        self.assertEqual(card.curriculum, 'CBC')
        self.assertEqual(card.subject_results[0]['final_grade'], 'EE')
        self.assertNotIn('mean_grade', card.summary)

    def test_attendance_and_fee_balance(self):
        statuses = [AttendanceRecord.Status.PRESENT, AttendanceRecord.Status.LATE, AttendanceRecord.Status.ABSENT]
        for day, status in enumerate(statuses, 1):
            session = AttendanceSession.objects.create(class_assigned=self.school_class, date=date(2024, 10, day))
            AttendanceRecord.objects.create(session=session, student=self.s1, status=status)
        # Outside the term
        session = AttendanceSession.objects.create(class_assigned=self.school_class, date=date(2025, 2, 1))
        AttendanceRecord.objects.create(session=session, student=self.s1, status=AttendanceRecord.Status.ABSENT)

        Invoice.objects.create(
            student=self.s1, term=self.term, total_amount=Decimal('1000'),
            amount_paid=Decimal('250'), due_date=date(2024, 10, 1),
        )
        Invoice.objects.create(
            student=self.s1, term=self.term, total_amount=Decimal('500'),
            status='CANCELLED', due_date=date(2024, 10, 1),
        )

        card = self.generate(self.s1, include_fee_balance=True)
        card.refresh_from_db()
        self.assertEqual(card.days_present, 2)
        self.assertEqual(card.days_absent, 1)
        self.assertEqual(card.total_school_days, 3)
        self.assertEqual(card.fee_balance, Decimal('750.00'))

    def test_inactive_student_is_unranked(self):
        self.s3.status = Student.Status.WITHDRAWN
        self.s3.save()

        card = self.generate(self.s3)
        self.assertIsNone(card.summary['class_rank'])
        self.assertEqual(card.summary['class_rank_suffix'], '-')
        self.assertEqual(card.summary['class_size'], 2)


class BulkGenerateTest(GradebookTestBase):
    """Tests for class-wide generation."""

    def test_bulk_generate(self):
        outcome = services.bulk_generate_report_cards(self.school_class.pk, self.term.pk, generated_by=self.admin)

        self.assertEqual(outcome['total'], 4)
        self.assertEqual(outcome['generated'], 3)
        self.assertEqual(outcome['skipped'], 0)
        self.assertEqual(len(outcome['errors']), 1)
        self.assertEqual(outcome['errors'][0]['admission_number'], 'ADM004')

    def test_bulk_generate_skips_existing(self):
        self.generate(self.s1)
        outcome = services.bulk_generate_report_cards(self.school_class.pk, self.term.pk)
        self.assertEqual(outcome['generated'], 2)
        self.assertEqual(outcome['skipped'], 1)

    def test_bulk_ranks_match_single(self):
        services.bulk_generate_report_cards(self.school_class.pk, self.term.pk)
        ranks = dict(ReportCard.objects.values_list('student__admission_number', 'summary__class_rank'))
        self.assertEqual(ranks, {'ADM001': 1, 'ADM002': 1, 'ADM003': 3})

    def test_bulk_unknown_class(self):
        with self.assertRaises(NotFound):
            services.bulk_generate_report_cards(999999, self.term.pk)

    def test_bulk_task(self):
        result = bulk_generate_report_cards_task.apply(
            args=(self.school_class.pk, self.term.pk, self.tenant.schema_name)
        ).get()
        self.assertEqual(result['generated'], 3)


class ReportCardQueryTest(GradebookTestBase):
    """Tests for listing and removing report cards."""

    def setUp(self):
        super().setUp()
        services.bulk_generate_report_cards(self.school_class.pk, self.term.pk)
        self.parent = User.objects.create_user(email='parent@example.com', password='testpass123', is_parent=True)
        self.s1.guardian_user = self.parent
        self.s1.save()

    def test_filters(self):
        self.assertEqual(services.report_card_queryset(school_class=self.school_class.pk).count(), 3)
        self.assertEqual(services.report_card_queryset(student=self.s2.pk).count(), 1)
        self.assertEqual(services.report_card_queryset(status='published').count(), 0)

    def test_unknown_status(self):
        with self.assertRaises(BadRequest):
            services.report_card_queryset(status='lost')

    def test_malformed_ids(self):
        with self.assertRaises(BadRequest):
            services.report_card_queryset(student='abc')
        with self.assertRaises(BadRequest):
            services.report_card_queryset(term='1.5')
        self.assertEqual(services.report_card_queryset(term=str(self.term.pk)).count(), 3)

    def test_parent_sees_only_published_cards(self):
        card = ReportCard.objects.get(student=self.s1)
        self.assertEqual(services.report_card_queryset(user=self.parent).count(), 0)

        workflow.approve(card.pk, self.admin)
        workflow.publish(card.pk)
        self.assertEqual(list(services.report_card_queryset(user=self.parent)), [card])
        self.assertEqual(services.get_report_card(card.pk, user=self.parent), card)

    def test_get_missing(self):
        with self.assertRaises(NotFound):
            services.get_report_card('00000000-0000-0000-0000-000000000000')
        with self.assertRaises(NotFound):
            services.get_report_card('not-a-uuid')

    def test_delete(self):
        card = ReportCard.objects.get(student=self.s1)
        services.delete_report_card(card.pk)
        self.assertFalse(ReportCard.objects.filter(pk=card.pk).exists())


class WorkflowTest(GradebookTestBase):
    """Tests for status transitions and remarks."""

    def setUp(self):
        super().setUp()
        self.card = self.generate(self.s1)

    def test_publish_requires_approval(self):
        with self.assertRaises(BadRequest):
            workflow.publish(self.card.pk)

        workflow.submit_for_review(self.card.pk)
        with self.assertRaises(BadRequest):
            workflow.publish(self.card.pk)

    def test_full_lifecycle(self):
        card = workflow.submit_for_review(self.card.pk)
        self.assertEqual(card.status, ReportCard.Status.PENDING_REVIEW)

        card = workflow.approve(self.card.pk, self.admin)
        self.assertEqual(card.status, ReportCard.Status.APPROVED)
        self.assertEqual(card.approved_by, self.admin)
        self.assertIsNotNone(card.approved_at)

        card = workflow.publish(self.card.pk)
        card.refresh_from_db()
        self.assertEqual(card.status, ReportCard.Status.PUBLISHED)
        self.assertIsNotNone(card.published_at)

        card = workflow.archive(self.card.pk)
        self.assertEqual(card.status, ReportCard.Status.ARCHIVED)
        self.assertIsNotNone(card.archived_at)

    def test_approve_directly_from_draft(self):
        card = workflow.approve(self.card.pk, self.admin)
        self.assertEqual(card.status, ReportCard.Status.APPROVED)

    def test_illegal_transitions(self):
        workflow.submit_for_review(self.card.pk)
        with self.assertRaises(BadRequest):
            workflow.submit_for_review(self.card.pk)
        with self.assertRaises(BadRequest):
            workflow.archive(self.card.pk)

        workflow.approve(self.card.pk, self.admin)
        workflow.publish(self.card.pk)
        with self.assertRaises(BadRequest):
            workflow.approve(self.card.pk, self.admin)

    def test_transition_table_covers_all_actions(self):
        self.assertEqual(
            set(workflow.TRANSITIONS),
            {'submit_for_review', 'approve', 'publish', 'archive'}
        )
        self.assertTrue(workflow.can_transition(self.card, 'approve'))
        self.assertFalse(workflow.can_transition(self.card, 'publish'))

    def test_missing_card(self):
        with self.assertRaises(NotFound):
            workflow.publish('00000000-0000-0000-0000-000000000000')

    def test_update_comments(self):
        card = workflow.update_comments(self.card.pk, {
            'class_teacher_comment': 'A diligent student.',
            'next_term_opens': '2025-01-06',
            'next_term_closes': '2025-04-04',
        }, user=self.admin)

        card.refresh_from_db()
        self.assertEqual(card.class_teacher_comment, 'A diligent student.')
        self.assertEqual(card.class_teacher, self.admin)
        self.assertEqual(card.next_term_opens, date(2025, 1, 6))
        self.assertEqual(card.status, ReportCard.Status.DRAFT)

    def test_comments_allowed_after_publish(self):
        workflow.approve(self.card.pk, self.admin)
        workflow.publish(self.card.pk)

        card = workflow.update_comments(self.card.pk, {'parent_comment': 'Thank you.'})
        card.refresh_from_db()
        self.assertEqual(card.parent_comment, 'Thank you.')
        self.assertIsNotNone(card.parent_acknowledged_at)
        self.assertEqual(card.status, ReportCard.Status.PUBLISHED)

    def test_comment_validation(self):
        with self.assertRaises(BadRequest):
            workflow.update_comments(self.card.pk, {'status': 'published'})
        with self.assertRaises(BadRequest):
            workflow.update_comments(self.card.pk, {
                'next_term_opens': '2025-04-04',
                'next_term_closes': '2025-01-06',
            })
        with self.assertRaises(BadRequest):
            workflow.update_comments(self.card.pk, {'next_term_opens': 'soon'})

    def test_subject_comment(self):
        card = workflow.update_subject_comment(self.card.pk, self.math.pk, 'Excellent work')
        card.refresh_from_db()
        self.assertEqual(card.get_subject_result(self.math.pk)['teacher_comment'], 'Excellent work')

        with self.assertRaises(NotFound):
            workflow.update_subject_comment(self.card.pk, self.english.pk, 'Not taken')

    def test_bulk_publish(self):
        card2 = self.generate(self.s2)
        self.generate(self.s3)
        workflow.approve(self.card.pk, self.admin)
        workflow.approve(card2.pk, self.admin)

        outcome = workflow.bulk_publish(self.school_class.pk, self.term.pk)
        self.assertEqual(outcome, {'total': 2, 'published': 2, 'errors': []})
        self.assertEqual(ReportCard.objects.filter(status=ReportCard.Status.PUBLISHED).count(), 2)
        self.assertEqual(ReportCard.objects.filter(status=ReportCard.Status.DRAFT).count(), 1)

    def test_bulk_publish_task(self):
        workflow.approve(self.card.pk, self.admin)

        result = bulk_publish_report_cards_task.apply(
            args=(self.school_class.pk, self.term.pk, self.tenant.schema_name)
        ).get()
        self.assertEqual(result['published'], 1)
        self.card.refresh_from_db()
        self.assertEqual(self.card.status, ReportCard.Status.PUBLISHED)


# =============================================================================
# DOCUMENTS
# =============================================================================

FAKE_PDF = b'%PDF-1.4 report card'


class RenderingTest(GradebookTestBase):
    """Tests for the PDF hook and the class broadsheet."""

    def setUp(self):
        super().setUp()
        media_root = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, media_root, ignore_errors=True)
        media = override_settings(MEDIA_ROOT=media_root)
        media.enable()
        self.addCleanup(media.disable)

        services.bulk_generate_report_cards(self.school_class.pk, self.term.pk)
        self.card = ReportCard.objects.get(student=self.s1)

    @patch('gradebook.rendering._write_pdf', return_value=FAKE_PDF)
    def test_pdf_is_cached_until_regeneration(self, write_pdf):
        from .rendering import generate_pdf

        self.assertEqual(generate_pdf(self.card.pk), FAKE_PDF)
        self.card.refresh_from_db()
        self.assertTrue(self.card.has_document)
        self.assertIsNotNone(self.card.pdf_generated_at)

        html = write_pdf.call_args[0][0]
        self.assertIn('ADM001', html)
        self.assertIn('Mathematics', html)

        self.assertEqual(generate_pdf(self.card.pk), FAKE_PDF)
        self.assertEqual(write_pdf.call_count, 1)

        self.generate(self.s1, regenerate=True)
        self.card.refresh_from_db()
        self.assertFalse(self.card.has_document)
        self.assertIsNone(self.card.pdf_generated_at)

        generate_pdf(self.card.pk)
        self.assertEqual(write_pdf.call_count, 2)

    def test_regeneration_during_render_is_not_overwritten(self):
        def regenerate_then_render(html_string):
            self.generate(self.s1, regenerate=True)
            return FAKE_PDF

        from .rendering import generate_pdf

        with patch('gradebook.rendering._write_pdf', side_effect=regenerate_then_render):
            self.assertEqual(generate_pdf(self.card.pk), FAKE_PDF)

        self.card.refresh_from_db()
        self.assertFalse(self.card.has_document)
        self.assertIsNone(self.card.pdf_generated_at)

    @patch('gradebook.rendering._write_pdf', return_value=FAKE_PDF)
    def test_render_task(self, write_pdf):
        result = render_report_card_pdf_task.apply(
            args=(str(self.card.pk), self.tenant.schema_name)
        ).get()
        self.assertEqual(result, {'success': True, 'report_card_id': str(self.card.pk), 'size': len(FAKE_PDF)})
        self.card.refresh_from_db()
        self.assertTrue(self.card.has_document)

    def test_render_task_missing_card(self):
        result = render_report_card_pdf_task.apply(
            args=('00000000-0000-0000-0000-000000000000', self.tenant.schema_name)
        ).get()
        self.assertFalse(result['success'])

    def test_broadsheet(self):
        from openpyxl import load_workbook
        from .rendering import export_class_broadsheet

        workbook = load_workbook(BytesIO(export_class_broadsheet(self.school_class.pk, self.term.pk)))
        ws = workbook.active

        headers = [cell.value for cell in ws[4]]
        self.assertEqual(headers[:4], ['Pos', 'Admission No.', 'Student Name', 'MATH'])
        self.assertEqual([ws.cell(row=r, column=2).value for r in (5, 6, 7)], ['ADM001', 'ADM002', 'ADM003'])
        self.assertEqual([ws.cell(row=r, column=1).value for r in (5, 6, 7)], ['1st', '1st', '3rd'])
        self.assertEqual(ws.cell(row=5, column=4).value, 'A')

    def test_broadsheet_without_cards(self):
        from .rendering import export_class_broadsheet

        ReportCard.objects.all().delete()
        with self.assertRaises(NotFound):
            export_class_broadsheet(self.school_class.pk, self.term.pk)


# =============================================================================
# VIEWS
# =============================================================================

@override_settings(SECURE_SSL_REDIRECT=False)
class ReportCardViewTest(GradebookTestBase):
    """Tests for the JSON endpoints."""

    def setUp(self):
        super().setUp()
        self.client = TenantClient(self.tenant)
        self.client.login(email='admin@school.com', password='testpass123')

    def post_json(self, url, data=None):
        return self.client.post(url, data=json.dumps(data or {}), content_type='application/json')

    def test_generate(self):
        response = self.post_json(reverse('gradebook:generate'), {
            'student_id': self.s1.pk,
            'term_id': self.term.pk,
        })
        self.assertEqual(response.status_code, 201)
        data = response.json()
        self.assertEqual(data['report_number'], 'RC-2024-T1-ADM001')
        self.assertEqual(data['summary']['class_rank'], 1)
        self.assertEqual(data['status'], 'draft')

    def test_generate_conflict(self):
        payload = {'student_id': self.s1.pk, 'term_id': self.term.pk}
        self.post_json(reverse('gradebook:generate'), payload)
        response = self.post_json(reverse('gradebook:generate'), payload)
        self.assertEqual(response.status_code, 409)
        self.assertIn('error', response.json())

    def test_generate_validation(self):
        response = self.post_json(reverse('gradebook:generate'), {'student_id': self.s1.pk})
        self.assertEqual(response.status_code, 400)

        response = self.post_json(reverse('gradebook:generate'), {'student_id': 999999, 'term_id': self.term.pk})
        self.assertEqual(response.status_code, 404)

    def test_bulk_generate(self):
        response = self.post_json(reverse('gradebook:bulk_generate'), {
            'class_id': self.school_class.pk,
            'term_id': self.term.pk,
        })
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['generated'], 3)

    def test_workflow_endpoints(self):
        card = self.generate(self.s1)

        response = self.client.post(reverse('gradebook:publish', args=[card.pk]))
        self.assertEqual(response.status_code, 400)

        response = self.client.post(reverse('gradebook:approve', args=[card.pk]))
        self.assertEqual(response.json()['status'], 'approved')

        response = self.client.post(reverse('gradebook:publish', args=[card.pk]))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['status'], 'published')

    def test_comments_endpoints(self):
        card = self.generate(self.s1)

        response = self.post_json(reverse('gradebook:update_comments', args=[card.pk]), {
            'principal_comment': 'Well done.',
        })
        self.assertEqual(response.json()['principal_comment'], 'Well done.')

        response = self.post_json(
            reverse('gradebook:update_subject_comment', args=[card.pk, self.math.pk]),
            {'comment': 'Strong algebra'},
        )
        self.assertEqual(response.json()['subject_results'][0]['teacher_comment'], 'Strong algebra')

    def test_list_and_detail(self):
        card = self.generate(self.s1)

        response = self.client.get(reverse('gradebook:report_card_list'), {'class_id': self.school_class.pk})
        self.assertEqual(response.json()['count'], 1)

        response = self.client.get(reverse('gradebook:report_card_detail', args=[card.pk]))
        self.assertEqual(response.json()['subject_results'][0]['final_grade'], 'A')

    def test_list_rejects_malformed_ids(self):
        for param in ('student_id', 'class_id', 'term_id', 'academic_year_id'):
            response = self.client.get(reverse('gradebook:report_card_list'), {param: 'abc'})
            self.assertEqual(response.status_code, 400, param)
            self.assertIn('error', response.json())

    def test_delete(self):
        card = self.generate(self.s1)
        response = self.client.delete(reverse('gradebook:report_card_detail', args=[card.pk]))
        self.assertEqual(response.status_code, 200)
        self.assertFalse(ReportCard.objects.exists())

    def test_anonymous_and_non_staff(self):
        anonymous = TenantClient(self.tenant)
        response = anonymous.get(reverse('gradebook:report_card_list'))
        self.assertEqual(response.status_code, 401)

        User.objects.create_user(email='student@school.com', password='testpass123', is_student=True)
        student_client = TenantClient(self.tenant)
        student_client.login(email='student@school.com', password='testpass123')
        response = student_client.post(
            reverse('gradebook:generate'),
            data=json.dumps({'student_id': self.s1.pk, 'term_id': self.term.pk}),
            content_type='application/json',
        )
        self.assertEqual(response.status_code, 403)

    def test_parent_access(self):
        parent = User.objects.create_user(email='parent@school.com', password='testpass123', is_parent=True)
        self.s1.guardian_user = parent
        self.s1.save()
        card = self.generate(self.s1)

        parent_client = TenantClient(self.tenant)
        parent_client.login(email='parent@school.com', password='testpass123')

        response = parent_client.get(reverse('gradebook:report_card_detail', args=[card.pk]))
        self.assertEqual(response.status_code, 404)

        workflow.approve(card.pk, self.admin)
        workflow.publish(card.pk)

        response = parent_client.get(reverse('gradebook:report_card_list'))
        self.assertEqual(response.json()['count'], 1)

        response = parent_client.post(
            reverse('gradebook:update_comments', args=[card.pk]),
            data=json.dumps({'principal_comment': 'Changed'}),
            content_type='application/json',
        )
        self.assertEqual(response.status_code, 403)

        response = parent_client.post(
            reverse('gradebook:update_comments', args=[card.pk]),
            data=json.dumps({'parent_comment': 'Seen, thank you'}),
            content_type='application/json',
        )
        self.assertEqual(response.status_code, 200)
        self.assertIsNotNone(response.json()['parent_acknowledged_at'])

    @patch('gradebook.rendering._write_pdf', return_value=FAKE_PDF)
    def test_pdf_download(self, write_pdf):
        media_root = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, media_root, ignore_errors=True)
        card = self.generate(self.s1)

        with override_settings(MEDIA_ROOT=media_root):
            response = self.client.get(reverse('gradebook:report_card_pdf', args=[card.pk]))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response['Content-Type'], 'application/pdf')
        self.assertEqual(response.content, FAKE_PDF)

    def test_broadsheet_requires_params(self):
        response = self.client.get(reverse('gradebook:broadsheet'))
        self.assertEqual(response.status_code, 400)

    def test_curricula(self):
        response = self.client.get(reverse('gradebook:curricula'))
        self.assertIn('8-4-4', response.json()['curricula'])
