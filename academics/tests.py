"""
Tests for the academics app.

Focuses on:
- Class name generation
- Attendance summaries used on report cards
"""
from datetime import date

from django_tenants.test.cases import TenantTestCase

from academics.models import AttendanceRecord, AttendanceSession, Class
from core.models import AcademicYear, Term
from students.models import Student


class ClassModelTests(TenantTestCase):
    """Tests for Class."""

    def test_name_generated_from_level(self):
        self.assertEqual(Class.objects.create(level_type='primary', level_number=4, section='A').name, 'G4-A')
        self.assertEqual(Class.objects.create(level_type='senior', level_number=3, section='EAST').name, 'F3-EAST')
        self.assertEqual(Class.objects.create(level_type='pre_primary', level_number=1, section='B').name, 'PP1-B')


class AttendanceSummaryTests(TenantTestCase):
    """Tests for AttendanceRecord.summary_for."""

    def setUp(self):
        self.year = AcademicYear.objects.create(
            name='2024/2025',
            start_date=date(2024, 9, 1),
            end_date=date(2025, 7, 31),
        )
        self.term = Term.objects.create(
            academic_year=self.year,
            name='Term 1',
            term_number=1,
            start_date=date(2024, 9, 1),
            end_date=date(2024, 12, 20),
        )
        self.school_class = Class.objects.create(level_type='junior', level_number=8, section='B')
        self.student = Student.objects.create(
            first_name='Wanjiru',
            last_name='Kamau',
            admission_number='ADM-100',
            current_class=self.school_class,
        )

    def mark(self, day, status):
        session, _ = AttendanceSession.objects.get_or_create(class_assigned=self.school_class, date=day)
        return AttendanceRecord.objects.create(session=session, student=self.student, status=status)

    def test_late_counts_as_present(self):
        self.mark(date(2024, 9, 2), AttendanceRecord.Status.PRESENT)
        self.mark(date(2024, 9, 3), AttendanceRecord.Status.LATE)
        self.mark(date(2024, 9, 4), AttendanceRecord.Status.ABSENT)
        self.mark(date(2024, 9, 5), AttendanceRecord.Status.EXCUSED)

        summary = AttendanceRecord.summary_for(self.student, self.term)
        self.assertEqual(summary, {'present': 2, 'absent': 1, 'total': 4})

    def test_only_term_dates_count(self):
        self.mark(date(2024, 8, 30), AttendanceRecord.Status.ABSENT)
        self.mark(date(2024, 12, 20), AttendanceRecord.Status.PRESENT)
        self.mark(date(2025, 1, 10), AttendanceRecord.Status.PRESENT)

        summary = AttendanceRecord.summary_for(self.student, self.term)
        self.assertEqual(summary, {'present': 1, 'absent': 0, 'total': 1})

    def test_no_records(self):
        summary = AttendanceRecord.summary_for(self.student, self.term)
        self.assertEqual(summary, {'present': 0, 'absent': 0, 'total': 0})
