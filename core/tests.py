from datetime import date

from django.core.exceptions import ValidationError
from django_tenants.test.cases import TenantTestCase

from core.models import AcademicYear, Term


class AcademicCalendarTests(TenantTestCase):
    """Tests for academic years and terms."""

    def setUp(self):
        self.year = AcademicYear.objects.create(
            name='2024/2025',
            start_date=date(2024, 9, 1),
            end_date=date(2025, 7, 31),
            is_current=True,
        )

    def test_only_one_current_year(self):
        next_year = AcademicYear.objects.create(
            name='2025/2026',
            start_date=date(2025, 9, 1),
            end_date=date(2026, 7, 31),
            is_current=True,
        )
        self.year.refresh_from_db()
        self.assertFalse(self.year.is_current)
        self.assertEqual(AcademicYear.get_current(), next_year)

    def test_only_one_current_term(self):
        first = Term.objects.create(
            academic_year=self.year, name='Term 1', term_number=1,
            start_date=date(2024, 9, 1), end_date=date(2024, 12, 20), is_current=True,
        )
        second = Term.objects.create(
            academic_year=self.year, name='Term 2', term_number=2,
            start_date=date(2025, 1, 6), end_date=date(2025, 4, 4), is_current=True,
        )
        first.refresh_from_db()
        self.assertFalse(first.is_current)
        self.assertEqual(Term.get_current(), second)

    def test_end_date_after_start(self):
        term = Term(
            academic_year=self.year, name='Bad', term_number=3,
            start_date=date(2025, 5, 1), end_date=date(2025, 4, 1),
        )
        with self.assertRaises(ValidationError):
            term.clean()
