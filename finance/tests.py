from datetime import date
from decimal import Decimal

from django.contrib.auth import get_user_model
from django_tenants.test.cases import TenantTestCase

from finance.models import Invoice
from students.models import Student
from core.models import AcademicYear, Term

User = get_user_model()


class FinanceTestBase(TenantTestCase):
    """Base class with common setup for finance tests."""

    def setUp(self):
        self.ay = AcademicYear.objects.create(
            name='2024/2025',
            start_date=date(2024, 9, 1),
            end_date=date(2025, 7, 31),
            is_current=True,
        )
        self.term = Term.objects.create(
            academic_year=self.ay,
            name='First Term',
            term_number=1,
            start_date=date(2024, 9, 1),
            end_date=date(2024, 12, 20),
            is_current=True,
        )
        self.student = Student.objects.create(
            first_name='Kwame',
            last_name='Mensah',
            date_of_birth=date(2010, 5, 15),
            gender='M',
            admission_number='STU-2024-001',
            admission_date=date(2024, 9, 1),
        )
        self.admin = User.objects.create_school_admin(
            email='admin@school.com', password='pass123'
        )

    def make_invoice(self, total, paid='0', **kwargs):
        return Invoice.objects.create(
            student=self.student,
            term=self.term,
            total_amount=Decimal(total),
            amount_paid=Decimal(paid),
            due_date=date(2024, 10, 1),
            created_by=self.admin,
            **kwargs
        )


class InvoiceModelTests(FinanceTestBase):
    """Tests for the Invoice model."""

    def test_invoice_number_is_sequential(self):
        first = self.make_invoice('100')
        second = self.make_invoice('200')
        self.assertTrue(first.invoice_number.startswith('INV-'))
        self.assertEqual(
            int(second.invoice_number.split('-')[-1]),
            int(first.invoice_number.split('-')[-1]) + 1
        )

    def test_balance_and_status(self):
        invoice = self.make_invoice('1000', '400')
        self.assertEqual(invoice.balance, Decimal('600'))
        self.assertEqual(invoice.status, 'PARTIALLY_PAID')

        invoice.amount_paid = Decimal('1000')
        invoice.save()
        self.assertEqual(invoice.balance, Decimal('0'))
        self.assertEqual(invoice.status, 'PAID')


class OutstandingBalanceTests(FinanceTestBase):
    """Tests for Invoice.outstanding_balance."""

    def test_no_invoices(self):
        self.assertEqual(Invoice.outstanding_balance(self.student), Decimal('0.00'))

    def test_sums_open_invoices(self):
        self.make_invoice('1000', '250')
        self.make_invoice('300')
        self.make_invoice('500', '500')
        self.assertEqual(Invoice.outstanding_balance(self.student), Decimal('1050.00'))

    def test_ignores_draft_and_cancelled(self):
        self.make_invoice('1000', '250')
        self.make_invoice('800', status='CANCELLED')
        self.make_invoice('700', status='DRAFT')
        self.assertEqual(Invoice.outstanding_balance(self.student), Decimal('750.00'))
