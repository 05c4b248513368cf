import uuid
from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import Sum
from django.utils import timezone


class Invoice(models.Model):
    """Student fee invoices"""
    STATUS_CHOICES = [
        ('DRAFT', 'Draft'),
        ('ISSUED', 'Issued'),
        ('PARTIALLY_PAID', 'Partially Paid'),
        ('PAID', 'Paid'),
        ('OVERDUE', 'Overdue'),
        ('CANCELLED', 'Cancelled'),
    ]

    # Statuses that do not count towards what a student owes
    EXCLUDED_FROM_BALANCE = ['DRAFT', 'CANCELLED']

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    invoice_number = models.CharField(max_length=50, unique=True)
    student = models.ForeignKey(
        'students.Student',
        on_delete=models.CASCADE,
        related_name='invoices'
    )
    term = models.ForeignKey(
        'core.Term',
        on_delete=models.PROTECT,
        related_name='invoices'
    )
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='ISSUED')

    # Amounts
    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    amount_paid = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    balance = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))

    # Dates
    issue_date = models.DateField(default=timezone.now)
    due_date = models.DateField()

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='created_invoices'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.invoice_number} - {self.student.full_name}"

    def save(self, *args, **kwargs):
        if not self.invoice_number:
            # Generate invoice number: INV-YYYY-XXXXX
            year = timezone.now().year
            last_invoice = Invoice.objects.filter(
                invoice_number__startswith=f'INV-{year}'
            ).order_by('-invoice_number').first()

            if last_invoice:
                new_num = int(last_invoice.invoice_number.split('-')[-1]) + 1
            else:
                new_num = 1

            self.invoice_number = f'INV-{year}-{new_num:05d}'

        # Calculate balance
        self.balance = self.total_amount - self.amount_paid

        # Update status based on payment
        if self.status != 'CANCELLED':
            if self.amount_paid >= self.total_amount:
                self.status = 'PAID'
            elif self.amount_paid > 0:
                self.status = 'PARTIALLY_PAID'

        super().save(*args, **kwargs)

    @classmethod
    def outstanding_balance(cls, student):
        """Sum of balances across a student's issued invoices."""
        total = cls.objects.filter(student=student).exclude(
            status__in=cls.EXCLUDED_FROM_BALANCE
        ).aggregate(total=Sum('balance'))['total']
        return total or Decimal('0.00')
