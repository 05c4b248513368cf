from django_tenants.test.cases import TenantTestCase

from academics.models import Class
from students.models import Student


class StudentQuerySetTests(TenantTestCase):
    """Tests for the Student manager."""

    def setUp(self):
        self.class_a = Class.objects.create(level_type='primary', level_number=5, section='A')
        self.class_b = Class.objects.create(level_type='primary', level_number=5, section='B')

    def make(self, admission_number, school_class, **kwargs):
        return Student.objects.create(
            first_name='Test',
            last_name=admission_number,
            admission_number=admission_number,
            current_class=school_class,
            **kwargs
        )

    def test_active_in_class(self):
        active = self.make('A1', self.class_a)
        self.make('A2', self.class_a, status=Student.Status.WITHDRAWN)
        self.make('A3', self.class_a, is_active=False)
        self.make('B1', self.class_b)

        self.assertEqual(list(Student.objects.active().in_class(self.class_a)), [active])

    def test_full_name(self):
        student = Student(first_name='Grace', other_names='Wairimu', last_name='Njoroge')
        self.assertEqual(student.full_name, 'Grace Wairimu Njoroge')
        self.assertEqual(Student(first_name='Grace', last_name='Njoroge').full_name, 'Grace Njoroge')
