from django.contrib.auth import get_user_model
from django_tenants.test.cases import TenantTestCase

User = get_user_model()


class UserManagerTests(TenantTestCase):
    """Tests for the custom user manager and role flags."""

    def test_create_user_requires_email(self):
        with self.assertRaises(ValueError):
            User.objects.create_user(email='', password='pass123')

    def test_school_admin_and_teacher_are_staff_members(self):
        admin = User.objects.create_school_admin(email='admin@school.com', password='pass123')
        teacher = User.objects.create_teacher(email='teacher@school.com', password='pass123')
        parent = User.objects.create_user(email='parent@school.com', password='pass123', is_parent=True)

        self.assertTrue(admin.is_staff_member)
        self.assertTrue(teacher.is_staff_member)
        self.assertFalse(parent.is_staff_member)

    def test_email_is_normalized(self):
        user = User.objects.create_user(email='Someone@SCHOOL.COM', password='pass123')
        self.assertEqual(user.email, 'Someone@school.com')
        self.assertTrue(user.check_password('pass123'))
