from django.db import models
from django_tenants.models import TenantMixin, DomainMixin


class School(TenantMixin):
    """A tenant. Each school's records live in its own PostgreSQL schema."""
    name = models.CharField(max_length=100)
    short_name = models.CharField(max_length=20, blank=True, help_text="Short name for report headers")

    # Contact & Address
    email = models.EmailField(blank=True)
    phone = models.CharField(max_length=20, blank=True)
    address = models.TextField(blank=True)
    motto = models.CharField(max_length=200, blank=True)

    # Administration
    principal_name = models.CharField(max_length=100, blank=True, verbose_name="Principal's Name")

    # Metadata
    created_on = models.DateField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    auto_create_schema = True

    def __str__(self):
        return self.name

    @property
    def display_name(self):
        """Return short_name if available, otherwise name."""
        return self.short_name or self.name


class Domain(DomainMixin):
    pass
