import uuid

from django.conf import settings
from django.contrib.auth.models import AbstractUser
from django.db import models

from .records import InvoiceStatus, InvoiceTemplate, RecurrenceFrequency, Role


def default_roles():
    return [Role.USER.value]


class User(AbstractUser):
    Roles = Role

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    email = models.EmailField(unique=True)
    roles = models.JSONField(default=default_roles, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = ['username', 'name']

    def __str__(self) -> str:
        return f"{self.name or self.username} <{self.email}>"

    def save(self, *args, **kwargs):
        if self.email:
            self.email = self.email.strip().lower()
        if not self.username:
            self.username = self.email
        super().save(*args, **kwargs)

    @property
    def effective_roles(self) -> tuple[str, ...]:
        roles = [role for role in (self.roles or []) if role in Role.values]
        if self.is_superuser and Role.ADMIN not in roles:
            roles.append(Role.ADMIN.value)
        return tuple(roles)


class TimeStampedModel(models.Model):
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class UserSettings(TimeStampedModel):
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        primary_key=True,
        related_name='billing_settings',
    )
    company_name = models.CharField(max_length=255, blank=True)
    company_address = models.TextField(blank=True)
    company_logo_url = models.URLField(blank=True)
    default_currency = models.CharField(max_length=3, default='USD')
    default_tax_rate = models.DecimalField(max_digits=5, decimal_places=2, default=0)
    invoice_template = models.CharField(max_length=16, choices=InvoiceTemplate.choices, default=InvoiceTemplate.DEFAULT)

    class Meta:
        verbose_name = 'Settings'
        verbose_name_plural = 'Settings'

    def __str__(self) -> str:
        return f"Settings for {self.user_id}"


class Client(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    owner = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='clients')
    name = models.CharField(max_length=255)
    email = models.EmailField()
    phone = models.CharField(max_length=50, blank=True)
    address = models.TextField(blank=True)
    notes = models.TextField(blank=True)

    class Meta:
        ordering = ['name']
        constraints = [
            models.UniqueConstraint(fields=['owner', 'email'], name='unique_client_email_per_owner'),
        ]

    def __str__(self) -> str:
        return self.name


class Invoice(TimeStampedModel):
    Status = InvoiceStatus
    Frequency = RecurrenceFrequency

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    owner = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='invoices')
    # Plain reference: deleting a client leaves its invoices and their name snapshot alone.
    client_id = models.UUIDField(db_index=True)
    client_name = models.CharField(max_length=255)
    invoice_number = models.CharField(max_length=50, unique=True)
    invoice_date = models.DateField()
    due_date = models.DateField(null=True, blank=True)
    notes = models.TextField(blank=True)
    currency = models.CharField(max_length=3, default='USD')
    global_tax_rate = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    is_recurring = models.BooleanField(default=False)
    recurrence_frequency = models.CharField(max_length=16, choices=RecurrenceFrequency.choices, blank=True)
    recurrence_interval = models.PositiveIntegerField(null=True, blank=True)
    recurrence_end_date = models.DateField(null=True, blank=True)
    total_amount = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    status = models.CharField(max_length=32, choices=InvoiceStatus.choices, default=InvoiceStatus.DRAFT)

    class Meta:
        ordering = ['-invoice_date']
        indexes = [
            models.Index(fields=['owner', 'status'], name='billing_inv_owner_i_5c1d2e_idx'),
            models.Index(fields=['status', 'due_date'], name='billing_inv_status_8f0a3b_idx'),
            models.Index(fields=['invoice_date'], name='billing_inv_invoice_2b7e91_idx'),
        ]

    def __str__(self) -> str:
        return f"Invoice {self.invoice_number}"


class InvoiceLine(models.Model):
    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name='lines')
    position = models.PositiveIntegerField(default=0)
    description = models.CharField(max_length=255)
    quantity = models.DecimalField(max_digits=12, decimal_places=4, default=1)
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    tax_rate = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)

    class Meta:
        ordering = ['position', 'id']

    def __str__(self) -> str:
        return f"{self.description} x {self.quantity}"


class Payment(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name='payments')
    owner = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='payments')
    amount = models.DecimalField(max_digits=14, decimal_places=2)
    payment_date = models.DateField()
    payment_method = models.CharField(max_length=100)
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-payment_date', '-created_at']
        indexes = [
            models.Index(fields=['payment_date'], name='billing_pay_payment_7d4c10_idx'),
            models.Index(fields=['invoice', 'payment_date'], name='billing_pay_invoice_e3a6f2_idx'),
        ]

    def __str__(self) -> str:
        return f"Payment {self.amount} on {self.payment_date}"


class Sequence(models.Model):
    """Named counter used for invoice numbers; only ever incremented under a row lock."""

    name = models.CharField(max_length=50, unique=True)
    value = models.PositiveBigIntegerField(default=0)

    def __str__(self) -> str:
        return f"{self.name}={self.value}"
