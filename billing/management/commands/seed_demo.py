from datetime import timedelta
from decimal import Decimal

from django.core.management.base import BaseCommand
from django.utils import timezone

from billing import services
from billing.exceptions import ConflictError
from billing.models import User
from billing.permissions import principal_for
from billing.records import InvoiceStatus
from billing.stores import get_store


class Command(BaseCommand):
    help = "Seed the database with a demo user, clients, invoices and payments."

    def add_arguments(self, parser):
        parser.add_argument('--email', default='demo@example.com')
        parser.add_argument('--password', default='demo-pass-123')

    def handle(self, *args, **options):
        email = options['email'].strip().lower()
        user = User.objects.filter(email=email).first()
        if user is None:
            user = User.objects.create_user(username=email, email=email, password=options['password'], name='Demo User')
        principal = principal_for(user)
        store = get_store()
        today = timezone.localdate()

        try:
            acme = services.create_client(store, principal, name='Acme Studio', email='billing@acme.example')
            globex = services.create_client(store, principal, name='Globex Ltd', email='accounts@globex.example')
        except ConflictError:
            self.stdout.write(self.style.WARNING(f"Demo data already present for {email}."))
            return

        paid = services.create_invoice(
            store,
            principal,
            client_id=acme.id,
            invoice_date=today - timedelta(days=20),
            due_date=today - timedelta(days=5),
            status=InvoiceStatus.PENDING,
            items=[
                {'description': 'Design work', 'quantity': Decimal('2'), 'unit_price': Decimal('100'), 'tax_rate': Decimal('10')},
                {'description': 'Hosting', 'quantity': Decimal('1'), 'unit_price': Decimal('50'), 'tax_rate': Decimal('0')},
            ],
        )
        services.record_payment(
            store, principal, paid.id,
            amount=paid.total_amount, payment_date=today - timedelta(days=3), payment_method='Bank transfer',
        )

        partial = services.create_invoice(
            store,
            principal,
            client_id=globex.id,
            invoice_date=today - timedelta(days=40),
            due_date=today - timedelta(days=10),
            status=InvoiceStatus.PENDING,
            global_tax_rate=Decimal('5'),
            items=[{'description': 'Consulting', 'quantity': Decimal('4'), 'unit_price': Decimal('75')}],
        )
        services.record_payment(
            store, principal, partial.id,
            amount=Decimal('100'), payment_date=today - timedelta(days=12), payment_method='Card',
        )

        services.create_invoice(
            store,
            principal,
            client_id=globex.id,
            invoice_date=today,
            due_date=today + timedelta(days=30),
            status=InvoiceStatus.DRAFT,
            is_recurring=True,
            recurrence_frequency='monthly',
            recurrence_interval=1,
            items=[{'description': 'Retainer', 'quantity': Decimal('1'), 'unit_price': Decimal('500')}],
        )

        self.stdout.write(self.style.SUCCESS(f"Demo data created. Log in as {email}."))
