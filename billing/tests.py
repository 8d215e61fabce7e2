import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from decimal import Decimal
from unittest import mock

from django.contrib.auth import get_user_model
from django.test import SimpleTestCase, TestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIClient

from . import calculations, services
from .exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from .models import Invoice, Payment, UserSettings
from .records import InvoiceStatus, LineItem, Principal, Role
from .stores.memory import InMemoryStore

User = get_user_model()


def item(quantity, unit_price, tax_rate=None, description='Work'):
    return LineItem(
        description=description,
        quantity=Decimal(str(quantity)),
        unit_price=Decimal(str(unit_price)),
        tax_rate=None if tax_rate is None else Decimal(str(tax_rate)),
    )


class LineItemTotalTests(SimpleTestCase):
    def test_mixed_tax_rates_scenario(self):
        total = calculations.calculate_invoice_total([item(2, 100, 10), item(1, 50, 0)])
        self.assertEqual(total, Decimal('270.00'))

    def test_item_order_does_not_change_total(self):
        items = [item(3, '19.99', 7.5), item(1, '0.333', 0), item('2.5', '12.10', 20)]
        forward = calculations.calculate_invoice_total(items)
        backward = calculations.calculate_invoice_total(list(reversed(items)))
        self.assertEqual(forward, backward)

    def test_global_rate_applies_only_when_item_rate_missing(self):
        total = calculations.calculate_invoice_total([item(1, 100), item(1, 100, 0)], global_tax_rate=Decimal('20'))
        self.assertEqual(total, Decimal('220.00'))

    def test_missing_rates_default_to_zero(self):
        self.assertEqual(calculations.calculate_invoice_total([item(4, '12.50')]), Decimal('50.00'))

    def test_rounding_happens_once_on_the_sum(self):
        items = [item(1, '0.005'), item(1, '0.005'), item(1, '0.005')]
        self.assertEqual(calculations.calculate_invoice_total(items), Decimal('0.02'))

    def test_rounding_is_half_up(self):
        self.assertEqual(calculations.calculate_invoice_total([item(1, '0.125')]), Decimal('0.13'))

    def test_empty_items_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            calculations.calculate_invoice_total([])
        self.assertEqual(ctx.exception.field, 'items')

    def test_invalid_fields_name_item_index(self):
        cases = [
            ([item(1, 10), item(0, 10)], 'items[1].quantity'),
            ([item(1, -1)], 'items[0].unit_price'),
            ([item(1, 10), item(1, 10), item(1, 10, 101)], 'items[2].tax_rate'),
            ([LineItem(description='  ', quantity=Decimal('1'), unit_price=Decimal('1'))], 'items[0].description'),
        ]
        for items, field in cases:
            with self.subTest(field=field):
                with self.assertRaises(ValidationError) as ctx:
                    calculations.calculate_invoice_total(items)
                self.assertEqual(ctx.exception.field, field)

    def test_global_rate_out_of_range_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            calculations.calculate_invoice_total([item(1, 10)], global_tax_rate=-1)
        self.assertEqual(ctx.exception.field, 'global_tax_rate')


class StatusTransitionTests(SimpleTestCase):
    def test_full_payment_marks_paid(self):
        status = calculations.status_after_payment(InvoiceStatus.PENDING, Decimal('270'), Decimal('270.00'))
        self.assertEqual(status, InvoiceStatus.PAID)

    def test_overpayment_marks_paid(self):
        status = calculations.status_after_payment(InvoiceStatus.PENDING, Decimal('300'), Decimal('270.00'))
        self.assertEqual(status, InvoiceStatus.PAID)

    def test_partial_payment_marks_partially_paid(self):
        status = calculations.status_after_payment(InvoiceStatus.DRAFT, Decimal('100'), Decimal('270.00'))
        self.assertEqual(status, InvoiceStatus.PARTIALLY_PAID)

    def test_nothing_paid_keeps_status(self):
        status = calculations.status_after_payment(InvoiceStatus.OVERDUE, Decimal('0'), Decimal('270.00'))
        self.assertEqual(status, InvoiceStatus.OVERDUE)

    def test_cancelled_invoice_is_overridden_by_default(self):
        status = calculations.status_after_payment(InvoiceStatus.CANCELLED, Decimal('10'), Decimal('270.00'))
        self.assertEqual(status, InvoiceStatus.PARTIALLY_PAID)

    def test_cancelled_invoice_can_be_kept(self):
        status = calculations.status_after_payment(
            InvoiceStatus.CANCELLED, Decimal('270'), Decimal('270.00'), override_cancelled=False
        )
        self.assertEqual(status, InvoiceStatus.CANCELLED)

    def test_invoice_number_format(self):
        self.assertEqual(calculations.format_invoice_number(7, year=2024), 'INV-2024-00007')
        self.assertEqual(calculations.format_invoice_number(123456, year=2025, prefix='ACME'), 'ACME-2025-123456')


class InMemoryServiceMixin:
    def setUp(self):
        self.store = InMemoryStore()
        self.owner = Principal(id=uuid.uuid4(), email='owner@example.com', name='Owner')
        self.other = Principal(id=uuid.uuid4(), email='other@example.com', name='Other')
        self.today = timezone.localdate()
        self.client_record = services.create_client(self.store, self.owner, name='Acme', email='Billing@Acme.example')

    def make_invoice(self, principal=None, client=None, status=InvoiceStatus.PENDING, items=None, **extra):
        principal = principal or self.owner
        client = client or self.client_record
        return services.create_invoice(
            self.store,
            principal,
            client_id=client.id,
            invoice_date=extra.pop('invoice_date', self.today),
            status=status,
            items=items or [
                {'description': 'Design', 'quantity': 2, 'unit_price': 100, 'tax_rate': 10},
                {'description': 'Hosting', 'quantity': 1, 'unit_price': 50, 'tax_rate': 0},
            ],
            **extra,
        )

    def pay(self, invoice, amount, days_ago=0, principal=None):
        return services.record_payment(
            self.store,
            principal or self.owner,
            invoice.id,
            amount=Decimal(str(amount)),
            payment_date=self.today - timedelta(days=days_ago),
            payment_method='Bank transfer',
        )


class ClientServiceTests(InMemoryServiceMixin, SimpleTestCase):
    def test_email_is_normalised(self):
        self.assertEqual(self.client_record.email, 'billing@acme.example')

    def test_duplicate_email_for_same_owner_conflicts(self):
        with self.assertRaises(ConflictError):
            services.create_client(self.store, self.owner, name='Acme 2', email='billing@acme.example')

    def test_same_email_allowed_for_other_owner(self):
        client = services.create_client(self.store, self.other, name='Acme', email='billing@acme.example')
        self.assertEqual(client.owner_id, self.other.id)

    def test_update_to_taken_email_conflicts(self):
        second = services.create_client(self.store, self.owner, name='Globex', email='hi@globex.example')
        with self.assertRaises(ConflictError):
            services.update_client(self.store, self.owner, second.id, name='Globex', email='billing@acme.example')

    def test_other_users_client_is_not_found(self):
        with self.assertRaises(NotFoundError):
            services.get_client(self.store, self.other, self.client_record.id)

    def test_search_matches_name_or_email(self):
        services.create_client(self.store, self.owner, name='Globex', email='hi@globex.example')
        self.assertEqual([c.name for c in services.list_clients(self.store, self.owner, search='GLOB')], ['Globex'])
        self.assertEqual([c.name for c in services.list_clients(self.store, self.owner, search='acme.ex')], ['Acme'])

    def test_invalid_email_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            services.create_client(self.store, self.owner, name='Bad', email='not-an-email')
        self.assertEqual(ctx.exception.field, 'email')

    def test_deleting_client_keeps_invoice_snapshot(self):
        invoice = self.make_invoice()
        services.delete_client(self.store, self.owner, self.client_record.id)
        detail = services.get_invoice_detail(self.store, self.owner, invoice.id)
        self.assertEqual(detail.invoice.client_name, 'Acme')
        self.assertEqual(detail.invoice.client_id, self.client_record.id)
        self.assertIsNone(detail.client)


class SettingsServiceTests(InMemoryServiceMixin, SimpleTestCase):
    def test_defaults_created_on_first_read(self):
        record = services.get_settings(self.store, self.owner)
        self.assertEqual(record.company_name, "Owner's Company")
        self.assertEqual(record.default_currency, 'USD')
        self.assertEqual(record.default_tax_rate, Decimal('0'))
        self.assertEqual(record.invoice_template, 'default')

    def test_partial_update_changes_only_supplied_fields(self):
        services.update_settings(self.store, self.owner, company_address='1 Main St')
        record = services.update_settings(self.store, self.owner, default_currency='eur')
        self.assertEqual(record.default_currency, 'EUR')
        self.assertEqual(record.company_address, '1 Main St')
        self.assertEqual(record.company_name, "Owner's Company")

    def test_invalid_values_rejected(self):
        cases = [
            ({'default_currency': 'EURO'}, 'default_currency'),
            ({'default_tax_rate': Decimal('120')}, 'default_tax_rate'),
            ({'invoice_template': 'fancy'}, 'invoice_template'),
        ]
        for changes, field in cases:
            with self.subTest(field=field):
                with self.assertRaises(ValidationError) as ctx:
                    services.update_settings(self.store, self.owner, **changes)
                self.assertEqual(ctx.exception.field, field)

    def test_invoice_currency_defaults_to_settings(self):
        services.update_settings(self.store, self.owner, default_currency='GBP')
        self.assertEqual(self.make_invoice().currency, 'GBP')


class InvoiceServiceTests(InMemoryServiceMixin, SimpleTestCase):
    def test_create_computes_total_and_number(self):
        invoice = self.make_invoice()
        self.assertEqual(invoice.total_amount, Decimal('270.00'))
        self.assertEqual(invoice.invoice_number, f"INV-{self.today.year}-00001")
        self.assertEqual(invoice.client_name, 'Acme')
        self.assertEqual(invoice.status, InvoiceStatus.PENDING)

    @override_settings(INVOICE_PREFIX='ACME')
    def test_prefix_is_configurable(self):
        self.assertTrue(self.make_invoice().invoice_number.startswith(f"ACME-{self.today.year}-"))

    def test_unknown_client_is_not_found(self):
        foreign = services.create_client(self.store, self.other, name='Theirs', email='x@theirs.example')
        with self.assertRaises(NotFoundError):
            self.make_invoice(client=foreign)

    def test_invalid_status_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            self.make_invoice(status='sent')
        self.assertEqual(ctx.exception.field, 'status')

    def test_recurrence_is_validated_only_when_recurring(self):
        invoice = self.make_invoice(is_recurring=False, recurrence_frequency='hourly')
        self.assertEqual(invoice.recurrence_frequency, '')
        with self.assertRaises(ValidationError) as ctx:
            self.make_invoice(is_recurring=True, recurrence_frequency='hourly')
        self.assertEqual(ctx.exception.field, 'recurrence_frequency')
        with self.assertRaises(ValidationError):
            self.make_invoice(is_recurring=True, recurrence_frequency='monthly', recurrence_interval=0)

    def test_update_recomputes_total_and_keeps_number(self):
        invoice = self.make_invoice()
        services.update_client(self.store, self.owner, self.client_record.id, name='Acme Renamed', email='billing@acme.example')
        updated = services.update_invoice(
            self.store,
            self.owner,
            invoice.id,
            client_id=self.client_record.id,
            invoice_date=self.today,
            status=InvoiceStatus.DRAFT,
            global_tax_rate=Decimal('10'),
            items=[{'description': 'Flat fee', 'quantity': 1, 'unit_price': 1000}],
        )
        self.assertEqual(updated.total_amount, Decimal('1100.00'))
        self.assertEqual(updated.invoice_number, invoice.invoice_number)
        self.assertEqual(updated.client_name, 'Acme Renamed')
        self.assertEqual(len(updated.items), 1)

    def test_list_filters_and_orders(self):
        older = self.make_invoice(invoice_date=self.today - timedelta(days=10))
        newer = self.make_invoice(status=InvoiceStatus.DRAFT)
        self.make_invoice(principal=self.other, client=services.create_client(
            self.store, self.other, name='Acme', email='a@acme.example'))
        self.assertEqual([inv.id for inv in services.list_invoices(self.store, self.owner)], [newer.id, older.id])
        self.assertEqual(
            [inv.id for inv in services.list_invoices(self.store, self.owner, status=InvoiceStatus.DRAFT)],
            [newer.id],
        )
        self.assertEqual(
            [inv.id for inv in services.list_invoices(self.store, self.owner, search=older.invoice_number.lower())],
            [older.id],
        )

    def test_numbers_are_not_reused_after_delete(self):
        first = self.make_invoice()
        services.delete_invoice(self.store, self.owner, first.id)
        second = self.make_invoice()
        self.assertNotEqual(first.invoice_number, second.invoice_number)
        self.assertTrue(second.invoice_number.endswith('00002'))

    def test_concurrent_creation_yields_unique_numbers(self):
        with ThreadPoolExecutor(max_workers=16) as pool:
            invoices = list(pool.map(lambda _: self.make_invoice(), range(1000)))
        numbers = {invoice.invoice_number for invoice in invoices}
        self.assertEqual(len(numbers), 1000)


class PaymentServiceTests(InMemoryServiceMixin, SimpleTestCase):
    def test_partial_then_full_payment(self):
        invoice = self.make_invoice()
        self.pay(invoice, '100.00')
        detail = services.get_invoice_detail(self.store, self.owner, invoice.id)
        self.assertEqual(detail.invoice.status, InvoiceStatus.PARTIALLY_PAID)
        self.assertEqual(detail.balance_due, Decimal('170.00'))

        self.pay(invoice, '170.00')
        detail = services.get_invoice_detail(self.store, self.owner, invoice.id)
        self.assertEqual(detail.invoice.status, InvoiceStatus.PAID)
        self.assertEqual(detail.balance_due, Decimal('0.00'))
        self.assertEqual(detail.amount_paid, Decimal('270.00'))

    def test_payment_refreshes_updated_at(self):
        invoice = self.make_invoice()
        self.pay(invoice, 10)
        self.assertGreaterEqual(services.get_invoice(self.store, self.owner, invoice.id).updated_at, invoice.updated_at)

    def test_zero_or_negative_amount_rejected(self):
        invoice = self.make_invoice()
        for amount in ('0', '-5'):
            with self.subTest(amount=amount):
                with self.assertRaises(ValidationError) as ctx:
                    self.pay(invoice, amount)
                self.assertEqual(ctx.exception.field, 'amount')
        self.assertEqual(services.list_payments(self.store, self.owner, invoice.id), [])

    def test_blank_method_and_bad_date_rejected(self):
        invoice = self.make_invoice()
        with self.assertRaises(ValidationError) as ctx:
            services.record_payment(self.store, self.owner, invoice.id, amount=1, payment_date=self.today, payment_method=' ')
        self.assertEqual(ctx.exception.field, 'payment_method')
        with self.assertRaises(ValidationError) as ctx:
            services.record_payment(self.store, self.owner, invoice.id, amount=1, payment_date='soon', payment_method='Cash')
        self.assertEqual(ctx.exception.field, 'payment_date')

    def test_other_users_invoice_is_not_found(self):
        invoice = self.make_invoice()
        with self.assertRaises(NotFoundError):
            self.pay(invoice, 10, principal=self.other)

    def test_payment_reopens_cancelled_invoice(self):
        invoice = self.make_invoice(status=InvoiceStatus.CANCELLED)
        self.pay(invoice, 270)
        self.assertEqual(services.get_invoice(self.store, self.owner, invoice.id).status, InvoiceStatus.PAID)

    @override_settings(BILLING_PAYMENT_OVERRIDES_CANCELLED=False)
    def test_cancelled_invoice_kept_when_override_disabled(self):
        invoice = self.make_invoice(status=InvoiceStatus.CANCELLED)
        self.pay(invoice, 270)
        self.assertEqual(services.get_invoice(self.store, self.owner, invoice.id).status, InvoiceStatus.CANCELLED)

    def test_delete_invoice_removes_payments(self):
        invoice = self.make_invoice()
        payments = [self.pay(invoice, 10), self.pay(invoice, 20)]
        services.delete_invoice(self.store, self.owner, invoice.id)
        for payment in payments:
            with self.assertRaises(NotFoundError):
                services.get_payment(self.store, self.owner, payment.id)
        with self.assertRaises(NotFoundError):
            services.get_invoice(self.store, self.owner, invoice.id)

    def test_invoice_locks_released_for_missing_invoices(self):
        kept = self.make_invoice()
        self.pay(kept, 10)
        self.assertIn(kept.id, self.store._invoice_locks)

        removed = self.make_invoice()
        self.pay(removed, 10)
        services.delete_invoice(self.store, self.owner, removed.id)
        self.assertNotIn(removed.id, self.store._invoice_locks)

        unknown = uuid.uuid4()
        with self.assertRaises(NotFoundError):
            services.record_payment(
                self.store, self.owner, unknown, amount=1, payment_date=self.today, payment_method='Cash'
            )
        self.assertNotIn(unknown, self.store._invoice_locks)

    def test_concurrent_payments_are_all_counted(self):
        invoice = self.make_invoice(items=[{'description': 'Fee', 'quantity': 1, 'unit_price': 100}])
        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda _: self.pay(invoice, 1), range(100)))
        detail = services.get_invoice_detail(self.store, self.owner, invoice.id)
        self.assertEqual(detail.amount_paid, Decimal('100.00'))
        self.assertEqual(detail.invoice.status, InvoiceStatus.PAID)


class ReportServiceTests(InMemoryServiceMixin, SimpleTestCase):
    def test_summary_figures(self):
        overdue = self.make_invoice(due_date=self.today - timedelta(days=5))
        self.pay(overdue, 100, days_ago=2)
        self.make_invoice(due_date=self.today + timedelta(days=5))
        settled = self.make_invoice()
        self.pay(settled, 270, days_ago=40)
        self.make_invoice(status=InvoiceStatus.DRAFT, due_date=self.today - timedelta(days=5))
        self.make_invoice(status=InvoiceStatus.CANCELLED, due_date=self.today - timedelta(days=5))

        report = services.summary_report(self.store, self.owner)
        self.assertEqual(report.total_outstanding, Decimal('440.00'))
        self.assertEqual(report.total_overdue, Decimal('170.00'))
        self.assertEqual(report.paid_last_30_days, Decimal('100.00'))
        self.assertLessEqual(report.total_overdue, report.total_outstanding)

    def test_summary_window_includes_boundary_and_excludes_future(self):
        invoice = self.make_invoice()
        self.pay(invoice, 10, days_ago=30)
        self.pay(invoice, 20, days_ago=31)
        self.pay(invoice, 40, days_ago=-3)
        report = services.summary_report(self.store, self.owner)
        self.assertEqual(report.paid_last_30_days, Decimal('10.00'))

    def test_invoice_due_today_is_overdue(self):
        self.make_invoice(due_date=self.today)
        self.make_invoice(due_date=self.today + timedelta(days=1))
        noon = timezone.localtime().replace(hour=12, minute=0, second=0, microsecond=0)
        report = services.summary_report(self.store, self.owner, now=noon)
        self.assertEqual(report.total_outstanding, Decimal('540.00'))
        self.assertEqual(report.total_overdue, Decimal('270.00'))

    def test_fully_paid_invoice_contributes_nothing(self):
        invoice = self.make_invoice(due_date=self.today - timedelta(days=1))
        self.pay(invoice, 270)
        report = services.summary_report(self.store, self.owner)
        self.assertEqual(report.total_outstanding, Decimal('0.00'))
        self.assertEqual(report.total_overdue, Decimal('0.00'))

    def test_revenue_by_client(self):
        first = self.make_invoice()
        self.pay(first, 270)
        second = self.make_invoice(items=[{'description': 'Extra', 'quantity': 1, 'unit_price': 130}])
        self.pay(second, 130)
        globex = services.create_client(self.store, self.owner, name='Globex', email='hi@globex.example')
        partial = self.make_invoice(client=globex, items=[{'description': 'Big', 'quantity': 1, 'unit_price': 1000}])
        self.pay(partial, 500)
        services.create_client(self.store, self.owner, name='Idle', email='idle@example.com')

        rows = services.revenue_report(self.store, self.owner)
        self.assertEqual([row.client_name for row in rows], ['Globex', 'Acme'])
        acme = rows[1]
        self.assertEqual(acme.invoice_count, 2)
        self.assertEqual(acme.total_revenue, Decimal('400.00'))
        self.assertEqual(rows[0].total_revenue, Decimal('500.00'))

    def test_other_user_report_requires_admin(self):
        with self.assertRaises(AuthorizationError):
            services.revenue_report(self.store, self.other, user_id=self.owner.id)
        admin = Principal(id=uuid.uuid4(), email='admin@example.com', roles=(Role.USER, Role.ADMIN))
        invoice = self.make_invoice()
        self.pay(invoice, 270)
        rows = services.revenue_report(self.store, admin, user_id=str(self.owner.id))
        self.assertEqual(len(rows), 1)
        self.assertEqual(services.revenue_report(self.store, self.owner, user_id=self.owner.id), rows)


class ApiTestCase(TestCase):
    def setUp(self):
        self.password = 'test-pass-123'
        self.user = User.objects.create_user(
            username='owner@example.com', email='owner@example.com', password=self.password, name='Owner'
        )
        self.api = APIClient()
        self.api.force_authenticate(self.user)
        self.today = timezone.localdate()

    def create_client(self, api=None, email='billing@acme.example', name='Acme'):
        resp = (api or self.api).post('/api/clients/', {'name': name, 'email': email}, format='json')
        self.assertEqual(resp.status_code, 201, resp.content)
        return resp.json()

    def create_invoice(self, client_id, api=None, **overrides):
        payload = {
            'client_id': client_id,
            'invoice_date': self.today.isoformat(),
            'status': 'pending',
            'items': [
                {'description': 'Design', 'quantity': '2', 'unit_price': '100', 'tax_rate': '10'},
                {'description': 'Hosting', 'quantity': '1', 'unit_price': '50', 'tax_rate': '0'},
            ],
        }
        payload.update(overrides)
        return (api or self.api).post('/api/invoices/', payload, format='json')

    def pay(self, invoice_id, amount):
        return self.api.post(
            f'/api/invoices/{invoice_id}/payments/',
            {'amount': amount, 'payment_date': self.today.isoformat(), 'payment_method': 'Card'},
            format='json',
        )


class AuthApiTests(ApiTestCase):
    def test_register_login_and_status(self):
        anon = APIClient()
        resp = anon.post('/api/auth/register/', {'name': 'New', 'email': 'New@Example.com', 'password': 'secret1'}, format='json')
        self.assertEqual(resp.status_code, 201)
        self.assertTrue(UserSettings.objects.filter(user__email='new@example.com').exists())

        resp = anon.post('/api/auth/login/', {'email': 'new@example.com', 'password': 'secret1'}, format='json')
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body['user']['roles'], ['user'])

        anon.credentials(HTTP_AUTHORIZATION=f"Bearer {body['token']}")
        resp = anon.get('/api/auth/status/')
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()['user']['email'], 'new@example.com')
        self.assertEqual(anon.post('/api/auth/logout/').status_code, 200)

    def test_duplicate_registration_conflicts(self):
        resp = APIClient().post(
            '/api/auth/register/', {'name': 'Dup', 'email': 'owner@example.com', 'password': 'secret1'}, format='json'
        )
        self.assertEqual(resp.status_code, 409)

    def test_short_password_rejected(self):
        resp = APIClient().post('/api/auth/register/', {'name': 'X', 'email': 'x@example.com', 'password': '123'}, format='json')
        self.assertEqual(resp.status_code, 400)

    def test_wrong_password_rejected(self):
        resp = APIClient().post('/api/auth/login/', {'email': 'owner@example.com', 'password': 'nope-nope'}, format='json')
        self.assertEqual(resp.status_code, 401)

    def test_token_required(self):
        self.assertEqual(APIClient().get('/api/clients/').status_code, 401)


class SettingsApiTests(ApiTestCase):
    def test_settings_exist_from_user_creation(self):
        resp = self.api.get('/api/users/me/settings/')
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()['company_name'], "Owner's Company")

    def test_partial_update(self):
        resp = self.api.put('/api/users/me/settings/', {'default_currency': 'eur', 'default_tax_rate': '7.5'}, format='json')
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body['default_currency'], 'EUR')
        self.assertEqual(Decimal(str(body['default_tax_rate'])), Decimal('7.5'))
        self.assertEqual(body['company_name'], "Owner's Company")

    def test_invalid_logo_url_rejected(self):
        resp = self.api.put('/api/users/me/settings/', {'company_logo_url': 'not a url'}, format='json')
        self.assertEqual(resp.status_code, 400)


class ClientApiTests(ApiTestCase):
    def test_crud_and_pagination(self):
        created = self.create_client()
        self.create_client(email='hi@globex.example', name='Globex')
        resp = self.api.get('/api/clients/', {'limit': 1, 'page': 2})
        body = resp.json()
        self.assertEqual(body['pagination'], {'current_page': 2, 'total_pages': 2, 'total_items': 2, 'limit': 1})
        self.assertEqual(len(body['data']), 1)

        resp = self.api.put(
            f"/api/clients/{created['id']}/", {'name': 'Acme Inc', 'email': 'billing@acme.example'}, format='json'
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()['name'], 'Acme Inc')

        self.assertEqual(self.api.delete(f"/api/clients/{created['id']}/").status_code, 204)
        self.assertEqual(self.api.get(f"/api/clients/{created['id']}/").status_code, 404)

    def test_duplicate_email_conflicts(self):
        self.create_client()
        resp = self.api.post('/api/clients/', {'name': 'Again', 'email': 'billing@acme.example'}, format='json')
        self.assertEqual(resp.status_code, 409)

    def test_other_users_client_hidden(self):
        client = self.create_client()
        intruder = User.objects.create_user(username='x@example.com', email='x@example.com', password=self.password, name='X')
        api = APIClient()
        api.force_authenticate(intruder)
        self.assertEqual(api.get(f"/api/clients/{client['id']}/").status_code, 404)
        self.assertEqual(api.get('/api/clients/').json()['pagination']['total_items'], 0)


class InvoiceApiTests(ApiTestCase):
    def test_payment_flow(self):
        client = self.create_client()
        resp = self.create_invoice(client['id'])
        self.assertEqual(resp.status_code, 201, resp.content)
        invoice = resp.json()
        self.assertEqual(Decimal(str(invoice['total_amount'])), Decimal('270.00'))
        self.assertEqual(invoice['invoice_number'], f"INV-{self.today.year}-00001")

        self.assertEqual(self.pay(invoice['id'], '100.00').status_code, 201)
        detail = self.api.get(f"/api/invoices/{invoice['id']}/").json()
        self.assertEqual(detail['status'], 'partially_paid')
        self.assertEqual(Decimal(str(detail['balance_due'])), Decimal('170.00'))
        self.assertEqual(detail['client']['name'], 'Acme')

        self.assertEqual(self.pay(invoice['id'], '170.00').status_code, 201)
        detail = self.api.get(f"/api/invoices/{invoice['id']}/").json()
        self.assertEqual(detail['status'], 'paid')
        self.assertEqual(Decimal(str(detail['balance_due'])), Decimal('0'))

        payments = self.api.get(f"/api/invoices/{invoice['id']}/payments/").json()['data']
        self.assertEqual(len(payments), 2)

    def test_zero_payment_rejected(self):
        invoice = self.create_invoice(self.create_client()['id']).json()
        resp = self.pay(invoice['id'], '0')
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()['field'], 'amount')
        self.assertFalse(Payment.objects.exists())

    def test_invalid_item_reports_field(self):
        client = self.create_client()
        resp = self.create_invoice(client['id'], items=[{'description': 'Bad', 'quantity': '0', 'unit_price': '10'}])
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()['field'], 'items[0].quantity')

    def test_missing_items_rejected(self):
        resp = self.create_invoice(self.create_client()['id'], items=[])
        self.assertEqual(resp.status_code, 400)

    def test_update_replaces_items(self):
        client = self.create_client()
        invoice = self.create_invoice(client['id']).json()
        resp = self.api.put(f"/api/invoices/{invoice['id']}/", {
            'client_id': client['id'],
            'invoice_date': self.today.isoformat(),
            'status': 'draft',
            'global_tax_rate': '10',
            'items': [{'description': 'Flat', 'quantity': '1', 'unit_price': '1000'}],
        }, format='json')
        self.assertEqual(resp.status_code, 200, resp.content)
        body = resp.json()
        self.assertEqual(Decimal(str(body['total_amount'])), Decimal('1100.00'))
        self.assertEqual(body['invoice_number'], invoice['invoice_number'])
        self.assertEqual(len(body['items']), 1)
        self.assertEqual(Invoice.objects.get(pk=invoice['id']).lines.count(), 1)

    def test_delete_cascades_payments_and_numbers_not_reused(self):
        client = self.create_client()
        invoice = self.create_invoice(client['id']).json()
        payment = self.pay(invoice['id'], '50').json()
        self.assertEqual(self.api.get(f"/api/payments/{payment['id']}/").status_code, 200)

        self.assertEqual(self.api.delete(f"/api/invoices/{invoice['id']}/").status_code, 204)
        self.assertEqual(self.api.get(f"/api/payments/{payment['id']}/").status_code, 404)
        self.assertEqual(self.api.get(f"/api/invoices/{invoice['id']}/").status_code, 404)

        again = self.create_invoice(client['id']).json()
        self.assertEqual(again['invoice_number'], f"INV-{self.today.year}-00002")

    def test_deleting_client_keeps_invoice(self):
        client = self.create_client()
        invoice = self.create_invoice(client['id']).json()
        self.api.delete(f"/api/clients/{client['id']}/")
        detail = self.api.get(f"/api/invoices/{invoice['id']}/").json()
        self.assertEqual(detail['client_name'], 'Acme')
        self.assertIsNone(detail['client'])

    def test_list_search_and_status(self):
        client = self.create_client()
        first = self.create_invoice(client['id']).json()
        self.create_invoice(client['id'], status='draft')
        body = self.api.get('/api/invoices/', {'status': 'pending'}).json()
        self.assertEqual([row['id'] for row in body['data']], [first['id']])
        body = self.api.get('/api/invoices/', {'search': 'acme'}).json()
        self.assertEqual(body['pagination']['total_items'], 2)

    def test_pdf_and_email_stubs(self):
        invoice = self.create_invoice(self.create_client()['id']).json()
        resp = self.api.get(f"/api/invoices/{invoice['id']}/pdf/")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp['Content-Type'], 'application/pdf')
        self.assertIn(invoice['invoice_number'].encode(), resp.content)
        resp = self.api.post(f"/api/invoices/{invoice['id']}/send-email/")
        self.assertEqual(resp.status_code, 200)
        self.assertIn(invoice['invoice_number'], resp.json()['message'])


class ReportApiTests(ApiTestCase):
    def test_summary_and_revenue(self):
        client = self.create_client()
        first = self.create_invoice(client['id']).json()
        second = self.create_invoice(
            client['id'], items=[{'description': 'Extra', 'quantity': '1', 'unit_price': '130'}]
        ).json()
        self.pay(first['id'], '270.00')
        self.pay(second['id'], '30.00')

        summary = self.api.get('/api/reports/summary/').json()
        self.assertEqual(Decimal(str(summary['total_outstanding'])), Decimal('100.00'))
        self.assertEqual(Decimal(str(summary['paid_last_30_days'])), Decimal('300.00'))

        rows = self.api.get('/api/reports/revenue-by-client/').json()['data']
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]['invoice_count'], 2)
        self.assertEqual(Decimal(str(rows[0]['total_revenue'])), Decimal('300.00'))

    def test_only_admins_target_other_users(self):
        other = User.objects.create_user(username='o@example.com', email='o@example.com', password=self.password, name='O')
        resp = self.api.get('/api/reports/revenue-by-client/', {'user_id': str(other.pk)})
        self.assertEqual(resp.status_code, 403)

        admin = User.objects.create_user(
            username='a@example.com', email='a@example.com', password=self.password, name='A', roles=['user', 'admin']
        )
        api = APIClient()
        api.force_authenticate(admin)
        resp = api.get('/api/reports/revenue-by-client/', {'user_id': str(self.user.pk)})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()['data'], [])

    def test_user_id_alias_accepted(self):
        other = User.objects.create_user(username='o@example.com', email='o@example.com', password=self.password, name='O')
        resp = self.api.get('/api/reports/revenue-by-client/', {'userId': str(other.pk)})
        self.assertEqual(resp.status_code, 403)

        admin = User.objects.create_superuser(
            username='root@example.com', email='root@example.com', password=self.password, name='Root'
        )
        api = APIClient()
        api.force_authenticate(admin)
        client = self.create_client()
        invoice = self.create_invoice(client['id']).json()
        self.pay(invoice['id'], '270.00')
        resp = api.get('/api/reports/revenue-by-client/', {'userId': str(self.user.pk)})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(Decimal(str(resp.json()['data'][0]['total_revenue'])), Decimal('270.00'))

    def test_unexpected_error_is_hidden(self):
        with mock.patch('billing.services.summary_report', side_effect=RuntimeError('secret detail')):
            resp = self.api.get('/api/reports/summary/')
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.json(), {'detail': 'An internal server error occurred.'})
