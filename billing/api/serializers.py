from __future__ import annotations

from typing import Any

from django.contrib.auth import get_user_model
from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

from billing.calculations import line_item_total, round_money
from billing.exceptions import ConflictError
from billing.records import InvoiceStatus, InvoiceTemplate, RecurrenceFrequency

User = get_user_model()


class UserSummarySerializer(serializers.ModelSerializer):
    roles = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = ('id', 'name', 'email', 'roles')

    def get_roles(self, obj):
        return list(obj.effective_roles)


class RegisterSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    email = serializers.EmailField()
    password = serializers.CharField(write_only=True, min_length=6, style={'input_type': 'password'})

    def validate_name(self, value: str) -> str:
        value = value.strip()
        if not value:
            raise serializers.ValidationError('Name is required.')
        return value

    def validate_email(self, value: str) -> str:
        return value.strip().lower()

    def create(self, validated_data):
        email = validated_data['email']
        if User.objects.filter(email__iexact=email).exists():
            raise ConflictError('User with this email already exists.', field='email')
        return User.objects.create_user(
            username=email,
            email=email,
            password=validated_data['password'],
            name=validated_data['name'],
        )


class LoginSerializer(TokenObtainPairSerializer):
    """Email + password login answering with both tokens and the user."""

    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token['email'] = user.email
        token['name'] = user.name
        token['roles'] = list(user.effective_roles)
        return token

    def validate(self, attrs: dict[str, Any]) -> dict[str, Any]:
        username = attrs.get(self.username_field)
        if username:
            attrs[self.username_field] = username.strip().lower()
        tokens = super().validate(attrs)
        return {
            'message': 'Login successful.',
            'token': tokens['access'],
            'refresh': tokens['refresh'],
            'user': UserSummarySerializer(self.user).data,
        }


class SettingsSerializer(serializers.Serializer):
    company_name = serializers.CharField(max_length=255, required=False, allow_blank=True)
    company_address = serializers.CharField(required=False, allow_blank=True)
    company_logo_url = serializers.URLField(required=False, allow_blank=True)
    default_currency = serializers.CharField(min_length=3, max_length=3, required=False)
    default_tax_rate = serializers.DecimalField(max_digits=5, decimal_places=2, required=False)
    invoice_template = serializers.ChoiceField(choices=InvoiceTemplate.choices, required=False)


class ClientSerializer(serializers.Serializer):
    id = serializers.UUIDField(read_only=True)
    name = serializers.CharField(max_length=255)
    email = serializers.EmailField()
    phone = serializers.CharField(max_length=50, required=False, allow_blank=True, default='')
    address = serializers.CharField(required=False, allow_blank=True, default='')
    notes = serializers.CharField(required=False, allow_blank=True, default='')
    created_at = serializers.DateTimeField(read_only=True)
    updated_at = serializers.DateTimeField(read_only=True)


class LineItemSerializer(serializers.Serializer):
    description = serializers.CharField(max_length=255)
    quantity = serializers.DecimalField(max_digits=12, decimal_places=4)
    unit_price = serializers.DecimalField(max_digits=12, decimal_places=2)
    tax_rate = serializers.DecimalField(max_digits=5, decimal_places=2, required=False, allow_null=True, default=None)
    line_total = serializers.SerializerMethodField()

    def get_line_total(self, obj):
        return round_money(line_item_total(obj, self.context.get('global_tax_rate')))


class InvoiceSerializer(serializers.Serializer):
    id = serializers.UUIDField(read_only=True)
    invoice_number = serializers.CharField(read_only=True)
    client_id = serializers.UUIDField()
    client_name = serializers.CharField(read_only=True)
    invoice_date = serializers.DateField()
    due_date = serializers.DateField(required=False, allow_null=True)
    status = serializers.ChoiceField(choices=InvoiceStatus.choices)
    items = serializers.SerializerMethodField()
    notes = serializers.CharField(required=False, allow_blank=True)
    currency = serializers.CharField(required=False, allow_blank=True, max_length=3)
    global_tax_rate = serializers.DecimalField(max_digits=5, decimal_places=2, required=False, allow_null=True)
    is_recurring = serializers.BooleanField(required=False, default=False)
    recurrence_frequency = serializers.ChoiceField(choices=RecurrenceFrequency.choices, required=False, allow_blank=True)
    recurrence_interval = serializers.IntegerField(required=False, allow_null=True)
    recurrence_end_date = serializers.DateField(required=False, allow_null=True)
    total_amount = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)
    created_at = serializers.DateTimeField(read_only=True)
    updated_at = serializers.DateTimeField(read_only=True)

    def get_items(self, obj):
        context = {'global_tax_rate': obj.global_tax_rate}
        return LineItemSerializer(obj.items, many=True, context=context).data


class InvoiceWriteSerializer(InvoiceSerializer):
    items = LineItemSerializer(many=True, allow_empty=False)

    def to_internal_value(self, data):
        validated = super().to_internal_value(data)
        validated['items'] = [
            {key: item[key] for key in ('description', 'quantity', 'unit_price', 'tax_rate')}
            for item in validated.get('items', [])
        ]
        return validated


class InvoiceDetailSerializer(InvoiceSerializer):
    """Full invoice record with the current client and payment figures."""

    client = ClientSerializer(read_only=True, allow_null=True)
    amount_paid = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)
    balance_due = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)

    def to_representation(self, detail):
        data = InvoiceSerializer(detail.invoice, context=self.context).data
        data['client'] = ClientSerializer(detail.client).data if detail.client else None
        data['amount_paid'] = self.fields['amount_paid'].to_representation(detail.amount_paid)
        data['balance_due'] = self.fields['balance_due'].to_representation(detail.balance_due)
        return data


class PaymentSerializer(serializers.Serializer):
    id = serializers.UUIDField(read_only=True)
    invoice_id = serializers.UUIDField(read_only=True)
    amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    payment_date = serializers.DateField()
    payment_method = serializers.CharField(max_length=100)
    notes = serializers.CharField(required=False, allow_blank=True, default='')
    created_at = serializers.DateTimeField(read_only=True)


class SummarySerializer(serializers.Serializer):
    total_outstanding = serializers.DecimalField(max_digits=14, decimal_places=2)
    total_overdue = serializers.DecimalField(max_digits=14, decimal_places=2)
    paid_last_30_days = serializers.DecimalField(max_digits=14, decimal_places=2)


class ClientRevenueSerializer(serializers.Serializer):
    client_id = serializers.UUIDField()
    client_name = serializers.CharField()
    invoice_count = serializers.IntegerField()
    total_revenue = serializers.DecimalField(max_digits=14, decimal_places=2)
