from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as DjangoUserAdmin

from .models import Client, Invoice, InvoiceLine, Payment, Sequence, User, UserSettings


@admin.register(User)
class UserAdmin(DjangoUserAdmin):
    fieldsets = DjangoUserAdmin.fieldsets + (('Billing', {'fields': ('name', 'roles')}),)
    add_fieldsets = (
        (None, {'classes': ('wide',), 'fields': ('email', 'username', 'name', 'password1', 'password2')}),
    )
    list_display = ('email', 'name', 'roles', 'is_staff')
    search_fields = ('email', 'name')
    ordering = ('email',)


@admin.register(UserSettings)
class UserSettingsAdmin(admin.ModelAdmin):
    list_display = ('user', 'company_name', 'default_currency', 'default_tax_rate', 'invoice_template')


@admin.register(Client)
class ClientAdmin(admin.ModelAdmin):
    list_display = ('name', 'email', 'owner', 'phone')
    search_fields = ('name', 'email')


class InvoiceLineInline(admin.TabularInline):
    model = InvoiceLine
    extra = 0


class PaymentInline(admin.TabularInline):
    model = Payment
    extra = 0
    fields = ('payment_date', 'amount', 'payment_method', 'notes')
    readonly_fields = fields
    can_delete = False


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ('invoice_number', 'client_name', 'owner', 'invoice_date', 'due_date', 'total_amount', 'status')
    list_filter = ('status', 'is_recurring')
    search_fields = ('invoice_number', 'client_name')
    readonly_fields = ('invoice_number', 'total_amount')
    inlines = [InvoiceLineInline, PaymentInline]


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ('invoice', 'amount', 'payment_date', 'payment_method', 'owner')
    search_fields = ('invoice__invoice_number', 'payment_method')

    def has_change_permission(self, request, obj=None):
        return False


admin.site.register(Sequence)
