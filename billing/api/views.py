from __future__ import annotations

import logging

from django.http import HttpResponse
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from billing import documents, services
from billing.api.pagination import DataPagination
from billing.api.serializers import (
    ClientRevenueSerializer,
    ClientSerializer,
    InvoiceDetailSerializer,
    InvoiceSerializer,
    InvoiceWriteSerializer,
    LoginSerializer,
    PaymentSerializer,
    RegisterSerializer,
    SettingsSerializer,
    SummarySerializer,
    UserSummarySerializer,
)
from billing.permissions import principal_for
from billing.stores import get_store

logger = logging.getLogger(__name__)

UUID_PATTERN = '[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}'


class RegisterView(APIView):
    permission_classes = (AllowAny,)
    authentication_classes = ()

    @extend_schema(request=RegisterSerializer, responses={201: None})
    def post(self, request):
        serializer = RegisterSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = serializer.save()
        logger.info("User registered: %s", user.email)
        return Response({'message': 'User registered successfully.'}, status=status.HTTP_201_CREATED)


class LoginView(TokenObtainPairView):
    permission_classes = (AllowAny,)
    serializer_class = LoginSerializer

    def post(self, request, *args, **kwargs):
        response = super().post(request, *args, **kwargs)
        if response.status_code == status.HTTP_200_OK:
            logger.info("User logged in: %s", response.data['user']['email'])
        return response


class RefreshView(TokenRefreshView):
    permission_classes = (AllowAny,)


class AuthStatusView(APIView):
    @extend_schema(responses=UserSummarySerializer)
    def get(self, request):
        return Response({
            'message': 'Token is valid.',
            'user': UserSummarySerializer(request.user).data,
        })


class LogoutView(APIView):
    """Tokens are stateless; logging out only records the event."""

    @extend_schema(request=None, responses={200: None})
    def post(self, request):
        logger.info("User logged out: %s", request.user.email)
        return Response({'message': 'Logged out successfully.'})


class SettingsView(APIView):
    @extend_schema(responses=SettingsSerializer)
    def get(self, request):
        record = services.get_settings(get_store(), principal_for(request.user))
        return Response(SettingsSerializer(record).data)

    @extend_schema(request=SettingsSerializer, responses=SettingsSerializer)
    def put(self, request):
        serializer = SettingsSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        record = services.update_settings(get_store(), principal_for(request.user), **serializer.validated_data)
        return Response(SettingsSerializer(record).data)

    patch = put


class BillingViewSet(viewsets.ViewSet):
    """Viewset over the billing services rather than a queryset."""

    permission_classes = (IsAuthenticated,)
    pagination_class = DataPagination
    lookup_value_regex = UUID_PATTERN

    @property
    def store(self):
        return get_store()

    @property
    def principal(self):
        return principal_for(self.request.user)

    def paginated(self, items, serializer_class):
        paginator = self.pagination_class()
        page = paginator.paginate_queryset(items, self.request, view=self)
        return paginator.get_paginated_response(serializer_class(page, many=True).data)


class ClientViewSet(BillingViewSet):
    serializer_class = ClientSerializer

    @extend_schema(parameters=[OpenApiParameter('search', str)], responses=ClientSerializer(many=True))
    def list(self, request):
        clients = services.list_clients(self.store, self.principal, search=request.query_params.get('search'))
        return self.paginated(clients, ClientSerializer)

    @extend_schema(request=ClientSerializer, responses={201: ClientSerializer})
    def create(self, request):
        serializer = ClientSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        client = services.create_client(self.store, self.principal, **serializer.validated_data)
        return Response(ClientSerializer(client).data, status=status.HTTP_201_CREATED)

    @extend_schema(responses=ClientSerializer)
    def retrieve(self, request, pk=None):
        return Response(ClientSerializer(services.get_client(self.store, self.principal, pk)).data)

    @extend_schema(request=ClientSerializer, responses=ClientSerializer)
    def update(self, request, pk=None):
        serializer = ClientSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        client = services.update_client(self.store, self.principal, pk, **serializer.validated_data)
        return Response(ClientSerializer(client).data)

    def destroy(self, request, pk=None):
        services.delete_client(self.store, self.principal, pk)
        return Response(status=status.HTTP_204_NO_CONTENT)


class InvoiceViewSet(BillingViewSet):
    serializer_class = InvoiceSerializer

    @extend_schema(
        parameters=[OpenApiParameter('search', str), OpenApiParameter('status', str)],
        responses=InvoiceSerializer(many=True),
    )
    def list(self, request):
        invoices = services.list_invoices(
            self.store,
            self.principal,
            search=request.query_params.get('search'),
            status=request.query_params.get('status'),
        )
        return self.paginated(invoices, InvoiceSerializer)

    @extend_schema(request=InvoiceWriteSerializer, responses={201: InvoiceSerializer})
    def create(self, request):
        serializer = InvoiceWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        invoice = services.create_invoice(self.store, self.principal, **serializer.validated_data)
        return Response(InvoiceSerializer(invoice).data, status=status.HTTP_201_CREATED)

    @extend_schema(responses=InvoiceDetailSerializer)
    def retrieve(self, request, pk=None):
        detail = services.get_invoice_detail(self.store, self.principal, pk)
        return Response(InvoiceDetailSerializer(detail).data)

    @extend_schema(request=InvoiceWriteSerializer, responses=InvoiceSerializer)
    def update(self, request, pk=None):
        serializer = InvoiceWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        invoice = services.update_invoice(self.store, self.principal, pk, **serializer.validated_data)
        return Response(InvoiceSerializer(invoice).data)

    def destroy(self, request, pk=None):
        services.delete_invoice(self.store, self.principal, pk)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @extend_schema(methods=['GET'], responses=PaymentSerializer(many=True))
    @extend_schema(methods=['POST'], request=PaymentSerializer, responses={201: PaymentSerializer})
    @action(detail=True, methods=['get', 'post'])
    def payments(self, request, pk=None):
        if request.method == 'GET':
            payments = services.list_payments(self.store, self.principal, pk)
            return Response({'data': PaymentSerializer(payments, many=True).data})
        serializer = PaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        payment = services.record_payment(self.store, self.principal, pk, **serializer.validated_data)
        return Response(PaymentSerializer(payment).data, status=status.HTTP_201_CREATED)

    @extend_schema(responses={(200, 'application/pdf'): OpenApiTypes.BINARY})
    @action(detail=True, methods=['get'])
    def pdf(self, request, pk=None):
        detail = services.get_invoice_detail(self.store, self.principal, pk)
        filename, content = documents.render_invoice_pdf(detail, self.principal)
        response = HttpResponse(content, content_type='application/pdf')
        response['Content-Disposition'] = f'attachment; filename="{filename}"'
        return response

    @extend_schema(request=None, responses={200: None})
    @action(detail=True, methods=['post'], url_path='send-email')
    def send_email(self, request, pk=None):
        detail = services.get_invoice_detail(self.store, self.principal, pk)
        return Response({'message': documents.send_invoice_email(detail, self.principal)})


class PaymentViewSet(BillingViewSet):
    serializer_class = PaymentSerializer

    @extend_schema(responses=PaymentSerializer)
    def retrieve(self, request, pk=None):
        return Response(PaymentSerializer(services.get_payment(self.store, self.principal, pk)).data)


class ReportViewSet(BillingViewSet):
    @extend_schema(responses=SummarySerializer)
    @action(detail=False, methods=['get'])
    def summary(self, request):
        report = services.summary_report(self.store, self.principal)
        return Response(SummarySerializer(report).data)

    @extend_schema(
        parameters=[OpenApiParameter('user_id', str), OpenApiParameter('userId', str, description='Alias of user_id.')],
        responses=ClientRevenueSerializer(many=True),
    )
    @action(detail=False, methods=['get'], url_path='revenue-by-client')
    def revenue_by_client(self, request):
        user_id = request.query_params.get('user_id') or request.query_params.get('userId')
        rows = services.revenue_report(self.store, self.principal, user_id=user_id)
        return Response({'data': ClientRevenueSerializer(rows, many=True).data})
