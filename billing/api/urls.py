from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView
from rest_framework.routers import DefaultRouter

from billing.api import views

router = DefaultRouter(trailing_slash='/?')
router.register('clients', views.ClientViewSet, basename='client')
router.register('invoices', views.InvoiceViewSet, basename='invoice')
router.register('payments', views.PaymentViewSet, basename='payment')
router.register('reports', views.ReportViewSet, basename='report')

urlpatterns = [
    path('auth/register/', views.RegisterView.as_view(), name='register'),
    path('auth/login/', views.LoginView.as_view(), name='login'),
    path('auth/refresh/', views.RefreshView.as_view(), name='token_refresh'),
    path('auth/status/', views.AuthStatusView.as_view(), name='auth_status'),
    path('auth/logout/', views.LogoutView.as_view(), name='logout'),
    path('users/me/settings/', views.SettingsView.as_view(), name='my_settings'),
    path('schema/', SpectacularAPIView.as_view(), name='schema'),
    path('docs/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),
    path('', include(router.urls)),
]
