from django.urls import path

from .views import InitializePaymentView, PaymentWebhookView, VerifyPaymentView

app_name = "payments"

urlpatterns = [
    path("initialize/", InitializePaymentView.as_view(), name="initialize"),
    path("verify/", VerifyPaymentView.as_view(), name="verify"),
    path("webhook/", PaymentWebhookView.as_view(), name="webhook"),
]
