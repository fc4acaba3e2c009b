from django.urls import path

from .views import OrdersPingView, RetrieveOrderView

app_name = "orders"

urlpatterns = [
    path("ping/", OrdersPingView.as_view(), name="ping"),
    path("<uuid:oid>/", RetrieveOrderView.as_view(), name="orders-detail"),
]
