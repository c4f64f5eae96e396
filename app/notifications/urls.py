"""
URL configuration for notifications API.

Routes:
    Webhooks:
        /webhooks/email/      - Email delivery callback (POST)
"""

from django.urls import path

from notifications.webhooks import EmailWebhookView

app_name = "notifications"
urlpatterns = [
    path("webhooks/email/", EmailWebhookView.as_view(), name="email-webhook"),
]
