"""
Notifications app for escrow email delivery.

This app provides:
- NotificationDispatcher: outcome -> EmailLog rows + queued send tasks
- EmailLog model: one row per email with delivery tracking
- send_escrow_email Celery task
- Delivery-status webhook (delivered, opened, clicked, bounced)

Usage:
    from notifications.dispatcher import NotificationDispatcher, SettlementOutcome

    NotificationDispatcher.notify(outcome)
"""
