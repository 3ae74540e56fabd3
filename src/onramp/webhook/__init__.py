"""Gateway webhook handling."""

from onramp.webhook.reconciler import WebhookReconciler

__all__ = ["WebhookReconciler"]
