from django.apps import AppConfig, apps


class BillingConfig(AppConfig):
    """
    Configuration for the billing app.

    ready() builds the process-wide Stripe gateway exactly once.  Code
    that needs Stripe fetches it through ``get_gateway()`` and hands it
    to the billing services as an argument.
    """
    default_auto_field = "django.db.models.BigAutoField"
    name = "billing"

    gateway = None

    def ready(self) -> None:
        from .stripe_gateway import StripeGateway

        if self.gateway is None:
            self.gateway = StripeGateway.from_settings()


def get_gateway():
    return apps.get_app_config("billing").gateway
