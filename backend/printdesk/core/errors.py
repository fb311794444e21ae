from __future__ import annotations


class AuthenticationError(Exception):
    """Webhook signature missing or invalid. Nothing may be processed."""


class TenantNotFoundError(LookupError):
    def __init__(self, shop_domain: str) -> None:
        super().__init__(f"Shop not found: {shop_domain}")
        self.shop_domain = shop_domain


class UploadNotFoundError(ValueError):
    pass


class InvalidStateError(ValueError):
    pass


class DeliveryFailure(RuntimeError):
    pass


class WebhookPayloadError(ValueError):
    """Verified webhook body that cannot be interpreted."""


class FlowTriggerNotFoundError(LookupError):
    pass


class PreflightJobNotFoundError(LookupError):
    pass
