"""HTTP adapter."""

from .routes import CheckoutRequest, PortalRequest, create_billing_router

__all__ = ["CheckoutRequest", "PortalRequest", "create_billing_router"]
