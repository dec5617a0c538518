"""OTP-gated identity service for the storefront."""

__version__ = "1.0.0"
