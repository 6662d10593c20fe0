"""Email adapters for administrator notifications."""

from .resend_adapter import ResendEmailService

__all__ = ["ResendEmailService"]
