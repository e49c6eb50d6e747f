"""Outbound mail: notifier contract, relay client and provider client."""

from municipal_budget.services.mail.notifier import MailRelayNotifier, Notifier
from municipal_budget.services.mail.resend import MailerNotConfiguredError, ResendMailer
from municipal_budget.services.mail.templates import render_verification_email

__all__ = [
    "MailRelayNotifier",
    "MailerNotConfiguredError",
    "Notifier",
    "ResendMailer",
    "render_verification_email",
]
