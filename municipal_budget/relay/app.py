"""
Mail Relay

Small HTTP service that owns the mail provider credentials and sends
verification codes on behalf of the portal.

    POST /api/send-mfa-code   {email, code, expiryMinutes}
    GET  /api/health
"""

from typing import Optional

import structlog
from flask import Flask, jsonify, request
from flask_cors import CORS

from municipal_budget.config import RelayServerSettings, get_settings
from municipal_budget.errors import DeliveryError
from municipal_budget.services.mail import MailerNotConfiguredError, ResendMailer


logger = structlog.get_logger(__name__)


def create_app(
    mailer: Optional[ResendMailer] = None,
    settings: Optional[RelayServerSettings] = None,
) -> Flask:
    settings = settings or get_settings().relay_server
    mailer = mailer or ResendMailer()
    default_expiry = get_settings().otp.expiry_minutes

    app = Flask(__name__)

    # CORS
    CORS(
        app,
        resources={r"/api/*": {"origins": [settings.frontend_url]}},
        supports_credentials=True,
    )

    @app.route('/api/send-mfa-code', methods=['POST'])
    def send_mfa_code():
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            payload = {}
        email = str(payload.get("email") or "").strip()
        code = str(payload.get("code") or "").strip()

        if not email or not code:
            return jsonify({
                "success": False,
                "message": "Email and code are required",
            }), 400

        try:
            expiry_minutes = int(payload.get("expiryMinutes") or default_expiry)
        except (TypeError, ValueError):
            return jsonify({
                "success": False,
                "message": "expiryMinutes must be a whole number",
            }), 400

        if not mailer.is_configured:
            logger.warning("mail_provider_not_configured")
            return jsonify({
                "success": False,
                "message": "Email service not configured. Check RESEND_API_KEY in .env",
            }), 503

        try:
            email_id = mailer.send_verification_code(email, code, expiry_minutes)
        except MailerNotConfiguredError as e:
            return jsonify({"success": False, "message": e.message}), 503
        except DeliveryError as e:
            logger.error("verification_email_failed", to=email, error=e.message)
            return jsonify({
                "success": False,
                "message": "Failed to send the email",
                "error": e.message,
            }), 500

        return jsonify({
            "success": True,
            "message": "Verification code sent",
            "emailId": email_id,
        })

    @app.route('/api/health')
    def health():
        return jsonify({
            "status": "ok",
            "service": settings.service_name,
            "providerConfigured": mailer.is_configured,
        })

    return app
