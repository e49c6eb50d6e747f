"""Tests for the mail relay HTTP service and the mail clients."""

import pytest
import requests

from municipal_budget.auth import OtpManager
from municipal_budget.config import MailRelaySettings, RelayServerSettings, ResendSettings
from municipal_budget.errors import DeliveryError
from municipal_budget.relay import create_app
from municipal_budget.services.mail import (
    MailerNotConfiguredError,
    MailRelayNotifier,
    ResendMailer,
)
from municipal_budget.services.mail.templates import render_verification_email
from municipal_budget.services.storage import OtpRepository


class FakeResponse:
    def __init__(self, status_code=200, body=None, reason="OK"):
        self.status_code = status_code
        self._body = body
        self.reason = reason

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body


class RawJsonResponse(FakeResponse):
    """A reply whose JSON decodes to something other than an object."""

    def __init__(self, value):
        super().__init__(200)
        self.value = value

    def json(self):
        return self.value


class FakeSession:
    """Stands in for requests.Session; replays queued responses or errors."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeMailer:
    def __init__(self, configured=True, error=None):
        self.is_configured = configured
        self.error = error
        self.sent = []

    def send_verification_code(self, to_address, code, expiry_minutes):
        if self.error:
            raise self.error
        self.sent.append((to_address, code, expiry_minutes))
        return "re_123"


def relay_client(mailer):
    app = create_app(mailer=mailer, settings=RelayServerSettings())
    app.config["TESTING"] = True
    return app.test_client()


class TestRelayEndpoints:
    """Tests for the relay HTTP API."""

    def test_send_code(self):
        """A complete request is forwarded to the mailer."""
        mailer = FakeMailer()
        response = relay_client(mailer).post("/api/send-mfa-code", json={
            "email": "agent@municipalite.tn",
            "code": "123456",
            "expiryMinutes": 10,
        })

        assert response.status_code == 200
        assert response.get_json() == {
            "success": True,
            "message": "Verification code sent",
            "emailId": "re_123",
        }
        assert mailer.sent == [("agent@municipalite.tn", "123456", 10)]

    def test_missing_fields(self):
        """Email and code are mandatory."""
        response = relay_client(FakeMailer()).post("/api/send-mfa-code", json={"email": "a@b.tn"})
        assert response.status_code == 400
        assert response.get_json()["message"] == "Email and code are required"

        for body in (["x"], "plain string", None):
            response = relay_client(FakeMailer()).post("/api/send-mfa-code", json=body)
            assert response.status_code == 400
            assert response.get_json()["message"] == "Email and code are required"

    def test_bad_expiry(self):
        """A non-numeric expiry is rejected."""
        response = relay_client(FakeMailer()).post("/api/send-mfa-code", json={
            "email": "a@b.tn", "code": "1", "expiryMinutes": "soon",
        })
        assert response.status_code == 400

    def test_provider_not_configured(self):
        """Without an API key the relay answers 503."""
        response = relay_client(FakeMailer(configured=False)).post(
            "/api/send-mfa-code", json={"email": "a@b.tn", "code": "123456"},
        )
        assert response.status_code == 503
        assert "RESEND_API_KEY" in response.get_json()["message"]

    def test_provider_failure(self):
        """A provider error becomes a 500 with the detail."""
        mailer = FakeMailer(error=DeliveryError("domain not verified"))
        response = relay_client(mailer).post(
            "/api/send-mfa-code", json={"email": "a@b.tn", "code": "123456"},
        )
        body = response.get_json()
        assert response.status_code == 500
        assert body["success"] is False
        assert body["error"] == "domain not verified"

    def test_health(self):
        """Health reports the service and provider state."""
        response = relay_client(FakeMailer(configured=False)).get("/api/health")
        assert response.get_json() == {
            "status": "ok",
            "service": "MFA Email Service",
            "providerConfigured": False,
        }


class TestResendMailer:
    """Tests for the Resend client."""

    def test_placeholder_key_is_not_configured(self):
        """The placeholder key does not count."""
        assert not ResendMailer(ResendSettings(api_key="your_resend_api_key")).is_configured
        assert not ResendMailer(ResendSettings(api_key=None)).is_configured

    def test_unconfigured_send_raises(self):
        """Sending without a key fails before any HTTP call."""
        session = FakeSession()
        mailer = ResendMailer(ResendSettings(api_key=None), session=session)
        with pytest.raises(MailerNotConfiguredError):
            mailer.send_verification_code("a@b.tn", "123456", 10)
        assert session.calls == []

    def test_send_posts_with_bearer_key(self):
        """The message goes to Resend with the API key and both bodies."""
        session = FakeSession(FakeResponse(200, {"id": "re_42"}))
        mailer = ResendMailer(ResendSettings(api_key="re_live_key"), session=session)

        assert mailer.send_verification_code("a@b.tn", "654321", 10) == "re_42"

        url, kwargs = session.calls[0]
        assert url == "https://api.resend.com/emails"
        assert kwargs["headers"]["Authorization"] == "Bearer re_live_key"
        assert kwargs["json"]["to"] == ["a@b.tn"]
        assert "654321" in kwargs["json"]["html"]
        assert "654321" in kwargs["json"]["text"]

    def test_rejected_message(self):
        """4xx answers raise DeliveryError with the provider message."""
        session = FakeSession(FakeResponse(422, {"message": "Invalid `to` field"}))
        mailer = ResendMailer(ResendSettings(api_key="re_live_key"), session=session)
        with pytest.raises(DeliveryError, match="Invalid `to` field"):
            mailer.send_verification_code("bad", "654321", 10)


class TestMailRelayNotifier:
    """Tests for the portal-side relay client."""

    async def test_send_returns_email_id(self):
        """A successful relay answer yields the email id."""
        session = FakeSession(FakeResponse(200, {"success": True, "emailId": "re_9"}))
        notifier = MailRelayNotifier(MailRelaySettings(api_url="http://relay:3001/"), session)

        assert await notifier.send("a@b.tn", "111222", 10) == "re_9"
        url, kwargs = session.calls[0]
        assert url == "http://relay:3001/api/send-mfa-code"
        assert kwargs["json"] == {"email": "a@b.tn", "code": "111222", "expiryMinutes": 10}

    async def test_relay_error_raises(self):
        """A non-success answer is a delivery error."""
        session = FakeSession(FakeResponse(503, {"success": False, "message": "not configured"}))
        notifier = MailRelayNotifier(MailRelaySettings(), session)
        with pytest.raises(DeliveryError, match="503"):
            await notifier.send("a@b.tn", "111222", 10)

    async def test_non_object_reply_raises(self):
        """A 200 whose JSON is not an object is a delivery error."""
        for value in (None, ["queued"], "ok"):
            session = FakeSession(RawJsonResponse(value))
            notifier = MailRelayNotifier(MailRelaySettings(), session)
            with pytest.raises(DeliveryError, match="200"):
                await notifier.send("a@b.tn", "111222", 10)

    async def test_login_code_survives_malformed_reply(self, store, otp_settings, clock):
        """A malformed relay reply leaves the code issued but undelivered."""
        session = FakeSession(RawJsonResponse(None))
        manager = OtpManager(
            OtpRepository(store),
            notifier=MailRelayNotifier(MailRelaySettings(), session),
            settings=otp_settings,
            clock=clock,
        )

        challenge = await manager.issue("a@b.tn")

        assert not challenge.delivered
        assert await manager.has_valid_code("a@b.tn")

    async def test_connection_error_is_retried_once(self):
        """A dropped connection is retried, then reported."""
        session = FakeSession(
            requests.ConnectionError("refused"),
            requests.ConnectionError("refused"),
        )
        notifier = MailRelayNotifier(MailRelaySettings(), session)
        with pytest.raises(DeliveryError, match="unreachable"):
            await notifier.send("a@b.tn", "111222", 10)
        assert len(session.calls) == 2


class TestTemplates:
    """Tests for the verification email content."""

    def test_code_and_expiry_in_both_bodies(self):
        """HTML and text bodies carry the code and validity."""
        subject, html, text = render_verification_email("987654", 10)
        assert subject
        for body in (html, text):
            assert "987654" in body
            assert "10" in body


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
