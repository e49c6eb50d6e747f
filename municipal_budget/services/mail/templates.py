"""Verification email content."""

PRODUCT_NAME = "Municipal Budget Platform"

SUBJECT = f"Verification code - {PRODUCT_NAME}"

_HTML = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>Verification code</title>
</head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
  <div style="background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); padding: 30px; text-align: center; border-radius: 10px 10px 0 0;">
    <h1 style="color: white; margin: 0;">{product}</h1>
  </div>
  <div style="background: #f8f9fa; padding: 30px; border-radius: 0 0 10px 10px; border: 1px solid #e0e0e0;">
    <h2 style="color: #333; margin-top: 0;">Verification code</h2>
    <p>Hello,</p>
    <p>You requested a verification code to sign in to the platform.</p>
    <div style="background: white; border: 2px solid #667eea; border-radius: 8px; padding: 20px; text-align: center; margin: 30px 0;">
      <p style="margin: 0 0 10px 0; color: #666; font-size: 14px;">Your verification code is:</p>
      <p style="margin: 0; font-size: 32px; font-weight: bold; color: #667eea; letter-spacing: 5px;">{code}</p>
    </div>
    <p style="color: #666; font-size: 14px;">This code is valid for <strong>{expiry_minutes} minutes</strong>.</p>
    <p style="color: #999; font-size: 12px; margin-top: 30px; padding-top: 20px; border-top: 1px solid #e0e0e0;">
      If you did not request this code, you can ignore this email.
    </p>
  </div>
</body>
</html>
"""

_TEXT = """{product}

Verification code

Hello,

You requested a verification code to sign in to the platform.

Your verification code is: {code}

This code is valid for {expiry_minutes} minutes.

If you did not request this code, you can ignore this email.
"""


def render_verification_email(code: str, expiry_minutes: int) -> tuple[str, str, str]:
    """Return (subject, html, text) for a verification code email."""
    values = {"product": PRODUCT_NAME, "code": code, "expiry_minutes": expiry_minutes}
    return SUBJECT, _HTML.format(**values), _TEXT.format(**values)
