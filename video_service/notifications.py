"""Transactional email through the Resend HTTP API. Best effort: senders never raise."""

import html
import logging

import httpx

from .config import Settings

logger = logging.getLogger(__name__)

BRAND = "Jogadinha do Paqueta"


async def send_email(settings: Settings, to: str, subject: str, html_body: str) -> bool:
    """
    Sends one email. Returns True on success, False on any failure
    (including missing configuration).
    """
    if not settings.resend_api_key:
        logger.warning("RESEND_API_KEY is not configured. Email notifications are disabled.")
        return False
    if not to:
        logger.warning(f"No recipient for email '{subject}'. Skipping.")
        return False

    payload = {
        "from": settings.email_from,
        "to": [to],
        "subject": subject,
        "html": html_body,
    }
    headers = {"Authorization": f"Bearer {settings.resend_api_key}"}

    async with httpx.AsyncClient(timeout=10.0) as client:
        try:
            response = await client.post(settings.resend_api_url, json=payload, headers=headers)
            response.raise_for_status()
            logger.info(f"Email '{subject}' sent to {to}")
            return True
        except (httpx.RequestError, httpx.HTTPStatusError) as exc:
            logger.error(f"Error sending email '{subject}' to {to}: {exc}")
            if isinstance(exc, httpx.HTTPStatusError):
                logger.error(f"Resend response: {exc.response.text}")
            return False


def _layout(title: str, body: str) -> str:
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body style="font-family: -apple-system, sans-serif; background-color: #1a1a1a; padding: 20px;">
  <div style="max-width: 500px; margin: 0 auto; background-color: #0a0a0a; border-radius: 12px; border: 1px solid #333;">
    <div style="background: #E30613; padding: 24px; text-align: center;">
      <h1 style="color: white; margin: 0;">{BRAND.upper()}</h1>
    </div>
    <div style="padding: 32px 24px; color: #ddd;">
      <h2 style="color: white;">{title}</h2>
      {body}
    </div>
  </div>
</body>
</html>"""


def _button(link: str, label: str, color: str) -> str:
    return (
        f'<a href="{html.escape(link, quote=True)}" style="display: block; background: {color}; color: white; '
        f'text-decoration: none; padding: 16px 24px; border-radius: 8px; text-align: center; font-weight: 600;">'
        f"{label}</a>"
    )


async def send_verification_email(settings: Settings, email: str, first_name: str, token: str) -> bool:
    link = f"{settings.app_url}/auth/verify-email?token={token}"
    body = (
        f"<p>Confirm your email to start using {BRAND}.</p>"
        + _button(link, "CONFIRM EMAIL", "#E30613")
        + f"<p style='color: #666; font-size: 12px;'>This link expires in {settings.email_verification_expire_hours} hours.</p>"
    )
    return await send_email(
        settings,
        email,
        f"Confirm your email - {BRAND}",
        _layout(f"Hi, {html.escape(first_name)}!", body),
    )


async def send_payment_notification(
    settings: Settings,
    user_name: str,
    user_email: str,
    amount: str,
    approval_token: str,
) -> bool:
    """Tells the admin a payment is waiting, with a one-click approval link."""
    link = f"{settings.app_url}/admin/quick-approve/{approval_token}"
    body = (
        "<table style='width: 100%;'>"
        f"<tr><td>User:</td><td style='text-align: right;'>{html.escape(user_name)}</td></tr>"
        f"<tr><td>Email:</td><td style='text-align: right;'>{html.escape(user_email)}</td></tr>"
        f"<tr><td>Amount:</td><td style='text-align: right; color: #22c55e;'>R$ {html.escape(amount)}</td></tr>"
        "</table><br>"
        + _button(link, "APPROVE PAYMENT", "#16a34a")
    )
    return await send_email(
        settings,
        settings.admin_email,
        f"New pending payment - {user_name}",
        _layout("New pending payment", body),
    )
