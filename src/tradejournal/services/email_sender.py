from __future__ import annotations

import logging
from urllib.parse import urlencode

import httpx

from tradejournal.config import settings
from tradejournal.models import User

logger = logging.getLogger(__name__)


class EmailSender:
    async def send_email_confirmation(self, user: User, token: str) -> bool:
        link = self._link("verify-email", user, token)
        html = (
            "<!DOCTYPE html>"
            "<html><body style='font-family:sans-serif;max-width:600px;margin:0 auto;padding:16px;'>"
            "<h1 style='color:#222;font-size:22px;'>Confirm your email</h1>"
            f"<p>Welcome, {user.username}. Confirm your address to start logging trades.</p>"
            f"<p><a href=\"{link}\" style='color:#1a73e8;'>Confirm email</a></p>"
            f"<p style='color:#999;font-size:12px;'>The link expires in {settings.email_confirmation_expire_hours} hours.</p>"
            "</body></html>"
        )
        text = (
            "Confirm your email\n\n"
            f"Open the following link to confirm your address:\n{link}\n\n"
            f"The link expires in {settings.email_confirmation_expire_hours} hours."
        )
        return await self._send(user, "Confirm Your Email - Trade Journal", html, text, "confirmation")

    async def send_password_reset(self, user: User, token: str) -> bool:
        link = self._link("reset-password", user, token)
        html = (
            "<!DOCTYPE html>"
            "<html><body style='font-family:sans-serif;max-width:600px;margin:0 auto;padding:16px;'>"
            "<h1 style='color:#222;font-size:22px;'>Password Reset</h1>"
            f"<p>Use the following link to reset your password. It expires in {settings.password_reset_expire_minutes} minutes.</p>"
            f"<p><a href=\"{link}\" style='color:#1a73e8;'>Reset password</a></p>"
            "<p style='color:#999;font-size:12px;'>If you didn't request this, you can safely ignore this email.</p>"
            "</body></html>"
        )
        text = (
            "Password Reset\n\n"
            f"Use the following link to reset your password. It expires in {settings.password_reset_expire_minutes} minutes.\n\n"
            f"{link}\n\n"
            "If you didn't request this, you can safely ignore this email."
        )
        return await self._send(user, "Reset Your Password - Trade Journal", html, text, "password reset")

    def _link(self, path: str, user: User, token: str) -> str:
        query = urlencode({"token": token, "email": user.email})
        return f"{settings.frontend_url.rstrip('/')}/{path}?{query}"

    async def _send(self, user: User, subject: str, html: str, text: str, kind: str) -> bool:
        if not settings.mailgun_api_key or not settings.mailgun_domain:
            logger.warning("Mailgun not configured, skipping %s email for user %s", kind, user.id)
            return False

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    f"https://api.mailgun.net/v3/{settings.mailgun_domain}/messages",
                    auth=("api", settings.mailgun_api_key),
                    data={
                        "from": settings.mailgun_from_email,
                        "to": user.email,
                        "subject": subject,
                        "html": html,
                        "text": text,
                    },
                    timeout=30.0,
                )
                response.raise_for_status()
                logger.info("Sent %s email to %s", kind, user.email)
                return True
        except Exception:
            logger.exception("Failed to send %s email to %s", kind, user.email)
            return False
