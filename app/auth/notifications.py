"""Outbound verification and password-reset messages."""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Protocol
from urllib.parse import quote

from app.auth.models import Identity
from app.core.config import NotificationConfig
from app.core.logging import redact_email

LOGGER = logging.getLogger(__name__)


class Notifier(Protocol):
    """Notification collaborator; callers run it detached and ignore failures."""

    def send_verification(self, identity: Identity, token: str) -> None: ...

    def send_password_reset(self, identity: Identity, token: str) -> None: ...


class EmailNotifier:
    """SMTP email sender that logs instead of sending when unconfigured."""

    def __init__(self, config: NotificationConfig) -> None:
        self._config = config

    @property
    def is_configured(self) -> bool:
        return bool(self._config.smtp_host and self._config.from_email)

    def verification_link(self, token: str) -> str:
        return f"{self._config.public_base_url}/auth/verify/{quote(token, safe='')}"

    def reset_link(self, token: str) -> str:
        return f"{self._config.public_base_url}/auth/reset-password?token={quote(token, safe='')}"

    def send_verification(self, identity: Identity, token: str) -> None:
        link = self.verification_link(token)
        text = (
            f"Bonjour {identity.first_name},\n\n"
            "Confirmez votre adresse email pour activer votre compte :\n"
            f"{link}\n\nCe lien expire dans 24 heures."
        )
        html = (
            f"<p>Bonjour {identity.first_name},</p>"
            "<p>Confirmez votre adresse email pour activer votre compte :</p>"
            f'<p><a href="{link}">Activer mon compte</a></p>'
            "<p>Ce lien expire dans 24 heures.</p>"
        )
        self._send(identity.email, "Activez votre compte", html, text)

    def send_password_reset(self, identity: Identity, token: str) -> None:
        link = self.reset_link(token)
        text = (
            f"Bonjour {identity.first_name},\n\n"
            "Pour choisir un nouveau mot de passe, ouvrez ce lien :\n"
            f"{link}\n\nCe lien expire dans 1 heure. "
            "Ignorez ce message si vous n'avez rien demandé."
        )
        html = (
            f"<p>Bonjour {identity.first_name},</p>"
            "<p>Pour choisir un nouveau mot de passe, ouvrez ce lien :</p>"
            f'<p><a href="{link}">Réinitialiser mon mot de passe</a></p>'
            "<p>Ce lien expire dans 1 heure. "
            "Ignorez ce message si vous n'avez rien demandé.</p>"
        )
        self._send(identity.email, "Réinitialisation du mot de passe", html, text)

    def _send(self, to_email: str, subject: str, html_body: str, text_body: str) -> None:
        """Send one message; SMTP errors propagate to the detached runner."""
        if not self.is_configured:
            LOGGER.info(
                "email_dev_mode",
                extra={"event": f"{subject} -> {redact_email(to_email)}"},
            )
            return

        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = f"{self._config.from_name} <{self._config.from_email}>"
        message["To"] = to_email
        message.attach(MIMEText(text_body, "plain", "utf-8"))
        message.attach(MIMEText(html_body, "html", "utf-8"))

        with smtplib.SMTP(self._config.smtp_host, self._config.smtp_port, timeout=10) as server:
            if self._config.smtp_use_tls:
                server.starttls(context=ssl.create_default_context())
            if self._config.smtp_user and self._config.smtp_password:
                server.login(self._config.smtp_user, self._config.smtp_password)
            server.sendmail(self._config.from_email, [to_email], message.as_string())

        LOGGER.info("email_sent", extra={"event": f"{subject} -> {redact_email(to_email)}"})
