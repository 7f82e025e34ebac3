"""
Service d'envoi d'emails SMTP.
Utilisé par les notifications qui exigent un email (capacité atteinte, annulation, absences).
"""

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from studio.config import settings

logger = logging.getLogger(__name__)


def send_notification_email(to_email: str, recipient_name: str, title: str, message: str) -> None:
    """
    Envoie un email HTML reprenant le titre et le message d'une notification.
    Lève une exception en cas d'échec SMTP (interceptée par notification_service).
    """
    msg = MIMEMultipart("alternative")
    msg["From"] = settings.SMTP_FROM
    msg["To"] = to_email
    msg["Subject"] = title

    text_content = f"Bonjour {recipient_name},\n\n{message}\n"
    html_content = f"""
    <html>
      <body style="font-family: Arial, sans-serif; color: #333; max-width: 600px; margin: auto;">
        <h2 style="color: #1a73e8;">{title}</h2>
        <p>Bonjour {recipient_name},</p>
        <p>{message}</p>
        <hr style="border: none; border-top: 1px solid #eee;" />
        <p style="font-size: 12px; color: #888;">
          Ce message est généré automatiquement. Ne pas répondre à cet email.
        </p>
      </body>
    </html>
    """
    msg.attach(MIMEText(text_content, "plain", "utf-8"))
    msg.attach(MIMEText(html_content, "html", "utf-8"))

    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT) as server:
        if settings.SMTP_USE_TLS:
            server.starttls()
        if settings.SMTP_USERNAME:
            server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        server.send_message(msg)

    logger.info("Email de notification envoyé à %s : %s", to_email, title)
