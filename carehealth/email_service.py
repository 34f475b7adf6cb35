"""
Email Service using SMTP (if configured) or Resend (fallback)
Notification emails are MJML templates compiled to HTML, with the plain-text body alongside
"""

import logging
import smtplib
import ssl
import uuid
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional, Union

import resend
from mjml import mjml_to_html

from .config import (
    EMAIL_FROM_ADDRESS,
    RESEND_API_KEY,
    SMTP_HOST,
    SMTP_PASSWORD,
    SMTP_PORT,
    SMTP_USER,
)
from .errors import TransportError

logger = logging.getLogger(__name__)

resend.api_key = RESEND_API_KEY


def compile_mjml_to_html(mjml_content: str) -> str:
    """Compile MJML template to production-ready HTML"""
    try:
        result = mjml_to_html(mjml_content)
        # mjml_to_html returns a dict-like result with 'html' and 'errors'
        if isinstance(result, dict):
            if result.get("errors"):
                logger.warning(f"MJML compilation warnings: {result['errors']}")
            return result.get("html", "")
        return str(result)
    except Exception as e:
        logger.error(f"MJML compilation error: {e}")
        raise TransportError(f"Failed to compile MJML template: {str(e)}") from e


def send_via_smtp(
    to: list[str],
    subject: str,
    text_content: str,
    html_content: str,
    from_address: str,
) -> dict:
    """Send email via the configured SMTP server"""
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = from_address
    msg["To"] = ", ".join(to)
    msg.attach(MIMEText(text_content, "plain"))
    msg.attach(MIMEText(html_content, "html"))

    try:
        if SMTP_PORT == 465:
            context = ssl.create_default_context()
            server = smtplib.SMTP_SSL(SMTP_HOST, SMTP_PORT, context=context, timeout=30)
        else:
            server = smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=30)
            server.starttls(context=ssl.create_default_context())

        try:
            if SMTP_USER:
                server.login(SMTP_USER, SMTP_PASSWORD or "")
            server.sendmail(from_address.split("<")[-1].rstrip(">"), to, msg.as_string())
        finally:
            server.quit()
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"❌ SMTP send failed via {SMTP_HOST}: {e}")
        raise TransportError(f"SMTP failed: {str(e)}") from e

    logger.info(f"✅ SMTP email sent successfully via {SMTP_HOST}")
    return {"id": f"smtp-{uuid.uuid4().hex}", "success": True}


def send_email(
    to: Union[str, list[str]],
    subject: str,
    text_content: str,
    mjml_content: str,
    from_address: Optional[str] = None,
) -> dict:
    """
    Send an email using SMTP (if configured) or Resend

    Args:
        to: Recipient email(s)
        subject: Email subject line
        text_content: Plain-text body
        mjml_content: MJML template content (will be compiled to HTML)
        from_address: Optional custom from address

    Returns:
        Send response dict

    Raises:
        TransportError: if no transport is configured or delivery fails
    """
    html_content = compile_mjml_to_html(mjml_content)

    recipients = [to] if isinstance(to, str) else to
    sender = from_address or EMAIL_FROM_ADDRESS

    if SMTP_HOST:
        logger.info(f"📧 Sending email via SMTP: {SMTP_HOST}")
        return send_via_smtp(recipients, subject, text_content, html_content, sender)

    if not RESEND_API_KEY:
        logger.error("❌ No email service configured - RESEND_API_KEY missing and no SMTP_HOST")
        raise TransportError("Email service not configured")

    try:
        logger.info(f"📧 Sending email via Resend to: {recipients}")
        response = resend.Emails.send(
            {
                "from": sender,
                "to": recipients,
                "subject": subject,
                "html": html_content,
                "text": text_content,
            }
        )
    except Exception as e:
        # Resend surfaces HTTP and API failures as a mix of exception types
        logger.error(f"❌ Email send error to {recipients}: {e}")
        raise TransportError(f"Failed to send email: {str(e)}") from e

    logger.info(f"✅ Email sent successfully via Resend: {response}")
    return response
