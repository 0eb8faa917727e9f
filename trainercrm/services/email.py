"""Email sending service — SMTP and SES backends."""

import logging
from email.mime.text import MIMEText

import aiosmtplib

from trainercrm.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


def build_message(
    to_email: str,
    subject: str,
    text_body: str,
    from_name: str = "",
    from_email: str = "",
    headers: dict | None = None,
) -> MIMEText:
    """Plain-text MIME message; extra headers travel with it on both backends."""
    from_name = from_name or settings.smtp_from_name
    from_email = from_email or settings.smtp_from_email

    msg = MIMEText(text_body, "plain", "utf-8")
    msg["Subject"] = subject
    msg["From"] = f"{from_name} <{from_email}>"
    msg["To"] = to_email
    for key, value in (headers or {}).items():
        msg[key] = value
    return msg


async def send_email_smtp(
    to_email: str,
    subject: str,
    text_body: str,
    from_name: str = "",
    from_email: str = "",
    headers: dict | None = None,
) -> bool:
    """Send a single plain-text email via SMTP."""
    msg = build_message(to_email, subject, text_body, from_name, from_email, headers)

    try:
        await aiosmtplib.send(
            msg,
            hostname=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_user,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
        )
        logger.info(f"Email sent to {to_email}")
        return True
    except Exception as e:
        logger.error(f"Failed to send email to {to_email}: {e}")
        return False


async def send_email_ses(
    to_email: str,
    subject: str,
    text_body: str,
    from_name: str = "",
    from_email: str = "",
    headers: dict | None = None,
) -> bool:
    """Send a single plain-text email via Amazon SES as a raw MIME message."""
    import boto3

    msg = build_message(to_email, subject, text_body, from_name, from_email, headers)

    client = boto3.client(
        "ses",
        region_name=settings.aws_region,
        aws_access_key_id=settings.aws_access_key_id,
        aws_secret_access_key=settings.aws_secret_access_key,
    )

    try:
        client.send_raw_email(
            Source=msg["From"],
            Destinations=[to_email],
            RawMessage={"Data": msg.as_string()},
        )
        logger.info(f"SES email sent to {to_email}")
        return True
    except Exception as e:
        logger.error(f"SES failed for {to_email}: {e}")
        return False


async def send_email(
    to_email: str,
    subject: str,
    text_body: str,
    from_name: str = "",
    from_email: str = "",
    headers: dict | None = None,
) -> bool:
    """Route to configured backend."""
    if settings.mail_backend == "ses":
        return await send_email_ses(to_email, subject, text_body, from_name, from_email, headers)
    return await send_email_smtp(to_email, subject, text_body, from_name, from_email, headers)
