import logging
from email.message import EmailMessage

import aiosmtplib

import config

logger = logging.getLogger(__name__)


def build_reset_message(to_address: str, name: str, link: str) -> EmailMessage:
    message = EmailMessage()
    message["From"] = config.MAIL_FROM
    message["To"] = to_address
    message["Subject"] = "Reset your password"
    message.set_content(
        f"Hello {name},\n\n"
        f"Use the link below to choose a new password. It expires in "
        f"{config.RESET_TOKEN_TTL_MINUTES} minutes.\n\n{link}\n\n"
        "If you did not ask for a reset you can ignore this email.\n"
    )
    return message


async def send_message(message: EmailMessage) -> bool:
    """Deliver ``message`` over SMTP. Returns False when mail is not configured
    or delivery fails; this runs as a background task so nothing is raised."""
    if not config.SMTP_HOST:
        logger.warning("SMTP_HOST is not set; skipped mail to %s", message["To"])
        return False
    try:
        await aiosmtplib.send(
            message,
            hostname=config.SMTP_HOST,
            port=config.SMTP_PORT,
            username=config.SMTP_USERNAME,
            password=config.SMTP_PASSWORD,
            start_tls=config.SMTP_STARTTLS,
        )
    except aiosmtplib.SMTPException:
        logger.exception("Mail delivery to %s failed", message["To"])
        return False
    logger.info("Mail delivered to %s", message["To"])
    return True


async def send_password_reset(to_address: str, name: str, link: str) -> bool:
    return await send_message(build_reset_message(to_address, name, link))
