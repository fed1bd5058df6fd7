# bakery/mail.py
"""
Outgoing mail. Messages are handed to the configured SMTP relay; when
``SMTP_HOST`` is unset the message is only logged.
"""
import logging
import smtplib
from email.message import EmailMessage

from .config import FRONTEND_URL, MAIL_FROM, RESET_CODE_EXPIRE_MIN, SMTP_HOST, SMTP_PASS, SMTP_PORT, SMTP_USER

log = logging.getLogger("bakery.mail")


def send_mail(to: str, subject: str, body: str) -> None:
    if not SMTP_HOST:
        log.info("SMTP not configured, skipping mail to %s: %s", to, subject)
        return

    msg = EmailMessage()
    msg["From"] = MAIL_FROM
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(body)

    try:
        with smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=20) as smtp:
            smtp.starttls()
            if SMTP_USER:
                smtp.login(SMTP_USER, SMTP_PASS)
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError):
        # a failed delivery never fails the request that triggered it
        log.exception("mail to %s failed: %s", to, subject)
        return
    log.info("mail sent to %s: %s", to, subject)


def send_verification_email(to: str, token: str) -> None:
    link = f"{FRONTEND_URL}/verify-email?token={token}"
    send_mail(
        to,
        "Verify your Cake Shop account",
        f"Welcome to Cake Shop!\n\nConfirm your email address by opening:\n{link}\n",
    )


def send_reset_code(to: str, code: str) -> None:
    send_mail(
        to,
        "Your Cake Shop password reset code",
        f"Your password reset code is {code}.\n"
        f"It expires in {RESET_CODE_EXPIRE_MIN} minutes.\n",
    )


def send_order_confirmation(to: str, order_id: int, total: float) -> None:
    send_mail(
        to,
        f"Order #{order_id} received",
        f"Thank you for your order #{order_id}.\nTotal: {total:,.0f} VND\n",
    )
