"""Transactional email via Resend.

Sending is skipped (debug log only) unless both ``RESEND_API_KEY`` and
``RESEND_FROM_EMAIL`` are configured. The Resend SDK is blocking, so each
send runs in a worker thread and transient failures are retried. A failed
email never undoes the state change that triggered it.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from html import escape

import resend
from loguru import logger
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from config import get_settings


@dataclass(frozen=True)
class EmailMessage:
    subject: str
    html: str
    text: str


def _paragraphs(*lines: str) -> str:
    body = "".join(f'<p style="margin: 0 0 15px 0;">{escape(line)}</p>' for line in lines if line)
    return f'<div style="font-family: Arial, sans-serif; font-size: 10pt;">{body}</div>'


def _message(subject: str, *lines: str, link: str | None = None, link_label: str = "") -> EmailMessage:
    html = _paragraphs(*lines)
    text = "\n\n".join(line for line in lines if line)
    if link:
        anchor = (
            f'<p style="margin: 0 0 15px 0;"><a href="{escape(link)}" '
            f'style="color: #0000EE; text-decoration: underline;">{escape(link_label)}</a></p>'
        )
        html = html.replace("</div>", anchor + "</div>")
        text += f"\n\n{link_label}: {link}"
    return EmailMessage(subject=subject, html=html, text=text)


def invitation_message(
    *,
    company_name: str | None,
    project_manager_name: str | None,
    link: str,
    expires_at: datetime,
    personal_message: str | None = None,
) -> EmailMessage:
    company = company_name or "a company"
    inviter = project_manager_name or "A project manager"
    return _message(
        f"You've been invited to join {company} on Fire Parts Supply",
        f"{inviter} has invited you to join {company} as a tradie.",
        f'Message from {inviter}: "{personal_message}"' if personal_message else "",
        "Accepting gives you access to company pricing, job numbers and ordering.",
        f"This invitation expires on {expires_at:%d %B %Y}.",
        link=link,
        link_label="Accept invitation",
    )


def invitation_response_message(
    *,
    tradie_name: str | None,
    tradie_email: str,
    company_name: str | None,
    accepted: bool,
) -> EmailMessage:
    who = tradie_name or tradie_email
    if accepted:
        return _message(
            f"Great news! {who} has joined your company",
            f"{who} ({tradie_email}) accepted your invitation to join {company_name or 'your company'}.",
            "They can now place orders and view company jobs.",
        )
    return _message(
        f"Invitation to {tradie_email} was declined",
        f"{tradie_email} declined your invitation to join {company_name or 'your company'}.",
        "You can send a new invitation at any time.",
    )


def removal_message(*, company_name: str | None, reason: str | None = None) -> EmailMessage:
    company = company_name or "your company"
    return _message(
        f"Your access to {company} has been updated",
        f"Your Project Manager has limited your access to {company}.",
        f"Reason: {reason}" if reason else "",
        "You can still browse the catalog. Ordering needs a new approval or invitation.",
    )


def verification_message(*, full_name: str, link: str) -> EmailMessage:
    return _message(
        "Verify your email address",
        f"Hi {full_name},",
        "Confirm your email address to finish setting up your account.",
        link=link,
        link_label="Verify email",
    )


def _send_sync(to_email: str, message: EmailMessage) -> None:
    settings = get_settings()
    resend.api_key = settings.RESEND_API_KEY
    resend.Emails.send(
        {
            "from": settings.RESEND_FROM_EMAIL,
            "to": [to_email],
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
        }
    )


async def send_email(to_email: str, message: EmailMessage) -> bool:
    """Send ``message``; returns False when skipped or every attempt failed."""
    settings = get_settings()
    if not settings.RESEND_API_KEY or not settings.RESEND_FROM_EMAIL:
        logger.debug(f"RESEND_API_KEY or RESEND_FROM_EMAIL not configured - skipping '{message.subject}'")
        return False

    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(settings.EMAIL_SEND_ATTEMPTS),
            wait=wait_exponential(multiplier=1, max=settings.EMAIL_RETRY_MAX_WAIT_SECONDS),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(f"Retrying email to {to_email} (attempt {attempt.retry_state.attempt_number})")
                await asyncio.to_thread(_send_sync, to_email, message)
    except Exception as e:
        logger.error(f"Failed to send '{message.subject}' to {to_email}: {e}")
        return False

    logger.info(f"Email sent to {to_email}: {message.subject}")
    return True
