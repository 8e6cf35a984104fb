"""
Outbound notifications (email + SMS) through the Brevo transactional API.

Dispatch is a side channel: callers go through `dispatch_quietly`, which logs
and swallows every failure so a lost email or SMS never aborts or rolls back
the state change that triggered it.
"""
from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Protocol

import httpx

from educonnect.core.config import settings
from educonnect.core.logging import get_logger

logger = get_logger(__name__)

BREVO_EMAIL_URL = "https://api.brevo.com/v3/smtp/email"
BREVO_SMS_URL = "https://api.brevo.com/v3/transactionalSMS/sms"


@dataclass
class DispatchResult:
    success: bool
    message_id: str | None = None
    error: str | None = None


class NotificationDispatcher(Protocol):
    async def send(
        self,
        recipient: str,
        subject: str,
        template_name: str,
        data: dict[str, Any],
    ) -> DispatchResult: ...


# ── Templates ─────────────────────────────────────────────────────────
def _two_factor_code_sms(data: dict[str, Any]) -> str:
    minutes = data.get("expires_in_minutes", 10)
    return (
        f"Your {settings.EMAIL_FROM_NAME} verification code is {data['code']}. "
        f"It expires in {minutes} minutes. Do not share it with anyone."
    )


def _role_request_decision_html(data: dict[str, Any]) -> str:
    approved = data.get("status") == "approved"
    headline = "Your request has been approved" if approved else "Your request was not approved"
    body = (
        f"You can now sign in as <b>{data.get('role', '')}</b>."
        if approved
        else "You may submit a new request with updated details."
    )
    remarks = data.get("remarks")
    remarks_html = (
        f'<p style="margin:0 0 16px 0;color:#444;">Reviewer remarks: {remarks}</p>'
        if remarks
        else ""
    )
    return f"""
    <div style="font-family:Arial,sans-serif;max-width:560px;margin:auto;padding:24px">
      <h2 style="margin:0 0 12px 0;">Hello, {data.get('name') or 'there'}</h2>
      <p style="margin:0 0 16px 0;color:#444;line-height:1.5;">{headline}. {body}</p>
      {remarks_html}
      <p style="margin:18px 0 0 0;color:#666;font-size:12px;">
        If you did not submit this request, please contact the administration office.
      </p>
    </div>
    """


# template name -> (channel, renderer)
TEMPLATES: dict[str, tuple[str, Callable[[dict[str, Any]], str]]] = {
    "two_factor_code": ("sms", _two_factor_code_sms),
    "role_request_decision": ("email", _role_request_decision_html),
}


class BrevoDispatcher:
    def __init__(
        self,
        api_key: str | None,
        timeout: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    async def send(
        self,
        recipient: str,
        subject: str,
        template_name: str,
        data: dict[str, Any],
    ) -> DispatchResult:
        if template_name not in TEMPLATES:
            return DispatchResult(success=False, error=f"Unknown template: {template_name}")
        if not self.api_key:
            return DispatchResult(success=False, error="BREVO_API_KEY not configured")

        channel, render = TEMPLATES[template_name]
        if channel == "sms":
            url = BREVO_SMS_URL
            payload = {
                "sender": settings.SMS_SENDER,
                "recipient": recipient.lstrip("+"),
                "content": render(data),
                "type": "transactional",
            }
        else:
            url = BREVO_EMAIL_URL
            payload = {
                "sender": {"name": settings.EMAIL_FROM_NAME, "email": settings.EMAIL_FROM},
                "to": [{"email": recipient, "name": data.get("name") or recipient}],
                "subject": subject,
                "htmlContent": render(data),
            }

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            r = await client.post(
                url,
                headers={"api-key": self.api_key, "Content-Type": "application/json"},
                json=payload,
            )
        if r.status_code >= 400:
            return DispatchResult(success=False, error=f"Brevo error {r.status_code}: {r.text}")
        message_id = r.json().get("messageId") if r.content else None
        return DispatchResult(success=True, message_id=str(message_id) if message_id else None)


async def dispatch_quietly(
    notifier: NotificationDispatcher,
    recipient: str,
    subject: str,
    template_name: str,
    data: dict[str, Any],
) -> bool:
    """Send and never raise. Returns True when the provider accepted the message."""
    try:
        result = await notifier.send(recipient, subject, template_name, data)
    except Exception as exc:  # transport errors must not reach the caller
        logger.warning("notification_dispatch_error", template=template_name, error=str(exc))
        return False

    if not result.success:
        logger.warning("notification_not_sent", template=template_name, error=result.error)
        return False

    logger.info("notification_sent", template=template_name, message_id=result.message_id)
    return True


# ── FastAPI Dependency ────────────────────────────────────────────────
# Inject with: notifier: NotificationDispatcher = Depends(get_notifier)
@lru_cache()
def get_notifier() -> NotificationDispatcher:
    return BrevoDispatcher(api_key=settings.BREVO_API_KEY)
