# best-effort notifications to shop staff: e-mail (Resend) and chat-bot (Telegram)
from __future__ import annotations

import asyncio
import html
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import httpx

from services.schemas import NotificationPayload
from utils.config import Settings
from utils.logger import get_logger

_logger = get_logger(__name__)

RESEND_URL = "https://api.resend.com/emails"
TELEGRAM_URL = "https://api.telegram.org/bot{token}/sendMessage"

CONTACT_METHODS = {
    "phone": "📞 Phone",
    "whatsapp": "💚 WhatsApp",
    "telegram": "💙 Telegram",
}


@dataclass(frozen=True)
class NotificationResult:
    channel: str
    success: bool
    error: Optional[str] = None


def _escape_md(value: Any) -> str:
    text = "" if value is None else str(value)
    for ch in ("\\", "_", "*", "`", "["):
        text = text.replace(ch, "\\" + ch)
    return text


def _escape_html(value: Any) -> str:
    return html.escape("" if value is None else str(value))


def render_telegram_text(payload: NotificationPayload) -> str:
    d = payload.data
    if payload.type == "contact":
        method = CONTACT_METHODS.get(d.get("preferredContact", ""), d.get("preferredContact", ""))
        return "\n".join(
            [
                "🔔 *New message from the storefront*",
                "",
                f"👤 *Name:* {_escape_md(d.get('name'))}",
                f"📞 *Phone:* {_escape_md(d.get('phone'))}",
                f"📧 *Email:* {_escape_md(d.get('email') or 'not given')}",
                f"💬 *Message:* {_escape_md(d.get('message'))}",
                f"📱 *Preferred contact:* {_escape_md(method)}",
                f"🕐 *Time:* {_escape_md(d.get('timestamp'))}",
            ]
        )

    items = "\n".join(
        f"• {_escape_md(i.get('name'))} - {i.get('quantity')} pcs × {i.get('price')}₽"
        for i in d.get("items", [])
    )
    lines = [
        f"🛒 *New order #{_escape_md(d.get('orderId'))}*",
        "",
        f"👤 *Customer:* {_escape_md(d.get('customerName'))}",
        f"📞 *Phone:* {_escape_md(d.get('customerPhone'))}",
        f"📧 *Email:* {_escape_md(d.get('customerEmail') or 'not given')}",
        f"📍 *Address:* {_escape_md(d.get('customerAddress'))}",
        "",
        "📦 *Items:*",
        items,
        "",
    ]
    delivery = d.get("delivery")
    if delivery:
        lines.append(
            f"🚚 *Delivery:* {delivery.get('distance_km', 0):.1f} km, {delivery.get('cost_rub')}₽"
        )
    lines.append(f"💰 *Total:* {d.get('totalAmount')}₽")
    lines.append(f"🕐 *Ordered at:* {_escape_md(d.get('timestamp'))}")
    return "\n".join(lines)


def render_email(payload: NotificationPayload) -> Tuple[str, str]:
    """Return (subject, html body)."""
    d = payload.data
    e = _escape_html

    if payload.type == "contact":
        subject = f"New message from {d.get('name', '')}"
        body = (
            "<h2>New message from the storefront</h2>"
            f"<p><strong>Name:</strong> {e(d.get('name'))}</p>"
            f"<p><strong>Phone:</strong> {e(d.get('phone'))}</p>"
            + (f"<p><strong>Email:</strong> {e(d.get('email'))}</p>" if d.get("email") else "")
            + f"<p><strong>Message:</strong></p><p>{e(d.get('message'))}</p>"
            f"<p><strong>Preferred contact:</strong> {e(d.get('preferredContact'))}</p>"
        )
        return subject, body

    rows = "".join(
        "<tr>"
        f"<td>{e(i.get('name'))}</td>"
        f"<td>{e(i.get('quantity'))} pcs</td>"
        f"<td>{e(i.get('price'))} ₽</td>"
        f"<td>{e(float(i.get('price', 0)) * int(i.get('quantity', 0)))} ₽</td>"
        "</tr>"
        for i in d.get("items", [])
    )
    delivery = d.get("delivery")
    delivery_html = (
        f"<p><strong>Delivery:</strong> {delivery.get('distance_km', 0):.1f} km, "
        f"{e(delivery.get('cost_rub'))} ₽</p>"
        if delivery
        else ""
    )
    subject = f"New order #{d.get('orderId', '')}"
    body = (
        f"<h2>New order #{e(d.get('orderId'))}</h2>"
        f"<p><strong>Customer:</strong> {e(d.get('customerName'))}</p>"
        f"<p><strong>Phone:</strong> {e(d.get('customerPhone'))}</p>"
        + (
            f"<p><strong>Email:</strong> {e(d.get('customerEmail'))}</p>"
            if d.get("customerEmail")
            else ""
        )
        + f"<p><strong>Delivery address:</strong> {e(d.get('customerAddress'))}</p>"
        + delivery_html
        + "<h3>Items:</h3>"
        '<table border="1" cellpadding="5" style="border-collapse: collapse;">'
        "<tr><th>Item</th><th>Quantity</th><th>Price</th><th>Sum</th></tr>"
        + rows
        + f'<tr><td colspan="3"><strong>Total:</strong></td><td><strong>{e(d.get("totalAmount"))} ₽</strong></td></tr>'
        "</table>"
    )
    return subject, body


class EmailChannel:
    name = "email"

    def __init__(
        self,
        api_key: Optional[str],
        from_email: str,
        to_email: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.from_email = from_email
        self.to_email = to_email
        self._transport = transport

    async def send(self, payload: NotificationPayload) -> NotificationResult:
        if not self.api_key:
            return NotificationResult(self.name, False, "RESEND_API_KEY not set")
        subject, body = render_email(payload)
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                resp = await client.post(
                    RESEND_URL,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={
                        "from": self.from_email,
                        "to": self.to_email,
                        "subject": subject,
                        "html": body,
                    },
                )
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            return NotificationResult(self.name, False, str(exc))
        return NotificationResult(self.name, True)


class TelegramChannel:
    name = "telegram"

    def __init__(
        self,
        bot_token: Optional[str],
        chat_id: Optional[str],
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.bot_token = bot_token
        self.chat_id = chat_id
        self._transport = transport

    async def send(self, payload: NotificationPayload) -> NotificationResult:
        if not self.bot_token or not self.chat_id:
            return NotificationResult(self.name, False, "Telegram bot not configured")
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                resp = await client.post(
                    TELEGRAM_URL.format(token=self.bot_token),
                    json={
                        "chat_id": self.chat_id,
                        "text": render_telegram_text(payload),
                        "parse_mode": "Markdown",
                        "disable_web_page_preview": True,
                    },
                )
                if resp.status_code >= 400:
                    description = resp.json().get("description", resp.text)
                    return NotificationResult(
                        self.name, False, f"Telegram API error: {description}"
                    )
        except (httpx.HTTPError, ValueError) as exc:
            return NotificationResult(self.name, False, str(exc))
        return NotificationResult(self.name, True)


class Notifier:
    """
    Fans a payload out to the e-mail and chat-bot channels at the same time.

    Each channel gets one attempt bounded by `timeout`. Failures and timeouts
    are logged and reported as "not sent"; dispatch itself never raises.
    """

    def __init__(self, email, telegram, timeout: float = 4.0) -> None:
        self.email = email
        self.telegram = telegram
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "Notifier":
        return cls(
            EmailChannel(settings.resend_api_key, settings.from_email, settings.to_email),
            TelegramChannel(settings.telegram_bot_token, settings.telegram_chat_id),
            timeout=settings.notification_timeout,
        )

    async def _bounded(self, channel, payload: NotificationPayload) -> NotificationResult:
        return await asyncio.wait_for(channel.send(payload), timeout=self.timeout)

    async def dispatch(self, kind: str, data: Dict[str, Any]) -> Tuple[bool, bool]:
        """Send `data` as a `kind` notification. Returns (email_sent, telegram_sent)."""
        payload = NotificationPayload(type=kind, data=data)
        results = await asyncio.gather(
            self._bounded(self.email, payload),
            self._bounded(self.telegram, payload),
            return_exceptions=True,
        )

        sent = []
        for channel, result in zip((self.email, self.telegram), results):
            if isinstance(result, asyncio.TimeoutError):
                _logger.warning(f"{channel.name} notification timed out after {self.timeout}s")
                sent.append(False)
            elif isinstance(result, BaseException):
                _logger.error(f"{channel.name} notification raised: {result!r}")
                sent.append(False)
            elif not result.success:
                _logger.warning(f"{channel.name} notification not sent: {result.error}")
                sent.append(False)
            else:
                _logger.info(f"{channel.name} notification sent ({kind})")
                sent.append(True)
        return sent[0], sent[1]
