"""Email service using Resend for order notifications."""

import asyncio
import logging
from html import escape
from typing import Any

import resend
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from orderdesk.models.order import OrderRecord, from_cents

logger = logging.getLogger(__name__)

ORDER_CONFIRMATION = "order_confirmation"
NEW_ORDER_ALERT = "new_order_alert"
STATUS_UPDATE = "status_update"

# Retry configuration
MAX_ATTEMPTS = 3
MAX_WAIT_SECONDS = 4

STATUS_MESSAGES = {
    "preparing": "We received your order and the kitchen is getting started.",
    "in_progress": "Your order is being prepared right now.",
    "ready": "Your order is ready for pickup!",
    "completed": "Your order has been picked up. Thank you!",
    "cancelled": "Your order has been cancelled. Please contact the restaurant with any questions.",
    "payment_failed": "We could not process the payment for your order.",
}


class NotificationFailure(Exception):
    """Delivery of a single notification failed."""


class EmailService:
    """Sends templated order emails via Resend.

    ``send`` never raises: a failed or timed-out delivery is retried a
    few times, then logged and reported as ``False`` so callers can treat notifications as best effort.
    """

    def __init__(
        self,
        api_key: str,
        from_email: str,
        frontend_url: str,
        timeout_seconds: float = 5.0,
        max_attempts: int = MAX_ATTEMPTS,
        retry_wait_seconds: float = 0.5,
    ) -> None:
        resend.api_key = api_key
        self.from_email = from_email
        self.frontend_url = frontend_url
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts
        self.retry_wait_seconds = retry_wait_seconds

    async def send(self, template: str, recipient: str, order: OrderRecord) -> bool:
        """Render ``template`` for ``order`` and deliver it to ``recipient``.

        Args:
            template: One of ORDER_CONFIRMATION, NEW_ORDER_ALERT, STATUS_UPDATE.
            recipient: Destination email address.
            order: Current order snapshot.

        Returns:
            bool: True if the email was accepted by Resend.
        """
        try:
            subject, html_content = self.render(template, order)
            email_id = await self._deliver_with_retry(recipient, subject, html_content)
        except NotificationFailure as e:
            logger.error("Failed to send %s email for order %s to %s: %s", template, order["id"], recipient, e)
            return False

        logger.info("Sent %s email for order %s to %s, id: %s", template, order["id"], recipient, email_id)
        return True

    async def _deliver_with_retry(self, recipient: str, subject: str, html_content: str) -> str | None:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.retry_wait_seconds, max=MAX_WAIT_SECONDS),
            retry=retry_if_exception_type(NotificationFailure),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._deliver(recipient, subject, html_content)
        return None

    async def _deliver(self, recipient: str, subject: str, html_content: str) -> str | None:
        params: dict[str, Any] = {
            "from": self.from_email,
            "to": [recipient],
            "subject": subject,
            "html": html_content,
        }
        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(resend.Emails.send, params),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise NotificationFailure(f"timed out after {self.timeout_seconds}s") from e
        except Exception as e:
            raise NotificationFailure(str(e)) from e
        return response.get("id") if response else None

    def render(self, template: str, order: OrderRecord) -> tuple[str, str]:
        """Return ``(subject, html)`` for a template.

        Raises:
            NotificationFailure: If the template name is unknown.
        """
        short_id = order["id"][:8]
        if template == ORDER_CONFIRMATION:
            return f"Order #{short_id} confirmed", self._render_confirmation(order)
        if template == NEW_ORDER_ALERT:
            return f"New order #{short_id} at {order['location']}", self._render_admin_alert(order)
        if template == STATUS_UPDATE:
            label = order["status"].replace("_", " ")
            return f"Order #{short_id} is {label}", self._render_status_update(order)
        raise NotificationFailure(f"Unknown email template: {template}")

    def _items_table(self, order: OrderRecord) -> str:
        rows = []
        for item in order.get("items") or []:
            note = item.get("special_instructions")
            note_html = f'<br><span style="color: #6b7280; font-size: 12px;">{escape(note)}</span>' if note else ""
            line_total = from_cents(item["unit_price_cents"] * item["quantity"])
            rows.append(
                f'<tr><td style="padding: 6px 0;">{item["quantity"]} &times; {escape(item["name"])}{note_html}</td>'
                f'<td style="padding: 6px 0; text-align: right;">${line_total}</td></tr>'
            )
        return f"""
<table style="width: 100%; border-collapse: collapse; font-size: 14px;">
    {''.join(rows)}
    <tr><td style="padding-top: 12px;">Subtotal</td><td style="padding-top: 12px; text-align: right;">${from_cents(order["subtotal_cents"])}</td></tr>
    <tr><td>Tax</td><td style="text-align: right;">${from_cents(order["tax_cents"])}</td></tr>
    <tr><td><strong>Total</strong></td><td style="text-align: right;"><strong>${from_cents(order["total_cents"])}</strong></td></tr>
</table>
"""

    def _render_confirmation(self, order: OrderRecord) -> str:
        customer = order.get("customer_info") or {}
        name = escape(customer.get("name") or "there")
        order_url = f"{self.frontend_url}/order-confirmation?order_id={order['id']}"
        return f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>Order Confirmed</title>
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <h1 style="color: #b91c1c; font-size: 24px;">Thanks for your order, {name}!</h1>
    <p>{STATUS_MESSAGES["preparing"]}</p>
    <p style="font-size: 14px; color: #6b7280;">Order #{order["id"][:8]} &middot; Pickup at {escape(order["location"])}</p>
    {self._items_table(order)}
    <div style="text-align: center; margin: 30px 0;">
        <a href="{order_url}" style="background: #b91c1c; color: white; padding: 12px 28px; text-decoration: none; border-radius: 6px; font-weight: 600;">
            Track your order
        </a>
    </div>
</body>
</html>
"""

    def _render_admin_alert(self, order: OrderRecord) -> str:
        customer = order.get("customer_info") or {}
        instructions = customer.get("special_instructions")
        instructions_html = f"<p><strong>Instructions:</strong> {escape(instructions)}</p>" if instructions else ""
        return f"""
<!DOCTYPE html>
<html>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <h2>New order #{order["id"][:8]}</h2>
    <p>
        <strong>Customer:</strong> {escape(customer.get("name") or "")}<br>
        <strong>Email:</strong> {escape(customer.get("email") or "")}<br>
        <strong>Phone:</strong> {escape(customer.get("phone") or "")}<br>
        <strong>Payment:</strong> {order["payment_method"].replace("_", " ")}
    </p>
    {instructions_html}
    {self._items_table(order)}
</body>
</html>
"""

    def _render_status_update(self, order: OrderRecord) -> str:
        customer = order.get("customer_info") or {}
        message = STATUS_MESSAGES.get(order["status"], f"Your order status is now {order['status']}.")
        estimate = order.get("estimated_completion_minutes")
        estimate_html = (
            f"<p>Estimated time until ready: <strong>{estimate} minutes</strong></p>"
            if estimate and order["status"] in ("preparing", "in_progress")
            else ""
        )
        return f"""
<!DOCTYPE html>
<html>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <h2>Hi {escape(customer.get("name") or "there")},</h2>
    <p>{message}</p>
    {estimate_html}
    <p style="font-size: 14px; color: #6b7280;">Order #{order["id"][:8]} &middot; {escape(order["location"])}</p>
</body>
</html>
"""
