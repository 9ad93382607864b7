"""Customer notifications - order confirmation email via Resend."""

import logging
from typing import Any

from django.conf import settings

import resend

from apps.web.restaurant.models import OrderSnapshot

logger = logging.getLogger(__name__)

DEFAULT_FROM_ADDRESS = "Passline <orders@passline.app>"


class EmailError(Exception):
    """Raised when email sending fails."""

    pass


def order_shortcode(reference_id: str, external_order_id: str) -> str:
    """Short code the customer reads at the counter: last 4 chars, upper-cased."""
    source = reference_id or external_order_id
    return source[-4:].upper()


def _format_money(cents: int, currency: str) -> str:
    symbol = "$" if currency.upper() == "USD" else f"{currency.upper()} "
    return f"{symbol}{cents / 100:.2f}"


def _build_body(snapshot: OrderSnapshot, shortcode: str, pickup_instructions: str) -> str:
    data: dict[str, Any] = snapshot.snapshot or {}
    currency = data.get("currency", "USD")
    lines = [
        f"Hi {snapshot.customer_display_name or 'there'},",
        "",
        f"Thanks for your order at {snapshot.vendor.name}! Your code is {shortcode}.",
        "",
    ]
    for item in data.get("items", []):
        lines.append(
            f"  {item.get('quantity', 1)} x {item.get('name', 'Item')}"
            f"  {_format_money(int(item.get('price', 0)), currency)}"
        )
    lines.extend(
        [
            "",
            f"Total: {_format_money(int(data.get('total', 0)), currency)}",
        ]
    )
    if pickup_instructions:
        lines.extend(["", pickup_instructions])
    return "\n".join(lines)


def send_order_confirmation(
    snapshot: OrderSnapshot,
    to_email: str,
    *,
    pickup_instructions: str = "",
) -> str:
    """
    Send the order confirmation email.

    Args:
        snapshot: The snapshot that was just created.
        to_email: Recipient address.
        pickup_instructions: Location-specific pickup text.

    Returns:
        Resend email ID.

    Raises:
        EmailError: If Resend is not configured or the send fails.
    """
    api_key = getattr(settings, "RESEND_API_KEY", "")
    if not api_key:
        raise EmailError("Resend API key not configured")

    resend.api_key = api_key

    data = snapshot.snapshot or {}
    shortcode = order_shortcode(
        data.get("reference_id", ""), snapshot.external_order_id
    )
    from_address = getattr(settings, "ORDER_EMAIL_FROM", "") or DEFAULT_FROM_ADDRESS

    try:
        response = resend.Emails.send(
            {
                "from": from_address,
                "to": to_email,
                "subject": f"Order {shortcode} confirmed - {snapshot.vendor.name}",
                "text": _build_body(snapshot, shortcode, pickup_instructions),
            }
        )
        email_id = response.get("id", "") if isinstance(response, dict) else ""

        logger.info(
            "Sent order confirmation for %s to %s (ID: %s)",
            snapshot.external_order_id,
            to_email,
            email_id,
        )
        return str(email_id)

    except Exception as e:
        logger.exception("Failed to send order confirmation to %s: %s", to_email, e)
        raise EmailError(f"Failed to send email: {e}") from e


def notify_order_confirmed(
    snapshot: OrderSnapshot,
    to_email: str,
    *,
    pickup_instructions: str = "",
) -> None:
    """Fire-and-forget wrapper: never raises, skips when email is not configured."""
    if not to_email:
        logger.debug("No customer email for %s - skipping confirmation", snapshot.external_order_id)
        return
    if not getattr(settings, "RESEND_API_KEY", ""):
        logger.info(
            "RESEND_API_KEY not set - skipping confirmation for %s",
            snapshot.external_order_id,
        )
        return
    try:
        send_order_confirmation(
            snapshot, to_email, pickup_instructions=pickup_instructions
        )
    except EmailError as e:
        logger.debug("Confirmation for %s not sent: %s", snapshot.external_order_id, e)
