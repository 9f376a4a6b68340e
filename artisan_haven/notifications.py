from datetime import datetime
from html import escape
from typing import Dict, List, Optional, Tuple

import resend
from flask import current_app

from .helpers import normalize_email, safe_float, safe_positive_int


def send_email_via_resend(payload: Dict[str, object]) -> Tuple[bool, Optional[str]]:
    configured_api_key = (current_app.config.get("RESEND_API_KEY") or "").strip()
    if not configured_api_key:
        current_app.logger.warning(
            "Skipping email %r: Resend API key is not configured.", payload.get("subject")
        )
        return False, "Resend API key is not configured."

    previous_api_key = getattr(resend, "api_key", None)
    resend.api_key = configured_api_key
    try:
        response = resend.Emails.send(payload)
    except Exception as exc:
        current_app.logger.error("Resend delivery failed: %s", exc)
        return False, str(exc)
    finally:
        resend.api_key = previous_api_key

    if not isinstance(response, dict) or not response.get("id"):
        return False, str(response)

    return True, None


def sender_address() -> str:
    return f"Artisan Haven <{current_app.config['EMAIL_SENDER']}>"


def normalize_receipt_items(items) -> List[Dict]:
    normalized_items: List[Dict] = []
    for entry in items or []:
        if not isinstance(entry, dict):
            continue
        quantity = safe_positive_int(entry.get("quantity"), 1) or 1
        price_value = round(safe_float(entry.get("price"), 0.0), 2)
        normalized_items.append(
            {
                "name": str(entry.get("name") or "").strip() or "Item",
                "quantity": quantity,
                "price": price_value,
                "line_total": round(price_value * quantity, 2),
            }
        )
    return normalized_items


def send_order_confirmation_email(order_document, recipient_email: str):
    normalized_email = normalize_email(recipient_email)
    if not normalized_email:
        return False, "Missing customer email for the order receipt."

    currency_code = current_app.config["CURRENCY"]
    items = normalize_receipt_items(order_document.get("items"))
    order_identifier = str(order_document.get("_id") or "")
    created_at = order_document.get("created_at")
    if not isinstance(created_at, datetime):
        created_at = datetime.utcnow()

    rows = "".join(
        f"<tr><td>{escape(item['name'])}</td><td>{item['quantity']}</td>"
        f"<td>{currency_code} {item['line_total']:.2f}</td></tr>"
        for item in items
    )
    html_body = (
        "<h1>Thank you for supporting our artisans!</h1>"
        f"<p>Order {escape(order_identifier)} placed on {created_at:%Y-%m-%d %H:%M}.</p>"
        f"<table>{rows}</table>"
        f"<p>Delivery: {currency_code} {safe_float(order_document.get('delivery_charge')):.2f}</p>"
        f"<p><strong>Total: {currency_code} {safe_float(order_document.get('total_amount')):.2f}</strong></p>"
    )
    item_lines = ", ".join(f"{item['name']} x{item['quantity']}" for item in items)
    text_body = (
        f"Order {order_identifier}: {item_lines}. "
        f"Total {currency_code} {safe_float(order_document.get('total_amount')):.2f}."
    )

    return send_email_via_resend(
        {
            "from": sender_address(),
            "to": [normalized_email],
            "subject": "Your Artisan Haven order is being packed",
            "html": html_body,
            "text": text_body,
        }
    )


def send_verification_decision_email(
    recipient_email: str, recipient_name: str, approved: bool, reason: str = ""
):
    normalized_email = normalize_email(recipient_email)
    if not normalized_email:
        return False, "Missing applicant email."

    greeting = f"Hello {recipient_name}," if recipient_name else "Hello,"
    if approved:
        subject = "You're now a verified Artisan Haven seller"
        message = "Your documents were approved. You can start listing products from the Artisan Hub."
    else:
        subject = "Your Artisan Haven verification needs attention"
        message = "We could not approve your verification request."
        if reason:
            message = f"{message} Reason: {reason}"

    return send_email_via_resend(
        {
            "from": sender_address(),
            "to": [normalized_email],
            "subject": subject,
            "html": f"<p>{escape(greeting)}</p><p>{escape(message)}</p>",
            "text": f"{greeting}\n\n{message}",
        }
    )
