"""Notification templates for redemption events."""

from __future__ import annotations

import html
from dataclasses import dataclass
from datetime import datetime


@dataclass
class RenderedTemplate:
    subject: str
    text_body: str
    html_body: str


def _format_timestamp(value: datetime | None) -> str:
    if value is None:
        return "just now"
    return value.strftime("%b %d, %Y at %H:%M UTC")


def render_redemption_verified(
    *,
    contact_name: str | None,
    deal_title: str,
    vendor_name: str,
    code: str | None,
    verified_at: datetime | None,
) -> RenderedTemplate:
    """Customer receipt once a vendor accepts an issued code."""

    greeting = f"Hi {contact_name}," if contact_name else "Hi there,"
    subject = f"Your {vendor_name} deal was redeemed"
    when = _format_timestamp(verified_at)

    text_lines = [
        greeting,
        "",
        f"{vendor_name} confirmed your redemption of \"{deal_title}\" on {when}.",
    ]
    if code:
        text_lines.append(f"Code used: {code}")
    text_lines.extend(["", "Thanks for shopping local!", "The Rise Local Team"])

    code_html = f"<p>Code used: <strong>{html.escape(code)}</strong></p>" if code else ""
    html_body = f"""<html>
  <body>
    <p>{html.escape(greeting)}</p>
    <p><strong>{html.escape(vendor_name)}</strong> confirmed your redemption of
    <strong>{html.escape(deal_title)}</strong> on {html.escape(when)}.</p>
    {code_html}
    <p>Thanks for shopping local!<br/>The Rise Local Team</p>
  </body>
</html>"""
    return RenderedTemplate(subject=subject, text_body="\n".join(text_lines), html_body=html_body)


def render_vendor_redemption_alert(
    *,
    vendor_name: str,
    deal_title: str,
    customer_label: str,
    redeemed_at: datetime | None,
    source: str | None,
) -> RenderedTemplate:
    """Vendor notice for a one-tap redemption made in the app."""

    subject = f"New redemption: {deal_title}"
    when = _format_timestamp(redeemed_at)
    text_lines = [
        f"Hi {vendor_name},",
        "",
        f"{customer_label} redeemed \"{deal_title}\" on {when}.",
    ]
    if source:
        text_lines.append(f"Source: {source}")
    text_lines.extend(["", "The Rise Local Team"])

    source_html = f"<p>Source: {html.escape(source)}</p>" if source else ""
    html_body = f"""<html>
  <body>
    <p>Hi {html.escape(vendor_name)},</p>
    <p>{html.escape(customer_label)} redeemed <strong>{html.escape(deal_title)}</strong> on {html.escape(when)}.</p>
    {source_html}
    <p>The Rise Local Team</p>
  </body>
</html>"""
    return RenderedTemplate(subject=subject, text_body="\n".join(text_lines), html_body=html_body)
