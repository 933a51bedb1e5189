"""Customer receipt message and WhatsApp dispatch."""

import asyncio
import logging
import webbrowser
from decimal import Decimal
from typing import Optional
from urllib.parse import urlparse

from .models import LoyaltyAction, TransactionReceipt
from .money import DEFAULT_COUNTRY_CODE, currency, whatsapp_links

logger = logging.getLogger(__name__)


def format_quantity(quantity: Decimal) -> str:
    """Render 2 as "2" and 1.50 as "1.5"."""
    text = f"{quantity:f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def compose_receipt_message(receipt: TransactionReceipt) -> str:
    """Render a receipt as the WhatsApp message sent to the customer."""
    lines = [
        f"Hola {receipt.customer_name or ''} 👋",
        "",
        f"Gracias por tu compra en *{receipt.business_name}*.",
        "",
        "🧾 *Detalle de la compra*",
    ]

    for i, line in enumerate(receipt.lines, 1):
        lines.append(f"• {i}. {line.label or '-'} x {format_quantity(line.quantity)} = {currency(line.subtotal)}")

    lines.extend(
        [
            "",
            f"• Subtotal: {currency(receipt.combined_total)}",
            f"• Puntos aplicados: {currency(receipt.redemption_applied)}",
            f"• Total cobrado: {currency(receipt.amount_charged)}",
            "",
        ]
    )

    # Only loyalty actions the backend accepted are reported to the customer
    for outcome in receipt.loyalty_outcomes:
        if not outcome.ok:
            continue
        action = outcome.action or LoyaltyAction.ACCUMULATE
        lines.extend(
            [
                "",
                "🎯 *Promoción personalizada*",
                f"• Promoción: {outcome.item.label or '-'}",
                f"• Acción: {action.past_tense}",
                f"• Cantidad: {format_quantity(outcome.item.quantity)}",
            ]
        )
        progress = outcome.progress
        if progress is not None:
            status = f" • {progress.status}" if progress.status else ""
            lines.append(f"• Avance: {format_quantity(progress.percent)}%{status}")

    lines.extend(["", "¡Gracias por tu preferencia! 💙"])
    return "\n".join(lines)


class LinkOpener:
    """Opens URLs on the operator's device."""

    async def can_open(self, url: str) -> bool:
        raise NotImplementedError

    async def open(self, url: str) -> None:
        raise NotImplementedError


class BrowserLinkOpener(LinkOpener):
    """Opens links with the system browser. Only web links are supported."""

    async def can_open(self, url: str) -> bool:
        return urlparse(url).scheme in ("http", "https")

    async def open(self, url: str) -> None:
        opened = await asyncio.to_thread(webbrowser.open, url)
        if not opened:
            raise RuntimeError("No browser available to open the link")


class MessagingDispatcher:
    """Sends a text to a phone through WhatsApp, native app first, web as fallback."""

    def __init__(self, opener: Optional[LinkOpener] = None, country_code: str = DEFAULT_COUNTRY_CODE) -> None:
        self.opener = opener or BrowserLinkOpener()
        self.country_code = country_code

    async def open_messaging_link(self, phone: str, text: str) -> str:
        """
        Open the best available WhatsApp link.

        Returns:
            The URL that was opened
        """
        native, web = whatsapp_links(phone, text, self.country_code)
        url = native if await self.opener.can_open(native) else web
        await self.opener.open(url)
        return url


class ReceiptComposer:
    """Formats receipts and hands them to the messaging dispatcher."""

    def __init__(self, dispatcher: MessagingDispatcher) -> None:
        self.dispatcher = dispatcher

    def compose(self, receipt: TransactionReceipt) -> str:
        return compose_receipt_message(receipt)

    async def send(self, receipt: TransactionReceipt) -> Optional[str]:
        """
        Compose and dispatch a receipt.

        Best effort: the transaction is already committed, so dispatch errors
        are logged and reported as None.

        Returns:
            The URL used, or None if dispatch failed
        """
        message = self.compose(receipt)
        try:
            url = await self.dispatcher.open_messaging_link(receipt.customer_phone, message)
        except Exception as e:
            logger.warning(f"Could not open WhatsApp for {receipt.customer_phone}: {e}")
            return None
        logger.info(f"Receipt sent to {receipt.customer_phone}")
        return url
