"""MCP Server for the loyalty point-of-sale."""

import asyncio
import json
import logging
from typing import Any, Optional

from mcp.server import Server
from mcp.types import Resource, Tool, TextContent
from pydantic import AnyUrl

from .api_client import LoyaltyApiClient
from .auth import AuthManager
from .config import Settings
from .errors import PosError
from .models import AuthCredentials, LoyaltyAction
from .money import currency
from .receipt import format_quantity
from .session import PosSession, build_session

logger = logging.getLogger("loyalty-pos-mcp-server")

# Initialize server
app = Server("loyalty-pos-mcp-server")

# Global state
settings: Settings
auth_manager: AuthManager
api_client: LoyaltyApiClient
pos_session: PosSession
credentials: Optional[AuthCredentials] = None


def text(message: str) -> list[TextContent]:
    return [TextContent(type="text", text=message)]


async def ensure_authenticated() -> bool:
    """Ensure the operator is authenticated, auto-login if credentials are available."""
    if auth_manager.is_authenticated():
        return True

    if credentials:
        try:
            logger.info("Auto-logging in with configured credentials...")
            await pos_session.login(credentials)
            logger.info("Auto-login successful")
            return True
        except Exception as e:
            logger.error(f"Auto-login error: {e}")

    return False


async def ensure_business() -> None:
    """Load the operator's business on first use."""
    if pos_session.business is None:
        await pos_session.load_business()


def format_cart(session: PosSession) -> str:
    """Readable cart with totals."""
    items = session.cart.items()
    customer = session.customer
    lines = []
    if customer.phone:
        lines.append(f"Customer: {customer.name or '-'} ({customer.phone}, {customer.validity.value})")
        lines.append(f"Balance: {currency(customer.balance)}")
    if not items:
        lines.append("Cart is empty")
        return "\n".join(lines)

    lines.append(f"\nCart ({len(items)} items):")
    for i, item in enumerate(items, 1):
        lines.append(f"\n{i}. {item.display_label}")
        lines.append(f"   Item ID: {item.id}")
        lines.append(f"   Price: {currency(item.unit_amount)}")
        lines.append(f"   Quantity: {format_quantity(item.quantity)}")
        lines.append(f"   Subtotal: {currency(item.subtotal)}")
        if item.note:
            lines.append(f"   Note: {item.note}")

    totals = session.totals()
    lines.append(f"\n{'='*50}")
    lines.append(f"Sales subtotal: {currency(totals.sale_subtotal)}")
    if totals.loyalty_subtotal:
        lines.append(f"Loyalty items: {currency(totals.loyalty_subtotal)}")
    lines.append(f"Points applied: {currency(totals.redemption_applied)}{' (requested)' if session.redemption_requested else ''}")
    lines.append(f"Total to charge: {currency(totals.amount_due)}")
    lines.append(f"Balance after: {currency(totals.projected_balance)}")
    return "\n".join(lines)


@app.list_resources()
async def list_resources() -> list[Resource]:
    """List available resources."""
    resources = []

    if auth_manager.is_authenticated():
        resources.append(
            Resource(
                uri=AnyUrl("pos://cart"),
                name="Current Cart",
                mimeType="application/json",
                description="Line items and totals of the transaction being recorded",
            )
        )

    return resources


@app.read_resource()
async def read_resource(uri: AnyUrl) -> str:
    """Read a resource by URI."""
    if str(uri) == "pos://cart":
        result = {
            "customer": pos_session.customer.model_dump(),
            "items": [item.model_dump() for item in pos_session.cart.items()],
            "redemption_requested": pos_session.redemption_requested,
            "totals": pos_session.totals().model_dump(),
        }
        return json.dumps(result, indent=2, default=str)

    raise ValueError(f"Unknown resource: {uri}")


@app.list_tools()
async def list_tools() -> list[Tool]:
    """List available tools."""
    return [
        Tool(
            name="pos_login",
            description="Log in as an operator. Uses LOYALTY_POS_PHONE / LOYALTY_POS_PASSWORD if not provided.",
            inputSchema={
                "type": "object",
                "properties": {
                    "phone": {"type": "string", "description": "Operator phone number"},
                    "password": {"type": "string", "description": "Operator password (if the account has one)"},
                },
            },
        ),
        Tool(
            name="pos_load_business",
            description="Load the operator's business and its active loyalty offers",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="pos_lookup_customer",
            description="Look up a customer by 10-digit phone number and show their points balance",
            inputSchema={
                "type": "object",
                "properties": {
                    "phone": {"type": "string", "description": "Customer phone number (10 digits)"},
                },
                "required": ["phone"],
            },
        ),
        Tool(
            name="pos_list_offers",
            description="List the business's active custom loyalty offers",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="pos_get_progress",
            description="Show the current customer's progress toward a loyalty offer",
            inputSchema={
                "type": "object",
                "properties": {
                    "offer_id": {"type": "integer", "description": "Loyalty offer ID"},
                },
                "required": ["offer_id"],
            },
        ),
        Tool(
            name="pos_add_sale_item",
            description="Add a monetary sale line to the cart",
            inputSchema={
                "type": "object",
                "properties": {
                    "article": {"type": "string", "description": "Article name"},
                    "amount": {"type": "string", "description": "Unit price, e.g. 49.90"},
                    "quantity": {"type": "string", "description": "Quantity (default: 1)", "default": "1"},
                    "note": {"type": "string", "description": "Optional description"},
                },
                "required": ["article", "amount"],
            },
        ),
        Tool(
            name="pos_add_loyalty_item",
            description="Add a loyalty action (accumulate or redeem) for a custom offer to the cart",
            inputSchema={
                "type": "object",
                "properties": {
                    "offer_id": {"type": "integer", "description": "Loyalty offer ID"},
                    "action": {
                        "type": "string",
                        "enum": [action.value for action in LoyaltyAction],
                        "description": "accumulate or redeem",
                    },
                    "amount": {"type": "string", "description": "Optional amount (default: 0)", "default": "0"},
                    "quantity": {"type": "string", "description": "Quantity (default: 1)", "default": "1"},
                    "note": {"type": "string", "description": "Optional description"},
                },
                "required": ["offer_id", "action"],
            },
        ),
        Tool(
            name="pos_remove_item",
            description="Remove a line from the cart",
            inputSchema={
                "type": "object",
                "properties": {
                    "item_id": {"type": "string", "description": "Item ID (from pos_get_cart)"},
                },
                "required": ["item_id"],
            },
        ),
        Tool(
            name="pos_set_redemption",
            description="Apply (or stop applying) the customer's points to the sale",
            inputSchema={
                "type": "object",
                "properties": {
                    "redeem": {"type": "boolean", "description": "Whether to apply points"},
                },
                "required": ["redeem"],
            },
        ),
        Tool(
            name="pos_get_cart",
            description="Show the cart with totals, points applied and amount to charge",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="pos_submit",
            description="Record the transaction: sales first, then loyalty actions",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="pos_send_receipt",
            description="Send the last receipt to the customer over WhatsApp and start a new transaction",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="pos_reset",
            description="Abandon the current transaction",
            inputSchema={"type": "object", "properties": {}},
        ),
    ]


@app.call_tool()
async def call_tool(name: str, arguments: Any) -> list[TextContent]:
    """Handle tool calls."""
    arguments = arguments or {}
    try:
        if name == "pos_login":
            phone = arguments.get("phone")
            password = arguments.get("password")

            if not phone:
                if credentials:
                    phone = credentials.phone
                    password = password or credentials.password
                else:
                    return text("Error: No phone provided and LOYALTY_POS_PHONE not configured.")

            operator = await pos_session.login(AuthCredentials(phone=phone, password=password))
            return text(f"Successfully logged in as {operator.name} ({operator.role})")

        if not await ensure_authenticated():
            return text("Error: Not authenticated. Please configure LOYALTY_POS_PHONE or use pos_login.")

        if name == "pos_load_business":
            business = await pos_session.load_business()
            lines = [f"Business: {business.name} (ID: {business.id})"]
            if business.allows_custom_loyalty:
                lines.append(f"Active loyalty offers: {len(pos_session.offers)}")
            else:
                lines.append("Custom loyalty offers are disabled for this business")
            return text("\n".join(lines))

        await ensure_business()

        if name == "pos_lookup_customer":
            customer = await pos_session.lookup_customer(arguments["phone"])
            if not customer.is_valid:
                return text(f"Customer {customer.phone} not found")
            return text(f"Customer: {customer.name}\nPhone: {customer.phone}\nBalance: {currency(customer.balance)}")

        elif name == "pos_list_offers":
            if not pos_session.offers:
                return text("No active loyalty offers")

            result_lines = [f"Found {len(pos_session.offers)} offer(s):\n"]
            for i, offer in enumerate(pos_session.offers, 1):
                result_lines.append(f"\n{i}. {offer.name}")
                result_lines.append(f"   ID: {offer.id}")
                result_lines.append(f"   Accrual: {offer.accrual_type.value}")
                result_lines.append(f"   Target: {format_quantity(offer.target)}")
                if offer.reward:
                    result_lines.append(f"   Reward: {offer.reward}")
            return text("\n".join(result_lines))

        elif name == "pos_get_progress":
            progress = await pos_session.select_offer(int(arguments["offer_id"]))
            if progress is None:
                return text("No progress data")
            return text(
                f"Offer: {pos_session.selected_offer.name}\n"
                f"Progress: {format_quantity(progress.percent)}% ({progress.status})\n"
                f"Accumulated: {format_quantity(progress.accumulated)} / {format_quantity(progress.target)}"
            )

        elif name == "pos_add_sale_item":
            item = pos_session.add_sale_item(
                label=arguments["article"],
                amount=str(arguments["amount"]),
                quantity=str(arguments.get("quantity", "1")),
                note=arguments.get("note"),
            )
            return text(f"Added {item.label} x {format_quantity(item.quantity)} (item ID: {item.id})\n\n{format_cart(pos_session)}")

        elif name == "pos_add_loyalty_item":
            item = pos_session.add_loyalty_item(
                offer_id=int(arguments["offer_id"]),
                action=LoyaltyAction(arguments["action"]),
                amount=str(arguments.get("amount", "0")),
                quantity=str(arguments.get("quantity", "1")),
                note=arguments.get("note"),
            )
            return text(f"Added {item.display_label} (item ID: {item.id})\n\n{format_cart(pos_session)}")

        elif name == "pos_remove_item":
            item_id = arguments["item_id"]
            if pos_session.remove_item(item_id):
                return text(f"Removed item {item_id}\n\n{format_cart(pos_session)}")
            return text(f"Item {item_id} not found in cart")

        elif name == "pos_set_redemption":
            pos_session.set_redemption(bool(arguments["redeem"]))
            return text(format_cart(pos_session))

        elif name == "pos_get_cart":
            return text(format_cart(pos_session))

        elif name == "pos_submit":
            result = await pos_session.submit()
            if result is None:
                return text("A submission is already in progress")

            lines = [
                "Sale recorded successfully",
                f"Total charged: {currency(result.totals.amount_due)}",
                f"Points applied: {currency(result.totals.redemption_applied)}",
                f"Balance after: {currency(result.receipt.balance_after)}",
            ]
            if result.loyalty_failures:
                lines.append(f"\n{len(result.loyalty_failures)} loyalty action(s) could not be recorded:")
                for outcome in result.loyalty_failures:
                    lines.append(f"  - {outcome.item.display_label}: {outcome.error}")
            lines.append("\nUse pos_send_receipt to send the receipt over WhatsApp.")
            return text("\n".join(lines))

        elif name == "pos_send_receipt":
            url = await pos_session.send_receipt()
            if url is None:
                return text("Could not open WhatsApp. The transaction is recorded.")
            return text(f"Receipt opened in WhatsApp:\n{url}")

        elif name == "pos_reset":
            pos_session.reset()
            return text("Transaction cleared")

        else:
            return text(f"Unknown tool: {name}")

    except PosError as e:
        return text(f"Error: {e}")
    except Exception as e:
        logger.error(f"Error executing tool {name}: {e}", exc_info=True)
        return text(f"Error: {str(e)}")


async def main() -> None:
    """Main entry point for the MCP server."""
    global settings, auth_manager, api_client, pos_session, credentials

    settings = Settings.from_env()
    logging.basicConfig(level=settings.logging_level)

    auth_manager, api_client, pos_session = build_session(settings)
    logger.info(f"Using loyalty backend at {settings.api_url}")

    credentials = settings.credentials
    if credentials:
        logger.info(f"Credentials loaded from environment for: {credentials.phone}")
    else:
        logger.warning("No credentials found in environment variables (LOYALTY_POS_PHONE, LOYALTY_POS_PASSWORD)")
        logger.warning("POS operations will require manual login via pos_login tool")

    logger.info("Starting Loyalty POS MCP Server...")

    from mcp.server.stdio import stdio_server

    try:
        async with stdio_server() as (read_stream, write_stream):
            await app.run(
                read_stream,
                write_stream,
                app.create_initialization_options(),
            )
    finally:
        await api_client.close()


if __name__ == "__main__":
    asyncio.run(main())
