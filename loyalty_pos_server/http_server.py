"""HTTP server for the Loyalty POS MCP Server."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from .api_client import LoyaltyApiClient
from .auth import AuthManager
from .config import Settings
from .errors import (
    AuthenticationError,
    LookupFailed,
    PosError,
    PreconditionError,
    SaleBatchFailed,
    TransportError,
    ValidationError,
)
from .models import AuthCredentials, LoyaltyAction
from .session import PosSession, build_session

logger = logging.getLogger("loyalty-pos-http-server")

# Global state
settings: Settings
auth_manager: AuthManager
api_client: LoyaltyApiClient
pos_session: PosSession
credentials: Optional[AuthCredentials] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown."""
    global settings, auth_manager, api_client, pos_session, credentials

    # Startup
    settings = Settings.from_env()
    logging.basicConfig(level=settings.logging_level)
    logger.info("Starting Loyalty POS HTTP Server...")
    auth_manager, api_client, pos_session = build_session(settings)
    logger.info(f"Using loyalty backend at {settings.api_url}")

    credentials = settings.credentials
    if credentials:
        logger.info(f"Credentials loaded from environment for: {credentials.phone}")
    else:
        logger.warning("No credentials found in environment variables (LOYALTY_POS_PHONE, LOYALTY_POS_PASSWORD)")

    yield

    # Shutdown
    logger.info("Shutting down Loyalty POS HTTP Server...")
    await api_client.close()


app = FastAPI(
    title="Loyalty POS MCP Server",
    description="HTTP API for recording loyalty point-of-sale transactions",
    version="0.1.0",
    lifespan=lifespan,
)


# Request/Response Models
class LoginRequest(BaseModel):
    phone: str
    password: Optional[str] = None


class LoginResponse(BaseModel):
    success: bool
    message: str


class LookupRequest(BaseModel):
    phone: str


class AddSaleRequest(BaseModel):
    article: str
    amount: str
    quantity: str = "1"
    note: Optional[str] = None


class AddLoyaltyRequest(BaseModel):
    offer_id: int
    action: LoyaltyAction
    amount: str = "0"
    quantity: str = "1"
    note: Optional[str] = None


class RemoveItemRequest(BaseModel):
    item_id: str


class RedemptionRequest(BaseModel):
    redeem: bool


def http_error(e: PosError) -> HTTPException:
    """Map an engine error to an HTTP error."""
    if isinstance(e, AuthenticationError):
        return HTTPException(status_code=401, detail=str(e))
    if isinstance(e, ValidationError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, PreconditionError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, LookupFailed):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (SaleBatchFailed, TransportError)):
        return HTTPException(status_code=502, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


async def require_session() -> PosSession:
    """Authenticated session with its business loaded."""
    if not auth_manager.is_authenticated():
        if credentials is None:
            raise AuthenticationError("Not authenticated")
        await pos_session.login(credentials)
    if pos_session.business is None:
        await pos_session.load_business()
    return pos_session


def cart_view(session: PosSession) -> dict:
    return {
        "customer": session.customer.model_dump(mode="json"),
        "items": [item.model_dump(mode="json") for item in session.cart.items()],
        "redemption_requested": session.redemption_requested,
        "totals": session.totals().model_dump(mode="json"),
    }


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Loyalty POS MCP Server",
        "version": "0.1.0",
        "description": "HTTP API for recording loyalty point-of-sale transactions",
        "mcp_compatible": True,
        "endpoints": {
            "docs": "/docs",
            "health": "/health",
            "auth": {
                "login": "POST /auth/login",
                "logout": "POST /auth/logout",
                "status": "GET /auth/status",
            },
            "business": "GET /business",
            "customer": {"lookup": "POST /customer/lookup"},
            "offers": {
                "list": "GET /offers",
                "progress": "GET /offers/{offer_id}/progress",
            },
            "cart": {
                "get": "GET /cart",
                "add_sale": "POST /cart/sale",
                "add_loyalty": "POST /cart/loyalty",
                "remove": "POST /cart/remove",
                "redemption": "POST /cart/redemption",
            },
            "submit": "POST /submit",
            "receipt": "POST /receipt/send",
            "reset": "POST /reset",
        },
        "authenticated": auth_manager.is_authenticated() if auth_manager else False,
    }


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "authenticated": auth_manager.is_authenticated() if auth_manager else False,
    }


# Authentication endpoints
@app.post("/auth/login", response_model=LoginResponse)
async def login(request: LoginRequest):
    """Log in as an operator."""
    try:
        operator = await pos_session.login(AuthCredentials(phone=request.phone, password=request.password))
        return LoginResponse(success=True, message=f"Successfully logged in as {operator.name}")
    except AuthenticationError as e:
        return LoginResponse(success=False, message=str(e))
    except PosError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Login error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/auth/logout")
async def logout():
    """Log out and forget the current transaction."""
    pos_session.logout()
    return {"success": True, "message": "Successfully logged out"}


@app.get("/auth/status")
async def auth_status():
    """Get authentication status."""
    operator = auth_manager.get_operator()
    return {
        "authenticated": operator is not None,
        "operator": operator.model_dump() if operator else None,
    }


# Business and customer endpoints
@app.get("/business")
async def get_business():
    """Load the operator's business and its active loyalty offers."""
    try:
        session = await require_session()
        business = await session.load_business()
        return {"business": business.model_dump(mode="json"), "offer_count": len(session.offers)}
    except PosError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Business error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/customer/lookup")
async def lookup_customer(request: LookupRequest):
    """Look up a customer by phone."""
    try:
        session = await require_session()
        customer = await session.lookup_customer(request.phone)
        return customer.model_dump(mode="json")
    except PosError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Lookup error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/offers")
async def list_offers():
    """Active loyalty offers of the business."""
    try:
        session = await require_session()
        return {
            "count": len(session.offers),
            "offers": [offer.model_dump(mode="json") for offer in session.offers],
        }
    except PosError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Offers error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/offers/{offer_id}/progress")
async def get_progress(offer_id: int):
    """Current customer's progress toward an offer."""
    try:
        session = await require_session()
        progress = await session.select_offer(offer_id)
        return {"progress": progress.model_dump(mode="json") if progress else None}
    except PosError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Progress error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


# Cart endpoints
@app.get("/cart")
async def get_cart():
    """Current cart and totals."""
    return cart_view(pos_session)


@app.post("/cart/sale")
async def add_sale_item(request: AddSaleRequest):
    """Add a monetary sale line."""
    try:
        session = await require_session()
        item = session.add_sale_item(request.article, request.amount, request.quantity, request.note)
        return {"success": True, "item_id": item.id, "cart": cart_view(session)}
    except PosError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Add sale item error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/cart/loyalty")
async def add_loyalty_item(request: AddLoyaltyRequest):
    """Add a loyalty action line."""
    try:
        session = await require_session()
        item = session.add_loyalty_item(
            offer_id=request.offer_id,
            action=request.action,
            amount=request.amount,
            quantity=request.quantity,
            note=request.note,
        )
        return {"success": True, "item_id": item.id, "cart": cart_view(session)}
    except PosError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Add loyalty item error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/cart/remove")
async def remove_item(request: RemoveItemRequest):
    """Remove a cart line."""
    if pos_session.remove_item(request.item_id):
        return {"success": True, "cart": cart_view(pos_session)}
    return {"success": False, "message": f"Item {request.item_id} not found"}


@app.post("/cart/redemption")
async def set_redemption(request: RedemptionRequest):
    """Apply or stop applying the customer's points."""
    pos_session.set_redemption(request.redeem)
    return cart_view(pos_session)


# Submission endpoints
@app.post("/submit")
async def submit():
    """Record the transaction."""
    try:
        session = await require_session()
        result = await session.submit()
        if result is None:
            raise HTTPException(status_code=409, detail="A submission is already in progress")
        return {
            "success": True,
            "message": session.last_notification.message if session.last_notification else "",
            "totals": result.totals.model_dump(mode="json"),
            "receipt": result.receipt.model_dump(mode="json"),
            "loyalty_failures": [
                {"item_id": outcome.item.id, "label": outcome.item.label, "error": outcome.error}
                for outcome in result.loyalty_failures
            ],
        }
    except HTTPException:
        raise
    except PosError as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Submit error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/receipt/send")
async def send_receipt():
    """Send the last receipt over WhatsApp and start a new transaction."""
    try:
        url = await pos_session.send_receipt()
        return {"success": url is not None, "url": url}
    except PosError as e:
        raise http_error(e)


@app.post("/reset")
async def reset():
    """Abandon the current transaction."""
    pos_session.reset()
    return {"success": True, "message": "Transaction cleared"}


def run_http_server(host: str = "0.0.0.0", port: int = 8000, reload: bool = False):
    """
    Run the HTTP server.

    Args:
        host: Host to bind to (default: 0.0.0.0)
        port: Port to bind to (default: 8000)
        reload: Enable hot reloading (default: False)
    """
    import uvicorn

    logger.info(f"Starting server on {host}:{port} (reload={'enabled' if reload else 'disabled'})")

    if reload:
        uvicorn.run(
            "loyalty_pos_server.http_server:app",
            host=host,
            port=port,
            reload=True,
            reload_dirs=["loyalty_pos_server"],
            log_level="info",
        )
    else:
        uvicorn.run(app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    run_http_server(reload=True)
