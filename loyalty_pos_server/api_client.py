"""Loyalty backend API client."""

import logging
from typing import Any, Optional

import httpx

from .auth import AuthManager
from .errors import TransportError
from .models import (
    AccrualType,
    AuthCredentials,
    Business,
    BusinessConfig,
    BusinessConfigResponse,
    CustomerPoints,
    CustomerPointsResponse,
    LoginResponse,
    LoyaltyActionRequest,
    LoyaltyActionResponse,
    LoyaltyOffer,
    LoyaltyProgress,
    OfferListResponse,
    OperatorIdentity,
    ProgressResponse,
    SaleBatchPayload,
    SaleBatchResponse,
)
from .money import fix_money, to_decimal

logger = logging.getLogger(__name__)


def _pick(raw: dict[str, Any], key: str, default: Any = None) -> Any:
    """Read ``key`` in camelCase or PascalCase, the backend sends both."""
    if not isinstance(raw, dict):
        return default
    for candidate in (key, key[:1].upper() + key[1:]):
        value = raw.get(candidate)
        if value is not None:
            return value
    return default


def _envelope(http_status: int, body: dict[str, Any]) -> dict[str, Any]:
    """Normalize the status envelope shared by every endpoint."""
    status = body.get("status")
    if not isinstance(status, int) or isinstance(status, bool):
        status = http_status
    message = body.get("message")
    if message is None:
        message = "Operation completed successfully." if status == 201 else "Operation finished"
    success = body.get("success")
    if not isinstance(success, bool):
        success = 200 <= status < 300
    return {"status": status, "success": success, "message": str(message)}


def _map_business(raw: dict[str, Any]) -> Business:
    config_raw = _pick(raw, "configuracion")
    config = None
    if isinstance(config_raw, dict):
        config = BusinessConfig(
            id=int(_pick(config_raw, "idConfiguracionNegocio", 0)),
            sales_percentage=to_decimal(_pick(config_raw, "porcentajeVentas", 0)),
            logo_url=_pick(config_raw, "urlLogo"),
            active=bool(_pick(config_raw, "activo", False)),
            allow_custom_loyalty=bool(_pick(config_raw, "permitirConfiguracionPersonalizada", False)),
        )
    return Business(
        id=int(_pick(raw, "idNegocio", 0)),
        name=str(_pick(raw, "nombre", "")),
        category=_pick(raw, "categoria"),
        description=_pick(raw, "descripcion"),
        config=config,
    )


def _map_offer(raw: dict[str, Any]) -> LoyaltyOffer:
    accrual = _pick(raw, "tipoAcumulacion", AccrualType.PER_PURCHASE.value)
    try:
        accrual_type = AccrualType(accrual)
    except ValueError:
        logger.warning(f"Unknown accrual type {accrual!r}, assuming per purchase")
        accrual_type = AccrualType.PER_PURCHASE
    return LoyaltyOffer(
        id=int(_pick(raw, "idProductoCustom", 0)),
        business_id=int(_pick(raw, "idNegocio", 0)),
        name=str(_pick(raw, "nombreProducto", "")),
        description=_pick(raw, "descripcion"),
        accrual_type=accrual_type,
        target=to_decimal(_pick(raw, "meta", 0)),
        per_purchase_percent=to_decimal(_pick(raw, "porcentajePorCompra", 0)),
        reward=_pick(raw, "recompensa"),
        active=bool(_pick(raw, "estado", False)),
    )


def _map_progress(raw: dict[str, Any]) -> LoyaltyProgress:
    return LoyaltyProgress(
        exists=bool(_pick(raw, "existeProgreso", False)),
        accumulated=to_decimal(_pick(raw, "acumulado", 0)),
        target=to_decimal(_pick(raw, "meta", 0)),
        percent=to_decimal(_pick(raw, "porcentaje", 0)),
        status=str(_pick(raw, "estado", "Activo")),
        offer_id=int(_pick(raw, "idProductoCustom", 0)),
        offer_name=str(_pick(raw, "productoNombre", "")),
        customer_phone=str(_pick(raw, "telefonoCliente", "")),
        last_updated=_pick(raw, "ultimaActualizacion"),
    )


def _map_operator(raw: Any, phone: str, role: Optional[str]) -> OperatorIdentity:
    user = raw if isinstance(raw, dict) else {}
    return OperatorIdentity(
        phone=str(_pick(user, "telefono", phone)),
        name=str(_pick(user, "nombre", "App")),
        role=str(role or _pick(user, "role", "User")),
    )


class LoyaltyApiClient:
    """
    Client for the loyalty backend.

    Every response is normalized into a per-endpoint model before it reaches
    the engine. HTTP error statuses are reported through ``success``/``status``;
    only network failures and unreadable bodies raise ``TransportError``.
    """

    BASE_URL = "http://localhost:5137/api"

    def __init__(
        self,
        auth_manager: AuthManager,
        base_url: Optional[str] = None,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the API client.

        Args:
            auth_manager: Source of the operator's bearer token
            base_url: Backend root, defaults to BASE_URL
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.auth_manager = auth_manager
        self.client = httpx.AsyncClient(
            base_url=base_url or self.BASE_URL,
            timeout=timeout,
            transport=transport,
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )

    async def close(self) -> None:
        await self.client.aclose()

    def _auth_headers(self) -> dict[str, str]:
        token = self.auth_manager.get_token()
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def _request(
        self, method: str, path: str, authenticated: bool = True, **kwargs: Any
    ) -> tuple[int, dict[str, Any]]:
        """Send a request and return ``(http_status, json_body)``."""
        headers = self._auth_headers() if authenticated else {}
        try:
            response = await self.client.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"{method} {path} failed: {e}")
            raise TransportError("Network Error") from e

        logger.debug(f"{method} {path} -> {response.status_code}")

        if not response.content:
            return response.status_code, {}
        try:
            body = response.json()
        except ValueError as e:
            raise TransportError(
                f"Request failed with status code {response.status_code}",
                status=response.status_code,
            ) from e

        if not isinstance(body, dict):
            body = {"data": body}
        return response.status_code, body

    async def login(self, credentials: AuthCredentials) -> LoginResponse:
        """Authenticate an operator by phone (and password when the account has one)."""
        payload: dict[str, Any] = {"numeroTelefono": credentials.phone}
        if credentials.password:
            payload["password"] = credentials.password

        http_status, body = await self._request("POST", "/Auth/login", authenticated=False, json=payload)
        envelope = _envelope(http_status, body)
        # The login endpoint reports through the HTTP status, not the body
        envelope["status"] = http_status
        envelope["success"] = 200 <= http_status < 300 and bool(body.get("token"))

        operator = None
        if envelope["success"]:
            operator = _map_operator(body.get("user"), credentials.phone, body.get("role"))
            if body.get("telefono"):
                operator.phone = str(body["telefono"])
        return LoginResponse(**envelope, token=body.get("token"), operator=operator)

    async def get_business_config(self, phone: str) -> BusinessConfigResponse:
        """Business (and its loyalty settings) managed by the operator with ``phone``."""
        http_status, body = await self._request(
            "GET", "/Negocio/GetNegocioConfigByTelefonoAsync", params={"telefono": phone}
        )
        envelope = _envelope(http_status, body)
        data = body.get("data")
        business = _map_business(data) if isinstance(data, dict) else None
        if business is None:
            envelope["success"] = False
        return BusinessConfigResponse(**envelope, business=business)

    async def get_customer_points(self, phone: str, business_id: int) -> CustomerPointsResponse:
        """Customer's name and redeemable balance at a business."""
        http_status, body = await self._request(
            "GET",
            "/User/GetUserPuntosByPhoneNumber",
            params={"phoneNumber": phone, "idNegocio": business_id},
        )
        envelope = _envelope(http_status, body)
        data = body.get("data")
        customer = None
        if isinstance(data, dict):
            customer = CustomerPoints(
                name=_pick(data, "nombre"),
                phone=_pick(data, "telefono"),
                balance=fix_money(_pick(data, "puntosAcumulados", 0)),
            )
        else:
            envelope["success"] = False
        return CustomerPointsResponse(**envelope, customer=customer)

    async def submit_sale_batch(self, payload: SaleBatchPayload) -> SaleBatchResponse:
        """Register all monetary sale lines of a transaction in one call."""
        http_status, body = await self._request(
            "POST", "/Sell/InsertManySellsByUserPhoneNumber", json=payload.to_wire()
        )
        envelope = _envelope(http_status, body)
        data = body.get("data")
        ids = [str(i) for i in _pick(data, "ids", [])] if isinstance(data, dict) else []
        return SaleBatchResponse(**envelope, ids=ids)

    async def list_offers(self, business_id: int) -> OfferListResponse:
        """Every custom loyalty offer of a business, active or not, in backend order."""
        http_status, body = await self._request(
            "GET", "/ProductosCustom/GetProductosCustomByIdNegocio", params={"idNegocio": business_id}
        )
        envelope = _envelope(http_status, body)
        data = body.get("data")
        offers = [_map_offer(raw) for raw in data if isinstance(raw, dict)] if isinstance(data, list) else []
        return OfferListResponse(**envelope, offers=offers)

    async def get_progress(self, business_id: int, customer_phone: str, offer_id: int) -> ProgressResponse:
        """Customer's progress toward one offer."""
        http_status, body = await self._request(
            "GET",
            "/ProductosCustom/GetProgresoCustom",
            params={
                "idNegocio": business_id,
                "telefonoCliente": customer_phone,
                "idProductoCustom": offer_id,
            },
        )
        envelope = _envelope(http_status, body)
        data = body.get("data")
        progress = _map_progress(data) if isinstance(data, dict) else None
        return ProgressResponse(**envelope, progress=progress)

    async def accumulate(self, request: LoyaltyActionRequest) -> LoyaltyActionResponse:
        """Add progress toward an offer."""
        return await self._loyalty_action("/ProductosCustom/AcumularProgresoCustom", request)

    async def redeem(self, request: LoyaltyActionRequest) -> LoyaltyActionResponse:
        """Redeem a completed offer."""
        return await self._loyalty_action("/ProductosCustom/CanjearProgresoCustom", request)

    async def _loyalty_action(self, path: str, request: LoyaltyActionRequest) -> LoyaltyActionResponse:
        http_status, body = await self._request("POST", path, json=request.to_wire())
        envelope = _envelope(http_status, body)
        data = body.get("data")
        progress = _map_progress(data) if isinstance(data, dict) else None
        return LoyaltyActionResponse(**envelope, progress=progress)
