"""Shared fixtures: an in-memory loyalty backend and ready-made engine objects."""

import asyncio
from decimal import Decimal
from typing import Any, Optional

import pytest

from loyalty_pos_server.auth import AuthManager
from loyalty_pos_server.models import (
    AuthCredentials,
    Business,
    BusinessConfig,
    BusinessConfigResponse,
    CustomerContext,
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
    Validity,
)
from loyalty_pos_server.receipt import LinkOpener, MessagingDispatcher
from loyalty_pos_server.session import PosSession

CUSTOMER_PHONE = "5512345678"
OPERATOR_PHONE = "5599990000"


def make_business(allow_custom_loyalty: bool = True) -> Business:
    return Business(
        id=7,
        name="Café Central",
        config=BusinessConfig(id=1, active=True, allow_custom_loyalty=allow_custom_loyalty),
    )


def make_offers() -> list[LoyaltyOffer]:
    return [
        LoyaltyOffer(id=1, business_id=7, name="Café gratis", target=Decimal("10"), active=True),
        LoyaltyOffer(id=2, business_id=7, name="Pan dulce", target=Decimal("5"), active=True),
        LoyaltyOffer(id=3, business_id=7, name="Retirada", target=Decimal("5"), active=False),
    ]


class FakeLoyaltyApi:
    """
    Stand-in for LoyaltyApiClient.

    Records every call as ``(method, argument)`` in ``calls``. Failures are
    configured per method: ``fail[name]`` is either an exception to raise or
    a message to reject with. ``delays[offer_id]`` makes a loyalty request
    for that offer wait before answering.
    ``slow[name]`` does the same for the customer and sale batch calls.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.fail: dict[str, Any] = {}
        self.delays: dict[int, float] = {}
        self.slow: dict[str, float] = {}
        self.completed: list[int] = []
        self.business = make_business()
        self.offers = make_offers()
        self.customer_balance = Decimal("30.00")
        self.operator = OperatorIdentity(phone=OPERATOR_PHONE, name="Ana", role="Admin")
        self.closed = False

    async def close(self) -> None:
        self.closed = True

    def _check(self, name: str) -> Optional[str]:
        failure = self.fail.get(name)
        if isinstance(failure, Exception):
            raise failure
        return failure

    async def login(self, credentials) -> LoginResponse:
        self.calls.append(("login", credentials.phone))
        rejection = self._check("login")
        if rejection:
            return LoginResponse(status=401, success=False, message=rejection)
        return LoginResponse(status=200, success=True, message="ok", token="tok", operator=self.operator)

    async def get_business_config(self, phone: str) -> BusinessConfigResponse:
        self.calls.append(("get_business_config", phone))
        rejection = self._check("get_business_config")
        if rejection:
            return BusinessConfigResponse(status=404, success=False, message=rejection)
        return BusinessConfigResponse(status=200, success=True, business=self.business)

    async def get_customer_points(self, phone: str, business_id: int) -> CustomerPointsResponse:
        self.calls.append(("get_customer_points", phone))
        await asyncio.sleep(self.slow.get("get_customer_points", 0))
        rejection = self._check("get_customer_points")
        if rejection:
            return CustomerPointsResponse(status=404, success=False, message=rejection)
        customer = CustomerPoints(name="Luis", phone=phone, balance=self.customer_balance)
        return CustomerPointsResponse(status=200, success=True, customer=customer)

    async def submit_sale_batch(self, payload: SaleBatchPayload) -> SaleBatchResponse:
        self.calls.append(("submit_sale_batch", payload))
        await asyncio.sleep(self.slow.get("submit_sale_batch", 0))
        rejection = self._check("submit_sale_batch")
        if rejection:
            return SaleBatchResponse(status=400, success=False, message=rejection)
        return SaleBatchResponse(status=201, success=True, message="Ventas registradas", ids=["1"])

    async def list_offers(self, business_id: int) -> OfferListResponse:
        self.calls.append(("list_offers", business_id))
        rejection = self._check("list_offers")
        if rejection:
            return OfferListResponse(status=500, success=False, message=rejection)
        return OfferListResponse(status=200, success=True, offers=self.offers)

    async def get_progress(self, business_id: int, customer_phone: str, offer_id: int) -> ProgressResponse:
        self.calls.append(("get_progress", offer_id))
        rejection = self._check("get_progress")
        if rejection:
            return ProgressResponse(status=404, success=False, message=rejection)
        progress = LoyaltyProgress(
            exists=True,
            accumulated=Decimal("3"),
            target=Decimal("10"),
            percent=Decimal("30"),
            offer_id=offer_id,
            customer_phone=customer_phone,
        )
        return ProgressResponse(status=200, success=True, progress=progress)

    async def accumulate(self, request: LoyaltyActionRequest) -> LoyaltyActionResponse:
        return await self._loyalty("accumulate", request)

    async def redeem(self, request: LoyaltyActionRequest) -> LoyaltyActionResponse:
        return await self._loyalty("redeem", request)

    async def _loyalty(self, name: str, request: LoyaltyActionRequest) -> LoyaltyActionResponse:
        self.calls.append((name, request))
        delay = self.delays.get(request.offer_id)
        if delay:
            await asyncio.sleep(delay)
        self.completed.append(request.offer_id)
        rejection = self._check(name)
        if rejection:
            return LoyaltyActionResponse(status=400, success=False, message=rejection)
        progress = LoyaltyProgress(exists=True, percent=Decimal("40"), status="Activo", offer_id=request.offer_id)
        return LoyaltyActionResponse(status=200, success=True, progress=progress)

    def called(self, name: str) -> list[Any]:
        return [arg for method, arg in self.calls if method == name]


class RecordingOpener(LinkOpener):
    """Link opener that records URLs; native links are accepted when ``native`` is set."""

    def __init__(self, native: bool = False, error: Optional[Exception] = None) -> None:
        self.native = native
        self.error = error
        self.opened: list[str] = []

    async def can_open(self, url: str) -> bool:
        return self.native or url.startswith("https://")

    async def open(self, url: str) -> None:
        if self.error:
            raise self.error
        self.opened.append(url)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("LOYALTY_POS_TOKEN", "LOYALTY_POS_PHONE", "LOYALTY_POS_PASSWORD", "LOYALTY_POS_ROLE"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def fake_api() -> FakeLoyaltyApi:
    return FakeLoyaltyApi()


@pytest.fixture
def auth_manager(tmp_path) -> AuthManager:
    return AuthManager(session_file=str(tmp_path / "session.json"))


@pytest.fixture
def operator() -> OperatorIdentity:
    return OperatorIdentity(phone=OPERATOR_PHONE, name="Ana", role="Admin")


@pytest.fixture
def business() -> Business:
    return make_business()


@pytest.fixture
def customer() -> CustomerContext:
    return CustomerContext(phone=CUSTOMER_PHONE, name="Luis", balance=Decimal("30.00"), validity=Validity.VALID)


@pytest.fixture
def opener() -> RecordingOpener:
    return RecordingOpener()


@pytest.fixture
def pos_session(fake_api, auth_manager, opener) -> PosSession:
    """Logged-in session with the business loaded and a validated customer."""
    session = PosSession(fake_api, auth_manager, MessagingDispatcher(opener))
    asyncio.run(session.login(AuthCredentials(phone=OPERATOR_PHONE)))
    asyncio.run(session.load_business())
    asyncio.run(session.lookup_customer(CUSTOMER_PHONE))
    fake_api.calls.clear()
    return session
