"""Data models for the loyalty POS engine."""

import uuid
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .money import ZERO, fix_money

STAFF_ROLES = ("Admin", "SuperAdmin")


class Validity(str, Enum):
    """Tri-state result of a customer lookup."""

    UNKNOWN = "unknown"
    VALID = "valid"
    INVALID = "invalid"


class LoyaltyAction(str, Enum):
    """What a loyalty line does to the customer's progress."""

    ACCUMULATE = "accumulate"
    REDEEM = "redeem"

    @property
    def wire_value(self) -> str:
        return "acumular" if self is LoyaltyAction.ACCUMULATE else "canjear"

    @property
    def past_tense(self) -> str:
        return "Acumulado" if self is LoyaltyAction.ACCUMULATE else "Canjeado"


class AccrualType(str, Enum):
    """How progress toward an offer's target is counted."""

    PER_PURCHASE = "Compra"
    BY_AMOUNT = "Monto"
    BY_COUNT = "Cantidad"


# ---------- Cart ----------

class SaleKind(BaseModel):
    """Plain monetary sale."""

    type: Literal["sale"] = "sale"


class LoyaltyActionKind(BaseModel):
    """Stamp action against a custom loyalty offer."""

    type: Literal["loyalty"] = "loyalty"
    offer_id: int
    offer_name: Optional[str] = None
    action: Optional[LoyaltyAction] = None


ItemKind = Annotated[Union[SaleKind, LoyaltyActionKind], Field(discriminator="type")]


class LineItem(BaseModel):
    """A single cart entry."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, description="Stable item key")
    label: str = Field(description="Article or offer name")
    note: Optional[str] = Field(None, description="Free-text description")
    unit_amount: Decimal = Field(default=ZERO, description="Price per unit, rounded to cents")
    quantity: Decimal = Field(default=Decimal("1"), description="Units, may be fractional")
    kind: ItemKind = Field(default_factory=SaleKind)

    @field_validator("unit_amount", mode="before")
    @classmethod
    def _round_amount(cls, value: Any) -> Decimal:
        return fix_money(value)

    @field_validator("label", mode="before")
    @classmethod
    def _strip_label(cls, value: Any) -> str:
        return str(value or "").strip()

    @field_validator("note", mode="before")
    @classmethod
    def _blank_note(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @classmethod
    def sale(
        cls,
        label: str,
        unit_amount: Any,
        quantity: Any = Decimal("1"),
        note: Optional[str] = None,
    ) -> "LineItem":
        return cls(label=label, unit_amount=unit_amount, quantity=quantity, note=note)

    @classmethod
    def loyalty(
        cls,
        label: str,
        offer_id: int,
        action: Optional[LoyaltyAction],
        unit_amount: Any = ZERO,
        quantity: Any = Decimal("1"),
        note: Optional[str] = None,
    ) -> "LineItem":
        return cls(
            label=label,
            unit_amount=unit_amount,
            quantity=quantity,
            note=note,
            kind=LoyaltyActionKind(offer_id=offer_id, offer_name=label, action=action),
        )

    @property
    def is_sale(self) -> bool:
        return isinstance(self.kind, SaleKind)

    @property
    def is_loyalty(self) -> bool:
        return isinstance(self.kind, LoyaltyActionKind)

    @property
    def subtotal(self) -> Decimal:
        return fix_money(self.unit_amount * self.quantity)

    @property
    def display_label(self) -> str:
        """Label annotated with the loyalty action, as shown on receipts."""
        if isinstance(self.kind, LoyaltyActionKind) and self.kind.action is not None:
            return f"{self.label} ({self.kind.action.wire_value})"
        return self.label


# ---------- Session context ----------

class OperatorIdentity(BaseModel):
    """Staff member recording the transaction."""

    phone: str = Field(description="Operator phone number")
    name: str = Field(default="App", description="Operator display name")
    role: str = Field(default="User", description="User, Admin or SuperAdmin")

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


class CustomerContext(BaseModel):
    """Customer being served in the current transaction."""

    phone: str = ""
    name: Optional[str] = None
    balance: Decimal = ZERO
    validity: Validity = Validity.UNKNOWN

    @property
    def is_valid(self) -> bool:
        return self.validity is Validity.VALID

    def reset(self, phone: str = "") -> None:
        """Forget everything known about the customer, optionally for a new phone."""
        self.phone = phone
        self.name = None
        self.balance = ZERO
        self.validity = Validity.UNKNOWN

    def invalidate(self) -> None:
        self.name = None
        self.balance = ZERO
        self.validity = Validity.INVALID


class BusinessConfig(BaseModel):
    """Per-business loyalty settings."""

    id: int = 0
    sales_percentage: Decimal = ZERO
    logo_url: Optional[str] = None
    active: bool = False
    allow_custom_loyalty: bool = False


class Business(BaseModel):
    """Business the operator works for."""

    id: int
    name: str
    category: Optional[str] = None
    description: Optional[str] = None
    config: Optional[BusinessConfig] = None

    @property
    def allows_custom_loyalty(self) -> bool:
        return bool(self.config and self.config.allow_custom_loyalty)


class LoyaltyOffer(BaseModel):
    """Custom loyalty program defined by a business."""

    id: int
    business_id: int = 0
    name: str
    description: Optional[str] = None
    accrual_type: AccrualType = AccrualType.PER_PURCHASE
    target: Decimal = ZERO
    per_purchase_percent: Decimal = ZERO
    reward: Optional[str] = None
    active: bool = False


class LoyaltyProgress(BaseModel):
    """Server-derived progress of one customer toward one offer."""

    exists: bool = False
    accumulated: Decimal = ZERO
    target: Decimal = ZERO
    percent: Decimal = ZERO
    status: str = "Activo"
    offer_id: int = 0
    offer_name: str = ""
    customer_phone: str = ""
    last_updated: Optional[str] = None


class CustomerPoints(BaseModel):
    """Customer record returned by the balance lookup."""

    name: Optional[str] = None
    phone: Optional[str] = None
    balance: Decimal = ZERO


# ---------- Totals, receipt and results ----------

class TransactionTotals(BaseModel):
    """Amounts derived from the cart."""

    model_config = ConfigDict(frozen=True)

    sale_subtotal: Decimal = ZERO
    loyalty_subtotal: Decimal = ZERO
    redemption_applied: Decimal = ZERO
    amount_due: Decimal = ZERO
    projected_balance: Decimal = ZERO

    @property
    def combined_total(self) -> Decimal:
        return fix_money(self.sale_subtotal + self.loyalty_subtotal)


class LoyaltyActionOutcome(BaseModel):
    """Result of one loyalty request."""

    item: LineItem
    ok: bool
    progress: Optional[LoyaltyProgress] = None
    error: Optional[str] = None

    @property
    def action(self) -> Optional[LoyaltyAction]:
        kind = self.item.kind
        return kind.action if isinstance(kind, LoyaltyActionKind) else None


class ReceiptLine(BaseModel):
    """One printed receipt line."""

    label: str
    quantity: Decimal
    unit_amount: Decimal
    subtotal: Decimal
    action: Optional[LoyaltyAction] = None


class TransactionReceipt(BaseModel):
    """Everything the customer-facing message needs."""

    business_name: str = ""
    customer_phone: str
    customer_name: Optional[str] = None
    combined_total: Decimal = ZERO
    sale_subtotal: Decimal = ZERO
    loyalty_subtotal: Decimal = ZERO
    redemption_applied: Decimal = ZERO
    amount_charged: Decimal = ZERO
    balance_before: Decimal = ZERO
    balance_after: Decimal = ZERO
    lines: list[ReceiptLine] = Field(default_factory=list)
    loyalty_outcomes: list[LoyaltyActionOutcome] = Field(default_factory=list)


class SubmissionResult(BaseModel):
    """Outcome of a completed submission."""

    totals: TransactionTotals
    receipt: TransactionReceipt
    sale_submitted: bool = False
    loyalty_outcomes: list[LoyaltyActionOutcome] = Field(default_factory=list)

    @property
    def loyalty_failures(self) -> list[LoyaltyActionOutcome]:
        return [outcome for outcome in self.loyalty_outcomes if not outcome.ok]


class Notification(BaseModel):
    """User-facing notice for a terminal outcome."""

    level: Literal["success", "error", "info"]
    message: str


# ---------- Wire requests ----------

class WireModel(BaseModel):
    """Request body sent to the backend using its field names."""

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class SaleBatchItem(WireModel):
    article: str = Field(alias="Articulo")
    description: Optional[str] = Field(None, alias="Descripcion")
    amount: float = Field(alias="Monto")
    quantity: float = Field(alias="Cantidad")
    points_applied: bool = Field(alias="PuntosAplicados")
    balance_before: float = Field(alias="SaldoAntes")


class SaleBatchPayload(WireModel):
    customer_phone: str = Field(alias="TelefonoCliente")
    business_id: int = Field(alias="NegocioId")
    created_by: str = Field(alias="CreadoPor")
    items: list[SaleBatchItem] = Field(alias="Ventas")


class LoyaltyActionRequest(WireModel):
    user: str = Field(alias="usuario")
    operator_phone: Optional[str] = Field(None, alias="usuarioOperacion")
    customer_phone: str = Field(alias="telefonoCliente")
    offer_id: int = Field(alias="idProductoCustom")
    quantity: Optional[float] = Field(None, alias="cantidad")
    amount: Optional[float] = Field(None, alias="monto")
    description: Optional[str] = Field(None, alias="descripcion")
    business_id: int = Field(alias="idNegocio")


# ---------- Normalized backend responses ----------

class ApiResponse(BaseModel):
    """Status envelope common to every endpoint."""

    status: Optional[int] = None
    success: bool = False
    message: str = ""


class LoginResponse(ApiResponse):
    token: Optional[str] = None
    operator: Optional[OperatorIdentity] = None


class BusinessConfigResponse(ApiResponse):
    business: Optional[Business] = None


class CustomerPointsResponse(ApiResponse):
    customer: Optional[CustomerPoints] = None


class SaleBatchResponse(ApiResponse):
    ids: list[str] = Field(default_factory=list)


class OfferListResponse(ApiResponse):
    offers: list[LoyaltyOffer] = Field(default_factory=list)


class ProgressResponse(ApiResponse):
    progress: Optional[LoyaltyProgress] = None


class LoyaltyActionResponse(ApiResponse):
    progress: Optional[LoyaltyProgress] = None


# ---------- Operator session ----------

class AuthCredentials(BaseModel):
    """Operator login credentials."""

    phone: str
    password: Optional[str] = None


class SessionData(BaseModel):
    """Persisted operator session."""

    token: Optional[str] = Field(None, description="Bearer token")
    operator: Optional[OperatorIdentity] = Field(None, description="Logged-in operator")
    is_authenticated: bool = Field(default=False, description="Authentication status")
