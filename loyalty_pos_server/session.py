"""
Point-of-sale session.

Holds the state of one operator's sale screen: the business, the customer
being served, the cart and the loyalty picker. Every terminal outcome of
lookup, add and submit produces exactly one notification.
"""

import logging
from typing import Any, Optional

from .api_client import LoyaltyApiClient
from .auth import AuthManager
from .cart import CartLedger
from .catalog import LoyaltyCatalog
from .config import Settings
from .customer import CustomerLookup
from .errors import AuthenticationError, LookupFailed, PreconditionError, ValidationError
from .models import (
    AuthCredentials,
    Business,
    CustomerContext,
    LineItem,
    LoyaltyAction,
    LoyaltyOffer,
    LoyaltyProgress,
    Notification,
    OperatorIdentity,
    SubmissionResult,
    TransactionTotals,
)
from .money import ZERO, currency, only_digits, parse_amount, parse_quantity
from .orchestrator import SubmissionOrchestrator
from .receipt import MessagingDispatcher, ReceiptComposer
from .totals import calculate_totals

logger = logging.getLogger(__name__)


class PosSession:
    """State and actions of a point-of-sale screen."""

    def __init__(
        self,
        api: LoyaltyApiClient,
        auth_manager: AuthManager,
        dispatcher: Optional[MessagingDispatcher] = None,
    ) -> None:
        """
        Initialize the session.

        Args:
            api: Backend client shared by all collaborators
            auth_manager: Source of the operator identity
            dispatcher: WhatsApp dispatcher for receipts
        """
        self.api = api
        self.auth_manager = auth_manager
        self.customer_lookup = CustomerLookup(api)
        self.catalog = LoyaltyCatalog(api)
        self.orchestrator = SubmissionOrchestrator(api)
        self.receipts = ReceiptComposer(dispatcher or MessagingDispatcher())

        self.business: Optional[Business] = None
        self.offers: list[LoyaltyOffer] = []
        self.customer = CustomerContext()
        self.cart = CartLedger(self.customer)
        self.redemption_requested = False
        self.selected_offer: Optional[LoyaltyOffer] = None
        self.selected_action: Optional[LoyaltyAction] = None
        self.progress: Optional[LoyaltyProgress] = None
        self.last_result: Optional[SubmissionResult] = None
        self.notifications: list[Notification] = []

        self._generation = 0
        self._submitting = False

    # ---------- Notifications ----------

    def notify(self, level: str, message: str) -> Notification:
        notification = Notification(level=level, message=message)
        self.notifications.append(notification)
        log = logger.error if level == "error" else logger.info
        log(f"[{level}] {message}")
        return notification

    @property
    def last_notification(self) -> Optional[Notification]:
        return self.notifications[-1] if self.notifications else None

    # ---------- Operator and business ----------

    @property
    def operator(self) -> OperatorIdentity:
        operator = self.auth_manager.get_operator()
        if operator is None:
            raise AuthenticationError("Not authenticated. Please login first.")
        return operator

    async def login(self, credentials: AuthCredentials) -> OperatorIdentity:
        """Log an operator in and persist the session."""
        response = await self.api.login(credentials)
        if not response.success or not response.token or response.operator is None:
            self.notify("error", response.message or "Login failed")
            raise AuthenticationError(response.message or "Login failed")
        self.auth_manager.save_session(response.token, response.operator)
        self.notify("success", f"Logged in as {response.operator.name}")
        return response.operator

    def logout(self) -> None:
        self.auth_manager.clear_session()
        self.business = None
        self.offers = []
        self.reset()

    async def load_business(self) -> Business:
        """
        Load the operator's business and, when enabled, its loyalty offers.

        Raises:
            LookupFailed: If the backend has no business for the operator
            TransportError: Backend unreachable
        """
        try:
            response = await self.api.get_business_config(self.operator.phone)
        except Exception as e:
            self.notify("error", str(e) or "Could not load the business")
            raise
        if not response.success or response.business is None:
            self.notify("error", response.message or "Could not load the business")
            raise LookupFailed(response.message or "Could not load the business", response.status)

        self.business = response.business
        self.offers = []
        if self.business.allows_custom_loyalty:
            try:
                self.offers = await self.catalog.list_offers(self.business.id)
            except Exception as e:
                logger.warning(f"Could not load loyalty offers: {e}")
        logger.info(f"Business loaded: {self.business.name} (id={self.business.id}, offers={len(self.offers)})")
        return self.business

    def _require_business(self) -> Business:
        if self.business is None:
            raise PreconditionError("Business not loaded")
        return self.business

    # ---------- Customer ----------

    def set_phone(self, raw: str) -> str:
        """Normalize and set the customer phone. A different phone forgets the previous customer."""
        digits = only_digits(raw)
        if digits != self.customer.phone:
            # Results still in flight belong to the previous customer
            self._generation += 1
            self.customer.reset(digits)
            self.progress = None
        return digits

    async def lookup_customer(self, phone: Optional[str] = None) -> CustomerContext:
        """
        Look up the customer for the current (or given) phone.

        Raises:
            ValidationError: Phone is not 10 digits
            TransportError: Backend unreachable
        """
        if phone is not None:
            self.set_phone(phone)
        generation = self._generation
        try:
            business = self._require_business()
            self.customer.reset(self.customer.phone)
            found = await self.customer_lookup.lookup(CustomerContext(), self.customer.phone, business.id)
        except Exception as e:
            if generation == self._generation and not isinstance(e, (ValidationError, PreconditionError)):
                self.customer.invalidate()
            self.notify("error", str(e))
            raise

        if generation != self._generation:
            logger.info("Session was reset during customer lookup; discarding result")
            return self.customer

        self.customer.name = found.name
        self.customer.balance = found.balance
        self.customer.validity = found.validity

        if self.customer.is_valid:
            self.notify("success", f"Customer {self.customer.name}: balance {currency(self.customer.balance)}")
            await self._refresh_progress()
        else:
            self.notify("error", "Customer not found")
        return self.customer

    # ---------- Loyalty picker ----------

    def find_offer(self, offer_id: int) -> LoyaltyOffer:
        for offer in self.offers:
            if offer.id == offer_id:
                return offer
        raise ValidationError(f"Loyalty offer {offer_id} is not available")

    async def select_offer(self, offer_id: Optional[int]) -> Optional[LoyaltyProgress]:
        """Select a loyalty offer (or clear the selection) and fetch the customer's progress."""
        try:
            self.selected_offer = self.find_offer(offer_id) if offer_id is not None else None
        except ValidationError as e:
            self.notify("error", str(e))
            raise
        self.progress = None
        await self._refresh_progress()
        return self.progress

    def set_action(self, action: Optional[LoyaltyAction]) -> None:
        self.selected_action = action

    async def _refresh_progress(self) -> None:
        if self.selected_offer is None or not self.customer.is_valid or self.business is None:
            self.progress = None
            return
        generation = self._generation
        offer_id = self.selected_offer.id
        progress = await self.catalog.get_progress(self.business.id, self.customer.phone, offer_id)
        if generation == self._generation and self.selected_offer is not None and self.selected_offer.id == offer_id:
            self.progress = progress

    # ---------- Cart ----------

    def set_redemption(self, requested: bool) -> TransactionTotals:
        self.redemption_requested = requested
        return self.totals()

    def totals(self) -> TransactionTotals:
        return calculate_totals(self.cart.items(), self.customer.balance, self.redemption_requested)

    def _add(self, item: LineItem) -> LineItem:
        try:
            self.cart.add(item)
        except ValidationError as e:
            self.notify("error", str(e))
            raise
        self.notify("info", f"Added {item.display_label} x {item.quantity} ({currency(item.subtotal)})")
        return item

    def add_sale_item(self, label: str, amount: Any, quantity: Any = 1, note: Optional[str] = None) -> LineItem:
        """Add a monetary sale line. Amount and quantity accept raw user input."""
        item = LineItem.sale(label, parse_amount(amount), parse_quantity(quantity), note)
        return self._add(item)

    def add_loyalty_item(
        self,
        offer_id: Optional[int] = None,
        action: Optional[LoyaltyAction] = None,
        amount: Any = ZERO,
        quantity: Any = 1,
        note: Optional[str] = None,
        label: Optional[str] = None,
    ) -> LineItem:
        """
        Add a loyalty action line.

        Offer and action default to the picker selection; the label defaults
        to the offer name. The picker is cleared after a successful add.
        """
        try:
            offer = self.find_offer(offer_id) if offer_id is not None else self.selected_offer
            if offer is None:
                raise ValidationError("Select a loyalty offer")
        except ValidationError as e:
            self.notify("error", str(e))
            raise

        item = LineItem.loyalty(
            label=label or offer.name,
            offer_id=offer.id,
            action=action or self.selected_action,
            unit_amount=parse_amount(amount),
            quantity=parse_quantity(quantity),
            note=note,
        )
        self._add(item)
        self.selected_offer = None
        self.selected_action = None
        self.progress = None
        return item

    def remove_item(self, item_id: str) -> bool:
        return self.cart.remove(item_id) is not None

    # ---------- Submission ----------

    async def submit(self) -> Optional[SubmissionResult]:
        """
        Submit the cart.

        A call made while another submission is in flight is ignored and
        returns None. On failure the cart is left intact for a retry.
        """
        if self._submitting:
            logger.info("Submission already in progress; ignoring")
            return None

        generation = self._generation
        self._submitting = True
        try:
            if self.last_result is not None:
                raise PreconditionError("Transaction already recorded; send or dismiss the receipt first")
            operator = self.operator
            if not operator.is_staff:
                raise PreconditionError("Only staff can record sales")
            business = self._require_business()
            result = await self.orchestrator.submit(
                self.cart.items(),
                self.customer,
                business,
                operator,
                self.redemption_requested,
                is_current=lambda: self._generation == generation,
            )
        except Exception as e:
            self.notify("error", str(e) or "Submission failed")
            raise
        finally:
            self._submitting = False

        if generation == self._generation:
            self.last_result = result
        self.notify("success", "Sale recorded successfully")
        return result

    async def send_receipt(self) -> Optional[str]:
        """Send the last receipt over WhatsApp and start a new transaction."""
        if self.last_result is None:
            self.notify("error", "No transaction to send")
            raise PreconditionError("No transaction to send")
        url = await self.receipts.send(self.last_result.receipt)
        if url is None:
            self.notify("error", "Could not open WhatsApp")
        else:
            self.notify("info", "Receipt opened in WhatsApp")
        self.reset()
        return url

    def reset(self) -> None:
        """Abandon or finish the transaction. In-flight results will not be applied."""
        self._generation += 1
        self.customer.reset()
        self.cart.clear()
        self.redemption_requested = False
        self.selected_offer = None
        self.selected_action = None
        self.progress = None
        self.last_result = None


def build_session(settings: Settings) -> tuple[AuthManager, LoyaltyApiClient, PosSession]:
    """Wire the engine collaborators from settings."""
    auth_manager = AuthManager(session_file=settings.session_file)
    api = LoyaltyApiClient(auth_manager, base_url=settings.api_url, timeout=settings.timeout)
    session = PosSession(api, auth_manager, MessagingDispatcher(country_code=settings.country_code))
    return auth_manager, api, session
