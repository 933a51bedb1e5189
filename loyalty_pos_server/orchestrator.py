"""
Transaction submission.

A cart is split into two batches that reach the backend through different
protocols:

- Sale items go out as one aggregate request. It is all or nothing: a
  rejection aborts the whole submission.
- Loyalty items go out as one request each, concurrently, after the sale batch
  succeeded (or was skipped). Each failure is captured on its own and never
  aborts the committed sale or the sibling requests.
"""

import asyncio
import logging
from typing import Callable, Sequence

from .api_client import LoyaltyApiClient
from .customer import is_valid_phone
from .errors import PreconditionError, SaleBatchFailed, ValidationError
from .models import (
    Business,
    CustomerContext,
    LineItem,
    LoyaltyAction,
    LoyaltyActionKind,
    LoyaltyActionOutcome,
    LoyaltyActionRequest,
    OperatorIdentity,
    ReceiptLine,
    SaleBatchItem,
    SaleBatchPayload,
    SubmissionResult,
    TransactionReceipt,
    TransactionTotals,
)
from .totals import calculate_totals

logger = logging.getLogger(__name__)


def _always_current() -> bool:
    return True


class SubmissionOrchestrator:
    """Executes the two-protocol submission of a cart."""

    def __init__(self, api: LoyaltyApiClient) -> None:
        self.api = api

    async def submit(
        self,
        items: Sequence[LineItem],
        customer: CustomerContext,
        business: Business,
        operator: OperatorIdentity,
        redemption_requested: bool,
        is_current: Callable[[], bool] = _always_current,
    ) -> SubmissionResult:
        """
        Submit a cart.

        Args:
            items: Cart snapshot, in insertion order
            customer: Validated customer; its balance is updated on success
            business: Business the sale is recorded for
            operator: Staff member recording the sale
            redemption_requested: Whether points are applied to the sale items
            is_current: Returns False once the session that started this
                submission was reset. Results are then not applied to ``customer``.

        Returns:
            The submission result, including one outcome per loyalty item

        Raises:
            PreconditionError: Invalid phone, unvalidated customer or empty cart
            ValidationError: Sale items whose total is not positive
            SaleBatchFailed: The backend rejected the sale batch
            TransportError: The sale batch could not be delivered
        """
        items = list(items)
        if not is_valid_phone(customer.phone) or not customer.is_valid:
            raise PreconditionError("Verify the customer and phone number")
        if not items:
            raise PreconditionError("Cart is empty")

        # Requests and receipt use the customer as it was when submission started
        snapshot = customer.model_copy()
        sale_items = [item for item in items if item.is_sale]
        loyalty_items = [item for item in items if item.is_loyalty]
        totals = calculate_totals(items, snapshot.balance, redemption_requested)

        if sale_items:
            if totals.sale_subtotal <= 0:
                raise ValidationError("A monetary sale batch must have a positive total")
            await self._submit_sales(sale_items, snapshot, business, operator, redemption_requested)

        outcomes: list[LoyaltyActionOutcome] = []
        if loyalty_items:
            outcomes = await self._submit_loyalty_actions(loyalty_items, snapshot, business, operator)
            failures = [outcome for outcome in outcomes if not outcome.ok]
            if failures:
                logger.warning(f"{len(failures)} of {len(outcomes)} loyalty action(s) failed for {snapshot.phone}")

        receipt = self._build_receipt(items, totals, outcomes, snapshot, business)

        if is_current():
            customer.balance = totals.projected_balance
        else:
            logger.info("Session was reset during submission; not applying the new balance")

        return SubmissionResult(
            totals=totals,
            receipt=receipt,
            sale_submitted=bool(sale_items),
            loyalty_outcomes=outcomes,
        )

    async def _submit_sales(
        self,
        sale_items: list[LineItem],
        customer: CustomerContext,
        business: Business,
        operator: OperatorIdentity,
        redemption_requested: bool,
    ) -> None:
        payload = SaleBatchPayload(
            customer_phone=customer.phone,
            business_id=business.id,
            created_by=operator.phone,
            items=[
                SaleBatchItem(
                    article=item.label,
                    description=item.note,
                    amount=float(item.unit_amount),
                    quantity=float(item.quantity),
                    points_applied=redemption_requested,
                    balance_before=float(customer.balance),
                )
                for item in sale_items
            ],
        )
        logger.info(f"Submitting {len(sale_items)} sale item(s) for {customer.phone} (redeem={redemption_requested})")
        response = await self.api.submit_sale_batch(payload)
        if not response.success:
            logger.error(f"Sale batch rejected (status={response.status}): {response.message}")
            raise SaleBatchFailed(response.message)
        logger.info(f"Sale batch accepted: {response.message}")

    async def _submit_loyalty_actions(
        self,
        loyalty_items: list[LineItem],
        customer: CustomerContext,
        business: Business,
        operator: OperatorIdentity,
    ) -> list[LoyaltyActionOutcome]:
        """Fan out one request per item and wait for all of them. Results keep cart order."""
        tasks = [self._submit_loyalty_action(item, customer, business, operator) for item in loyalty_items]
        return list(await asyncio.gather(*tasks))

    async def _submit_loyalty_action(
        self,
        item: LineItem,
        customer: CustomerContext,
        business: Business,
        operator: OperatorIdentity,
    ) -> LoyaltyActionOutcome:
        kind = item.kind
        if not isinstance(kind, LoyaltyActionKind):
            return LoyaltyActionOutcome(item=item, ok=False, error="Not a loyalty item")
        if kind.action is None:
            return LoyaltyActionOutcome(item=item, ok=False, error="No loyalty action selected")
        request = LoyaltyActionRequest(
            user=operator.name,
            operator_phone=operator.phone,
            customer_phone=customer.phone,
            offer_id=kind.offer_id,
            quantity=float(item.quantity),
            amount=float(item.unit_amount),
            description=item.note,
            business_id=business.id,
        )
        try:
            if kind.action is LoyaltyAction.REDEEM:
                response = await self.api.redeem(request)
            else:
                response = await self.api.accumulate(request)
        except Exception as e:
            logger.warning(f"Loyalty {kind.action.value} failed for offer {kind.offer_id} ({item.label!r}): {e}")
            return LoyaltyActionOutcome(item=item, ok=False, error=str(e))

        if not response.success:
            logger.warning(
                f"Loyalty {kind.action.value} rejected for offer {kind.offer_id} ({item.label!r}): {response.message}"
            )
            return LoyaltyActionOutcome(item=item, ok=False, error=response.message)

        logger.info(f"Loyalty {kind.action.value} recorded for offer {kind.offer_id} ({item.label!r})")
        return LoyaltyActionOutcome(item=item, ok=True, progress=response.progress)

    @staticmethod
    def _build_receipt(
        items: list[LineItem],
        totals: TransactionTotals,
        outcomes: list[LoyaltyActionOutcome],
        customer: CustomerContext,
        business: Business,
    ) -> TransactionReceipt:
        lines = [
            ReceiptLine(
                label=item.display_label,
                quantity=item.quantity,
                unit_amount=item.unit_amount,
                subtotal=item.subtotal,
                action=item.kind.action if isinstance(item.kind, LoyaltyActionKind) else None,
            )
            for item in items
        ]
        return TransactionReceipt(
            business_name=business.name,
            customer_phone=customer.phone,
            customer_name=customer.name,
            combined_total=totals.combined_total,
            sale_subtotal=totals.sale_subtotal,
            loyalty_subtotal=totals.loyalty_subtotal,
            redemption_applied=totals.redemption_applied,
            amount_charged=totals.amount_due,
            balance_before=customer.balance,
            balance_after=totals.projected_balance,
            lines=lines,
            loyalty_outcomes=outcomes,
        )
