"""Customer lookup by phone number."""

import logging

from .api_client import LoyaltyApiClient
from .errors import ValidationError
from .models import CustomerContext, Validity
from .money import fix_money, only_digits

logger = logging.getLogger(__name__)

PHONE_LENGTH = 10
DEFAULT_CUSTOMER_NAME = "Usuario"


def is_valid_phone(phone: str) -> bool:
    return len(phone) == PHONE_LENGTH and phone.isdigit()


class CustomerLookup:
    """Resolves a phone number into a named customer with a points balance."""

    def __init__(self, api: LoyaltyApiClient) -> None:
        self.api = api

    async def lookup(self, context: CustomerContext, phone: str, business_id: int) -> CustomerContext:
        """
        Look up a customer and record the outcome in ``context``.

        A business-level rejection (unknown customer, wrong business...) leaves
        the context invalid and does not raise; callers check ``validity``.

        Args:
            context: Customer context to update
            phone: Raw phone input, normalized to digits
            business_id: Business whose points balance is requested

        Returns:
            The updated context

        Raises:
            ValidationError: If the phone is not exactly 10 digits (no request is made)
            TransportError: On network failure (the context is left invalid)
        """
        digits = only_digits(phone)
        if not is_valid_phone(digits):
            raise ValidationError("Invalid phone number: 10 digits required")

        # Never show the previous customer's data while the request is in flight
        context.reset(digits)

        try:
            response = await self.api.get_customer_points(digits, business_id)
        except Exception:
            context.invalidate()
            raise

        if response.success and response.customer is not None:
            context.name = response.customer.name or DEFAULT_CUSTOMER_NAME
            context.balance = fix_money(response.customer.balance)
            context.validity = Validity.VALID
            logger.info(f"Customer {digits} found: {context.name}, balance {context.balance}")
        else:
            context.invalidate()
            logger.info(f"Customer {digits} rejected: {response.message} (status={response.status})")

        return context
