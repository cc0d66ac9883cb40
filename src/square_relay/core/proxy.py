"""
Resource proxy.

Customer, card, payment and location operations performed on behalf of a
merchant. Inputs are validated locally before anything is sent to Square and
every payload handed back is passed through ``json_safe``.
"""

import logging
import uuid
from typing import Any

import anyio

from square_relay.core.errors import CardCreationFailed, UpstreamError, ValidationError
from square_relay.core.gateway import ProviderGateway
from square_relay.core.models import (
    CardCreateRequest,
    Credential,
    CustomerCreateRequest,
    Location,
    PaymentCreateRequest,
)
from square_relay.core.normalize import json_safe
from square_relay.core.store import CredentialStore
from square_relay.core.validation import (
    MAX_PAYMENT_AMOUNT,
    SUPPORTED_CURRENCIES,
    is_positive_integer,
    mask_identifier,
    sanitize_input,
    validate_cardholder_name,
    validate_e164,
    validate_email,
    validate_phone_number,
)

logger = logging.getLogger("square")

CARDS_OK = "ok"
CARDS_UNAVAILABLE = "unavailable"


class ResourceProxy:
    """Square operations scoped to one resolved merchant credential."""

    def __init__(self, gateway: ProviderGateway, store: CredentialStore) -> None:
        self.gateway = gateway
        self.store = store

    async def list_locations(self, credential: Credential) -> list[Location]:
        """Return cached locations, fetching them from Square on first use."""
        if credential.locations:
            return credential.locations

        locations = await self.gateway.list_active_locations(credential.access_token)
        self.store.put(
            credential.merchant_id, credential.model_copy(update={"locations": locations})
        )
        return locations

    async def list_cards(self, credential: Credential, customer_id: str) -> dict[str, Any]:
        """
        List a customer's cards on file.

        A failed lookup is reported as an empty list with status
        ``unavailable`` instead of an error, so card entry is never blocked.
        """
        try:
            cards = await self.gateway.list_cards(credential.access_token, customer_id)
        except UpstreamError:
            logger.warning(
                "Card lookup failed for customer %s, returning no cards",
                mask_identifier(customer_id),
            )
            return {"cards": [], "status": CARDS_UNAVAILABLE}
        return {"cards": json_safe(cards), "status": CARDS_OK}

    async def search_customers(
        self, credential: Credential, email: str | None = None, phone: str | None = None
    ) -> list[dict[str, Any]]:
        """
        Find customers by email and/or phone, each with their cards attached.

        One search runs per given filter; results are merged by customer id,
        keeping the first occurrence. A failed search is logged and skipped,
        so the other filter's matches are still returned.
        """
        filters = []
        if email:
            filters.append(("email", {"email_address": {"exact": email}}))
        if phone:
            filters.append(("phone", {"phone_number": {"exact": phone}}))

        customers: list[dict[str, Any]] = []
        seen: set[str] = set()
        for name, customer_filter in filters:
            try:
                found = await self.gateway.search_customers(
                    credential.access_token, {"filter": customer_filter}
                )
            except UpstreamError:
                logger.warning("Customer search by %s failed", name)
                continue
            for customer in found:
                if customer.get("id") in seen:
                    continue
                seen.add(customer.get("id"))
                customers.append(customer)

        logger.info("Found customers: %d", len(customers))

        results: list[dict[str, Any]] = [{} for _ in customers]

        async def attach_cards(index: int, customer: dict[str, Any]) -> None:
            lookup = await self.list_cards(credential, customer["id"])
            results[index] = {**customer, "cards": lookup["cards"]}

        async with anyio.create_task_group() as tg:
            for index, customer in enumerate(customers):
                tg.start_soon(attach_cards, index, customer)

        return json_safe(results)

    async def search_customers_by_phone(
        self, credential: Credential, phone: str | None
    ) -> list[dict[str, Any]]:
        """Find customers by an E.164 phone number."""
        if not phone:
            raise ValidationError("phone", "Phone number is required")
        phone = phone.strip()
        if not validate_e164(phone):
            raise ValidationError(
                "phone", "Phone number must be in E164 format (e.g., +15551234567)"
            )

        customers = await self.gateway.search_customers(
            credential.access_token, {"filter": {"phone_number": {"exact": phone}}}
        )
        return json_safe(customers)

    async def create_customer(
        self, credential: Credential, request: CustomerCreateRequest
    ) -> dict[str, Any]:
        given_name = sanitize_input(request.givenName)
        family_name = sanitize_input(request.familyName)
        email = sanitize_input(request.emailAddress) if request.emailAddress else None
        phone = sanitize_input(request.phoneNumber) if request.phoneNumber else None

        if not given_name or not family_name:
            raise ValidationError("givenName", "givenName and familyName are required")
        if not validate_cardholder_name(given_name):
            raise ValidationError("givenName", "Invalid givenName format")
        if not validate_cardholder_name(family_name):
            raise ValidationError("familyName", "Invalid familyName format")
        if email and not validate_email(email):
            raise ValidationError("emailAddress", "Invalid email format")
        if phone and not validate_phone_number(phone):
            raise ValidationError(
                "phoneNumber", "Invalid phone number format. Please use +1XXXXXXXXXX format"
            )

        body: dict[str, Any] = {"given_name": given_name, "family_name": family_name}
        if email:
            body["email_address"] = email
        if phone:
            body["phone_number"] = phone

        customer = await self.gateway.create_customer(credential.access_token, body)
        logger.info("Customer created: %s", mask_identifier(customer.get("id")))
        return json_safe(customer)

    async def delete_customer(self, credential: Credential, customer_id: str | None) -> dict:
        """
        Delete a customer.

        Raises:
            ValidationError: If no customer id is given.
            UpstreamError: If Square refuses; structured errors are joined into
                one readable message.
        """
        if not customer_id:
            raise ValidationError("customerId", "Customer ID is required")

        logger.info("Deleting customer: %s", mask_identifier(customer_id))
        try:
            result = await self.gateway.delete_customer(credential.access_token, customer_id)
        except UpstreamError as e:
            if e.errors:
                raise UpstreamError(e.joined_details(), errors=e.errors, status_code=400) from e
            raise
        return json_safe(result)

    async def create_card(
        self, credential: Credential, request: CardCreateRequest
    ) -> dict[str, Any]:
        """
        Save a card on file for a customer.

        Raises:
            ValidationError: For missing ids or an invalid cardholder name.
            CardCreationFailed: For any failure past validation. Details are
                only logged.
        """
        if not request.sourceId or not request.customerId:
            raise ValidationError("sourceId", "sourceId and customerId are required")

        cardholder_name = sanitize_input(request.cardholderName)
        if not cardholder_name:
            raise ValidationError(
                "cardholderName", "cardholderName is required and cannot be empty"
            )
        if not validate_cardholder_name(cardholder_name):
            raise ValidationError(
                "cardholderName",
                "Invalid cardholder name format. Only letters, spaces, hyphens, "
                "apostrophes, and periods are allowed",
            )

        card: dict[str, Any] = {
            "customer_id": request.customerId,
            "cardholder_name": cardholder_name,
        }
        if request.billingAddress:
            card["billing_address"] = request.billingAddress.model_dump(exclude_none=True)

        body = {
            "idempotency_key": str(uuid.uuid4()),
            "source_id": request.sourceId,
            "card": card,
        }
        try:
            created = await self.gateway.create_card(credential.access_token, body)
        except Exception as e:
            logger.error(
                "Card creation failed for customer %s: %s %s",
                mask_identifier(request.customerId),
                type(e).__name__,
                getattr(e, "errors", ""),
            )
            raise CardCreationFailed() from e

        logger.info("Card created successfully: %s", mask_identifier(created.get("id")))
        return json_safe(created)

    async def create_payment(
        self, credential: Credential, request: PaymentCreateRequest
    ) -> dict[str, Any]:
        """
        Charge a payment token at one of the merchant's locations.

        Raises:
            ValidationError: For a missing field, an amount that is not a
                positive integer or exceeds the ceiling, an unsupported
                currency, or a location the merchant does not own.
            UpstreamError: If Square rejects the payment.
        """
        if (
            not request.amountCents
            or not request.paymentToken
            or not request.idempotencyKey
            or not request.locationId
        ):
            raise ValidationError(
                "amountCents",
                "amountCents, paymentToken, idempotencyKey, and locationId are required",
            )
        if not is_positive_integer(request.amountCents):
            raise ValidationError("amountCents", "amountCents must be a positive number")
        if request.amountCents > MAX_PAYMENT_AMOUNT:
            raise ValidationError("amountCents", "Payment amount exceeds maximum limit")
        if request.currency not in SUPPORTED_CURRENCIES:
            raise ValidationError("currency", "Invalid currency")
        if not credential.has_location(request.locationId):
            raise ValidationError("locationId", "Invalid location ID")

        body: dict[str, Any] = {
            "idempotency_key": request.idempotencyKey,
            "source_id": request.paymentToken,
            "amount_money": {"amount": request.amountCents, "currency": request.currency},
            "location_id": request.locationId,
        }
        if request.customerId:
            body["customer_id"] = request.customerId

        payment = await self.gateway.create_payment(credential.access_token, body)
        logger.info("Payment created: %s", mask_identifier(payment.get("id")))
        return json_safe(payment)
