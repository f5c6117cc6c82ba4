"""
Checkout flow.

A ``CheckoutSession`` walks one customer through the steps for their order
type and recomputes the price on every change:

    tree / event orders:        scheduling -> details -> payment -> submitted
    decorations / gift cards:   details -> payment -> submitted

Business-rule failures never raise out of the session. Every mutating method
returns ``True`` on success, or ``False`` with the reason in ``session.error``.
"""
from __future__ import annotations
import asyncio
import logging
import random
import string
import time
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Annotated, Iterable, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from .catalog import NON_SCHEDULED_CATEGORIES
from .delivery import DeliveryQuote, load_delivery_configuration, resolve_delivery_fee
from .discounts import AppliedDiscount, check_discount, discount_amount, find_discount_code, record_redemption
from .errors import (
    CheckoutRejection,
    DataStoreError,
    DiscountErrorKind,
    DiscountRejected,
    IncompleteStep,
    InvalidMenPower,
    OrderIntegrityError,
    PaymentGatewayError,
)
from .payments import PaymentGateway, PaymentIntent, to_cents
from .pricing import (
    DEFAULT_MEN_POWER_TIERS,
    MenPowerTier,
    PriceBreakdown,
    compute_order_total,
    money,
    rental_surcharge,
    selected_addons,
)
from .schemas import (
    CustomerDetails,
    CustomerDetailsInput,
    DeliveryConfiguration,
    DiscountCode,
    EventService,
    GiftCard,
    Order,
    Product,
    TimingSurcharge,
    TreeOptions,
)

logger = logging.getLogger(__name__)

ORDER_NUMBER_ALPHABET = string.digits + string.ascii_uppercase
MAX_MEN_POWER = 20
ORDER_FAILED_MESSAGE = "Error placing order. Please try again."

_UNSET = object()


class Step(str, Enum):
    SCHEDULING = "scheduling"
    DETAILS = "details"
    PAYMENT = "payment"
    SUBMITTED = "submitted"


# -----------------
# Seeds
# -----------------

class ProductSeed(BaseModel):
    kind: Literal["product"] = "product"
    product: Product
    tree_options: Optional[TreeOptions] = None


class GiftCardSeed(BaseModel):
    kind: Literal["giftcard"] = "giftcard"
    gift_card: GiftCard


class EventSeed(BaseModel):
    kind: Literal["event"] = "event"
    event_service: EventService


OrderSeed = Annotated[Union[ProductSeed, GiftCardSeed, EventSeed], Field(discriminator="kind")]


def generate_order_number(now_ms: Optional[int] = None, rng: random.Random | None = None) -> str:
    """TJ-<last 6 digits of epoch ms>-<3 base36 chars>. Readable, not globally unique."""
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    rng = rng or random
    suffix = "".join(rng.choice(ORDER_NUMBER_ALPHABET) for _ in range(3))
    return f"TJ-{str(now_ms)[-6:]}-{suffix}"


def steps_for(seed) -> list[Step]:
    if isinstance(seed, GiftCardSeed):
        return [Step.DETAILS, Step.PAYMENT, Step.SUBMITTED]
    if isinstance(seed, ProductSeed) and seed.tree_options is None and seed.product.category in NON_SCHEDULED_CATEGORIES:
        return [Step.DETAILS, Step.PAYMENT, Step.SUBMITTED]
    return [Step.SCHEDULING, Step.DETAILS, Step.PAYMENT, Step.SUBMITTED]


@dataclass
class PricingContext:
    """Configuration fetched once per checkout and threaded through every price calculation."""
    delivery: DeliveryConfiguration
    surcharge_rules: list[TimingSurcharge] = field(default_factory=list)
    holidays: list[date] = field(default_factory=list)
    men_power_tiers: tuple[MenPowerTier, ...] = DEFAULT_MEN_POWER_TIERS


async def load_pricing_context(store, holidays: Iterable[date] = ()) -> PricingContext:
    delivery = await load_delivery_configuration(store)
    rules = []
    for doc in await store.get_documents("timing_surcharges", {"is_active": True}):
        try:
            rules.append(TimingSurcharge(**doc))
        except ValidationError as e:
            logger.warning("Skipping invalid timing surcharge %s: %s", doc.get("id"), e)
    return PricingContext(delivery=delivery, surcharge_rules=rules, holidays=list(holidays))


class CheckoutSession:
    def __init__(self, seed, context: PricingContext, store, gateway: PaymentGateway):
        self.id = uuid.uuid4().hex
        self.created_at = datetime.now(timezone.utc)
        self.seed = seed
        self.context = context
        self.store = store
        self.gateway = gateway
        self.steps = steps_for(seed)
        self.step = self.steps[0]
        self.error: Optional[str] = None
        self.order_number = generate_order_number()
        self.order: Optional[dict] = None
        self.closed = False
        self._discount_lock = asyncio.Lock()
        self._submitting = False
        self._reset_progress()

        tree = seed.tree_options if isinstance(seed, ProductSeed) else None
        if tree is not None:
            self.rental_period = tree.rental_period
            self.decor_level = tree.decor_level
            self.event_size = tree.event_size
        if isinstance(seed, GiftCardSeed) and seed.gift_card.sender_name:
            self.customer.name = seed.gift_card.sender_name

    def _reset_progress(self):
        self.customer = CustomerDetails()
        self.delivery_quote: Optional[DeliveryQuote] = None
        self._delivery_selection: dict = {}
        self.rental_period: Optional[int] = None
        self.decor_level: Optional[int] = None
        self.event_size: Optional[str] = None
        self.men_power: Optional[int] = None
        self.installation_date: Optional[date] = None
        self.teardown_date: Optional[date] = None
        self.installation_service = False
        self.teardown_service = False
        self.addon_ids: list[str] = []
        self.discount: Optional[AppliedDiscount] = None
        self._discount_code: Optional[DiscountCode] = None
        self.payment_intent: Optional[PaymentIntent] = None
        self.paid_intent_id: Optional[str] = None
        self._gift_card_id: Optional[str] = None

    # -----------------
    # Order type
    # -----------------

    @property
    def order_type(self) -> str:
        return self.seed.kind

    @property
    def is_gift_card(self) -> bool:
        return isinstance(self.seed, GiftCardSeed)

    @property
    def is_event(self) -> bool:
        return isinstance(self.seed, EventSeed)

    @property
    def is_tree_order(self) -> bool:
        return isinstance(self.seed, ProductSeed) and (
            self.seed.tree_options is not None or self.seed.product.category == "trees"
        )

    @property
    def needs_scheduling(self) -> bool:
        return Step.SCHEDULING in self.steps

    @property
    def base_price(self) -> float:
        if isinstance(self.seed, GiftCardSeed):
            return self.seed.gift_card.amount
        if isinstance(self.seed, EventSeed):
            return self.seed.event_service.price
        return self.seed.product.price

    # -----------------
    # Results
    # -----------------

    def _reject(self, reason) -> bool:
        self.error = str(reason)
        logger.debug("Checkout %s rejected at %s: %s", self.id, self.step.value, self.error)
        return False

    def _ok(self) -> bool:
        self.error = None
        return True

    def _awaiting_payment(self) -> bool:
        return not self.closed and self.step == Step.PAYMENT

    def _require_step(self, step: Step) -> bool:
        """Inputs belong to one step and can only change while the session is on it."""
        if self.step == step and not self.closed:
            return True
        if self.step == Step.SUBMITTED:
            return self._reject("This order has already been placed")
        if self.closed:
            return self._reject("This checkout has been closed")
        if self.paid_intent_id is not None:
            return self._reject("Your payment has been taken. Please complete your order.")
        return self._reject(f"Go back to the {step.value} step to change this")

    # -----------------
    # Inputs
    # -----------------

    def set_schedule(
        self,
        *,
        rental_period=_UNSET,
        decor_level=_UNSET,
        event_size=_UNSET,
        men_power=_UNSET,
        installation_date=_UNSET,
        teardown_date=_UNSET,
    ) -> bool:
        if not self.needs_scheduling:
            return self._reject("This order does not need scheduling")
        if not self._require_step(Step.SCHEDULING):
            return False
        try:
            if rental_period is not _UNSET and rental_period is not None:
                rental_surcharge(rental_period)
            if men_power is not _UNSET and men_power is not None and not 1 <= men_power <= MAX_MEN_POWER:
                raise InvalidMenPower(men_power)
        except CheckoutRejection as e:
            return self._reject(e)
        if decor_level is not _UNSET and decor_level not in (None, 50, 75, 100):
            return self._reject(f"Decoration level of {decor_level}% is not available")
        if event_size is not _UNSET and event_size not in (None, "small", "medium", "large"):
            return self._reject(f"Event size '{event_size}' is not available")

        install = self.installation_date if installation_date is _UNSET else installation_date
        teardown = self.teardown_date if teardown_date is _UNSET else teardown_date
        if install and teardown and teardown < install:
            return self._reject("Teardown date cannot be before the installation date")

        if rental_period is not _UNSET:
            self.rental_period = rental_period
        if decor_level is not _UNSET:
            self.decor_level = decor_level
        if event_size is not _UNSET:
            self.event_size = event_size
        if self.decor_level != 100:
            self.event_size = None
        if men_power is not _UNSET:
            self.men_power = men_power
        if installation_date is not _UNSET:
            self.installation_date = installation_date
            self.installation_service = installation_date is not None
        if teardown_date is not _UNSET:
            self.teardown_date = teardown_date
            self.teardown_service = teardown_date is not None
        return self._ok()

    def set_customer_details(self, details: CustomerDetailsInput) -> bool:
        if not self._require_step(Step.DETAILS):
            return False
        for key, value in details.model_dump(exclude_unset=True).items():
            setattr(self.customer, key, (value or "").strip())
        return self._ok()

    def select_delivery(
        self,
        *,
        zone_id: Optional[str] = None,
        postal_code: Optional[str] = None,
        distance_km: Optional[float] = None,
        area: Optional[str] = None,
    ) -> bool:
        if self.is_gift_card:
            return self._reject("Gift cards are delivered by email")
        if not self._require_step(Step.DETAILS):
            return False
        try:
            quote = resolve_delivery_fee(
                self.context.delivery, zone_id=zone_id, postal_code=postal_code, distance_km=distance_km
            )
        except CheckoutRejection as e:
            self.delivery_quote = None
            self.customer.delivery_zone = None
            self.customer.delivery_area = None
            self.customer.delivery_fee = 0
            return self._reject(e)
        self.delivery_quote = quote
        self._delivery_selection = {"zone_id": zone_id, "postal_code": postal_code, "distance_km": distance_km}
        self.customer.delivery_zone = quote.zone_id or "distance"
        self.customer.delivery_area = area
        self.customer.postal_code = postal_code or self.customer.postal_code
        self.customer.delivery_fee = quote.fee
        return self._ok()

    def set_addons(self, addon_ids: Iterable[str]) -> bool:
        if self.is_gift_card:
            return self._reject("Delivery add-ons do not apply to gift cards")
        if not self._require_step(Step.DETAILS):
            return False
        self.addon_ids = list(dict.fromkeys(addon_ids))
        return self._ok()

    async def apply_discount(self, code: str, now: Optional[datetime] = None) -> bool:
        if self.is_gift_card:
            return self._reject("Discount codes cannot be applied to gift cards")
        if not (code or "").strip():
            return self._reject("Please enter a discount code")
        if not self._require_step(Step.DETAILS):
            return False
        async with self._discount_lock:
            # the step may have moved on while waiting for the lock
            if not self._require_step(Step.DETAILS):
                return False
            subtotal = self._price(discount=0).subtotal
            try:
                found = await find_discount_code(self.store, code)
                if found is None:
                    raise DiscountRejected(DiscountErrorKind.NOT_FOUND, "Invalid or expired discount code")
                applied = check_discount(found, subtotal, now)
            except DiscountRejected as e:
                # a rejected code leaves any earlier discount in place
                return self._reject(e)
            except DataStoreError as e:
                logger.error("Error applying discount for checkout %s: %s", self.id, e)
                return self._reject("Failed to apply discount code")
            self.discount = applied
            self._discount_code = found
        return self._ok()

    def remove_discount(self) -> bool:
        if not self._require_step(Step.DETAILS):
            return False
        self.discount = None
        self._discount_code = None
        return self._ok()

    # -----------------
    # Pricing
    # -----------------

    def _price(self, discount: float) -> PriceBreakdown:
        ctx = self.context
        return compute_order_total(
            self.base_price,
            rental_days=self.rental_period if self.is_tree_order else None,
            men_power=self.men_power if self.needs_scheduling else None,
            installation_date=self.installation_date,
            teardown_date=self.teardown_date,
            installation_service=self.installation_service,
            teardown_service=self.teardown_service,
            delivery_fee=self.customer.delivery_fee,
            addon_ids=self.addon_ids,
            addon_catalog=ctx.delivery.add_ons,
            discount=discount,
            surcharge_rules=ctx.surcharge_rules,
            holidays=ctx.holidays,
            men_power_tiers=ctx.men_power_tiers,
            gift_card=self.is_gift_card,
        )

    def quote(self) -> PriceBreakdown:
        breakdown = self._price(discount=0)
        if self._discount_code is None or self.is_gift_card:
            return breakdown
        amount = discount_amount(self._discount_code, breakdown.subtotal)
        self.discount = AppliedDiscount(
            discount_id=self.discount.discount_id,
            code=self.discount.code,
            discount_type=self.discount.discount_type,
            discount_value=self.discount.discount_value,
            amount=amount,
        )
        return self._price(discount=amount)

    # -----------------
    # Navigation
    # -----------------

    def missing_for(self, step: Step) -> list[str]:
        missing = []
        if step == Step.SCHEDULING:
            if self.is_tree_order:
                if self.decor_level is None:
                    missing.append("decoration level")
                if self.rental_period is None:
                    missing.append("rental period")
            if self.is_event and self.installation_date is None:
                missing.append("installation date")
        elif step == Step.DETAILS:
            c = self.customer
            for label, value in (("name", c.name), ("email", c.email), ("phone", c.phone)):
                if not value.strip():
                    missing.append(label)
            if not self.is_gift_card:
                if not c.delivery_zone:
                    missing.append("delivery zone")
                if not (c.street_address or "").strip():
                    missing.append("street address")
        return missing

    async def advance(self) -> bool:
        if self.closed:
            return self._reject("This checkout has been closed")
        if self.step in (Step.PAYMENT, Step.SUBMITTED):
            return self._reject("Complete payment to place your order")
        if self.step == Step.DETAILS and self.discount is not None and not await self._recheck_discount():
            return False
        # no awaits from here on, so the checked inputs are the ones carried forward
        missing = self.missing_for(self.step)
        if missing:
            return self._reject(IncompleteStep(missing))
        if self.step == Step.DETAILS and not self.is_gift_card and not self._recheck_delivery():
            return False
        self.step = self.steps[self.steps.index(self.step) + 1]
        return self._ok()

    def _check_ready_to_pay(self) -> bool:
        for step in self.steps[: self.steps.index(Step.PAYMENT)]:
            missing = self.missing_for(step)
            if missing:
                return self._reject(IncompleteStep(missing))
        return self.is_gift_card or self._recheck_delivery()

    def _recheck_delivery(self) -> bool:
        try:
            quote = resolve_delivery_fee(self.context.delivery, **self._delivery_selection)
        except CheckoutRejection as e:
            return self._reject(e)
        if quote.fee != self.customer.delivery_fee:
            self.customer.delivery_fee = quote.fee
            self.delivery_quote = quote
        return True

    async def _recheck_discount(self) -> bool:
        async with self._discount_lock:
            subtotal = self._price(discount=0).subtotal
            try:
                found = await find_discount_code(self.store, self.discount.code)
                if found is None:
                    raise DiscountRejected(DiscountErrorKind.NOT_FOUND, "Invalid or expired discount code")
                self.discount = check_discount(found, subtotal)
                self._discount_code = found
            except DiscountRejected as e:
                self.discount = None
                self._discount_code = None
                return self._reject(f"Discount removed: {e.reason}")
            except DataStoreError as e:
                logger.error("Error re-validating discount for checkout %s: %s", self.id, e)
                return self._reject("Failed to apply discount code")
        return True

    def back(self) -> bool:
        if self.step == Step.SUBMITTED:
            return self._reject("This order has already been placed")
        index = self.steps.index(self.step)
        if index == 0:
            return self._reject("Already at the first step")
        if self.paid_intent_id is not None:
            # the charged amount is final once payment is captured
            return self._reject("Your payment has been taken. Please complete your order.")
        if self.step == Step.PAYMENT:
            self.payment_intent = None
        self.step = self.steps[index - 1]
        return self._ok()

    def abandon(self):
        """Close the session. A payment confirmation arriving afterwards is ignored."""
        self.closed = True

    # -----------------
    # Payment and submission
    # -----------------

    async def create_payment_intent(self) -> Optional[PaymentIntent]:
        if not self._awaiting_payment():
            self._reject("Checkout is not ready for payment")
            return None
        amount_cents = to_cents(self.quote().total)
        if self.payment_intent is not None and self.payment_intent.amount_cents == amount_cents:
            return self.payment_intent
        try:
            self.payment_intent = await self.gateway.create_payment_intent(amount_cents)
        except PaymentGatewayError as e:
            self._reject(e)
            return None
        self._ok()
        return self.payment_intent

    async def submit_payment(self, payment_method: Optional[str] = None) -> bool:
        if not self._awaiting_payment():
            return self._reject("Checkout is not awaiting payment")
        if self._submitting:
            return self._reject("Your order is already being submitted")
        if self.paid_intent_id is None and not self._check_ready_to_pay():
            return False
        self._submitting = True
        try:
            if self.paid_intent_id is None and self.quote().total > 0:
                if not payment_method:
                    return self._reject("Please enter your card details")
                intent = await self.create_payment_intent()
                if intent is None:
                    return False
                result = await self.gateway.confirm_card_payment(intent, payment_method)
                if not self._awaiting_payment():
                    logger.warning(
                        "Ignoring payment result %s for closed checkout %s", result.payment_intent_id, self.id
                    )
                    return False
                if not result.succeeded:
                    logger.info("Payment failed for checkout %s: %s", self.id, result.error)
                    return self._reject(result.error or "Payment failed. Please try again.")
                self.paid_intent_id = result.payment_intent_id
            return await self._finalize()
        finally:
            self._submitting = False

    async def _finalize(self) -> bool:
        try:
            order = await self._persist_order()
        except (DataStoreError, OrderIntegrityError) as e:
            logger.error("Error submitting order %s: %s", self.order_number, e)
            return self._reject(ORDER_FAILED_MESSAGE)
        self.order = order
        self.step = Step.SUBMITTED
        self._reset_progress()
        logger.info("Order %s placed (%s, $%.2f)", order.get("order_number"), self.order_type, order.get("total_amount", 0))
        return self._ok()

    async def _persist_order(self) -> dict:
        existing = await self.store.find_document("orders", {"order_number": self.order_number})
        if existing:
            return existing
        if self.is_gift_card and self._gift_card_id is None:
            card = await self.store.create_document(
                "gift_cards", self.seed.gift_card.model_dump(mode="json", exclude={"id"})
            )
            self._gift_card_id = card["id"]
        order = self.build_order()
        saved = await self.store.create_document("orders", order.model_dump(mode="json", exclude={"id"}))
        if self.discount is not None:
            try:
                await record_redemption(self.store, self.discount.discount_id)
            except DataStoreError as e:
                logger.error("Could not record use of discount %s: %s", self.discount.code, e)
        return saved

    def build_order(self) -> Order:
        breakdown = self.quote()
        c = self.customer
        fields = dict(
            order_number=self.order_number,
            customer_name=c.name,
            customer_email=c.email,
            customer_phone=c.phone,
            order_type=self.order_type,
            total_amount=breakdown.total,
            payment_intent_id=self.paid_intent_id,
        )
        if isinstance(self.seed, GiftCardSeed):
            fields["gift_card_id"] = self._gift_card_id
        else:
            if isinstance(self.seed, ProductSeed):
                fields["product_id"] = self.seed.product.id
                tree = self.seed.tree_options
                if tree is not None:
                    fields.update(tree_height=tree.height, tree_width=tree.width, tree_type=tree.type)
            else:
                fields["event_service_id"] = self.seed.event_service.id
            fields.update(
                delivery_address=c.compose_address(),
                unit_number=c.unit_number,
                building_name=c.building_name,
                street_address=c.street_address,
                postal_code=c.postal_code,
                delivery_zone=c.delivery_zone,
                delivery_area=c.delivery_area,
                delivery_fee=breakdown.delivery_fee,
                rental_period=self.rental_period if self.is_tree_order else None,
                decor_level=self.decor_level,
                event_size=self.event_size,
                men_power=self.men_power,
                installation_date=self.installation_date,
                teardown_date=self.teardown_date,
                rental_charge=breakdown.rental,
                men_power_charge=breakdown.men_power,
                installation_charges=breakdown.installation_surcharge,
                teardown_charges=breakdown.teardown_surcharge,
                timing_surcharges=money(breakdown.installation_surcharge + breakdown.teardown_surcharge),
                selected_delivery_addons=selected_addons(self.addon_ids, self.context.delivery.add_ons),
                delivery_addons_total=breakdown.addons,
                discount_code_id=self.discount.discount_id if self.discount else None,
                discount_amount=breakdown.discount,
            )
        try:
            return Order(**fields)
        except ValidationError as e:
            raise OrderIntegrityError(f"Order {self.order_number} is inconsistent: {e}") from e

    # -----------------
    # View
    # -----------------

    def snapshot(self) -> dict:
        data = {
            "id": self.id,
            "order_type": self.order_type,
            "order_number": self.order_number,
            "steps": [s.value for s in self.steps],
            "step": self.step.value,
            "error": self.error,
        }
        if self.step == Step.SUBMITTED:
            data["order"] = self.order
            return data
        data.update(
            customer=self.customer.model_dump(mode="json"),
            schedule={
                "rental_period": self.rental_period,
                "decor_level": self.decor_level,
                "event_size": self.event_size,
                "men_power": self.men_power,
                "installation_date": self.installation_date.isoformat() if self.installation_date else None,
                "teardown_date": self.teardown_date.isoformat() if self.teardown_date else None,
                "installation_service": self.installation_service,
                "teardown_service": self.teardown_service,
            },
            addon_ids=self.addon_ids,
            quote=self.quote().to_dict(),
            discount=self.discount.to_dict() if self.discount else None,
            missing=self.missing_for(self.step),
            client_secret=self.payment_intent.client_secret if self.payment_intent else None,
        )
        return data


async def start_checkout(seed, store, gateway: PaymentGateway, holidays: Iterable[date] = ()) -> CheckoutSession:
    """Open a checkout for a product (optionally with tree options), a gift card or an event service."""
    if isinstance(seed, EventSeed) and seed.event_service.price_type in ("upon_request", "custom"):
        raise CheckoutRejection(
            f"{seed.event_service.name} is priced upon request. Please send us an inquiry instead."
        )
    context = await load_pricing_context(store, holidays)
    session = CheckoutSession(seed, context, store, gateway)
    logger.info("Checkout %s started for a %s order", session.id, session.order_type)
    return session


class SessionRegistry:
    """In-memory checkout sessions for the HTTP layer."""

    def __init__(self, max_age: timedelta = timedelta(hours=12)):
        self.max_age = max_age
        self._sessions: dict[str, CheckoutSession] = {}

    def add(self, session: CheckoutSession) -> CheckoutSession:
        self.prune()
        self._sessions[session.id] = session
        return session

    def get(self, session_id: str) -> Optional[CheckoutSession]:
        return self._sessions.get(session_id)

    def discard(self, session_id: str) -> Optional[CheckoutSession]:
        session = self._sessions.pop(session_id, None)
        if session is not None:
            session.abandon()
        return session

    def prune(self):
        cutoff = datetime.now(timezone.utc) - self.max_age
        for sid in [sid for sid, s in self._sessions.items() if s.created_at < cutoff]:
            self.discard(sid)

    def __len__(self):
        return len(self._sessions)
