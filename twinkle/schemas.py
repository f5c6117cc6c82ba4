"""
Database Schemas for the Twinkle Jingle storefront

Each Pydantic model represents a MongoDB collection; the collection name is
given in the class docstring. Models are dumped with ``mode="json"`` before
they are written so dates travel as ISO strings.
"""
from __future__ import annotations
from datetime import date, datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .catalog import RENTAL_PERIODS, is_orderable_tree_type, is_tree_size

RENTAL_DAYS = tuple(p["days"] for p in RENTAL_PERIODS)

ProductCategory = Literal["decorations", "ribbons", "trees", "centrepieces"]
OrderType = Literal["product", "giftcard", "event"]
OrderStatus = Literal["pending", "confirmed", "delivered", "completed"]

ORDER_STATUS_FLOW: list[str] = ["pending", "confirmed", "delivered", "completed"]


# -----------------
# Catalog
# -----------------

class Product(BaseModel):
    """
    Rentable and purchasable catalog items
    Collection: "products"
    """
    id: Optional[str] = None
    title: str = Field(..., description="Product name")
    description: str = Field("", description="Marketing description")
    price: float = Field(..., ge=0, description="Base price in dollars")
    category: ProductCategory
    color: Optional[list[str]] = Field(None, description="Color values from PRODUCT_COLORS")
    decorated: bool = False
    images: list[str] = Field(default_factory=list, description="Public image URLs")


class ProductUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    category: Optional[ProductCategory] = None
    color: Optional[list[str]] = None
    decorated: Optional[bool] = None
    images: Optional[list[str]] = None


class TreeOptions(BaseModel):
    """Selections from the tree customization wizard. Not a collection."""
    height: str
    width: str
    type: str
    rental_period: Optional[int] = Field(None, description="Rental days: 45, 60 or 90")
    decor_level: Optional[Literal[50, 75, 100]] = None
    event_size: Optional[Literal["small", "medium", "large"]] = None

    @field_validator("rental_period")
    @classmethod
    def check_rental_period(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v not in RENTAL_DAYS:
            raise ValueError(f"Rental period must be one of {RENTAL_DAYS}")
        return v

    @model_validator(mode="after")
    def check_tables(self):
        if not is_tree_size(self.height, self.width):
            raise ValueError(f"Unknown tree size {self.height} x {self.width}")
        if not is_orderable_tree_type(self.type):
            raise ValueError(f"Tree type '{self.type}' is not available")
        if self.decor_level != 100:
            # event size only applies to the full decor package
            self.event_size = None
        return self


class EventService(BaseModel):
    """
    Event decoration services
    Collection: "events_services"
    """
    id: Optional[str] = None
    name: str
    category: str
    price: float = Field(0, ge=0)
    price_type: Literal["fixed", "from", "upon_request", "custom"] = "fixed"
    description: Optional[str] = None
    images: list[str] = Field(default_factory=list)


class Inquiry(BaseModel):
    """
    Customer inquiries about event services
    Collection: "inquiries"
    """
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    phone: Optional[str] = None
    message: str = Field(..., min_length=1)
    service_name: Optional[str] = None


# -----------------
# Customer
# -----------------

class CustomerDetails(BaseModel):
    name: str = ""
    email: str = ""
    phone: str = ""
    delivery_address: str = ""
    unit_number: Optional[str] = None
    building_name: Optional[str] = None
    street_address: Optional[str] = None
    postal_code: Optional[str] = None
    delivery_zone: Optional[str] = None
    delivery_area: Optional[str] = None
    delivery_fee: float = Field(0, ge=0, description="Computed by the delivery resolver, never user-entered")

    def compose_address(self) -> str:
        if self.delivery_address.strip():
            return self.delivery_address.strip()
        parts = [self.unit_number, self.building_name, self.street_address]
        line = ", ".join(p.strip() for p in parts if p and p.strip())
        if self.postal_code:
            line = f"{line} Singapore {self.postal_code}".strip()
        return line


class CustomerDetailsInput(BaseModel):
    """Fields a customer may edit. The delivery fee is set only by the delivery resolver."""
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    delivery_address: Optional[str] = None
    unit_number: Optional[str] = None
    building_name: Optional[str] = None
    street_address: Optional[str] = None


# -----------------
# Delivery
# -----------------

class DeliveryZone(BaseModel):
    id: str
    name: str
    postal_codes: list[str] = Field(default_factory=list, description="Full postal codes or 2-digit sectors")
    areas: list[str] = Field(default_factory=list)
    fee: float = Field(..., ge=0)


class DistanceConfig(BaseModel):
    base_fee: float = Field(..., ge=0)
    base_distance: float = Field(..., ge=0, description="Kilometres included in the base fee")
    per_km_charge: float = Field(..., ge=0)
    max_range: float = Field(..., gt=0)


class DeliveryAddOn(BaseModel):
    id: str
    name: str
    fee: float = Field(..., ge=0)
    enabled: bool = True


class DeliveryConfiguration(BaseModel):
    """
    Delivery pricing, one active document per tenant
    Collection: "delivery_configurations"
    """
    id: Optional[str] = None
    model: Literal["zone", "distance"] = "zone"
    zones: list[DeliveryZone] = Field(default_factory=list)
    distance_config: Optional[DistanceConfig] = None
    add_ons: list[DeliveryAddOn] = Field(default_factory=list)
    is_active: bool = True

    @model_validator(mode="after")
    def check_model(self):
        if self.model == "distance" and self.distance_config is None:
            raise ValueError("distance_config is required for the distance model")
        return self


# -----------------
# Pricing configuration
# -----------------

class DiscountCode(BaseModel):
    """
    Discount codes
    Collection: "discount_codes"
    """
    id: Optional[str] = None
    code: str = Field(..., min_length=1)
    description: Optional[str] = None
    discount_type: Literal["percentage", "fixed"]
    discount_value: float = Field(..., ge=0)
    min_order_amount: float = Field(0, ge=0)
    max_uses: Optional[int] = Field(None, ge=0, description="None means unlimited")
    used_count: int = Field(0, ge=0)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("valid_from", "valid_until")
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @model_validator(mode="after")
    def check_percentage(self):
        if self.discount_type == "percentage" and self.discount_value > 100:
            raise ValueError("A percentage discount cannot exceed 100")
        return self


class TimingSurcharge(BaseModel):
    """
    Weekend and public holiday surcharges
    Collection: "timing_surcharges"
    """
    id: Optional[str] = None
    surcharge_type: Literal["day_based"] = "day_based"
    name: str
    description: Optional[str] = None
    surcharge_amount: float = Field(..., ge=0)
    day_types: list[Literal["weekend", "public_holiday"]] = Field(default_factory=lambda: ["weekend"])
    is_active: bool = True


# -----------------
# Gift cards and orders
# -----------------

class GiftCard(BaseModel):
    """
    Gift cards, written before the order that references them
    Collection: "gift_cards"
    """
    id: Optional[str] = None
    amount: float = Field(..., ge=10, le=1000)
    recipient_name: Optional[str] = None
    recipient_email: Optional[str] = None
    sender_name: Optional[str] = None
    personal_message: Optional[str] = Field(None, max_length=200)
    delivery_timing: Literal["now", "scheduled"] = "now"
    scheduled_date: Optional[date] = None
    is_for_self: bool = False

    @model_validator(mode="after")
    def check_recipient(self):
        if not self.is_for_self:
            missing = [f for f in ("recipient_name", "recipient_email") if not (getattr(self, f) or "").strip()]
            if missing:
                raise ValueError(f"Required for a gift to someone else: {', '.join(missing)}")
        if self.delivery_timing == "scheduled" and self.scheduled_date is None:
            raise ValueError("scheduled_date is required for scheduled delivery")
        return self


class Order(BaseModel):
    """
    Orders, created at checkout submission
    Collection: "orders"
    """
    id: Optional[str] = None
    order_number: str
    customer_name: str
    customer_email: str
    customer_phone: str
    delivery_address: str = ""
    unit_number: Optional[str] = None
    building_name: Optional[str] = None
    street_address: Optional[str] = None
    postal_code: Optional[str] = None
    delivery_zone: Optional[str] = None
    delivery_area: Optional[str] = None
    delivery_fee: float = Field(0, ge=0)

    order_type: OrderType
    product_id: Optional[str] = None
    gift_card_id: Optional[str] = None
    event_service_id: Optional[str] = None

    tree_height: Optional[str] = None
    tree_width: Optional[str] = None
    tree_type: Optional[str] = None
    rental_period: Optional[int] = None
    decor_level: Optional[int] = None
    event_size: Optional[str] = None
    men_power: Optional[int] = Field(None, ge=1, le=20)
    installation_date: Optional[date] = None
    teardown_date: Optional[date] = None

    rental_charge: float = Field(0, ge=0)
    men_power_charge: float = Field(0, ge=0)
    installation_charges: float = Field(0, ge=0)
    teardown_charges: float = Field(0, ge=0)
    timing_surcharges: float = Field(0, ge=0)
    selected_delivery_addons: list[DeliveryAddOn] = Field(default_factory=list)
    delivery_addons_total: float = Field(0, ge=0)
    discount_code_id: Optional[str] = None
    discount_amount: float = Field(0, ge=0)
    total_amount: float = Field(..., ge=0)

    status: OrderStatus = "pending"
    payment_intent_id: Optional[str] = None

    @model_validator(mode="after")
    def check_reference(self):
        refs = {
            "product": self.product_id,
            "giftcard": self.gift_card_id,
            "event": self.event_service_id,
        }
        present = [k for k, v in refs.items() if v]
        if present != [self.order_type]:
            raise ValueError(
                f"A {self.order_type} order must reference exactly its own record (got {present or 'none'})"
            )
        return self


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


