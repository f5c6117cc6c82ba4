"""Custom exceptions for the storefront."""

from enum import Enum


class TwinkleError(Exception):
    """Base exception for all storefront errors."""

    pass


class CheckoutRejection(TwinkleError):
    """A user-fixable rejection. The message is shown to the customer as-is."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class InvalidRentalPeriod(CheckoutRejection):
    """Raised when a rental period is not one of the offered day counts."""

    def __init__(self, days):
        self.days = days
        super().__init__(f"Rental period of {days} days is not available")


class InvalidMenPower(CheckoutRejection):
    """Raised when the number of workers is below one."""

    def __init__(self, count):
        self.count = count
        super().__init__(f"At least one worker is required (got {count})")


class ZoneNotFound(CheckoutRejection):
    """Raised when no delivery zone covers the selection."""

    def __init__(self, postal_code: str | None = None, zone_id: str | None = None):
        self.postal_code = postal_code
        self.zone_id = zone_id
        if postal_code:
            msg = f"Delivery is not available for postal code {postal_code}"
        elif zone_id:
            msg = f"Delivery zone '{zone_id}' is not available"
        else:
            msg = "Please select a delivery zone"
        super().__init__(msg)


class OutOfRange(CheckoutRejection):
    """Raised when a distance-based delivery exceeds the maximum range."""

    def __init__(self, distance: float, max_range: float):
        self.distance = distance
        self.max_range = max_range
        super().__init__(
            f"Delivery distance of {distance:g} km exceeds our maximum range of {max_range:g} km"
        )


class DiscountErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    NOT_YET_ACTIVE = "not_yet_active"
    EXPIRED = "expired"
    BELOW_MINIMUM = "below_minimum"
    USAGE_LIMIT_REACHED = "usage_limit_reached"


class DiscountRejected(CheckoutRejection):
    """Raised when a discount code fails one of the validation gates."""

    def __init__(self, kind: DiscountErrorKind, reason: str):
        self.kind = kind
        super().__init__(reason)


class IncompleteStep(CheckoutRejection):
    """Raised when a checkout step is missing required input."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"Please provide: {', '.join(missing)}")


class OrderIntegrityError(TwinkleError):
    """Raised when an order would violate its reference invariants."""

    pass


class DataStoreError(TwinkleError):
    """Raised when the backing data store fails."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")


class PaymentGatewayError(TwinkleError):
    """Raised when the payment gateway cannot be reached or refuses a request outright."""

    pass
