"""
Delivery fee resolution.

Zone model: a postal code is looked up as a full code first, across every
zone, and only then by its 2-digit sector. Full-code lists are the preferred
way to define new zones; sector entries exist for backward compatibility.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from pydantic import ValidationError

from .errors import OutOfRange, ZoneNotFound
from .pricing import money
from .schemas import DeliveryAddOn, DeliveryConfiguration, DeliveryZone

logger = logging.getLogger(__name__)

PREFIX_LENGTH = 2


def _sectors(*ranges: tuple[int, int]) -> list[str]:
    return [f"{n:02d}" for lo, hi in ranges for n in range(lo, hi + 1)]


DEFAULT_DELIVERY_ZONES: list[DeliveryZone] = [
    DeliveryZone(
        id="central", name="Central (CBD)", fee=40,
        postal_codes=_sectors((1, 10), (14, 41), (57, 59)),
        areas=["Downtown Core", "Marina South", "Newton", "Orchard", "Outram", "River Valley",
               "Toa Payoh", "Bishan", "Bukit Merah", "Bukit Timah", "Queenstown", "Geylang",
               "Kallang", "Tanglin", "Other"],
    ),
    DeliveryZone(
        id="north", name="North", fee=50,
        postal_codes=_sectors((72, 73), (75, 78)),
        areas=["Yishun", "Sembawang", "Woodlands", "Admiralty", "Kranji", "Mandai", "Other"],
    ),
    DeliveryZone(
        id="northeast", name="Northeast", fee=45,
        postal_codes=_sectors((53, 56), (79, 80), (82, 82)),
        areas=["Ang Mo Kio", "Hougang", "Punggol", "Seletar", "Sengkang", "Serangoon", "Other"],
    ),
    DeliveryZone(
        id="east", name="East", fee=45,
        postal_codes=_sectors((42, 52), (81, 81)),
        areas=["Bedok", "Changi", "Paya Lebar", "Pasir Ris", "Tampines", "Other"],
    ),
    DeliveryZone(
        id="west", name="West", fee=50,
        postal_codes=_sectors((60, 71)),
        areas=["Boon Lay", "Bukit Batok", "Bukit Panjang", "Choa Chu Kang", "Clementi",
               "Jurong East", "Jurong West", "Pioneer", "Tengah", "Tuas", "Other"],
    ),
    DeliveryZone(
        id="sentosa", name="Sentosa", fee=80,
        postal_codes=["098269", "098138", "098297", "098585", "099891", "099538", "099981"],
        areas=["Sentosa Cove", "Resorts World Sentosa", "Imbiah Lookout", "Other"],
    ),
    DeliveryZone(
        id="jurong-island", name="Jurong Island", fee=120,
        postal_codes=["627590", "627833", "627834", "628054", "628260", "628388"],
        areas=["Jurong Island (Industrial)", "Jurong Island (Petrochemical)", "Other"],
    ),
]

DEFAULT_DELIVERY_ADDONS: list[DeliveryAddOn] = [
    DeliveryAddOn(id="no-lift", name="No lift access", fee=60),
    DeliveryAddOn(id="permits", name="Permit/licensing needed", fee=80),
    DeliveryAddOn(id="rush-order", name="Rush Order", fee=150),
]

DEFAULT_DELIVERY_CONFIGURATION = DeliveryConfiguration(
    model="zone",
    zones=DEFAULT_DELIVERY_ZONES,
    add_ons=DEFAULT_DELIVERY_ADDONS,
    is_active=True,
)


@dataclass(frozen=True)
class DeliveryQuote:
    fee: float
    zone_id: Optional[str] = None
    zone_name: Optional[str] = None
    distance_km: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "fee": self.fee,
            "zone_id": self.zone_id,
            "zone_name": self.zone_name,
            "distance_km": self.distance_km,
        }


def normalize_postal_code(code: str) -> str:
    return "".join(code.split()).upper()


def find_zone_for_postal_code(zones: list[DeliveryZone], postal_code: str) -> Optional[DeliveryZone]:
    code = normalize_postal_code(postal_code)
    if not code:
        return None
    for zone in zones:
        if code in (normalize_postal_code(c) for c in zone.postal_codes):
            return zone
    prefix = code[:PREFIX_LENGTH]
    for zone in zones:
        if any(normalize_postal_code(c) == prefix for c in zone.postal_codes if len(c.strip()) == PREFIX_LENGTH):
            return zone
    return None


def distance_fee(config: DeliveryConfiguration, distance_km: float) -> float:
    dc = config.distance_config
    if distance_km > dc.max_range:
        raise OutOfRange(distance_km, dc.max_range)
    extra = max(Decimal(0), Decimal(str(distance_km)) - Decimal(str(dc.base_distance)))
    return money(Decimal(str(dc.base_fee)) + extra * Decimal(str(dc.per_km_charge)))


def resolve_delivery_fee(
    config: DeliveryConfiguration,
    *,
    zone_id: Optional[str] = None,
    postal_code: Optional[str] = None,
    distance_km: Optional[float] = None,
) -> DeliveryQuote:
    """Resolve the delivery fee for a selection, raising ZoneNotFound or OutOfRange."""
    if config.model == "distance":
        if distance_km is None:
            raise ZoneNotFound()
        return DeliveryQuote(fee=distance_fee(config, distance_km), distance_km=distance_km)

    if zone_id:
        zone = next((z for z in config.zones if z.id == zone_id), None)
        if zone is None:
            raise ZoneNotFound(zone_id=zone_id)
    elif postal_code:
        zone = find_zone_for_postal_code(config.zones, postal_code)
        if zone is None:
            raise ZoneNotFound(postal_code=postal_code)
    else:
        raise ZoneNotFound()
    return DeliveryQuote(fee=money(zone.fee), zone_id=zone.id, zone_name=zone.name)


async def load_delivery_configuration(store) -> DeliveryConfiguration:
    docs = await store.get_documents(
        "delivery_configurations", {"is_active": True}, limit=1, sort=[("updated_at", -1)]
    )
    if not docs:
        logger.warning("No active delivery configuration found, using the default zones")
        return DEFAULT_DELIVERY_CONFIGURATION
    try:
        return DeliveryConfiguration(**docs[0])
    except ValidationError as e:
        logger.error("Delivery configuration %s is invalid, using the default zones: %s", docs[0].get("id"), e)
        return DEFAULT_DELIVERY_CONFIGURATION
