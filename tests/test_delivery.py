"""Tests for delivery fee resolution."""

import asyncio

import pytest

from twinkle.delivery import (
    DEFAULT_DELIVERY_CONFIGURATION,
    find_zone_for_postal_code,
    load_delivery_configuration,
    resolve_delivery_fee,
)
from twinkle.errors import OutOfRange, ZoneNotFound
from twinkle.schemas import DeliveryConfiguration, DeliveryZone, DistanceConfig


@pytest.fixture
def distance_config():
    return DeliveryConfiguration(
        model="distance",
        distance_config=DistanceConfig(base_fee=30, base_distance=5, per_km_charge=2.5, max_range=40),
    )


class TestZoneLookup:
    @pytest.mark.parametrize(
        "postal_code,zone_id",
        [
            ("018956", "central"),
            ("460123", "east"),
            ("730001", "north"),
            ("540321", "northeast"),
            ("640500", "west"),
            ("098269", "sentosa"),
            ("627590", "jurong-island"),
        ],
    )
    def test_default_zones(self, postal_code, zone_id):
        zone = find_zone_for_postal_code(DEFAULT_DELIVERY_CONFIGURATION.zones, postal_code)
        assert zone.id == zone_id

    def test_exact_code_beats_sector(self):
        # 098269 is Sentosa even though sector 09 belongs to Central
        quote = resolve_delivery_fee(DEFAULT_DELIVERY_CONFIGURATION, postal_code="098269")
        assert quote.zone_id == "sentosa"
        assert quote.fee == 80

    def test_exact_match_in_later_zone_wins(self):
        zones = [
            DeliveryZone(id="a", name="A", postal_codes=["12"], fee=10),
            DeliveryZone(id="b", name="B", postal_codes=["123456"], fee=99),
        ]
        assert find_zone_for_postal_code(zones, "123456").id == "b"
        assert find_zone_for_postal_code(zones, "123457").id == "a"

    def test_whitespace_ignored(self):
        assert find_zone_for_postal_code(DEFAULT_DELIVERY_CONFIGURATION.zones, " 46 0123 ").id == "east"

    def test_fee_matches_zone_table(self):
        for zone in DEFAULT_DELIVERY_CONFIGURATION.zones:
            code = zone.postal_codes[0]
            if len(code) == 2:
                code += "0001"
            assert resolve_delivery_fee(DEFAULT_DELIVERY_CONFIGURATION, postal_code=code).fee == zone.fee


class TestResolveDeliveryFee:
    def test_by_zone_id(self):
        quote = resolve_delivery_fee(DEFAULT_DELIVERY_CONFIGURATION, zone_id="central")
        assert quote.fee == 40
        assert quote.zone_name == "Central (CBD)"

    def test_unknown_postal_code(self):
        with pytest.raises(ZoneNotFound) as exc:
            resolve_delivery_fee(DEFAULT_DELIVERY_CONFIGURATION, postal_code="999999")
        assert exc.value.reason == "Delivery is not available for postal code 999999"

    def test_unknown_zone_id(self):
        with pytest.raises(ZoneNotFound):
            resolve_delivery_fee(DEFAULT_DELIVERY_CONFIGURATION, zone_id="mars")

    def test_nothing_selected(self):
        with pytest.raises(ZoneNotFound) as exc:
            resolve_delivery_fee(DEFAULT_DELIVERY_CONFIGURATION)
        assert exc.value.reason == "Please select a delivery zone"

    def test_distance_within_base(self, distance_config):
        assert resolve_delivery_fee(distance_config, distance_km=3).fee == 30

    def test_distance_beyond_base(self, distance_config):
        assert resolve_delivery_fee(distance_config, distance_km=12).fee == 30 + 7 * 2.5

    def test_distance_at_max_range(self, distance_config):
        assert resolve_delivery_fee(distance_config, distance_km=40).fee == 30 + 35 * 2.5

    def test_distance_out_of_range(self, distance_config):
        with pytest.raises(OutOfRange):
            resolve_delivery_fee(distance_config, distance_km=40.5)

    def test_distance_model_needs_distance(self, distance_config):
        with pytest.raises(ZoneNotFound):
            resolve_delivery_fee(distance_config, postal_code="018956")


class TestLoadDeliveryConfiguration:
    def test_default_when_missing(self, store):
        config = asyncio.run(load_delivery_configuration(store))
        assert config is DEFAULT_DELIVERY_CONFIGURATION

    def test_latest_active_wins(self, store):
        older = {"model": "zone", "zones": [{"id": "old", "name": "Old", "fee": 1}], "is_active": True}
        newer = {"model": "zone", "zones": [{"id": "new", "name": "New", "fee": 2}], "is_active": True}
        asyncio.run(store.create_document("delivery_configurations", older))
        asyncio.run(store.create_document("delivery_configurations", newer))
        config = asyncio.run(load_delivery_configuration(store))
        assert [z.id for z in config.zones] == ["new"]

    def test_invalid_document_falls_back(self, store):
        asyncio.run(store.create_document("delivery_configurations", {"model": "distance", "is_active": True}))
        config = asyncio.run(load_delivery_configuration(store))
        assert config is DEFAULT_DELIVERY_CONFIGURATION
