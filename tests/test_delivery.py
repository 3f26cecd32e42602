from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import orderbot.models  # noqa: F401
from orderbot.core.database import Base
from orderbot.models.delivery_zone import DeliveryZone
from orderbot.models.restaurant import Restaurant
from orderbot.services.delivery import (
    GeocodeResult,
    delivery_fee_cents,
    estimate_delivery_minutes,
    normalize_address,
    point_in_polygon,
    validate_address,
)
from tests.fixtures_data import DELIVERY_ADDRESS, GEOCODED_ADDRESS, RESTAURANT

LISBON_CENTER = {"lat": 38.7223, "lng": -9.1393}


class _StaticGeocoder:
    def __init__(self, result):
        self.result = result

    def geocode(self, address):
        return self.result


def _session(**restaurant_overrides):
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    db.add(Restaurant(**{**RESTAURANT, **restaurant_overrides}))
    db.commit()
    return db


def _validate(db, subtotal=950, result=None):
    restaurant = db.query(Restaurant).filter_by(id=1).one()
    geocoder = _StaticGeocoder(result if result is not None else GeocodeResult(**GEOCODED_ADDRESS))
    return validate_address(db, restaurant, DELIVERY_ADDRESS, order_subtotal_cents=subtotal, geocoder=geocoder)


def test_normalize_address_collapses_spaces_and_symbols():
    assert normalize_address("  Rua   Augusta 100!!, Lisboa ") == "Rua Augusta 100, Lisboa"


def test_circle_zone_accepts_nearby_address():
    db = _session(latitude=LISBON_CENTER["lat"], longitude=LISBON_CENTER["lng"])
    db.add(
        DeliveryZone(
            restaurant_id=1,
            name="Baixa",
            coordinates={"type": "circle", "center": LISBON_CENTER, "radius": 3},
            fee_type="fixed",
            fee_cents=300,
        )
    )
    db.commit()

    validation = _validate(db)

    assert validation.valid is True
    assert validation.zone_name == "Baixa"
    assert validation.delivery_fee_cents == 300
    assert validation.formatted_address == GEOCODED_ADDRESS["formatted_address"]
    assert 1 < validation.distance_km < 2
    assert validation.estimated_time_minutes == 13


def test_zone_minimum_order_is_enforced():
    db = _session(latitude=LISBON_CENTER["lat"], longitude=LISBON_CENTER["lng"])
    db.add(
        DeliveryZone(
            restaurant_id=1,
            name="Baixa",
            coordinates={"type": "circle", "center": LISBON_CENTER, "radius": 3},
            min_order_cents=2000,
        )
    )
    db.commit()

    validation = _validate(db, subtotal=950)

    assert validation.valid is False
    assert validation.min_order_cents == 2000
    assert validation.error == "Valor mínimo do pedido: €20.00"


def test_address_outside_every_zone_is_rejected():
    db = _session(latitude=LISBON_CENTER["lat"], longitude=LISBON_CENTER["lng"])
    db.add(
        DeliveryZone(
            restaurant_id=1,
            name="Belém",
            coordinates={"type": "circle", "center": {"lat": 38.6975, "lng": -9.2063}, "radius": 1},
        )
    )
    db.commit()

    validation = _validate(db)

    assert validation.valid is False
    assert validation.error == "Morada fora da área de entrega"


def test_without_zones_distance_limit_applies():
    near = _validate(_session(latitude=LISBON_CENTER["lat"], longitude=LISBON_CENTER["lng"]))
    far = _validate(_session(latitude=41.1496, longitude=-8.6110))

    assert near.valid is True
    assert near.delivery_fee_cents == RESTAURANT["delivery_fee_cents"]
    assert far.valid is False
    assert far.distance_km > 10


def test_restaurant_without_coordinates_accepts_address():
    validation = _validate(_session())

    assert validation.valid is True
    assert validation.delivery_fee_cents == RESTAURANT["delivery_fee_cents"]


def test_unknown_address_is_invalid():
    db = _session()
    restaurant = db.query(Restaurant).filter_by(id=1).one()

    validation = validate_address(
        db, restaurant, "lugar nenhum", order_subtotal_cents=950, geocoder=_StaticGeocoder(None)
    )

    assert validation.valid is False
    assert validation.error == "Não consegui localizar essa morada"


def test_polygon_membership():
    square = [
        {"lat": 38.70, "lng": -9.15},
        {"lat": 38.70, "lng": -9.12},
        {"lat": 38.72, "lng": -9.12},
        {"lat": 38.72, "lng": -9.15},
    ]

    assert point_in_polygon(GEOCODED_ADDRESS["lat"], GEOCODED_ADDRESS["lng"], square) is True
    assert point_in_polygon(38.80, -9.13, square) is False


def test_fee_types():
    per_km = DeliveryZone(name="km", fee_type="per_km", fee_cents=100, coordinates={})
    tiered = DeliveryZone(
        name="tiers",
        fee_type="tiered",
        fee_cents=0,
        coordinates={"tiers": [{"distance": 5, "fee_cents": 300}, {"distance": 1, "fee_cents": 100}]},
    )

    assert delivery_fee_cents(per_km, 2.5) == 250
    assert delivery_fee_cents(tiered, 0.5) == 100
    assert delivery_fee_cents(tiered, 3) == 300
    assert delivery_fee_cents(tiered, 12) == 300


def test_estimate_is_capped_by_zone_maximum():
    assert estimate_delivery_minutes(5) == 20
    assert estimate_delivery_minutes(5, max_minutes=15) == 15
