from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from sqlalchemy.orm import Session

from orderbot.core.config import GEOCODER_USER_AGENT, NOMINATIM_BASE_URL
from orderbot.models.delivery_zone import DeliveryZone
from orderbot.models.restaurant import Restaurant

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0
DEFAULT_MAX_DISTANCE_KM = 10.0
BASE_PREP_MINUTES = 10
MINUTES_PER_KM = 2


@dataclass
class GeocodeResult:
    lat: float
    lng: float
    formatted_address: str


@dataclass
class AddressValidation:
    valid: bool
    formatted_address: str | None = None
    lat: float | None = None
    lng: float | None = None
    zone_name: str | None = None
    delivery_fee_cents: int = 0
    estimated_time_minutes: int | None = None
    distance_km: float | None = None
    min_order_cents: int | None = None
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "formatted_address": self.formatted_address,
            "zone": self.zone_name,
            "delivery_fee_cents": self.delivery_fee_cents,
            "estimated_time_minutes": self.estimated_time_minutes,
            "distance_km": self.distance_km,
            "min_order_cents": self.min_order_cents,
            "error": self.error,
        }


class Geocoder(Protocol):
    def geocode(self, address: str) -> GeocodeResult | None:
        ...


def normalize_address(address: str) -> str:
    address = re.sub(r"\s+", " ", (address or "").strip())
    return re.sub(r"[^\w\s,\-ºª]", "", address)


class NominatimGeocoder:
    """Geocoding gratuito via OpenStreetMap Nominatim."""

    def __init__(self, base_url: str = NOMINATIM_BASE_URL, timeout: float = 10.0, country_codes: str = "pt") -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.country_codes = country_codes

    def geocode(self, address: str) -> GeocodeResult | None:
        query = normalize_address(address)
        if not query:
            return None
        params = {"q": query, "format": "json", "limit": 1, "countrycodes": self.country_codes}
        headers = {"User-Agent": GEOCODER_USER_AGENT, "Accept": "application/json"}
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.get(f"{self.base_url}/search", params=params, headers=headers)
            response.raise_for_status()
            results = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("geocoding failed: %s", exc)
            return None
        if not results:
            return None
        first = results[0]
        return GeocodeResult(
            lat=float(first["lat"]),
            lng=float(first["lon"]),
            formatted_address=str(first.get("display_name") or query),
        )


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def point_in_polygon(lat: float, lng: float, polygon: list[dict[str, float]]) -> bool:
    inside = False
    j = len(polygon) - 1
    for i in range(len(polygon)):
        xi, yi = polygon[i]["lat"], polygon[i]["lng"]
        xj, yj = polygon[j]["lat"], polygon[j]["lng"]
        if (yi > lng) != (yj > lng) and lat < (xj - xi) * (lng - yi) / (yj - yi) + xi:
            inside = not inside
        j = i
    return inside


def zone_contains(zone: DeliveryZone, lat: float, lng: float) -> bool:
    coords = zone.coordinates or {}
    if coords.get("type") == "circle" and coords.get("center") and coords.get("radius"):
        center = coords["center"]
        return haversine_km(lat, lng, center["lat"], center["lng"]) <= float(coords["radius"])
    if coords.get("type") == "polygon" and isinstance(coords.get("points"), list):
        return point_in_polygon(lat, lng, coords["points"])
    return False


def delivery_fee_cents(zone: DeliveryZone, distance_km: float) -> int:
    fee = int(zone.fee_cents or 0)
    if zone.fee_type == "per_km":
        return int(round(fee * distance_km))
    if zone.fee_type == "tiered":
        tiers = sorted((zone.coordinates or {}).get("tiers") or [], key=lambda tier: tier["distance"])
        if not tiers:
            return fee
        for tier in tiers:
            if distance_km <= tier["distance"]:
                return int(tier["fee_cents"])
        return int(tiers[-1]["fee_cents"])
    return fee


def estimate_delivery_minutes(distance_km: float, max_minutes: int | None = None) -> int:
    estimated = math.ceil(BASE_PREP_MINUTES + distance_km * MINUTES_PER_KM)
    if max_minutes:
        return min(estimated, int(max_minutes))
    return estimated


def validate_address(
    db: Session,
    restaurant: Restaurant,
    address: str,
    *,
    order_subtotal_cents: int,
    geocoder: Geocoder,
) -> AddressValidation:
    located = geocoder.geocode(address)
    if not located:
        return AddressValidation(valid=False, error="Não consegui localizar essa morada")

    base = dict(formatted_address=located.formatted_address, lat=located.lat, lng=located.lng)
    if restaurant.latitude is None or restaurant.longitude is None:
        # sem localização configurada não há como validar zona
        logger.warning("restaurant without coordinates; accepting address")
        return AddressValidation(valid=True, delivery_fee_cents=int(restaurant.delivery_fee_cents or 0), **base)

    distance = round(haversine_km(restaurant.latitude, restaurant.longitude, located.lat, located.lng), 2)
    zones = (
        db.query(DeliveryZone)
        .filter(DeliveryZone.restaurant_id == restaurant.id, DeliveryZone.active.is_(True))
        .order_by(DeliveryZone.priority.asc(), DeliveryZone.id.asc())
        .all()
    )

    if not zones:
        if distance > DEFAULT_MAX_DISTANCE_KM:
            return AddressValidation(
                valid=False,
                distance_km=distance,
                error=f"Morada fora da área de entrega (máximo {DEFAULT_MAX_DISTANCE_KM:.0f}km)",
                **base,
            )
        return AddressValidation(
            valid=True,
            delivery_fee_cents=int(restaurant.delivery_fee_cents or 0),
            estimated_time_minutes=estimate_delivery_minutes(distance),
            distance_km=distance,
            **base,
        )

    matched = next((zone for zone in zones if zone_contains(zone, located.lat, located.lng)), None)
    if not matched:
        return AddressValidation(valid=False, distance_km=distance, error="Morada fora da área de entrega", **base)

    if matched.min_order_cents and order_subtotal_cents < matched.min_order_cents:
        return AddressValidation(
            valid=False,
            zone_name=matched.name,
            distance_km=distance,
            min_order_cents=int(matched.min_order_cents),
            error=f"Valor mínimo do pedido: €{matched.min_order_cents / 100:.2f}",
            **base,
        )

    return AddressValidation(
        valid=True,
        zone_name=matched.name,
        delivery_fee_cents=delivery_fee_cents(matched, distance),
        estimated_time_minutes=estimate_delivery_minutes(distance, matched.max_delivery_time_minutes),
        distance_km=distance,
        min_order_cents=matched.min_order_cents,
        **base,
    )
