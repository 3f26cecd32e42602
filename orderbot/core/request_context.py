from __future__ import annotations

from contextvars import ContextVar


_REQUEST_ID_CTX: ContextVar[str | None] = ContextVar("request_id", default=None)
_RESTAURANT_ID_CTX: ContextVar[str | None] = ContextVar("restaurant_id", default=None)
_CUSTOMER_PHONE_CTX: ContextVar[str | None] = ContextVar("customer_phone", default=None)


def set_request_context(
    *,
    request_id: str | None = None,
    restaurant_id: str | None = None,
    customer_phone: str | None = None,
) -> None:
    if request_id is not None:
        _REQUEST_ID_CTX.set(request_id)
    if restaurant_id is not None:
        _RESTAURANT_ID_CTX.set(restaurant_id)
    if customer_phone is not None:
        _CUSTOMER_PHONE_CTX.set(customer_phone)


def get_request_id() -> str | None:
    return _REQUEST_ID_CTX.get()


def get_restaurant_id() -> str | None:
    return _RESTAURANT_ID_CTX.get()


def get_customer_phone() -> str | None:
    return _CUSTOMER_PHONE_CTX.get()


def clear_request_context() -> None:
    _REQUEST_ID_CTX.set(None)
    _RESTAURANT_ID_CTX.set(None)
    _CUSTOMER_PHONE_CTX.set(None)
