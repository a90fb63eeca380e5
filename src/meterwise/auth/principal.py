from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Iterator


@dataclass(frozen=True, slots=True)
class Principal:
    """
    Principal is the authenticated caller a request runs on behalf of.
    """

    # stable directory object identifier of the user
    object_id: "str"
    # tenant the caller signed in from
    customer_id: "str"
    name: "str" = ""
    email: "str" = ""
    # bearer token the caller presented, used for on-behalf-of flows
    assertion: "str" = ""


_current: "ContextVar[Principal | None]" = ContextVar("meterwise_principal", default=None)


def current_principal() -> "Principal | None":
    return _current.get()


def require_principal() -> "Principal":
    principal = _current.get()
    if principal is None:
        raise LookupError("no authenticated principal in the current context")
    return principal


@contextmanager
def acting_as(principal: "Principal") -> "Iterator[Principal]":
    """
    binds principal to the current task for the duration of the block.
    """
    token = _current.set(principal)
    try:
        yield principal
    finally:
        _current.reset(token)
