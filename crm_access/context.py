from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)

# Upper bound for client supplied correlation ids; longer values are replaced.
MAX_CORRELATION_ID_LENGTH = 128


def set_correlation_id(value: str | None) -> Token[str | None]:
    return correlation_id_var.set(value)


def reset_correlation_id(token: Token[str | None]) -> None:
    correlation_id_var.reset(token)


def get_correlation_id() -> str | None:
    return correlation_id_var.get()


def is_acceptable_correlation_id(value: str | None) -> bool:
    if not value or len(value) > MAX_CORRELATION_ID_LENGTH:
        return False
    return value.isprintable()


@contextmanager
def correlation_scope(value: str) -> Iterator[str]:
    token = set_correlation_id(value)
    try:
        yield value
    finally:
        reset_correlation_id(token)
