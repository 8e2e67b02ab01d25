from __future__ import annotations

from contextvars import ContextVar, Token

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)
studio_slug_var: ContextVar[str | None] = ContextVar("studio_slug", default=None)


def set_correlation_id(value: str | None) -> Token[str | None]:
    return correlation_id_var.set(value)


def reset_correlation_id(token: Token[str | None]) -> None:
    correlation_id_var.reset(token)


def get_correlation_id() -> str | None:
    return correlation_id_var.get()


def set_studio_slug(value: str | None) -> Token[str | None]:
    return studio_slug_var.set(value)


def reset_studio_slug(token: Token[str | None]) -> None:
    studio_slug_var.reset(token)


def get_studio_slug() -> str | None:
    return studio_slug_var.get()


def get_log_context() -> dict[str, str | None]:
    return {"correlation_id": get_correlation_id(), "studio_slug": get_studio_slug()}
