"""Per-request and per-run context utilities."""
from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

request_id_ctx_var: ContextVar[str | None] = ContextVar("request_id", default=None)


def get_request_id() -> str | None:
    """Return the current request (or background run) id if available."""
    return request_id_ctx_var.get()


@contextmanager
def bind_request_id(request_id: str | None) -> Iterator[None]:
    """Bind an id for log correlation outside of an HTTP request, e.g. a background run."""
    token = request_id_ctx_var.set(request_id)
    try:
        yield
    finally:
        request_id_ctx_var.reset(token)
