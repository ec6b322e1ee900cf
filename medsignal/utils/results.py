"""Best-effort write helpers.

Persistence calls wrapped here never raise on storage errors. They return a
``WriteResult`` so the caller can see whether the row landed while the
in-memory computation carries on untouched.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class WriteResult(Generic[T]):
    value: T | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def best_effort(label: str):
    """Log and continue: turn a storage failure into a failed ``WriteResult``."""

    def decorator(func: Callable[..., T]) -> Callable[..., WriteResult[T]]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> WriteResult[T]:
            try:
                return WriteResult(value=func(*args, **kwargs))
            except SQLAlchemyError as exc:
                logger.warning("%s failed, continuing: %s", label, exc)
                return WriteResult(error=exc)

        return wrapper

    return decorator
