"""
Batch processing primitive.

``process_batch`` maps each input item to ``Ok(value)`` or
``Err(code, message)`` in input order. One item's failure never aborts
the others: each item runs inside its own isolation scope (typically a
SAVEPOINT from ``session.begin_nested``) which is rolled back on error.
"""

from __future__ import annotations

import logging
from contextlib import AbstractContextManager, nullcontext
from dataclasses import dataclass
from typing import Callable, Generic, Sequence, TypeVar

from onboarding_kernel.exceptions import OnboardingError

T = TypeVar("T")
R = TypeVar("R")

INTERNAL_ERROR = "INTERNAL_ERROR"


@dataclass(frozen=True)
class Ok(Generic[T, R]):
    index: int
    item: T
    value: R

    ok = True


@dataclass(frozen=True)
class Err(Generic[T]):
    index: int
    item: T
    code: str
    message: str
    error: Exception | None = None

    ok = False


def process_batch(
    items: Sequence[T],
    handler: Callable[[T], R],
    *,
    isolation: Callable[[], AbstractContextManager] | None = None,
    logger: logging.Logger | None = None,
) -> list[Ok[T, R] | Err[T]]:
    """Apply ``handler`` to every item independently.

    Args:
        items: Inputs, processed in order.
        handler: Called once per item. Raising marks the item as failed.
        isolation: Factory for a per-item scope that undoes the item's
            writes when the handler raises (e.g. ``session.begin_nested``).
        logger: Receives a warning per failed item; unexpected exceptions
            are logged with their traceback.

    Returns:
        One result per item, same order as ``items``.
    """
    results: list[Ok[T, R] | Err[T]] = []
    for index, item in enumerate(items):
        scope = isolation() if isolation is not None else nullcontext()
        try:
            with scope:
                value = handler(item)
        except OnboardingError as exc:
            if logger is not None:
                logger.warning(
                    "batch_item_failed",
                    extra={"item_index": index, "error_code": exc.code, "detail": exc.message},
                )
            results.append(Err(index, item, exc.code, exc.message, exc))
        except Exception as exc:
            if logger is not None:
                logger.error(
                    "batch_item_crashed",
                    extra={"item_index": index},
                    exc_info=True,
                )
            results.append(Err(index, item, INTERNAL_ERROR, str(exc), exc))
        else:
            results.append(Ok(index, item, value))
    return results
