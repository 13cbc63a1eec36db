"""Tagged success/failure values for operations that must never raise.

Callers branch on ``result.ok`` instead of catching exceptions::

    result = archive_period(...)
    if not result.ok:
        warnings.append(result.error)
    else:
        copied = result.value
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    ok: bool = True


@dataclass(frozen=True)
class Err:
    error: str
    ok: bool = False


Result = Union[Ok[T], Err]


def err_from(exc: BaseException, prefix: str = "") -> Err:
    """Wrap an exception message as an :class:`Err`, optionally prefixed."""
    message = str(exc) or exc.__class__.__name__
    return Err(f"{prefix}{message}")
