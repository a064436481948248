"""Explicit step results for the pipelines.

Steps return ``Ok(value)`` or ``Err(error)`` instead of raising; the orchestrator
checks each one and only the queue boundary turns an ``Err`` back into an exception.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from content_hub.core.errors import ContentHubError

T = TypeVar("T")
E = TypeVar("E", bound=ContentHubError)


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    error: E


Result = Union[Ok[T], Err[E]]


__all__ = ["Ok", "Err", "Result"]
