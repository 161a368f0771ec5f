from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

StateT = TypeVar("StateT")


class ErrorKind(str, Enum):
    invalid_credential = "invalid_credential"
    unauthorized = "unauthorized"
    not_found = "not_found"
    conflict = "conflict"
    capacity_exceeded = "capacity_exceeded"


@dataclass(frozen=True)
class EngineResult(Generic[StateT]):
    """Outcome of a single engine transition.

    A rejected result carries the input state untouched, so callers can
    always persist ``result.state`` only when ``result.ok and result.changed``.
    """

    state: StateT
    changed: bool = True
    error: Optional[ErrorKind] = None
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def accepted(state: StateT, *, changed: bool = True) -> EngineResult[StateT]:
    return EngineResult(state=state, changed=changed)


def rejected(state: StateT, kind: ErrorKind, detail: str) -> EngineResult[StateT]:
    return EngineResult(state=state, changed=False, error=kind, detail=detail)


class WidgetOperationError(Exception):
    def __init__(self, kind: ErrorKind, detail: str) -> None:
        super().__init__(detail)
        self.kind = kind
        self.detail = detail


class InvalidCredentialError(WidgetOperationError):
    def __init__(self, detail: str = "owner token must be 8-16 characters") -> None:
        super().__init__(ErrorKind.invalid_credential, detail)
