# file: weather_pipeline/result.py

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class FailureReason(str, Enum):
    TIMEOUT = "timeout"
    CONNECTION = "connection"
    HTTP_STATUS = "http_status"
    REJECTED = "rejected"
    EMPTY = "empty"
    DISABLED = "disabled"

    @property
    def category(self) -> str:
        if self in (FailureReason.TIMEOUT, FailureReason.CONNECTION):
            return "NetworkFailure"
        if self in (FailureReason.HTTP_STATUS, FailureReason.REJECTED):
            return "UpstreamRejected"
        if self is FailureReason.EMPTY:
            return "EmptyResult"
        return "Disabled"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Failure:
    reason: FailureReason
    detail: str = ""

    def __str__(self) -> str:
        return f"{self.reason.category}/{self.reason.value}: {self.detail}" if self.detail else self.reason.value


Result = Union[Ok[T], Failure]
