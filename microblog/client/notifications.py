import itertools
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Optional, Protocol


class ToastType(StrEnum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass
class ToastAction:
    label: str
    callback: Callable[[], Awaitable[Any]]


@dataclass
class Toast:
    id: int
    message: str
    type: ToastType
    duration: float  # seconds
    action: Optional[ToastAction] = None
    created_at: float = field(default_factory=time.monotonic)

    def is_visible(self, now: float) -> bool:
        return now < self.created_at + self.duration


class Notifier(Protocol):
    def success(
        self, message: str, duration: float | None = None, action: ToastAction | None = None
    ) -> int: ...

    def error(self, message: str, duration: float | None = None) -> int: ...


class ToastQueue:
    """In-memory toast list: oldest toast dropped once ``max_toasts`` are shown."""

    def __init__(self, default_duration: float = 3.0, max_toasts: int = 5):
        self.default_duration = default_duration
        self.max_toasts = max_toasts
        self.toasts: list[Toast] = []
        self._ids = itertools.count(1)

    def show(
        self,
        message: str,
        type: ToastType = ToastType.INFO,
        duration: float | None = None,
        action: ToastAction | None = None,
    ) -> int:
        toast = Toast(
            id=next(self._ids),
            message=message,
            type=type,
            duration=self.default_duration if duration is None else duration,
            action=action,
        )
        if len(self.toasts) >= self.max_toasts:
            self.toasts.pop(0)
        self.toasts.append(toast)
        return toast.id

    def success(
        self, message: str, duration: float | None = None, action: ToastAction | None = None
    ) -> int:
        return self.show(message, ToastType.SUCCESS, duration, action)

    def error(self, message: str, duration: float | None = None) -> int:
        return self.show(message, ToastType.ERROR, duration)

    def dismiss(self, toast_id: int) -> None:
        self.toasts = [t for t in self.toasts if t.id != toast_id]

    def visible(self, now: float | None = None) -> list[Toast]:
        now = time.monotonic() if now is None else now
        return [t for t in self.toasts if t.is_visible(now)]

    def last(self, type: ToastType | None = None) -> Toast | None:
        for toast in reversed(self.toasts):
            if type is None or toast.type == type:
                return toast
        return None
