import logging
from dataclasses import dataclass
from typing import Callable, Literal

logger = logging.getLogger(__name__)

NoticeLevel = Literal["info", "success", "error"]

_LOG_LEVELS = {"info": logging.INFO, "success": logging.INFO, "error": logging.WARNING}


@dataclass(frozen=True)
class Notice:
    level: NoticeLevel
    message: str
    description: str | None = None


class Notifier:
    """Fan-out of user-facing notices to whatever toast layer is attached."""

    def __init__(self) -> None:
        self._subscribers: list[Callable[[Notice], None]] = []

    def subscribe(self, callback: Callable[[Notice], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def notify(self, level: NoticeLevel, message: str, description: str | None = None) -> Notice:
        notice = Notice(level, message, description)
        if description:
            logger.log(_LOG_LEVELS[level], "%s (%s)", message, description)
        else:
            logger.log(_LOG_LEVELS[level], "%s", message)
        for callback in list(self._subscribers):
            try:
                callback(notice)
            except Exception:
                logger.exception("Notice subscriber failed")
        return notice

    def info(self, message: str, description: str | None = None) -> Notice:
        return self.notify("info", message, description)

    def success(self, message: str, description: str | None = None) -> Notice:
        return self.notify("success", message, description)

    def error(self, message: str, description: str | None = None) -> Notice:
        return self.notify("error", message, description)


def plural(count: int, noun: str) -> str:
    return f"{count} {noun}{'' if count == 1 else 's'}"
