"""
Handler capabilities: notices, faults and the context struct.

Handlers never reach for globals; everything they may touch is passed
in through a SyncContext.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

import structlog

if TYPE_CHECKING:
    from .signer import BaseSigner
    from .state import SyncStateManager

logger = structlog.get_logger()


class NoticeLevel(str, Enum):
    """User-facing notice classification."""
    SUCCESS = "success"
    WARNING = "warning"
    DANGER = "danger"


@dataclass(frozen=True)
class Notice:
    """A user-visible notification."""
    level: NoticeLevel
    message: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


NoticeSink = Callable[[Notice], None]


class NotificationLog:
    """
    In-process notice sink.

    Keeps the most recent notices for whatever layer renders them.
    """

    def __init__(self, maxlen: int = 100):
        self.notices: deque[Notice] = deque(maxlen=maxlen)

    def __call__(self, notice: Notice) -> None:
        self.notices.append(notice)

    def messages(self, level: Optional[NoticeLevel] = None) -> list[str]:
        """Messages in arrival order, optionally filtered by level."""
        return [n.message for n in self.notices if level is None or n.level == level]

    def clear(self) -> None:
        self.notices.clear()


def fan_out(*sinks: NoticeSink) -> NoticeSink:
    """Combine sinks; a failing sink does not stop the others."""

    def _notify(notice: Notice) -> None:
        for sink in sinks:
            try:
                sink(notice)
            except Exception as e:
                logger.error("Notice sink failed", sink=repr(sink), error=str(e))

    return _notify


class FaultKind(str, Enum):
    """Fault taxonomy. None of these are fatal."""
    TRANSPORT = "transport"
    PARSE = "parse"
    SIGNING = "signing"
    PROTOCOL = "protocol"


@dataclass(frozen=True)
class SyncFault:
    """A caught failure, observable by the dispatcher's caller."""
    kind: FaultKind
    message: str
    channel: Optional[str] = None
    event_type: Optional[str] = None
    error: Optional[BaseException] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


FaultSink = Callable[[SyncFault], None]
SubmitSignatures = Callable[[Optional[str], Optional[dict], Optional[dict], Optional[list]], Awaitable[None]]


@dataclass
class SyncContext:
    """
    Capabilities handed to every channel handler.

    Attributes:
        store: Table store (batched upsert/replace only)
        signer: Local signing credential
        notify: Notice sink
        report: Fault sink
        submit_signatures: Sends {hash, order, remainingOrder, matches}
    """

    store: "SyncStateManager"
    signer: "BaseSigner"
    notify: NoticeSink
    report: FaultSink
    submit_signatures: SubmitSignatures

    def success(self, message: str) -> None:
        self.notify(Notice(NoticeLevel.SUCCESS, message))

    def danger(self, message: str) -> None:
        self.notify(Notice(NoticeLevel.DANGER, message))

    def fault(
        self,
        kind: FaultKind,
        error: BaseException | str,
        channel: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> SyncFault:
        """Log and report a fault. Returns the recorded fault."""
        message = str(error)
        fault = SyncFault(
            kind=kind,
            message=message,
            channel=channel,
            event_type=event_type,
            error=error if isinstance(error, BaseException) else None,
        )
        log = logger.info if kind == FaultKind.PROTOCOL else logger.warning
        log(
            "Sync fault",
            kind=kind.value,
            channel=channel,
            event_type=event_type,
            error=message,
        )
        self.report(fault)
        return fault
