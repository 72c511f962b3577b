"""
Deduplicated user notifications.

The live feed can deliver the same event more than once (reconnects,
multiple listeners), so every notification is identified by
keccak256(message + transaction hash) and emitted at most once.

Retention is unbounded by default (process lifetime). Long-running
services can set `max_entries` to evict the oldest ids first; an evicted
id may then be notified again.
"""
from collections import OrderedDict
from typing import Callable, Optional

from web3 import Web3

from perp_positions.domain.models import Notification, NotificationLevel
from perp_positions.monitoring.logger import get_logger

logger = get_logger(__name__)

NotificationSink = Callable[[Notification], None]


def notification_id(message: str, tx_hash: Optional[str]) -> str:
    return Web3.to_hex(Web3.keccak(text=f"{message}{tx_hash or ''}"))


def _log_sink(notification: Notification) -> None:
    if notification.level == NotificationLevel.ERROR:
        logger.warning("NOTIFICATION", level=notification.level.value, message=notification.message)
    else:
        logger.info("NOTIFICATION", level=notification.level.value, message=notification.message)


class NotificationCenter:
    """Emits notifications to a sink, dropping repeats of the same (message, tx)."""

    def __init__(self, sink: Optional[NotificationSink] = None, max_entries: Optional[int] = None):
        self.sink = sink or _log_sink
        self.max_entries = max_entries
        self._seen: "OrderedDict[str, None]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._seen)

    def has_seen(self, dedup_id: str) -> bool:
        return dedup_id in self._seen

    def push(self, level: NotificationLevel, message: str, tx_hash: Optional[str] = None) -> bool:
        """
        Emit unless already emitted. Returns True when the sink was called.

        Without a transaction hash the message alone cannot tell two
        transactions apart, so such notifications are never deduplicated.
        """
        dedup_id = notification_id(message, tx_hash)
        if tx_hash is None:
            logger.debug("NOTIFICATION_WITHOUT_TX_HASH", dedup_id=dedup_id)
            self.sink(Notification(level=level, message=message, dedup_id=dedup_id, tx_hash=None))
            return True

        if dedup_id in self._seen:
            logger.debug("NOTIFICATION_DUPLICATE", dedup_id=dedup_id, tx_hash=tx_hash)
            return False

        self._seen[dedup_id] = None
        if self.max_entries is not None:
            while len(self._seen) > self.max_entries:
                self._seen.popitem(last=False)

        self.sink(Notification(level=level, message=message, dedup_id=dedup_id, tx_hash=tx_hash))
        return True

    def push_success(self, message: str, tx_hash: Optional[str] = None) -> bool:
        return self.push(NotificationLevel.SUCCESS, message, tx_hash)

    def push_error(self, message: str, tx_hash: Optional[str] = None) -> bool:
        return self.push(NotificationLevel.ERROR, message, tx_hash)
