"""
Live event ingestion.

Consumes vault and position-router events from a live feed and turns them
into overlay writes and user notifications:

    UpdatePosition / ClosePosition         -> updated-positions overlay
    IncreasePosition / DecreasePosition    -> success notification
    CancelIncreasePosition /
    CancelDecreasePosition                 -> error notification + empty pending marker

Events are web3-style mappings: {"event": name, "args": {...},
"transactionHash": ...}. The feed transport itself lives outside this module;
anything implementing EventFeed can be subscribed.
"""
import time
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Sequence, runtime_checkable

from perp_positions.constants import USD_DECIMALS, ChainSpec
from perp_positions.domain.keys import get_position_key, normalize_key
from perp_positions.domain.models import PendingPosition, Position, UpdatedPosition
from perp_positions.domain.tokens import TokenRegistry
from perp_positions.monitoring.logger import get_logger
from perp_positions.monitoring.notifications import NotificationCenter
from perp_positions.positions.formatting import format_amount
from perp_positions.reconciliation.overlays import ExpiringOverlay

logger = get_logger(__name__)

EventCallback = Callable[[Mapping[str, Any]], None]

UPDATE_POSITION = "UpdatePosition"
CLOSE_POSITION = "ClosePosition"
INCREASE_POSITION = "IncreasePosition"
DECREASE_POSITION = "DecreasePosition"
CANCEL_INCREASE_POSITION = "CancelIncreasePosition"
CANCEL_DECREASE_POSITION = "CancelDecreasePosition"

SLIPPAGE_HINT = (
    "within the allowed slippage, you can adjust the allowed slippage in the settings "
    "on the top right of the page"
)


@runtime_checkable
class EventFeed(Protocol):
    """A live event source the adapter can attach to."""

    def add_listener(self, callback: EventCallback) -> None: ...

    def remove_listener(self, callback: EventCallback) -> None: ...


def _side(is_long: bool) -> str:
    return "Long" if is_long else "Short"


class PositionEventAdapter:
    """
    Routes live events for one (chain, account) into the session's overlays.

    Update/close events are matched to positions by contract key with a
    linear scan of the currently known positions; the position count is
    bounded by the whitelisted token count.
    """

    def __init__(
        self,
        registry: TokenRegistry,
        chain_spec: ChainSpec,
        account: Optional[str],
        positions_provider: Callable[[], Sequence[Position]],
        pending_positions: ExpiringOverlay,
        updated_positions: ExpiringOverlay,
        notifications: NotificationCenter,
        clock: Callable[[], float] = time.monotonic,
        on_change: Optional[Callable[[], None]] = None,
    ):
        self.registry = registry
        self.chain_spec = chain_spec
        self.account = account
        self._positions_provider = positions_provider
        self._pending = pending_positions
        self._updated = updated_positions
        self._notifications = notifications
        self._clock = clock
        self._on_change = on_change
        self._feed: Optional[EventFeed] = None
        self._active = False
        self._handlers: Dict[str, Callable[[Mapping[str, Any], Optional[str]], None]] = {
            UPDATE_POSITION: self._on_update_position,
            CLOSE_POSITION: self._on_close_position,
            INCREASE_POSITION: self._on_increase_position,
            DECREASE_POSITION: self._on_decrease_position,
            CANCEL_INCREASE_POSITION: self._on_cancel_increase_position,
            CANCEL_DECREASE_POSITION: self._on_cancel_decrease_position,
        }

    @property
    def active(self) -> bool:
        return self._active

    def subscribe(self, feed: EventFeed) -> None:
        if self._feed is not None:
            self.unsubscribe()
        feed.add_listener(self.handle_event)
        self._feed = feed
        self._active = True
        logger.info("EVENT_FEED_SUBSCRIBED", chain=self.chain_spec.name, account=self.account)

    def unsubscribe(self) -> None:
        """Detach from the feed; events delivered afterwards are ignored."""
        self._active = False
        if self._feed is not None:
            self._feed.remove_listener(self.handle_event)
            self._feed = None
            logger.info("EVENT_FEED_UNSUBSCRIBED", chain=self.chain_spec.name, account=self.account)

    def handle_event(self, event: Mapping[str, Any]) -> None:
        if not self._active:
            logger.debug("EVENT_IGNORED_INACTIVE", event_name=event.get("event"))
            return

        name = event.get("event")
        handler = self._handlers.get(name)
        if handler is None:
            logger.debug("EVENT_UNKNOWN", event_name=name)
            return

        tx_hash = event.get("transactionHash")
        if tx_hash is not None:
            tx_hash = normalize_key(tx_hash)
        try:
            handler(event.get("args") or {}, tx_hash)
        except (KeyError, IndexError, TypeError) as e:
            logger.warning("EVENT_MALFORMED", event_name=name, tx_hash=tx_hash, error=str(e))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _is_current_account(self, account: str) -> bool:
        return self.account is not None and str(account).lower() == self.account.lower()

    def _find_position(self, contract_key: str) -> Optional[Position]:
        for position in self._positions_provider():
            if position.contract_key == contract_key:
                return position
        return None

    def _symbol(self, index_token: str) -> str:
        return self.registry.display_symbol(index_token, self.chain_spec.native_token_symbol)

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()

    def _write_updated(self, args: Mapping[str, Any], size: int, collateral: int, event_name: str) -> None:
        contract_key = normalize_key(args["key"])
        position = self._find_position(contract_key)
        if position is None:
            logger.debug("EVENT_UNMATCHED", event_name=event_name, contract_key=contract_key)
            return
        self._updated.put(
            position.key,
            UpdatedPosition(
                size=int(size),
                collateral=int(collateral),
                average_price=int(args["averagePrice"]),
                entry_funding_rate=int(args["entryFundingRate"]),
                reserve_amount=int(args.get("reserveAmount", 0)),
                realised_pnl=int(args.get("realisedPnl", 0)),
                updated_at=self._clock(),
            ),
        )
        logger.info(
            "EVENT_POSITION_UPDATED",
            event_name=event_name,
            key=position.key,
            size=str(size),
            collateral=str(collateral),
        )
        self._changed()

    # ------------------------------------------------------------------
    # Vault events
    # ------------------------------------------------------------------
    def _on_update_position(self, args: Mapping[str, Any], tx_hash: Optional[str]) -> None:
        self._write_updated(args, args["size"], args["collateral"], UPDATE_POSITION)

    def _on_close_position(self, args: Mapping[str, Any], tx_hash: Optional[str]) -> None:
        self._write_updated(args, 0, 0, CLOSE_POSITION)

    def _on_increase_position(self, args: Mapping[str, Any], tx_hash: Optional[str]) -> None:
        if not self._is_current_account(args["account"]):
            return
        symbol = self._symbol(args["indexToken"])
        side = _side(args["isLong"])
        size_delta = int(args["sizeDelta"])
        if size_delta == 0:
            amount = format_amount(int(args["collateralDelta"]), USD_DECIMALS, 2, True)
            message = f"Deposited {amount} USD into {symbol} {side}"
        else:
            message = f"Increased {symbol} {side}, +{format_amount(size_delta, USD_DECIMALS, 2, True)} USD"
        self._notifications.push_success(message, tx_hash)

    def _on_decrease_position(self, args: Mapping[str, Any], tx_hash: Optional[str]) -> None:
        if not self._is_current_account(args["account"]):
            return
        symbol = self._symbol(args["indexToken"])
        side = _side(args["isLong"])
        size_delta = int(args["sizeDelta"])
        if size_delta == 0:
            amount = format_amount(int(args["collateralDelta"]), USD_DECIMALS, 2, True)
            message = f"Withdrew {amount} USD from {symbol} {side}"
        else:
            message = f"Decreased {symbol} {side}, -{format_amount(size_delta, USD_DECIMALS, 2, True)} USD"
        self._notifications.push_success(message, tx_hash)

    # ------------------------------------------------------------------
    # Position router events
    # ------------------------------------------------------------------
    def _on_cancel(self, args: Mapping[str, Any], tx_hash: Optional[str], action: str) -> None:
        if not self._is_current_account(args["account"]):
            return
        index_token = args["indexToken"]
        is_long = bool(args["isLong"])
        message = f"Could not {action} {self._symbol(index_token)} {_side(is_long)} {SLIPPAGE_HINT}"
        self._notifications.push_error(message, tx_hash)

        key = get_position_key(args["path"][-1], index_token, is_long)
        # no pending_changes: replaces (and so clears) any optimistic expectation
        self._pending.put(key, PendingPosition())
        logger.info("EVENT_REQUEST_CANCELLED", action=action, key=key, tx_hash=tx_hash)
        self._changed()

    def _on_cancel_increase_position(self, args: Mapping[str, Any], tx_hash: Optional[str]) -> None:
        self._on_cancel(args, tx_hash, "increase")

    def _on_cancel_decrease_position(self, args: Mapping[str, Any], tx_hash: Optional[str]) -> None:
        self._on_cancel(args, tx_hash, "decrease")
