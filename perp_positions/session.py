"""
Position tracking session.

Owns everything that lives for one (chain, account) view: the position
query, the last batched read, both overlay caches, notification dedup and
the live event subscription. Every trigger (new read, live event, local
pending change) ends in `recompute()`, which rebuilds the snapshot from
scratch.

All mutation happens on one event loop; reads that resolve after the
session changed chain, account or token layout, or after `close()`, are
discarded via a generation counter.
"""
import time
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence

from perp_positions.config.config import Config
from perp_positions.constants import ChainSpec, get_chain_spec
from perp_positions.domain.models import (
    PendingChanges,
    PendingPosition,
    Position,
    PositionQuery,
    PositionsResult,
    Token,
)
from perp_positions.domain.tokens import TokenRegistry
from perp_positions.events.adapter import EventFeed, PositionEventAdapter
from perp_positions.exceptions import DataError, FeedError, OperationalError, PositionTrackerError
from perp_positions.monitoring.logger import bind_session_context, clear_session_context, get_logger
from perp_positions.monitoring.notifications import NotificationCenter, NotificationSink
from perp_positions.positions.query import build_position_query
from perp_positions.reconciliation.overlays import ExpiringOverlay
from perp_positions.reconciliation.reconciler import get_positions

logger = get_logger(__name__)

PositionFetcher = Callable[[PositionQuery], Awaitable[Optional[Sequence[int]]]]
FeedFactory = Callable[[ChainSpec], Optional[EventFeed]]


class PositionsSession:
    """Reconciled position view for one chain and account."""

    def __init__(
        self,
        config: Config,
        tokens: Iterable[Token],
        *,
        account: Optional[str] = None,
        feed_factory: Optional[FeedFactory] = None,
        notification_sink: Optional[NotificationSink] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.account = account if account is not None else config.chain.account
        self._feed_factory = feed_factory
        self._clock = clock

        self.chain_spec = get_chain_spec(config.chain.chain_id)
        self.registry = TokenRegistry(tokens, self.chain_spec.native_token_address)
        self.query = build_position_query(self.registry.whitelisted(), self.chain_spec.native_token_address)

        recon_cfg = config.reconciliation
        self.pending_positions: ExpiringOverlay[PendingPosition] = ExpiringOverlay(
            "pending_positions", recon_cfg.pending_position_valid_seconds, clock
        )
        self.updated_positions = ExpiringOverlay(
            "updated_positions", recon_cfg.updated_position_valid_seconds, clock
        )
        self.notifications = NotificationCenter(notification_sink, config.notifications.dedup_max_entries)

        self._position_data: Optional[Sequence[int]] = None
        self._generation = 0
        self._closed = False
        self._result = PositionsResult()
        self.adapter: Optional[PositionEventAdapter] = None

        bind_session_context(self.chain_spec.name, self.account)
        self._connect_feed()
        logger.info(
            "POSITIONS_SESSION_STARTED",
            chain=self.chain_spec.name,
            account=self.account,
            slots=len(self.query),
        )

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------
    @property
    def positions(self) -> List[Position]:
        return self._result.positions

    @property
    def positions_map(self):
        return self._result.positions_map

    @property
    def result(self) -> PositionsResult:
        return self._result

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def closed(self) -> bool:
        return self._closed

    def recompute(self) -> PositionsResult:
        """Rebuild the snapshot from the last read and the current overlay snapshots."""
        self._result = self._reconcile(self._position_data)
        return self._result

    def _reconcile(self, position_data: Optional[Sequence[int]]) -> PositionsResult:
        display = self.config.display
        recon_cfg = self.config.reconciliation
        return get_positions(
            self.chain_spec.chain_id,
            self.query,
            position_data,
            self.registry,
            now=self._clock(),
            include_delta=display.include_delta_in_leverage,
            show_pnl_after_fees=display.show_pnl_after_fees,
            account=self.account,
            pending_positions=self.pending_positions.snapshot(),
            updated_positions=self.updated_positions.snapshot(),
            pending_valid_seconds=recon_cfg.pending_position_valid_seconds,
            updated_valid_seconds=recon_cfg.updated_position_valid_seconds,
        )

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------
    def apply_position_data(self, position_data: Optional[Sequence[int]]) -> PositionsResult:
        """
        Reconcile a batched read made with the current query and keep it.

        A read that fails validation raises and leaves the previous read and
        snapshot in place.
        """
        result = self._reconcile(position_data)
        self._position_data = position_data
        self._result = result
        return result

    async def refresh(self, fetch: PositionFetcher) -> bool:
        """
        Run one batched read and apply it.

        Returns False when the result was discarded: the session was closed
        or re-keyed while the read was in flight, or the read was malformed
        (the last good snapshot is kept).
        """
        generation = self._generation
        try:
            data = await fetch(self.query)
        except PositionTrackerError:
            raise
        except Exception as e:
            logger.warning("BATCHED_READ_FAILED", error=str(e), error_type=type(e).__name__)
            raise OperationalError(f"Batched position read failed: {e}") from e

        if self._closed or generation != self._generation:
            logger.info(
                "BATCHED_READ_DISCARDED",
                read_generation=generation,
                current_generation=self._generation,
                closed=self._closed,
            )
            return False

        try:
            self.apply_position_data(data)
        except DataError as e:
            logger.warning("BATCHED_READ_REJECTED", error=str(e), generation=generation)
            return False
        return True

    def register_pending_change(
        self,
        key: str,
        expected_size: Optional[int] = None,
        expected_collateral_snapshot: Optional[int] = None,
    ) -> None:
        """Record the expected outcome of a just-submitted increase/decrease transaction."""
        changes = PendingChanges(
            size=expected_size,
            expecting_collateral_change=expected_collateral_snapshot is not None,
            collateral_snapshot=expected_collateral_snapshot,
        )
        self.pending_positions.put(key, PendingPosition(pending_changes=changes, updated_at=self._clock()))
        logger.info(
            "PENDING_CHANGE_REGISTERED",
            key=key,
            expected_size=str(expected_size) if expected_size is not None else None,
            expecting_collateral_change=changes.expecting_collateral_change,
        )
        self.recompute()

    def set_tokens(self, tokens: Iterable[Token]) -> None:
        """Swap in a new token registry snapshot (prices, funding rates, token list)."""
        registry = TokenRegistry(tokens, self.chain_spec.native_token_address)
        query = build_position_query(registry.whitelisted(), self.chain_spec.native_token_address)
        self.registry = registry
        if self.adapter is not None:
            self.adapter.registry = registry
        if query != self.query:
            # slot layout changed: the last read no longer lines up
            self.query = query
            self._invalidate("token_layout_changed")
        self.recompute()

    def set_chain(self, chain_id: int, tokens: Iterable[Token]) -> None:
        self._disconnect_feed()
        self.chain_spec = get_chain_spec(chain_id)
        self.registry = TokenRegistry(tokens, self.chain_spec.native_token_address)
        self.query = build_position_query(self.registry.whitelisted(), self.chain_spec.native_token_address)
        self._invalidate("chain_changed")
        self._clear_overlays()
        self._connect_feed()
        bind_session_context(self.chain_spec.name, self.account)
        self.recompute()

    def set_account(self, account: Optional[str]) -> None:
        self._disconnect_feed()
        self.account = account
        self._invalidate("account_changed")
        self._clear_overlays()
        self._connect_feed()
        bind_session_context(self.chain_spec.name, self.account)
        self.recompute()

    def prune_overlays(self) -> int:
        return self.pending_positions.prune() + self.updated_positions.prune()

    def close(self) -> None:
        """Stop overlay writes from the feed and discard in-flight reads."""
        if self._closed:
            return
        self._closed = True
        self._disconnect_feed()
        self._generation += 1
        logger.info("POSITIONS_SESSION_CLOSED", chain=self.chain_spec.name, account=self.account)
        clear_session_context()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _invalidate(self, reason: str) -> None:
        self._generation += 1
        self._position_data = None
        logger.info("POSITIONS_SESSION_INVALIDATED", reason=reason, generation=self._generation)

    def _clear_overlays(self) -> None:
        self.pending_positions.clear()
        self.updated_positions.clear()

    def _connect_feed(self) -> None:
        if self._closed or self._feed_factory is None or not self.account:
            return
        try:
            feed = self._feed_factory(self.chain_spec)
        except PositionTrackerError:
            raise
        except Exception as e:
            logger.warning("EVENT_FEED_CONNECT_FAILED", chain=self.chain_spec.name, error=str(e))
            raise FeedError(f"Could not connect event feed for {self.chain_spec.name}: {e}") from e
        if feed is None:
            logger.info("EVENT_FEED_UNAVAILABLE", chain=self.chain_spec.name)
            return
        self.adapter = PositionEventAdapter(
            registry=self.registry,
            chain_spec=self.chain_spec,
            account=self.account,
            positions_provider=lambda: self._result.positions,
            pending_positions=self.pending_positions,
            updated_positions=self.updated_positions,
            notifications=self.notifications,
            clock=self._clock,
            on_change=self.recompute,
        )
        self.adapter.subscribe(feed)

    def _disconnect_feed(self) -> None:
        if self.adapter is not None:
            self.adapter.unsubscribe()
            self.adapter = None
