"""
Perpetual-futures position tracker.

Decodes batched on-chain position reads, derives fees / PnL / leverage in
protocol fixed-point arithmetic and reconciles them with optimistic pending
changes and live on-chain events.
"""

__version__ = "1.0.0"
