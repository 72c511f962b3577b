"""
CLI entrypoint for the position tracker.

Reconciles a recorded snapshot (token registry, raw Reader.getPositions
array, optional pending changes) and prints the resulting positions.
"""
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from perp_positions.config.config import load_config
from perp_positions.constants import USD_DECIMALS
from perp_positions.domain.models import Position, Token
from perp_positions.monitoring.logger import get_logger, setup_logging
from perp_positions.positions.formatting import format_amount
from perp_positions.session import PositionsSession

app = typer.Typer(
    name="perp-positions",
    help="Perpetual-futures position tracker",
    add_completion=False,
)

logger = get_logger(__name__)


def _int_or_none(value: Any) -> Optional[int]:
    if value is None:
        return None
    return int(str(value))


def parse_tokens(raw_tokens: List[Dict[str, Any]]) -> List[Token]:
    """Build Token records from snapshot dicts; big integers may be given as strings."""
    tokens = []
    for item in raw_tokens:
        tokens.append(
            Token(
                address=item["address"],
                symbol=item["symbol"],
                decimals=int(item.get("decimals", 18)),
                is_stable=bool(item.get("is_stable", False)),
                is_wrapped=bool(item.get("is_wrapped", False)),
                is_native=bool(item.get("is_native", False)),
                min_price=_int_or_none(item.get("min_price")),
                max_price=_int_or_none(item.get("max_price")),
                cumulative_funding_rate=_int_or_none(item.get("cumulative_funding_rate")),
            )
        )
    return tokens


def load_snapshot(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Snapshot file not found: {path}")
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _format_leverage(leverage: Optional[int]) -> str:
    if leverage is None:
        return "n/a"
    return f"{format_amount(leverage, 4, 2, True)}x"


def _format_usd(amount: Optional[int]) -> str:
    if amount is None:
        return "n/a"
    return f"${format_amount(amount, USD_DECIMALS, 2, True)}"


def _render(console: Console, positions: List[Position], native_symbol: str) -> None:
    table = Table(title="Positions")
    table.add_column("Position")
    table.add_column("Size", justify="right")
    table.add_column("Collateral", justify="right")
    table.add_column("Net Value", justify="right")
    table.add_column("PnL", justify="right")
    table.add_column("Leverage", justify="right")
    table.add_column("Mark Price", justify="right")
    table.add_column("Flags")

    for p in positions:
        symbol = native_symbol if p.index_token.is_wrapped else p.index_token.symbol
        flags = []
        if p.has_pending_changes:
            flags.append("[yellow]pending[/yellow]")
        if p.has_low_collateral:
            flags.append("[red]low collateral[/red]")
        pnl = "n/a"
        if p.delta_str is not None:
            pnl = f"{p.delta_str} ({p.delta_percentage_str})"
        table.add_row(
            f"{symbol} {'Long' if p.is_long else 'Short'}",
            _format_usd(p.size),
            _format_usd(p.collateral),
            _format_usd(p.net_value),
            pnl,
            _format_leverage(p.leverage),
            _format_usd(p.mark_price),
            " ".join(flags),
        )
    console.print(table)


@app.command()
def snapshot(
    file: Path = typer.Option(..., "--file", help="YAML snapshot with tokens and position_data"),
    account: Optional[str] = typer.Option(None, "--account", help="Trader address (overrides snapshot/config)"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to config file"),
    after_fees: Optional[bool] = typer.Option(None, "--after-fees/--before-fees", help="Show PnL after fees"),
    include_delta: Optional[bool] = typer.Option(None, "--include-delta/--exclude-delta", help="Include PnL in leverage"),
):
    """
    Reconcile a recorded snapshot and print the positions.

    Example:
        perp-positions snapshot --file snapshot.yaml --after-fees
    """
    config = load_config(config_path)
    setup_logging(config.monitoring.log_level, config.monitoring.log_format, config.monitoring.log_file)

    data = load_snapshot(file)
    if "chain_id" in data:
        config.chain.chain_id = int(data["chain_id"])
        config.validate_config()
    if after_fees is not None:
        config.display.show_pnl_after_fees = after_fees
    if include_delta is not None:
        config.display.include_delta_in_leverage = include_delta

    session = PositionsSession(
        config,
        parse_tokens(data.get("tokens", [])),
        account=account or data.get("account") or config.chain.account,
    )
    for pending in data.get("pending", []) or []:
        session.register_pending_change(
            pending["key"],
            expected_size=_int_or_none(pending.get("expected_size")),
            expected_collateral_snapshot=_int_or_none(pending.get("expected_collateral_snapshot")),
        )

    raw = data.get("position_data")
    result = session.apply_position_data([int(str(v)) for v in raw] if raw is not None else None)
    logger.info("SNAPSHOT_RECONCILED", file=str(file), visible=len(result.positions))

    console = Console()
    if raw is None:
        console.print("[yellow]Position data not loaded[/yellow]")
    elif not result.positions:
        console.print("No open positions")
    else:
        _render(console, result.positions, session.chain_spec.native_token_symbol)
    session.close()


@app.command()
def query(
    file: Path = typer.Option(..., "--file", help="YAML snapshot with tokens"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to config file"),
):
    """Print the ordered position query slots for a token list."""
    config = load_config(config_path)
    setup_logging(config.monitoring.log_level, config.monitoring.log_format, config.monitoring.log_file)
    data = load_snapshot(file)
    if "chain_id" in data:
        config.chain.chain_id = int(data["chain_id"])
        config.validate_config()

    session = PositionsSession(config, parse_tokens(data.get("tokens", [])), account=None)
    table = Table(title=f"Position query ({len(session.query)} slots)")
    table.add_column("#", justify="right")
    table.add_column("Collateral")
    table.add_column("Index")
    table.add_column("Side")
    for i, (collateral, index, is_long) in enumerate(session.query.slots()):
        table.add_row(str(i), collateral, index, "Long" if is_long else "Short")
    Console().print(table)
    session.close()


def main():
    app()


if __name__ == "__main__":
    main()
