"""
Plain-text rendering of command results and ledger reports.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Sequence

from domain import RebalanceResult, WithdrawResult
from rebalancer.lifecycle import StatusReport
from rebalancer.models.ledger import TransactionRecord
from rebalancer.repositories.ledger import ProfitabilityRow, TypeSummaryRow, VolumeRow


def _fmt_decimal(value: Optional[Decimal], places: int = 6) -> str:
    if value is None:
        return "-"
    return f"{value:,.{places}f}"


def _fmt_ts(timestamp: Optional[int]) -> str:
    if timestamp is None:
        return "-"
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def table(headers: Sequence[str], rows: List[Sequence[str]]) -> str:
    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(str(cell)))
    lines = [
        "  ".join(str(h).ljust(widths[i]) for i, h in enumerate(headers)),
        "  ".join("-" * w for w in widths),
    ]
    for row in rows:
        lines.append("  ".join(str(c).ljust(widths[i]) for i, c in enumerate(row)))
    return "\n".join(lines)


def format_result(result: RebalanceResult) -> str:
    lines = [
        f"Pool:     {result.pool_id}",
        f"Position: {result.position_id or '<none>'}",
        f"Action:   {result.action.value}",
    ]
    if result.message:
        lines.append(f"Message:  {result.message}")
    if result.tx_hashes:
        lines.append(f"Txs:      {', '.join(h for h in result.tx_hashes if h)}")
    if result.unresolved_transfer:
        lines.append(f"Unresolved bridge transfer: {result.unresolved_transfer}")
    if result.error:
        lines.append(f"Error:    {result.error}")
    return "\n".join(lines)


def format_withdraw(result: WithdrawResult) -> str:
    if result.tx_hash is None:
        return f"Position {result.position_id} was already closed; config cleared"
    lines = [f"Withdrew position {result.position_id} (tx {result.tx_hash})"]
    for label, amount in (
        ("Amount0", result.amount0),
        ("Amount1", result.amount1),
        ("Rewards0", result.rewards0),
        ("Rewards1", result.rewards1),
    ):
        if amount is not None:
            lines.append(f"  {label}: {amount}")
    return "\n".join(lines)


def format_status(report: StatusReport) -> str:
    pool = report.pool
    lines = [
        f"Pool {pool.pool_id}",
        f"  Price:  {report.display_price(pool.price):.8g} {report.token1.name}/{report.token0.name}"
        f" (tick {pool.current_tick}, spacing {pool.tick_spacing})",
    ]
    if report.position is None:
        if report.stale_position_id:
            lines.append(f"  Position {report.configured_position_id} from config is not open on chain")
        else:
            lines.append("  No open position")
    else:
        position = report.position
        lower = report.display_price(report.decision.lower_trigger) if report.decision.lower_trigger else None
        upper = report.display_price(report.decision.upper_trigger) if report.decision.upper_trigger else None
        lines.append(
            f"  Position {position.position_id}: ticks [{position.lower_tick}, {position.upper_tick}], "
            f"liquidity {position.liquidity}"
        )
        if report.amount0 is not None:
            lines.append(f"  Holds:  {report.amount0} + {report.amount1}")
        if lower is not None:
            lines.append(f"  Rebalance outside: [{lower:.8g}, {upper:.8g}]")
    lines.append(f"  Next run would: {report.decision.action.value}")
    return "\n".join(lines)


def format_profitability(rows: List[ProfitabilityRow]) -> str:
    if not rows:
        return "No successful transactions in range"
    return table(
        ["Token", "Sent", "Received", "Net", "ROI %"],
        [
            [r.token, _fmt_decimal(r.total_sent), _fmt_decimal(r.total_received),
             _fmt_decimal(r.net), _fmt_decimal(r.roi_percent, 2)]
            for r in rows
        ],
    )


def format_volume(rows: List[VolumeRow]) -> str:
    if not rows:
        return "No volume in range"
    return table(
        ["Type", "Token", "Volume", "Operations"],
        [[r.transaction_type.value, r.token, _fmt_decimal(r.volume), str(r.operations)] for r in rows],
    )


def format_stats(rows: List[TypeSummaryRow]) -> str:
    if not rows:
        return "No transactions in range"
    return table(
        ["Type", "Total", "OK", "Failed", "Success %", "First", "Last"],
        [
            [r.transaction_type.value, str(r.total), str(r.successful), str(r.failed),
             _fmt_decimal(r.success_rate, 1), _fmt_ts(r.first_timestamp), _fmt_ts(r.last_timestamp)]
            for r in rows
        ],
    )


def format_transactions(records: List[TransactionRecord]) -> str:
    if not records:
        return "No transactions found"

    def flows(record: TransactionRecord, *prefixes: str) -> str:
        parts = []
        for prefix in prefixes:
            name = getattr(record, f"{prefix}_token_name")
            amount = getattr(record, f"{prefix}_amount")
            if name and amount:
                parts.append(f"{amount} {name}")
        return ", ".join(parts) or "-"

    return table(
        ["Id", "Time", "Type", "OK", "In", "Out", "Tx"],
        [
            [str(r.id), _fmt_ts(r.timestamp), r.transaction_type, "yes" if r.successful else "no",
             flows(r, "input", "second_input"), flows(r, "output", "second_output"), r.tx_hash or "-"]
            for r in records
        ],
    )
