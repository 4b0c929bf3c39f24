"""
Transaction ledger repository.

Append-only record of every state-changing step, with the read-side
queries behind the reporting commands (recent, by type, profitability,
volume, per-type stats) and CSV export.

Uses Tortoise ORM for async database operations. Reads are retried on
transient failures; writes are not, a failed write raises PersistenceError.
"""
import asyncio
import logging
import time
from collections import OrderedDict
from datetime import datetime
from decimal import Decimal
from enum import Enum
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import polars as pl
from pydantic import BaseModel, Field
from tortoise.exceptions import BaseORMException, DBConnectionError, OperationalError

from domain import LedgerEntry, PersistenceError, TokenAmount, TransactionType
from rebalancer.models.ledger import TransactionRecord

logger = logging.getLogger(__name__)

# Retry configuration
MAX_RETRIES = 3
RETRY_DELAY_BASE = 1.0  # Base delay in seconds (exponential backoff)
RETRYABLE_ERRORS = (
    DBConnectionError,
    OperationalError,
    ConnectionError,
    TimeoutError,
)
DEFAULT_LIMIT = 100


def retry_on_db_error(func):
    """
    Decorator that retries async read operations on transient failures.
    Uses exponential backoff.
    """

    @wraps(func)
    async def wrapper(*args, **kwargs):
        last_exception = None
        for attempt in range(MAX_RETRIES):
            try:
                return await func(*args, **kwargs)
            except RETRYABLE_ERRORS as e:
                last_exception = e
                delay = RETRY_DELAY_BASE * (2**attempt)
                logger.warning(
                    f"Ledger query failed (attempt {attempt + 1}/{MAX_RETRIES}): {e}. "
                    f"Retrying in {delay:.1f}s..."
                )
                await asyncio.sleep(delay)
        logger.error(f"Ledger query failed after {MAX_RETRIES} attempts")
        raise last_exception

    return wrapper


class QueryKind(str, Enum):
    RECENT = "recent"
    BY_TYPE = "by_type"
    PROFITABILITY = "profitability"
    VOLUME = "volume"
    STATS = "stats"


class LedgerQuery(BaseModel):
    """A ledger query, as run by the reporting commands and CSV export."""
    kind: QueryKind = QueryKind.RECENT
    transaction_type: Optional[TransactionType] = None
    address: Optional[str] = None
    limit: int = Field(DEFAULT_LIMIT, gt=0)
    offset: int = Field(0, ge=0)
    start: Optional[datetime] = None
    end: Optional[datetime] = None


class ProfitabilityRow(BaseModel):
    token: str
    total_sent: Decimal
    total_received: Decimal
    net: Decimal
    roi_percent: Decimal


class VolumeRow(BaseModel):
    transaction_type: TransactionType
    token: str
    volume: Decimal
    operations: int


class TypeSummaryRow(BaseModel):
    transaction_type: TransactionType
    total: int
    successful: int
    failed: int
    success_rate: Decimal
    first_timestamp: Optional[int] = None
    last_timestamp: Optional[int] = None


def _format_amount(value: Decimal) -> str:
    return format(value.normalize(), "f")


def _amount_columns(prefix: str, amount: Optional[TokenAmount]) -> Dict[str, Optional[str]]:
    if amount is None:
        return {}
    return {
        f"{prefix}_token_name": amount.token.name,
        f"{prefix}_amount": _format_amount(amount.human_readable_amount),
    }


def _to_epoch(value: Optional[Union[datetime, int]]) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return int(value.timestamp())
    return int(value)


def record_to_row(record: TransactionRecord) -> Dict[str, Any]:
    """Flatten a record into a plain dict (CSV/report friendly)."""
    return {
        "id": record.id,
        "timestamp": record.timestamp,
        "signer_address": record.signer_address,
        "chain_id": record.chain_id,
        "transaction_type": record.transaction_type,
        "tx_hash": record.tx_hash,
        "successful": record.successful,
        "position_id": record.position_id,
        "input_token_name": record.input_token_name,
        "input_amount": record.input_amount,
        "second_input_token_name": record.second_input_token_name,
        "second_input_amount": record.second_input_amount,
        "output_token_name": record.output_token_name,
        "output_amount": record.output_amount,
        "second_output_token_name": record.second_output_token_name,
        "second_output_amount": record.second_output_amount,
        "gas_fee_amount": record.gas_fee_amount,
        "gas_fee_token_name": record.gas_fee_token_name,
        "destination_address": record.destination_address,
        "destination_chain_id": record.destination_chain_id,
        "error": record.error,
    }


def _pairs(record: TransactionRecord, *prefixes: str):
    for prefix in prefixes:
        name = getattr(record, f"{prefix}_token_name")
        amount = getattr(record, f"{prefix}_amount")
        if name and amount:
            yield name, Decimal(amount)


class TransactionLedger:
    """
    Repository for ledger writes and reporting queries.

    All aggregation happens in Python over persisted rows with Decimal
    arithmetic, so results are identical across SQLite and Postgres.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock

    def _build_record(self, entry: LedgerEntry) -> TransactionRecord:
        columns: Dict[str, Any] = {
            "timestamp": entry.timestamp if entry.timestamp is not None else int(self.clock()),
            "signer_address": entry.signer_address,
            "chain_id": entry.chain_id,
            "transaction_type": entry.transaction_type.value,
            "tx_hash": entry.tx_hash,
            "successful": entry.successful,
            "position_id": entry.position_id,
            "destination_address": entry.destination_address,
            "destination_chain_id": entry.destination_chain_id,
            "error": entry.error,
        }
        columns.update(_amount_columns("input", entry.input_amount))
        columns.update(_amount_columns("second_input", entry.second_input_amount))
        columns.update(_amount_columns("output", entry.output_amount))
        columns.update(_amount_columns("second_output", entry.second_output_amount))
        if entry.gas_fee is not None:
            columns["gas_fee_amount"] = _format_amount(entry.gas_fee.human_readable_amount)
            columns["gas_fee_token_name"] = entry.gas_fee.token.name
        return TransactionRecord(**columns)

    async def record(self, entry: LedgerEntry) -> TransactionRecord:
        """
        Append one entry.

        Raises:
            PersistenceError: If the row could not be written
        """
        record = self._build_record(entry)
        try:
            await record.save()
        except (BaseORMException, ConnectionError, OSError) as e:
            raise PersistenceError(
                f"Failed to record {entry.transaction_type.value} tx {entry.tx_hash}: {e}",
                step="ledger.record",
                chain_id=entry.chain_id,
            ) from e
        logger.info(
            f"Recorded {record.transaction_type} "
            f"({'ok' if record.successful else 'failed'}) tx={record.tx_hash} id={record.id}"
        )
        return record

    def _window(
        self,
        address: Optional[str],
        start: Optional[Union[datetime, int]],
        end: Optional[Union[datetime, int]],
    ):
        query = TransactionRecord.all()
        if address:
            query = query.filter(signer_address=address)
        start_ts, end_ts = _to_epoch(start), _to_epoch(end)
        if start_ts is not None:
            query = query.filter(timestamp__gte=start_ts)
        if end_ts is not None:
            query = query.filter(timestamp__lte=end_ts)
        return query

    @retry_on_db_error
    async def query_by_type(
        self,
        transaction_type: TransactionType,
        address: Optional[str] = None,
        limit: int = DEFAULT_LIMIT,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[TransactionRecord]:
        """Records of one type, newest first."""
        return await (
            self._window(address, start, end)
            .filter(transaction_type=TransactionType(transaction_type).value)
            .order_by("-timestamp", "-id")
            .limit(limit)
        )

    @retry_on_db_error
    async def query_recent(
        self,
        address: Optional[str] = None,
        limit: int = DEFAULT_LIMIT,
        offset: int = 0,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[TransactionRecord]:
        """Records newest first (ties broken by insertion order)."""
        return await (
            self._window(address, start, end)
            .order_by("-timestamp", "-id")
            .offset(offset)
            .limit(limit)
        )

    @retry_on_db_error
    async def _successful_in_window(self, address, start, end) -> List[TransactionRecord]:
        return await (
            self._window(address, start, end)
            .filter(successful=True)
            .order_by("timestamp", "id")
        )

    async def aggregate_profitability(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        address: Optional[str] = None,
        exclude_open_position: bool = True,
    ) -> List[ProfitabilityRow]:
        """
        Net flows per token over a window.

        Inputs and gas count as sent, outputs as received. When the latest
        record is a position creation its capital is still deployed and is
        left out unless `exclude_open_position` is False.
        """
        records = await self._successful_in_window(address, start, end)
        if (
            exclude_open_position
            and records
            and records[-1].transaction_type == TransactionType.CREATE_POSITION.value
        ):
            records = records[:-1]

        sent: Dict[str, Decimal] = OrderedDict()
        received: Dict[str, Decimal] = OrderedDict()
        for record in records:
            for name, amount in _pairs(record, "input", "second_input"):
                sent[name] = sent.get(name, Decimal(0)) + amount
            if record.gas_fee_token_name and record.gas_fee_amount:
                name = record.gas_fee_token_name
                sent[name] = sent.get(name, Decimal(0)) + Decimal(record.gas_fee_amount)
            for name, amount in _pairs(record, "output", "second_output"):
                received[name] = received.get(name, Decimal(0)) + amount

        rows = []
        for token in list(OrderedDict.fromkeys([*sent, *received])):
            total_sent = sent.get(token, Decimal(0))
            total_received = received.get(token, Decimal(0))
            net = total_received - total_sent
            roi = (net / total_sent * 100) if total_sent > 0 else Decimal(0)
            rows.append(
                ProfitabilityRow(
                    token=token,
                    total_sent=total_sent,
                    total_received=total_received,
                    net=net,
                    roi_percent=roi,
                )
            )
        return rows

    async def aggregate_volume(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        address: Optional[str] = None,
    ) -> List[VolumeRow]:
        """
        Notional volume per transaction type and token.

        A record's notional is its inputs, or its outputs when it has none
        (withdrawals).
        """
        records = await self._successful_in_window(address, start, end)

        volume: Dict[tuple, Decimal] = OrderedDict()
        operations: Dict[tuple, int] = {}
        for record in records:
            pairs = list(_pairs(record, "input", "second_input"))
            if not pairs:
                pairs = list(_pairs(record, "output", "second_output"))
            for name, amount in pairs:
                key = (record.transaction_type, name)
                volume[key] = volume.get(key, Decimal(0)) + amount
                operations[key] = operations.get(key, 0) + 1

        return [
            VolumeRow(
                transaction_type=TransactionType(tx_type),
                token=token,
                volume=total,
                operations=operations[(tx_type, token)],
            )
            for (tx_type, token), total in volume.items()
        ]

    @retry_on_db_error
    async def summarize_by_type(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        address: Optional[str] = None,
    ) -> List[TypeSummaryRow]:
        """Counts, success rate and first/last timestamps per transaction type."""
        rows = await (
            self._window(address, start, end)
            .order_by("timestamp", "id")
            .values("transaction_type", "successful", "timestamp")
        )

        summary: Dict[str, Dict[str, Any]] = OrderedDict()
        for row in rows:
            item = summary.setdefault(
                row["transaction_type"],
                {"total": 0, "successful": 0, "first": row["timestamp"], "last": row["timestamp"]},
            )
            item["total"] += 1
            item["successful"] += 1 if row["successful"] else 0
            item["last"] = row["timestamp"]

        return [
            TypeSummaryRow(
                transaction_type=TransactionType(tx_type),
                total=item["total"],
                successful=item["successful"],
                failed=item["total"] - item["successful"],
                success_rate=Decimal(item["successful"] * 100) / Decimal(item["total"]),
                first_timestamp=item["first"],
                last_timestamp=item["last"],
            )
            for tx_type, item in summary.items()
        ]

    async def run_query(self, query: LedgerQuery) -> List[Dict[str, Any]]:
        """Run a query and return plain dict rows."""
        if query.kind == QueryKind.RECENT:
            records = await self.query_recent(
                query.address, query.limit, query.offset, query.start, query.end
            )
            return [record_to_row(r) for r in records]
        if query.kind == QueryKind.BY_TYPE:
            if query.transaction_type is None:
                raise ValueError("by_type query needs a transaction_type")
            records = await self.query_by_type(
                query.transaction_type, query.address, query.limit, query.start, query.end
            )
            return [record_to_row(r) for r in records]
        if query.kind == QueryKind.PROFITABILITY:
            rows = await self.aggregate_profitability(query.start, query.end, query.address)
        elif query.kind == QueryKind.VOLUME:
            rows = await self.aggregate_volume(query.start, query.end, query.address)
        else:
            rows = await self.summarize_by_type(query.start, query.end, query.address)
        return [row.model_dump(mode="json") for row in rows]

    async def export_to_delimited_file(self, query: LedgerQuery, path: Union[str, Path]) -> Path:
        """
        Run a query and write its rows as CSV.

        Returns:
            Path of the written file
        """
        rows = await self.run_query(query)
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        # every column as text keeps exact amounts and tolerates all-null columns
        columns = list(rows[0].keys()) if rows else []
        frame = pl.DataFrame(
            [{k: (None if v is None else str(v)) for k, v in row.items()} for row in rows],
            schema={column: pl.Utf8 for column in columns},
        )
        try:
            frame.write_csv(path)
        except OSError as e:
            raise PersistenceError(f"Failed to write {path}: {e}", step="ledger.export") from e
        logger.info(f"Exported {len(rows)} {query.kind.value} rows to {path}")
        return path
