"""
Position lifecycle manager.

Runs the withdraw -> fund -> create workflow for the managed position:

    idle -> withdrawing -> bridging [-> swapping -> bridging] -> creating -> idle
                 \\            \\                                  \\
                  +------------+----------------------------------+--> failed

Funding brings the base chain holdings to an even split, either by
bridging the short token in from the mirror chain or by a round trip that
bridges the excess token out, swaps it there and bridges the proceeds back.

Every state-changing call produces exactly one ledger record, success or
failure. The config position id is rewritten right after each withdraw
and create, so a crash between steps leaves a config that the next run
can resume from. State-changing calls are never retried here.
"""
import logging
import time
from decimal import Decimal
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel

from domain import (
    AppConfig,
    BridgeFailedError,
    BridgeTimeoutError,
    BridgeTransfer,
    BroadcastError,
    ConfigError,
    LedgerEntry,
    PendingBridge,
    PersistenceError,
    PoolInfo,
    PositionInfo,
    ReadError,
    RebalanceAction,
    RebalanceResult,
    RebalancerError,
    ShutdownRequestedError,
    SubmissionError,
    TokenAmount,
    TokenInfo,
    TransactionType,
    WithdrawResult,
    WorkflowState,
)
from rebalancer.config import ConfigStore
from rebalancer.decision import Decision, DecisionAction, RebalanceDecisionEngine
from rebalancer.funding import SwapPlan, plan_bridge_leg, plan_swap_leg
from rebalancer.locking import WorkflowLock
from rebalancer.repositories.ledger import TransactionLedger
from rebalancer.services.bridge import CrossChainBridgeCoordinator
from rebalancer.services.clients import ChainAccount, ChainQueryClient, ChainTxClient, TxOutcome
from rebalancer.services.monitor import PositionMonitor
from rebalancer.utils.math import UniswapV3Math

logger = logging.getLogger(__name__)

PRICE_DRIFT_WARNING = Decimal("0.01")
MAX_SWAP_SLIPPAGE = Decimal("0.01")


class StatusReport(BaseModel):
    """Read-only view of the managed position."""
    pool: PoolInfo
    position: Optional[PositionInfo] = None
    configured_position_id: str = ""
    decision: Decision
    token0: TokenInfo
    token1: TokenInfo
    amount0: Optional[TokenAmount] = None
    amount1: Optional[TokenAmount] = None

    @property
    def stale_position_id(self) -> bool:
        """Config names a position the chain no longer has."""
        return bool(self.configured_position_id) and self.position is None

    def display_price(self, raw_price: Decimal) -> Decimal:
        return UniswapV3Math.to_display_price(raw_price, self.token0.decimals, self.token1.decimals)


def _rescale(amount: int, from_decimals: int, to_decimals: int) -> int:
    if to_decimals >= from_decimals:
        return amount * 10 ** (to_decimals - from_decimals)
    return amount // 10 ** (from_decimals - to_decimals)


class PositionLifecycleManager:
    """Owns the managed position's workflow state."""

    def __init__(
        self,
        config: AppConfig,
        config_store: ConfigStore,
        monitor: PositionMonitor,
        tx_client: ChainTxClient,
        ledger: TransactionLedger,
        base_account: ChainAccount,
        mirror_account: Optional[ChainAccount] = None,
        mirror_tx_client: Optional[ChainTxClient] = None,
        mirror_query: Optional[ChainQueryClient] = None,
        bridge: Optional[CrossChainBridgeCoordinator] = None,
        lock: Optional[WorkflowLock] = None,
        shutdown=None,
        min_gas_balance: int = 0,
        clock: Callable[[], float] = time.time,
        logger: logging.Logger = logger,
    ):
        self.config = config
        self.config_store = config_store
        self.monitor = monitor
        self.tx_client = tx_client
        self.ledger = ledger
        self.base_account = base_account
        self.mirror_account = mirror_account
        self.mirror_tx_client = mirror_tx_client
        self.mirror_query = mirror_query
        self.bridge = bridge
        self.lock = lock or WorkflowLock.for_config(config_store.path)
        self.shutdown = shutdown
        self.min_gas_balance = min_gas_balance
        self.clock = clock
        self.logger = logger
        self.engine = RebalanceDecisionEngine(config.pool.tick_spacing)
        self.state = WorkflowState.IDLE
        self._tokens: Optional[Tuple[TokenInfo, TokenInfo]] = None
        self._mirror_tokens: Optional[Tuple[TokenInfo, TokenInfo]] = None

    @property
    def signer(self) -> str:
        return self.base_account.address

    @property
    def chain_id(self) -> int:
        return self.base_account.chain_id

    # -----------------------------
    # Operations
    # -----------------------------

    async def run(self) -> RebalanceResult:
        """
        Evaluate the position and withdraw/bridge/create as needed.

        Returns:
            RebalanceResult, with `error` set when the workflow failed

        Raises:
            PersistenceError: If the ledger or the config could not be written
        """
        result = RebalanceResult(pool_id=self.config.pool.id, position_id=self.config.position.id)
        try:
            async with self.lock:
                await self._run(result)
        except PersistenceError as e:
            self.state = WorkflowState.FAILED
            self.logger.critical(f"Persistence failure, stopping: {e}")
            raise
        except RebalancerError as e:
            self.state = WorkflowState.FAILED
            result.position_id = self.config.position.id
            result.error = str(e)
            if isinstance(e, BridgeTimeoutError) and e.transfer is not None:
                result.unresolved_transfer = e.transfer.tx_hash
            self.logger.error(f"Rebalance failed: {e}")
            return result

        self.state = WorkflowState.IDLE
        result.position_id = self.config.position.id
        return result

    async def withdraw(self) -> WithdrawResult:
        """
        Force-close the configured position and clear the config id.

        Raises:
            ConfigError: If no position id is configured
            RebalancerError: On any failed step
        """
        try:
            async with self.lock:
                return await self._withdraw_configured()
        except RebalancerError:
            self.state = WorkflowState.FAILED
            raise

    async def status(self) -> StatusReport:
        """Read-only: current pool, position and what `run` would decide."""
        token0, token1 = await self._pool_tokens()
        snapshot = await self.monitor.snapshot(self.config.position.id)
        decision = self._decide(snapshot.pool.price, snapshot.position_range())

        amount0 = amount1 = None
        if snapshot.position is not None and snapshot.pool.sqrt_price_x96:
            raw0, raw1 = UniswapV3Math.position_amounts(
                snapshot.position.lower_tick,
                snapshot.position.upper_tick,
                snapshot.pool.sqrt_price_x96,
                snapshot.position.liquidity,
            )
            amount0 = TokenAmount(amount=raw0, token=token0)
            amount1 = TokenAmount(amount=raw1, token=token1)

        return StatusReport(
            pool=snapshot.pool,
            position=snapshot.position,
            configured_position_id=self.config.position.id,
            decision=decision,
            token0=token0,
            token1=token1,
            amount0=amount0,
            amount1=amount1,
        )

    # -----------------------------
    # Workflow
    # -----------------------------

    async def _run(self, result: RebalanceResult) -> None:
        if self.config.pending_bridge is not None:
            await self._resume_pending_bridge(result)

        await self._reconcile_unknown_positions(result)

        snapshot = await self.monitor.snapshot(self.config.position.id)
        if self.config.has_position() and snapshot.position is None:
            self.logger.warning(
                f"Configured position {self.config.position.id} is not open on chain, clearing it"
            )
            self.config_store.set_position_id(self.config, "")

        decision = self._decide(snapshot.pool.price, snapshot.position_range())
        self.logger.info(f"Decision at price {decision.price}: {decision.action.value}")

        if decision.action == DecisionAction.NONE:
            result.action = RebalanceAction.NONE
            result.message = (
                f"Price {decision.price} within [{decision.lower_trigger}, {decision.upper_trigger}]"
            )
            return

        rebalancing = decision.action == DecisionAction.REBALANCE
        if rebalancing:
            outcome = await self._withdraw(snapshot.position, TransactionType.WITHDRAW_POSITION)
            result.tx_hashes.append(outcome.tx_hash)
            self.config_store.set_position_id(self.config, "")

        await self._fund_position(snapshot.pool.price, result)

        # funding may have taken a while, range is centered on the price at creation
        pool_info = await self.monitor.get_pool_info()
        self._warn_on_drift(snapshot.pool.price, pool_info.price)
        create_decision = self._decide(pool_info.price, None)

        position_id = await self._create(create_decision, result)
        result.position_id = position_id
        result.action = RebalanceAction.REBALANCED if rebalancing else RebalanceAction.CREATED
        result.message = (
            f"Position {position_id} opened at ticks "
            f"[{create_decision.lower_tick}, {create_decision.upper_tick}]"
        )

    def _decide(self, price: Decimal, position_range) -> Decision:
        return self.engine.decide(
            price,
            position_range,
            self.config.position.band_percentage,
            self.config.rebalance_threshold_percent,
        )

    def _warn_on_drift(self, before: Decimal, after: Decimal) -> None:
        if before <= 0:
            return
        drift = abs(after - before) / before
        if drift > PRICE_DRIFT_WARNING:
            self.logger.warning(
                f"Price moved {drift * 100:.2f}% during the workflow ({before} -> {after})"
            )

    def _check_shutdown(self, step: str) -> None:
        if self.shutdown is not None and self.shutdown.is_shutdown_requested:
            raise ShutdownRequestedError(f"Shutdown requested before {step}", step=step)

    async def _withdraw_configured(self) -> WithdrawResult:
        if not self.config.has_position():
            raise ConfigError("No position id configured, nothing to withdraw", step="withdraw")

        position_id = self.config.position.id
        position = await self.monitor.get_position_info(position_id)
        if position is None:
            self.logger.warning(f"Position {position_id} is not open on chain, clearing config")
            self.config_store.set_position_id(self.config, "")
            self.state = WorkflowState.IDLE
            return WithdrawResult(pool_id=self.config.pool.id, position_id=position_id)

        outcome = await self._withdraw(position, TransactionType.WITHDRAW_POSITION)
        self.config_store.set_position_id(self.config, "")
        self.state = WorkflowState.IDLE

        token0, token1 = await self._pool_tokens()
        return WithdrawResult(
            pool_id=self.config.pool.id,
            position_id=position_id,
            tx_hash=outcome.tx_hash,
            amount0=TokenAmount(amount=outcome.data.get("amount0", 0), token=token0),
            amount1=TokenAmount(amount=outcome.data.get("amount1", 0), token=token1),
            rewards0=TokenAmount(amount=outcome.data.get("rewards0", 0), token=token0),
            rewards1=TokenAmount(amount=outcome.data.get("rewards1", 0), token=token1),
        )

    async def _reconcile_unknown_positions(self, result: RebalanceResult) -> None:
        """Withdraw open positions in the pool that the config does not know about."""
        positions = await self.monitor.list_open_positions(self.signer)
        for position in positions:
            if position.position_id == self.config.position.id:
                continue
            self.logger.warning(f"Withdrawing unmanaged position {position.position_id}")
            outcome = await self._withdraw(position, TransactionType.WITHDRAW_RECONCILIATION)
            result.tx_hashes.append(outcome.tx_hash)

    async def _withdraw(self, position: PositionInfo, transaction_type: TransactionType) -> TxOutcome:
        self._check_shutdown("withdraw")
        self.state = WorkflowState.WITHDRAWING
        await self._ensure_gas("withdraw")
        token0, token1 = await self._pool_tokens()

        def entry_fields(outcome: Optional[TxOutcome]) -> Dict:
            fields = {"position_id": position.position_id}
            if outcome is not None:
                # principal and collected rewards in canonical pool tokens
                data = outcome.data
                fields["output_amount"] = TokenAmount(
                    amount=data.get("amount0", 0) + data.get("rewards0", 0), token=token0
                )
                fields["second_output_amount"] = TokenAmount(
                    amount=data.get("amount1", 0) + data.get("rewards1", 0), token=token1
                )
            return fields

        self.logger.info(f"Withdrawing position {position.position_id}")
        return await self._execute(
            "withdraw",
            transaction_type,
            lambda: self.tx_client.withdraw_position(position, self.signer),
            entry_fields,
        )

    async def _create(self, decision: Decision, result: RebalanceResult) -> str:
        self._check_shutdown("create")
        self.state = WorkflowState.CREATING
        await self._ensure_gas("create")
        token0, token1 = await self._pool_tokens()
        amount0, amount1 = await self.monitor.get_balances(self.base_account, [token0, token1])
        if amount0.is_zero() and amount1.is_zero():
            raise SubmissionError(
                "No token balance available to open a position",
                step="create",
                chain_id=self.chain_id,
            )

        def entry_fields(outcome: Optional[TxOutcome]) -> Dict:
            used0, used1 = amount0, amount1
            if outcome is not None and outcome.successful:
                # the desired amounts stand in only when the executor reported nothing
                if outcome.data.get("amount0") is not None:
                    used0 = TokenAmount(amount=outcome.data["amount0"], token=token0)
                if outcome.data.get("amount1") is not None:
                    used1 = TokenAmount(amount=outcome.data["amount1"], token=token1)
            fields = {"input_amount": used0, "second_input_amount": used1}
            if outcome is not None:
                fields["position_id"] = outcome.data.get("position_id")
            return fields

        self.logger.info(
            f"Creating position ticks [{decision.lower_tick}, {decision.upper_tick}] "
            f"with {amount0} and {amount1}"
        )
        outcome = await self._execute(
            "create",
            TransactionType.CREATE_POSITION,
            lambda: self.tx_client.create_position(
                self.config.pool.id,
                decision.lower_tick,
                decision.upper_tick,
                amount0,
                amount1,
                self.signer,
            ),
            entry_fields,
        )
        result.tx_hashes.append(outcome.tx_hash)

        position_id = outcome.data.get("position_id")
        if not position_id:
            raise ReadError(
                f"Create transaction {outcome.tx_hash} succeeded but returned no position id",
                step="create",
                chain_id=self.chain_id,
            )
        self.config_store.set_position_id(self.config, position_id)
        return position_id

    async def _execute(
        self,
        step: str,
        transaction_type: TransactionType,
        call: Callable[[], Awaitable[TxOutcome]],
        entry_fields: Callable[[Optional[TxOutcome]], Dict],
        account: Optional[ChainAccount] = None,
    ) -> TxOutcome:
        """Issue one state-changing call and record exactly one ledger entry for it."""
        account = account or self.base_account
        try:
            outcome = await call()
        except SubmissionError as e:
            await self.ledger.record(
                LedgerEntry(
                    transaction_type=transaction_type,
                    chain_id=account.chain_id,
                    successful=False,
                    signer_address=account.address,
                    error=str(e),
                    **entry_fields(None),
                )
            )
            raise

        await self.ledger.record(
            LedgerEntry(
                transaction_type=transaction_type,
                chain_id=account.chain_id,
                successful=outcome.successful,
                signer_address=account.address,
                tx_hash=outcome.tx_hash,
                gas_fee=outcome.gas_fee,
                error=outcome.error,
                **entry_fields(outcome),
            )
        )
        if not outcome.successful:
            raise BroadcastError(
                f"{step} transaction {outcome.tx_hash} failed: {outcome.error}",
                tx_hash=outcome.tx_hash,
                step=step,
                chain_id=account.chain_id,
            )
        return outcome

    async def _ensure_gas(self, step: str, account: Optional[ChainAccount] = None) -> None:
        if self.min_gas_balance <= 0:
            return
        account = account or self.base_account
        native = await account.get_native_balance()
        if native.amount < self.min_gas_balance:
            required = TokenAmount(amount=self.min_gas_balance, token=native.token)
            raise SubmissionError(
                "Insufficient native balance for transaction fees",
                step=step,
                chain_id=account.chain_id,
                amounts={"balance": str(native), "required": str(required)},
            )

    # -----------------------------
    # Funding
    # -----------------------------

    def _bridging_enabled(self) -> bool:
        return (
            self.bridge is not None
            and self.mirror_account is not None
            and self.config.mirror is not None
        )

    async def _fund_position(self, price: Decimal, result: RebalanceResult) -> None:
        """Bring the base chain holdings to an even split, using the mirror chain."""
        if not self._bridging_enabled():
            return

        self._check_shutdown("bridge")
        token0, token1 = await self._pool_tokens()
        mirror0, mirror1 = await self._mirror_tokens_info()
        base_balances = await self.monitor.get_balances(self.base_account, [token0, token1])
        mirror_balances = await self.monitor.get_balances(self.mirror_account, [mirror0, mirror1])

        # compare in base token units
        base = (base_balances[0].amount, base_balances[1].amount)
        mirror = (
            _rescale(mirror_balances[0].amount, mirror0.decimals, token0.decimals),
            _rescale(mirror_balances[1].amount, mirror1.decimals, token1.decimals),
        )

        plan = plan_bridge_leg(*base, *mirror, price)
        if plan is not None:
            await self._bridge_in(plan.token_index, plan.amount, mirror_balances, result)
            return

        swap_plan = plan_swap_leg(*base, *mirror, price)
        if swap_plan is None:
            self.logger.info("No funding leg required")
            return
        await self._swap_round_trip(swap_plan, result)

    async def _bridge_in(
        self,
        token_index: int,
        amount: int,
        mirror_balances: List[TokenAmount],
        result: RebalanceResult,
    ) -> None:
        source_token = (await self._mirror_tokens_info())[token_index]
        target_token = (await self._pool_tokens())[token_index]
        source_amount = min(
            _rescale(amount, target_token.decimals, source_token.decimals),
            mirror_balances[token_index].amount,
        )
        if source_amount <= 0:
            self.logger.info("Bridge leg rounds to zero, skipping")
            return

        source = TokenAmount(amount=source_amount, token=source_token)
        transfer = await self._bridge(source, self.base_account, target_token)
        result.tx_hashes.append(transfer.tx_hash)

    async def _swap_round_trip(self, plan: SwapPlan, result: RebalanceResult) -> None:
        """Bridge the excess token out, swap it on the mirror chain and bridge the proceeds back."""
        if self.mirror_tx_client is None:
            raise ConfigError("Mirror chain transaction client not configured, cannot swap", step="swap")

        base_tokens = await self._pool_tokens()
        mirror_tokens = await self._mirror_tokens_info()
        excess, mirror_excess = base_tokens[plan.token_index], mirror_tokens[plan.token_index]
        target, mirror_target = base_tokens[1 - plan.token_index], mirror_tokens[1 - plan.token_index]
        self.logger.info(
            f"Converting {TokenAmount(amount=plan.amount, token=excess)} into {target.name} "
            f"through the mirror chain, expecting {TokenAmount(amount=plan.expected_output, token=target)}"
        )

        swap_input = _rescale(plan.from_mirror, excess.decimals, mirror_excess.decimals)
        if plan.outbound > 0:
            self._check_shutdown("bridge")
            source = TokenAmount(amount=plan.outbound, token=excess)
            outbound = await self._bridge(source, self.mirror_account, mirror_excess)
            result.tx_hashes.append(outbound.tx_hash)
            swap_input += self._received_amount(outbound, mirror_excess).amount
        if swap_input <= 0:
            self.logger.info("Swap leg rounds to zero, skipping")
            return

        # expected output scales with what actually arrived on the mirror chain
        arrived = _rescale(swap_input, mirror_excess.decimals, excess.decimals)
        expected = _rescale(
            plan.expected_output * arrived // plan.amount, target.decimals, mirror_target.decimals
        )
        min_amount_out = int(Decimal(expected) * (1 - MAX_SWAP_SLIPPAGE))

        outcome = await self._swap(
            TokenAmount(amount=swap_input, token=mirror_excess), mirror_target, min_amount_out
        )
        result.tx_hashes.append(outcome.tx_hash)

        amount_out = outcome.data.get("amount_out")
        if amount_out is None:
            amount_out = (await self.monitor.get_balances(self.mirror_account, [mirror_target]))[0].amount
        if amount_out <= 0:
            raise ReadError(
                f"Swap {outcome.tx_hash} left no {mirror_target.name} to bridge back",
                step="swap",
                chain_id=self.mirror_account.chain_id,
            )

        self._check_shutdown("bridge")
        proceeds = TokenAmount(amount=amount_out, token=mirror_target)
        inbound = await self._bridge(proceeds, self.base_account, target)
        result.tx_hashes.append(inbound.tx_hash)

    async def _swap(self, amount_in: TokenAmount, token_out: TokenInfo, min_amount_out: int) -> TxOutcome:
        self._check_shutdown("swap")
        self.state = WorkflowState.SWAPPING
        await self._ensure_gas("swap", self.mirror_account)
        recipient = self.mirror_account.address

        def entry_fields(outcome: Optional[TxOutcome]) -> Dict:
            fields = {"input_amount": amount_in}
            if outcome is not None and outcome.data.get("amount_out") is not None:
                fields["output_amount"] = TokenAmount(amount=outcome.data["amount_out"], token=token_out)
            return fields

        self.logger.info(
            f"Swapping {amount_in} for at least {TokenAmount(amount=min_amount_out, token=token_out)}"
        )
        return await self._execute(
            "swap",
            TransactionType.SWAP,
            lambda: self.mirror_tx_client.swap(amount_in, token_out, min_amount_out, recipient),
            entry_fields,
            account=self.mirror_account,
        )

    # -----------------------------
    # Bridging
    # -----------------------------

    async def _bridge(
        self, source: TokenAmount, destination: ChainAccount, target_token: TokenInfo
    ) -> BridgeTransfer:
        """One transfer to `destination`, recorded once. Timeouts are persisted for the next run."""
        self.state = WorkflowState.BRIDGING
        to_chain_id, to_address = destination.chain_id, destination.address
        try:
            transfer = await self.bridge.transfer(source, to_chain_id, to_address)
        except SubmissionError as e:
            await self._record_bridge(source, None, to_chain_id, to_address, successful=False, error=str(e))
            raise
        except BroadcastError as e:
            await self._record_bridge(source, e.tx_hash, to_chain_id, to_address, successful=False, error=str(e))
            raise
        except BridgeTimeoutError as e:
            await self._record_bridge(
                source, e.transfer.tx_hash, to_chain_id, to_address,
                successful=False, error=f"unresolved: {e}",
            )
            self._persist_pending_bridge(e.transfer)
            raise

        await self._record_bridge(
            source,
            transfer.tx_hash,
            to_chain_id,
            to_address,
            successful=True,
            received=self._received_amount(transfer, target_token),
        )
        return transfer

    async def _resume_pending_bridge(self, result: RebalanceResult) -> None:
        """Re-poll a transfer left unresolved by an earlier run. Never resubmits."""
        pending = self.config.pending_bridge
        if self.bridge is None:
            raise ConfigError(
                f"Pending bridge transfer {pending.tx_hash} but bridging is not configured",
                step="bridge.resume",
            )
        if self.config.mirror is None:
            raise ConfigError(
                f"Pending bridge transfer {pending.tx_hash} but no mirror tokens are configured",
                step="bridge.resume",
            )
        self._check_shutdown("bridge")
        self.state = WorkflowState.BRIDGING
        self.logger.info(f"Resuming unresolved bridge transfer {pending.tx_hash}")
        transfer = BridgeTransfer(
            token_amount=pending.token_amount(),
            to_chain_id=pending.to_chain_id,
            destination_address=pending.destination_address,
            tx_hash=pending.tx_hash,
        )
        try:
            transfer = await self.bridge.wait(transfer)
        except BridgeFailedError as e:
            await self._record_bridge(
                transfer.token_amount, transfer.tx_hash, pending.to_chain_id,
                pending.destination_address, successful=False, error=str(e),
            )
            self._clear_pending_bridge()
            self.logger.warning(f"Unresolved transfer {transfer.tx_hash} turned out failed")
            return

        target = await self._counterpart(pending.token)
        await self._record_bridge(
            transfer.token_amount,
            transfer.tx_hash,
            pending.to_chain_id,
            pending.destination_address,
            successful=True,
            received=self._received_amount(transfer, target),
        )
        self._clear_pending_bridge()
        result.tx_hashes.append(transfer.tx_hash)

    def _received_amount(self, transfer: BridgeTransfer, target_token: TokenInfo) -> TokenAmount:
        received = transfer.received_amount
        if received is None:
            received = _rescale(
                transfer.token_amount.amount,
                transfer.token_amount.token.decimals,
                target_token.decimals,
            )
        return TokenAmount(amount=received, token=target_token)

    async def _record_bridge(
        self,
        source: TokenAmount,
        tx_hash: Optional[str],
        to_chain_id: int,
        destination_address: str,
        successful: bool,
        received: Optional[TokenAmount] = None,
        error: Optional[str] = None,
    ) -> None:
        await self.ledger.record(
            LedgerEntry(
                transaction_type=TransactionType.BRIDGE_TRANSFER,
                chain_id=source.token.chain_id,
                successful=successful,
                signer_address=self._signer_on(source.token.chain_id),
                tx_hash=tx_hash,
                input_amount=source,
                output_amount=received,
                destination_address=destination_address,
                destination_chain_id=to_chain_id,
                error=error,
            )
        )

    def _persist_pending_bridge(self, transfer: BridgeTransfer) -> None:
        self.config.pending_bridge = PendingBridge(
            tx_hash=transfer.tx_hash,
            from_chain_id=transfer.from_chain_id,
            to_chain_id=transfer.to_chain_id,
            token=transfer.token_amount.token,
            amount=transfer.token_amount.amount,
            destination_address=transfer.destination_address,
            submitted_at=int(self.clock()),
        )
        self.config_store.save(self.config)

    def _clear_pending_bridge(self) -> None:
        self.config.pending_bridge = None
        self.config_store.save(self.config)

    def _signer_on(self, chain_id: int) -> str:
        if self.mirror_account is not None and chain_id == self.mirror_account.chain_id:
            return self.mirror_account.address
        return self.signer

    # -----------------------------
    # Tokens
    # -----------------------------

    async def _pool_tokens(self) -> Tuple[TokenInfo, TokenInfo]:
        if self._tokens is None:
            self._tokens = (
                await self.monitor.get_token_info(self.config.pool.token0),
                await self.monitor.get_token_info(self.config.pool.token1),
            )
        return self._tokens

    async def _mirror_tokens_info(self) -> Tuple[TokenInfo, TokenInfo]:
        if self._mirror_tokens is None:
            if self.mirror_query is None:
                raise ConfigError("Mirror chain query client not configured", step="bridge")
            tokens: List[TokenInfo] = []
            for identifier in (self.config.mirror.token0, self.config.mirror.token1):
                try:
                    tokens.append(await self.mirror_query.get_token_info(identifier))
                except ReadError:
                    raise
                except Exception as e:
                    raise ReadError(
                        f"Failed to read mirror token {identifier}: {e}",
                        step="bridge",
                        chain_id=self.mirror_account.chain_id,
                    ) from e
            self._mirror_tokens = (tokens[0], tokens[1])
        return self._mirror_tokens

    async def _counterpart(self, token: TokenInfo) -> TokenInfo:
        """The same pool token on the other chain."""
        base_tokens = await self._pool_tokens()
        mirror_tokens = await self._mirror_tokens_info()
        for base_token, mirror_token in zip(base_tokens, mirror_tokens):
            for this, other in ((base_token, mirror_token), (mirror_token, base_token)):
                if token.chain_id == this.chain_id and token.identifier.lower() == this.identifier.lower():
                    return other
        raise ConfigError(
            f"{token.name} on chain {token.chain_id} is not a configured pool token",
            step="bridge.resume",
        )
