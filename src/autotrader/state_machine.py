"""Orchestrator lifecycle state machine + analysis/trading/monitor cycles."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Iterable

import structlog
from tenacity import retry, stop_after_attempt, wait_exponential

from autotrader.errors import (
    ConnectivityError,
    InsufficientFundsError,
    PersistenceError,
    TradingBotError,
)
from autotrader.indicator.market_analyzer import MarketAnalyzer
from autotrader.models.analysis import Signal
from autotrader.models.bot import BotConfig, BotState, BotStatus, StartResult, StopResult, Suggestion
from autotrader.performance import compute_metrics
from autotrader.scheduler import PeriodicTask
from autotrader.selection.pair_selector import PairSelector
from autotrader.trade.executor import TradeExecutor
from autotrader.trade.trade_policy import BuyGate, SellPolicy

if TYPE_CHECKING:
    from autotrader.config import Settings
    from autotrader.interfaces import ExchangeClient, Notifier, Storage
    from autotrader.models.analysis import AnalysisResult
    from autotrader.models.bot import LogEntry
    from autotrader.models.order import AssetBalance
    from autotrader.models.selection import SelectionStats
    from autotrader.models.trade import TradeRecord

logger = structlog.get_logger()

QUOTE_ASSET = "USDT"
VOLUME_RANK_DIVISOR = 10_000_000.0
SUGGESTION_LIMIT = 5


class Orchestrator:
    """
    Owns the bot run state and the three background cycles.

    NOT_RUNNING -> STARTING -> RUNNING -> STOPPING -> NOT_RUNNING

    start/stop are serialized by one lock. The in-memory state is
    authoritative; the persisted running flag is a cache used to detect a
    previous process that died without stopping.
    """

    def __init__(
        self,
        settings: Settings,
        exchange: ExchangeClient,
        storage: Storage,
        notifier: Notifier | None = None,
        pair_selector: PairSelector | None = None,
        analyzer: MarketAnalyzer | None = None,
        executor: TradeExecutor | None = None,
    ) -> None:
        self.settings = settings
        self.exchange = exchange
        self.storage = storage
        self.notifier = notifier
        self.state = BotState.NOT_RUNNING
        self.config: BotConfig | None = None
        self.latest: dict[str, AnalysisResult] = {}
        self.last_analysis_at: datetime | None = None
        self._start_result: StartResult | None = None

        self.pair_selector = pair_selector or PairSelector(
            exchange,
            refresh_seconds=settings.PAIR_REFRESH_SECONDS,
            candle_interval=settings.CANDLE_INTERVAL,
        )
        self.analyzer = analyzer or MarketAnalyzer(
            exchange,
            candle_interval=settings.CANDLE_INTERVAL,
            candle_limit=settings.CANDLE_LIMIT,
            timeout=settings.EXCHANGE_TIMEOUT_SECONDS,
        )
        self.executor = executor or TradeExecutor(
            exchange, storage, notifier, order_timeout=settings.ORDER_TIMEOUT_SECONDS
        )
        self.buy_gate = BuyGate()
        self.sell_policy: SellPolicy | None = None

        self.analysis_cycle = PeriodicTask(
            "analysis", settings.ANALYSIS_INTERVAL_SECONDS, self._analysis_tick, run_immediately=True
        )
        self.trading_cycle = PeriodicTask(
            "trading", settings.TRADING_INTERVAL_SECONDS, self._trading_tick
        )
        self.monitor_cycle = PeriodicTask(
            "monitor", settings.MONITOR_INTERVAL_SECONDS, self._monitor_tick
        )
        self._lifecycle_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self.state == BotState.RUNNING

    @property
    def cycles(self) -> tuple[PeriodicTask, ...]:
        return (self.analysis_cycle, self.trading_cycle, self.monitor_cycle)

    def _set_state(self, new_state: BotState) -> None:
        """Update state with logging."""
        old = self.state
        self.state = new_state
        logger.info("state_transition", old=old.value, new=new_state.value)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, config: BotConfig | dict) -> StartResult:
        """
        Validate connectivity and funds, persist config, then start cycles:
        0. already RUNNING: return the current run unchanged
        1. recover a stale persisted running flag
        2. ping the exchange (ConnectivityError)
        3. check free USDT >= MIN_START_BALANCE (InsufficientFundsError)
        4. persist config + running flag
        5. RUNNING, start analysis/trading/monitor cycles, notify
        Any failure force-stops and re-raises, leaving NOT_RUNNING.
        """
        if isinstance(config, dict):
            config = BotConfig.from_payload(config)

        async with self._lifecycle_lock:
            if self.is_running and self._start_result is not None:
                logger.warning("start_ignored_already_running")
                return self._start_result.model_copy(update={"message": "Bot already running"})

            persisted = await self._persisted_running()
            if self.state != BotState.NOT_RUNNING or persisted:
                logger.warning(
                    "start_recovering_previous_run",
                    state=self.state.value,
                    persisted_running=persisted,
                )
                await self._force_stop_unlocked()

            self._set_state(BotState.STARTING)
            try:
                return await self._startup(config)
            except TradingBotError as e:
                await self._audit("ERROR", "Bot start failed", error=str(e), error_type=type(e).__name__)
                await self._force_stop_unlocked()
                raise
            except Exception as e:
                logger.exception("start_unexpected_error")
                await self._audit("ERROR", "Bot start failed", error=str(e), error_type=type(e).__name__)
                await self._force_stop_unlocked()
                raise TradingBotError(f"Bot start failed: {e}") from e

    async def _startup(self, config: BotConfig) -> StartResult:
        s = self.settings
        try:
            connected = await asyncio.wait_for(
                self.exchange.test_connection(), s.PING_TIMEOUT_SECONDS
            )
        except asyncio.TimeoutError:
            connected = False
        if not connected:
            raise ConnectivityError("Exchange connectivity check failed; trading requires a live connection")

        try:
            balances = await asyncio.wait_for(
                self.exchange.get_account_balances(), s.EXCHANGE_TIMEOUT_SECONDS
            )
        except Exception as e:
            raise ConnectivityError(f"Could not read account balances: {e}") from e

        usdt_free = next((b.free for b in balances if b.asset == QUOTE_ASSET), 0.0)
        if usdt_free < s.MIN_START_BALANCE:
            raise InsufficientFundsError(QUOTE_ASSET, usdt_free, s.MIN_START_BALANCE)

        try:
            await self.storage.save_account_balances(balances)
        except Exception:
            logger.warning("account_balances_persist_failed")

        await self.storage.save_config(config)
        self.config = config
        self.sell_policy = SellPolicy(config)
        self.executor.notify_enabled = config.telegram_enabled
        await self._persist_running(True)

        self._set_state(BotState.RUNNING)
        self.pair_selector.start()
        for cycle in self.cycles:
            cycle.start()

        await self._audit(
            "INFO",
            "Bot started",
            usdt_balance=usdt_free,
            initial_capital=config.initial_capital,
            trade_percentage=config.trade_percentage,
            analysis_interval=s.ANALYSIS_INTERVAL_SECONDS,
            trading_interval=s.TRADING_INTERVAL_SECONDS,
        )
        if config.telegram_enabled:
            await self._notify(
                "Trading bot started",
                f"Initial capital: ${config.initial_capital:.2f}\n"
                f"USDT balance: {usdt_free:.2f}\n"
                f"Trade size: {config.trade_percentage}%\n"
                f"Take profit: {config.sell_threshold}%\n"
                f"Stop loss: {config.risk_management.stop_loss_percentage}%\n"
                f"Pair refresh: {s.PAIR_REFRESH_SECONDS / 60:.0f} min",
                "success",
            )
        self._start_result = StartResult(
            message="Trading bot started",
            usdt_balance=usdt_free,
            pairs=list(self.pair_selector.current_selection),
        )
        return self._start_result

    async def stop(self) -> StopResult:
        """Idempotent stop. Always reports success once NOT_RUNNING is reached."""
        async with self._lifecycle_lock:
            if self.state == BotState.NOT_RUNNING and not await self._persisted_running():
                return StopResult(message="Bot already stopped", was_running=False)

            try:
                await self._graceful_stop()
            except Exception:
                logger.exception("stop_failed_forcing_recovery")
                await self._force_stop_unlocked()
                return StopResult(message="Bot stopped (forced recovery)", was_running=True, forced=True)
            return StopResult(message="Bot stopped", was_running=True)

    async def force_stop(self) -> None:
        """Fallback stop path. Safe to call repeatedly; never raises."""
        async with self._lifecycle_lock:
            await self._force_stop_unlocked()

    async def _graceful_stop(self) -> None:
        self._set_state(BotState.STOPPING)
        await self._audit("INFO", "Bot stop requested")
        for cycle in self.cycles:
            await cycle.stop(grace=self.settings.STOP_GRACE_SECONDS)
        self.pair_selector.stop()
        if not await self._persist_running(False):
            raise PersistenceError("Could not persist stopped state")
        await self._audit("INFO", "Bot stopped")
        await self._send_final_report()
        self._set_state(BotState.NOT_RUNNING)

    async def _force_stop_unlocked(self) -> None:
        for cycle in self.cycles:
            try:
                await cycle.stop(grace=self.settings.STOP_GRACE_SECONDS)
            except Exception:
                logger.exception("force_stop_cycle_error", cycle=cycle.name)
        self.pair_selector.stop()
        await self._persist_running(False)
        self._start_result = None
        if self.state != BotState.NOT_RUNNING:
            self._set_state(BotState.NOT_RUNNING)
        logger.warning("force_stop_complete")

    async def _persisted_running(self) -> bool:
        try:
            stats = await self.storage.get_stats()
        except Exception:
            logger.warning("persisted_state_unavailable")
            return False
        return stats.is_running

    async def _persist_running(self, running: bool) -> bool:
        try:
            await self._write_running_flag(running)
            return True
        except Exception:
            logger.exception("running_flag_persist_failed", running=running)
            return False

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=0.2, max=2), reraise=True)
    async def _write_running_flag(self, running: bool) -> None:
        await self.storage.set_running(running)

    async def _send_final_report(self) -> None:
        if not (self.config and self.config.telegram_enabled):
            return
        try:
            stats = await self.storage.get_stats()
            pair_stats = self.pair_selector.get_selection_stats()
            await self._notify(
                "Trading bot stopped",
                f"Final capital: ${stats.total_capital:.2f}\n"
                f"Total profit: ${stats.total_profit:.2f}\n"
                f"Trades: {stats.trades_count}\n"
                f"Win rate: {stats.win_rate:.1f}%\n"
                f"Selected pairs: {pair_stats.pair_count}",
                "warning",
            )
        except Exception:
            logger.exception("final_report_failed")

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    async def _analysis_tick(self) -> None:
        """Refresh selection if stale, analyze selected + held instruments."""
        if not self.is_running or self.config is None:
            return

        pairs = await self.pair_selector.select()
        try:
            held = [t.symbol for t in await self.storage.get_open_trades()]
        except Exception:
            logger.warning("open_trades_unavailable")
            held = []
        symbols = list(dict.fromkeys([*pairs, *held]))

        if not symbols:
            self.latest = {}
            await self._audit("WARNING", "No trading pairs selected for analysis")
            return

        results = await self.analyzer.analyze_many(symbols, self.config.technical_indicators)
        if not self.is_running:
            return
        self.latest = results
        self.last_analysis_at = datetime.now(timezone.utc)

        for result in results.values():
            try:
                await self.storage.save_analysis(result)
            except Exception:
                logger.warning("analysis_persist_failed", symbol=result.symbol)

        buys = [r.symbol for r in results.values() if r.signals.overall == Signal.BUY]
        logger.info(
            "analysis_cycle_complete",
            requested=len(symbols),
            analyzed=len(results),
            buy_signals=buys,
        )

    async def _trading_tick(self) -> None:
        """Buy/sell evaluation over one snapshot of the latest analysis results."""
        if not self.is_running or self.config is None or self.sell_policy is None:
            return

        snapshot = dict(self.latest)
        if not snapshot:
            await self._audit("WARNING", "No analysis results available, skipping trading cycle")
            return

        stats = await self.storage.get_stats()
        open_trades = await self.storage.get_open_trades()
        capital = stats.total_capital

        buys_allowed = True
        limit = self.config.daily_loss_limit
        if limit > 0 and stats.daily_loss >= limit:
            buys_allowed = False
            await self._audit(
                "WARNING",
                "Daily loss limit reached, no new positions today",
                daily_loss=stats.daily_loss,
                limit=limit,
            )

        candidates = self.rank_candidates(snapshot.values())
        logger.info(
            "trading_cycle_started",
            analyzed=len(snapshot),
            candidates=[c.symbol for c in candidates],
            open_trades=len(open_trades),
            capital=round(capital, 2),
        )

        evaluated: set[str] = set()
        for analysis in candidates:
            if not self.is_running:
                logger.info("trading_cycle_aborted", symbol=analysis.symbol)
                return
            evaluated.add(analysis.symbol)
            try:
                if buys_allowed:
                    capital = await self._maybe_buy(analysis, capital, open_trades)
                capital += await self._evaluate_exits(analysis, open_trades)
            except Exception as e:
                logger.exception("trading_symbol_error", symbol=analysis.symbol)
                await self._audit("ERROR", f"{analysis.symbol} trading error", error=str(e))

        for symbol in sorted({t.symbol for t in open_trades} - evaluated):
            analysis = snapshot.get(symbol)
            if analysis is None:
                continue
            if not self.is_running:
                logger.info("trading_cycle_aborted", symbol=symbol)
                return
            try:
                capital += await self._evaluate_exits(analysis, open_trades)
            except Exception as e:
                logger.exception("trading_symbol_error", symbol=symbol)
                await self._audit("ERROR", f"{symbol} exit evaluation error", error=str(e))

        logger.info("trading_cycle_complete", open_trades=len(open_trades), capital=round(capital, 2))

    def rank_candidates(self, results: Iterable[AnalysisResult]) -> list[AnalysisResult]:
        """Sanity-band filter, rank by confidence + volume bonus, cap per tick."""
        s = self.settings
        eligible = [
            r
            for r in results
            if r.ticker.quote_volume >= s.MIN_TRADING_VOLUME
            and abs(r.ticker.price_change_percent) < s.MAX_PRICE_CHANGE_PCT
            and r.price > 0
        ]
        eligible.sort(
            key=lambda r: r.confidence + r.ticker.quote_volume / VOLUME_RANK_DIVISOR, reverse=True
        )
        return eligible[: s.MAX_CANDIDATES_PER_TICK]

    async def _maybe_buy(
        self, analysis: AnalysisResult, capital: float, open_trades: list[TradeRecord]
    ) -> float:
        assert self.config is not None
        symbol_open = sum(1 for t in open_trades if t.symbol == analysis.symbol)
        decision = self.buy_gate.evaluate(
            analysis,
            capital=capital,
            open_count=len(open_trades),
            symbol_open_count=symbol_open,
            max_open_trades=self.config.risk_management.max_open_trades,
        )
        if not decision.approved:
            logger.debug(
                "buy_rejected",
                symbol=analysis.symbol,
                failures=[f.rule for f in decision.failures],
            )
            return capital

        amount = capital * self.config.trade_percentage / 100
        if amount < self.settings.MIN_TRADE_AMOUNT:
            logger.info("buy_amount_too_small", symbol=analysis.symbol, amount=round(amount, 2))
            return capital

        await self._audit(
            "INFO",
            f"{analysis.symbol} ready to buy",
            confidence=analysis.confidence,
            amount=round(amount, 2),
            reasons=analysis.top_reasons(),
        )
        trade = await self.executor.buy(analysis.symbol, amount, analysis)
        open_trades.append(trade)
        return capital - amount

    async def _evaluate_exits(
        self, analysis: AnalysisResult, open_trades: list[TradeRecord]
    ) -> float:
        """Close positions on analysis.symbol whose sell rule fires. Returns capital credited."""
        assert self.sell_policy is not None
        credited = 0.0
        for trade in [t for t in open_trades if t.symbol == analysis.symbol]:
            if not self.is_running:
                break
            decision = self.sell_policy.evaluate(trade, analysis)
            if not decision.should_sell:
                continue
            await self._audit(
                "INFO",
                f"{trade.symbol} ready to sell",
                rule=decision.rule,
                reason=decision.reason,
                profit_percent=round(decision.profit_percent, 2),
            )
            closed = await self.executor.sell(trade, analysis, decision.reason)
            open_trades.remove(trade)
            credited += closed.amount + (closed.profit or 0.0)
        return credited

    async def _monitor_tick(self) -> None:
        """Health checks, daily performance snapshot, daily loss reset."""
        if not self.is_running:
            return

        checks = {
            "exchange": await self._check_exchange(),
            "storage": await self._check_storage(),
            "analysis": self.analysis_cycle.is_running,
        }
        await self._audit("INFO", "Health check completed", **checks)
        if not all(checks.values()) and self.config and self.config.telegram_enabled:
            await self._notify(
                "Health check alert",
                "\n".join(f"{name}: {'OK' if ok else 'FAILED'}" for name, ok in checks.items()),
                "warning",
            )

        await self.storage.record_daily_performance()

        stats = await self.storage.get_stats()
        today = datetime.now(timezone.utc).date()
        if stats.last_reset_date != today:
            await self.storage.reset_daily_loss()
            await self._audit("INFO", "Daily loss counter reset", previous=stats.daily_loss)

    async def _check_exchange(self) -> bool:
        try:
            return await asyncio.wait_for(
                self.exchange.test_connection(), self.settings.PING_TIMEOUT_SECONDS
            )
        except Exception:
            return False

    async def _check_storage(self) -> bool:
        try:
            return await self.storage.health_check()
        except Exception:
            return False

    # ------------------------------------------------------------------
    # Read-only queries
    # ------------------------------------------------------------------

    async def get_status(self) -> BotStatus:
        stats = await self.storage.get_stats()
        open_trades = await self.storage.get_open_trades()
        return BotStatus(
            state=self.state.value,
            is_running=self.is_running,
            stats=stats,
            pairs=list(self.pair_selector.current_selection),
            open_trades=len(open_trades),
            last_analysis_at=self.last_analysis_at,
        )

    async def get_trade_history(self, limit: int = 50) -> list[TradeRecord]:
        return await self.storage.get_trade_history(limit)

    async def get_portfolio(self) -> list[TradeRecord]:
        return await self.storage.get_open_trades()

    async def get_logs(self, limit: int = 100) -> list[LogEntry]:
        return await self.storage.get_logs(limit)

    async def get_account_balances(self) -> list[AssetBalance]:
        return await self.storage.get_account_balances()

    async def get_analytics(self) -> dict:
        trades = await self.storage.get_closed_trades()
        return compute_metrics(reversed(trades))

    def get_suggestions(self) -> list[Suggestion]:
        threshold = self.settings.SUGGESTION_MIN_CONFIDENCE
        ranked = sorted(
            (r for r in self.latest.values() if r.confidence > threshold),
            key=lambda r: r.confidence,
            reverse=True,
        )
        return [
            Suggestion(
                symbol=r.symbol,
                signal=r.signals.overall.value,
                confidence=r.confidence,
                price=r.price,
                change=r.ticker.price_change_percent,
                reason=", ".join(r.reasons),
            )
            for r in ranked[:SUGGESTION_LIMIT]
        ]

    def get_current_pairs(self) -> list[str]:
        return list(self.pair_selector.current_selection)

    async def refresh_pairs(self) -> list[str]:
        return list(await self.pair_selector.force_refresh())

    def get_pair_stats(self) -> SelectionStats:
        return self.pair_selector.get_selection_stats()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _audit(self, level: str, message: str, **details) -> None:
        """Log via structlog and append to the storage log (best-effort)."""
        log = getattr(logger, level.lower(), logger.info)
        log("bot_audit", message=message, **details)
        try:
            await self.storage.add_log(level, message, details or None)
        except Exception:
            logger.warning("audit_persist_failed", message=message)

    async def _notify(self, title: str, body: str, severity: str = "info") -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier.send_alert(title, body, severity)
        except Exception:
            logger.exception("notification_error", title=title)
