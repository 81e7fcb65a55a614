"""实盘交易引擎：按固定间隔拉取最新收盘 K 线，执行一个周期。"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Any, Callable

from broker.abstract_broker import Broker
from broker.live_broker import LiveBroker
from engine.base_engine import BaseEngine, EngineResult
from engine.cycle import CycleOrchestrator, Sleep
from market_data.client import KrakenOhlcClient
from market_data.store import CandleStore, Window
from oracle.client import DecisionOracleClient
from oracle.transport import OracleTransport
from risk.sizer import RiskSizer
from shared.config.config_loader import load_config
from shared.config.schema import MainConfig
from shared.errors import InsufficientDataError, MissingCredentialsError
from shared.state.sqlite_ledger import TradeHistoryStore
from shared.utils.logging import MetricsLogger, configure_logging, setup_logger
from strategy.signal_filter import SignalFilter


class TradingEngine(BaseEngine):
    def __init__(
        self,
        *,
        cfg_path: str = "config/config.yml",
        cfg_obj: MainConfig | None = None,
        max_cycles: int | None = None,
        broker: Broker | None = None,
        transport: OracleTransport | None = None,
        market_client: Any = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._cfg_path = cfg_path
        self._cfg_obj = cfg_obj
        self._max_cycles = max_cycles
        self._broker = broker
        self._transport = transport
        self._market_client = market_client
        self._sleep = sleep
        self._clock = clock

        self.cfg: MainConfig | None = None
        self.broker: Broker | None = None
        self.store: CandleStore | None = None

    async def run_async(self) -> EngineResult:
        cfg = self._load_cfg()
        self.cfg = cfg
        configure_logging(cfg.logging.level, cfg.logging.dir)
        logger = setup_logger("engine")

        self._check_credentials(cfg)
        broker = self._broker or self._build_broker(cfg, logger=logger)
        self.broker = broker
        market_client = self._market_client or KrakenOhlcClient(timeout=cfg.exchange.timeout_secs)
        signal_filter = SignalFilter.from_config(cfg.signal_filter)
        store = CandleStore()
        required = signal_filter.required_candles if signal_filter.enabled else 1
        keep = 2 * max(cfg.trading.window_size, required)

        async def fetch_window() -> Window:
            nonlocal store
            candles = await asyncio.to_thread(market_client.fetch_candles, cfg.ohlc_pair, cfg.timeframe)
            store = store.append(candles).tail(keep)
            self.store = store
            return store.latest_window(cfg.trading.window_size)

        first = await fetch_window()
        if len(first) < required:
            raise InsufficientDataError(f"Live feed returned {len(first)} candles, need at least {required}")

        metrics = MetricsLogger(Path(cfg.logging.dir) / "metrics.ndjson") if cfg.logging.metrics and cfg.logging.dir else None
        orchestrator = CycleOrchestrator(
            broker=broker,
            oracle=DecisionOracleClient.from_config(
                cfg.oracle, cfg.symbol, cfg.timeframe, transport=self._transport, sleep=self._sleep
            ),
            sizer=RiskSizer(cfg.risk),
            signal_filter=signal_filter,
            confidence_threshold=cfg.trading.confidence_threshold,
            max_oracle_calls=cfg.trading.max_oracle_calls,
            recent_trades=cfg.oracle.recent_trades,
            sleep=self._sleep,
            clock=self._clock,
            metrics=metrics,
        )
        logger.info(
            "Live trading %s every %.0fs (window=%s, threshold=%s)",
            cfg.symbol,
            cfg.trading.interval_secs,
            cfg.trading.window_size,
            cfg.trading.confidence_threshold,
        )
        try:
            stats = await orchestrator.run_live(fetch_window, cfg.trading.interval_secs, self._max_cycles)
        finally:
            broker.close()

        summary = {
            "cycles": stats.cycles,
            "oracle_calls": stats.oracle_calls,
            "opened": stats.opened,
            "closed": stats.closed,
            "skipped": dict(stats.skipped),
        }
        logger.info("Live run summary: %s", summary)
        return EngineResult(summary=summary)

    def _load_cfg(self) -> MainConfig:
        return self._cfg_obj or load_config(self._cfg_path)

    def _check_credentials(self, cfg: MainConfig) -> None:
        missing = []
        if self._broker is None and not (cfg.exchange.api_key and cfg.exchange.api_secret):
            missing.append("exchange.api_key/api_secret")
        if self._transport is None and not cfg.oracle.api_key:
            missing.append("oracle.api_key")
        if missing:
            raise MissingCredentialsError(f"Missing credentials: {', '.join(missing)}")

    @staticmethod
    def _build_broker(cfg: MainConfig, *, logger) -> LiveBroker:
        history = TradeHistoryStore(cfg.history.path) if cfg.history.enabled else None
        broker = LiveBroker.from_config(cfg.exchange, cfg.symbol, history=history)
        seeded = broker.seed_from_history(cfg.oracle.recent_trades)
        logger.info("Loaded %s closed trades from history store", seeded)
        return broker
