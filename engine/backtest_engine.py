"""单次回测引擎（BacktestEngine）。

配置 → K 线（CSV，可自动下载，按日期过滤）→ 逐根回放周期 → 指标/产物 →（可选）AI 复盘。
"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Any, Callable

from analysis.metrics import compute_trade_metrics
from analysis.reporting import export_trades, write_summary
from analysis.review import run_post_test_review
from broker.backtest_broker import BacktestBroker
from engine.base_engine import BaseEngine, EngineResult
from engine.cycle import CycleOrchestrator, Sleep
from market_data.loader import HistoricalDataLoader
from market_data.store import CandleStore
from oracle.client import DecisionOracleClient
from oracle.transport import OracleTransport
from risk.sizer import RiskSizer
from shared.config.config_loader import load_config
from shared.config.schema import MainConfig
from shared.errors import ConfigError, MissingCredentialsError
from shared.state.sqlite_ledger import TradeHistoryStore
from shared.utils.logging import MetricsLogger, configure_logging, setup_logger
from strategy.signal_filter import SignalFilter


class BacktestEngine(BaseEngine):
    """单次回测引擎。

    Parameters
    ----------
    cfg_path / cfg_obj:
        配置文件路径，或已构造好的 MainConfig（优先）。
    transport:
        注入的 oracle 传输层（测试用）；缺省按配置构造 Gemini 客户端。
    candles:
        注入的 K 线序列；缺省从 `backtest.data_path` 加载。
    sleep / clock:
        注入的等待与计时函数（测试里跳过真实等待）。
    """

    def __init__(
        self,
        *,
        cfg_path: str = "config/backtest.yml",
        cfg_obj: MainConfig | None = None,
        artifacts_dir: str | Path | None = None,
        transport: OracleTransport | None = None,
        candles: CandleStore | None = None,
        loader: HistoricalDataLoader | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._cfg_path = cfg_path
        self._cfg_obj = cfg_obj
        self._artifacts_dir = artifacts_dir
        self._transport = transport
        self._candles = candles
        self._loader = loader
        self._sleep = sleep
        self._clock = clock

        self.cfg: MainConfig | None = None
        self.broker: BacktestBroker | None = None
        self.orchestrator: CycleOrchestrator | None = None

    async def run_async(self) -> EngineResult:
        cfg = self._load_cfg()
        self.cfg = cfg
        configure_logging(cfg.logging.level, cfg.logging.dir)
        logger = setup_logger("backtest")
        logger.info("--- STARTING NEW BACKTEST (%s %s) ---", cfg.symbol, cfg.timeframe)

        signal_filter = SignalFilter.from_config(cfg.signal_filter)
        self._check_window(cfg, signal_filter)
        store = self._load_candles(cfg)
        oracle = self._build_oracle(cfg)
        metrics = self._build_metrics(cfg)

        history = TradeHistoryStore(cfg.history.path) if cfg.history.enabled else None
        broker = BacktestBroker(cfg.trading.initial_balance, history=history, symbol=cfg.symbol)
        self.broker = broker

        orchestrator = CycleOrchestrator(
            broker=broker,
            oracle=oracle,
            sizer=RiskSizer(cfg.risk),
            signal_filter=signal_filter,
            confidence_threshold=cfg.trading.confidence_threshold,
            max_oracle_calls=cfg.trading.max_oracle_calls,
            recent_trades=cfg.oracle.recent_trades,
            min_seconds_between_calls=cfg.trading.min_seconds_between_calls,
            sleep=self._sleep,
            clock=self._clock,
            metrics=metrics,
        )
        self.orchestrator = orchestrator
        try:
            stats = await orchestrator.run_backtest(
                store,
                warmup=cfg.trading.warmup,
                window_size=cfg.trading.window_size,
                flatten_on_end=cfg.backtest.flatten_on_end,
            )
        finally:
            broker.close()

        positions = list(broker.ledger.closed_positions)
        summary: dict[str, Any] = compute_trade_metrics(positions, cfg.trading.initial_balance)
        summary.update(
            {
                "candles": len(store),
                "cycles": stats.cycles,
                "oracle_calls": stats.oracle_calls,
                "stopped_early": stats.stopped_early,
                "skipped": dict(stats.skipped),
                "open_position": broker.ledger.position.to_dict() if broker.ledger.position else None,
            }
        )
        metrics.emit("realized_pnl", summary["total_pnl"], "usd", mode="backtest")
        metrics.emit("win_rate", summary["win_rate_pct"], "pct", mode="backtest")
        metrics.emit("balance", summary["final_balance"], "usd", mode="backtest")

        artifacts = self._export_artifacts(cfg, positions, summary)
        if cfg.backtest.review.enabled and positions:
            review_paths = await run_post_test_review(
                oracle,
                positions,
                cfg.trading.initial_balance,
                self._output_dir(cfg),
                block_size=cfg.backtest.review.block_size,
                config_snapshot=cfg.trading.model_dump(),
            )
            artifacts.update({k: str(v) for k, v in review_paths.items()})

        logger.info("Backtest summary: %s", summary)
        return EngineResult(summary=summary, artifacts=artifacts)

    def _load_cfg(self) -> MainConfig:
        return self._cfg_obj or load_config(self._cfg_path)

    @staticmethod
    def _check_window(cfg: MainConfig, signal_filter: SignalFilter) -> None:
        if signal_filter.enabled and cfg.trading.window_size < signal_filter.required_candles:
            raise ConfigError(
                f"trading.window_size ({cfg.trading.window_size}) is shorter than the "
                f"{signal_filter.required_candles} candles the signal filter needs"
            )

    def _load_candles(self, cfg: MainConfig) -> CandleStore:
        if self._candles is not None:
            return self._candles.filter_by_date(cfg.backtest.start, cfg.backtest.end)
        loader = self._loader or HistoricalDataLoader()
        return loader.load_for_backtest(
            cfg.backtest.data_path,
            start=cfg.backtest.start,
            end=cfg.backtest.end,
            auto_download=cfg.backtest.auto_download,
            download_symbol=cfg.backtest.download_symbol,
            download_start=cfg.backtest.download_start,
            interval=cfg.timeframe,
        )

    def _build_oracle(self, cfg: MainConfig) -> DecisionOracleClient:
        if self._transport is None and not cfg.oracle.api_key:
            raise MissingCredentialsError("oracle.api_key is required")
        return DecisionOracleClient.from_config(
            cfg.oracle, cfg.symbol, cfg.timeframe, transport=self._transport, sleep=self._sleep
        )

    @staticmethod
    def _build_metrics(cfg: MainConfig) -> MetricsLogger:
        if cfg.logging.metrics and cfg.logging.dir:
            return MetricsLogger(Path(cfg.logging.dir) / "metrics.ndjson")
        return MetricsLogger(None)

    def _output_dir(self, cfg: MainConfig) -> Path:
        return Path(self._artifacts_dir or cfg.backtest.output_dir)

    def _export_artifacts(self, cfg: MainConfig, positions: list, summary: dict[str, Any]) -> dict[str, Any]:
        out = self._output_dir(cfg)
        paths = export_trades(positions, out)
        paths["summary"] = write_summary(summary, out)
        return {k: str(v) for k, v in paths.items()}
