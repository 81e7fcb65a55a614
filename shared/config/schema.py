"""配置架构定义（Pydantic Schema）。

目标：
- 让配置成为“强类型 + 可演进”的边界协议；
- 启动阶段尽早失败，避免 typo/类型错误在实盘或长回测中“隐蔽爆炸”；
- 业务代码只读 `cfg.trading.xxx` 这类属性，不做深层字典索引。
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ExchangeConfig(BaseModel):
    """交易所（Kraken Futures）配置。"""
    name: str = "kraken-futures"
    base_url: str = "https://futures.kraken.com"
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    timeout_secs: float = 10.0

    # 入场限价相对最新价的偏移、止损限价相对止损触发价的偏移
    entry_slippage_pct: float = Field(default=0.001, ge=0)
    stop_slippage_pct: float = Field(default=0.01, ge=0)

    model_config = ConfigDict(extra="forbid")


class BackoffConfig(BaseModel):
    """oracle 重试退避策略。默认 constant 61s（对齐 oracle 的限流窗口）。"""
    type: Literal["constant", "exponential", "jittered"] = "constant"
    delay_secs: float = Field(default=61.0, ge=0)
    factor: float = Field(default=2.0, ge=1)
    max_delay_secs: float = Field(default=600.0, ge=0)
    jitter_secs: float = Field(default=5.0, ge=0)
    model_config = ConfigDict(extra="forbid")


class OracleConfig(BaseModel):
    """决策 oracle（外部 LLM 服务）配置。"""
    provider: Literal["gemini"] = "gemini"
    model: str = "gemini-2.5-flash-lite"
    api_key: Optional[str] = None
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    timeout_secs: float = 60.0
    max_attempts: int = Field(default=4, ge=1)
    recent_trades: int = Field(default=10, ge=0)
    indicators: bool = True
    backoff: BackoffConfig = Field(default_factory=BackoffConfig)
    model_config = ConfigDict(extra="forbid")


class RiskConfig(BaseModel):
    """仓位计算参数。"""
    risk_fraction: float = Field(default=0.02, gt=0, le=1)
    leverage: float = Field(default=10.0, gt=0)
    margin_buffer: float = Field(default=0.01, ge=0)
    min_size: float = Field(default=0.0001, gt=0)
    size_decimals: int = Field(default=4, ge=0)
    price_decimals: int = Field(default=2, ge=0)
    model_config = ConfigDict(extra="forbid")


class SignalFilterConfig(BaseModel):
    """突破 + ATR 扩张 + 日内振幅过滤器。enabled=false 即“总是放行”。"""
    enabled: bool = True
    lookback: int = Field(default=200, ge=1)
    atr_period: int = Field(default=14, ge=1)
    atr_multiplier: float = Field(default=1.2, ge=0)
    adr_bars: int = Field(default=24, ge=1)
    min_adr_pct: float = Field(default=0.005, ge=0)
    breakout_buffer_pct: float = Field(default=0.003, ge=0)
    model_config = ConfigDict(extra="forbid")


class TradingConfig(BaseModel):
    """交易周期参数（回测与实盘共用）。"""
    initial_balance: float = Field(default=10000.0, ge=0)
    confidence_threshold: int = Field(default=40, ge=0, le=100)
    window_size: int = Field(default=720, ge=1)
    warmup: int = Field(default=720, ge=1)
    # None = 不设上限（实盘）
    max_oracle_calls: Optional[int] = Field(default=100, ge=0)
    min_seconds_between_calls: float = Field(default=10.0, ge=0)
    interval_secs: float = Field(default=3600.0, gt=0)
    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _warmup_covers_window(self) -> "TradingConfig":
        if self.warmup < self.window_size:
            raise ValueError(
                f"trading.warmup ({self.warmup}) must be >= trading.window_size ({self.window_size})"
            )
        return self


class ReviewConfig(BaseModel):
    """回测结束后的 AI 复盘。"""
    enabled: bool = False
    block_size: int = Field(default=10, ge=1)
    model_config = ConfigDict(extra="forbid")


class BacktestConfig(BaseModel):
    """回测配置。"""
    data_path: str = "data/XBTUSD_60m_data.csv"
    start: Optional[str] = None
    end: Optional[str] = None
    auto_download: bool = False
    download_symbol: str = "BTCUSDT"
    download_start: str = "2022-01-01"
    flatten_on_end: bool = False
    output_dir: str = "results/backtest"
    review: ReviewConfig = Field(default_factory=ReviewConfig)
    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="before")
    @classmethod
    def _stringify_dates(cls, data):
        # YAML 可能把未加引号的日期解析成 date/datetime
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for key in ("start", "end", "download_start"):
            val = data.get(key)
            if val is not None and not isinstance(val, str):
                data[key] = val.isoformat() if hasattr(val, "isoformat") else str(val)
        return data


class HistoryConfig(BaseModel):
    """已平仓记录持久化（SQLite）。"""
    enabled: bool = True
    path: str = "dataset/state/history.sqlite3"
    model_config = ConfigDict(extra="forbid")


class LoggingConfig(BaseModel):
    level: str = "INFO"
    dir: Optional[str] = "logs"
    metrics: bool = True
    model_config = ConfigDict(extra="forbid")


class MainConfig(BaseModel):
    """应用总配置。"""
    symbol: str = "PF_XBTUSD"
    ohlc_pair: str = "XBTUSD"
    timeframe: str = "1h"
    mode: Literal["backtest", "live"] = "backtest"

    trading: TradingConfig = Field(default_factory=TradingConfig)
    signal_filter: SignalFilterConfig = Field(default_factory=SignalFilterConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    oracle: OracleConfig = Field(default_factory=OracleConfig)
    exchange: ExchangeConfig = Field(default_factory=ExchangeConfig)
    backtest: BacktestConfig = Field(default_factory=BacktestConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = ConfigDict(extra="forbid", validate_assignment=True)
