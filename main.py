"""oraclecycle 统一命令行入口。

子命令：

- `run`：按配置里的 `mode` 运行（backtest：历史回放；live：定时实盘周期）。
- `backtest`：强制以回测模式运行。
- `live`：强制以实盘模式运行（`--max-cycles` 限制周期数，便于冒烟测试）。
- `reconcile`：把成交记录 FIFO 配对成往返交易并打印（审计用）。
- `test`：运行 pytest（默认跳过 live 测试）。

退出码：正常结束 0；交易所请求失败 1；启动期不可恢复错误（配置/凭证/数据不足）2。
"""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from analysis.reconcile import FillReconciler
from analysis.reporting import render_closed_trades, render_summary
from broker.kraken_client import KrakenFuturesClient, parse_fill_time
from engine.backtest_engine import BacktestEngine
from engine.trading_engine import TradingEngine
from shared.config.config_loader import load_config
from shared.errors import ExecutionError, SetupError
from shared.models.models import Fill
from shared.utils.logging import setup_logger

EXIT_OK = 0
EXIT_SETUP_ERROR = 2
EXIT_EXCHANGE_ERROR = 1


@dataclass
class CliArgs:
    """命令行参数结构。"""
    config: str
    task: str
    max_cycles: int | None = None
    fills: str | None = None
    limit: int = 10
    include_live_tests: bool = False


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="oraclecycle", description="oracle 驱动的单品种交易周期")

    def _add_config_arg(p: argparse.ArgumentParser, *, default: Any) -> None:
        p.add_argument(
            "--config",
            default=default,
            help="配置文件路径 (默认: config/config.yml)",
        )

    # 允许 `main.py --config ... run`（全局）与 `main.py run --config ...`（子命令）
    _add_config_arg(parser, default="config/config.yml")

    sub = parser.add_subparsers(dest="task")

    p_run = sub.add_parser("run", help="按配置 mode 运行")
    _add_config_arg(p_run, default=argparse.SUPPRESS)
    p_run.add_argument("--max-cycles", type=int, default=None, help="实盘模式下跑多少个周期后退出")

    p_backtest = sub.add_parser("backtest", help="历史回放")
    _add_config_arg(p_backtest, default=argparse.SUPPRESS)

    p_live = sub.add_parser("live", help="定时实盘周期")
    _add_config_arg(p_live, default=argparse.SUPPRESS)
    p_live.add_argument("--max-cycles", type=int, default=None, help="跑多少个周期后退出")

    p_rec = sub.add_parser("reconcile", help="FIFO 成交配对审计")
    _add_config_arg(p_rec, default=argparse.SUPPRESS)
    p_rec.add_argument("--fills", type=str, default=None, help="成交 JSON 文件；缺省从交易所拉取")
    p_rec.add_argument("--limit", type=int, default=10, help="打印最近 N 笔往返交易")

    p_test = sub.add_parser("test", help="运行 pytest（默认跳过 live）")
    _add_config_arg(p_test, default=argparse.SUPPRESS)
    p_test.add_argument(
        "--include-live",
        action="store_true",
        help="包含 @pytest.mark.live 测试（可能联网）",
    )
    return parser


def parse_args(argv: list[str] | None = None) -> CliArgs:
    parser = build_parser()
    ns = parser.parse_args(argv)
    return CliArgs(
        config=str(getattr(ns, "config", "config/config.yml")),
        task=ns.task or "run",
        max_cycles=getattr(ns, "max_cycles", None),
        fills=getattr(ns, "fills", None),
        limit=int(getattr(ns, "limit", 10)),
        include_live_tests=bool(getattr(ns, "include_live", False)),
    )


def load_fills_file(path: str | Path) -> list[Fill]:
    """读取成交 JSON：列表，或 `{"fills": [...]}`；字段 side/price/size/fillTime(或 fill_time)。"""
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    items = raw.get("fills", []) if isinstance(raw, dict) else raw
    return [
        Fill(
            side=str(item["side"]),
            price=float(item["price"]),
            size=float(item["size"]),
            fill_time=parse_fill_time(item.get("fillTime", item.get("fill_time"))),
        )
        for item in items
    ]


def run_backtest(cfg_path: str) -> dict[str, Any]:
    result = BacktestEngine(cfg_path=cfg_path).run()
    render_summary(result.summary)
    return result.summary


def run_live(cfg_path: str, max_cycles: int | None = None) -> dict[str, Any]:
    return TradingEngine(cfg_path=cfg_path, max_cycles=max_cycles).run().summary


def run_reconcile(cfg_path: str, fills_path: str | None, limit: int) -> dict[str, Any]:
    if fills_path:
        fills = load_fills_file(fills_path)
    else:
        cfg = load_config(cfg_path)
        client = KrakenFuturesClient(
            cfg.exchange.api_key, cfg.exchange.api_secret, base_url=cfg.exchange.base_url
        )
        fills = client.fills_for(cfg.symbol)
    result = FillReconciler().reconcile(fills)
    render_closed_trades(result.recent(limit), title=f"Closed Trades (last {limit})")
    render_closed_trades(result.open_legs, title="Open Legs")
    return {
        "fills": len(fills),
        "closed_trades": len(result.closed_trades),
        "realized_pnl": sum(t.pnl for t in result.closed_trades),
        "residual_size": result.residual_size,
    }


def dispatch(args: CliArgs) -> Any:
    """执行子命令并返回其结果（通常为 summary dict）。"""
    if args.task == "run":
        mode = load_config(args.config).mode
        if mode == "live":
            return run_live(args.config, args.max_cycles)
        return run_backtest(args.config)

    if args.task == "backtest":
        return run_backtest(args.config)

    if args.task == "live":
        return run_live(args.config, args.max_cycles)

    if args.task == "reconcile":
        return run_reconcile(args.config, args.fills, args.limit)

    if args.task == "test":
        import pytest

        pytest_args = ["-q"]
        if not args.include_live_tests:
            pytest_args += ["-m", "not live"]
        return pytest.main(pytest_args)

    raise ValueError(f"Unknown task: {args.task}")


def main(argv: list[str] | None = None) -> int:
    """程序主入口，返回进程退出码。"""
    args = parse_args(argv)
    try:
        result = dispatch(args)
    except SetupError as exc:
        setup_logger("main").error("Setup failed: %s", exc)
        return EXIT_SETUP_ERROR
    except ExecutionError as exc:
        setup_logger("main").error("Exchange request failed: %s", exc)
        return EXIT_EXCHANGE_ERROR
    if args.task == "test":
        return int(result)
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
