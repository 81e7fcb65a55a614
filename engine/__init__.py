"""执行引擎层（engine）。

- `cycle.CycleOrchestrator`：单周期编排 + 回测/实盘两种驱动；
- `BacktestEngine` / `TradingEngine`：装配组件，对外 `run() -> EngineResult`；
命令行入口由仓库根目录 `main.py` 统一承载。
"""
