"""启动期错误分类。

运行期可恢复的失败（oracle 不可用、风控拒绝、信号过滤不足）不走异常通道，
而是体现在周期结果里；只有配置/数据/凭证这类“开跑前”问题才会中止进程。
"""

from __future__ import annotations


class SetupError(Exception):
    """启动阶段不可恢复的错误（CLI 映射为非零退出码）。"""


class ConfigError(SetupError, ValueError):
    """配置文件缺失、格式错误或字段非法。"""


class MissingCredentialsError(SetupError):
    """实盘模式缺少交易所或 oracle 凭证。"""


class InsufficientDataError(SetupError):
    """历史 K 线不足以覆盖 warm-up / 指标窗口。"""


class DataFormatError(SetupError, ValueError):
    """K 线文件格式错误（缺列、非数值时间戳等）。"""


class ExecutionError(RuntimeError):
    """交易所请求失败（网络/HTTP/返回体异常）。由 broker 转换为 ExecutionReport。"""
