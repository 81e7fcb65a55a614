"""精度工具：下单数量/价格按交易所精度取整，避免 float 噪声。"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal


def snap_to_decimals(value: float, decimals: int) -> float:
    """四舍五入（half-up）到指定小数位。

    Python 内置 round 是银行家舍入，这里统一用 Decimal 做 half-up，
    与交易所展示口径一致。
    """
    d = int(decimals)
    if d < 0:
        return float(value)
    q = Decimal(1).scaleb(-d)
    return float(Decimal(str(float(value))).quantize(q, rounding=ROUND_HALF_UP))
