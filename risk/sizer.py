"""风险仓位计算：oracle 建议 + 账户余额 -> 下单参数（或拒绝）。"""

from __future__ import annotations

import math

from shared.config.schema import RiskConfig
from shared.models.models import OrderParameters, Recommendation, Signal
from shared.utils.logging import setup_logger
from shared.utils.precision import snap_to_decimals


class RiskSizer:
    """按固定风险比例定仓。

    Parameters
    ----------
    risk_cfg:
        仓位参数（risk_fraction/leverage/margin_buffer/min_size/精度）。
    suppress_warnings:
        是否抑制拒单 warning（长回测常用）。

    Notes
    -----
    size = balance × risk_fraction / stop_loss_distance；
    margin = size × last_price / leverage × (1 + margin_buffer) 必须 <= balance。
    最小单位与保证金都按取整后的 size 校验，保证下出去的就是校验过的数量。
    """

    def __init__(self, risk_cfg: RiskConfig | None = None, suppress_warnings: bool = False):
        self.cfg = risk_cfg or RiskConfig()
        self.logger = setup_logger("risk")
        self.suppress_warnings = suppress_warnings

    def _reject(self, msg: str, *args) -> None:
        if not self.suppress_warnings:
            self.logger.warning("[RISK] " + msg, *args)
        return None

    def size(self, balance: float, last_price: float, rec: Recommendation) -> OrderParameters | None:
        """计算下单参数。

        Parameters
        ----------
        balance:
            可用余额（USD）。
        last_price:
            最新成交价（当前 K 线收盘价）。
        rec:
            已校验的 oracle 建议。

        Returns
        -------
        OrderParameters | None
            拒绝时返回 None（非致命，记一条 warning）。
        """
        if rec.signal is Signal.HOLD:
            return self._reject("HOLD signal, nothing to size.")
        if not balance or not math.isfinite(balance) or balance <= 0:
            return self._reject("Invalid account balance: %s", balance)
        if not last_price or last_price <= 0:
            return self._reject("Invalid last price: %s", last_price)

        sl_dist = rec.stop_loss_distance_usd
        tp_dist = rec.take_profit_distance_usd
        if not sl_dist or sl_dist <= 0:
            return self._reject("Invalid stop-loss distance (%s). Aborting trade.", sl_dist)
        if not tp_dist or tp_dist <= 0:
            return self._reject("Invalid take-profit distance (%s). Aborting trade.", tp_dist)

        capital_at_risk = balance * self.cfg.risk_fraction
        size = snap_to_decimals(capital_at_risk / sl_dist, self.cfg.size_decimals)
        if size < self.cfg.min_size:
            return self._reject("Size %s below minimum tradable unit %s.", size, self.cfg.min_size)

        notional = size * last_price
        margin_required = notional / self.cfg.leverage * (1 + self.cfg.margin_buffer)
        if margin_required > balance:
            return self._reject(
                "Insufficient funds. Required: $%.2f, Available: $%.2f", margin_required, balance
            )

        direction = rec.signal.direction
        params = OrderParameters(
            size=size,
            stop_loss_price=snap_to_decimals(last_price - direction * sl_dist, self.cfg.price_decimals),
            take_profit_price=snap_to_decimals(last_price + direction * tp_dist, self.cfg.price_decimals),
        )
        self.logger.info(
            "[RISK] Final trade params: size=%s stop=%s target=%s margin=$%.2f",
            params.size,
            params.stop_loss_price,
            params.take_profit_price,
            margin_required,
        )
        return params
