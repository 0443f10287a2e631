# packages/botrunner_core/services/fee_calculator.py
"""
统一的手续费计算器
Paper fills use a flat rate; live orders carry bps based estimates of fee
and slippage until the exchange reports the real numbers.
"""
from botrunner_core.utils import get_logger

logger = get_logger("fee_calculator")


class FeeCalculator:
    """手续费 / 滑点估算"""

    @staticmethod
    def calculate_fee(notional_value: float, fee_rate: float) -> float:
        """
        计算手续费

        Args:
            notional_value: 名义价值（数量 × 价格）
            fee_rate: 费率（小数形式，如 0.001）
        """
        fee = notional_value * fee_rate
        logger.debug(f"💰 Fee calc: ${notional_value:.2f} × {fee_rate*100:.4f}% = ${fee:.4f}")
        return fee

    @staticmethod
    def from_bps(notional_value: float, bps: float) -> float:
        """1 bps = 0.01%"""
        return notional_value * bps / 10000

    @staticmethod
    def convert_usd_to_coin_amount(usd_amount: float, price: float) -> float:
        """
        将USD金额转换为币数量
        """
        if price <= 0:
            raise ValueError(f"Invalid price: {price}")
        return usd_amount / price
