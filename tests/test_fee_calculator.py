"""
测试手续费计算器
"""
import pytest

from botrunner_core.services.fee_calculator import FeeCalculator


def test_calculate_fee():
    """$10,000 名义价值，0.1% 费率"""
    assert FeeCalculator.calculate_fee(10000, 0.001) == pytest.approx(10.0)


def test_from_bps():
    assert FeeCalculator.from_bps(500, 10) == pytest.approx(0.5)
    assert FeeCalculator.from_bps(500, 8) == pytest.approx(0.4)


def test_convert_usd_to_coin_amount():
    assert FeeCalculator.convert_usd_to_coin_amount(1000, 50000) == pytest.approx(0.02)


def test_convert_invalid_price():
    with pytest.raises(ValueError):
        FeeCalculator.convert_usd_to_coin_amount(1000, 0)
