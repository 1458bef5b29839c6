"""Indicator computation from a single market snapshot.

Every formula is a pure function of the snapshot: the 24h percentage change
gives a reference price ``p0`` (the price one day ago), and the moving-average
style indicators are built from the step between ``p0`` and the current price.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from engine.errors import DegenerateInputError
from engine.models import INDICATOR_NAMES, Indicator, MarketSnapshot, Signal

logger = logging.getLogger(__name__)

NEUTRAL_CONFIDENCE = 0.5
TRIGGERED_CONFIDENCE = 0.6

RSI_OVERBOUGHT = 70.0
RSI_OVERSOLD = 30.0
STOCH_OVERBOUGHT = 80.0
STOCH_OVERSOLD = 20.0

EMA_MAX_DEVIATION = 0.05
TREND_BAND = 0.002
BB_STD_FACTOR = 0.02
ATR_MIN_RATIO = 0.01
ATR_MAX_RATIO = 0.03
ATR_HIGH_BAND = 0.025
ATR_LOW_BAND = 0.012
FIB_RATIO = 0.618
FIB_TOLERANCE = 0.05
LOW_TURNOVER = 0.01

DESCRIPTIONS = {
    "EMA (14)": (
        "Exponential Moving Average gives more weight to recent prices, making it more responsive to new information.",
        "https://www.investopedia.com/terms/e/ema.asp",
    ),
    "MACD": (
        "Moving Average Convergence Divergence shows the relationship between two moving averages of an asset's price.",
        "https://www.investopedia.com/terms/m/macd.asp",
    ),
    "RSI": (
        "Relative Strength Index measures the speed and magnitude of recent price changes to evaluate overbought or oversold conditions.",
        "https://www.investopedia.com/terms/r/rsi.asp",
    ),
    "Stoch RSI": (
        "Stochastic RSI is an oscillator that measures the level of RSI relative to its high-low range over a specific period.",
        "https://www.investopedia.com/terms/s/stochrsi.asp",
    ),
    "Bollinger Bands": (
        "Bollinger Bands measure volatility by plotting standard deviations around a simple moving average.",
        "https://www.investopedia.com/terms/b/bollingerbands.asp",
    ),
    "ATR": (
        "Average True Range measures market volatility by decomposing the entire range of an asset price for a period.",
        "https://www.investopedia.com/terms/a/atr.asp",
    ),
    "Fibonacci": (
        "Fibonacci Retracement Levels identify potential support/resistance levels based on Fibonacci ratios.",
        "https://www.investopedia.com/terms/f/fibonacciretracement.asp",
    ),
    "VPVR": (
        "Volume Profile Visible Range shows trading activity at specific price levels, helping identify support and resistance.",
        "https://www.investopedia.com/terms/v/volume-profile.asp",
    ),
}


@dataclass(frozen=True)
class _Inputs:
    price: float
    reference: float
    change_pct: float
    volume: Optional[float]
    turnover: float


class IndicatorEngine:
    """Computes the fixed set of eight indicators for a snapshot.

    ``compute`` never raises. Degenerate prices produce neutral entries with
    zero confidence so callers always receive the full set in a fixed order.
    """

    def __init__(self, strict_rsi: bool = False) -> None:
        self.strict_rsi = strict_rsi

    def compute(self, snapshot: MarketSnapshot) -> List[Indicator]:
        try:
            inputs = _prepare(snapshot)
        except DegenerateInputError as exc:
            logger.warning("Degenerate snapshot, returning neutral indicators: %s", exc)
            return [_indicator(name, 0.0, Signal.NEUTRAL, 0.0) for name in INDICATOR_NAMES]

        price = inputs.price
        ema = _ema(inputs, 14)
        macd = _ema(inputs, 12) - _ema(inputs, 26)
        rsi = _rsi(inputs.change_pct, strict=self.strict_rsi)
        stoch = _stoch_rsi(inputs.change_pct)
        bb_middle, bb_upper, bb_lower = _bollinger(inputs)
        atr = _atr(inputs)
        fib = _fibonacci(inputs)
        poc = _volume_poc(inputs)

        results = [
            _indicator("EMA (14)", ema, *_trend_signal(price, ema)),
            _indicator("MACD", macd, *_macd_signal(macd, price)),
            _indicator("RSI", rsi, *_oscillator_signal(rsi, RSI_OVERBOUGHT, RSI_OVERSOLD, 10.0)),
            _indicator("Stoch RSI", stoch, *_oscillator_signal(stoch, STOCH_OVERBOUGHT, STOCH_OVERSOLD, 5.0)),
            _indicator("Bollinger Bands", bb_upper, *_band_signal(price, bb_upper, bb_lower, bb_upper - bb_middle)),
            _indicator("ATR", atr, *_atr_signal(atr / price)),
            _indicator("Fibonacci", fib, *_fibonacci_signal(price, fib)),
            _volume_indicator(inputs, poc),
        ]
        return results


def _prepare(snapshot: MarketSnapshot) -> _Inputs:
    price = snapshot.price
    if price is None or not math.isfinite(price) or price <= 0:
        raise DegenerateInputError(f"invalid price {price!r}")

    change_pct = snapshot.priceChange24h
    if change_pct is None or not math.isfinite(change_pct) or change_pct <= -100:
        logger.warning("Ignoring unusable 24h change %r", change_pct)
        change_pct = 0.0

    volume = snapshot.volume24h
    if volume is not None and (not math.isfinite(volume) or volume <= 0):
        volume = None

    turnover = 0.0
    market_cap = snapshot.marketCap
    if volume and market_cap and math.isfinite(market_cap) and market_cap > 0:
        turnover = volume / market_cap

    return _Inputs(
        price=float(price),
        reference=float(price) / (1 + change_pct / 100.0),
        change_pct=float(change_pct),
        volume=volume,
        turnover=turnover,
    )


def _indicator(name: str, value: float, signal: Signal, confidence: float) -> Indicator:
    description, url = DESCRIPTIONS[name]
    return Indicator(
        name=name,
        value=round(float(value), 6),
        signal=signal,
        confidence=round(float(np.clip(confidence, 0.0, 1.0)), 4),
        description=description,
        learnMoreUrl=url,
    )


def _triggered(excess: float, scale: float) -> float:
    return min(1.0, TRIGGERED_CONFIDENCE + max(excess, 0.0) / scale)


def _ema(inputs: _Inputs, period: int) -> float:
    alpha = 2.0 / (period + 1)
    value = inputs.reference + alpha * (inputs.price - inputs.reference)
    bound = inputs.price * EMA_MAX_DEVIATION
    return float(np.clip(value, inputs.price - bound, inputs.price + bound))


def _rsi(change_pct: float, strict: bool = False) -> float:
    value = 50.0 + 50.0 * np.tanh(change_pct / 10.0)
    low, high = (0.0, 100.0) if strict else (20.0, 80.0)
    return float(np.clip(value, low, high))


def _stoch_rsi(change_pct: float) -> float:
    value = 50.0 + 50.0 * np.tanh(change_pct / 5.0)
    return float(np.clip(value, 15.0, 85.0))


def _bollinger(inputs: _Inputs) -> Tuple[float, float, float]:
    middle = (inputs.price + inputs.reference) / 2.0
    width = inputs.price * BB_STD_FACTOR
    return middle, middle + width, middle - width


def _atr(inputs: _Inputs) -> float:
    ratio = ATR_MIN_RATIO + 0.004 * abs(inputs.change_pct) + 0.05 * inputs.turnover
    return inputs.price * float(np.clip(ratio, ATR_MIN_RATIO, ATR_MAX_RATIO))


def _fibonacci(inputs: _Inputs) -> float:
    return inputs.reference + FIB_RATIO * (inputs.price - inputs.reference)


def _volume_poc(inputs: _Inputs) -> float:
    if inputs.change_pct > 0:
        buy_share = 0.6
    elif inputs.change_pct < 0:
        buy_share = 0.4
    else:
        buy_share = 0.5
    return buy_share * inputs.price + (1 - buy_share) * inputs.reference


def _trend_signal(price: float, average: float) -> Tuple[Signal, float]:
    deviation = (price - average) / average
    if deviation > TREND_BAND:
        return Signal.BUY, _triggered(deviation - TREND_BAND, 0.02)
    if deviation < -TREND_BAND:
        return Signal.SELL, _triggered(-deviation - TREND_BAND, 0.02)
    return Signal.NEUTRAL, NEUTRAL_CONFIDENCE


def _macd_signal(macd: float, price: float) -> Tuple[Signal, float]:
    relative = macd / price
    if relative > 0:
        return Signal.BUY, _triggered(relative, 0.005)
    if relative < 0:
        return Signal.SELL, _triggered(-relative, 0.005)
    return Signal.NEUTRAL, NEUTRAL_CONFIDENCE


def _oscillator_signal(value: float, overbought: float, oversold: float, scale: float) -> Tuple[Signal, float]:
    if value > overbought:
        return Signal.SELL, _triggered(value - overbought, scale)
    if value < oversold:
        return Signal.BUY, _triggered(oversold - value, scale)
    return Signal.NEUTRAL, NEUTRAL_CONFIDENCE


def _band_signal(price: float, upper: float, lower: float, width: float) -> Tuple[Signal, float]:
    if price > upper:
        return Signal.SELL, _triggered(price - upper, width)
    if price < lower:
        return Signal.BUY, _triggered(lower - price, width)
    return Signal.NEUTRAL, NEUTRAL_CONFIDENCE


def _atr_signal(ratio: float) -> Tuple[Signal, float]:
    if ratio > ATR_HIGH_BAND:
        return Signal.SELL, _triggered(ratio - ATR_HIGH_BAND, 0.005)
    if ratio < ATR_LOW_BAND:
        return Signal.BUY, _triggered(ATR_LOW_BAND - ratio, 0.002)
    return Signal.NEUTRAL, NEUTRAL_CONFIDENCE


def _fibonacci_signal(price: float, level: float) -> Tuple[Signal, float]:
    upper = level * (1 + FIB_TOLERANCE)
    lower = level * (1 - FIB_TOLERANCE)
    if price > upper:
        return Signal.SELL, _triggered((price - upper) / level, FIB_TOLERANCE)
    if price < lower:
        return Signal.BUY, _triggered((lower - price) / level, FIB_TOLERANCE)
    return Signal.NEUTRAL, NEUTRAL_CONFIDENCE


def _volume_indicator(inputs: _Inputs, poc: float) -> Indicator:
    if not inputs.volume:
        return _indicator("VPVR", 0.0, Signal.NEUTRAL, 0.0)
    signal, confidence = _trend_signal(inputs.price, poc)
    # thin books make the profile less meaningful
    if inputs.turnover and inputs.turnover < LOW_TURNOVER:
        confidence *= max(inputs.turnover / LOW_TURNOVER, 0.5)
    return _indicator("VPVR", poc, signal, confidence)
