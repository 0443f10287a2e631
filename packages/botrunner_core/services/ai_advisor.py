# packages/botrunner_core/services/ai_advisor.py
"""
AI 交易建议

LLM with structured output (AIAdvice). Any failure (provider missing, timeout,
open breaker, malformed output) yields None and the selector falls back to
the baseline signal.
"""
import json
from typing import Any, Dict, Optional

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from botrunner_core.config import TradingSettings
from botrunner_core.data.models.bot import Bot
from botrunner_core.services.resilience import CircuitBreakerRegistry, ResilientCaller
from botrunner_core.trading.state import AIAdvice, MarketTick, Signal
from botrunner_core.utils import get_logger

logger = get_logger("ai_advisor")

try:
    from langchain_openai import ChatOpenAI
    from langchain_anthropic import ChatAnthropic
except ImportError as e:
    logger.warning(f"LangChain导入失败: {e}")
    ChatOpenAI = None
    ChatAnthropic = None


SYSTEM_PROMPT = """You are a cautious crypto trading assistant for a single-symbol bot.
Given a market snapshot, the bot's risk limits and an optional baseline signal,
answer with action (BUY, SELL or HOLD), confidence (0-100), position_size
(% of capital, at most 10), stop_loss (%), take_profit (%), reasoning and
time_horizon. Prefer HOLD when the evidence is weak."""


def create_chat_model(settings: TradingSettings) -> Optional[BaseChatModel]:
    """根据配置创建 LLM；AI 关闭时返回 None"""
    if not settings.AI_ENABLED:
        return None

    provider = settings.AI_PROVIDER.lower()
    kwargs = {"model": settings.AI_MODEL, "temperature": 0.2}
    if settings.AI_API_KEY:
        kwargs["api_key"] = settings.AI_API_KEY

    logger.info(f"Creating LLM: {provider}/{settings.AI_MODEL}")

    if provider == "anthropic":
        if not ChatAnthropic:
            logger.error("🙅 Anthropic 未安装")
            raise ValueError("Anthropic 未安装")
        return ChatAnthropic(**kwargs)

    # openai and openai-compatible endpoints
    if not ChatOpenAI:
        logger.error("🙅 OpenAI 未安装")
        raise ValueError("OpenAI 未安装")
    if settings.AI_BASE_URL:
        kwargs["base_url"] = settings.AI_BASE_URL
    return ChatOpenAI(**kwargs)


class AIAdvisor:
    BREAKER_KEY = "ai:advisor"

    def __init__(self, llm: BaseChatModel, caller: ResilientCaller):
        self.llm_with_structure = llm.with_structured_output(AIAdvice)
        self.caller = caller

    @classmethod
    def from_settings(
        cls, settings: TradingSettings, breakers: CircuitBreakerRegistry
    ) -> Optional["AIAdvisor"]:
        llm = create_chat_model(settings)
        if llm is None:
            return None
        caller = ResilientCaller(
            breakers,
            timeout=settings.AI_TIMEOUT_SECONDS,
            max_retries=settings.AI_MAX_RETRIES,
            base_delay=settings.AI_BACKOFF_SECONDS,
        )
        return cls(llm, caller)

    def _format_prompt(
        self,
        tick: MarketTick,
        bot: Bot,
        risk_tolerance: Dict[str, Any],
        signal: Optional[Signal],
    ) -> str:
        context = {
            "symbol": tick.symbol,
            "price": tick.price,
            "bid": tick.bid,
            "ask": tick.ask,
            "change_24h_pct": tick.change_24h,
            "volume": tick.volume,
            "strategy": bot.strategy_id,
            "capital": bot.current_capital,
            "daily_pnl": bot.daily_pnl,
            "risk_tolerance": risk_tolerance,
            "baseline_signal": signal.model_dump() if signal else None,
        }
        return f"请分析以下市场数据：\n\n{json.dumps(context, indent=2, ensure_ascii=False)}"

    async def propose_decision(
        self,
        market_state: MarketTick,
        portfolio: Bot,
        risk_tolerance: Optional[Dict[str, Any]] = None,
        signal: Optional[Signal] = None,
    ) -> Optional[AIAdvice]:
        """
        Args:
            market_state: current snapshot of the bot symbol
            portfolio: the bot (capital, daily PnL, strategy)
            risk_tolerance: limits shown to the model, defaults to the bot risk profile
            signal: baseline signal, if any, as extra context
        """
        tick = market_state
        if risk_tolerance is None:
            risk_tolerance = {
                "max_position_size": portfolio.max_position_size,
                "stop_loss_pct": portfolio.stop_loss_pct,
                "take_profit_pct": portfolio.take_profit_pct,
                "max_daily_loss": portfolio.max_daily_loss,
            }
        message = [
            SystemMessage(content=SYSTEM_PROMPT),
            HumanMessage(content=self._format_prompt(tick, portfolio, risk_tolerance, signal)),
        ]
        try:
            advice = await self.caller.call(self.BREAKER_KEY, self.llm_with_structure.ainvoke, message)
        except Exception as e:
            logger.error(f"❌ AI advice failed for {tick.symbol}: {e!r}")
            return None

        if not isinstance(advice, AIAdvice):
            logger.warning(f"⚠️ AI returned unexpected payload for {tick.symbol}: {type(advice).__name__}")
            return None

        logger.info(f"✅ AI advice for {tick.symbol}: {advice.action} ({advice.confidence:.0f})")
        return advice
