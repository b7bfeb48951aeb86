"""
Model client abstraction for advisory providers (OpenAI, Anthropic, mock).

Handles API calls, timeouts and JSON response parsing.
"""

import json
import logging
import time
from typing import Any, Dict, Optional
from abc import ABC, abstractmethod

log = logging.getLogger(__name__)


class ModelClient(ABC):
    """Abstract base class for advisory model clients."""

    model: str = "unknown"

    @abstractmethod
    def call(self, request: Dict[str, Any], timeout: float) -> Dict[str, Any]:
        """
        Call the model with a request payload.

        Args:
            request: Request dict built by ai.snapshot_builder.build_advisory_request
            timeout: Max time in seconds

        Returns:
            Decision dict (action, source, destination, amount, reason, confidence)

        Raises:
            TimeoutError: If call exceeds timeout
            Exception: On API or parsing errors
        """
        pass


def build_system_prompt(objective: str) -> str:
    """System prompt describing the single-decision contract."""
    goal = (
        "maximize the profit of the portfolio"
        if objective != "maximize_loss"
        else "lose the value of the portfolio as quickly as possible"
    )
    return f"""You are a trading agent. Your goal is to {goal}.
You receive the current portfolio, prices, agent state, risk limits and a market-insight digest.
Decide on exactly one trading action.

Response format (valid JSON):
{{
  "action": "buy" | "sell" | "hold",
  "source": "<instrument id to sell or spend>",
  "destination": "<instrument id to receive>",
  "amount": <number, units of source>,
  "reason": "<short explanation, max 100 characters>",
  "confidence": <number between 0.0 and 1.0>
}}

Rules:
- For "hold", set source, destination and amount to null
- amount must be a number, not a string
- Prefer liquid instruments that appear in the portfolio or the digest
"""


def format_request(request: Dict[str, Any]) -> str:
    """Format request dict as structured prompt."""
    portfolio = request.get("portfolio", {})
    symbols = request.get("symbols", {})
    parts = [
        "=== Portfolio ===",
        f"Total value: ${portfolio.get('total_value', 0):.2f}",
        f"Stable instrument: {request.get('stable_instrument', '')}",
    ]
    for h in portfolio.get("holdings", []):
        parts.append(
            f"  {h['symbol']} ({h['instrument']}): amount={h['amount']:.6f} "
            f"price=${h['price']:.4f} value=${h['value']:.2f}"
        )

    parts.extend(["", "=== Prices ==="])
    for instrument, price in request.get("prices", {}).items():
        parts.append(f"  {symbols.get(instrument, instrument)} ({instrument}): ${price:.4f}")

    parts.extend([
        "",
        "=== Agent State ===",
        json.dumps(request.get("agent_state", {}), sort_keys=True),
        "",
        "=== Risk Limits ===",
        json.dumps(request.get("risk_limits", {}), sort_keys=True),
    ])

    insights = request.get("market_insights")
    if insights:
        parts.extend(["", "=== Market Insights ==="])
        for item in insights.get("instruments", []):
            parts.append(
                f"  {item['symbol']}: price={item['price']} sma_short={item['sma_short']} "
                f"sma_long={item['sma_long']} change={item['change_pct']}% "
                f"volatility={item['volatility']} allocation={item['allocation']}"
            )

    parts.append("")
    parts.append("Provide your decision in JSON format.")
    return "\n".join(parts)


def extract_json(content: str) -> Dict[str, Any]:
    """Parse JSON, unwrapping a markdown code fence if present."""
    if "```json" in content:
        content = content.split("```json")[1].split("```")[0].strip()
    elif "```" in content:
        content = content.split("```")[1].split("```")[0].strip()
    return json.loads(content)


class OpenAIClient(ModelClient):
    """OpenAI chat-completions client."""

    def __init__(self, api_key: str, model: str = "gpt-4o", base_url: Optional[str] = None,
                 temperature: float = 0.7, max_tokens: int = 500):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url or "https://api.openai.com/v1"
        self.temperature = temperature
        self.max_tokens = max_tokens

        # Imported here so the dependency is only loaded when this provider is used
        from openai import OpenAI
        self.client = OpenAI(api_key=api_key, base_url=self.base_url, timeout=30.0)

    def call(self, request: Dict[str, Any], timeout: float) -> Dict[str, Any]:
        """Call OpenAI API with structured JSON response."""
        start = time.perf_counter()
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": build_system_prompt(request.get("objective", ""))},
                    {"role": "user", "content": format_request(request)},
                ],
                response_format={"type": "json_object"},
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                timeout=timeout,
            )

            elapsed = time.perf_counter() - start
            log.info(f"OpenAI call completed in {elapsed*1000:.1f}ms")

            content = response.choices[0].message.content
            if not content:
                raise ValueError("OpenAI returned empty content")
            return extract_json(content)

        except Exception as e:
            elapsed = time.perf_counter() - start
            log.error(f"OpenAI call failed after {elapsed*1000:.1f}ms: {e}")
            raise


class AnthropicClient(ModelClient):
    """Anthropic messages client."""

    def __init__(self, api_key: str, model: str = "claude-3-5-sonnet-20241022",
                 temperature: float = 0.7, max_tokens: int = 1024):
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

        from anthropic import Anthropic
        self.client = Anthropic(api_key=api_key, timeout=30.0)

    def call(self, request: Dict[str, Any], timeout: float) -> Dict[str, Any]:
        """Call Anthropic API and parse the JSON decision."""
        start = time.perf_counter()
        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                system=build_system_prompt(request.get("objective", "")),
                messages=[{"role": "user", "content": format_request(request)}],
                timeout=timeout,
            )

            elapsed = time.perf_counter() - start
            log.info(f"Anthropic call completed in {elapsed*1000:.1f}ms")
            return extract_json(response.content[0].text)

        except Exception as e:
            elapsed = time.perf_counter() - start
            log.error(f"Anthropic call failed after {elapsed*1000:.1f}ms: {e}")
            raise


class MockClient(ModelClient):
    """Mock client for testing and dry runs - holds unless given a fixed response."""

    model = "mock"

    def __init__(self, fixed_response: Optional[Dict[str, Any]] = None):
        self.fixed_response = fixed_response
        self.requests = []

    def call(self, request: Dict[str, Any], timeout: float) -> Dict[str, Any]:
        self.requests.append(request)
        if self.fixed_response is not None:
            return dict(self.fixed_response)
        return {
            "action": "hold",
            "source": None,
            "destination": None,
            "amount": None,
            "reason": "Mock hold",
            "confidence": 0.5,
        }


def create_model_client(
    provider: str,
    api_key: Optional[str] = None,
    model: Optional[str] = None,
    **kwargs
) -> ModelClient:
    """
    Factory function to create appropriate model client.

    Args:
        provider: "openai", "anthropic", or "mock"
        api_key: API key for the provider
        model: Model name (provider-specific)
        **kwargs: Additional provider-specific args

    Raises:
        ValueError: If provider is unknown or the key is missing
    """
    provider = provider.lower()

    if provider == "openai":
        if not api_key:
            raise ValueError("OpenAI requires api_key")
        return OpenAIClient(api_key=api_key, model=model or "gpt-4o", **kwargs)

    elif provider == "anthropic":
        if not api_key:
            raise ValueError("Anthropic requires api_key")
        return AnthropicClient(api_key=api_key, model=model or "claude-3-5-sonnet-20241022", **kwargs)

    elif provider == "mock":
        return MockClient(fixed_response=kwargs.get("fixed_response"))

    else:
        raise ValueError(f"Unknown provider: {provider}. Use 'openai', 'anthropic', or 'mock'")
