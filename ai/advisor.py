"""
Advisory Service - language-model decision source.

Single entry point for advisory-delegated mode. Handles the model call,
response parsing and validation, and fallback logic. When advisory mode is
on, the orchestrator returns whatever this service returns verbatim.
"""

import logging
import time
from typing import Any, Dict, Optional

from .schemas import AdvisoryContext, AdvisoryOutcome
from .model_client import ModelClient
from .snapshot_builder import build_advisory_request
from core.models import TradingInstruction, VALID_ACTIONS

log = logging.getLogger(__name__)

MAX_REASON_CHARS = 200


class AdvisoryService:
    """
    Advisory decision service.

    Core principles:
    - One decision per call, returned as a TradingInstruction (or None)
    - Malformed model output is rejected, never repaired into a trade
    - Falls back to None on any error (no decision this cycle)
    - The risk gate still decides whether the decision executes
    """

    def __init__(
        self,
        model_client: ModelClient,
        timeout_s: float = 10.0,
        fallback_on_error: bool = True,
    ):
        """
        Initialize advisory service.

        Args:
            model_client: Model client (OpenAI, Anthropic, mock)
            timeout_s: Hard timeout for model calls
            fallback_on_error: If True, errors -> None instead of raising
        """
        self.model_client = model_client
        self.timeout_s = timeout_s
        self.fallback_on_error = fallback_on_error
        self.last_outcome: Optional[AdvisoryOutcome] = None

    def get_decision(self, context: AdvisoryContext) -> Optional[TradingInstruction]:
        """
        Ask the model for a single trading decision.

        Args:
            context: Snapshot, agent state, risk limits, objective and insights

        Returns:
            TradingInstruction (possibly hold) or None when the model gave
            nothing usable
        """
        start = time.perf_counter()
        try:
            request = build_advisory_request(context)
            log.info(f"Requesting advisory decision (objective={context.objective})")
            response = self.model_client.call(request, timeout=self.timeout_s)
            instruction = self._parse_and_validate(response)

            latency = (time.perf_counter() - start) * 1000
            self.last_outcome = AdvisoryOutcome(
                decision=instruction.to_dict() if instruction else None,
                latency_ms=latency,
                model_used=getattr(self.model_client, "model", "unknown"),
                error=None if instruction else "invalid_response",
            )
            log.info(
                f"Advisory decision in {latency:.1f}ms: "
                f"{instruction.action if instruction else 'none'}"
            )
            return instruction

        except Exception as e:
            elapsed = (time.perf_counter() - start) * 1000
            log.error(f"Advisory call error after {elapsed:.1f}ms: {e}", exc_info=True)
            self.last_outcome = AdvisoryOutcome(
                decision=None,
                latency_ms=elapsed,
                model_used=getattr(self.model_client, "model", "unknown"),
                error=f"error: {str(e)[:100]}",
            )
            if self.fallback_on_error:
                log.warning("Advisory fallback: no decision this cycle")
                return None
            raise

    def _parse_and_validate(self, resp: Dict[str, Any]) -> Optional[TradingInstruction]:
        """
        Validate a raw model decision.

        Accepts both source/destination and fromToken/toToken key styles.
        """
        if not isinstance(resp, dict):
            log.error(f"Advisory response is not an object: {type(resp).__name__}")
            return None

        action = resp.get("action")
        if action not in VALID_ACTIONS:
            log.error(f"Advisory returned invalid action '{action}'")
            return None

        reason = resp.get("reason")
        confidence = resp.get("confidence")
        if not isinstance(reason, str):
            log.error("Advisory decision missing reason")
            return None
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)) or not 0.0 <= confidence <= 1.0:
            log.error(f"Advisory returned invalid confidence {confidence!r}")
            return None

        source = resp.get("source", resp.get("fromToken"))
        destination = resp.get("destination", resp.get("toToken"))
        amount = resp.get("amount")

        if action == "hold":
            return TradingInstruction(
                action="hold",
                source=None,
                destination=None,
                amount=0.0,
                reason=reason[:MAX_REASON_CHARS],
                confidence=float(confidence),
                strategy="advisory",
            )

        if not source or not destination:
            log.error("Advisory trade decision missing source or destination")
            return None
        if isinstance(amount, bool) or not isinstance(amount, (int, float)) or amount <= 0:
            log.error(f"Advisory returned invalid amount {amount!r}")
            return None

        return TradingInstruction(
            action=action,
            source=str(source),
            destination=str(destination),
            amount=float(amount),
            reason=reason[:MAX_REASON_CHARS],
            confidence=float(confidence),
            strategy="advisory",
        )
