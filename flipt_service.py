import logging
from typing import Callable, Optional

import flipt
from flipt.evaluation import EvaluationRequest
from opentelemetry import trace

from config import settings

logger = logging.getLogger(__name__)

PRICE_DISPLAY_STRATEGY_FLAG = "price-display-strategy"
LOYALTY_PROGRAM_FLAG = "loyalty-program"

PRICE_DISPLAY_STRATEGIES = ("per-night", "total", "with-fees")
DEFAULT_PRICE_DISPLAY_STRATEGY = "per-night"


class FliptService:
    """Feature flags for room search presentation. Booking arithmetic never reads flags."""

    def __init__(self):
        self.client = None
        self.tracer = trace.get_tracer(__name__)
        if settings.flipt_enabled:
            self._initialize_client()
        else:
            logger.info("Flipt disabled, feature flags will use defaults")

    def _initialize_client(self):
        try:
            self.client = flipt.FliptClient(url=settings.flipt_url)
            logger.info(f"Flipt client initialized: {settings.flipt_url}")
        except Exception as e:
            logger.error(f"Failed to initialize Flipt client: {e}")
            self.client = None

    def _evaluate(self, flag_key: str, flag_type: str, entity_id: str, context: Optional[dict], default, read: Callable):
        """
        Evaluate one flag with ``read(request)`` and return its value.

        Any failure, or a missing client, yields ``default`` so a search never
        fails because the flag server is down.
        """
        with self.tracer.start_as_current_span("feature_flag.evaluation") as span:
            span.set_attribute("feature_flag.key", flag_key)
            span.set_attribute("feature_flag.type", flag_type)

            if not self.client:
                return default

            request = EvaluationRequest(
                namespace_key=settings.flipt_namespace,
                flag_key=flag_key,
                entity_id=entity_id,
                context=context or {},
            )
            try:
                value = read(request)
            except Exception as e:
                logger.warning(f"Flag '{flag_key}' unavailable, using default {default!r}: {e}")
                span.set_attribute("error", True)
                span.set_attribute("error.message", str(e))
                return default

            span.set_attribute("feature_flag.result.variant", str(value).lower())
            logger.debug(f"Flag '{flag_key}' for {entity_id} evaluated to {value!r}")
            return value

    def get_price_display_strategy(self, entity_id: str, context: dict = None) -> str:
        """How search results present prices: per night, with fees, or stay total."""
        strategy = self._evaluate(
            PRICE_DISPLAY_STRATEGY_FLAG,
            "variant",
            entity_id,
            context,
            DEFAULT_PRICE_DISPLAY_STRATEGY,
            lambda request: self.client.evaluation.variant(request).variant_key,
        )
        if strategy not in PRICE_DISPLAY_STRATEGIES:
            logger.debug(f"Ignoring unknown price display strategy {strategy!r}")
            return DEFAULT_PRICE_DISPLAY_STRATEGY
        return strategy

    def is_loyalty_program_enabled(self, entity_id: str, context: dict = None) -> bool:
        """Whether search results show the loyalty member price."""
        return self._evaluate(
            LOYALTY_PROGRAM_FLAG,
            "boolean",
            entity_id,
            context,
            False,
            lambda request: self.client.evaluation.boolean(request).enabled,
        )


# Global Flipt service instance
flipt_service = FliptService()
