"""Price lookup for the plans found by the last search."""

from __future__ import annotations

from planmind.agents.capabilities.base import BaseCapability, error_entry
from planmind.agents.models import (
    CapabilityName,
    CapabilityOutput,
    IntentClassification,
)
from planmind.interfaces.protocols import PriceService
from planmind.state.models import ConversationState
from planmind.utils.exceptions import DEGRADABLE_EXCEPTIONS
from planmind.utils.monitoring import log_error_with_context
from planmind.utils.retry import RetryPolicy, call_with_retry

MAX_PRICED_PLANS = 5

UNAVAILABLE = (
    "I can't look up prices right now. I can still compare the plans or "
    "prepare a recommendation for you."
)


class FetchPricesCapability(BaseCapability):
    """Asks the price service for quotes on the current search results."""

    name = CapabilityName.FETCH_PRICES

    def __init__(
        self, price_service: PriceService | None, *, policy: RetryPolicy | None = None
    ) -> None:
        self._price_service = price_service
        self._policy = policy or RetryPolicy()

    async def run(
        self,
        state: ConversationState,
        classification: IntentClassification,
        message: str,
    ) -> CapabilityOutput:
        plan_ids: list[str] = []
        for doc in state.search_results:
            plan_id = str(doc.metadata.get("plan_id") or doc.id)
            if plan_id not in plan_ids:
                plan_ids.append(plan_id)
        plan_ids = plan_ids[:MAX_PRICED_PLANS]

        if self._price_service is None:
            return CapabilityOutput(response=UNAVAILABLE)
        service = self._price_service
        try:
            quote = await call_with_retry(
                lambda: service.fetch_prices(plan_ids, state.client_info),
                self._policy,
                service="prices",
            )
        except DEGRADABLE_EXCEPTIONS as exc:
            log_error_with_context(exc, "fetch_prices")
            return CapabilityOutput(
                response=UNAVAILABLE, errors=[error_entry(self.name, exc)]
            )

        if not quote.prices:
            return CapabilityOutput(
                response="No prices are available for these plans yet.",
                prices=quote,
            )
        lines = []
        for price in quote.prices:
            line = f"- {price.plan_id}: {price.final_price:,.2f}/month"
            if price.discount > 0:
                line += f" (was {price.base_price:,.2f})"
            lines.append(line)
        return CapabilityOutput(
            response="Monthly prices for your profile:\n" + "\n".join(lines),
            prices=quote,
        )


__all__ = ["FetchPricesCapability"]
