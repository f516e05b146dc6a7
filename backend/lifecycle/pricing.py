# lifecycle/pricing.py
# ============================================================================
# PAID Q&A SERVICE — PRICE / SLA TABLE
# ============================================================================

from datetime import datetime, timedelta

from pydantic import BaseModel, Field

from config import settings
from schemas.question_models import Urgency


class PriceTier(BaseModel):
    price_cents: int = Field(ge=0)
    sla_hours: int = Field(gt=0)


class PricingTable:
    """
    Price and SLA window per urgency class.

    Values come from configuration; nothing here encodes business prices.
    """

    def __init__(self, tiers: dict[Urgency, PriceTier] = None):
        self._tiers = tiers or {
            Urgency.URGENT: PriceTier(
                price_cents=settings.URGENT_PRICE_CENTS,
                sla_hours=settings.URGENT_SLA_HOURS,
            ),
            Urgency.STANDARD: PriceTier(
                price_cents=settings.STANDARD_PRICE_CENTS,
                sla_hours=settings.STANDARD_SLA_HOURS,
            ),
        }
        missing = set(Urgency) - set(self._tiers)
        if missing:
            raise ValueError(f"No pricing configured for: {sorted(u.value for u in missing)}")

    def tier(self, urgency: Urgency) -> PriceTier:
        return self._tiers[urgency]

    def price_cents(self, urgency: Urgency) -> int:
        return self._tiers[urgency].price_cents

    def sla(self, urgency: Urgency) -> timedelta:
        return timedelta(hours=self._tiers[urgency].sla_hours)

    def due_date(self, urgency: Urgency, created_at: datetime) -> datetime:
        return created_at + self.sla(urgency)
