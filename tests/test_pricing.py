"""Tests for the price / SLA table."""

from datetime import datetime, timedelta, timezone

import pytest

from lifecycle.pricing import PriceTier, PricingTable
from schemas.question_models import Urgency


class TestPricingTable:

    def test_urgent_tier(self, pricing):
        assert pricing.price_cents(Urgency.URGENT) == 9900
        assert pricing.sla(Urgency.URGENT) == timedelta(hours=6)

    def test_standard_tier(self, pricing):
        assert pricing.price_cents(Urgency.STANDARD) == 4900
        assert pricing.sla(Urgency.STANDARD) == timedelta(hours=24)

    def test_due_date_is_created_plus_sla(self, pricing):
        created = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        assert pricing.due_date(Urgency.URGENT, created) == created + timedelta(hours=6)
        assert pricing.due_date(Urgency.STANDARD, created) == created + timedelta(hours=24)

    def test_missing_tier_rejected(self):
        with pytest.raises(ValueError):
            PricingTable({Urgency.URGENT: PriceTier(price_cents=100, sla_hours=1)})

    def test_custom_values(self):
        table = PricingTable({
            Urgency.URGENT: PriceTier(price_cents=15000, sla_hours=2),
            Urgency.STANDARD: PriceTier(price_cents=2500, sla_hours=48),
        })
        assert table.tier(Urgency.URGENT).price_cents == 15000
        assert table.sla(Urgency.STANDARD) == timedelta(hours=48)
