"""Tests for game.economy module."""
from datetime import date, timedelta

from game.economy import BalanceStore


class TestBalances:
    """Tests for awarding and spending coins."""

    def test_new_identity_has_zero(self, economy):
        assert economy.get("p1") == 0

    def test_award(self, economy):
        assert economy.award("p1", 25) == 25
        assert economy.award("p1", 15) == 40
        assert economy.get("p1") == 40

    def test_award_clamps_at_zero(self, economy):
        economy.award("p1", 10)
        assert economy.award("p1", -50) == 0

    def test_try_spend(self, economy):
        economy.award("p1", 30)
        assert economy.try_spend("p1", 20) is True
        assert economy.get("p1") == 10
        assert economy.try_spend("p1", 20) is False
        assert economy.get("p1") == 10

    def test_negative_spend_is_rejected(self, economy):
        economy.award("p1", 30)
        assert economy.try_spend("p1", -5) is False
        assert economy.get("p1") == 30


class TestDailyBonus:
    """Tests for the once-per-day bonus."""

    def test_once_per_day(self, economy):
        today = date(2026, 3, 1)
        assert economy.claim_daily_bonus("p1", 50, today) == 50
        assert economy.claim_daily_bonus("p1", 50, today) == 0
        assert economy.get("p1") == 50

    def test_next_day_grants_again(self, economy):
        today = date(2026, 3, 1)
        economy.claim_daily_bonus("p1", 50, today)
        assert economy.claim_daily_bonus("p1", 50, today + timedelta(days=1)) == 50
        assert economy.get("p1") == 100


class TestCoinBoard:
    """Tests for top_coins."""

    def test_ranked_by_best_balance(self, economy):
        economy.award("a", 100)
        economy.award("b", 60)
        economy.try_spend("a", 90)
        assert economy.top_coins() == [("a", 100), ("b", 60)]

    def test_limit_is_clamped(self):
        economy = BalanceStore()
        for i in range(30):
            economy.award(f"p{i:02d}", i + 1)
        assert len(economy.top_coins(0)) == 1
        assert len(economy.top_coins(100)) == 25
        assert economy.top_coins(1) == [("p29", 30)]
