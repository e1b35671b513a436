"""
Rate shopping tests: cheapest / fastest / preferred courier selection.
"""
from app.services.rate_shopper import (
    UNPARSABLE_DAYS,
    parse_delivery_days,
    rank_quotes,
    select_cheapest,
    select_fastest,
    select_for_auto_assign,
)
from app.services.shiprocket_types import CourierQuote


def quote(courier_id, freight, cod=0.0, days="3"):
    return CourierQuote(
        courier_id=courier_id,
        courier_name=f"Courier {courier_id}",
        freight_charge=freight,
        cod_charges=cod,
        estimated_delivery_days=days,
    )


class TestSelectCheapest:
    def test_cod_surcharge_counts(self):
        quotes = [quote(1, 100, 20), quote(2, 90, 40)]
        assert select_cheapest(quotes, is_cod=True).courier_id == 1  # 120 < 130

    def test_prepaid_ignores_cod_surcharge(self):
        quotes = [quote(1, 100, 20), quote(2, 90, 40)]
        assert select_cheapest(quotes, is_cod=False).courier_id == 2

    def test_tie_goes_to_lower_id(self):
        quotes = [quote(7, 80), quote(3, 80)]
        assert select_cheapest(quotes, is_cod=False).courier_id == 3

    def test_empty(self):
        assert select_cheapest([], is_cod=True) is None


class TestSelectFastest:
    def test_range_uses_lower_bound(self):
        assert parse_delivery_days("3-5") == 3
        assert parse_delivery_days("2") == 2

    def test_unparsable(self):
        assert parse_delivery_days("bad") == UNPARSABLE_DAYS
        assert parse_delivery_days(None) == UNPARSABLE_DAYS

    def test_unparsable_never_wins_against_parsable(self):
        quotes = [quote(1, 50, days="bad"), quote(2, 60, days="6")]
        assert select_fastest(quotes).courier_id == 2

    def test_unparsable_wins_when_alone(self):
        assert select_fastest([quote(1, 50, days="bad")]).courier_id == 1


class TestAutoAssign:
    def test_preferred_courier_wins_when_serving_route(self):
        quotes = [quote(1, 100), quote(2, 200)]
        assert select_for_auto_assign(quotes, False, preferred_courier_id=2).courier_id == 2

    def test_preferred_courier_missing_falls_back_to_cheapest(self):
        quotes = [quote(1, 100), quote(2, 200)]
        assert select_for_auto_assign(quotes, False, preferred_courier_id=99).courier_id == 1


def test_rank_quotes_sorted_and_annotated():
    quotes = [quote(2, 90, 40, days="2"), quote(1, 100, 20, days="3-5")]
    ranked = rank_quotes(quotes, is_cod=True)
    assert [r["id"] for r in ranked] == [1, 2]
    assert ranked[0]["totalCharge"] == 120
    assert ranked[0]["isCheapest"] is True
    assert ranked[0]["isFastest"] is False
    assert ranked[1]["isFastest"] is True
