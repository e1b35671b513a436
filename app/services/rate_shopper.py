"""
Courier selection over serviceability quotes.
Pure functions: no I/O. Callers fall back to the aggregator's default courier when these return None.
"""
import re
from typing import List, Optional

from app.services.shiprocket_types import CourierQuote

UNPARSABLE_DAYS = 999

_LEADING_INT = re.compile(r"\s*(\d+)")


def parse_delivery_days(value: Optional[str]) -> int:
    """Lower bound of an estimated-delivery range: "3-5" -> 3, "2" -> 2, anything else -> 999."""
    if value is None:
        return UNPARSABLE_DAYS
    match = _LEADING_INT.match(str(value))
    return int(match.group(1)) if match else UNPARSABLE_DAYS


def select_cheapest(quotes: List[CourierQuote], is_cod: bool) -> Optional[CourierQuote]:
    """Minimise freight + (COD surcharge if COD); ties go to the lower courier id."""
    if not quotes:
        return None
    return min(quotes, key=lambda q: (q.total_charge(is_cod), q.courier_id))


def select_fastest(quotes: List[CourierQuote]) -> Optional[CourierQuote]:
    if not quotes:
        return None
    return min(quotes, key=lambda q: (parse_delivery_days(q.estimated_delivery_days), q.courier_id))


def select_for_auto_assign(
    quotes: List[CourierQuote], is_cod: bool, preferred_courier_id: Optional[int] = None
) -> Optional[CourierQuote]:
    """Configured preferred courier wins when it serves the route; otherwise the cheapest."""
    if preferred_courier_id:
        for quote in quotes:
            if quote.courier_id == preferred_courier_id:
                return quote
    return select_cheapest(quotes, is_cod)


def rank_quotes(quotes: List[CourierQuote], is_cod: bool) -> List[dict]:
    """Quotes sorted cheapest-first, each annotated with totalCharge / isCheapest / isFastest."""
    cheapest = select_cheapest(quotes, is_cod)
    fastest = select_fastest(quotes)
    ranked = sorted(quotes, key=lambda q: (q.total_charge(is_cod), q.courier_id))
    return [
        {
            "id": q.courier_id,
            "name": q.courier_name,
            "freightCharge": q.freight_charge,
            "codCharges": q.cod_charges,
            "totalCharge": round(q.total_charge(is_cod), 2),
            "estimatedDays": q.estimated_delivery_days,
            "etd": q.etd,
            "rating": q.rating,
            "isSurface": q.is_surface,
            "isCheapest": cheapest is not None and q.courier_id == cheapest.courier_id,
            "isFastest": fastest is not None and q.courier_id == fastest.courier_id,
        }
        for q in ranked
    ]
