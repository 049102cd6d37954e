"""
Quote Comparator

Filters and ranks normalized CarrierQuotes. Filtering always happens before
ranking; an empty result is AllCarriersUnavailableError, never a free quote.

Ranking key: price, then shortest minimum ETA, then carrier name.
"""
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ggd_shipping.core.exceptions import AllCarriersUnavailableError
from ggd_shipping.modules.shipping.models import CarrierQuote, QuoteFilter, ServiceClass


def _rank_key(quote: CarrierQuote) -> Tuple[Decimal, int, str]:
    return (quote.price_amount, quote.eta_min_days, quote.carrier_name)


def apply_filter(
    quotes: Iterable[CarrierQuote],
    quote_filter: Optional[QuoteFilter] = None,
) -> List[CarrierQuote]:
    quotes = list(quotes)
    if quote_filter is None:
        return quotes
    return [
        q for q in quotes
        if quote_filter.allows_carrier(q.carrier_name, q.via)
        and quote_filter.allows_service_level(q.service_level)
    ]


def rank_quotes(
    quotes: Iterable[CarrierQuote],
    quote_filter: Optional[QuoteFilter] = None,
) -> List[CarrierQuote]:
    """Filtered quotes, cheapest first. May be empty."""
    return sorted(apply_filter(quotes, quote_filter), key=_rank_key)


def select_cheapest(
    quotes: Iterable[CarrierQuote],
    quote_filter: Optional[QuoteFilter] = None,
) -> CarrierQuote:
    """
    Pick the single cheapest quote.

    Raises:
        AllCarriersUnavailableError: no quotes, or none left after filtering
    """
    ranked = rank_quotes(quotes, quote_filter)
    if not ranked:
        raise AllCarriersUnavailableError()
    return ranked[0]


def combine_parcel_quotes(per_parcel_quotes: Sequence[Sequence[CarrierQuote]]) -> List[CarrierQuote]:
    """
    Merge quotes fetched one parcel at a time into whole-shipment quotes.

    Quotes are grouped by (carrier, service level). A group only survives if
    it priced every parcel; its price is the sum and its ETA window is the
    slowest parcel's.
    """
    if not per_parcel_quotes:
        return []

    parcel_count = len(per_parcel_quotes)
    groups: Dict[Tuple[str, Optional[ServiceClass]], List[CarrierQuote]] = {}
    for parcel_quotes in per_parcel_quotes:
        # Cheapest per group for this parcel
        best: Dict[Tuple[str, Optional[ServiceClass]], CarrierQuote] = {}
        for quote in parcel_quotes:
            key = (quote.carrier_name, quote.service_level)
            if key not in best or _rank_key(quote) < _rank_key(best[key]):
                best[key] = quote
        for key, quote in best.items():
            groups.setdefault(key, []).append(quote)

    combined = []
    for (carrier_name, service_level), quotes in groups.items():
        if len(quotes) != parcel_count:
            continue
        first = quotes[0]
        service_codes = {q.service_code for q in quotes}
        combined.append(CarrierQuote(
            carrier_name=carrier_name,
            service_name=first.service_name if parcel_count == 1 else f"{first.service_name} x{parcel_count}",
            price_amount=sum((q.price_amount for q in quotes), Decimal("0.00")),
            currency=first.currency,
            eta_min_days=max(q.eta_min_days for q in quotes),
            eta_max_days=max(q.eta_max_days for q in quotes),
            is_satchel=all(q.is_satchel for q in quotes),
            service_level=service_level,
            service_code=first.service_code if len(service_codes) == 1 else None,
            via=first.via,
        ))
    return combined
