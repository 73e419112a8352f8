"""
Pricing lookup collaborator.

The engine only needs a duration (and passes the price through). Any object
with a ``lookup(profile)`` method returning ``PricingMatch | None`` can be
plugged in; ``TablePricing`` is the table-driven implementation used by
default.
"""

from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Protocol

from crewslot.models.entities import JobProfile

# service -> bedrooms -> bathrooms -> max sqft tier -> (hours, price)
PricingTable = Mapping[str, Mapping[float, Mapping[float, Mapping[int, tuple]]]]

DEFAULT_PRICING: Dict = {
    "Standard": {
        1: {1: {800: (4, 200)}, 1.5: {899: (4, 206.25)}, 2: {999: (4.5, 212.5)}},
        2: {
            1: {999: (4.5, 237.5)},
            1.5: {1249: (5.25, 256.25)},
            2: {1250: (5.5, 262.5)},
            2.5: {1251: (5.5, 287.5)},
            3: {1499: (5.5, 300)},
        },
        3: {
            1: {999: (6, 325)},
            1.5: {1249: (6, 350)},
            2: {1500: (3.5, 362.5)},
            2.5: {1749: (3.75, 387.5)},
            3: {1999: (4, 400)},
        },
    },
    "Deep Clean": {
        1: {1: {800: (4.5, 225)}, 1.5: {899: (5, 250)}, 2: {999: (5.5, 262.5)}},
        2: {
            1: {999: (5.5, 287.5)},
            1.5: {1249: (6.25, 312.5)},
            2: {1250: (6.5, 325)},
            2.5: {1251: (7, 350)},
            3: {1499: (7, 362.5)},
        },
        3: {
            1: {999: (4, 387.5)},
            1.5: {1249: (4.25, 412.5)},
            2: {1500: (4.5, 425)},
            2.5: {1749: (4.75, 475)},
            3: {1999: (5, 475)},
        },
    },
}


@dataclass(frozen=True)
class PricingMatch:
    hours: float
    price: float

    @property
    def duration_minutes(self) -> int:
        return int(round(self.hours * 60))


class PricingLookup(Protocol):
    def lookup(self, profile: JobProfile) -> Optional[PricingMatch]:
        ...


def _closest(keys, target: float):
    # min() keeps the first of equally close keys, i.e. the smaller one
    return min(sorted(keys), key=lambda k: abs(k - target))


class TablePricing:
    def __init__(self, table: PricingTable = None):
        self.table = DEFAULT_PRICING if table is None else table

    def service_key(self, service_type: str) -> str:
        return "Deep Clean" if "deep" in (service_type or "").lower() else "Standard"

    def lookup(self, profile: JobProfile) -> Optional[PricingMatch]:
        by_bedrooms = self.table.get(self.service_key(profile.service_type))
        if not by_bedrooms:
            return None
        by_bathrooms = by_bedrooms[_closest(by_bedrooms.keys(), profile.bedrooms)]
        if not by_bathrooms:
            return None
        tiers = by_bathrooms[_closest(by_bathrooms.keys(), profile.bathrooms)]
        if not tiers:
            return None
        ordered = sorted(tiers)
        tier = next((t for t in ordered if profile.sqft <= t), ordered[-1])
        hours, price = tiers[tier]
        return PricingMatch(hours=hours, price=price)
