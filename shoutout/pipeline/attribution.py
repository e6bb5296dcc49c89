"""Cross-sale attribution.

Sums line-item totals per cross-sale group. Pure: classification comes in
as a callable, so callers warm the cache first and pass ``cache.lookup``.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from shoutout.pipeline.types import Estimate, EstimateItem

WATER_QUALITY = "WATER QUALITY"
AIR_QUALITY = "AIR QUALITY"

TRACKED_CATEGORIES = (WATER_QUALITY, AIR_QUALITY)

Classifier = Callable[[int], Optional[str]]


@dataclass
class CategoryMetrics:
    amount: Decimal = Decimal("0")
    item_count: int = 0
    items: list[EstimateItem] = field(default_factory=list)

    @property
    def has_category(self) -> bool:
        return self.amount > 0

    def add(self, item: EstimateItem) -> None:
        self.amount += item.total
        self.item_count += 1
        self.items.append(item)


def calculate_attribution(estimate: Estimate, classify: Classifier) -> dict[str, CategoryMetrics]:
    """Attribute each categorized line item to its cross-sale group.

    Items without a SKU, or whose SKU has no group, are ignored. Amounts are
    exact decimal sums of line totals. The tracked categories are always
    present in the result, zeroed when the estimate has none of them.
    """
    result = {category: CategoryMetrics() for category in TRACKED_CATEGORIES}

    for item in estimate.items:
        if item.sku_id is None:
            continue
        category = classify(item.sku_id)
        if not category:
            continue
        result.setdefault(category, CategoryMetrics()).add(item)

    return result
