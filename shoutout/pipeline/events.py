"""Business event detection for sold estimates."""

from __future__ import annotations

from dataclasses import dataclass

from shoutout.pipeline.types import Estimate
from shoutout.settings import AppSettings


@dataclass(frozen=True)
class EventFlags:
    is_tgl: bool
    is_big_sale: bool

    @property
    def any(self) -> bool:
        return self.is_tgl or self.is_big_sale


def is_option_event(estimate: Estimate, settings: AppSettings) -> bool:
    """TGL: the configured option marker appears in the estimate name (case-sensitive)."""
    return settings.tgl_option_name in (estimate.name or "")


def is_threshold_event(estimate: Estimate, settings: AppSettings) -> bool:
    """Big sale: subtotal strictly above the configured threshold."""
    return estimate.amount > settings.big_sale_threshold


def classify_events(estimate: Estimate, settings: AppSettings) -> EventFlags:
    return EventFlags(
        is_tgl=is_option_event(estimate, settings),
        is_big_sale=is_threshold_event(estimate, settings),
    )
