"""Technician and customer name resolution with a bounded cache."""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Generic, Optional, TypeVar

from shoutout.integration.servicetitan import ServiceTitanClient

logger = logging.getLogger(__name__)

K = TypeVar("K")
V = TypeVar("V")


class FifoCache(Generic[K, V]):
    """Fixed-capacity map that evicts the oldest insertion first."""

    def __init__(self, max_size: int = 5000):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._data: OrderedDict[K, V] = OrderedDict()

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)

    def get(self, key: K) -> Optional[V]:
        return self._data.get(key)

    def put(self, key: K, value: V) -> None:
        if key in self._data:
            self._data[key] = value
            return
        while len(self._data) >= self.max_size:
            self._data.popitem(last=False)
        self._data[key] = value

    def clear(self) -> None:
        self._data.clear()


def format_customer_name(raw_name: str) -> str:
    """Turn ``"Last, First"`` into ``"First Last"``; anything else unchanged."""
    parts = raw_name.split(",")
    if len(parts) == 2:
        return f"{parts[1].strip()} {parts[0].strip()}"
    return raw_name


def technician_placeholder(technician_id: Optional[int]) -> str:
    return "Unknown" if technician_id is None else f"Technician #{technician_id}"


def customer_placeholder(customer_id: Optional[int]) -> str:
    return "Unknown Customer" if customer_id is None else f"Customer #{customer_id}"


class NameResolver:
    """Resolves technician and customer ids to display names.

    Lookup failures fall back to ``"Technician #<id>"`` / ``"Customer #<id>"``
    placeholders. Placeholders are cached like real names, so an id that
    cannot be resolved costs one request per resolver; jobs build a fresh
    resolver for every run, which is when a missing name is retried.
    """

    def __init__(self, client: ServiceTitanClient, max_size: int = 5000):
        self.client = client
        self.technicians: FifoCache[int, str] = FifoCache(max_size)
        self.customers: FifoCache[int, str] = FifoCache(max_size)

    async def technician(self, technician_id: Optional[int]) -> str:
        if technician_id is None:
            return technician_placeholder(None)
        if technician_id in self.technicians:
            return self.technicians.get(technician_id)  # type: ignore[return-value]

        name = await self.client.get_technician_name(technician_id)
        self.technicians.put(technician_id, name)
        return name

    async def customer(self, customer_id: Optional[int]) -> str:
        if customer_id is None:
            return customer_placeholder(None)
        if customer_id in self.customers:
            return self.customers.get(customer_id)  # type: ignore[return-value]

        raw = await self.client.get_customer_name(customer_id)
        name = raw if raw == customer_placeholder(customer_id) else format_customer_name(raw)
        self.customers.put(customer_id, name)
        return name
