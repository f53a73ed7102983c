"""Qdrant storage client for Herald.

Example:
    ```python
    from herald.storage import HeraldStorage

    async with HeraldStorage() as storage:
        await storage.store_subscription(subscription)
        due = await storage.get_due_deliveries(now)
    ```
"""

from __future__ import annotations

from .base import StorageBase
from .deliveries import DeliveryMixin
from .subscriptions import SubscriptionMixin


class HeraldStorage(SubscriptionMixin, DeliveryMixin, StorageBase):
    """Async Qdrant storage for subscriptions and delivery records.

    This class combines functionality from:
    - SubscriptionMixin: store/get/list/delete subscriptions, event matching
    - DeliveryMixin: store/get/list delivery records, due and window scans

    For tests, inject a local in-memory client:
        ```python
        storage = HeraldStorage(prefix="test", client=AsyncQdrantClient(location=":memory:"))
        await storage.initialize()
        ```
    """


__all__ = ["HeraldStorage"]
