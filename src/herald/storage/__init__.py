"""Storage backend for Herald.

Persists webhook subscriptions and delivery records to Qdrant. The delivery
collection doubles as the durable retry queue: the scheduler polls it for due
records on every sweep.

Example:
    ```python
    from herald.storage import HeraldStorage

    async with HeraldStorage() as storage:
        await storage.store_subscription(subscription)
    ```
"""

from .base import COLLECTION_NAMES
from .client import HeraldStorage

__all__ = [
    "COLLECTION_NAMES",
    "HeraldStorage",
]
