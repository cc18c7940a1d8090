"""Storage backends for HookRelay.

Persists subscriptions (the registry) and delivery records (the ledger and
durable retry queue) in Qdrant.

Example:
    ```python
    from hookrelay.storage import HookStorage

    async with HookStorage() as storage:
        records, total = await storage.list_deliveries("sub_123", owner_id="acct_1")
    ```
"""

from .base import COLLECTION_NAMES
from .client import HookStorage

__all__ = [
    "COLLECTION_NAMES",
    "HookStorage",
]
