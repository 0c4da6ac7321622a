# src/kubedrain/collectors/base_collector.py
"""
This module defines the abstract base class for all data collectors.
Enforcing this interface ensures that the metrics source and the cluster
inventory readers share one lifecycle, making them easy to manage from the
drain processor.
"""

from abc import ABC, abstractmethod
from typing import Any, Iterable


class BaseCollector(ABC):
    """
    Abstract Base Class for all collectors.
    """

    @abstractmethod
    async def collect(self) -> Iterable[Any]:
        """
        The main method for a collector. It should fetch data from its
        source (e.g., an API), parse it, and return Pydantic models.
        """
        pass

    async def close(self):
        """
        Clean up resources (e.g., close HTTP sessions or API clients).
        """
        pass
