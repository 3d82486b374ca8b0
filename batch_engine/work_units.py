#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Work Units - the operation performed once per item

The batch processor only knows that process(item_id) either returns a result
(success) or raises (failed attempt). Concrete units wrap an async function,
call an HTTP service, or simulate one for demos.
"""

import asyncio
import random
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from config.constants import WORK_UNIT_TIMEOUT_SECONDS
from config.logging_config import get_logger

from .exceptions import WorkUnitError

logger = get_logger(__name__)


class WorkUnit(ABC):
    """
    Abstract base class for work units.
    Raising any exception marks the attempt as failed.
    """

    @abstractmethod
    async def process(self, item_id: str) -> Any:
        """Process one item and return an opaque success payload"""
        pass

    async def aclose(self):
        """Release resources held by the unit"""
        pass


class CallableWorkUnit(WorkUnit):
    """Adapts an async function(item_id) to the WorkUnit interface"""

    def __init__(self, func: Callable[[str], Awaitable[Any]]):
        self.func = func

    async def process(self, item_id: str) -> Any:
        return await self.func(item_id)


class HttpWorkUnit(WorkUnit):
    """
    Posts each item to an HTTP endpoint.

    The endpoint receives {"item_id": ...} and its JSON body is the item's
    payload. Non-2xx responses raise httpx.HTTPStatusError, which the batch
    processor treats as a failed attempt.

    Usage:
        unit = HttpWorkUnit("http://annotator/api/annotate", api_key="...")
        payload = await unit.process("image-123")
        await unit.aclose()
    """

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        timeout: float = WORK_UNIT_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
        extra_payload: Optional[Dict[str, Any]] = None,
    ):
        """
        Args:
            url: Endpoint receiving one POST per item
            api_key: Sent as a Bearer token when set
            timeout: Request timeout in seconds
            client: Shared client; created (and owned) when not provided
            extra_payload: Fields merged into every request body
        """
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self.extra_payload = extra_payload or {}

        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def process(self, item_id: str) -> Any:
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        payload = {"item_id": item_id, **self.extra_payload}

        try:
            response = await self.client.post(self.url, headers=headers, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(f"Work unit HTTP {e.response.status_code} for item {item_id}")
            raise

        try:
            return response.json()
        except ValueError as e:
            raise WorkUnitError(f"Invalid JSON from work unit for item {item_id}") from e

    async def aclose(self):
        if self._owns_client:
            await self.client.aclose()


class SimulatedWorkUnit(WorkUnit):
    """
    Stand-in for the annotation service: random latency and failure rate.
    Returns {"item_id": ..., "annotations_created": n} on success.
    """

    def __init__(
        self,
        failure_rate: float = 0.05,
        min_latency: float = 0.5,
        max_latency: float = 1.5,
        rng: Optional[random.Random] = None,
    ):
        if not 0.0 <= failure_rate <= 1.0:
            raise ValueError("failure_rate must be between 0 and 1")
        self.failure_rate = failure_rate
        self.min_latency = min_latency
        self.max_latency = max_latency
        self.rng = rng or random.Random()

    async def process(self, item_id: str) -> Any:
        await asyncio.sleep(self.rng.uniform(self.min_latency, self.max_latency))

        if self.rng.random() < self.failure_rate:
            raise WorkUnitError(f"Simulated annotation error for item {item_id}")

        return {
            "item_id": item_id,
            "annotations_created": self.rng.randint(1, 5),
        }
