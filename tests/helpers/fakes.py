"""Small stand-ins for Playwright objects and the output sink."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional


class MemorySink:
    def __init__(self) -> None:
        self.records: List[Dict[str, Any]] = []

    def emit(self, record: Dict[str, Any]) -> None:
        self.records.append(record)


class MemoryStore:
    def __init__(self) -> None:
        self.values: Dict[str, Any] = {}

    def load(self, key: str) -> Optional[Any]:
        value = self.values.get(key)
        return json.loads(json.dumps(value)) if value is not None else None

    def save(self, key: str, value: Any) -> None:
        self.values[key] = json.loads(json.dumps(value))


class FakeResponse:
    def __init__(
        self,
        url: str,
        *,
        payload: Any = None,
        body: bytes = b"",
        status: int = 200,
        headers: Optional[Dict[str, str]] = None,
        json_error: Optional[Exception] = None,
    ) -> None:
        self.url = url
        self.status = status
        self.headers = headers or {"content-type": "application/json"}
        self._payload = payload
        self._body = body
        self._json_error = json_error

    async def json(self) -> Any:
        if self._json_error is not None:
            raise self._json_error
        return self._payload

    async def body(self) -> bytes:
        return self._body


class FakeRequest:
    def __init__(self, url: str, resource_type: str = "script") -> None:
        self.url = url
        self.resource_type = resource_type


class FakeRoute:
    def __init__(self, url: str, resource_type: str = "script", fulfill_error: Optional[Exception] = None) -> None:
        self.request = FakeRequest(url, resource_type)
        self.calls: List[str] = []
        self.fulfilled: Optional[Dict[str, Any]] = None
        self._fulfill_error = fulfill_error

    async def abort(self) -> None:
        self.calls.append("abort")

    async def continue_(self) -> None:
        self.calls.append("continue")

    async def fulfill(self, **kwargs: Any) -> None:
        if self._fulfill_error is not None:
            raise self._fulfill_error
        self.calls.append("fulfill")
        self.fulfilled = kwargs
