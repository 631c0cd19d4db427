"""Durable state: key-value store, per-parent scroll state and the output sink."""

from .kv_store import JsonKeyValueStore
from .pagination import STATE_KEY, PaginationStore, ScrollState
from .sink import DatasetSink, OutputSink, TransformingSink

__all__ = ["DatasetSink", "JsonKeyValueStore", "OutputSink", "PaginationStore", "STATE_KEY", "ScrollState", "TransformingSink"]
