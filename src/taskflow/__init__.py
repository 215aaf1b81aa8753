"""Provide the public `taskflow` package exports."""

from __future__ import annotations

from .config import StoreConfig, load_config
from .task_engine.engine import TaskEngine

__all__ = ["StoreConfig", "TaskEngine", "load_config"]
