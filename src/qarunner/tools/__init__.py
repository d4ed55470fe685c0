"""Executor implementations that do not need a live browser."""

from .offline import DEFAULT_PAGE, OfflineExecutor

__all__ = ["DEFAULT_PAGE", "OfflineExecutor"]
