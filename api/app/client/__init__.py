"""Async Python client for the communications API."""

from app.client.api_client import CommsClient
from app.client.config import ClientSettings, get_client_settings
from app.client.observer import NotificationObserver
from app.client.realtime import RealtimeChannel, StreamEvent
from app.client.recent_searches import (
    InMemorySearchHistoryStore,
    JsonFileSearchHistoryStore,
    RecentSearches,
    SearchHistoryStore,
)

__all__ = [
    "ClientSettings",
    "CommsClient",
    "InMemorySearchHistoryStore",
    "JsonFileSearchHistoryStore",
    "NotificationObserver",
    "RealtimeChannel",
    "RecentSearches",
    "SearchHistoryStore",
    "StreamEvent",
    "get_client_settings",
]
