"""
Client side of the access pipeline: HTTP client, local grant cache, reconciler,
live-update stream and polling fallback.
"""
from lawnet.client.api import AccessApiClient, ClientError, RemoteAccess, RetryableClientError
from lawnet.client.cache import AccessCache, CachedGrant
from lawnet.client.polling import PollingWatcher
from lawnet.client.reconciler import AccessReconciler
from lawnet.client.stream import EventStreamClient, SSEParser

__all__ = [
    "AccessApiClient",
    "AccessCache",
    "AccessReconciler",
    "CachedGrant",
    "ClientError",
    "EventStreamClient",
    "PollingWatcher",
    "RemoteAccess",
    "RetryableClientError",
    "SSEParser",
]
