"""Platform adapter registry.

WHY: The scheduler looks up the adapter for a post's destination; the
server and CLI build the set of adapters once at startup. A central dict
makes adding a destination one import and one line.

HOW: ADAPTERS maps each Destination to an adapter *class*.
build_adapters() instantiates one adapter per class and shares it between
destinations that use the same platform (both YouTube destinations share
one YouTubeAdapter, so one credential refresh serves both).

RULES:
- Every Destination has an adapter here; a scheduler built with a
  partial set rejects the missing ones with ConfigurationError
- Both Instagram destinations share one InstagramAdapter
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional, Type, Union

import httpx

from clipcast.publish.adapters.base import PlatformAdapter
from clipcast.publish.adapters.instagram import InstagramAdapter
from clipcast.publish.adapters.local import LocalAdapter
from clipcast.publish.adapters.tiktok import TikTokAdapter
from clipcast.publish.adapters.youtube import YouTubeAdapter
from clipcast.publish.adapters.x import XAdapter
from clipcast.publish.models import Destination
from clipcast.publish.tokens import TokenStore

ADAPTERS: Dict[Destination, Type[PlatformAdapter]] = {
    Destination.TIKTOK: TikTokAdapter,
    Destination.YOUTUBE_SHORTS: YouTubeAdapter,
    Destination.YOUTUBE_VIDEO: YouTubeAdapter,
    Destination.INSTAGRAM_REELS: InstagramAdapter,
    Destination.INSTAGRAM_POST: InstagramAdapter,
    Destination.X: XAdapter,
    Destination.LOCAL: LocalAdapter,
}


def build_adapters(
    token_store: TokenStore,
    client: Optional[httpx.AsyncClient] = None,
    output_dir: Optional[Union[str, Path]] = None,
) -> Dict[Destination, PlatformAdapter]:
    """Instantiate the registered adapters, one instance per adapter class."""
    instances: Dict[Type[PlatformAdapter], PlatformAdapter] = {}
    result: Dict[Destination, PlatformAdapter] = {}
    for destination, adapter_cls in ADAPTERS.items():
        if adapter_cls not in instances:
            if adapter_cls is LocalAdapter:
                instances[adapter_cls] = LocalAdapter(token_store, client, output_dir=output_dir)
            else:
                instances[adapter_cls] = adapter_cls(token_store, client)
        result[destination] = instances[adapter_cls]
    return result


__all__ = [
    "ADAPTERS",
    "InstagramAdapter",
    "LocalAdapter",
    "PlatformAdapter",
    "TikTokAdapter",
    "YouTubeAdapter",
    "XAdapter",
    "build_adapters",
]
