"""Client-side playback helpers: HTTP client and the revalidating session."""

from .client import AccessDenied, MediaAccessClient, TransientAccessError
from .session import PlaybackSession

__all__ = ["AccessDenied", "MediaAccessClient", "PlaybackSession", "TransientAccessError"]
