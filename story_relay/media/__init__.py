"""
Media Layer.

This package is responsible for fetching catalog media into scratch storage.
"""

from .downloader import MediaFetcher, build_media_url, discard_scratch

__all__ = ["MediaFetcher", "build_media_url", "discard_scratch"]
