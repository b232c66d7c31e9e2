"""Shared HTTP components."""

from image_tasks.http.fetcher import FetchedImage, RemoteFetcher

__all__ = ["FetchedImage", "RemoteFetcher"]
