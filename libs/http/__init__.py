"""HTTP client for calls to external gateways."""

from .client import HttpClient, HttpError

__all__ = ["HttpClient", "HttpError"]
