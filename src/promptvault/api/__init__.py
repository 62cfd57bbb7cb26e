"""HTTP API used by the web dashboard, the browser extension and webhooks."""

from promptvault.api.app import create_app

__all__ = ["create_app"]
