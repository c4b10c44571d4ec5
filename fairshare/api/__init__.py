"""HTTP API package."""

from fairshare.api.app import create_app, require_caller

__all__ = ["create_app", "require_caller"]
