"""Mail relay HTTP service."""

from municipal_budget.relay.app import create_app

__all__ = ["create_app"]
