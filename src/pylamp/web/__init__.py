"""HTTP surface of the dashboard."""

from pylamp.web.app import create_app, error_middleware

__all__ = ["create_app", "error_middleware"]
