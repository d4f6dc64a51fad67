"""Transport adapters."""

from .webpush import WebPushConfig, WebPushProvider, map_error_to_result

__all__ = ["WebPushConfig", "WebPushProvider", "map_error_to_result"]
