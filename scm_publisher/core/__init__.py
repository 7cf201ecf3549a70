"""Core module initialization."""
from scm_publisher.core.registry import (
    ProviderRegistry,
    registry,
    get_scm_adapter,
    get_webhook_handler,
)

__all__ = [
    "ProviderRegistry",
    "registry",
    "get_scm_adapter",
    "get_webhook_handler",
]
