"""SCM Publisher Services."""
from scm_publisher.services.token_store import TokenStore, token_store
from scm_publisher.services.sync import SyncOrchestrator, orchestrator

__all__ = [
    "TokenStore",
    "token_store",
    "SyncOrchestrator",
    "orchestrator",
]
