"""Provider Registry - SCM adapter and webhook handler lookup.

Adapters and webhook handlers are selected by provider_type at dispatch
time, so adding a platform means registering two classes here.
"""
from typing import Type, Dict, Optional, Any
import logging

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """
    Central registry for all provider types.

    Supports:
    - SCM client adapters (GitHub, GitLab, Azure DevOps, Bitbucket DC)
    - Webhook handlers (signature verification + payload parsing)

    Usage:
        # Register an adapter
        registry.register("adapter", "github", GitHubAdapter)

        # Get adapter instance
        adapter = registry.get("adapter", "github", config_dict)
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._providers: Dict[str, Dict[str, Type]] = {
                "adapter": {},
                "webhook": {},
            }
            cls._instance._initialized = False
        return cls._instance

    def register(self, category: str, name: str, provider_class: Type):
        """Register a provider class."""
        if category not in self._providers:
            self._providers[category] = {}

        self._providers[category][name] = provider_class
        logger.debug(f"Registered {category} provider: {name}")

    def get(self, category: str, name: str, config: Optional[dict] = None) -> Any:
        """Get a provider instance."""
        if category not in self._providers:
            raise ValueError(f"Unknown category: {category}")

        if name not in self._providers[category]:
            raise ValueError(f"Unknown {category} provider: {name}")

        provider_class = self._providers[category][name]

        if config is not None:
            return provider_class(config)
        return provider_class()

    def list_providers(self, category: str) -> list[str]:
        """List all registered providers in a category."""
        return list(self._providers.get(category, {}).keys())

    def has_provider(self, category: str, name: str) -> bool:
        """Check if a provider is registered."""
        return name in self._providers.get(category, {})

    def initialize_defaults(self):
        """Register all built-in adapters and webhook handlers."""
        if self._initialized:
            return

        from scm_publisher.providers.github import GitHubAdapter
        from scm_publisher.providers.gitlab import GitLabAdapter
        from scm_publisher.providers.azure_devops import AzureDevOpsAdapter
        from scm_publisher.providers.bitbucket_dc import BitbucketDCAdapter

        # setdefault semantics: tests may have registered fakes already
        for name, cls in (
            ("github", GitHubAdapter),
            ("gitlab", GitLabAdapter),
            ("azuredevops", AzureDevOpsAdapter),
            ("bitbucket_dc", BitbucketDCAdapter),
        ):
            if not self.has_provider("adapter", name):
                self.register("adapter", name, cls)

        from scm_publisher.providers.webhooks import (
            GitHubWebhookHandler,
            GitLabWebhookHandler,
            AzureDevOpsWebhookHandler,
            BitbucketDCWebhookHandler,
        )

        self.register("webhook", "github", GitHubWebhookHandler)
        self.register("webhook", "gitlab", GitLabWebhookHandler)
        self.register("webhook", "azuredevops", AzureDevOpsWebhookHandler)
        self.register("webhook", "bitbucket_dc", BitbucketDCWebhookHandler)

        self._initialized = True
        logger.info("Provider registry initialized with defaults")


# Singleton instance
registry = ProviderRegistry()


def get_scm_adapter(provider, token: Optional[str] = None, token_type: str = "oauth"):
    """Build the adapter for an SCMProvider row, optionally bound to a token."""
    from scm_publisher.config import settings

    registry.initialize_defaults()
    return registry.get("adapter", provider.provider_type, {
        "base_url": provider.base_url,
        "client_id": provider.client_id,
        "client_secret": provider.client_secret,
        "tenant_id": provider.tenant_id,
        "token": token or "",
        "token_type": token_type,
        "timeout": settings.SCM_HTTP_TIMEOUT,
    })


def get_webhook_handler(provider_type: str):
    """Get the webhook verifier/parser for a provider type."""
    registry.initialize_defaults()
    return registry.get("webhook", provider_type)
