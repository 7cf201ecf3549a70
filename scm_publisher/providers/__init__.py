"""SCM platform adapters and webhook handlers."""
from scm_publisher.providers.base import SCMClientAdapter, Repository, Tag, Branch, TokenGrant
from scm_publisher.providers.github import GitHubAdapter
from scm_publisher.providers.gitlab import GitLabAdapter
from scm_publisher.providers.azure_devops import AzureDevOpsAdapter
from scm_publisher.providers.bitbucket_dc import BitbucketDCAdapter
from scm_publisher.providers.webhooks import WebhookHandler, RefUpdate

__all__ = [
    "SCMClientAdapter",
    "Repository",
    "Tag",
    "Branch",
    "TokenGrant",
    "GitHubAdapter",
    "GitLabAdapter",
    "AzureDevOpsAdapter",
    "BitbucketDCAdapter",
    "WebhookHandler",
    "RefUpdate",
]
