"""SCM Publisher Database Models."""
from scm_publisher.models.user import User
from scm_publisher.models.module import Module, ModuleVersion
from scm_publisher.models.scm_provider import SCMProvider
from scm_publisher.models.scm_token import SCMOAuthToken
from scm_publisher.models.scm_link import ModuleSCMLink
from scm_publisher.models.webhook_event import SCMWebhookEvent
from scm_publisher.models.violation import ImmutabilityViolation
from scm_publisher.models.webhook_cleanup import WebhookCleanup

__all__ = [
    "User",
    "Module",
    "ModuleVersion",
    "SCMProvider",
    "SCMOAuthToken",
    "ModuleSCMLink",
    "SCMWebhookEvent",
    "ImmutabilityViolation",
    "WebhookCleanup",
]
