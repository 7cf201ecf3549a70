"""Link Registry - lifecycle of the module <-> repository association."""
import logging
import secrets
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError

from scm_publisher.core.errors import (
    AlreadyLinked,
    NotLinked,
    ProviderInactive,
    SCMError,
)
from scm_publisher.extensions import db
from scm_publisher.models import Module, ModuleSCMLink, SCMProvider, WebhookCleanup
from scm_publisher.services.token_store import token_store

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("repository_path", "default_branch", "auto_publish_enabled", "tag_pattern")


def create_link(
    module_id,
    provider_id,
    repository_owner: str,
    repository_name: str,
    repository_path: Optional[str] = None,
    default_branch: str = "main",
    auto_publish_enabled: bool = True,
    tag_pattern: str = "v*",
    user_id=None,
) -> ModuleSCMLink:
    """Link a module to a repository and register the platform webhook.

    Webhook registration is best effort: on failure the link is kept without
    a webhook_id and manual sync still works.
    """
    if db.session.get(Module, module_id) is None:
        raise SCMError(f"Module {module_id} not found", status_code=404)
    provider = db.session.get(SCMProvider, provider_id)
    if provider is None:
        raise SCMError(f"SCM provider {provider_id} not found", status_code=404)
    if not provider.is_active:
        raise ProviderInactive(f"SCM provider {provider.name} is disabled")
    if ModuleSCMLink.query.filter_by(module_id=module_id).first() is not None:
        raise AlreadyLinked(f"Module {module_id} is already linked to a repository")

    link = ModuleSCMLink(
        module_id=module_id,
        provider_id=provider.id,
        repository_owner=repository_owner,
        repository_name=repository_name,
        repository_path=repository_path or None,
        default_branch=default_branch or "main",
        auto_publish_enabled=bool(auto_publish_enabled),
        tag_pattern=tag_pattern or "v*",
        webhook_secret=secrets.token_hex(32),
        created_by=user_id,
    )
    db.session.add(link)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise AlreadyLinked(f"Module {module_id} is already linked to a repository")

    logger.info(f"Linked module {module_id} to {repository_owner}/{repository_name} ({provider.provider_type})")
    _register_webhook(link, user_id)
    return link


def _register_webhook(link: ModuleSCMLink, user_id):
    try:
        token = token_store.get_for_link(link, preferred_user_id=user_id)
        with token_store.client(token) as adapter:
            link.webhook_id = adapter.register_webhook(
                link.repository_owner, link.repository_name, link.webhook_url, link.webhook_secret
            )
        db.session.commit()
        logger.info(f"Registered webhook {link.webhook_id} for link {link.id}")
    except SCMError as e:
        db.session.rollback()
        logger.warning(
            f"Webhook registration failed for {link.repository_owner}/{link.repository_name}, "
            f"link kept without webhook: {e}"
        )


def get_link(module_id) -> ModuleSCMLink:
    link = ModuleSCMLink.query.filter_by(module_id=module_id).first()
    if link is None:
        raise NotLinked(f"Module {module_id} is not linked to a repository")
    return link


def update_link(module_id, changes: dict) -> ModuleSCMLink:
    """Apply a partial update; unknown keys are ignored."""
    link = get_link(module_id)
    for field in UPDATABLE_FIELDS:
        if field not in changes:
            continue
        value = changes[field]
        if field == "auto_publish_enabled":
            value = bool(value)
        elif field in ("default_branch", "tag_pattern") and not value:
            raise SCMError(f"{field} cannot be empty", status_code=400)
        setattr(link, field, value)
    link.updated_at = datetime.utcnow()
    db.session.commit()
    return link


def delete_link(module_id, user_id=None) -> None:
    """Remove the link; a failed webhook deregistration is queued for the reconciler."""
    link = get_link(module_id)
    provider_id = link.provider_id
    owner, name, webhook_id = link.repository_owner, link.repository_name, link.webhook_id

    if webhook_id:
        try:
            token = token_store.get_for_link(link, preferred_user_id=user_id)
            with token_store.client(token) as adapter:
                adapter.delete_webhook(owner, name, webhook_id)
            logger.info(f"Deregistered webhook {webhook_id} on {owner}/{name}")
        except SCMError as e:
            db.session.rollback()
            logger.warning(f"Webhook {webhook_id} on {owner}/{name} not deregistered, queued for cleanup: {e}")
            db.session.add(WebhookCleanup(
                provider_id=provider_id,
                repository_owner=owner,
                repository_name=name,
                webhook_id=webhook_id,
                requested_by=user_id,
                last_error=str(e)[:2000],
            ))
            link = get_link(module_id)

    db.session.delete(link)
    db.session.commit()
    logger.info(f"Unlinked module {module_id} from {owner}/{name}")
