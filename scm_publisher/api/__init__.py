"""SCM Publisher REST API Blueprints."""
import logging

from flask import Blueprint, jsonify
from werkzeug.exceptions import HTTPException

from scm_publisher.core.errors import SCMError

logger = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__)


@api_bp.errorhandler(SCMError)
def handle_scm_error(e: SCMError):
    if e.status_code >= 500:
        logger.error(f"{e.__class__.__name__}: {e}")
    return jsonify(e.to_dict()), e.status_code


@api_bp.errorhandler(HTTPException)
def handle_http_error(e: HTTPException):
    return jsonify({"error": e.description}), e.code


# Import routes to register them
from scm_publisher.api import auth_api, modules, webhooks

# Register nested blueprints
from scm_publisher.api.scm_providers import scm_providers_bp
api_bp.register_blueprint(scm_providers_bp, url_prefix="/scm-providers")

from scm_publisher.api.module_scm import module_scm_bp
api_bp.register_blueprint(module_scm_bp, url_prefix="/admin/modules")
