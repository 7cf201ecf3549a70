"""Modules API endpoints - the registry entities versions are published into."""
import re

from flask import request, jsonify
from sqlalchemy.exc import IntegrityError

from scm_publisher.api import api_bp
from scm_publisher.auth import require_auth, require_role
from scm_publisher.extensions import db
from scm_publisher.models import Module, ModuleSCMLink, ModuleVersion

NAME_RE = re.compile(r"^[a-z0-9][a-z0-9-]*$")


@api_bp.route("/modules", methods=["GET"])
@require_auth
def list_modules():
    """List modules, optionally filtered by ?namespace= and ?system=."""
    query = Module.query
    if request.args.get("namespace"):
        query = query.filter_by(namespace=request.args["namespace"])
    if request.args.get("system"):
        query = query.filter_by(system=request.args["system"])
    modules = query.order_by(Module.namespace, Module.name, Module.system).all()
    return jsonify([m.to_dict() for m in modules])


@api_bp.route("/modules", methods=["POST"])
@require_auth
@require_role("operator")
def create_module():
    """Create a module.

    Body: {"namespace": "...", "name": "...", "system": "aws", "description": "..."}
    """
    data = request.get_json() or {}
    for field in ("namespace", "name", "system"):
        if not data.get(field):
            return jsonify({"error": "namespace, name and system are required"}), 400
        if not NAME_RE.match(data[field]):
            return jsonify({"error": f"{field} may contain lowercase letters, digits and hyphens only"}), 400

    module = Module(
        namespace=data["namespace"],
        name=data["name"],
        system=data["system"],
        description=data.get("description"),
    )
    db.session.add(module)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"error": "Module already exists"}), 409

    return jsonify(module.to_dict()), 201


@api_bp.route("/modules/<uuid:module_id>", methods=["GET"])
@require_auth
def get_module(module_id):
    """Get a module with its SCM link, if any."""
    module = Module.query.get_or_404(module_id)
    link = ModuleSCMLink.query.filter_by(module_id=module.id).first()
    result = module.to_dict()
    result["scm_link"] = link.to_dict() if link else None
    return jsonify(result)


@api_bp.route("/modules/<uuid:module_id>/versions", methods=["GET"])
@require_auth
def list_versions(module_id):
    """Published versions, newest first. Clients poll this after a sync."""
    Module.query.get_or_404(module_id)
    versions = (
        ModuleVersion.query
        .filter_by(module_id=module_id)
        .order_by(ModuleVersion.published_at.desc())
        .all()
    )
    return jsonify([v.to_dict() for v in versions])
