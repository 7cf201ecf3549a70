"""Authentication API — login, logout, current user."""
from flask import jsonify, request, session, g

from scm_publisher.api import api_bp
from scm_publisher.auth import require_auth, authenticate


@api_bp.route("/auth/login", methods=["POST"])
def api_login():
    """Authenticate user and create session.

    Body: {"username": "...", "password": "..."}
    """
    data = request.get_json(silent=True)
    if not data:
        return jsonify({"error": "JSON body required"}), 400

    username = (data.get("username") or "").strip()
    password = data.get("password") or ""

    if not username or not password:
        return jsonify({"error": "Username and password are required"}), 400

    user = authenticate(username, password)
    if not user:
        return jsonify({"error": "Invalid credentials"}), 401

    session["user_id"] = str(user.id)
    session["username"] = user.username
    session["role"] = user.role
    session.permanent = True

    return jsonify({
        "message": "Login successful",
        "user": user.to_dict(),
    })


@api_bp.route("/auth/logout", methods=["POST"])
def api_logout():
    """Clear session."""
    session.clear()
    return jsonify({"message": "Logged out"})


@api_bp.route("/auth/me", methods=["GET"])
@require_auth
def api_me():
    """Get current user info."""
    return jsonify(g.current_user)
