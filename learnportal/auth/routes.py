"""Session routes backed by Firebase Authentication.

Signing in happens in the browser with the Firebase client SDK; these routes
only turn a verified ID token into a server-side session.
"""

from firebase_admin import auth, firestore
from flask import current_app, g, jsonify, request, session
from flask_wtf.csrf import generate_csrf

from learnportal.core.constants import ROLE_SUPER_ADMIN, USERS_COLLECTION
from learnportal.errors import AppError, DuplicateResourceError, ValidationError
from learnportal.extensions import csrf
from learnportal.utils import get_dispatcher, normalize_email

from . import bp
from .services import AccountEmailService


@bp.route("/session_login", methods=["POST"])
@csrf.exempt
def session_login():
    """Verify a Firebase ID token and create a server-side session."""
    id_token = (request.get_json(silent=True) or {}).get("idToken")
    if not id_token:
        raise ValidationError("idToken is required.")
    try:
        decoded_token = auth.verify_id_token(id_token)
    except Exception as e:
        current_app.logger.error(f"Error during session login: {e}")
        raise AppError("Invalid token.", 401) from e

    uid = decoded_token["uid"]
    db = firestore.client()
    user_doc = db.collection(USERS_COLLECTION).document(uid).get()
    if not user_doc.exists:
        return jsonify({"status": "error", "message": "User not found."}), 404

    user_info = user_doc.to_dict() or {}
    session.clear()
    session["user_id"] = uid
    session["role"] = user_info.get("role")
    return jsonify(
        {
            "status": "success",
            "role": user_info.get("role"),
            "forcePasswordChange": bool(user_info.get("forcePasswordChange")),
        }
    )


@bp.route("/logout", methods=["POST"])
def logout():
    """Clear the server-side session."""
    session.clear()
    return jsonify({"status": "success"})


@bp.route("/csrf_token", methods=["GET"])
def csrf_token():
    """Hand the browser a CSRF token for its X-CSRFToken header."""
    return jsonify({"csrfToken": generate_csrf()})


@bp.route("/me", methods=["GET"])
def me():
    """Return the logged-in user's profile, if any."""
    if g.get("user") is None:
        raise AppError("Authentication required.", 401)
    return jsonify(g.user)


@bp.route("/install", methods=["POST"])
@csrf.exempt
def install():
    """Create the first super admin. Only works while none exists."""
    db = firestore.client()
    query = db.collection(USERS_COLLECTION).where(
        filter=firestore.FieldFilter("role", "==", ROLE_SUPER_ADMIN)
    )
    existing = list(query.limit(1).stream())
    if existing:
        raise DuplicateResourceError("A super admin already exists.")

    payload = request.get_json(silent=True) or {}
    password = payload.get("password")
    if not password:
        raise ValidationError("Missing required fields for admin creation.")
    email = normalize_email(payload.get("email", ""))

    try:
        user_record = auth.create_user(
            email=email, password=password, email_verified=True
        )
    except auth.EmailAlreadyExistsError as e:
        raise DuplicateResourceError("Email address is already registered.") from e

    db.collection(USERS_COLLECTION).document(user_record.uid).set(
        {
            "email": email,
            "name": payload.get("name") or email.split("@")[0],
            "role": ROLE_SUPER_ADMIN,
            "isApproved": True,
            "assignedGroups": [],
            "createdAt": firestore.SERVER_TIMESTAMP,
            "updatedAt": firestore.SERVER_TIMESTAMP,
        }
    )
    current_app.logger.info(f"Super admin {user_record.uid} installed")
    return jsonify({"status": "success", "userId": user_record.uid}), 201


@bp.route("/forgot-password", methods=["POST"])
@csrf.exempt
def forgot_password():
    """Email a password-reset link to the account's address."""
    email = (request.get_json(silent=True) or {}).get("email")
    if not email:
        raise ValidationError("Email is required.")
    AccountEmailService(firestore.client(), get_dispatcher()).send_password_reset(
        email
    )
    # The same answer for unknown addresses.
    return jsonify(
        {
            "success": True,
            "message": "If an account exists for this address, "
            "a password reset email has been sent.",
        }
    )


@bp.route("/send-otp", methods=["POST"])
@csrf.exempt
def send_otp():
    """Email a verification code, at most five per address and hour."""
    payload = request.get_json(silent=True) or {}
    if not payload.get("email"):
        raise ValidationError("Missing required fields.")
    message_id = AccountEmailService(firestore.client(), get_dispatcher()).send_otp(
        payload["email"], payload.get("name")
    )
    return jsonify(
        {
            "success": True,
            "message": "Verification code sent successfully.",
            "messageId": message_id,
        }
    )


@bp.route("/verify-otp", methods=["POST"])
@csrf.exempt
def verify_otp():
    """Check a verification code and mark the address as verified."""
    payload = request.get_json(silent=True) or {}
    if not payload.get("email") or not payload.get("otp"):
        raise ValidationError("Missing required fields.")
    AccountEmailService(firestore.client(), get_dispatcher()).verify_otp(
        payload["email"], str(payload["otp"])
    )
    return jsonify({"success": True, "message": "Email verified."})
