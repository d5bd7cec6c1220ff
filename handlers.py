"""
HTTP handlers for BurnVault.
"""
import logging
from datetime import timedelta
from functools import wraps
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request, session

from crypto_utils import CryptoUtils
from exceptions import DeliveryFailedError, SecretShareError, StorageUnavailableError
from lifecycle import SecretLifecycle, TTL_OPTIONS
from mailer import Mailer
from storage import Storage, utc_now
from utils import PendingLoginStore, is_valid_email, parse_page, validate_password_strength

# Configure logging
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    'invalid_request': 400,
    'not_found': 404,
    'already_used': 410,
    'expired': 410,
    'storage_unavailable': 503,
    'delivery_failed': 502,
}

ERROR_MESSAGES = {
    'not_found': "This password does not exist or has already been viewed.",
    'already_used': "This password has already been used.",
    'expired': "This password has expired.",
    'storage_unavailable': "The service is temporarily unavailable. Please try again later.",
    'delivery_failed': "The email could not be sent.",
}

def _form() -> Dict[str, Any]:
    """Request fields from a JSON body or an HTML form."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()

def _field(data: Dict[str, Any], *names: str) -> str:
    """First non-empty field among names, stripped."""
    for name in names:
        value = data.get(name)
        if value:
            return str(value).strip()
    return ""

def _error(message: str, status: int):
    return jsonify({'error': message}), status

def require_auth(view):
    """Reject requests without a logged-in user."""
    @wraps(view)
    def wrapped(*args, **kwargs):
        if not session.get('user_id'):
            return _error("Authentication required", 401)
        return view(*args, **kwargs)
    return wrapped

def require_guest(view):
    """Reject requests from a logged-in user (login and registration pages)."""
    @wraps(view)
    def wrapped(*args, **kwargs):
        if session.get('user_id'):
            return _error("Already logged in", 409)
        return view(*args, **kwargs)
    return wrapped

class WebHandlers:
    """Handlers for BurnVault routes."""

    def __init__(self, lifecycle: SecretLifecycle, storage: Storage, crypto: CryptoUtils,
                 mailer: Mailer, pending_logins: PendingLoginStore,
                 admin_email: Optional[str] = None, page_size: int = 10,
                 allow_anonymous: bool = False):
        """
        Initialize handlers.

        Args:
            lifecycle: SecretLifecycle instance
            storage: Storage instance (user accounts)
            crypto: CryptoUtils instance
            mailer: Mailer instance
            pending_logins: PendingLoginStore instance
            admin_email: Receives new-password requests
            page_size: Dashboard page size
            allow_anonymous: Let visitors without an account create secrets
        """
        self.lifecycle = lifecycle
        self.storage = storage
        self.crypto = crypto
        self.mailer = mailer
        self.pending_logins = pending_logins
        self.admin_email = admin_email
        self.page_size = page_size
        self.allow_anonymous = allow_anonymous

    def _owner_or_reject(self):
        """Current user id, None for an allowed anonymous sender, or an error response."""
        user_id = session.get('user_id')
        if user_id is None and not self.allow_anonymous:
            return None, _error("Authentication required", 401)
        return user_id, None

    # ------------------------------------------------------------------
    # Hooks and error handlers
    # ------------------------------------------------------------------

    def before_request(self):
        """Expire lapsed secrets before serving anything."""
        try:
            self.lifecycle.sweep_expired()
        except StorageUnavailableError as e:
            logger.error("Error while expiring secrets: %s", e)
        self.pending_logins.cleanup()

    def handle_secret_error(self, error: SecretShareError):
        status = ERROR_STATUS.get(error.code, 500)
        if status >= 500:
            logger.error("Request failed: %s", error)
        if error.code == 'invalid_request':
            message = str(error)
        else:
            message = ERROR_MESSAGES.get(error.code, "An error occurred. Please try again later.")
        return jsonify({
            'error': message,
            'code': error.code
        }), status

    # ------------------------------------------------------------------
    # Secrets
    # ------------------------------------------------------------------

    def index(self):
        """Describe the create form."""
        return jsonify({
            'authenticated': bool(session.get('user_id')),
            'username': session.get('username'),
            'expiration_options': list(TTL_OPTIONS),
        })

    def create(self):
        """Create a secret and email its link."""
        owner, rejection = self._owner_or_reject()
        if rejection:
            return rejection

        data = _form()
        secret = str(data.get('secret') or '')
        email = _field(data, 'email')
        expiration = _field(data, 'expiration') or 'never'

        if not secret or not email:
            return _error("Secret and recipient email are required", 400)
        if not is_valid_email(email):
            return _error("Invalid recipient email", 400)

        created = self.lifecycle.create_secret(secret, owner, email, expiration)

        # Remembered for a later new-password request
        session['recipient_email'] = email

        delivered = self.lifecycle.deliver(created, email, sender_name=session.get('username'))
        if delivered:
            message = f"The password link was sent to {email}"
        else:
            message = "The email could not be sent. Share the link below another way."

        return jsonify({
            'token': created.token,
            'url': self.lifecycle.link_for(created),
            'expires_at': created.expires_at.isoformat() if created.expires_at else None,
            'email_sent': delivered,
            'message': message
        }), 201

    def reveal(self, token: str):
        """Show a secret once."""
        secret = self.lifecycle.reveal_secret(token)
        response = jsonify({'secret': secret})
        response.headers['Cache-Control'] = 'no-store'
        return response

    def request_new_password(self):
        """Ask the administrator to send a fresh link."""
        recipient = session.get('recipient_email') or _field(_form(), 'email') or 'unknown'

        if not self.admin_email:
            logger.error("New password requested but ADMIN_EMAIL is not configured")
            return jsonify({'success': False, 'message': "Requests are not available"}), 503

        try:
            self.mailer.send_new_password_request(self.admin_email, recipient, utc_now())
        except DeliveryFailedError as e:
            logger.error("Error sending new password request: %s", e)
            return jsonify({'success': False, 'message': "The request could not be sent"}), 500

        return jsonify({'success': True, 'message': "Request sent"})

    def dashboard(self):
        """Stats and one page of the current sender's secrets."""
        owner, rejection = self._owner_or_reject()
        if rejection:
            return rejection

        page = self.lifecycle.list_secrets(owner, parse_page(request.args.get('page')), self.page_size)
        stats = self.lifecycle.stats(owner)

        return jsonify({
            'user': {'username': session.get('username'), 'email': session.get('email')} if owner else None,
            'stats': {
                'total': stats.total,
                'active': stats.active,
                'used': stats.used,
                'expired': stats.expired
            },
            'passwords': [record.to_dict() for record in page.items],
            'current_page': page.page,
            'total_pages': page.total_pages
        })

    @require_auth
    def delete_password(self, password_id: int):
        """Remove a secret from the user's history."""
        if self.lifecycle.delete_secret(password_id, session['user_id']):
            return jsonify({'message': "Password removed from your history"})
        return _error("Password not found or you are not allowed to delete it", 404)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    @require_guest
    def register(self):
        """Create an account."""
        data = _form()
        username = _field(data, 'username')
        email = _field(data, 'email')
        password = str(data.get('password') or '')
        confirm = str(data.get('confirmPassword') or data.get('confirm_password') or '')

        if not username or not email or not password or not confirm:
            return _error("All fields are required", 400)
        if password != confirm:
            return _error("Passwords do not match", 400)
        is_valid, message = validate_password_strength(password)
        if not is_valid:
            return _error(message, 400)
        if not is_valid_email(email):
            return _error("Invalid email address", 400)
        if self.storage.find_user_by_email(email):
            return _error("This email is already in use", 409)
        if self.storage.find_user_by_username(username):
            return _error("This username is already in use", 409)

        user_id = self.storage.add_user(username, email, self.crypto.hash_password(password))
        logger.info("User %s registered", user_id)

        return jsonify({'message': "Registration successful. You can now log in.", 'user_id': user_id}), 201

    @require_guest
    def login(self):
        """Check credentials and email a verification code."""
        data = _form()
        identifier = _field(data, 'identifier', 'email', 'username')
        password = str(data.get('password') or '').strip()

        if not identifier or not password:
            return _error("All fields are required", 400)

        if '@' in identifier:
            user = self.storage.find_user_by_email(identifier)
        else:
            user = self.storage.find_user_by_username(identifier)

        if not user or not self.crypto.verify_password(password, user.password_hash):
            return _error("Invalid identifier or password", 401)
        if user.status != 'active':
            return _error("Your account is disabled", 403)

        otp_secret = self.crypto.generate_otp_secret()
        login_id = self.pending_logins.create({
            'user_id': user.id,
            'username': user.username,
            'email': user.email,
            'otp_secret': otp_secret,
            'counter': 0
        })

        try:
            self._send_code(user.email, user.username, otp_secret, 0)
        except DeliveryFailedError as e:
            logger.error("Error sending verification code to user %s: %s", user.id, e)
            self.pending_logins.remove(login_id)
            return _error("Could not send the verification code. Try again later.", 502)

        session['pending_login'] = login_id
        return jsonify({'message': "A verification code was sent to your email.", 'email': user.email}), 202

    def _send_code(self, email: str, username: str, otp_secret: str, counter: int):
        """Email a login code; a dry-run mailer counts as a failed delivery."""
        code = self.crypto.generate_otp(otp_secret, counter)
        if not self.mailer.send_otp(email, username, code, self.pending_logins.timeout_seconds // 60):
            raise DeliveryFailedError("Email delivery is not configured, no code was sent")

    @require_guest
    def verify_otp(self):
        """Finish a login with the emailed code."""
        login_id = session.get('pending_login')
        pending = self.pending_logins.get(login_id)
        if not pending:
            session.pop('pending_login', None)
            return _error("Verification session expired. Please log in again.", 401)

        code = _field(_form(), 'code')
        if not code:
            return _error("Please enter the verification code", 400)

        if not self.crypto.verify_otp(pending['otp_secret'], code, pending['counter']):
            remaining = self.pending_logins.record_failure(login_id)
            if remaining == 0:
                session.pop('pending_login', None)
                return _error("Too many attempts. Please log in again.", 401)
            return _error("Invalid code. Please try again.", 401)

        self.pending_logins.remove(login_id)
        session.clear()
        session.permanent = True
        session['user_id'] = pending['user_id']
        session['username'] = pending['username']
        session['email'] = pending['email']

        try:
            self.storage.update_last_login(pending['user_id'])
        except StorageUnavailableError as e:
            logger.error("Updating last login failed: %s", e)

        try:
            self.mailer.send_login_notice(
                pending['email'],
                pending['username'],
                request.headers.get('X-Forwarded-For') or request.remote_addr or 'unknown',
                request.headers.get('User-Agent') or 'unknown',
                utc_now()
            )
        except DeliveryFailedError as e:
            logger.error("Error sending login notification: %s", e)

        return jsonify({'message': "Login verified", 'username': pending['username']})

    @require_guest
    def resend_otp(self):
        """Email a new verification code for the pending login."""
        login_id = session.get('pending_login')
        pending = self.pending_logins.get(login_id)
        if not pending:
            return _error("Session expired. Please log in again.", 401)

        pending = dict(pending, counter=pending['counter'] + 1)
        self.pending_logins.refresh(login_id, pending)

        try:
            self._send_code(pending['email'], pending['username'], pending['otp_secret'], pending['counter'])
        except DeliveryFailedError as e:
            logger.error("Error resending verification code: %s", e)
            return _error("Could not send a new code. Try again later.", 502)

        return jsonify({'message': "A new code was sent to your email."})

    def logout(self):
        session.clear()
        return jsonify({'message': "Logged out"})

    @require_auth
    def get_profile(self):
        user = self.storage.get_user(session['user_id'])
        if not user:
            return _error("User not found", 404)
        return jsonify({
            'username': user.username,
            'email': user.email,
            'status': user.status,
            'created_at': user.created_at.isoformat() if user.created_at else None,
            'last_login': user.last_login.isoformat() if user.last_login else None
        })

    @require_auth
    def update_profile(self):
        """Change username and email after re-checking the password."""
        data = _form()
        username = _field(data, 'username')
        email = _field(data, 'email')
        current_password = str(data.get('currentPassword') or data.get('current_password') or '')

        if not username or not email or not current_password:
            return _error("All fields are required", 400)
        if not is_valid_email(email):
            return _error("Invalid email address", 400)

        user = self.storage.get_user(session['user_id'])
        if not user:
            return _error("User not found", 404)
        if not self.crypto.verify_password(current_password, user.password_hash):
            return _error("Current password is incorrect", 403)

        if email != user.email and self.storage.find_user_by_email(email):
            return _error("This email is already used by another account", 409)
        if username != user.username and self.storage.find_user_by_username(username):
            return _error("This username is already used by another account", 409)

        self.storage.update_profile(user.id, username, email)
        session['username'] = username
        session['email'] = email

        return jsonify({'message': "Profile updated", 'username': username, 'email': email})

    def health(self):
        return jsonify({
            'status': 'healthy',
            'vault_entries': len(self.lifecycle.vault),
            'timestamp': utc_now().isoformat()
        })

# Build the Flask application for use in main.py
def create_app(handlers: WebHandlers, secret_key: str, session_timeout: int = 86400,
               secure_cookies: bool = False) -> Flask:
    """Create the Flask application and register every route."""
    app = Flask(__name__)
    app.config.update(
        SECRET_KEY=secret_key,
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE='Lax',
        SESSION_COOKIE_SECURE=secure_cookies,
        PERMANENT_SESSION_LIFETIME=timedelta(seconds=session_timeout),
    )

    app.before_request(handlers.before_request)
    app.register_error_handler(SecretShareError, handlers.handle_secret_error)

    routes = [
        ('/', 'index', handlers.index, ['GET']),
        ('/health', 'health', handlers.health, ['GET']),
        ('/register', 'register', handlers.register, ['POST']),
        ('/login', 'login', handlers.login, ['POST']),
        ('/verify-otp', 'verify_otp', handlers.verify_otp, ['POST']),
        ('/resend-otp', 'resend_otp', handlers.resend_otp, ['POST']),
        ('/logout', 'logout', handlers.logout, ['GET', 'POST']),
        ('/dashboard', 'dashboard', handlers.dashboard, ['GET']),
        ('/profile', 'get_profile', handlers.get_profile, ['GET']),
        ('/profile', 'update_profile', handlers.update_profile, ['POST']),
        ('/create', 'create', handlers.create, ['POST']),
        ('/password/<token>', 'reveal', handlers.reveal, ['GET']),
        # Links sent before the /password/ path was introduced
        ('/secret/<token>', 'reveal_legacy', handlers.reveal, ['GET']),
        ('/delete-password/<int:password_id>', 'delete_password', handlers.delete_password, ['POST']),
        ('/request-new-password', 'request_new_password', handlers.request_new_password, ['POST']),
    ]
    for rule, endpoint, view, methods in routes:
        app.add_url_rule(rule, endpoint, view, methods=methods)

    return app
