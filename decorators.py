from dataclasses import dataclass
from enum import Enum
from functools import wraps
import logging

from flask import g, redirect, url_for, flash, request, render_template, make_response, jsonify
from flask_login import current_user

logger = logging.getLogger(__name__)

LOGIN_ENDPOINT = 'auth.login'
DASHBOARD_ENDPOINT = 'student.dashboard'

# Seconds the loading placeholder asks the browser to wait before retrying
LOADING_RETRY_SECONDS = 2

# Capabilities granted by each role. Privileged pages ask for a capability,
# never for a particular account.
ROLE_CAPABILITIES = {
    'admin': frozenset({'dashboard', 'admin_panel', 'manage_media'}),
    'student': frozenset({'dashboard'}),
}


def has_capability(user, capability):
    """Return True if an authenticated user's role grants the capability"""
    if user is None or not getattr(user, 'is_authenticated', False):
        return False
    role = (getattr(user, 'role', None) or '').lower()
    return capability in ROLE_CAPABILITIES.get(role, frozenset())


class AccessState(Enum):
    LOADING = 'loading'
    REDIRECTING = 'redirecting'
    AUTHORIZED = 'authorized'


@dataclass(frozen=True)
class SessionState:
    """Identity as seen by a guard for one request.

    ``loading`` is set when the session provider could not resolve the
    identity yet (for example the user store was unreachable), which is
    different from an anonymous visitor.
    """
    user: object = None
    loading: bool = False

    @property
    def authenticated(self):
        return self.user is not None and bool(getattr(self.user, 'is_authenticated', False))


@dataclass(frozen=True)
class GuardDecision:
    state: AccessState
    target: str = None  # endpoint to navigate to when redirecting

    @property
    def allowed(self):
        return self.state is AccessState.AUTHORIZED


def evaluate_access(session_state, capability=None):
    """Decide what a guarded page does for the given session.

    Without a capability any authenticated identity is enough (plain-auth
    variant). With one, the identity must also hold it (privileged variant).
    """
    if session_state.loading:
        return GuardDecision(AccessState.LOADING)
    if not session_state.authenticated:
        return GuardDecision(AccessState.REDIRECTING, LOGIN_ENDPOINT)
    if capability and not has_capability(session_state.user, capability):
        return GuardDecision(AccessState.REDIRECTING, DASHBOARD_ENDPOINT)
    return GuardDecision(AccessState.AUTHORIZED)


def current_session_state():
    """Build the SessionState for the current request from Flask-Login"""
    # Resolving current_user runs the user loader, which may flag the session as loading
    user = current_user._get_current_object()
    loading = bool(g.get('session_loading', False))
    if loading or not user.is_authenticated:
        user = None
    return SessionState(user=user, loading=loading)


def guard_response(decision):
    """Turn a non-authorized decision into the response the browser gets"""
    if decision.state is AccessState.LOADING:
        logger.warning(f"[GUARD] Session unresolved for {request.path}, serving loading page")
        response = make_response(render_template('guard/loading.html'), 503)
        response.headers['Retry-After'] = str(LOADING_RETRY_SECONDS)
        response.headers['Refresh'] = str(LOADING_RETRY_SECONDS)
        return response

    if decision.target == LOGIN_ENDPOINT:
        flash('Please log in to access this page.', 'warning')
        return redirect(url_for(LOGIN_ENDPOINT, next=request.path))

    flash('You do not have permission to access this page.', 'error')
    logger.info(f"[GUARD] Redirecting user {current_user.get_id()} away from {request.path}")
    return redirect(url_for(decision.target))


def _guard(f, capability):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        decision = evaluate_access(current_session_state(), capability)
        if not decision.allowed:
            return guard_response(decision)
        return f(*args, **kwargs)
    return decorated_function


def login_required_page(f):
    """Decorator for pages that need any logged-in user"""
    return _guard(f, None)


def capability_required(capability):
    """Decorator for pages that need a logged-in user holding a capability"""
    def decorator(f):
        return _guard(f, capability)
    return decorator


admin_required = capability_required('admin_panel')


def guard_blueprint(blueprint, capability=None):
    """Apply the guard to every view of a blueprint"""
    @blueprint.before_request
    def check_access():
        decision = evaluate_access(current_session_state(), capability)
        if not decision.allowed:
            return guard_response(decision)
        return None
    return blueprint


def api_capability_required(capability):
    """JSON variant: answer with an error body instead of navigating"""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            decision = evaluate_access(current_session_state(), capability)
            if decision.state is AccessState.LOADING:
                return jsonify({'error': 'Session is not available yet, please retry.'}), 503
            if decision.target == LOGIN_ENDPOINT:
                return jsonify({'error': 'Authentication required'}), 401
            if not decision.allowed:
                return jsonify({'error': 'Unauthorized access'}), 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator
