"""Authentication module for Flask app."""
# JWT auth for API routes
from .jwt_auth import (
    AuthError,
    create_token,
    current_username,
    ensure_cleaner_access,
    init_auth,
    is_admin,
    require_auth,
)
