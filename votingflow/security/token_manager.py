# votingflow/security/token_manager.py
from datetime import timedelta
from flask_jwt_extended import create_access_token, get_jwt_identity
from flask import Flask, g

# Bearer tokens carrying the caller identity the voting session acts on.
# Routes and the RBAC decorator read the caller through current_identity().
class TokenManager:
    def __init__(self, app: Flask = None):
        if app:
            self.init_app(app)

    def init_app(self, app: Flask):
        if not app.config.get("JWT_SECRET_KEY"):
            raise RuntimeError("JWT_SECRET_KEY must be configured")
        # Expiry comes from JWT_ACCESS_TOKEN_EXPIRES, which JWTManager defaults
        app.extensions['token_manager'] = self

    def issue_token(self, identity: str, administrator: bool = False, expires_in: int = None) -> str:
        # The admin claim is informational; authorization always goes back to the session.
        expires_delta = timedelta(seconds=expires_in) if expires_in else None
        return create_access_token(
            identity=identity,
            expires_delta=expires_delta,
            additional_claims={"admin": administrator},
        )

    def current_identity(self):
        """Identity of the authenticated caller, also kept on g for audit entries."""
        try:
            identity = get_jwt_identity()
        except RuntimeError:
            identity = None
        g.caller = identity
        return identity
