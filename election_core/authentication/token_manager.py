# election_core/authentication/token_manager.py
from datetime import timedelta
from flask_jwt_extended import create_access_token, decode_token, get_jwt, get_jwt_identity
from flask import current_app, Flask
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError

# JWT principals for administrative endpoints. Login itself lives outside this
# service; it only mints and reads tokens that carry the caller's role name.


class TokenManager:
    def __init__(self, app: Flask = None):
        if app:
            self.init_app(app)

    def init_app(self, app: Flask):
        app.config.setdefault("JWT_SECRET_KEY", "change_this_secret_key")
        app.config.setdefault("JWT_ACCESS_TOKEN_EXPIRES", timedelta(hours=1))

    def generate_token(self, username: str, role: str, expires_in: int = 3600) -> str:
        # Identity is the username; the role travels as an extra claim
        expires_delta = timedelta(seconds=expires_in)
        return create_access_token(
            identity=username,
            additional_claims={"role": role},
            expires_delta=expires_delta,
        )

    def validate_token(self, token: str):
        # Return (username, role) if the token is valid, else None.
        try:
            decoded = decode_token(token, allow_expired=False)
        except (PyJWTError, JWTExtendedException) as e:
            current_app.logger.warning(f"Token validation failed: {str(e)}")
            return None
        return decoded.get("sub"), decoded.get("role")

    def current_principal(self):
        # (username, role) of the JWT in the current request context.
        return get_jwt_identity(), get_jwt().get("role")
