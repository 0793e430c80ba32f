from __future__ import annotations

from datetime import datetime, timezone

import jwt

from chat_client.application.dto.session import Session
from chat_client.application.exceptions import AuthenticationError


class SessionTokenDecoder:
    """Build a Session from the login JWT.

    With a secret the signature is verified (HS256 by default); without one
    the claims are only read, since the server re-validates the token on
    every channel connect and REST call.
    """

    def __init__(self, secret: str = "", algorithm: str = "HS256") -> None:
        self._secret = secret
        self._algorithm = algorithm

    def decode(self, token: str) -> Session:
        if not token:
            raise AuthenticationError("Missing session token")
        try:
            if self._secret:
                payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
            else:
                payload = jwt.decode(
                    token,
                    options={"verify_signature": False, "verify_exp": True},
                    algorithms=[self._algorithm],
                )
        except jwt.ExpiredSignatureError as exc:
            raise AuthenticationError("Session token expired") from exc
        except jwt.PyJWTError as exc:
            raise AuthenticationError(f"Invalid session token: {exc}") from exc

        subject = payload.get("sub") or payload.get("id")
        if not subject:
            raise AuthenticationError("Session token has no subject")

        exp = payload.get("exp")
        expires_at = datetime.fromtimestamp(exp, tz=timezone.utc) if exp else None
        return Session(
            user_id=str(subject),
            display_name=str(payload.get("name") or payload.get("email") or "User"),
            token=token,
            expires_at=expires_at,
        )
