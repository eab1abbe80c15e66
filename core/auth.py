"""Bearer credential provider for the swap feed."""

import base64
import json
import logging
import time
from pathlib import Path
from typing import Optional

from config.settings import settings

logger = logging.getLogger(__name__)

# Refresh margin: a token expiring within this window counts as invalid
EXPIRY_MARGIN_SECONDS = 300


def jwt_expiry(token: str) -> Optional[int]:
    """Read the `exp` claim from a JWT without verifying it."""
    parts = token.split(".")
    if len(parts) != 3:
        return None
    payload = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload))
    except (ValueError, UnicodeDecodeError):
        return None
    exp = claims.get("exp") if isinstance(claims, dict) else None
    return int(exp) if isinstance(exp, (int, float)) else None


class CredentialProvider:
    """
    Supplies the bearer token attached to authenticated requests.

    Acquiring a token (challenge signing) happens outside this process; the
    provider only reads it from settings or the token file and reports
    whether it is still usable.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        token_file: Optional[str] = None,
    ):
        self._static_token = token if token is not None else settings.flashnet_jwt
        self.token_file = Path(token_file or settings.flashnet_jwt_file or "")
        self._token: Optional[str] = self._static_token or None

    def reload(self) -> Optional[str]:
        """Re-read the token file (static tokens take precedence)."""
        if self._static_token:
            self._token = self._static_token
            return self._token
        if self.token_file and self.token_file.is_file():
            try:
                self._token = self.token_file.read_text().strip() or None
            except OSError as e:
                logger.warning(f"Failed to read token file {self.token_file}: {e}")
        return self._token

    @property
    def token(self) -> Optional[str]:
        if self._token is None:
            self.reload()
        return self._token

    def is_valid(self, now: Optional[float] = None) -> bool:
        """True when a token exists and is not about to expire."""
        token = self.token
        if not token:
            return False
        exp = jwt_expiry(token)
        if exp is None:
            # Opaque token, nothing to check
            return True
        now = now if now is not None else time.time()
        return exp - now > EXPIRY_MARGIN_SECONDS

    def auth_headers(self) -> dict:
        token = self.token
        if not token:
            return {}
        return {"Authorization": f"Bearer {token}"}
