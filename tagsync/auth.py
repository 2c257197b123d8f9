"""OAuth helpers: PKCE verifier/challenge and the authorize URL."""

import hashlib
import secrets
from typing import Any
from urllib.parse import urlencode

from .config import Settings, setup_issue
from .output import OutputFormatter
from .utils import base64url_encode

AUTHORIZE_URL = "https://www.dropbox.com/oauth2/authorize"


def generate_code_verifier() -> str:
    """Generate a high-entropy PKCE code verifier (86 url-safe characters)."""
    return base64url_encode(secrets.token_bytes(64))


def code_challenge_for(verifier: str) -> str:
    """Return the S256 code challenge for a verifier.

    Examples:
        >>> code_challenge_for("dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk")
        'E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM'
    """
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64url_encode(digest)


def build_authorize_url(
    app_key: str,
    code_challenge: str,
    authorize_url: str = AUTHORIZE_URL,
) -> str:
    """Build the URL the user opens to grant offline access.

    Args:
        app_key: OAuth client id of the app
        code_challenge: S256 challenge derived from the stored verifier
        authorize_url: Authorization endpoint

    Returns:
        Full authorization URL
    """
    params = {
        "client_id": app_key,
        "response_type": "code",
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
        "token_access_type": "offline",
    }
    return f"{authorize_url}?{urlencode(params)}"


def require_configured(ctx: Any, out: OutputFormatter, settings: Settings) -> None:
    """Exit the CLI command when the settings cannot be used for syncing."""
    issue = setup_issue(settings)
    if issue:
        out.error(f"Setup required: {issue}")
        ctx.exit(1)
