"""API client for the remote object storage (Dropbox v2 HTTP API)."""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any, Callable, Optional

import httpx

from .exceptions import (
    ConfigError,
    CursorResetError,
    RemoteAPIError,
    RemoteAuthenticationError,
    RemoteInvalidResponseError,
    RemoteRateLimitError,
    RemoteUnreachableError,
)
from .models import (
    DownloadResult,
    ListDeltaResult,
    RemoteDeletedMetadata,
    RemoteEntry,
    RemoteFileMetadata,
    TokenSet,
)
from .paths import normalize_remote_base_path
from .utils import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_RETRY_DELAY,
    MAX_RETRY_DELAY,
    TOKEN_EXPIRY_MARGIN,
    expiry_timestamp,
    parse_iso_timestamp,
)

if TYPE_CHECKING:
    from .config import Settings

logger = logging.getLogger(__name__)

API_URL = "https://api.dropboxapi.com/2"
CONTENT_URL = "https://content.dropboxapi.com/2"
TOKEN_URL = "https://api.dropboxapi.com/oauth2/token"


def is_transient_status(status_code: int) -> bool:
    """Rate limiting and server errors are worth retrying."""
    return status_code == 429 or status_code >= 500


def header_safe_json(value: Any) -> str:
    """Serialize JSON for an HTTP header, escaping every char >= 0x7F."""
    return json.dumps(value, ensure_ascii=True).replace("\x7f", "\\u007f")


def _error_summary(body: str) -> str:
    """Extract the error summary from an API error body, if present."""
    try:
        data = json.loads(body)
    except ValueError:
        return ""
    if not isinstance(data, dict):
        return ""
    summary = data.get("error_summary")
    if isinstance(summary, str):
        return summary
    error = data.get("error")
    if isinstance(error, dict) and isinstance(error.get(".tag"), str):
        return error[".tag"]
    return ""


class RemoteClient:
    """Client for the remote storage API.

    Every call is retried with exponential backoff on network failures,
    rate limiting and server errors. In refresh-token mode an expired or
    rejected access token is renewed transparently.
    """

    def __init__(
        self,
        access_token: str | None = None,
        app_key: str | None = None,
        refresh_token: str | None = None,
        access_token_expires_at: str | None = None,
        api_url: str = API_URL,
        content_url: str = CONTENT_URL,
        token_url: str = TOKEN_URL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        timeout: float = 30.0,
        on_tokens_updated: Optional[Callable[[TokenSet], None]] = None,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize the remote client.

        Args:
            access_token: Static or current access token
            app_key: OAuth client id, required for refresh-token mode
            refresh_token: OAuth refresh token
            access_token_expires_at: ISO expiry of the current access token
            api_url: Base URL of RPC endpoints
            content_url: Base URL of content upload/download endpoints
            token_url: OAuth token endpoint
            max_attempts: Attempts per call, including the first (default: 6)
            retry_delay: Initial backoff delay in seconds (default: 1.0)
            timeout: Request timeout in seconds (default: 30.0)
            on_tokens_updated: Called with new tokens after every grant
            transport: Optional httpx transport (used by tests)
        """
        self.access_token = access_token or ""
        self.app_key = app_key or ""
        self.refresh_token = refresh_token or ""
        self.access_token_expires_at = access_token_expires_at or ""
        self.api_url = api_url.rstrip("/")
        self.content_url = content_url.rstrip("/")
        self.token_url = token_url
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.on_tokens_updated = on_tokens_updated
        self._transport = transport

        if not self.access_token and not self.app_key:
            raise ConfigError(
                "Remote credentials not configured. Set an access token or "
                "connect with 'tagsync auth url'."
            )

        self._client: httpx.Client | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        on_tokens_updated: Optional[Callable[[TokenSet], None]] = None,
        **kwargs: Any,
    ) -> RemoteClient:
        """Create a client from user settings."""
        return cls(
            access_token=settings.access_token,
            app_key=settings.app_key,
            refresh_token=settings.refresh_token,
            access_token_expires_at=settings.access_token_expires_at,
            on_tokens_updated=on_tokens_updated,
            **kwargs,
        )

    @property
    def refreshable(self) -> bool:
        return bool(self.app_key and self.refresh_token)

    def _get_client(self) -> httpx.Client:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        """Close the client and release connections."""
        if self._client is not None and not self._client.is_closed:
            self._client.close()
            self._client = None

    def __enter__(self) -> RemoteClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Calculate delay before the next attempt using exponential backoff.

        Args:
            attempt: Number of the attempt that just failed (1-based)

        Returns:
            Delay in seconds: 1, 2, 4, ... capped at 30
        """
        return min(self.retry_delay * (2 ** (attempt - 1)), MAX_RETRY_DELAY)

    def _retry_after_delay(self, response: httpx.Response) -> Optional[float]:
        """Server-supplied retry delay in seconds, at least one second."""
        retry_after = response.headers.get("Retry-After")
        if not retry_after:
            return None
        try:
            return max(1.0, float(retry_after))
        except ValueError:
            return None

    def _permanent_error(self, label: str, status_code: int, body: str) -> RemoteAPIError:
        message = f"Remote {label} failed ({status_code}): {body}"
        if status_code == 401:
            return RemoteAuthenticationError(message, status_code, body)
        if status_code == 409 and _error_summary(body).startswith("reset"):
            return CursorResetError(message, status_code, body)
        if status_code == 429:
            return RemoteRateLimitError(message, status_code, body)
        return RemoteAPIError(message, status_code, body)

    def _send(
        self,
        method: str,
        url: str,
        *,
        label: str,
        headers: Optional[dict[str, str]] = None,
        authenticated: bool = True,
        allow_not_found: bool = False,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request with retry logic.

        Args:
            method: HTTP method
            url: Absolute request URL
            label: Short description used in errors and logs
            headers: Extra request headers
            authenticated: Whether to send the bearer token
            allow_not_found: Return a 409 "not_found" response instead of
                raising
            **kwargs: Additional arguments passed to httpx

        Returns:
            The successful (or allowed not-found) response

        Raises:
            RemoteUnreachableError: Network or server failure after all attempts
            RemoteAPIError: Permanent failure
        """
        if authenticated:
            self._ensure_fresh_token()

        client = self._get_client()
        refreshed = False
        attempt = 1

        while True:
            request_headers = dict(headers or {})
            if authenticated:
                request_headers["Authorization"] = f"Bearer {self.access_token}"

            try:
                response = client.request(method, url, headers=request_headers, **kwargs)
            except httpx.RequestError as e:
                logger.debug(
                    "%s: network error on attempt %d/%d: %s",
                    label,
                    attempt,
                    self.max_attempts,
                    e,
                )
                if attempt >= self.max_attempts:
                    raise RemoteUnreachableError() from e
                time.sleep(self._calculate_retry_delay(attempt))
                attempt += 1
                continue

            if response.is_success:
                return response

            status_code = response.status_code
            body = response.text

            if allow_not_found and status_code == 409 and "not_found" in body:
                return response

            if (
                status_code == 401
                and authenticated
                and self.refreshable
                and not refreshed
            ):
                logger.info("%s: access token rejected, refreshing", label)
                self.refresh_access_token()
                refreshed = True
                continue

            if not is_transient_status(status_code):
                raise self._permanent_error(label, status_code, body)

            if attempt >= self.max_attempts:
                if status_code >= 500:
                    raise RemoteUnreachableError()
                raise self._permanent_error(label, status_code, body)

            delay = self._retry_after_delay(response)
            if delay is None:
                delay = self._calculate_retry_delay(attempt)
            logger.debug(
                "%s: HTTP %d on attempt %d/%d, retrying in %.1fs",
                label,
                status_code,
                attempt,
                self.max_attempts,
                delay,
            )
            time.sleep(delay)
            attempt += 1

    def _json(self, response: httpx.Response, label: str) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise RemoteInvalidResponseError(
                f"Invalid JSON response for {label}", response.status_code, response.text
            ) from e
        if not isinstance(data, dict):
            raise RemoteInvalidResponseError(
                f"Unexpected response for {label}", response.status_code, response.text
            )
        return data

    def _post_json(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        response = self._send(
            "POST",
            f"{self.api_url}{endpoint}",
            label=endpoint,
            json=payload,
        )
        return self._json(response, endpoint)

    # =========================
    # Authentication
    # =========================

    def _token_expired(self) -> bool:
        if not self.access_token:
            return True
        expires_at = parse_iso_timestamp(self.access_token_expires_at)
        if expires_at is None:
            return False
        return expires_at.timestamp() - time.time() <= TOKEN_EXPIRY_MARGIN

    def _ensure_fresh_token(self) -> None:
        if self.refreshable and self._token_expired():
            self.refresh_access_token()
        elif not self.access_token:
            raise ConfigError(
                "No access token available. Finish authorization with "
                "'tagsync auth finish'."
            )

    def _request_tokens(self, data: dict[str, str], label: str) -> TokenSet:
        try:
            response = self._send(
                "POST", self.token_url, label=label, authenticated=False, data=data
            )
        except (RemoteAuthenticationError, RemoteRateLimitError):
            raise
        except RemoteAPIError as e:
            raise RemoteAuthenticationError(str(e), e.status_code, e.body) from e

        payload = self._json(response, label)
        access_token = payload.get("access_token")
        if not access_token:
            raise RemoteInvalidResponseError(f"{label} returned no access token")

        tokens = TokenSet(
            access_token=access_token,
            refresh_token=payload.get("refresh_token") or self.refresh_token or None,
            expires_at=expiry_timestamp(payload.get("expires_in")),
        )
        self.access_token = tokens.access_token
        self.refresh_token = tokens.refresh_token or ""
        self.access_token_expires_at = tokens.expires_at or ""
        if self.on_tokens_updated is not None:
            self.on_tokens_updated(tokens)
        return tokens

    def exchange_authorization_code(
        self,
        code: str,
        code_verifier: str,
        redirect_uri: str | None = None,
    ) -> TokenSet:
        """Exchange an authorization code (PKCE flow) for tokens.

        Args:
            code: Authorization code shown to the user
            code_verifier: Verifier whose challenge was sent to authorize
            redirect_uri: Redirect URI, if one was used

        Returns:
            New access and refresh tokens
        """
        if not self.app_key:
            raise ConfigError("App key is required to exchange an authorization code.")
        data = {
            "grant_type": "authorization_code",
            "code": code.strip(),
            "client_id": self.app_key,
            "code_verifier": code_verifier,
        }
        if redirect_uri:
            data["redirect_uri"] = redirect_uri
        logger.debug("Exchanging authorization code")
        return self._request_tokens(data, "token exchange")

    def refresh_access_token(self) -> TokenSet:
        """Obtain a new access token with the stored refresh token."""
        if not self.refreshable:
            raise ConfigError("App key and refresh token are required to refresh.")
        logger.debug("Refreshing access token")
        return self._request_tokens(
            {
                "grant_type": "refresh_token",
                "refresh_token": self.refresh_token,
                "client_id": self.app_key,
            },
            "token refresh",
        )

    # =========================
    # File Operations
    # =========================

    def upload(self, remote_path: str, content: bytes) -> RemoteFileMetadata:
        """Upload content to a remote path, overwriting any existing file.

        Args:
            remote_path: Absolute remote path
            content: File content

        Returns:
            Metadata of the stored revision
        """
        path = normalize_remote_base_path(remote_path)
        arg = {"path": path, "mode": "overwrite", "mute": True}
        label = f"upload {path}"
        response = self._send(
            "POST",
            f"{self.content_url}/files/upload",
            label=label,
            headers={
                "Dropbox-API-Arg": header_safe_json(arg),
                "Content-Type": "application/octet-stream",
            },
            content=content,
        )
        metadata = RemoteFileMetadata.from_dict(self._json(response, label))
        logger.debug("Uploaded %s (rev %s)", path, metadata.rev)
        return metadata

    def download(self, remote_path: str) -> DownloadResult:
        """Download a remote file.

        Raises:
            RemoteInvalidResponseError: If the metadata header is missing
        """
        path = normalize_remote_base_path(remote_path)
        label = f"download {path}"
        response = self._send(
            "POST",
            f"{self.content_url}/files/download",
            label=label,
            headers={"Dropbox-API-Arg": header_safe_json({"path": path})},
        )

        metadata_header = response.headers.get("Dropbox-API-Result")
        if not metadata_header:
            raise RemoteInvalidResponseError(
                f"Remote download missing metadata header for {path}"
            )
        try:
            metadata = RemoteFileMetadata.from_dict(json.loads(metadata_header))
        except ValueError as e:
            raise RemoteInvalidResponseError(
                f"Invalid metadata header for {path}"
            ) from e
        return DownloadResult(metadata=metadata, content=response.content)

    def delete(self, remote_path: str) -> bool:
        """Delete a remote path.

        Returns:
            True if something was deleted, False if the path was already absent
        """
        path = normalize_remote_base_path(remote_path)
        response = self._send(
            "POST",
            f"{self.api_url}/files/delete_v2",
            label=f"delete {path}",
            json={"path": path},
            allow_not_found=True,
        )
        if response.status_code == 409:
            logger.debug("Remote %s was already absent", path)
            return False
        return True

    # =========================
    # Listing
    # =========================

    def list_delta(self, remote_base_path: str, cursor: str | None = None) -> ListDeltaResult:
        """List every change below a base path since a cursor.

        Without a cursor a full recursive listing (including deleted entries)
        is returned. All pages are drained before returning. If the remote
        reports the cursor as reset, one fresh full listing is performed.

        Args:
            remote_base_path: Remote folder to list
            cursor: Cursor returned by a previous call

        Returns:
            Changed entries and the cursor after the last page
        """
        if cursor:
            try:
                return self._drain_listing(remote_base_path, cursor)
            except CursorResetError:
                logger.warning("Remote list cursor was reset, starting a full listing")
        return self._drain_listing(remote_base_path, None)

    def _drain_listing(self, remote_base_path: str, cursor: str | None) -> ListDeltaResult:
        if cursor:
            page = self._post_json("/files/list_folder/continue", {"cursor": cursor})
        else:
            page = self._post_json(
                "/files/list_folder",
                {
                    "path": self._list_folder_path(remote_base_path),
                    "recursive": True,
                    "include_deleted": True,
                },
            )

        entries: list[RemoteEntry] = []
        pages = 1
        while True:
            entries.extend(self._parse_entries(page.get("entries") or []))
            cursor = page.get("cursor")
            if not cursor:
                raise RemoteInvalidResponseError("Listing response has no cursor")
            if not page.get("has_more"):
                break
            page = self._post_json("/files/list_folder/continue", {"cursor": cursor})
            pages += 1

        logger.debug("Listed %d change(s) in %d page(s)", len(entries), pages)
        return ListDeltaResult(entries=entries, cursor=cursor)

    def _parse_entries(self, raw_entries: list[dict[str, Any]]) -> list[RemoteEntry]:
        entries: list[RemoteEntry] = []
        for raw in raw_entries:
            tag = raw.get(".tag")
            if tag == "file":
                entries.append(RemoteFileMetadata.from_dict(raw))
            elif tag == "deleted":
                entries.append(RemoteDeletedMetadata.from_dict(raw))
        return entries

    def _list_folder_path(self, remote_base_path: str) -> str:
        normalized = normalize_remote_base_path(remote_base_path)
        return "" if normalized == "/" else normalized
