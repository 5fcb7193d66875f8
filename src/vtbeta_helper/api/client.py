"""
HTTP client for the build service.

ApiService issues the four calls the helper needs and classifies every
non-success response into an ApiError kind, raising the matching
ApiException subclass. The response body is only interpreted on success.

Status classification:
    200 -> success
    202 -> BuildNotReady (download only, carries data.retry_after)
    401 -> Unauthorized
    404 -> NotFound
    429 -> RateLimited
    500 -> ServerError
    any other status or transport failure -> UnknownError
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
from pydantic import ValidationError

from vtbeta_helper import __version__
from vtbeta_helper.api.models import (
    BuildData,
    BuildPage,
    DownloadedBuild,
    PendingJob,
    Subscription,
)
from vtbeta_helper.errors import (
    ApiError,
    MalformedResponseError,
    TransientRemoteError,
    raise_for_api_error,
)
from vtbeta_helper.logging import get_logger

if TYPE_CHECKING:
    from vtbeta_helper.config import ApiConfig

logger = get_logger(__name__)

ZIP_CONTENT_TYPE = "application/zip"
SHA256_HEADER = "x-sha256"

_STATUS_ERRORS: dict[int, ApiError] = {
    202: ApiError.BUILD_NOT_READY,
    401: ApiError.UNAUTHORIZED,
    404: ApiError.NOT_FOUND,
    429: ApiError.RATE_LIMITED,
    500: ApiError.SERVER_ERROR,
}


def classify_status(status_code: int) -> ApiError | None:
    """
    Map an HTTP status code to an ApiError kind.

    Returns:
        None for 200, otherwise the classified kind.
    """
    if status_code == 200:
        return None
    return _STATUS_ERRORS.get(status_code, ApiError.UNKNOWN_ERROR)


class ApiService:
    """
    Client for the build service user API.

    Example:
        >>> api = ApiService("ABCDEFGH12345678", base_url="https://server/api/v1/user")
        >>> page = await api.list_builds(limit=1, offset=0)
    """

    def __init__(
        self,
        token: str,
        *,
        base_url: str,
        user_agent_version: str = __version__,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the ApiService.

        Args:
            token: Normalized access token.
            base_url: Base URL of the user API (no trailing slash).
            user_agent_version: Version reported in the User-Agent header.
            timeout_seconds: Per-request timeout.
            transport: Optional httpx transport (used by tests).
        """
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._user_agent = f"vtbetahelper/{user_agent_version}"
        self._timeout = timeout_seconds
        self._transport = transport

    @classmethod
    def from_config(
        cls,
        config: ApiConfig,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> ApiService:
        """Create an ApiService from configuration."""
        return cls(
            token if token is not None else config.token,
            base_url=config.base_url,
            user_agent_version=config.user_agent_version,
            timeout_seconds=config.timeout_seconds,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        """Return the base URL."""
        return self._base_url

    @property
    def token(self) -> str:
        """Return the access token."""
        return self._token

    async def _request(
        self, endpoint: str, params: dict[str, Any] | None = None
    ) -> httpx.Response:
        """
        Send a GET request and return the response whatever its status.

        Raises:
            TransientRemoteError: On transport failures (classified UnknownError).
        """
        headers = {
            "Authorization": f"Bearer {self._token}",
            "User-Agent": self._user_agent,
        }
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                return await client.get(endpoint, params=params, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(
                f"Request to {endpoint} failed: {e}", extra={"endpoint": endpoint}
            )
            raise TransientRemoteError(
                ApiError.UNKNOWN_ERROR, {"reason": str(e)}
            ) from e

    @staticmethod
    def _check(response: httpx.Response, context: dict[str, Any] | None = None) -> None:
        error = classify_status(response.status_code)
        if error is not None:
            raise_for_api_error(error, context)

    @staticmethod
    def _data(response: httpx.Response) -> Any:
        try:
            return response.json()["data"]
        except (ValueError, KeyError, TypeError) as e:
            raise MalformedResponseError(
                "Invalid server response.",
                details={"status": response.status_code, "error": str(e)},
            ) from e

    async def get_subscription(self) -> Subscription:
        """
        Fetch the subscription attached to the token.

        Raises:
            ApiException: On a non-success status.
            MalformedResponseError: If the body cannot be parsed.
        """
        response = await self._request("/subscription")
        self._check(response)
        try:
            return Subscription.model_validate(self._data(response))
        except ValidationError as e:
            raise MalformedResponseError(
                "Invalid subscription response.", details={"error": str(e)}
            ) from e

    async def list_builds(self, limit: int, offset: int) -> BuildPage:
        """
        Fetch one page of published builds, newest first.

        Raises:
            ApiException: On a non-success status.
            MalformedResponseError: If the body cannot be parsed.
        """
        response = await self._request(
            "/builds", params={"limit": limit, "offset": offset}
        )
        self._check(response)
        try:
            return BuildPage.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise MalformedResponseError(
                "Invalid build list response.", details={"error": str(e)}
            ) from e

    async def get_build(self, tag: str) -> BuildData:
        """
        Fetch a single build by tag.

        Raises:
            ApiException: On a non-success status.
            MalformedResponseError: If the body cannot be parsed.
        """
        response = await self._request(f"/builds/{tag}")
        self._check(response, {"tag": tag})
        try:
            return BuildData.model_validate(self._data(response))
        except ValidationError as e:
            raise MalformedResponseError(
                "Invalid build response.", details={"tag": tag, "error": str(e)}
            ) from e

    async def download_build(self, tag: str) -> DownloadedBuild:
        """
        Download the ZIP archive of a build.

        Returns:
            The payload with the server-provided SHA-256 digest.

        Raises:
            BuildNotReadyError: If the server is still preparing the build.
            ApiException: On any other non-success status.
            MalformedResponseError: If a 200 response lacks the ZIP content
                type or the digest header.
        """
        response = await self._request(f"/builds/{tag}/download")

        if response.status_code == 202:
            retry_after: float | None = None
            try:
                pending = PendingJob.model_validate(self._data(response))
                retry_after = pending.retry_after
            except (MalformedResponseError, ValidationError):
                logger.debug("Build pending without a usable retry_after hint")
            raise_for_api_error(ApiError.BUILD_NOT_READY, {"retry_after": retry_after})

        self._check(response, {"tag": tag})

        content_type = response.headers.get("content-type", "").split(";")[0].strip()
        sha256 = response.headers.get(SHA256_HEADER, "").strip()
        if content_type != ZIP_CONTENT_TYPE or not sha256:
            raise MalformedResponseError(
                "Invalid server response.",
                details={
                    "tag": tag,
                    "content_type": content_type,
                    "has_digest": bool(sha256),
                },
            )

        return DownloadedBuild(
            tag=tag,
            content=response.content,
            sha256=sha256,
            content_type=content_type,
        )
