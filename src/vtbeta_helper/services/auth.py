"""
Access token handling.

Tokens are handed out as dash-separated groups; the API expects the 16
significant characters in upper case.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from vtbeta_helper.api.client import ApiService
from vtbeta_helper.api.models import Subscription
from vtbeta_helper.errors import ApiError, ApiException, PermanentRemoteError
from vtbeta_helper.logging import get_logger
from vtbeta_helper.retry import RetryConfig, RetryDecision, retry_with_backoff

if TYPE_CHECKING:
    from vtbeta_helper.config import ApiConfig, RetrySettings
    from vtbeta_helper.services.cache import BuildCache

logger = get_logger(__name__)

TOKEN_LENGTH = 16

MSG_INVALID_TOKEN = "Please enter a valid token."
MSG_UNAUTHORIZED = (
    "Your access token is invalid or has expired. "
    "Please check your token and try again."
)
MSG_SERVER_ERROR = (
    "Something went wrong while validating your token. Please try again later."
)
MSG_RATE_LIMITED = "Too many requests. Please wait a moment and try again."


@dataclass
class TokenValidation:
    """Result of a token validation.

    Attributes:
        is_valid: Whether the token has a valid subscription.
        error_message: User-facing reason when invalid.
    """

    is_valid: bool
    error_message: str = ""


def normalize_token(token: str) -> str:
    """Strip dashes and whitespace from a token and upper-case it."""
    return "".join(token.replace("-", "").split()).upper()


def retry_transient(error: BaseException, attempt: int) -> RetryDecision:
    """Retry decision that only retries transient API errors."""
    return RetryDecision(retry=isinstance(error, ApiException) and error.transient)


async def validate_token(
    token: str,
    api_config: ApiConfig,
    retry: RetrySettings,
    api: ApiService | None = None,
) -> TokenValidation:
    """
    Check that a token is well-formed and backed by a valid subscription.

    Never raises for API failures; they are reported in the result.

    Args:
        token: Token as entered by the user.
        api_config: Build service settings.
        retry: Retry budget for the subscription lookup.
        api: Client to use instead of one built from api_config.

    Returns:
        TokenValidation with a user-facing message when invalid.
    """
    normalized = normalize_token(token)
    if len(normalized) != TOKEN_LENGTH:
        return TokenValidation(is_valid=False, error_message=MSG_INVALID_TOKEN)

    if api is None:
        api = ApiService.from_config(api_config, token=normalized)

    async def _check() -> Subscription:
        subscription = await api.get_subscription()
        if not subscription.valid:
            raise PermanentRemoteError(ApiError.UNAUTHORIZED)
        return subscription

    config = RetryConfig(
        max_retries=retry.max_retries,
        initial_delay=retry.initial_delay_seconds,
        decide=retry_transient,
    )

    try:
        await retry_with_backoff(_check, config)
    except ApiException as e:
        logger.info(
            f"Token validation failed: {e.error.value}",
            extra={"api_error": e.error.value},
        )
        if e.error is ApiError.UNAUTHORIZED:
            message = MSG_UNAUTHORIZED
        elif e.error is ApiError.RATE_LIMITED:
            message = MSG_RATE_LIMITED
        else:
            message = MSG_SERVER_ERROR
        return TokenValidation(is_valid=False, error_message=message)
    except Exception as e:
        logger.warning(f"Token validation failed: {e}")
        return TokenValidation(is_valid=False, error_message=MSG_SERVER_ERROR)

    return TokenValidation(is_valid=True)


async def refresh_subscription(
    token: str,
    api_config: ApiConfig,
    retry: RetrySettings,
    api: ApiService | None = None,
    cache: BuildCache | None = None,
) -> Subscription:
    """
    Fetch the subscription for a token, retrying transient failures.

    A cached subscription younger than the cache TTL is returned without a
    request when a cache is given.

    Raises:
        ApiException: If the lookup fails for good.
        MalformedResponseError: If the response cannot be parsed.
    """
    if api is None:
        api = ApiService.from_config(api_config, token=normalize_token(token))

    config = RetryConfig(
        max_retries=retry.max_retries,
        initial_delay=retry.initial_delay_seconds,
        decide=retry_transient,
    )

    async def _fetch() -> Subscription:
        return await retry_with_backoff(api.get_subscription, config)

    if cache is None:
        return await _fetch()
    return await cache.fetch_subscription(_fetch)
