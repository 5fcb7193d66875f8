"""
Build download with retry.

download_build() wraps ApiService.download_build() in the retry engine:
- BuildNotReady: retried after the server's retry_after hint, unless the
  download was started manually (manual installs fail fast so the caller
  can report status instead of waiting silently)
- ServerError, UnknownError, RateLimited: retried with exponential backoff
- Unauthorized, NotFound, malformed responses: not retried
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from vtbeta_helper.errors import (
    ApiException,
    BuildNotReadyError,
    DownloadFailedError,
    UpgradeError,
)
from vtbeta_helper.logging import get_logger
from vtbeta_helper.retry import (
    DecideFunc,
    RetryConfig,
    RetryDecision,
    retry_with_backoff,
)

if TYPE_CHECKING:
    from vtbeta_helper.api.client import ApiService

logger = get_logger(__name__)

DEFAULT_MAX_RETRIES = 5
DEFAULT_RETRY_DELAY_SECONDS = 1.0


@dataclass(frozen=True)
class Artifact:
    """
    A downloaded build, ready to be verified and installed.

    Attributes:
        tag: Version tag of the build.
        sha256: Hex digest advertised by the server.
        payload: ZIP archive bytes.
        content_type: Content type of the response.
    """

    tag: str
    sha256: str
    payload: bytes
    content_type: str = "application/zip"


def make_download_decision(
    manual: bool, fallback_delay: float = DEFAULT_RETRY_DELAY_SECONDS
) -> DecideFunc:
    """
    Build the retry decision function for build downloads.

    Args:
        manual: Whether the download was started by the user.
        fallback_delay: Delay used when a not-ready response has no hint.

    Returns:
        A function suitable for RetryConfig.decide.
    """

    def decide(error: BaseException, attempt: int) -> RetryDecision:
        if isinstance(error, BuildNotReadyError):
            delay = error.retry_after or fallback_delay
            return RetryDecision(retry=not manual, delay=delay)
        if isinstance(error, ApiException) and error.transient:
            return RetryDecision(retry=True)
        return RetryDecision(retry=False)

    return decide


async def download_build(
    api: ApiService,
    tag: str,
    manual: bool = False,
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
    initial_delay: float = DEFAULT_RETRY_DELAY_SECONDS,
) -> Artifact:
    """
    Download a build, retrying transient failures.

    Args:
        api: Build service client.
        tag: Version tag to download.
        manual: Fail fast on not-ready builds instead of waiting.
        max_retries: Retries allowed after the first attempt.
        initial_delay: Base delay for exponential backoff.

    Returns:
        The downloaded Artifact.

    Raises:
        DownloadFailedError: If retries are exhausted or the failure is not
            retryable. The underlying error is chained as __cause__.
    """
    config = RetryConfig(
        max_retries=max_retries,
        initial_delay=initial_delay,
        decide=make_download_decision(manual, initial_delay),
    )

    logger.info(f"Downloading build {tag}", extra={"tag": tag, "manual": manual})

    try:
        result = await retry_with_backoff(lambda: api.download_build(tag), config)
    except UpgradeError as e:
        logger.error(f"Failed to download build {tag}: {e}", extra={"tag": tag})
        details = {"tag": tag, "cause": e.error_code, **e.details}
        if isinstance(e, BuildNotReadyError) and manual:
            message = f"Build {tag} is still being prepared. Please try again later."
        else:
            message = f"Failed to download: {e.message}"
        raise DownloadFailedError(message, details=details) from e
    except Exception as e:
        logger.error(f"Failed to download build {tag}: {e}", extra={"tag": tag})
        raise DownloadFailedError(
            f"Failed to download: {e}", details={"tag": tag}
        ) from e

    logger.info(
        f"Downloaded build {tag}",
        extra={"tag": tag, "size": len(result.content)},
    )
    return Artifact(
        tag=result.tag,
        sha256=result.sha256,
        payload=result.content,
        content_type=result.content_type,
    )
