"""HTTP client for the Yuque open API (v2)."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import httpx
from pydantic import TypeAdapter, ValidationError
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from yuque_mirror.config import DEFAULT_HOST, MirrorSettings
from yuque_mirror.exceptions import YuqueAPIError
from yuque_mirror.models import ApiEnvelope, DocDetail, DocSummary, Repository, RepositoryDetail, User

logger = logging.getLogger(__name__)

PAGE_SIZE = 100
TOKEN_URL_HINT = "Get a new token at: https://www.yuque.com/settings/tokens"

_DOCS_ADAPTER = TypeAdapter(list[DocSummary])
_REPOS_ADAPTER = TypeAdapter(list[Repository])


class _RetryableStatus(Exception):
    """Internal marker for responses worth another attempt (429, 5xx)."""

    def __init__(self, response: httpx.Response) -> None:
        self.response = response
        super().__init__(f"HTTP {response.status_code}")


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, (httpx.TransportError, _RetryableStatus))


def _api_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return "Unknown error"
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    return "Unknown error"


def _status_error(response: httpx.Response, api: str) -> YuqueAPIError:
    status = response.status_code
    message = _api_message(response)
    if status == 401:
        return YuqueAPIError(
            401,
            f"Authentication failed: {message}",
            f"Please check your YUQUE_TOKEN is valid and not expired.\n{TOKEN_URL_HINT}",
        )
    if status == 403:
        return YuqueAPIError(403, f"Access denied: {message}", "You may not have permission to access this repository.")
    if status == 404:
        return YuqueAPIError(
            404,
            f"Resource not found: {api}",
            "Please check the repository path is correct (format: user/repo).",
        )
    if status == 429:
        return YuqueAPIError(
            429,
            "Rate limit exceeded",
            "Please wait a while before retrying. API limit: 5000 requests/hour.",
        )
    return YuqueAPIError(status, f"API request failed ({status}): {message}")


class YuqueClient:
    """Thin, retrying wrapper around the endpoints the crawler needs."""

    def __init__(
        self,
        token: str,
        *,
        host: str = DEFAULT_HOST,
        user_agent: str = "yuque-mirror",
        timeout: float = 60.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not token:
            raise YuqueAPIError(
                401,
                "Missing yuque token",
                "See https://www.yuque.com/yuque/developer/api for more detail.",
            )
        self.host = host.rstrip("/")
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._client = httpx.Client(
            base_url=f"{self.host}/api/v2/",
            headers={"X-Auth-Token": token, "User-Agent": user_agent},
            timeout=timeout,
            follow_redirects=True,
            max_redirects=5,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: MirrorSettings, **kwargs: Any) -> YuqueClient:
        return cls(
            settings.token or "",
            host=settings.host,
            user_agent=settings.user_agent,
            timeout=settings.timeout,
            max_retries=settings.max_retries,
            retry_delay=settings.retry_delay,
            **kwargs,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> YuqueClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _send(self, api: str, params: dict[str, Any] | None) -> httpx.Response:
        response = self._client.get(api, params=params)
        if response.status_code == 429 or response.status_code >= 500:
            raise _RetryableStatus(response)
        return response

    def request(self, api: str, params: dict[str, Any] | None = None) -> ApiEnvelope:
        """GET ``api`` and return the decoded envelope, retrying transient failures."""
        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.retry_delay, min=self.retry_delay, max=60),
            retry=retry_if_exception(_is_retryable),
            before_sleep=lambda state: logger.warning(
                "Request %s failed (%s), retrying... (%d/%d)",
                api,
                state.outcome.exception() if state.outcome else "unknown",
                state.attempt_number,
                self.max_retries,
            ),
        )
        try:
            response = retrying(self._send, api, params)
        except RetryError as exc:
            last = exc.last_attempt.exception()
            if isinstance(last, _RetryableStatus):
                raise _status_error(last.response, api) from last
            raise YuqueAPIError(
                0,
                f"Network error after {self.max_retries} retries: {last}",
                "Please check your network connection and try again.",
            ) from last

        if response.status_code != 200:
            raise _status_error(response, api)
        try:
            return ApiEnvelope.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise YuqueAPIError(response.status_code, f"Malformed response from {api}: {exc}") from exc

    def _data(self, api: str, parse: Callable[[Any], Any]) -> Any:
        envelope = self.request(api)
        try:
            return parse(envelope.data)
        except ValidationError as exc:
            raise YuqueAPIError(200, f"Unexpected payload from {api}: {exc}") from exc

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    def get_user(self, user: str = "") -> User:
        api = f"users/{user}" if user else "user"
        return self._data(api, User.model_validate)

    def get_repos(self, user: str) -> list[Repository]:
        return self._data(f"users/{user}/repos", _REPOS_ADAPTER.validate_python)

    def get_repo_detail(self, namespace: str) -> RepositoryDetail:
        return self._data(f"repos/{namespace}", RepositoryDetail.model_validate)

    def get_docs(
        self,
        namespace: str,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> list[DocSummary]:
        """Fetch the full, paginated document list of a repository."""
        docs: list[DocSummary] = []
        offset = 0
        while True:
            envelope = self.request(f"repos/{namespace}/docs", {"offset": offset, "limit": PAGE_SIZE})
            try:
                page = _DOCS_ADAPTER.validate_python(envelope.data or [])
            except ValidationError as exc:
                raise YuqueAPIError(200, f"Unexpected document list for {namespace}: {exc}") from exc
            docs.extend(page)

            total = envelope.total or len(page)
            if on_progress is not None:
                on_progress(len(docs), total)
            if len(docs) >= total or not page:
                break
            offset += PAGE_SIZE
        return docs

    def get_doc_detail(self, namespace: str, slug: str) -> DocDetail:
        return self._data(f"repos/{namespace}/docs/{slug}", DocDetail.model_validate)
