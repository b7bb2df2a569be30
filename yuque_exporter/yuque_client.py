"""Yuque v2 REST API client with retry, rate limiting and error mapping."""

import logging
import time
from typing import Any, Dict, List, Optional, Union
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .errors import (
    ForbiddenError,
    InvalidCredentialError,
    NotFoundError,
    RateLimitedError,
    RemoteClientError,
    TransientServerError,
    TransportError,
)
from .models import RawDocument, SourceConfig, TocNode, assign_depths

logger = logging.getLogger('yuque_exporter.client')

USER_AGENT = 'yuque-exporter/1.0'


class YuqueClient:
    """Yuque REST API client bound to one knowledge base (group/book)."""

    def __init__(
        self,
        token: str,
        group_login: str,
        book_slug: str,
        base_url: str = 'https://www.yuque.com',
        timeout: int = 30,
        max_retries: int = 3,
        retry_backoff_factor: float = 1.0,
        rate_limit: float = 0.0,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the client and its retrying HTTP session.

        Args:
            token: Personal access token sent as ``X-Auth-Token``
            group_login: Owner login of the repository
            book_slug: Repository slug
            base_url: Yuque base URL
            timeout: HTTP request timeout in seconds
            max_retries: Maximum retry attempts for transient errors
            retry_backoff_factor: Exponential backoff factor
            rate_limit: Minimum seconds between requests (0.0 = no rate limiting)
            session: Pre-built session (tests inject a mock here)
        """
        if not token:
            raise ValueError("Yuque client requires an access token")

        self.base_url = base_url.rstrip('/')
        self.group_login = group_login
        self.book_slug = book_slug
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_backoff_factor = retry_backoff_factor
        self.rate_limit = rate_limit
        self.last_request_time = 0.0

        if session is None:
            session = requests.Session()
            retry_strategy = Retry(
                total=max_retries,
                backoff_factor=retry_backoff_factor,
                status_forcelist=[500, 502, 503, 504],
                allowed_methods=["HEAD", "GET", "OPTIONS"],
                raise_on_status=False
            )
            adapter = HTTPAdapter(max_retries=retry_strategy)
            session.mount("http://", adapter)
            session.mount("https://", adapter)

        self.session = session
        self.session.headers.update({
            'X-Auth-Token': token,
            'User-Agent': USER_AGENT,
            'Content-Type': 'application/json',
        })

        logger.debug(f"Client configured for {self.base_url} repo {group_login}/{book_slug} "
                     f"(timeout={timeout}s, max_retries={max_retries}, rate_limit={rate_limit}s)")

    @property
    def repo_path(self) -> str:
        return f"/api/v2/repos/{quote(self.group_login, safe='')}/{quote(self.book_slug, safe='')}"

    def _enforce_rate_limit(self) -> None:
        """Enforce rate limiting if configured."""
        if self.rate_limit <= 0:
            return

        time_since_last = time.time() - self.last_request_time
        if time_since_last < self.rate_limit:
            sleep_time = self.rate_limit - time_since_last
            logger.debug(f"Rate limiting: sleeping for {sleep_time:.2f}s")
            time.sleep(sleep_time)

    def _send(self, url: str, params: Optional[Dict[str, Any]]) -> requests.Response:
        """Single GET with timeout retries (1s, 2s, 4s)."""
        for attempt in range(self.max_retries + 1):
            self._enforce_rate_limit()
            try:
                return self.session.get(url, params=params, timeout=self.timeout)
            except requests.exceptions.Timeout as e:
                if attempt >= self.max_retries:
                    logger.error(f"Request timeout after {attempt + 1} attempts: GET {url}")
                    raise TransientServerError(f"Request timed out: {e}", url=url) from e
                wait_time = 2 ** attempt
                logger.warning(f"Request timeout (attempt {attempt + 1}), retrying in {wait_time}s: {url}")
                time.sleep(wait_time)
            except requests.exceptions.ConnectionError as e:
                logger.error(f"Connection error: GET {url} - {e}")
                raise TransientServerError(f"Network error: {e}", url=url) from e
            except requests.exceptions.RequestException as e:
                logger.error(f"Request error: GET {url} - {e}")
                raise TransportError(f"Request failed: {e}", url=url) from e
            finally:
                self.last_request_time = time.time()

        raise TransientServerError(f"Request failed after retries: {url}", url=url)

    def _make_request(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        GET an API endpoint and return the unwrapped ``data`` payload.

        Args:
            endpoint: API path (e.g. "/api/v2/user")
            params: Query parameters

        Returns:
            The ``data`` member of the JSON envelope (or the whole body if absent)

        Raises:
            InvalidCredentialError: On 401
            ForbiddenError: On 403
            RateLimitedError: On 429 once Retry-After retries are spent
            TransientServerError: On 5xx or timeouts after retries
            NotFoundError: On 404
            RemoteClientError: On other 4xx
        """
        url = f"{self.base_url}{endpoint}"
        start_time = time.time()
        logger.debug(f"API Request: GET {url}")

        response = self._send(url, params)

        retry_count = 0
        while response.status_code == 429 and retry_count < self.max_retries:
            retry_after = response.headers.get('Retry-After', '1')
            try:
                wait_time = int(retry_after)
            except ValueError:
                wait_time = 1

            logger.warning(f"Rate limited (429): attempt {retry_count + 1}/{self.max_retries}, "
                           f"waiting {wait_time}s before retry")
            response.close()
            retry_count += 1
            time.sleep(wait_time)
            response = self._send(url, params)

        logger.debug(f"API Response: {response.status_code} {url} ({time.time() - start_time:.3f}s)")

        status = response.status_code
        if status >= 400:
            detail = self._error_detail(response)
            logger.error(f"HTTP Error {status}: GET {url}{detail}")
            if status == 401:
                raise InvalidCredentialError(f"Access token rejected (401){detail}")
            if status == 403:
                raise ForbiddenError(f"Access denied to {self.group_login}/{self.book_slug} (403){detail}")
            if status == 429:
                raise RateLimitedError(f"Rate limit exceeded after {self.max_retries} retries",
                                       status_code=status, url=url)
            if status >= 500:
                raise TransientServerError(f"Server error {status}{detail}", status_code=status, url=url)
            if status == 404:
                raise NotFoundError(f"Not found: {endpoint}{detail}", status_code=status, url=url)
            raise RemoteClientError(f"Request rejected ({status}){detail}", status_code=status, url=url)

        try:
            payload = response.json()
        except ValueError as e:
            raise RemoteClientError(f"Invalid JSON response from {endpoint}", status_code=status, url=url) from e

        if isinstance(payload, dict) and 'data' in payload:
            return payload['data']
        return payload

    @staticmethod
    def _error_detail(response: requests.Response) -> str:
        try:
            error_json = response.json()
        except ValueError:
            return ''
        if isinstance(error_json, dict):
            message = error_json.get('message') or error_json.get('error')
            if message:
                return f" - {message}"
        return ''

    def validate_credentials(self) -> Dict[str, Any]:
        """
        Check the token and repository access.

        Returns:
            The authenticated user record

        Raises:
            AuthorizationError: If the token is invalid or the repo is forbidden
        """
        user = self._make_request('/api/v2/user')
        self._make_request(self.repo_path)
        login = user.get('login', '?') if isinstance(user, dict) else '?'
        logger.info(f"Authenticated as '{login}' with access to {self.group_login}/{self.book_slug}")
        return user if isinstance(user, dict) else {}

    def fetch_toc(self) -> List[TocNode]:
        """
        Fetch the repository table of contents with depths assigned.

        Returns:
            TocNode list in remote order
        """
        items = self._make_request(f"{self.repo_path}/toc") or []
        nodes = [TocNode.from_api(item) for item in items if isinstance(item, dict)]
        assign_depths(nodes)
        logger.info(f"Fetched {len(nodes)} TOC nodes from {self.group_login}/{self.book_slug}")
        return nodes

    def fetch_document(self, id_or_slug: Union[str, int]) -> RawDocument:
        """
        Fetch one document with all of its bodies.

        Args:
            id_or_slug: Remote document id or slug

        Returns:
            RawDocument
        """
        data = self._make_request(
            f"{self.repo_path}/docs/{quote(str(id_or_slug), safe='')}",
            params={'raw': 1}
        )
        if not isinstance(data, dict):
            raise RemoteClientError(f"Unexpected document payload for {id_or_slug}")
        document = RawDocument.from_api(data)
        logger.debug(f"Fetched document '{document.title}' ({document.format.value})")
        return document

    def close(self) -> None:
        self.session.close()

    @classmethod
    def from_source(cls, source: SourceConfig, config: Optional[Dict[str, Any]] = None) -> 'YuqueClient':
        """
        Initialize a client from a SourceConfig and the ``advanced`` config section.

        Args:
            source: Source connection settings
            config: Full configuration dictionary

        Returns:
            YuqueClient instance
        """
        advanced_config = (config or {}).get('advanced', {})

        return cls(
            token=source.token,
            group_login=source.group_login,
            book_slug=source.book_slug,
            base_url=source.base_url,
            timeout=advanced_config.get('request_timeout', 30),
            max_retries=advanced_config.get('max_retries', 3),
            retry_backoff_factor=advanced_config.get('retry_backoff_factor', 1.0),
            rate_limit=advanced_config.get('rate_limit', 0.0)
        )


__all__ = ['YuqueClient', 'USER_AGENT']
