"""N-central API client: resilient request executor and collection pager."""

import threading
import time
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote

import requests

from common.config import NCentralConfig
from common.logging import get_logger

from .mapping import unwrap_page

ORGANIZATIONS_PATH = '/customers'
SUB_UNITS_PATH = '/customers/{org_id}/sites'
DEVICES_PATH = '/devices'
SERVICE_STATUS_PATH = '/devices/{device_id}/service-monitor-status'
TASK_PATH = '/appliance-tasks/{task_id}'


class NCentralAPIError(Exception):
    """Base error for failed N-central API calls."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class UnauthorizedError(NCentralAPIError):
    """The access token was rejected (HTTP 401). Never retried."""


class RequestFailedError(NCentralAPIError):
    """Non-retryable HTTP status or transport failure."""


class RetriesExhaustedError(NCentralAPIError):
    """A retryable failure persisted for every allowed attempt."""

    def __init__(self, status_code: int, attempts: int, url: str):
        super().__init__(
            f"Giving up on {url} after {attempts} attempts (last status {status_code})",
            status_code=status_code,
        )
        self.attempts = attempts
        self.url = url


class ScanCancelled(Exception):
    """The caller cancelled the scan."""


def is_retryable_status(status_code: int) -> bool:
    """Rate limiting and server errors are worth another attempt."""
    return status_code == 429 or 500 <= status_code < 600


class NCentralAPI:
    """N-central REST API client used for patch status collection."""

    def __init__(
        self,
        config: NCentralConfig,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        cancel_event: Optional[threading.Event] = None,
    ):
        """
        Initialize the API client.

        Args:
            config: Connection settings including the bearer access token
            session: Optional pre-built requests session
            sleep: Function used to wait between retries
            cancel_event: Event that, once set, aborts pending back-off waits
        """
        self.logger = get_logger(__name__)
        self.base_url = config.base_url.rstrip('/')
        self.timeout = config.timeout
        self.max_retries = max(1, config.max_retries)
        self.page_size = config.page_size
        self.max_pages = config.max_pages
        self.sleep = sleep
        self.cancel_event = cancel_event
        self.warnings: List[str] = []

        self.session = session or requests.Session()
        self.session.headers.update({
            'Authorization': f'Bearer {config.access_token}',
            'Accept': 'application/json',
        })

    def close(self) -> None:
        """Release pooled connections."""
        self.session.close()

    def build_url(self, path: str, params: Optional[Dict[str, Any]] = None) -> str:
        """
        Build the full request URL.

        Each query key and value is percent-encoded on its own before the
        pairs are joined with '&'. Parameters set to None are omitted.
        """
        url = f"{self.base_url}/api/{path.lstrip('/')}"
        if params:
            query = '&'.join(
                f"{quote(str(key), safe='')}={quote(str(value), safe='')}"
                for key, value in params.items()
                if value is not None
            )
            if query:
                url = f"{url}?{query}"
        return url

    def check_cancelled(self) -> None:
        """Raise ScanCancelled if the caller asked to stop."""
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise ScanCancelled("Scan cancelled")

    def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Issue one API call with status classification and retry.

        Args:
            method: HTTP method
            path: Path below {base_url}/api
            params: Query parameters
            body: Optional JSON body

        Returns:
            Decoded JSON body for 2xx responses, None for 404 or an empty body

        Raises:
            UnauthorizedError: on 401
            RetriesExhaustedError: when 429/5xx persists for max_retries attempts
            RequestFailedError: on any other error status or transport failure
            ScanCancelled: when cancelled while waiting to retry
        """
        url = self.build_url(path, params)

        for attempt in range(1, self.max_retries + 1):
            self.logger.debug(f"Request: {method} {url} (attempt {attempt}/{self.max_retries})")

            try:
                response = self.session.request(method, url, json=body, timeout=self.timeout)
            except requests.exceptions.RequestException as e:
                raise RequestFailedError(f"{method} {url} failed: {e}") from e

            status_code = response.status_code

            if 200 <= status_code < 300:
                return self._decode(response, url)

            if status_code == 404:
                self.logger.debug(f"Not found: {url}")
                return None

            if status_code == 401:
                raise UnauthorizedError(
                    "N-central rejected the access token (HTTP 401). "
                    "Refresh NCENTRAL_ACCESS_TOKEN and run again.",
                    status_code=status_code,
                )

            if not is_retryable_status(status_code):
                raise RequestFailedError(
                    f"{method} {url} returned HTTP {status_code}: {response.text[:200]}",
                    status_code=status_code,
                )

            if attempt >= self.max_retries:
                break

            wait_time = 2 ** (attempt - 1)
            self.logger.warning(
                f"HTTP {status_code} from {url} (attempt {attempt}/{self.max_retries}), "
                f"retrying in {wait_time} seconds"
            )
            self.check_cancelled()
            self.sleep(wait_time)

        raise RetriesExhaustedError(status_code, attempt, url)

    def _decode(self, response: requests.Response, url: str) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise RequestFailedError(
                f"Invalid JSON response from {url}: {e}. Response: {response.text[:200]}",
                status_code=response.status_code,
            ) from e

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET shortcut for request()."""
        return self.request('GET', path, params=params)

    def fetch_all(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        page_size: Optional[int] = None,
        max_pages: Optional[int] = None,
    ) -> List[Any]:
        """
        Page through a collection endpoint until the server signals the end.

        Pagination stops when the reported total has been reached, when a
        page comes back shorter than page_size, when a page is empty or
        absent, or after max_pages pages. Hitting max_pages is recorded as a
        warning and the items collected so far are returned.

        Args:
            path: Collection path below {base_url}/api
            params: Extra query parameters sent with every page
            page_size: Items requested per page
            max_pages: Maximum number of pages to request

        Returns:
            list: Items in the order they arrived
        """
        page_size = page_size or self.page_size
        max_pages = max_pages or self.max_pages

        items: List[Any] = []
        page_number = 1

        while True:
            query = dict(params or {})
            query['pageSize'] = page_size
            query['pageNumber'] = page_number

            response = self.get(path, params=query)
            if response is None:
                break

            page_items, total = unwrap_page(response)
            if not page_items:
                break

            items.extend(page_items)
            self.logger.debug(f"{path} page {page_number}: {len(page_items)} items (total: {len(items)})")

            if total is not None and len(items) >= total:
                break

            if len(page_items) < page_size:
                break

            if page_number >= max_pages:
                message = (
                    f"Stopped paging {path} after {max_pages} pages "
                    f"({len(items)} items); results may be incomplete"
                )
                self.logger.warning(message)
                self.warnings.append(message)
                break

            page_number += 1

        return items

    def get_organizations(self) -> List[Dict[str, Any]]:
        """Get all customers."""
        return self.fetch_all(ORGANIZATIONS_PATH)

    def get_sub_units(self, org_id: int) -> List[Dict[str, Any]]:
        """Get the sites of one customer; a customer without sites yields []."""
        return self.fetch_all(SUB_UNITS_PATH.format(org_id=org_id))

    def get_devices(self, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Get devices, optionally narrowed by server-side filter parameters."""
        return self.fetch_all(DEVICES_PATH, params=params)

    def get_service_states(self, device_id: int) -> List[Dict[str, Any]]:
        """Get the monitored-service states of one device."""
        return self.fetch_all(SERVICE_STATUS_PATH.format(device_id=device_id))

    def get_task(self, task_id: str) -> Optional[Dict[str, Any]]:
        """Get one task's detail record, or None when it does not exist."""
        return self.get(TASK_PATH.format(task_id=quote(str(task_id), safe='')))
