"""
Ledger API client implementation.

The remote ledger owns journal entries in remote mode. The only write this
engine performs is creating a balanced journal entry for a statement line.
"""

import logging

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..schemas.journal import ImbalancedPostingError, JournalLine, validate_journal_lines

logger = logging.getLogger(__name__)

JOURNAL_ENTRIES_ENDPOINT = "/api/v1/journal-entries"


class LedgerError(Exception):
    """Base exception for ledger client errors."""

    pass


class LedgerAPIError(LedgerError):
    """API returned an error response."""

    def __init__(
        self,
        status_code: int,
        message: str,
        response_body: str | None = None,
        errors: dict | None = None,
    ):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        self.errors = errors or {}

        error_details = []
        for field, msgs in self.errors.items():
            if isinstance(msgs, list):
                error_details.extend([f"{field}: {m}" for m in msgs])
            else:
                error_details.append(f"{field}: {msgs}")

        detail_str = "; ".join(error_details) if error_details else message
        super().__init__(f"Ledger API error {status_code}: {detail_str}")

    @property
    def is_imbalance(self) -> bool:
        """The ledger refused the entry because debits and credits differ."""
        text = " ".join([self.message, *map(str, self.errors.values())]).lower()
        return self.status_code == 422 and "balanc" in text


class LedgerConnectionError(LedgerError):
    """Failed to connect to the ledger."""

    pass


class LedgerClient:
    """
    Client for the ledger journal-entry API.

    Features:
    - Create journal entries (balanced line sets only)
    - Fetch a journal entry
    - Transport retry with backoff; POST is only retried when the request
      never reached the server, so an entry is not created twice
    """

    DEFAULT_TIMEOUT = 30

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        """
        Initialize ledger client.

        Args:
            base_url: Ledger API URL (e.g., "http://localhost:8090")
            token: Bearer token
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts
            backoff_factor: Backoff factor for retries
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
                "Content-Type": "application/json",
            }
        )

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def _request(
        self,
        method: str,
        endpoint: str,
        params: dict | None = None,
        json_data: dict | None = None,
    ) -> requests.Response:
        """Make an API request with error handling."""
        url = f"{self.base_url}{endpoint}"
        logger.debug(f"API Request: {method} {url}")

        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                json=json_data,
                timeout=self.timeout,
            )
        except requests.exceptions.ConnectionError as e:
            logger.error(f"Connection error to {url}: {e}")
            raise LedgerConnectionError(
                f"Failed to connect to ledger at {self.base_url}: {e}"
            ) from e
        except requests.exceptions.Timeout as e:
            logger.error(f"Timeout for {url}: {e}")
            raise LedgerConnectionError(f"Request to ledger timed out: {e}") from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Request error for {url}: {e}")
            raise LedgerError(f"Request failed: {e}") from e

        if not response.ok:
            errors: dict = {}
            message = response.reason or "error"
            try:
                error_json = response.json()
            except ValueError:
                error_json = None
            if isinstance(error_json, dict):
                errors = error_json.get("errors") or {}
                message = error_json.get("message") or message

            logger.error(f"API Error {response.status_code}: {message} {errors}")
            raise LedgerAPIError(
                status_code=response.status_code,
                message=message,
                response_body=response.text,
                errors=errors,
            )

        return response

    def create_journal_entry(
        self,
        tenant_id: str,
        entry_date: str,
        lines: list[JournalLine],
        reference: str,
        description: str,
    ) -> int:
        """
        Create a journal entry.

        Returns:
            Ledger journal entry ID

        Raises:
            ImbalancedPostingError: Lines are unbalanced (locally or per the ledger)
            LedgerAPIError: Any other API error
            LedgerConnectionError: Ledger unreachable
        """
        errors = validate_journal_lines(lines)
        if errors:
            raise ImbalancedPostingError(errors)

        payload = {
            "tenant_id": tenant_id,
            "entry_date": entry_date,
            "reference": reference,
            "description": description,
            "lines": [line.to_dict() for line in lines],
        }

        try:
            response = self._request("POST", JOURNAL_ENTRIES_ENDPOINT, json_data=payload)
        except LedgerAPIError as e:
            if e.is_imbalance:
                raise ImbalancedPostingError([e.message]) from e
            raise

        entry_id = int(response.json()["data"]["id"])
        logger.info(f"Created ledger journal entry {entry_id} ({reference})")
        return entry_id

    def get_journal_entry(self, entry_id: int) -> dict | None:
        """Get a journal entry by ID, or None if the ledger does not know it."""
        try:
            response = self._request("GET", f"{JOURNAL_ENTRIES_ENDPOINT}/{entry_id}")
        except LedgerAPIError as e:
            if e.status_code == 404:
                return None
            raise
        return response.json().get("data")
