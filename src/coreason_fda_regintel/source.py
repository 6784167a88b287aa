# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fda_regintel

"""Source module for downloading the FDA Orange Book and Purple Book datasets."""

import hashlib
import io
import time
import zipfile
from collections.abc import Callable, Iterator
from datetime import date, timezone
from email.utils import parsedate_to_datetime
from typing import Final, Optional

import requests
from loguru import logger
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from coreason_fda_regintel.bronze.models import OrangeBookRaw, PurpleBookRaw
from coreason_fda_regintel.config import RegIntelConfig
from coreason_fda_regintel.exceptions import AcquisitionError, SourceConnectionError, SourceSchemaError

MONTH_NAMES: Final[tuple[str, ...]] = (
    "january",
    "february",
    "march",
    "april",
    "may",
    "june",
    "july",
    "august",
    "september",
    "october",
    "november",
    "december",
)

RETRYABLE_STATUS: Final[frozenset[int]] = frozenset({429, 500, 502, 503, 504})
ZIP_MAGIC: Final[bytes] = b"PK"

# Raised by iter_content when the connection drops after the headers arrived
BODY_READ_ERRORS: Final[tuple[type[Exception], ...]] = (
    requests.exceptions.ChunkedEncodingError,
    requests.exceptions.ContentDecodingError,
    requests.ConnectionError,
)


def calculate_hash(content: bytes) -> str:
    """
    Calculate the MD5 hash of a downloaded payload.

    Args:
        content: Raw bytes.

    Returns:
        The MD5 hex digest.
    """
    return hashlib.md5(content).hexdigest()


def _read_body(response: requests.Response) -> bytes:
    buffer = io.BytesIO()
    for chunk in response.iter_content(chunk_size=RegIntelConfig.CHUNK_SIZE):
        buffer.write(chunk)
    return buffer.getvalue()


def iter_months_back(start: date, count: int) -> Iterator[tuple[int, int]]:
    """Yield (year, month) pairs from ``start``'s month backwards, ``count`` months in total."""
    year, month = start.year, start.month
    for _ in range(count):
        yield year, month
        month -= 1
        if month == 0:
            year, month = year - 1, 12


class FdaBookSource:
    """Fetches raw Orange Book and Purple Book payloads with bounded retries."""

    def __init__(
        self,
        orange_book_url: str = RegIntelConfig.ORANGE_BOOK_URL,
        purple_book_url_template: str = RegIntelConfig.PURPLE_BOOK_URL_TEMPLATE,
        max_retries: int = RegIntelConfig.MAX_RETRIES,
        backoff_base: float = RegIntelConfig.BACKOFF_BASE,
        max_lookback_months: int = RegIntelConfig.MAX_LOOKBACK_MONTHS,
        timeout: int = RegIntelConfig.REQUEST_TIMEOUT,
        today: Callable[[], date] = date.today,
    ) -> None:
        """
        Initialize the source.

        Args:
            orange_book_url: URL of the Orange Book ZIP archive.
            purple_book_url_template: Purple Book URL with ``{year}`` and ``{month}`` placeholders.
            max_retries: Attempts per URL before giving up.
            backoff_base: Seconds for the first backoff; doubled on every further attempt.
            max_lookback_months: How many months to probe backwards for the Purple Book.
            timeout: Per-request timeout in seconds.
            today: Clock used to pick the starting month.
        """
        self.orange_book_url = orange_book_url
        self.purple_book_url_template = purple_book_url_template
        self.max_retries = max(1, max_retries)
        self.backoff_base = backoff_base
        self.max_lookback_months = max_lookback_months
        self.timeout = timeout
        self.today = today
        self.session = self._create_session()

    def _create_session(self) -> requests.Session:
        """Create a requests session that retries connection failures and transient statuses."""
        session = requests.Session()
        retry_strategy = Retry(
            total=self.max_retries - 1,
            backoff_factor=self.backoff_base,
            status_forcelist=sorted(RETRYABLE_STATUS),
            allowed_methods=["GET"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    def download(self, url: str) -> tuple[bytes, dict[str, str]]:
        """
        Download a URL into memory.

        Connection failures and transient statuses are retried by the session adapter.
        A body that breaks off mid-stream is fetched again here with exponential backoff.

        Args:
            url: The resource to fetch.

        Returns:
            The body bytes and the response headers.

        Raises:
            SourceSchemaError: If the resource does not exist (404) or returns a non-retryable status.
            SourceConnectionError: If the request or every body read failed.
        """
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries):
            if attempt:
                backoff = self.backoff_base * (2 ** (attempt - 1))
                logger.warning(f"Retry {attempt}/{self.max_retries - 1} for {url} after {backoff:.1f}s: {last_error}")
                time.sleep(backoff)

            logger.debug(f"Downloading {url}")
            try:
                with self.session.get(url, stream=True, timeout=self.timeout) as response:
                    response.raise_for_status()
                    headers = dict(response.headers or {})
                    try:
                        content = _read_body(response)
                    except BODY_READ_ERRORS as e:
                        last_error = e
                        continue
                logger.info(f"Downloaded {len(content) / 1024:.0f} KB from {url}")
                return content, headers
            except requests.HTTPError as e:
                status = e.response.status_code if e.response is not None else None
                if status == 404:
                    logger.debug(f"Resource not found (404): {url}")
                    raise SourceSchemaError(f"Resource not found: {url}") from e
                logger.error(f"HTTP error downloading {url}: {e}")
                raise SourceSchemaError(f"HTTP error downloading {url}: {e}") from e
            except requests.RequestException as e:
                logger.error(f"Failed to download {url}: {e}")
                raise SourceConnectionError(f"Failed to download from {url}: {e}") from e

        logger.error(f"Giving up on {url} after {self.max_retries} attempts: {last_error}")
        raise SourceConnectionError(f"Failed to download from {url} after {self.max_retries} attempts: {last_error}")

    def fetch_orange_book(self) -> OrangeBookRaw:
        """
        Download the Orange Book archive and extract its three data files.

        Returns:
            The decoded products, patent and exclusivity texts.

        Raises:
            AcquisitionError: If the archive cannot be fetched or lacks a required member.
        """
        logger.info(f"Fetching Orange Book from {self.orange_book_url}")
        content, headers = self.download(self.orange_book_url)
        members = extract_orange_book_members(content)
        return OrangeBookRaw(
            products=members[RegIntelConfig.FILE_PRODUCTS],
            patents=members[RegIntelConfig.FILE_PATENTS],
            exclusivity=members[RegIntelConfig.FILE_EXCLUSIVITY],
            source_date=_published_date(headers, self.today()),
            source_hash=calculate_hash(content),
        )

    def fetch_purple_book(self) -> PurpleBookRaw:
        """
        Probe monthly Purple Book files backwards from the current month.

        Returns:
            The newest spreadsheet that could be downloaded.

        Raises:
            AcquisitionError: If no month within the lookback window is available.
        """
        last_error: Optional[Exception] = None

        for year, month in iter_months_back(self.today(), self.max_lookback_months):
            url = self.purple_book_url_template.format(year=year, month=MONTH_NAMES[month - 1])
            try:
                content, _ = self.download(url)
            except AcquisitionError as e:
                last_error = e
                continue

            if not content.startswith(ZIP_MAGIC):
                # The FDA site answers unpublished months with an HTML page
                logger.debug(f"Skipping {url}: payload is not a spreadsheet")
                last_error = SourceSchemaError(f"Not an xlsx payload: {url}")
                continue

            logger.info(f"Using Purple Book for {year}-{month:02d}")
            return PurpleBookRaw(
                content=content,
                source_month=f"{year}-{month:02d}",
                source_url=url,
                source_hash=calculate_hash(content),
            )

        logger.error(f"No Purple Book found in the last {self.max_lookback_months} months")
        raise AcquisitionError(
            f"No Purple Book available in the last {self.max_lookback_months} months. Last error: {last_error}"
        )


def extract_orange_book_members(content: bytes) -> dict[str, str]:
    """
    Read the products, patent and exclusivity members of an in-memory Orange Book ZIP.

    Args:
        content: ZIP archive bytes.

    Returns:
        Mapping of canonical member name to decoded text.

    Raises:
        SourceSchemaError: If the payload is not a ZIP or a member is missing.
    """
    wanted = (RegIntelConfig.FILE_PRODUCTS, RegIntelConfig.FILE_PATENTS, RegIntelConfig.FILE_EXCLUSIVITY)
    found: dict[str, str] = {}

    try:
        with zipfile.ZipFile(io.BytesIO(content)) as archive:
            for member in archive.infolist():
                basename = member.filename.replace("\\", "/").rsplit("/", 1)[-1].lower()
                if basename in wanted and basename not in found:
                    raw = archive.read(member)
                    found[basename] = raw.decode(RegIntelConfig.ENCODING, errors=RegIntelConfig.ENCODING_ERRORS)
                    logger.info(f"Found {basename} ({len(raw) / 1024:.0f} KB)")
    except zipfile.BadZipFile as e:
        logger.error(f"Invalid ZIP payload: {e}")
        raise SourceSchemaError("Orange Book payload is not a valid ZIP archive.") from e

    missing = [name for name in wanted if name not in found]
    if missing:
        logger.error(f"Orange Book archive is missing {missing}")
        raise SourceSchemaError(f"Orange Book archive is missing required files: {', '.join(missing)}")
    return found


def _published_date(headers: dict[str, str], fallback: date) -> str:
    """Use the Last-Modified header as the dataset date when the server sends one."""
    value = next((v for k, v in headers.items() if k.lower() == "last-modified"), None)
    if value:
        try:
            return parsedate_to_datetime(value).astimezone(timezone.utc).date().isoformat()
        except (TypeError, ValueError):
            logger.debug(f"Unparsable Last-Modified header: {value}")
    return fallback.isoformat()
