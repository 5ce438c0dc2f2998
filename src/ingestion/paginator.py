"""Consistent multi-page snapshot assembly."""

import threading
from dataclasses import dataclass
from typing import Annotated, Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.fetch.client import HttpFetcher
from src.fetch.constants import HEADER_PAGES
from src.fetch.errors import FetchFailedError, InconsistentPaginationError
from src.fetch.redact import redact_url
from src.ingestion.constants import COMPONENT_PAGINATOR, DEFAULT_CONSISTENCY_ATTEMPTS
from src.ingestion.models import OrderSelector, RawOrder, Snapshot, SnapshotRecord


logger = structlog.get_logger()


class PaginationConfig(BaseModel):
    """Configuration for paginated snapshot passes."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    consistency_attempts: Annotated[int, Field(ge=1, le=10)] = (
        DEFAULT_CONSISTENCY_ATTEMPTS
    )
    max_pages: int | None = Field(default=None, ge=1)


@dataclass(frozen=True)
class PageResult:
    """Body and freshness token of one fetched page."""

    number: int
    last_modified: str | None
    body: Any
    page_count_header: str | None = None


class PageBodyMemo:
    """Remembers the last page seen for each page URL, keyed by ETag.

    The cache store keeps validators only, so a 304 page is resolved against
    the body and page count this process received with the same ETag.
    """

    def __init__(self) -> None:
        self._pages: dict[str, tuple[str, PageResult]] = {}
        self._lock = threading.Lock()

    def remember(self, key: str, etag: str | None, page: PageResult) -> None:
        """Store a page; pages without an ETag are forgotten."""
        with self._lock:
            if etag is None:
                self._pages.pop(key, None)
            else:
                self._pages[key] = (etag, page)

    def recall(self, key: str, etag: str | None) -> PageResult | None:
        """Return the page stored for ``key`` under the same ETag, else None."""
        if etag is None:
            return None
        with self._lock:
            stored = self._pages.get(key)
        if stored is None or stored[0] != etag:
            return None
        return stored[1]


def parse_page_count(value: str | None) -> int:
    """Parse the declared page count; absent or invalid values mean 1."""
    if value is None:
        return 1
    try:
        pages = int(value.strip())
    except ValueError:
        return 1
    return max(pages, 1)


class PaginatedSnapshotFetcher:
    """Assembles one internally consistent snapshot of a paginated resource.

    Pages are fetched strictly in order, never in parallel, so rate-limit
    usage stays bounded and the freshness comparison stays meaningful.
    Every page must report the ``Last-Modified`` token of page 1; a pass that
    breaks this is discarded and the whole pass, page 1 included, is retried.
    """

    def __init__(
        self,
        fetcher: HttpFetcher,
        config: PaginationConfig | None = None,
    ) -> None:
        """Initialize the paginator.

        Args:
            fetcher: Breaker-bearing client of the endpoint.
            config: Pass configuration; defaults apply when omitted.
        """
        self._fetcher = fetcher
        self._config = config or PaginationConfig()
        self._memo = PageBodyMemo()
        self._log = logger.bind(component=COMPONENT_PAGINATOR)

    @property
    def fetcher(self) -> HttpFetcher:
        """Get the underlying fetcher."""
        return self._fetcher

    def fetch_consistent_snapshot(
        self,
        base_url: str,
        selector: OrderSelector,
        max_pages: int | None = None,
    ) -> Snapshot:
        """Fetch every page and return one consistent snapshot.

        Args:
            base_url: URL of the paginated resource.
            selector: Filter applied to the combined records.
            max_pages: Optional cap on the number of pages read.

        Returns:
            Snapshot built from a single consistent pass, or a page-1-only
            snapshot with ``fallback_used=True`` when no pass was consistent.

        Raises:
            CircuitOpenError: The endpoint breaker is open.
            FetchFailedError: A page could not be fetched.
        """
        page_cap = max_pages if max_pages is not None else self._config.max_pages
        log = self._log.bind(url=redact_url(base_url))

        for attempt in range(self._config.consistency_attempts):
            try:
                pages = self._run_pass(base_url, page_cap)
            except InconsistentPaginationError as e:
                log.warning(
                    "pagination_inconsistent",
                    attempt=attempt + 1,
                    page=e.page,
                    expected_last_modified=e.expected,
                    actual_last_modified=e.actual,
                )
                continue

            log.info(
                "pagination_consistent",
                attempt=attempt + 1,
                pages=len(pages),
                last_modified=pages[0].last_modified,
            )
            return self._build_snapshot(pages, selector, fallback_used=False)

        log.warning(
            "pagination_fallback",
            attempts=self._config.consistency_attempts,
        )
        first = self._fetch_page(base_url, 1)
        return self._build_snapshot([first], selector, fallback_used=True)

    def _run_pass(self, base_url: str, page_cap: int | None) -> list[PageResult]:
        """Fetch pages 1..N of one pass.

        Raises:
            InconsistentPaginationError: A page disagreed with page 1.
        """
        first = self._fetch_page(base_url, 1)
        total = parse_page_count(first.page_count_header)
        if page_cap is not None:
            total = min(total, page_cap)
        target = first.last_modified

        pages = [first]
        for number in range(2, total + 1):
            page = self._fetch_page(base_url, number)
            if page.last_modified != target:
                raise InconsistentPaginationError(number, target, page.last_modified)
            pages.append(page)
        return pages

    def _fetch_page(self, base_url: str, number: int) -> PageResult:
        """Fetch one page, resolving 304 responses to a known body.

        Raises:
            FetchFailedError: The page answered with neither 2xx nor 304.
        """
        query = {"page": number}
        memo_key = f"{base_url}#page={number}"
        result = self._fetcher.fetch_json(base_url, query)

        if result.is_not_modified:
            known = self._memo.recall(memo_key, result.etag)
            if known is not None:
                return PageResult(
                    number=number,
                    last_modified=result.last_modified,
                    body=known.body,
                    page_count_header=result.headers.get(HEADER_PAGES)
                    or known.page_count_header,
                )
            self._log.debug("page_body_unknown_refetch", page=number)
            result = self._fetcher.fetch_json(base_url, query, conditional=False)

        if not result.is_success:
            msg = f"Unexpected status {result.status_code} for page {number}"
            raise FetchFailedError(
                msg,
                url=redact_url(result.url),
                status_code=result.status_code,
            )

        fetched = PageResult(
            number=number,
            last_modified=result.last_modified,
            body=result.body,
            page_count_header=result.headers.get(HEADER_PAGES),
        )
        self._memo.remember(memo_key, result.etag, fetched)
        return fetched

    def _build_snapshot(
        self,
        pages: list[PageResult],
        selector: OrderSelector,
        *,
        fallback_used: bool,
    ) -> Snapshot:
        """Filter the combined orders and stamp one snapshot timestamp."""
        snapshot_ts = self._fetcher.clock.now()
        records: list[SnapshotRecord] = []
        invalid = 0

        for page in pages:
            if not isinstance(page.body, list):
                continue
            for raw in page.body:
                try:
                    order = RawOrder.model_validate(raw)
                except ValidationError:
                    invalid += 1
                    continue
                if selector.matches(order):
                    records.append(
                        SnapshotRecord.from_order(order, selector.region_id, snapshot_ts)
                    )

        if invalid:
            self._log.warning("invalid_orders_skipped", count=invalid)

        return Snapshot(
            records=tuple(records),
            last_modified=pages[0].last_modified,
            fetched_at=snapshot_ts,
            fallback_used=fallback_used,
            pages_fetched=len(pages),
        )
