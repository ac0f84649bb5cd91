"""SourceClient protocol: paged reads of attendance from the SIS."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from attendance_sync.platform.sync.types import DateWindow, SourcePage


@runtime_checkable
class SourceClient(Protocol):
    """Fetches one page of attendance records for one school and window.

    Calls must be idempotent for identical arguments so retries are safe.
    """

    async def fetch_page(
        self,
        school_code: Optional[str],
        window: DateWindow,
        page_token: Optional[str],
        limit: int,
    ) -> SourcePage:
        """Fetch a page of records.

        Args:
            school_code: School to read, or None for every school.
            window: Inclusive date window.
            page_token: Opaque token from the previous page, None for the first.
            limit: Maximum number of records to return.

        Returns:
            The page, with ``next_page_token`` None on the last page.

        Raises:
            TransientSourceError: Retryable failure.
            SourceAuthenticationError: Credentials rejected.
        """
        ...
