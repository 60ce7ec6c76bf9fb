"""Business logic for reading delegations."""

from __future__ import annotations

import logging

from .errors import ValidationError
from .model import Delegation, DelegationRepositoryPort
from .repository import NoDelegationsError

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 1000
MIN_YEAR = 2018
MAX_YEAR = 2100


class DelegationService:
    """Validates paging requests and reads delegations from a repository."""

    def __init__(self, repo: DelegationRepositoryPort) -> None:
        self.repo = repo

    @staticmethod
    def _validate_pagination(page_no: int, page_size: int) -> None:
        if page_no < 1:
            raise ValidationError("pageNo", f"must be positive, got {page_no}")
        if page_size < 1:
            raise ValidationError("pageSize", f"must be positive, got {page_size}")
        if page_size > MAX_PAGE_SIZE:
            raise ValidationError(
                "pageSize", f"cannot exceed {MAX_PAGE_SIZE}, got {page_size}"
            )

    @staticmethod
    def _validate_year(year: int | None) -> None:
        if year is not None and not MIN_YEAR <= year <= MAX_YEAR:
            raise ValidationError(
                "year", f"must be between {MIN_YEAR} and {MAX_YEAR}, got {year}"
            )

    def get_delegations(
        self, page_no: int, page_size: int, year: int | None
    ) -> list[Delegation]:
        """Return page ``page_no`` of delegations, optionally for one year.

        An empty page yields an empty list; invalid input raises ValidationError.
        """
        try:
            self._validate_pagination(page_no, page_size)
        except ValidationError as err:
            logger.warning(
                "Invalid pagination parameters: %s (pageNo=%s, pageSize=%s)",
                err, page_no, page_size,
            )
            raise
        try:
            self._validate_year(year)
        except ValidationError as err:
            logger.warning("Invalid year parameter: %s (year=%s)", err, year)
            raise

        offset = (page_no - 1) * page_size
        try:
            delegations = self.repo.list_delegations(page_size, offset, year)
        except NoDelegationsError:
            logger.info(
                "No delegations found (pageNo=%s, pageSize=%s, year=%s)",
                page_no, page_size, year,
            )
            return []
        except Exception:
            logger.exception(
                "Repository error in get_delegations (pageNo=%s, pageSize=%s, year=%s)",
                page_no, page_size, year,
            )
            raise

        logger.debug(
            "Retrieved %d delegations (pageNo=%s, pageSize=%s, year=%s)",
            len(delegations), page_no, page_size, year,
        )
        return list(delegations)