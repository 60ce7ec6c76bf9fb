"""HTTP interface for reading delegations."""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

from flask import Flask, Response, jsonify, request

from .errors import is_database_error, is_validation_error
from .model import Delegation, DelegationServicePort

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 1000
MIN_YEAR = 2018
MAX_PARAM_LEN = 10

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "default-src 'self'",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
}

_INTEGER = re.compile(r"[+-]?[0-9]+")


@dataclass(frozen=True)
class DelegationDto:
    """A delegation as it appears in API responses."""

    timestamp: str
    amount: str
    delegator: str
    level: str


def _format_rfc3339(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    utc = moment.astimezone(timezone.utc)
    return (
        f"{utc.year:04d}-{utc.month:02d}-{utc.day:02d}"
        f"T{utc.hour:02d}:{utc.minute:02d}:{utc.second:02d}Z"
    )


def to_delegation_dto(delegation: Delegation) -> DelegationDto:
    """Convert a delegation to its response form."""
    return DelegationDto(
        timestamp=_format_rfc3339(delegation.timestamp),
        amount=str(delegation.amount),
        delegator=delegation.delegator,
        level=str(delegation.level),
    )


class _BadParameter(Exception):
    """A query parameter was rejected; the message goes to the client."""


def _parse_int(text: str) -> int:
    if not _INTEGER.fullmatch(text):
        raise ValueError(f"not an integer: {text!r}")
    return int(text)


def _error_response(status: int, message: str) -> tuple[Response, int]:
    return jsonify({"error": message}), status


class DelegationHandler:
    """Serves GET /xtz/delegations."""

    def __init__(self, service: DelegationServicePort) -> None:
        self.service = service

    @staticmethod
    def _pagination(args: Any) -> tuple[int, int]:
        page = 1
        if "page" in args:
            page_text = args.get("page", "")
            if len(page_text) > MAX_PARAM_LEN:
                logger.warning("Page parameter too long: %s", page_text)
                raise _BadParameter("Invalid page parameter: too long")
            try:
                page = _parse_int(page_text)
            except ValueError:
                page = 0
            if page < 1:
                logger.warning("Invalid page parameter: %s", page_text)
                raise _BadParameter(
                    "Invalid page parameter: must be a positive integer"
                )

        page_size = DEFAULT_PAGE_SIZE
        if "pageSize" in args:
            size_text = args.get("pageSize", "")
            if len(size_text) > MAX_PARAM_LEN:
                logger.warning("PageSize parameter too long: %s", size_text)
                raise _BadParameter("Invalid pageSize parameter: too long")
            try:
                page_size = _parse_int(size_text)
            except ValueError:
                page_size = 0
            if not 1 <= page_size <= MAX_PAGE_SIZE:
                logger.warning("Invalid pageSize parameter: %s", size_text)
                raise _BadParameter(
                    "Invalid pageSize parameter: must be between 1 and 1000"
                )

        return page, page_size

    @staticmethod
    def _year(args: Any) -> int | None:
        year_text = args.get("year", "")
        if not year_text:
            return None
        if len(year_text) > MAX_PARAM_LEN:
            logger.warning("Year parameter too long: %s", year_text)
            raise _BadParameter("Invalid year parameter: too long")
        try:
            year = _parse_int(year_text)
        except ValueError:
            year = None
        if year is None or year < MIN_YEAR:
            logger.warning("Invalid year parameter: %s", year_text)
            raise _BadParameter(
                "Invalid year parameter: must be a valid year from 2018 onwards"
            )
        return year

    def get_delegations(self) -> tuple[Response, int]:
        """Handle one request for a page of delegations."""
        try:
            page, page_size = self._pagination(request.args)
            year = self._year(request.args)
        except _BadParameter as bad:
            return _error_response(400, str(bad))

        try:
            delegations = self.service.get_delegations(page, page_size, year)
        except Exception as err:
            if is_validation_error(err):
                status, message = 400, "Invalid request parameters"
                log_message = "Validation error in get_delegations"
            elif is_database_error(err):
                status, message = 500, "Database error"
                log_message = "Database error in get_delegations"
            else:
                status, message = 500, "Internal server error"
                log_message = "Unexpected error in get_delegations"
            logger.error("%s: %s (user_message=%s)", log_message, err, message)
            return _error_response(status, message)

        data = [asdict(to_delegation_dto(d)) for d in delegations]
        return jsonify({"data": data}), 200


def create_app(handler: DelegationHandler) -> Flask:
    """Build the web application with its routes and security headers."""
    app = Flask("xtzdelegations")
    app.json.sort_keys = False

    @app.after_request
    def _add_security_headers(response: Response) -> Response:
        for name, value in SECURITY_HEADERS.items():
            response.headers[name] = value
        return response

    app.add_url_rule(
        "/xtz/delegations",
        "get_delegations",
        handler.get_delegations,
        methods=["GET"],
    )
    return app