"""Cursor-based pagination shared by every list endpoint.

A :class:`Pager` is parametrized only by the endpoint path and a function that
decodes one wire item, so the same state machine serves devices, content files,
subscriptions, device errors and setup records.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from typing import Any, Generic, TypeVar

from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .models import ListQuery, Network, Page, PageEnvelope
from .transport import RequestOptions, Transport

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Pager(Generic[T]):
    """Fetches pages of one resource type.

    Example:
        >>> devices = Pager(transport, "/2022/06/REST/Devices", Device.model_validate)
        >>> for device in devices.all(ListQuery(page_size=100)):
        ...     print(device.serial)

    Attributes:
        path: Endpoint path or absolute URL.
        scoped: Whether the endpoint requires a selected network.
    """

    def __init__(
        self,
        transport: Transport,
        path: str,
        decode: Callable[[dict[str, Any]], T],
        *,
        scoped: bool = True,
    ) -> None:
        self.transport = transport
        self.path = path
        self.decode = decode
        self.scoped = scoped

    def first_page(self, query: ListQuery | None = None) -> Page[T]:
        """Fetch the first page of a listing.

        Any marker on ``query`` is ignored; pagination starts over.
        """
        query = (query or ListQuery()).with_marker(None)
        network = None
        if self.scoped and self.transport.network is not None:
            network = self.transport.network.current_network()
        return self._fetch(query, network)

    def next_page(self, previous: Page[T], query: ListQuery | None = None) -> Page[T]:
        """Fetch the page following ``previous``.

        Raises:
            ValidationError: If ``previous`` is the last page, if ``query`` does
                not have the same filter and sort, or if the selected network
                changed since ``previous`` was fetched.
        """
        if not previous.truncated:
            raise ValidationError.for_field(
                "truncated", previous.truncated, "no more pages after the last page"
            )
        if not previous.marker:
            raise ValidationError.for_field(
                "marker", previous.marker, "truncated page carries no continuation marker"
            )

        base = query or previous.query
        if not base.same_listing(previous.query):
            raise ValidationError.for_field(
                "query",
                base,
                "filter or sort changed; restart pagination with first_page()",
            )

        network = None
        if self.scoped and self.transport.network is not None:
            network = self.transport.network.current_network()
            if previous.network_id is not None and network.id != previous.network_id:
                raise ValidationError.for_field(
                    "network",
                    network.id,
                    "network changed during pagination; restart with first_page()",
                )

        return self._fetch(base.with_marker(previous.marker), network)

    def all(self, query: ListQuery | None = None) -> Iterator[T]:
        """Iterate over every item of a listing, fetching pages lazily.

        Each call starts again from the first page. A failed fetch ends the
        iteration with the error; restart from the beginning to retry.
        """
        page = self.first_page(query)
        yield from page.items
        while page.truncated:
            previous_marker = page.marker
            page = self.next_page(page)
            if page.truncated and page.marker == previous_marker:
                raise ValidationError.for_field(
                    "marker", page.marker, "server repeated the continuation marker"
                )
            yield from page.items

    def to_list(self, query: ListQuery | None = None, *, limit: int | None = None) -> list[T]:
        """Materialize a listing, optionally stopping after ``limit`` items."""
        items: list[T] = []
        for item in self.all(query):
            items.append(item)
            if limit is not None and len(items) >= limit:
                break
        return items

    def _fetch(self, query: ListQuery, network: Network | None) -> Page[T]:
        options = RequestOptions(scoped=self.scoped, network=network)
        body = self.transport.request(
            "GET", self.path, params=query.to_params(), options=options
        )

        try:
            envelope = PageEnvelope.model_validate(body or {})
        except PydanticValidationError as e:
            raise ValidationError(
                f"unexpected list response from {self.path}", code="invalid_response"
            ) from e

        try:
            items = [self.decode(item) for item in envelope.items]
        except PydanticValidationError as e:
            raise ValidationError(
                f"unexpected item in list response from {self.path}",
                code="invalid_response",
                details=str(e),
            ) from e

        logger.debug(
            "Fetched %d items from %s (truncated=%s)",
            len(items),
            self.path,
            envelope.is_truncated,
        )
        return Page(
            items=items,
            total_count=envelope.total_count,
            truncated=envelope.is_truncated,
            marker=envelope.next_marker,
            query=query,
            network_id=network.id if network is not None else None,
        )
