"""In-process REST dispatcher.

Serves ``/wp/v2`` routes from a ContentStore so that aliased tools run
against the same API surface whichever store is configured.
"""

import re
from typing import Any, Callable, Optional

from shared.logging import get_logger
from cms.base import (
    API_ROOT,
    BackingApi,
    BackingApiRequest,
    BackingApiResponse,
    ContentError,
    ContentStore,
)

logger = get_logger(__name__)

_COLLECTIONS = r"(?P<collection>posts|pages|categories|tags)"

Route = tuple[re.Pattern, Callable[..., BackingApiResponse]]

# Parameters that steer the request rather than carry content
CONTROL_PARAMS = frozenset({"id", "force", "context", "_method"})


def _no_route(request: BackingApiRequest) -> BackingApiResponse:
    return BackingApiResponse.from_error(ContentError(
        "rest_no_route",
        "No route was found matching the URL and request method.",
        404
    ))


class RestDispatcher(BackingApi):
    """Routes backing API requests to ContentStore verbs."""

    def __init__(self, store: ContentStore) -> None:
        self.store = store
        root = re.escape(API_ROOT)
        self._routes: list[Route] = [
            (re.compile(rf"^{root}/(?P<collection>posts|pages)/(?P<parent>\d+)/meta/?$"), self._meta_collection),
            (re.compile(rf"^{root}/(?P<collection>posts|pages)/(?P<parent>\d+)/meta/(?P<id>\d+)/?$"), self._meta_item),
            (re.compile(rf"^{root}/taxonomies/?$"), self._taxonomies),
            (re.compile(rf"^{root}/taxonomies/(?P<slug>[\w-]+)/?$"), self._taxonomy),
            (re.compile(rf"^{root}/{_COLLECTIONS}/?$"), self._collection),
            (re.compile(rf"^{root}/{_COLLECTIONS}/(?P<id>\d+)/?$"), self._item),
        ]

    def dispatch(self, request: BackingApiRequest) -> BackingApiResponse:
        path = request.route.split("?", 1)[0]
        method = "GET" if request.method == "HEAD" else request.method

        for pattern, handler in self._routes:
            match = pattern.match(path)
            if match is None:
                continue
            try:
                response = handler(method, request, **match.groupdict())
            except ContentError as e:
                logger.debug("Backing API error", route=path, code=e.code, status=e.status)
                return BackingApiResponse.from_error(e)
            if response is None:
                break
            return response

        logger.debug("No backing route", method=request.method, route=path)
        return _no_route(request)

    @staticmethod
    def _fields(params: dict[str, Any]) -> dict[str, Any]:
        return {k: v for k, v in params.items() if k not in CONTROL_PARAMS}

    def _collection(self, method: str, request: BackingApiRequest, collection: str) -> Optional[BackingApiResponse]:
        if method == "GET":
            page = self.store.list_items(collection, request.params)
            return BackingApiResponse(status=200, data=page.items)
        if method == "POST":
            author = request.principal.id if request.principal else None
            item = self.store.create_item(collection, self._fields(request.params), author=author)
            return BackingApiResponse(status=201, data=item)
        return None

    def _item(self, method: str, request: BackingApiRequest, collection: str, id: str) -> Optional[BackingApiResponse]:
        item_id = int(id)
        if method == "GET":
            return BackingApiResponse(data=self.store.get_item(collection, item_id))
        if method in ("POST", "PUT", "PATCH"):
            return BackingApiResponse(data=self.store.update_item(collection, item_id, self._fields(request.params)))
        if method == "DELETE":
            force = request.params.get("force", False)
            return BackingApiResponse(data=self.store.delete_item(collection, item_id, force=force))
        return None

    def _meta_collection(
        self,
        method: str,
        request: BackingApiRequest,
        collection: str,
        parent: str
    ) -> Optional[BackingApiResponse]:
        params = request.params
        if method == "GET":
            return BackingApiResponse(data=self.store.list_meta(collection, int(parent), key=params.get("key")))
        if method == "POST":
            meta = self.store.add_meta(collection, int(parent), params.get("key"), params.get("value"))
            return BackingApiResponse(status=201, data=meta)
        return None

    def _meta_item(
        self,
        method: str,
        request: BackingApiRequest,
        collection: str,
        parent: str,
        id: str
    ) -> Optional[BackingApiResponse]:
        params = request.params
        if method == "GET":
            return BackingApiResponse(data=self.store.get_meta(collection, int(parent), int(id)))
        if method in ("POST", "PUT", "PATCH"):
            meta = self.store.update_meta(
                collection, int(parent), int(id),
                key=params.get("key"),
                value=params.get("value"),
            )
            return BackingApiResponse(data=meta)
        if method == "DELETE":
            return BackingApiResponse(data=self.store.delete_meta(collection, int(parent), int(id)))
        return None

    def _taxonomies(self, method: str, request: BackingApiRequest) -> Optional[BackingApiResponse]:
        if method != "GET":
            return None
        return BackingApiResponse(data=self.store.list_taxonomies(request.params.get("type")))

    def _taxonomy(self, method: str, request: BackingApiRequest, slug: str) -> Optional[BackingApiResponse]:
        if method != "GET":
            return None
        return BackingApiResponse(data=self.store.get_taxonomy(slug))
