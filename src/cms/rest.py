"""REST content store.

Talks to a real WordPress site through its REST API using a service
account's application password.
"""

from typing import Any, Optional

import httpx

from shared.config import CMSSettings
from shared.logging import get_logger
from shared.models import Principal
from cms.base import (
    API_ROOT,
    POST_TYPES,
    ContentError,
    ContentStore,
    ItemPage,
    require_collection,
)

logger = get_logger(__name__)


def _query(filters: dict[str, Any]) -> dict[str, Any]:
    """Flatten list filters into the comma-separated form WordPress expects."""
    params: dict[str, Any] = {}
    for key, value in filters.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            params[key] = ",".join(str(v) for v in value)
        elif isinstance(value, bool):
            params[key] = "true" if value else "false"
        else:
            params[key] = value
    return params


class RESTContentStore(ContentStore):
    """
    ContentStore backed by the WordPress REST API.

    Post and page meta are read and written through the item's ``meta``
    field. Meta ids are positions in that mapping, starting at 1.
    """

    def __init__(
        self,
        base_url: str,
        username: Optional[str] = None,
        application_password: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        auth = (username, application_password) if username and application_password else None
        self._client = httpx.Client(
            base_url=f"{self.base_url}/wp-json",
            auth=auth,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: CMSSettings) -> "RESTContentStore":
        if not settings.base_url:
            raise ValueError("cms.base_url is required for the rest backend")
        return cls(
            base_url=settings.base_url,
            username=settings.username,
            application_password=settings.application_password,
            timeout=settings.timeout_seconds,
        )

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Make an HTTP request to the site, mapping failures to ContentError."""
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error("Content API request failed", method=method, path=path, error=str(e))
            raise ContentError("http_request_failed", str(e), 502) from e

        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = {}
            if not isinstance(payload, dict):
                payload = {}
            raise ContentError(
                payload.get("code") or "rest_error",
                payload.get("message") or response.reason_phrase or "Unknown REST API error",
                response.status_code,
            )
        return response

    def _json(self, method: str, path: str, **kwargs: Any) -> Any:
        return self._request(method, path, **kwargs).json()

    def list_items(self, collection: str, filters: dict[str, Any]) -> ItemPage:
        require_collection(collection)
        params = _query(filters or {})
        if collection in POST_TYPES:
            params.setdefault("context", "edit")
        response = self._request("GET", f"{API_ROOT}/{collection}", params=params)
        items = response.json()
        total = int(response.headers.get("X-WP-Total", len(items)))
        total_pages = int(response.headers.get("X-WP-TotalPages", 1 if items else 0))
        return ItemPage(items=items, total=total, total_pages=total_pages)

    def get_item(self, collection: str, item_id: int) -> dict[str, Any]:
        require_collection(collection)
        return self._json("GET", f"{API_ROOT}/{collection}/{int(item_id)}", params={"context": "edit"})

    def create_item(
        self,
        collection: str,
        data: dict[str, Any],
        author: Optional[int] = None
    ) -> dict[str, Any]:
        require_collection(collection)
        body = dict(data)
        if author and collection in POST_TYPES:
            body.setdefault("author", author)
        return self._json("POST", f"{API_ROOT}/{collection}", json=body)

    def update_item(self, collection: str, item_id: int, data: dict[str, Any]) -> dict[str, Any]:
        require_collection(collection)
        return self._json("POST", f"{API_ROOT}/{collection}/{int(item_id)}", json=data)

    def delete_item(self, collection: str, item_id: int, force: bool = False) -> dict[str, Any]:
        require_collection(collection)
        return self._json(
            "DELETE",
            f"{API_ROOT}/{collection}/{int(item_id)}",
            params={"force": "true" if force in (True, "true", "1", 1) else "false"},
        )

    def _meta_map(self, collection: str, parent: int) -> dict[str, Any]:
        require_collection(collection, POST_TYPES)
        item = self.get_item(collection, parent)
        meta = item.get("meta") or {}
        return meta if isinstance(meta, dict) else {}

    @staticmethod
    def _meta_entries(parent: int, meta: dict[str, Any]) -> list[dict[str, Any]]:
        return [
            {"id": index, "post": parent, "key": key, "value": value}
            for index, (key, value) in enumerate(meta.items(), start=1)
        ]

    def _write_meta(self, collection: str, parent: int, meta: dict[str, Any]) -> None:
        self._json("POST", f"{API_ROOT}/{collection}/{int(parent)}", json={"meta": meta})

    def list_meta(
        self,
        collection: str,
        parent: int,
        key: Optional[str] = None
    ) -> list[dict[str, Any]]:
        entries = self._meta_entries(parent, self._meta_map(collection, parent))
        return [e for e in entries if key is None or e["key"] == key]

    def get_meta(self, collection: str, parent: int, meta_id: int) -> dict[str, Any]:
        for entry in self.list_meta(collection, parent):
            if entry["id"] == int(meta_id):
                return entry
        raise ContentError("rest_meta_invalid_id", "Invalid meta ID.", 404)

    def add_meta(self, collection: str, parent: int, key: str, value: Any) -> dict[str, Any]:
        if not key:
            raise ContentError("rest_missing_callback_param", "Missing parameter(s): key", 400)
        self._write_meta(collection, parent, {key: value})
        for entry in self.list_meta(collection, parent, key=key):
            return entry
        raise ContentError("rest_meta_not_registered", f"Meta key '{key}' is not registered for this type.", 400)

    def update_meta(
        self,
        collection: str,
        parent: int,
        meta_id: int,
        key: Optional[str] = None,
        value: Any = None
    ) -> dict[str, Any]:
        entry = self.get_meta(collection, parent, meta_id)
        new_key = key or entry["key"]
        new_value = entry["value"] if value is None else value
        changes: dict[str, Any] = {new_key: new_value}
        if new_key != entry["key"]:
            changes[entry["key"]] = None
        self._write_meta(collection, parent, changes)
        return {**entry, "key": new_key, "value": new_value}

    def delete_meta(self, collection: str, parent: int, meta_id: int) -> dict[str, Any]:
        entry = self.get_meta(collection, parent, meta_id)
        self._write_meta(collection, parent, {entry["key"]: None})
        return {"deleted": True, "previous": entry}

    def list_taxonomies(self, post_type: Optional[str] = None) -> dict[str, dict[str, Any]]:
        params = {"type": post_type} if post_type else {}
        return self._json("GET", f"{API_ROOT}/taxonomies", params=params)

    def get_taxonomy(self, slug: str) -> dict[str, Any]:
        return self._json("GET", f"{API_ROOT}/taxonomies/{slug}")

    def site_info(self) -> dict[str, Any]:
        index = self._json("GET", "/")
        info: dict[str, Any] = {
            "name": index.get("name"),
            "description": index.get("description"),
            "url": index.get("url") or self.base_url,
            "timezone": index.get("timezone_string"),
        }
        # Settings need manage_options; the site index alone is enough otherwise
        try:
            settings = self._json("GET", f"{API_ROOT}/settings")
        except ContentError as e:
            logger.info("Site settings unavailable", code=e.code, status=e.status)
            return info
        info.update({
            "admin_email": settings.get("email"),
            "language": settings.get("language"),
            "timezone": settings.get("timezone") or info["timezone"],
            "date_format": settings.get("date_format"),
            "time_format": settings.get("time_format"),
            "start_of_week": settings.get("start_of_week"),
        })
        return info

    def verify_application_password(self, username: str, password: str) -> Optional[Principal]:
        """Ask the site who the credentials belong to."""
        try:
            response = self._client.get(
                f"{API_ROOT}/users/me",
                params={"context": "edit"},
                auth=(username, password),
            )
        except httpx.HTTPError as e:
            logger.warning("Application password check failed", error=str(e))
            return None

        if response.status_code != 200:
            return None

        try:
            user = response.json()
            capabilities = user.get("capabilities") or {}
            return Principal(
                id=int(user["id"]),
                login=user.get("username") or user.get("slug") or username,
                email=user.get("email"),
                display_name=user.get("name"),
                roles=list(user.get("roles") or []),
                capabilities=frozenset(cap for cap, granted in capabilities.items() if granted),
            )
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning("Unexpected user payload from site", error=str(e))
            return None

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()
