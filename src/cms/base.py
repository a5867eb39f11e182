"""Base classes for the content backend.

The bridge never talks to a content-management system directly. Tools and
the in-process REST dispatcher go through a ContentStore, which exposes the
handful of verbs the tool catalogue needs:
- list/get/create/update/delete items of a collection
- post and page metadata
- taxonomy lookup and site information

Implementations must raise ContentError for every failure the caller should
see, carrying a WordPress-style error code and an HTTP status.
"""

from abc import ABC, abstractmethod
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any, NamedTuple, Optional

from pydantic import BaseModel, Field

from shared.logging import get_logger
from shared.models import Principal, ToolDescriptor

if TYPE_CHECKING:
    from mcp_bridge.registry import ToolRegistry

logger = get_logger(__name__)

API_ROOT = "/wp/v2"

# Collections exposed by every store
POSTS = "posts"
PAGES = "pages"
CATEGORIES = "categories"
TAGS = "tags"

POST_TYPES = (POSTS, PAGES)
TERM_COLLECTIONS = (CATEGORIES, TAGS)
COLLECTIONS = POST_TYPES + TERM_COLLECTIONS


# Caller of the tool callback currently running
current_principal: ContextVar[Optional[Principal]] = ContextVar("current_principal", default=None)


class ContentError(Exception):
    """A failure reported by the content backend."""

    def __init__(self, code: str, message: str, status: int = 400) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status = status

    def __repr__(self) -> str:
        return f"ContentError(code={self.code!r}, message={self.message!r}, status={self.status})"


class ItemPage(NamedTuple):
    """One page of a collection listing."""
    items: list[dict[str, Any]]
    total: int
    total_pages: int


class BackingApiRequest(BaseModel):
    """A request against the backing REST API."""
    method: str
    route: str
    query: dict[str, Any] = Field(default_factory=dict)
    body: dict[str, Any] = Field(default_factory=dict)
    headers: dict[str, str] = Field(default_factory=dict)
    principal: Optional[Principal] = None

    @property
    def params(self) -> dict[str, Any]:
        """Query and body merged, body winning, as WordPress does."""
        return {**self.query, **self.body}


class BackingApiResponse(BaseModel):
    """Response from the backing REST API."""
    status: int = 200
    data: Any = None

    @property
    def is_error(self) -> bool:
        return self.status >= 400

    @property
    def error_message(self) -> str:
        if isinstance(self.data, dict):
            return str(self.data.get("message") or "Unknown REST API error")
        return "Unknown REST API error"

    @property
    def error_code(self) -> Optional[str]:
        if isinstance(self.data, dict):
            return self.data.get("code")
        return None

    @classmethod
    def from_error(cls, error: ContentError) -> "BackingApiResponse":
        return cls(
            status=error.status,
            data={"code": error.code, "message": error.message, "data": {"status": error.status}},
        )


class BackingApi(ABC):
    """Anything that can serve a backing API request."""

    @abstractmethod
    def dispatch(self, request: BackingApiRequest) -> BackingApiResponse:
        """Serve one request synchronously."""
        pass


class ContentStore(ABC):
    """
    Abstract storage behind the bridge.

    Items are returned in the shape of the WordPress REST API so that proxied
    responses look the same whichever backend is configured.
    """

    @abstractmethod
    def list_items(self, collection: str, filters: dict[str, Any]) -> ItemPage:
        """List items of a collection with WordPress list filters applied."""
        pass

    @abstractmethod
    def get_item(self, collection: str, item_id: int) -> dict[str, Any]:
        pass

    @abstractmethod
    def create_item(
        self,
        collection: str,
        data: dict[str, Any],
        author: Optional[int] = None
    ) -> dict[str, Any]:
        pass

    @abstractmethod
    def update_item(self, collection: str, item_id: int, data: dict[str, Any]) -> dict[str, Any]:
        pass

    @abstractmethod
    def delete_item(self, collection: str, item_id: int, force: bool = False) -> dict[str, Any]:
        """
        Delete an item.

        Posts and pages go to the trash unless ``force`` is set; terms
        cannot be trashed and require ``force``.
        """
        pass

    @abstractmethod
    def list_meta(
        self,
        collection: str,
        parent: int,
        key: Optional[str] = None
    ) -> list[dict[str, Any]]:
        pass

    @abstractmethod
    def get_meta(self, collection: str, parent: int, meta_id: int) -> dict[str, Any]:
        pass

    @abstractmethod
    def add_meta(self, collection: str, parent: int, key: str, value: Any) -> dict[str, Any]:
        pass

    @abstractmethod
    def update_meta(
        self,
        collection: str,
        parent: int,
        meta_id: int,
        key: Optional[str] = None,
        value: Any = None
    ) -> dict[str, Any]:
        pass

    @abstractmethod
    def delete_meta(self, collection: str, parent: int, meta_id: int) -> dict[str, Any]:
        pass

    @abstractmethod
    def list_taxonomies(self, post_type: Optional[str] = None) -> dict[str, dict[str, Any]]:
        """Registered taxonomies keyed by slug."""
        pass

    @abstractmethod
    def site_info(self) -> dict[str, Any]:
        pass

    def get_taxonomy(self, slug: str) -> dict[str, Any]:
        taxonomies = self.list_taxonomies()
        if slug not in taxonomies:
            raise ContentError("rest_taxonomy_invalid", "Invalid taxonomy.", 404)
        return taxonomies[slug]

    def verify_application_password(self, username: str, password: str) -> Optional[Principal]:
        """
        Host-side application password check.

        Stores backed by a real site ask it; the default knows no users.
        """
        return None

    def close(self) -> None:
        """Release backend resources."""
        pass


def raw_content(item: dict[str, Any], field: str = "content") -> str:
    """Raw text of a rendered field, falling back to the rendered form."""
    value = item.get(field)
    if isinstance(value, dict):
        return value.get("raw", value.get("rendered", "")) or ""
    return value or ""


def require_collection(collection: str, allowed: tuple[str, ...] = COLLECTIONS) -> str:
    if collection not in allowed:
        raise ContentError("rest_no_route", f"Unknown collection '{collection}'.", 404)
    return collection


class ToolSet(ABC):
    """
    Base class for a group of related tools.

    Each tool set:
    - Declares its tool descriptors
    - Implements callbacks for tools that are not plain REST aliases
    - Talks to content only through its ContentStore
    """

    name: str = "tools"

    def __init__(self, store: ContentStore) -> None:
        self.store = store

    @property
    @abstractmethod
    def tools(self) -> list[ToolDescriptor]:
        """Return all tool descriptors for this set."""
        pass

    def register(self, registry: "ToolRegistry") -> int:
        """Register this set's tools and return how many were accepted."""
        logger.info("Registering tool set", tool_set=self.name)
        count = registry.register_many(self.tools)
        logger.info("Tool set registered", tool_set=self.name, count=count)
        return count
