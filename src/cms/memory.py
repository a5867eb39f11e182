"""In-memory content store.

Holds posts, pages, categories, tags and post meta in process memory,
seeded from a mapping or a YAML file. Listing applies the same filters the
WordPress REST API accepts, so tools behave alike against either backend.
"""

import math
import re
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional

import yaml

from shared.logging import get_logger
from cms.base import (
    CATEGORIES,
    PAGES,
    POST_TYPES,
    POSTS,
    TAGS,
    TERM_COLLECTIONS,
    ContentError,
    ContentStore,
    ItemPage,
    require_collection,
)

logger = get_logger(__name__)

POST_STATUSES = ("publish", "future", "draft", "pending", "private", "trash")

TAXONOMIES: dict[str, dict[str, Any]] = {
    "category": {
        "name": "Categories",
        "slug": "category",
        "description": "",
        "types": ["post"],
        "hierarchical": True,
        "public": True,
        "rest_base": CATEGORIES,
    },
    "post_tag": {
        "name": "Tags",
        "slug": "post_tag",
        "description": "",
        "types": ["post"],
        "hierarchical": False,
        "public": True,
        "rest_base": TAGS,
    },
}

TERM_TAXONOMY = {CATEGORIES: "category", TAGS: "post_tag"}
POST_TYPE = {POSTS: "post", PAGES: "page"}

DEFAULT_SITE = {
    "name": "MCP Bridge",
    "description": "Just another WordPress site",
    "url": "http://localhost:8080",
    "admin_email": "admin@example.com",
    "version": "6.5",
    "language": "en-US",
    "timezone": "UTC",
    "date_format": "F j, Y",
    "time_format": "g:i a",
    "start_of_week": 1,
}

DEFAULT_SEED: dict[str, Any] = {
    "site": DEFAULT_SITE,
    "categories": [
        {"id": 1, "name": "Uncategorized", "slug": "uncategorized"},
        {"id": 2, "name": "News", "slug": "news", "description": "Announcements and updates"},
    ],
    "tags": [
        {"id": 3, "name": "Release", "slug": "release"},
    ],
    "posts": [
        {
            "id": 1,
            "title": "Hello world!",
            "content": "Welcome to WordPress. This is your first post.",
            "status": "publish",
            "categories": [1],
            "author": 1,
            "date": "2024-01-01T09:00:00",
        },
        {
            "id": 2,
            "title": "Version 1.0 released",
            "content": "The first stable release is out.",
            "excerpt": "Release notes",
            "status": "publish",
            "categories": [2],
            "tags": [3],
            "author": 1,
            "date": "2024-02-01T09:00:00",
        },
    ],
    "pages": [
        {
            "id": 3,
            "title": "Sample Page",
            "content": "This is an example page.",
            "status": "publish",
            "author": 1,
            "date": "2024-01-01T09:00:00",
        },
    ],
}

_SLUG_STRIP = re.compile(r"[^a-z0-9]+")


def slugify(text: str) -> str:
    return _SLUG_STRIP.sub("-", text.lower()).strip("-")


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")


def _invalid(param: str, message: str) -> ContentError:
    return ContentError("rest_invalid_param", f"Invalid parameter(s): {param} ({message})", 400)


def _as_int(value: Any, param: str) -> int:
    if isinstance(value, bool):
        raise _invalid(param, "must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise _invalid(param, "must be an integer")


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]


def _int_list(value: Any, param: str) -> list[int]:
    return [_as_int(v, param) for v in _as_list(value)]


def _rendered(text: str, protected: Optional[bool] = None) -> dict[str, Any]:
    field: dict[str, Any] = {"raw": text, "rendered": text}
    if protected is not None:
        field["protected"] = protected
    return field


class MemoryContentStore(ContentStore):
    """
    Thread-safe in-memory implementation of ContentStore.

    Posts and pages share one id sequence, as do categories and tags.
    """

    def __init__(self, seed: Optional[dict[str, Any]] = None) -> None:
        self._lock = threading.RLock()
        self._records: dict[str, dict[int, dict[str, Any]]] = {c: {} for c in POST_TYPES + TERM_COLLECTIONS}
        self._meta: dict[int, dict[str, Any]] = {}
        self._next_post_id = 1
        self._next_term_id = 1
        self._next_meta_id = 1
        self._site = dict(DEFAULT_SITE)
        self._load(DEFAULT_SEED if seed is None else seed)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "MemoryContentStore":
        """Build a store from a YAML seed file, falling back to the default seed."""
        path = Path(path)
        if not path.exists():
            logger.warning("Seed file not found, using default content", path=str(path))
            return cls()
        with open(path) as f:
            return cls(yaml.safe_load(f) or {})

    def _load(self, seed: dict[str, Any]) -> None:
        self._site.update(seed.get("site") or {})
        # Parents before children, so insert categories in id order
        for collection in TERM_COLLECTIONS:
            for data in sorted(seed.get(collection) or [], key=lambda d: d.get("id", 0)):
                self._insert_term(collection, data, item_id=data.get("id"))
        if not self._records[CATEGORIES]:
            self._insert_term(CATEGORIES, {"name": "Uncategorized", "slug": "uncategorized"})
        for collection in POST_TYPES:
            for data in sorted(seed.get(collection) or [], key=lambda d: d.get("id", 0)):
                self._insert_post(collection, data, author=data.get("author"), item_id=data.get("id"))
        for data in seed.get("meta") or []:
            self._add_meta(data.get("collection", POSTS), _as_int(data["parent"], "parent"), data["key"], data.get("value"))

        logger.info(
            "Memory content store loaded",
            posts=len(self._records[POSTS]),
            pages=len(self._records[PAGES]),
            categories=len(self._records[CATEGORIES]),
            tags=len(self._records[TAGS]),
        )

    # Presentation

    def _link(self, collection: str, record: dict[str, Any]) -> str:
        url = str(self._site.get("url", "")).rstrip("/")
        if collection == POSTS:
            return f"{url}/?p={record['id']}"
        if collection == PAGES:
            return f"{url}/?page_id={record['id']}"
        if collection == CATEGORIES:
            return f"{url}/?cat={record['id']}"
        return f"{url}/?tag={record['slug']}"

    def _term_count(self, collection: str, term_id: int) -> int:
        return sum(
            1 for post in self._records[POSTS].values()
            if post["status"] == "publish" and term_id in post[collection]
        )

    def _present(self, collection: str, record: dict[str, Any]) -> dict[str, Any]:
        if collection in POST_TYPES:
            item = {
                "id": record["id"],
                "date": record["date"],
                "modified": record["modified"],
                "slug": record["slug"],
                "status": record["status"],
                "type": POST_TYPE[collection],
                "link": self._link(collection, record),
                "title": _rendered(record["title"]),
                "content": _rendered(record["content"], protected=False),
                "excerpt": _rendered(record["excerpt"], protected=False),
                "author": record["author"],
            }
            if collection == POSTS:
                item["categories"] = list(record[CATEGORIES])
                item["tags"] = list(record[TAGS])
            else:
                item["parent"] = record["parent"]
                item["menu_order"] = record["menu_order"]
                item["template"] = record["template"]
            return item

        item = {
            "id": record["id"],
            "count": self._term_count(collection, record["id"]),
            "description": record["description"],
            "link": self._link(collection, record),
            "name": record["name"],
            "slug": record["slug"],
            "taxonomy": TERM_TAXONOMY[collection],
            "meta": dict(record["meta"]),
        }
        if collection == CATEGORIES:
            item["parent"] = record["parent"]
        return item

    # Record helpers

    def _require(self, collection: str, item_id: Any) -> dict[str, Any]:
        require_collection(collection)
        record = self._records[collection].get(_as_int(item_id, "id"))
        if record is None:
            if collection in POST_TYPES:
                raise ContentError("rest_post_invalid_id", "Invalid post ID.", 404)
            raise ContentError("rest_term_invalid", "Term does not exist.", 404)
        return record

    def _unique_slug(self, collection: str, slug: str, exclude: Optional[int] = None) -> str:
        taken = {r["slug"] for r in self._records[collection].values() if r["id"] != exclude}
        candidate, suffix = slug, 2
        while candidate in taken:
            candidate = f"{slug}-{suffix}"
            suffix += 1
        return candidate

    def _check_terms(self, collection: str, ids: Iterable[Any]) -> list[int]:
        term_ids = _int_list(list(ids), collection)
        missing = [t for t in term_ids if t not in self._records[collection]]
        if missing:
            raise ContentError("rest_invalid_term_id", f"Invalid term ID: {missing[0]}.", 400)
        return term_ids

    def _check_status(self, status: Any) -> str:
        if status not in POST_STATUSES:
            raise _invalid("status", f"must be one of {', '.join(POST_STATUSES)}")
        return status

    def _apply_post_fields(self, collection: str, record: dict[str, Any], data: dict[str, Any]) -> None:
        for field in ("title", "content", "excerpt"):
            if field in data and data[field] is not None:
                record[field] = str(data[field])
        if "status" in data and data["status"] is not None:
            record["status"] = self._check_status(data["status"])
        if data.get("author") is not None:
            record["author"] = _as_int(data["author"], "author")
        if data.get("slug"):
            record["slug"] = self._unique_slug(collection, slugify(str(data["slug"])), exclude=record["id"])
        if data.get("date"):
            record["date"] = str(data["date"])

        if collection == POSTS:
            for taxonomy in (CATEGORIES, TAGS):
                if data.get(taxonomy) is not None:
                    record[taxonomy] = self._check_terms(taxonomy, _as_list(data[taxonomy]))
        else:
            if data.get("parent") is not None:
                parent = _as_int(data["parent"], "parent")
                if parent and (parent not in self._records[PAGES] or parent == record["id"]):
                    raise ContentError("rest_post_invalid_id", "Invalid post parent ID.", 400)
                record["parent"] = parent
            if data.get("menu_order") is not None:
                record["menu_order"] = _as_int(data["menu_order"], "menu_order")
            if data.get("template") is not None:
                record["template"] = str(data["template"])

    def _insert_post(
        self,
        collection: str,
        data: dict[str, Any],
        author: Optional[int] = None,
        item_id: Optional[int] = None
    ) -> dict[str, Any]:
        if item_id is None:
            item_id = self._next_post_id
        item_id = _as_int(item_id, "id")
        if item_id in self._records[POSTS] or item_id in self._records[PAGES]:
            raise ContentError("rest_post_exists", "Cannot create existing post.", 400)

        now = _now()
        record: dict[str, Any] = {
            "id": item_id,
            "title": "",
            "content": "",
            "excerpt": "",
            "status": "draft",
            "author": author or 0,
            "date": now,
            "modified": now,
            "slug": "",
        }
        if collection == POSTS:
            default = [1] if 1 in self._records[CATEGORIES] else []
            record[CATEGORIES] = default
            record[TAGS] = []
        else:
            record.update(parent=0, menu_order=0, template="")

        self._apply_post_fields(collection, record, data)
        if not record["slug"]:
            record["slug"] = self._unique_slug(collection, slugify(record["title"]) or str(item_id))
        if data.get("date"):
            record["modified"] = record["date"]

        self._records[collection][item_id] = record
        self._next_post_id = max(self._next_post_id, item_id + 1)
        return record

    def _apply_term_fields(self, collection: str, record: dict[str, Any], data: dict[str, Any]) -> None:
        if data.get("name") is not None:
            name = str(data["name"]).strip()
            if not name:
                raise ContentError("empty_term_name", "A name is required for this term.", 400)
            record["name"] = name
        if data.get("description") is not None:
            record["description"] = str(data["description"])
        if data.get("meta") is not None:
            if not isinstance(data["meta"], dict):
                raise _invalid("meta", "must be an object")
            record["meta"].update(data["meta"])
        if collection == CATEGORIES and data.get("parent") is not None:
            parent = _as_int(data["parent"], "parent")
            if parent and (parent not in self._records[CATEGORIES] or parent == record["id"]):
                raise ContentError("rest_term_invalid", "Parent term does not exist.", 400)
            record["parent"] = parent

        parent = record.get("parent", 0)
        for other in self._records[collection].values():
            if other["id"] == record["id"]:
                continue
            if other["name"].lower() == record["name"].lower() and other.get("parent", 0) == parent:
                raise ContentError(
                    "term_exists",
                    "A term with the name provided already exists with this parent.",
                    400
                )

        if data.get("slug"):
            slug = slugify(str(data["slug"]))
            if any(o["slug"] == slug and o["id"] != record["id"] for o in self._records[collection].values()):
                raise ContentError("duplicate_term_slug", f'The slug "{slug}" is already in use by another term.', 400)
            record["slug"] = slug

    def _insert_term(
        self,
        collection: str,
        data: dict[str, Any],
        item_id: Optional[int] = None
    ) -> dict[str, Any]:
        if not data.get("name"):
            raise ContentError("rest_missing_callback_param", "Missing parameter(s): name", 400)

        if item_id is None:
            item_id = self._next_term_id
        item_id = _as_int(item_id, "id")
        if item_id in self._records[CATEGORIES] or item_id in self._records[TAGS]:
            raise ContentError("term_exists", "A term with this ID already exists.", 400)

        record: dict[str, Any] = {"id": item_id, "name": "", "slug": "", "description": "", "meta": {}}
        if collection == CATEGORIES:
            record["parent"] = 0
        self._apply_term_fields(collection, record, data)
        if not record["slug"]:
            record["slug"] = self._unique_slug(collection, slugify(record["name"]) or str(item_id))

        self._records[collection][item_id] = record
        self._next_term_id = max(self._next_term_id, item_id + 1)
        return record

    # Listing

    def _matches(self, collection: str, record: dict[str, Any], filters: dict[str, Any]) -> bool:
        search = filters.get("search")
        if search:
            needle = str(search).lower()
            fields = ("title", "content", "excerpt") if collection in POST_TYPES else ("name", "description")
            if not any(needle in str(record.get(f, "")).lower() for f in fields):
                return False

        include = _int_list(filters.get("include"), "include")
        if include and record["id"] not in include:
            return False
        exclude = _int_list(filters.get("exclude"), "exclude")
        if record["id"] in exclude:
            return False

        slugs = [str(s) for s in _as_list(filters.get("slug"))]
        if slugs and record["slug"] not in slugs:
            return False

        if filters.get("parent") is not None and "parent" in record:
            if record["parent"] != _as_int(filters["parent"], "parent"):
                return False

        if collection == POSTS:
            for taxonomy in (CATEGORIES, TAGS):
                wanted = _int_list(filters.get(taxonomy), taxonomy)
                if wanted and not set(wanted) & set(record[taxonomy]):
                    return False

        if collection in TERM_COLLECTIONS:
            if _as_bool(filters.get("hide_empty", False)) and not self._term_count(collection, record["id"]):
                return False
            if filters.get("post") is not None:
                post = self._require(POSTS, filters["post"])
                if record["id"] not in post[collection]:
                    return False

        return True

    def _statuses(self, filters: dict[str, Any]) -> Optional[set[str]]:
        statuses = [str(s) for s in _as_list(filters.get("status", "publish"))] or ["publish"]
        if "any" in statuses:
            return None
        for status in statuses:
            self._check_status(status)
        return set(statuses)

    def _sort_key(self, collection: str, orderby: str, include: list[int]):
        if orderby == "include" and include:
            return lambda r: include.index(r["id"]) if r["id"] in include else len(include)
        if orderby in ("title", "name"):
            field = "title" if collection in POST_TYPES else "name"
            return lambda r: (r[field].lower(), r["id"])
        if orderby == "count" and collection in TERM_COLLECTIONS:
            return lambda r: (self._term_count(collection, r["id"]), r["id"])
        if orderby in ("date", "modified", "slug", "menu_order", "description") and orderby in self._field_names(collection):
            return lambda r: (r[orderby], r["id"])
        return lambda r: r["id"]

    @staticmethod
    def _field_names(collection: str) -> set[str]:
        if collection == POSTS:
            return {"date", "modified", "slug"}
        if collection == PAGES:
            return {"date", "modified", "slug", "menu_order"}
        return {"slug", "description"}

    def list_items(self, collection: str, filters: dict[str, Any]) -> ItemPage:
        require_collection(collection)
        filters = dict(filters or {})

        per_page = _as_int(filters.get("per_page", 10), "per_page")
        if not 1 <= per_page <= 100:
            raise _invalid("per_page", "must be between 1 (inclusive) and 100 (inclusive)")
        page = _as_int(filters.get("page", 1), "page")
        if page < 1:
            raise _invalid("page", "must be greater than or equal to 1")

        with self._lock:
            records = list(self._records[collection].values())

            if collection in POST_TYPES:
                statuses = self._statuses(filters)
                if statuses is None:
                    records = [r for r in records if r["status"] != "trash"]
                else:
                    records = [r for r in records if r["status"] in statuses]

            records = [r for r in records if self._matches(collection, r, filters)]

            default_orderby = "date" if collection in POST_TYPES else "name"
            orderby = str(filters.get("orderby") or default_orderby)
            default_order = "desc" if collection in POST_TYPES else "asc"
            order = str(filters.get("order") or default_order).lower()
            if order not in ("asc", "desc"):
                raise _invalid("order", "must be one of asc, desc")

            include = _int_list(filters.get("include"), "include")
            records.sort(key=self._sort_key(collection, orderby, include), reverse=order == "desc")

            total = len(records)
            total_pages = math.ceil(total / per_page) if total else 0
            if total and page > total_pages:
                raise ContentError(
                    "rest_post_invalid_page_number",
                    "The page number requested is larger than the number of pages available.",
                    400
                )

            if filters.get("offset") is not None:
                start = _as_int(filters["offset"], "offset")
            else:
                start = (page - 1) * per_page
            items = [self._present(collection, r) for r in records[start:start + per_page]]

        return ItemPage(items=items, total=total, total_pages=total_pages)

    # Item verbs

    def get_item(self, collection: str, item_id: int) -> dict[str, Any]:
        with self._lock:
            return self._present(collection, self._require(collection, item_id))

    def create_item(
        self,
        collection: str,
        data: dict[str, Any],
        author: Optional[int] = None
    ) -> dict[str, Any]:
        require_collection(collection)
        with self._lock:
            if collection in POST_TYPES:
                record = self._insert_post(collection, data, author=author)
            else:
                record = self._insert_term(collection, data)
            logger.info("Item created", collection=collection, id=record["id"])
            return self._present(collection, record)

    def update_item(self, collection: str, item_id: int, data: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            record = self._require(collection, item_id)
            # Validate on a copy so a rejected update leaves the record untouched
            updated = {**record, "meta": dict(record["meta"])} if "meta" in record else dict(record)
            if collection in POST_TYPES:
                self._apply_post_fields(collection, updated, data)
                updated["modified"] = _now()
            else:
                self._apply_term_fields(collection, updated, data)
            record.update(updated)
            logger.info("Item updated", collection=collection, id=record["id"])
            return self._present(collection, record)

    def delete_item(self, collection: str, item_id: int, force: bool = False) -> dict[str, Any]:
        force = _as_bool(force)
        with self._lock:
            record = self._require(collection, item_id)

            if collection in TERM_COLLECTIONS:
                if not force:
                    raise ContentError(
                        "rest_trash_not_supported",
                        "Terms do not support trashing. Set 'force=true' to delete.",
                        501
                    )
                previous = self._present(collection, record)
                del self._records[collection][record["id"]]
                for post in self._records[POSTS].values():
                    if record["id"] in post[collection]:
                        post[collection].remove(record["id"])
                if collection == CATEGORIES:
                    for child in self._records[CATEGORIES].values():
                        if child["parent"] == record["id"]:
                            child["parent"] = record["parent"]
                logger.info("Term deleted", collection=collection, id=record["id"])
                return {"deleted": True, "previous": previous}

            if not force:
                if record["status"] == "trash":
                    raise ContentError("rest_already_trashed", "The post has already been deleted.", 410)
                record["status"] = "trash"
                record["modified"] = _now()
                logger.info("Item trashed", collection=collection, id=record["id"])
                return self._present(collection, record)

            previous = self._present(collection, record)
            del self._records[collection][record["id"]]
            for meta_id in [m["id"] for m in self._meta.values() if m["post"] == record["id"]]:
                del self._meta[meta_id]
            logger.info("Item deleted", collection=collection, id=record["id"])
            return {"deleted": True, "previous": previous}

    # Meta verbs

    def _require_parent(self, collection: str, parent: int) -> dict[str, Any]:
        require_collection(collection, POST_TYPES)
        return self._require(collection, parent)

    def _require_meta(self, collection: str, parent: int, meta_id: int) -> dict[str, Any]:
        self._require_parent(collection, parent)
        meta = self._meta.get(_as_int(meta_id, "id"))
        if meta is None or meta["post"] != _as_int(parent, "parent"):
            raise ContentError("rest_meta_invalid_id", "Invalid meta ID.", 404)
        return meta

    def _add_meta(self, collection: str, parent: int, key: str, value: Any) -> dict[str, Any]:
        record = self._require_parent(collection, parent)
        if not key or not isinstance(key, str):
            raise ContentError("rest_missing_callback_param", "Missing parameter(s): key", 400)
        meta = {"id": self._next_meta_id, "post": record["id"], "key": key, "value": value}
        self._meta[meta["id"]] = meta
        self._next_meta_id += 1
        return dict(meta)

    def list_meta(
        self,
        collection: str,
        parent: int,
        key: Optional[str] = None
    ) -> list[dict[str, Any]]:
        with self._lock:
            record = self._require_parent(collection, parent)
            return [
                dict(m) for m in sorted(self._meta.values(), key=lambda m: m["id"])
                if m["post"] == record["id"] and (key is None or m["key"] == key)
            ]

    def get_meta(self, collection: str, parent: int, meta_id: int) -> dict[str, Any]:
        with self._lock:
            return dict(self._require_meta(collection, parent, meta_id))

    def add_meta(self, collection: str, parent: int, key: str, value: Any) -> dict[str, Any]:
        with self._lock:
            return self._add_meta(collection, parent, key, value)

    def update_meta(
        self,
        collection: str,
        parent: int,
        meta_id: int,
        key: Optional[str] = None,
        value: Any = None
    ) -> dict[str, Any]:
        with self._lock:
            meta = self._require_meta(collection, parent, meta_id)
            if key:
                meta["key"] = key
            if value is not None:
                meta["value"] = value
            return dict(meta)

    def delete_meta(self, collection: str, parent: int, meta_id: int) -> dict[str, Any]:
        with self._lock:
            meta = self._require_meta(collection, parent, meta_id)
            del self._meta[meta["id"]]
            return {"deleted": True, "previous": dict(meta)}

    # Taxonomies and site

    def list_taxonomies(self, post_type: Optional[str] = None) -> dict[str, dict[str, Any]]:
        return {
            slug: dict(taxonomy)
            for slug, taxonomy in TAXONOMIES.items()
            if post_type is None or post_type in taxonomy["types"]
        }

    def site_info(self) -> dict[str, Any]:
        with self._lock:
            return dict(self._site)
