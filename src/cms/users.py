"""Users, roles and application passwords.

Application passwords are kept as salted SHA-256 digests in the form
``sha256$<salt>$<hexdigest>``. Plain passwords are never stored.
"""

import hashlib
import hmac
import re
import secrets
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from shared.config import UserConfig
from shared.logging import get_logger
from shared.models import Principal

logger = get_logger(__name__)

HASH_SCHEME = "sha256"

_EDITOR = frozenset({
    "read",
    "edit_posts",
    "edit_others_posts",
    "publish_posts",
    "delete_posts",
    "edit_pages",
    "publish_pages",
    "delete_pages",
    "manage_categories",
})

ROLE_CAPABILITIES: dict[str, frozenset[str]] = {
    "administrator": _EDITOR | {"manage_options", "list_users"},
    "editor": _EDITOR,
    "author": frozenset({"read", "edit_posts", "publish_posts", "delete_posts", "upload_files"}),
    "contributor": frozenset({"read", "edit_posts", "delete_posts"}),
    "subscriber": frozenset({"read"}),
}

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")


def capabilities_for(roles: Iterable[str]) -> frozenset[str]:
    """Union of the capabilities granted by each known role."""
    caps: set[str] = set()
    for role in roles:
        caps |= ROLE_CAPABILITIES.get(role, frozenset())
    return frozenset(caps)


def normalize_password(password: str) -> str:
    """Strip the separators application passwords are displayed with."""
    return _NON_ALNUM.sub("", password)


def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.sha256((salt + normalize_password(password)).encode("utf-8")).hexdigest()
    return f"{HASH_SCHEME}${salt}${digest}"


def verify_password(password: str, stored: str) -> bool:
    """Constant-time check of a password against a stored hash."""
    try:
        scheme, salt, expected = stored.split("$", 2)
    except ValueError:
        return False
    if scheme != HASH_SCHEME:
        return False
    digest = hashlib.sha256((salt + normalize_password(password)).encode("utf-8")).hexdigest()
    return hmac.compare_digest(digest, expected)


class ApplicationPassword(BaseModel):
    name: str = "default"
    password: str = Field(..., description="Stored hash, never the plain password")


class StoredUser(BaseModel):
    id: int
    login: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    roles: list[str] = Field(default_factory=lambda: ["subscriber"])
    application_passwords: list[ApplicationPassword] = Field(default_factory=list)

    def to_principal(self) -> Principal:
        return Principal(
            id=self.id,
            login=self.login,
            email=self.email,
            display_name=self.display_name or self.login,
            roles=list(self.roles),
            capabilities=capabilities_for(self.roles),
        )

    def matches(self, password: str) -> bool:
        return any(verify_password(password, entry.password) for entry in self.application_passwords)


class UserDirectory:
    """
    In-process user table used to resolve credentials.

    Lookups are by login. Opaque tokens are checked against every stored
    hash, which is linear in the number of credentials.
    """

    def __init__(self, users: Iterable[StoredUser | UserConfig] = ()) -> None:
        self._users: dict[str, StoredUser] = {}
        for user in users:
            self.add(user)

    def add(self, user: StoredUser | UserConfig) -> StoredUser:
        if not isinstance(user, StoredUser):
            user = StoredUser.model_validate(user.model_dump())
        unknown = [role for role in user.roles if role not in ROLE_CAPABILITIES]
        if unknown:
            logger.warning("User has unknown roles", user=user.login, roles=unknown)
        self._users[user.login] = user
        return user

    def get(self, login: str) -> Optional[StoredUser]:
        return self._users.get(login)

    def __len__(self) -> int:
        return len(self._users)

    def add_application_password(self, login: str, password: str, name: str = "default") -> None:
        user = self._users.get(login)
        if user is None:
            raise KeyError(login)
        user.application_passwords.append(
            ApplicationPassword(name=name, password=hash_password(password))
        )

    def verify_password(self, login: str, password: str) -> Optional[Principal]:
        user = self._users.get(login)
        if user is None or not user.matches(password):
            return None
        return user.to_principal()

    def find_by_token(self, token: str) -> Optional[Principal]:
        for user in self._users.values():
            if user.matches(token):
                return user.to_principal()
        return None
