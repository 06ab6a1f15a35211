"""
Permission string parsing and evaluation.

Permission strings are dot-namespaced capability tokens:

    "*"              every action in every namespace
    "tasks.*"        every action in the tasks namespace
    "tasks.edit"     one action

Everything here is pure: no I/O, no logging, and evaluation never raises.
"""
import enum
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, Optional, Union


WILDCARD = "*"
ACTION_WILDCARD = "*"

_ACTION_RE = re.compile(r"^[a-z][a-z_]*$")


class Namespace(str, enum.Enum):
    """Closed set of permission namespaces."""
    ORG = "org"
    ORGANIZATION = "organization"
    USERS = "users"
    ROLES = "roles"
    PROJECTS = "projects"
    TASKS = "tasks"
    TICKETS = "tickets"
    CLIENTS = "clients"
    CRM = "crm"
    SETTINGS = "settings"
    DOCUMENTS = "documents"
    TIME = "time"
    ANALYTICS = "analytics"
    BILLING = "billing"
    MESSAGES = "messages"
    TEAMS = "teams"
    INTEGRATIONS = "integrations"
    API_KEYS = "api_keys"
    AUDIT = "audit"


@dataclass(frozen=True)
class GlobalWildcard:
    def allows(self, required: str) -> bool:
        return True

    def __str__(self) -> str:
        return WILDCARD


@dataclass(frozen=True)
class NamespaceWildcard:
    namespace: Namespace

    def allows(self, required: str) -> bool:
        return required.partition(".")[0] == self.namespace.value

    def __str__(self) -> str:
        return f"{self.namespace.value}.{ACTION_WILDCARD}"


@dataclass(frozen=True)
class Exact:
    namespace: Namespace
    action: str

    def allows(self, required: str) -> bool:
        return required == str(self)

    def __str__(self) -> str:
        return f"{self.namespace.value}.{self.action}"


Grant = Union[GlobalWildcard, NamespaceWildcard, Exact]

# Any of these marks the holder as an organization administrator
ADMIN_PERMISSIONS: tuple[str, ...] = ("org.edit", "users.invite", "org.*", "*")


def parse_grant(value: str) -> Grant:
    """
    Parse a permission string into its tagged form.

    Raises:
        ValueError: for malformed strings or namespaces outside Namespace
    """
    if value == WILDCARD:
        return GlobalWildcard()

    namespace, dot, action = value.partition(".")
    if not dot or not action:
        raise ValueError(f"Permission {value!r} must look like 'namespace.action'")
    try:
        ns = Namespace(namespace)
    except ValueError:
        raise ValueError(f"Unknown permission namespace {namespace!r}") from None

    if action == ACTION_WILDCARD:
        return NamespaceWildcard(ns)
    if not _ACTION_RE.match(action):
        raise ValueError(f"Invalid permission action {action!r}")
    return Exact(ns, action)


@lru_cache(maxsize=1024)
def _try_parse(value: str) -> Optional[Grant]:
    try:
        return parse_grant(value)
    except ValueError:
        return None


def normalize_permissions(permissions: Iterable[str]) -> list[str]:
    """Validate, de-duplicate and sort a role's permission list."""
    return sorted({str(parse_grant(p.strip())) for p in permissions})


def has_permission(granted: Optional[Iterable[Union[str, Grant]]], required: str) -> bool:
    """
    Decide whether ``granted`` satisfies ``required``.

    True if ``granted`` holds ``*``, holds ``required`` verbatim, or holds
    ``<namespace>.*`` for the namespace of ``required``. A missing or empty
    ``granted`` denies everything.
    """
    if not granted:
        return False

    for entry in granted:
        if isinstance(entry, str):
            grant = _try_parse(entry)
            if grant is None:
                # Namespaces outside Namespace still follow the wildcard rule
                if entry == required:
                    return True
                if entry.endswith(".*") and required.partition(".")[0] == entry[:-2]:
                    return True
                continue
        else:
            grant = entry
        if grant.allows(required):
            return True
    return False


def has_all(granted: Optional[Iterable[Union[str, Grant]]], required: Iterable[str]) -> bool:
    granted = list(granted or ())
    return all(has_permission(granted, r) for r in required)


def has_any(granted: Optional[Iterable[Union[str, Grant]]], required: Iterable[str]) -> bool:
    granted = list(granted or ())
    return any(has_permission(granted, r) for r in required)


def is_admin(granted: Optional[Iterable[Union[str, Grant]]]) -> bool:
    return has_any(granted, ADMIN_PERMISSIONS)
