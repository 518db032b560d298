"""Deterministic names for provisioned databases.

Identifiers are derived from client/service slugs and the environment so the
same (client, service) pair always maps to the same instance. Values that
would overflow a provider limit are truncated; instance identifiers that get
truncated carry a short digest of the untruncated value so that two long
slugs sharing a prefix still map to different instances.
"""
from __future__ import annotations

import hashlib
import re
import secrets
import string
from dataclasses import dataclass

from tenantdb.core.config import DEFAULT_USERNAME_MAX_LENGTH, MAX_INSTANCE_IDENTIFIER_LENGTH
from tenantdb.core.errors import IdentifierError


PASSWORD_LENGTH = 32
_PASSWORD_ALPHABET = string.ascii_letters + string.digits
_DIGEST_LENGTH = 6

RESERVED_USERNAMES = frozenset(
    {
        "admin",
        "administrator",
        "master",
        "mysql",
        "postgres",
        "rdsadmin",
        "rdsrepladmin",
        "rds_superuser",
        "root",
        "sa",
        "superuser",
        "system",
        "user",
    }
)

_USERNAME_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")
_INSTANCE_IDENTIFIER_PATTERN = re.compile(r"^[a-z](?:[a-z0-9]|-(?!-))*[a-z0-9]$|^[a-z]$")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class DatabaseIdentifiers:
    database_name: str
    instance_identifier: str
    username: str


def slugify(value: str, separator: str) -> str:
    # Lower-case, collapse every non-alphanumeric run into one separator, trim the ends.
    return _NON_ALNUM.sub(separator, value.lower()).strip(separator)


def _digest(value: str) -> str:
    return hashlib.sha1(value.encode("utf-8")).hexdigest()[:_DIGEST_LENGTH]


def database_name(client_slug: str, service_slug: str | None = None) -> str:
    client_part = slugify(client_slug, "_")
    if service_slug:
        return f"client_{client_part}_{slugify(service_slug, '_')}_db"
    return f"client_{client_part}_db"


def instance_identifier(
    environment: str,
    client_slug: str,
    service_slug: str | None = None,
    *,
    max_length: int = MAX_INSTANCE_IDENTIFIER_LENGTH,
) -> str:
    parts = [slugify(environment, "-"), slugify(client_slug, "-")]
    if service_slug:
        parts.append(slugify(service_slug, "-"))
    identifier = "-".join(part for part in parts if part).lower()
    if len(identifier) > max_length:
        suffix = _digest(identifier)
        head = identifier[: max_length - len(suffix) - 1].rstrip("-")
        identifier = f"{head}-{suffix}"
    validate_instance_identifier(identifier, max_length=max_length)
    return identifier


def username(
    client_slug: str,
    service_slug: str | None = None,
    *,
    max_length: int = DEFAULT_USERNAME_MAX_LENGTH,
) -> str:
    client_part = slugify(client_slug, "_")
    if service_slug:
        candidate = f"{client_part}_{slugify(service_slug, '_')}_user"
    else:
        candidate = f"{client_part}_user"
    candidate = candidate.lower()
    # Usernames must start with a letter; regenerate with a letter prefix.
    if not candidate[:1].isalpha():
        candidate = f"u{candidate}"
    candidate = candidate[:max_length].rstrip("_")
    validate_username(candidate, max_length=max_length)
    return candidate


def validate_username(value: str, *, max_length: int = DEFAULT_USERNAME_MAX_LENGTH) -> None:
    if not value or len(value) > max_length:
        raise IdentifierError(f"username {value!r} must be 1-{max_length} characters")
    if not _USERNAME_PATTERN.match(value):
        raise IdentifierError(
            f"username {value!r} must start with a letter and contain only letters, digits and underscores"
        )
    if value in RESERVED_USERNAMES:
        raise IdentifierError(f"username {value!r} is reserved by the provider")


def validate_instance_identifier(value: str, *, max_length: int = MAX_INSTANCE_IDENTIFIER_LENGTH) -> None:
    if not value or len(value) > max_length:
        raise IdentifierError(f"instance identifier {value!r} must be 1-{max_length} characters")
    if not _INSTANCE_IDENTIFIER_PATTERN.match(value):
        raise IdentifierError(
            f"instance identifier {value!r} must start with a letter, use lower-case letters, digits "
            "and single hyphens, and not end with a hyphen"
        )


def generate_password(length: int = PASSWORD_LENGTH) -> str:
    return "".join(secrets.choice(_PASSWORD_ALPHABET) for _ in range(length))


def generate_identifiers(
    *,
    environment: str,
    client_slug: str,
    service_slug: str | None = None,
    username_max_length: int = DEFAULT_USERNAME_MAX_LENGTH,
) -> DatabaseIdentifiers:
    return DatabaseIdentifiers(
        database_name=database_name(client_slug, service_slug),
        instance_identifier=instance_identifier(environment, client_slug, service_slug),
        username=username(client_slug, service_slug, max_length=username_max_length),
    )


def random_instance_identifier(prefix: str = "rds", length: int = 8) -> str:
    alphabet = string.ascii_lowercase + string.digits
    return f"{prefix}-" + "".join(secrets.choice(alphabet) for _ in range(length))
