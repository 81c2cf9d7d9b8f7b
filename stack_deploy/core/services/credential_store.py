"""
Credential store — read-only access to a KeePass (.kdbx) database.

The store is opened once per deployment cycle, shared read-only by all
stacks of that cycle, and closed at the end of it. Lookups take a
SecretPath such as ``Database/Gitea Postgres DB/password``:

    Database            root group
    Gitea Postgres DB   entry title (any number of groups may precede it)
    password            field

Every comparison is case-insensitive. An entry exposes the standard
KeePass fields (Title, UserName, Password, URL, Notes) plus its custom
string fields.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Protocol

from pykeepass import PyKeePass
from pykeepass.exceptions import CredentialsError

from stack_deploy.core.errors import StoreUnlockError
from stack_deploy.core.models.stack import SecretPath

logger = logging.getLogger(__name__)


class CredentialStore(Protocol):
    """Port: an opened store that can be asked for one field at a time."""

    def lookup(self, path: SecretPath) -> str | None:
        """Return the field value, or None if any segment is missing."""
        ...

    def close(self) -> None:
        """Drop the decrypted database."""
        ...


# ── Tree walk ───────────────────────────────────────────────────────


def _same(a: str | None, b: str) -> bool:
    return a is not None and a.casefold() == b.casefold()


def entry_fields(entry: Any) -> dict[str, str]:
    """All string fields of a KeePass entry, keyed by their KeePass names."""
    fields = {
        "Title": entry.title,
        "UserName": entry.username,
        "Password": entry.password,
        "URL": entry.url,
        "Notes": entry.notes,
    }
    fields.update(entry.custom_properties or {})
    return {k: v for k, v in fields.items() if v is not None}


def resolve_in_group(group: Any, segments: tuple[str, ...]) -> str | None:
    """Walk ``segments`` starting at ``group`` (which must match segments[0])."""
    if not segments or not _same(group.name, segments[0]):
        return None

    rest = segments[1:]
    for child in group.subgroups:
        value = resolve_in_group(child, rest)
        if value is not None:
            return value
    for entry in group.entries:
        value = _resolve_in_entry(entry, rest)
        if value is not None:
            return value
    return None


def _resolve_in_entry(entry: Any, segments: tuple[str, ...]) -> str | None:
    # Exactly <title>/<field>; anything longer runs past the field
    if len(segments) != 2 or not _same(entry.title, segments[0]):
        return None
    for key, value in entry_fields(entry).items():
        if _same(key, segments[1]):
            return value
    return None


# ── KeePass store ───────────────────────────────────────────────────


class KeePassStore:
    """An opened .kdbx database."""

    def __init__(self, database: PyKeePass, source: str = ""):
        self._db: PyKeePass | None = database
        self._source = source

    @classmethod
    def open(cls, path: Path, passphrase: str) -> KeePassStore:
        """Decrypt ``path`` with ``passphrase``.

        Raises:
            StoreUnlockError: Missing file, wrong passphrase, or unreadable database.
        """
        if not path.is_file():
            raise StoreUnlockError(f"Credential store not found: {path}")

        logger.debug("Opening credential store %s", path)
        try:
            database = PyKeePass(str(path), password=passphrase)
        except CredentialsError as e:
            raise StoreUnlockError(f"Wrong passphrase for {path}") from e
        except Exception as e:
            raise StoreUnlockError(f"Failed to open credential store {path}: {e}") from e
        logger.debug("Credential store opened")
        return cls(database, source=str(path))

    @property
    def closed(self) -> bool:
        return self._db is None

    def lookup(self, path: SecretPath) -> str | None:
        if self._db is None:
            raise StoreUnlockError(f"Credential store {self._source} is closed")
        return resolve_in_group(self._db.root_group, path.segments)

    def close(self) -> None:
        if self._db is not None:
            logger.debug("Closing credential store %s", self._source)
        self._db = None

    def __enter__(self) -> KeePassStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class KeePassOpener:
    """Opens the same .kdbx afresh each time it is called.

    The controller calls it at the start of every cycle that needs
    secrets; the passphrase was captured once at startup.
    """

    def __init__(self, path: Path, passphrase: str):
        self.path = path
        self._passphrase = passphrase

    def __call__(self) -> KeePassStore:
        return KeePassStore.open(self.path, self._passphrase)

    def __repr__(self) -> str:
        return f"<KeePassOpener path={str(self.path)!r}>"
