"""
File-backed store of bearer tokens.

The store keeps two structures in memory: a mapping of label to ``Token``
and a frozen set of secrets derived from it. Every mutation builds a new
mapping off to the side, persists it, then swaps both structures in, so a
reader calling ``contains_token`` only ever sees a complete set.
"""

import logging
import os
import threading
import uuid
from collections.abc import Iterator
from pathlib import Path

from mellon.errors import (
    StoreNotLoadedError,
    TokenParseError,
    TokenStoreIOError,
    TokenValidationError,
)
from mellon.tokens.token import FIELD_SEPARATOR, Token

logger = logging.getLogger(__name__)


class TokenStore:
    """
    Authoritative mapping of labels to tokens, backed by a flat file.

    The file holds one ``label:secret`` per line. A missing file is an empty
    store. Reads are lock-free; ``reload``, ``create``, ``rescind`` and
    ``persist`` are serialized against each other.
    """

    def __init__(self, path: Path | str):
        """
        Open the store, creating the parent directory of ``path`` if needed.

        Args:
            path: Location of the backing file

        Raises:
            TokenStoreIOError: If the directory cannot be created or the file
                cannot be read
            TokenParseError: If the file contains a malformed line
        """
        self.path = Path(path)
        self._tokens: dict[str, Token] | None = None
        self._lookup: frozenset[str] | None = None
        self._lock = threading.Lock()

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise TokenStoreIOError(
                f"Unable to create directory: {e}", path=self.path.parent
            ) from e
        self.reload()

    def reload(self) -> None:
        """
        Replace all in-memory state with the contents of the backing file.

        The file is parsed completely before anything is committed; a failed
        reload leaves the previously loaded tokens in place.
        """
        with self._lock:
            tokens = self._read_file()
            self._commit(tokens)
        logger.debug(f"Loaded {len(tokens)} token(s) from {self.path}")

    def contains_token(self, secret: str) -> bool:
        lookup = self._lookup
        if lookup is None:
            raise StoreNotLoadedError("Token store not loaded!")
        return secret in lookup

    def create(self, label: str) -> Token:
        """
        Issue a new token for ``label`` and persist the store.

        Raises:
            TokenValidationError: If the label is already taken or cannot be
                stored
        """
        with self._lock:
            tokens = self._loaded()
            validate_label(label)
            if label in tokens:
                raise TokenValidationError("Labels must be unique!")

            token = Token(label=label, secret=str(uuid.uuid4()))
            updated = dict(tokens)
            updated[label] = token
            self._write_file(updated)
            self._commit(updated)
        logger.info(f"Created token for label {label!r}")
        return token

    def rescind(self, label: str) -> None:
        """
        Remove the token for ``label`` and persist the store.

        Raises:
            TokenValidationError: If no token is associated with the label
        """
        with self._lock:
            tokens = self._loaded()
            if label not in tokens:
                raise TokenValidationError("No token associated with key!")

            updated = {k: v for k, v in tokens.items() if k != label}
            self._write_file(updated)
            self._commit(updated)
        logger.info(f"Rescinded token for label {label!r}")

    def persist(self) -> None:
        """Overwrite the backing file with the current tokens."""
        with self._lock:
            self._write_file(self._loaded())

    def iter(self) -> Iterator[Token]:
        """Return an iterator over a snapshot of the current tokens."""
        return iter(list(self._loaded().values()))

    def __iter__(self) -> Iterator[Token]:
        return self.iter()

    def __len__(self) -> int:
        return len(self._loaded())

    def _loaded(self) -> dict[str, Token]:
        tokens = self._tokens
        if tokens is None:
            raise StoreNotLoadedError("Token store not yet loaded")
        return tokens

    def _commit(self, tokens: dict[str, Token]) -> None:
        lookup = frozenset(token.secret for token in tokens.values())
        self._tokens = tokens
        self._lookup = lookup

    def _read_file(self) -> dict[str, Token]:
        tokens: dict[str, Token] = {}
        try:
            # Split on "\n" only; a lone "\r" belongs to the line
            with self.path.open("r", encoding="utf-8", newline="\n") as f:
                for lineno, line in enumerate(f, start=1):
                    line = line.removesuffix("\n").removesuffix("\r")
                    try:
                        token = Token.parse(line)
                    except TokenParseError as e:
                        raise TokenParseError(
                            f"Failed to parse token from line {lineno} of {self.path}",
                            line_number=lineno,
                        ) from e
                    tokens[token.label] = token
        except FileNotFoundError:
            return {}
        except UnicodeDecodeError as e:
            raise TokenParseError(f"Keystore file {self.path} is not valid UTF-8") from e
        except OSError as e:
            raise TokenStoreIOError(
                f"Unable to open keystore file: {e}", path=self.path
            ) from e
        return tokens

    def _write_file(self, tokens: dict[str, Token]) -> None:
        tmp_path = self.path.with_name(f"{self.path.name}.tmp")
        try:
            with tmp_path.open("w", encoding="utf-8") as f:
                for token in tokens.values():
                    f.write(f"{token.serialize()}\n")
            os.replace(tmp_path, self.path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise TokenStoreIOError(
                f"Unable to write keystore file: {e}", path=self.path
            ) from e


def validate_label(label: str) -> None:
    """
    Check that ``label`` survives a write and re-read of the backing file.

    Raises:
        TokenValidationError: If the label is empty, padded with whitespace,
            or contains the field separator or a line break
    """
    if not label or not label.strip():
        raise TokenValidationError("Labels must not be empty!")
    if label != label.strip():
        raise TokenValidationError(
            "Labels must not have leading or trailing whitespace!"
        )
    if FIELD_SEPARATOR in label:
        raise TokenValidationError(
            f"Labels must not contain {FIELD_SEPARATOR!r}!"
        )
    if "\n" in label or "\r" in label:
        raise TokenValidationError("Labels must not contain line breaks!")
