"""Decoding of the engine's colon-delimited key listing.

A listing is a flat stream of records, one per line, e.g.::

    pub:u:255:22:ABCD1234ABCD1234:1700000000:::u:::scSC:::::ed25519:::0:
    fpr:::::::::0123...ABCD1234ABCD1234:
    uid:u::::1700000000::HASH::Alice <alice@example.com>::::::::::0:
    sub:u:255:18:1234ABCD1234ABCD:1700000000::::::e:::::cv25519::
    fpr:::::::::4567...1234ABCD1234ABCD:

``pub``/``sec`` open a key, the lines after it belong to that key until the
next ``pub``/``sec``. ``fpr`` and ``grp`` apply to whatever was opened last,
the primary key or its latest subkey. There is no end marker.

Column positions are documented in GnuPG's doc/DETAILS.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import NamedTuple
from urllib.parse import unquote

from .types import Operation

logger = logging.getLogger(__name__)

UNAVAILABLE = "Unavailable"

PRIMARY_COLUMNS: tuple[str, ...] = (
    "record_type",
    "validity",
    "length",
    "algo",
    "keyid",
    "date",
    "expires",
    "dummy",
    "ownertrust",
    "uid",
    "sig",
    "cap",
    "issuer",
    "flag",
    "token",
    "hash",
    "curve",
    "compliance",
    "updated",
    "origin",
    "comment",
)

# Subkey lines never carry origin/comment
SUBKEY_COLUMNS: tuple[str, ...] = PRIMARY_COLUMNS[:19]

# Keyserver search results: pub:<keyid>:<algo>:<length>:<date>:<expires>:<flags>
SEARCH_COLUMNS: tuple[str, ...] = (
    "record_type",
    "keyid",
    "algo",
    "length",
    "date",
    "expires",
    "flag",
)

KEYWORDS = frozenset({"pub", "uid", "sec", "fpr", "sub", "ssb", "sig", "grp"})

class Signature(NamedTuple):
    sig_class: str
    keyid: str
    uid: str

class _Layout(NamedTuple):
    primary: tuple[str, ...]
    subkey: tuple[str, ...]
    uid_index: int
    value_index: int
    embedded_uid: bool
    quoted_uids: bool

LISTING_LAYOUT = _Layout(
    PRIMARY_COLUMNS, SUBKEY_COLUMNS, uid_index=9, value_index=9, embedded_uid=True, quoted_uids=False
)
SEARCH_LAYOUT = _Layout(
    SEARCH_COLUMNS, SEARCH_COLUMNS, uid_index=1, value_index=9, embedded_uid=False, quoted_uids=True
)

def _column(fields: list[str], index: int) -> str:
    return fields[index] if index < len(fields) else UNAVAILABLE

def _columns(names: tuple[str, ...], fields: list[str]) -> dict[str, str]:
    return {name: _column(fields, i) for i, name in enumerate(names)}

@dataclass
class SubkeyRecord:
    record_type: str = UNAVAILABLE
    validity: str = UNAVAILABLE
    length: str = UNAVAILABLE
    algo: str = UNAVAILABLE
    keyid: str = UNAVAILABLE
    date: str = UNAVAILABLE
    expires: str = UNAVAILABLE
    dummy: str = UNAVAILABLE
    ownertrust: str = UNAVAILABLE
    uid: str = UNAVAILABLE
    sig: str = UNAVAILABLE
    cap: str = UNAVAILABLE
    issuer: str = UNAVAILABLE
    flag: str = UNAVAILABLE
    token: str = UNAVAILABLE
    hash: str = UNAVAILABLE
    curve: str = UNAVAILABLE
    compliance: str = UNAVAILABLE
    updated: str = UNAVAILABLE
    fingerprint: str = ""
    keygrip: str = ""

    @classmethod
    def from_fields(cls, fields: list[str], columns: tuple[str, ...] = SUBKEY_COLUMNS) -> SubkeyRecord:
        return cls(**_columns(columns, fields))

@dataclass
class KeyRecord:
    record_type: str = UNAVAILABLE
    validity: str = UNAVAILABLE
    length: str = UNAVAILABLE
    algo: str = UNAVAILABLE
    keyid: str = UNAVAILABLE
    date: str = UNAVAILABLE
    expires: str = UNAVAILABLE
    dummy: str = UNAVAILABLE
    ownertrust: str = UNAVAILABLE
    uid: str = UNAVAILABLE
    sig: str = UNAVAILABLE
    cap: str = UNAVAILABLE
    issuer: str = UNAVAILABLE
    flag: str = UNAVAILABLE
    token: str = UNAVAILABLE
    hash: str = UNAVAILABLE
    curve: str = UNAVAILABLE
    compliance: str = UNAVAILABLE
    updated: str = UNAVAILABLE
    origin: str = UNAVAILABLE
    comment: str = UNAVAILABLE
    fingerprint: str = ""
    keygrip: str = ""
    uids: list[str] = field(default_factory=list)
    signatures: list[Signature] = field(default_factory=list)
    subkeys: list[SubkeyRecord] = field(default_factory=list)

    @classmethod
    def from_fields(cls, fields: list[str], columns: tuple[str, ...] = PRIMARY_COLUMNS) -> KeyRecord:
        return cls(**_columns(columns, fields))


class _Accumulator:
    """Decode state for one pass over a listing."""

    def __init__(self, layout: _Layout) -> None:
        self.layout = layout
        self.keys: list[KeyRecord] = []
        self.current: KeyRecord | None = None
        self.in_subkey = False

    def finish_current(self) -> None:
        if self.current is not None:
            self.keys.append(self.current)
            self.current = None

    def open_key(self, fields: list[str]) -> None:
        self.finish_current()
        self.current = KeyRecord.from_fields(fields, self.layout.primary)
        uid = _column(fields, self.layout.uid_index) if self.layout.embedded_uid else ""
        if uid and uid != UNAVAILABLE:
            self.current.uids.append(uid)
        self.in_subkey = False

    def add_uid(self, key: KeyRecord, fields: list[str]) -> None:
        uid = _column(fields, self.layout.uid_index)
        if self.layout.quoted_uids:
            uid = unquote(uid)
        key.uids.append(uid)

    def add_subkey(self, key: KeyRecord, fields: list[str]) -> None:
        key.subkeys.append(SubkeyRecord.from_fields(fields, self.layout.subkey))
        self.in_subkey = True

    def add_signature(self, key: KeyRecord, fields: list[str]) -> None:
        key.signatures.append(
            Signature(
                sig_class=_column(fields, 10),
                keyid=_column(fields, 4),
                uid=_column(fields, 9),
            )
        )

    def set_fingerprint(self, key: KeyRecord, fields: list[str]) -> None:
        target: KeyRecord | SubkeyRecord = key.subkeys[-1] if self.in_subkey else key
        target.fingerprint = _column(fields, self.layout.value_index)

    def set_keygrip(self, key: KeyRecord, fields: list[str]) -> None:
        target: KeyRecord | SubkeyRecord = key.subkeys[-1] if self.in_subkey else key
        target.keygrip = _column(fields, self.layout.value_index)

    def feed(self, fields: list[str]) -> None:
        keyword = fields[0]
        if keyword in ("pub", "sec"):
            self.open_key(fields)
            return

        key = self.current
        if key is None:
            logger.debug("skipping %s line outside of any key", keyword)
            return

        if keyword == "uid":
            self.add_uid(key, fields)
        elif keyword in ("sub", "ssb"):
            self.add_subkey(key, fields)
        elif keyword == "sig":
            self.add_signature(key, fields)
        elif keyword == "fpr":
            self.set_fingerprint(key, fields)
        elif keyword == "grp":
            self.set_keygrip(key, fields)

def decode_key_list(text: str, operation: Operation = Operation.LIST_KEYS) -> list[KeyRecord]:
    """Decode colon listing output into key records, in listing order."""
    layout = SEARCH_LAYOUT if operation is Operation.SEARCH_KEYS else LISTING_LAYOUT
    acc = _Accumulator(layout)

    for raw_line in text.split("\n"):
        line = raw_line.strip()
        if not line:
            break

        fields = line.split(":")
        if fields[0] in KEYWORDS:
            acc.feed(fields)

    acc.finish_current()
    return acc.keys
