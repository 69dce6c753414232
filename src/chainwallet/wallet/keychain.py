"""
Keychain index: maps (keychain, derivation index) to output scripts.

Each keychain has a dense range of revealed indices [0, next_unrevealed)
plus a lookahead window of scripts derived ahead of it, so payments to
addresses that were handed out by another copy of the wallet are still
recognized.
"""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from chainwallet.constants import DEFAULT_LOOKAHEAD
from chainwallet.models import KeychainKind
from chainwallet.wallet.bip32 import Bip86Descriptor


@dataclass
class KeychainEntry:
    keychain: KeychainKind
    index: int
    script: bytes
    used: bool


@dataclass
class KeychainSnapshot:
    next_unrevealed: dict[KeychainKind, int]
    used: dict[KeychainKind, set[int]]
    derived: dict[KeychainKind, int]


class KeychainIndex:
    def __init__(
        self,
        descriptors: dict[KeychainKind, Bip86Descriptor],
        lookahead: int = DEFAULT_LOOKAHEAD,
    ):
        if lookahead < 0:
            raise ValueError("Lookahead must not be negative")

        self.descriptors = descriptors
        self.lookahead = lookahead

        self._scripts: dict[KeychainKind, list[bytes]] = {k: [] for k in descriptors}
        self._spk_index: dict[bytes, tuple[KeychainKind, int]] = {}
        self._next_unrevealed: dict[KeychainKind, int] = {k: 0 for k in descriptors}
        self._used: dict[KeychainKind, set[int]] = {k: set() for k in descriptors}

        for keychain in descriptors:
            self._replenish(keychain)

    @property
    def keychains(self) -> list[KeychainKind]:
        return list(self.descriptors)

    def _replenish(self, keychain: KeychainKind) -> None:
        """Derive scripts up to next_unrevealed + lookahead."""
        scripts = self._scripts[keychain]
        target = self._next_unrevealed[keychain] + self.lookahead
        start = len(scripts)
        while len(scripts) < target:
            index = len(scripts)
            script = self.descriptors[keychain].script_at(index)
            scripts.append(script)
            self._spk_index[script] = (keychain, index)
        if len(scripts) > start:
            logger.debug(f"Derived {keychain.value} scripts {start}..{len(scripts) - 1}")

    def derive(self, keychain: KeychainKind, index: int) -> bytes:
        """Script at (keychain, index). Pure: never changes the index state."""
        scripts = self._scripts[keychain]
        if 0 <= index < len(scripts):
            return scripts[index]
        return self.descriptors[keychain].script_at(index)

    def peek(self, keychain: KeychainKind, index: int) -> bytes:
        return self.derive(keychain, index)

    def next_unrevealed(self, keychain: KeychainKind) -> int:
        return self._next_unrevealed[keychain]

    def reveal_next(self, keychain: KeychainKind) -> int:
        """Hand out the next never-revealed index and advance past it."""
        index = self._next_unrevealed[keychain]
        self._next_unrevealed[keychain] = index + 1
        self._replenish(keychain)
        return index

    def reveal_to(self, keychain: KeychainKind, index: int) -> bool:
        """Ensure every index up to and including index is revealed."""
        if index < self._next_unrevealed[keychain]:
            return False
        self._next_unrevealed[keychain] = index + 1
        self._replenish(keychain)
        return True

    def last_unused(self, keychain: KeychainKind) -> int:
        """
        Lowest revealed index not used by any known transaction.

        When every revealed index is used this is the next unrevealed index,
        returned without revealing it, so repeated calls agree.
        """
        used = self._used[keychain]
        for index in range(self._next_unrevealed[keychain]):
            if index not in used:
                return index
        return self._next_unrevealed[keychain]

    def is_used(self, keychain: KeychainKind, index: int) -> bool:
        return index in self._used[keychain]

    def index_of(self, script: bytes) -> tuple[KeychainKind, int] | None:
        return self._spk_index.get(script)

    def is_mine(self, script: bytes) -> bool:
        return script in self._spk_index

    def match_script(self, script: bytes) -> tuple[KeychainKind, int] | None:
        """
        Look up a script among derived and lookahead scripts.

        A match marks the index used. A match in the lookahead window reveals
        every index up to it, which also slides the window forward.
        """
        found = self._spk_index.get(script)
        if found is None:
            return None

        keychain, index = found
        self._used[keychain].add(index)
        if self.reveal_to(keychain, index):
            logger.debug(f"Script matched lookahead index {index} of {keychain.value} keychain")
        return found

    def revealed(self, keychain: KeychainKind) -> list[KeychainEntry]:
        used = self._used[keychain]
        return [
            KeychainEntry(keychain, index, self.derive(keychain, index), index in used)
            for index in range(self._next_unrevealed[keychain])
        ]

    def signing_key(self, keychain: KeychainKind, index: int) -> bytes:
        return self.descriptors[keychain].signing_key_at(index)

    def snapshot(self) -> KeychainSnapshot:
        return KeychainSnapshot(
            next_unrevealed=dict(self._next_unrevealed),
            used={k: set(v) for k, v in self._used.items()},
            derived={k: len(v) for k, v in self._scripts.items()},
        )

    def restore(self, snapshot: KeychainSnapshot) -> None:
        self._next_unrevealed = dict(snapshot.next_unrevealed)
        self._used = {k: set(v) for k, v in snapshot.used.items()}
        # Scripts derived since the snapshot would widen the lookahead window
        for keychain, count in snapshot.derived.items():
            scripts = self._scripts[keychain]
            for script in scripts[count:]:
                del self._spk_index[script]
            del scripts[count:]
