"""Master-chain resolution of raw form ids, and plugin fingerprints.

A raw form id's top byte indexes into the plugin's own master list: index
0 is the first MAST entry, 1 the second, and the slot right after the last
master is the plugin itself. The remaining three bytes are the id local to
whichever file that index selects.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple, Sequence

import xxhash

from modmapper.errors import DanglingMasterReference

LOCAL_ID_MASK = 0x00FFFFFF


class FormKey(NamedTuple):
    """A form id made global: local id plus the file that defines it."""
    form_id: int
    master: str

    def __str__(self) -> str:
        return f"{self.master}:{self.form_id:06X}"


@dataclass(frozen=True)
class MasterChain:
    """Index table from master byte to owning filename, built per plugin."""
    plugin_name: str
    masters: tuple[str, ...]

    @classmethod
    def build(cls, plugin_name: str, masters: Sequence[str]) -> MasterChain:
        return cls(plugin_name=plugin_name, masters=tuple(masters))

    @property
    def own_index(self) -> int:
        return len(self.masters)

    def owner(self, index: int) -> str:
        """Filename occupying a master-chain slot."""
        if index < len(self.masters):
            return self.masters[index]
        if index == self.own_index:
            return self.plugin_name
        raise DanglingMasterReference(index << 24, len(self.masters), plugin=self.plugin_name)

    def resolve(self, raw_form_id: int) -> FormKey:
        """Split a raw form id into (local id, owning file)."""
        index = raw_form_id >> 24
        if index > self.own_index:
            raise DanglingMasterReference(raw_form_id, len(self.masters),
                                          plugin=self.plugin_name)
        return FormKey(raw_form_id & LOCAL_ID_MASK, self.owner(index))


def fingerprint(data: bytes) -> int:
    """xxHash64 of the plugin's bytes as a signed 64-bit integer.

    Signed so the value fits SQLite's INTEGER column unchanged.
    """
    value = xxhash.xxh64_intdigest(data)
    if value >= 1 << 63:
        value -= 1 << 64
    return value
