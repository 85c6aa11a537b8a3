"""Exception hierarchy for plugin decoding and storage."""
from __future__ import annotations

from typing import Optional


class ModmapperError(Exception):
    """Base class for all modmapper errors."""


class PluginError(ModmapperError):
    """A plugin file could not be decoded.

    Always scoped to a single plugin: the caller abandons that plugin and
    moves on to the next one.
    """

    def __init__(self, message: str, offset: Optional[int] = None,
                 plugin: Optional[str] = None):
        self.message = message
        self.offset = offset
        self.plugin = plugin
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.offset is not None:
            parts.append(f"at offset 0x{self.offset:X}")
        if self.plugin:
            parts.append(f"in {self.plugin}")
        return " ".join(parts)


class OutOfBounds(PluginError):
    """A read would move the cursor past the end of the buffer."""


class CorruptRecord(PluginError):
    """A record's declared length or compressed payload is inconsistent."""


class DanglingMasterReference(PluginError):
    """A form id's master index points past the plugin's master list."""

    def __init__(self, form_id: int, master_count: int, plugin: Optional[str] = None):
        self.form_id = form_id
        self.master_count = master_count
        super().__init__(
            f"form id 0x{form_id:08X} references master index {form_id >> 24} "
            f"but only {master_count} masters are declared",
            plugin=plugin,
        )


class UnsupportedRecordLayout(PluginError):
    """The file's top-level structure is not a TES4-style plugin."""


class StorageError(ModmapperError):
    """A write failed for a reason other than the natural-key upsert path."""


class SourceError(ModmapperError):
    """The mod source could not supply a mod, file, or plugin."""


class ArchiveError(SourceError):
    """An archive was fetched but its plugins could not be extracted."""
