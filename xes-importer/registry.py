"""Attribute and extension definition registry."""

import logging
from typing import Dict, Optional, Tuple

from xes_parser import DEFAULT_ATTRIBUTE_TYPE


class AttributeRegistry:
    """Deduplicates attribute and extension definitions for one import run.

    The first lookup of an attribute ``(key, type)`` or an extension prefix
    writes its definition row through ``store`` and caches the generated id;
    later lookups are answered from the cache without touching the store.
    Instances are single-writer and must not be shared between imports.
    """

    def __init__(self, store):
        self.logger = logging.getLogger("xes_importer.registry")
        self.store = store
        self._attributes: Dict[Tuple[str, str], int] = {}
        self._extensions: Dict[str, int] = {}

    def resolve_attribute(self, key: str, attr_type: Optional[str] = None) -> int:
        """Return the id of the ``(key, attr_type)`` definition, creating it on first sight."""
        attr_type = attr_type or DEFAULT_ATTRIBUTE_TYPE
        cache_key = (key, attr_type)

        attr_id = self._attributes.get(cache_key)
        if attr_id is not None:
            return attr_id

        attr_id = self.store.insert_returning_id("attribute", {
            'type': attr_type,
            'key': key,
            'ext_id': self._extension_for_key(key),
            'parent_id': None,
        })
        self._attributes[cache_key] = attr_id
        self.logger.debug(f"Created attribute {key!r} ({attr_type}) with ID: {attr_id}")
        return attr_id

    def resolve_extension(self, prefix: Optional[str]) -> Optional[int]:
        """Return the id of a registered extension prefix, or None."""
        return self._extensions.get(prefix or "")

    def register_extension(self, name: Optional[str], prefix: Optional[str], uri: Optional[str]) -> int:
        """Create the extension row unless its prefix is already registered."""
        prefix = prefix or ""
        ext_id = self._extensions.get(prefix)
        if ext_id is not None:
            return ext_id

        ext_id = self.store.insert_returning_id("extension", {
            'name': name or "",
            'prefix': prefix,
            'uri': uri or "",
        })
        self._extensions[prefix] = ext_id
        self.logger.debug(f"Inserted extension: {name} with ID: {ext_id}")
        return ext_id

    def _extension_for_key(self, key: str) -> Optional[int]:
        # "concept:name" belongs to the extension with prefix "concept"
        if ':' not in key:
            return None
        return self.resolve_extension(key.split(':', 1)[0])

    @property
    def attribute_count(self) -> int:
        return len(self._attributes)

    @property
    def extension_count(self) -> int:
        return len(self._extensions)
