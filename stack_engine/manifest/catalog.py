# stack_engine/manifest/catalog.py
"""Deployable stacks, keyed by stack id, fed by the stack-source sync."""

import logging
from dataclasses import dataclass
from threading import Lock
from typing import Dict, List, Optional, Tuple

from stack_engine.core.errors import FragmentNotDeployableError, StackNotFoundError
from stack_engine.manifest.resolver import ManifestResolver, ResolvedManifest, ResolvedStack

logger = logging.getLogger(__name__)


def make_stack_id(source_id: str, product_name: str, stack_key: str) -> str:
    return f"{source_id}:{product_name}:{stack_key}"


@dataclass
class CatalogEntry:
    stack_id: str
    source_id: str
    manifest: ResolvedManifest
    stack_key: str

    @property
    def stack(self) -> ResolvedStack:
        return self.manifest.get_stack(self.stack_key)


class StackCatalog:
    """
    In-memory index of resolved manifests.

    Re-adding a source replaces every stack it previously contributed.
    Replaced entries stay reachable by (stack id, product version) so a
    failed upgrade can be rolled back to what was running before.
    """

    def __init__(self, resolver: Optional[ManifestResolver] = None):
        self._resolver = resolver or ManifestResolver()
        self._entries: Dict[str, CatalogEntry] = {}
        self._history: Dict[Tuple[str, str], CatalogEntry] = {}
        self._lock = Lock()

    def add_source(
        self,
        source_id: str,
        manifest_text: str,
        base_location: Optional[str] = None,
    ) -> List[str]:
        """
        Resolve a manifest and register its stacks.

        Returns:
            Registered stack ids (empty for fragments)
        """
        resolved = self._resolver.resolve(manifest_text, base_location)
        product_name = resolved.name or source_id

        if not resolved.is_product:
            logger.info(f"Source '{source_id}' is a fragment; nothing registered")
            with self._lock:
                self._drop_source(source_id)
            return []

        stack_ids = []
        with self._lock:
            self._drop_source(source_id)
            for key in list(resolved.stacks) + list(resolved.broken_stacks):
                stack_id = make_stack_id(source_id, product_name, key)
                self._entries[stack_id] = CatalogEntry(
                    stack_id=stack_id,
                    source_id=source_id,
                    manifest=resolved,
                    stack_key=key,
                )
                self._history[(stack_id, resolved.product_version)] = self._entries[stack_id]
                stack_ids.append(stack_id)

        logger.info(f"Registered {len(stack_ids)} stack(s) from source '{source_id}'")
        return stack_ids

    def get(self, stack_id: str) -> CatalogEntry:
        entry = self._entries.get(stack_id)
        if entry is None:
            raise StackNotFoundError(f"Stack '{stack_id}' not found")
        if not entry.manifest.is_product:
            raise FragmentNotDeployableError(f"Stack '{stack_id}' is a fragment and cannot be deployed")
        return entry

    def get_version(self, stack_id: str, version: str) -> CatalogEntry:
        """Entry of ``stack_id`` as registered with product version ``version``."""
        entry = self._entries.get(stack_id)
        if entry is None or entry.manifest.product_version != version:
            entry = self._history.get((stack_id, version))
        if entry is None:
            raise StackNotFoundError(f"Stack '{stack_id}' version {version} not found")
        return entry

    def list_stack_ids(self) -> List[str]:
        return sorted(self._entries)

    def _drop_source(self, source_id: str) -> None:
        for stack_id in [k for k, e in self._entries.items() if e.source_id == source_id]:
            del self._entries[stack_id]
