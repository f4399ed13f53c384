# stack_engine/manifest/resolver.py
"""
Manifest Resolver - turns a manifest document into resolved stacks.

Flow:
1. Parse and classify (Product / Fragment, single / multi stack)
2. Load `include` fragments relative to the including file
3. Merge shared variables with stack-level overrides
4. Validate declarations (aggregated)

A missing include only breaks the stack that references it; an include
cycle is a parse error for the whole document.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from stack_engine.core.errors import (
    IncludeCycleError,
    IncludeNotFoundError,
    ManifestParseError,
    ManifestValidationError,
    StackNotFoundError,
)
from stack_engine.manifest.schema import (
    Manifest,
    MaintenanceObserverDefinition,
    ResourceDefinition,
    ServiceDefinition,
    StackBody,
    parse_manifest,
)
from stack_engine.manifest.validation import validate_services, validate_variable_definitions
from stack_engine.manifest.variables import VariableDefinition, merge_variable_layers

logger = logging.getLogger(__name__)

MANIFEST_SUFFIXES = {".yaml", ".yml", ".json"}
INLINE_ORIGIN = "<inline>"


@dataclass
class StackContent:
    """Services and resources of one stack, before variable layering."""

    name: Optional[str] = None
    description: Optional[str] = None
    variables: Dict[str, VariableDefinition] = field(default_factory=dict)
    services: Dict[str, ServiceDefinition] = field(default_factory=dict)
    volumes: Dict[str, ResourceDefinition] = field(default_factory=dict)
    networks: Dict[str, ResourceDefinition] = field(default_factory=dict)
    maintenance_observer: Optional[MaintenanceObserverDefinition] = None
    source_path: Optional[str] = None

    def absorb(self, other: "StackContent") -> None:
        """Merge another stack into this one; existing entries win."""
        for target, source in (
            (self.variables, other.variables),
            (self.services, other.services),
            (self.volumes, other.volumes),
            (self.networks, other.networks),
        ):
            for key, value in source.items():
                if key in target:
                    logger.warning(f"Duplicate entry '{key}' while flattening {other.source_path}; keeping first")
                    continue
                target[key] = value
        if self.maintenance_observer is None:
            self.maintenance_observer = other.maintenance_observer


@dataclass
class ResolvedStack:
    """A deployable unit: one stack with its effective variable definitions."""

    key: str
    name: str
    product_name: Optional[str]
    product_version: Optional[str]
    variables: Dict[str, VariableDefinition]
    services: Dict[str, ServiceDefinition]
    volumes: Dict[str, ResourceDefinition]
    networks: Dict[str, ResourceDefinition]
    description: Optional[str] = None
    maintenance_observer: Optional[MaintenanceObserverDefinition] = None
    source_path: Optional[str] = None


@dataclass
class ResolvedManifest:
    manifest: Manifest
    stacks: Dict[str, ResolvedStack] = field(default_factory=dict)
    broken_stacks: Dict[str, IncludeNotFoundError] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    base_location: Optional[str] = None

    @property
    def name(self) -> Optional[str]:
        return self.manifest.name

    @property
    def product_version(self) -> Optional[str]:
        return self.manifest.product_version

    @property
    def is_product(self) -> bool:
        return self.manifest.is_product

    def get_stack(self, key: str) -> ResolvedStack:
        if key in self.broken_stacks:
            raise self.broken_stacks[key]
        try:
            return self.stacks[key]
        except KeyError:
            raise StackNotFoundError(f"Stack '{key}' not found in manifest '{self.name}'")


class ManifestResolver:
    """Resolves manifests and their include graph."""

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    # -------------------------
    # PUBLIC API
    # -------------------------

    def resolve_file(self, path) -> ResolvedManifest:
        path = Path(path).resolve()
        if not path.is_file():
            raise ManifestParseError(f"Manifest file not found: {path}")
        return self.resolve(path.read_text(encoding=self.encoding), str(path))

    def resolve(self, raw_document: str, base_location: Optional[str] = None) -> ResolvedManifest:
        """
        Resolve a manifest document.

        Args:
            raw_document: YAML/JSON text
            base_location: the manifest file path or its directory; include
                paths are resolved against it (cwd when omitted)

        Raises:
            ManifestParseError: malformed structure or include cycle
            ManifestValidationError: aggregated declaration errors
        """
        manifest = parse_manifest(raw_document)
        base_dir, origin = self._locate(base_location)

        result = ResolvedManifest(manifest=manifest, base_location=base_location)

        if not manifest.is_product:
            result.warnings.append(
                "Manifest has no productVersion; it is a fragment and can only be used via include"
            )

        chain = [origin]
        cache: Dict[str, StackContent] = {}

        if manifest.is_multi_stack:
            for key, entry in manifest.stacks.items():
                if entry.include:
                    try:
                        content = self._load_include(key, entry.include, base_dir, chain, cache)
                    except IncludeNotFoundError as e:
                        logger.warning(f"⚠️ {e}")
                        result.broken_stacks[key] = e
                        continue
                else:
                    content = self._content_of(entry, entry.metadata.name if entry.metadata else None)
                    content.description = entry.metadata.description if entry.metadata else None

                result.stacks[key] = self._build_stack(key, content, manifest)
        else:
            key = manifest.name or "default"
            content = self._content_of(manifest, manifest.name)
            content.description = manifest.metadata.description if manifest.metadata else None
            result.stacks[key] = self._build_stack(key, content, manifest)

        errors = validate_variable_definitions(manifest.shared_variables, prefix="Shared ")
        multi = len(result.stacks) > 1 or manifest.is_multi_stack
        for key, stack in result.stacks.items():
            prefix = f"[{key}] " if multi else ""
            errors.extend(validate_variable_definitions(
                {n: d for n, d in stack.variables.items() if n not in manifest.shared_variables},
                prefix=prefix,
            ))
            errors.extend(validate_services(stack.services, prefix=prefix))

        if errors:
            raise ManifestValidationError(errors)

        logger.info(
            f"Resolved manifest '{manifest.name}' "
            f"({'product ' + manifest.product_version if manifest.is_product else 'fragment'}): "
            f"{len(result.stacks)} stack(s), {len(result.broken_stacks)} broken"
        )
        return result

    # -------------------------
    # INCLUDE GRAPH
    # -------------------------

    def _load_include(
        self,
        stack_key: str,
        include: str,
        base_dir: Path,
        chain: List[str],
        cache: Dict[str, StackContent],
    ) -> StackContent:
        """
        Depth-first include loading. ``chain`` is the visiting path,
        ``cache`` holds fragments already fully loaded.
        """
        path = (base_dir / include).resolve()
        node = str(path)

        if node in chain:
            raise IncludeCycleError(chain + [node])

        if node in cache:
            return self._copy(cache[node])

        if not path.is_file():
            raise IncludeNotFoundError(stack_key, node)

        fragment = parse_manifest(path.read_text(encoding=self.encoding))
        logger.debug(f"Loaded fragment {node} for stack '{stack_key}'")

        if fragment.is_multi_stack:
            content = StackContent(
                name=fragment.name,
                description=fragment.metadata.description if fragment.metadata else None,
                variables=dict(fragment.shared_variables),
                maintenance_observer=fragment.maintenance_observer,
                source_path=node,
            )
            for sub_key, sub_entry in fragment.stacks.items():
                if sub_entry.include:
                    sub = self._load_include(stack_key, sub_entry.include, path.parent, chain + [node], cache)
                else:
                    sub = self._content_of(sub_entry, sub_key)
                    sub.source_path = node
                content.absorb(sub)
        else:
            content = self._content_of(fragment, fragment.name)
            content.description = fragment.metadata.description if fragment.metadata else None
            content.maintenance_observer = fragment.maintenance_observer
            content.source_path = node

        cache[node] = content
        return self._copy(content)

    # -------------------------
    # HELPERS
    # -------------------------

    @staticmethod
    def _content_of(body: StackBody, name: Optional[str]) -> StackContent:
        return StackContent(
            name=name,
            variables=dict(body.variables),
            services=dict(body.services),
            volumes=dict(body.volumes),
            networks=dict(body.networks),
        )

    @staticmethod
    def _copy(content: StackContent) -> StackContent:
        return StackContent(
            name=content.name,
            description=content.description,
            variables=dict(content.variables),
            services=dict(content.services),
            volumes=dict(content.volumes),
            networks=dict(content.networks),
            maintenance_observer=content.maintenance_observer,
            source_path=content.source_path,
        )

    @staticmethod
    def _build_stack(key: str, content: StackContent, manifest: Manifest) -> ResolvedStack:
        return ResolvedStack(
            key=key,
            name=content.name or key,
            product_name=manifest.name,
            product_version=manifest.product_version,
            variables=merge_variable_layers(manifest.shared_variables, content.variables),
            services=content.services,
            volumes=content.volumes,
            networks=content.networks,
            description=content.description,
            maintenance_observer=content.maintenance_observer or manifest.maintenance_observer,
            source_path=content.source_path,
        )

    @staticmethod
    def _locate(base_location: Optional[str]):
        """(directory for includes, graph node of the root document)."""
        if not base_location:
            return Path.cwd(), INLINE_ORIGIN

        location = Path(base_location).resolve()
        if location.is_file() or location.suffix.lower() in MANIFEST_SUFFIXES:
            return location.parent, str(location)
        return location, INLINE_ORIGIN
