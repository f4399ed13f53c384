"""Test manifest parsing, include resolution and the stack catalog."""

import pytest

from stack_engine.core.errors import (
    IncludeCycleError,
    IncludeNotFoundError,
    ManifestParseError,
    ManifestValidationError,
    StackNotFoundError,
)
from stack_engine.manifest.catalog import StackCatalog
from stack_engine.manifest.resolver import ManifestResolver
from stack_engine.manifest.schema import ServiceLifecycle, detect_format


@pytest.fixture
def resolver():
    return ManifestResolver()


class TestParsing:
    """Test format detection and structural errors."""

    def test_detects_formats(self):
        assert detect_format({"stacks": {"a": {}}}) == "multi-stack"
        assert detect_format({"metadata": {}, "services": {}}) == "single-stack"
        assert detect_format({"version": "rsgo/1", "services": {}}) == "single-stack"

    def test_document_without_services_or_stacks_fails(self, resolver):
        with pytest.raises(ManifestParseError, match="either 'services' or 'stacks'"):
            resolver.resolve("metadata:\n  name: x\n")

    def test_bare_compose_file_is_not_recognized(self, resolver):
        with pytest.raises(ManifestParseError, match="Unrecognized manifest format"):
            resolver.resolve("services:\n  web:\n    image: nginx\n")

    def test_invalid_yaml_fails(self, resolver):
        with pytest.raises(ManifestParseError):
            resolver.resolve("metadata: [unclosed\n")

    def test_stacks_and_services_together_fail(self, resolver):
        doc = """
metadata: {name: x, productVersion: "1"}
services: {web: {image: nginx}}
stacks: {a: {services: {api: {image: api}}}}
"""
        with pytest.raises(ManifestParseError, match="both 'stacks' and top-level 'services'"):
            resolver.resolve(doc)

    def test_service_fields(self, resolver):
        doc = """
metadata: {name: Blog, productVersion: "1.0"}
services:
  migrate:
    image: blog/migrate:1.0
    lifecycle: init
  web:
    image: blog/web:1.0
    containerName: blog-web
    dependsOn: [migrate]
    environment:
      - MODE=production
      - EMPTY=
    healthCheck:
      test: ["CMD", "curl", "-f", "http://localhost"]
      interval: 10s
"""
        stack = resolver.resolve(doc).get_stack("Blog")

        assert stack.services["migrate"].lifecycle == ServiceLifecycle.INIT
        web = stack.services["web"]
        assert web.container_name == "blog-web"
        assert web.depends_on == ["migrate"]
        assert web.environment == {"MODE": "production", "EMPTY": ""}
        assert web.health_check.interval == "10s"


class TestProductsAndFragments:
    """Test product/fragment classification."""

    def test_single_stack_product(self, resolver):
        resolved = resolver.resolve("""
metadata: {name: Wiki, productVersion: "3.2"}
services: {web: {image: "wiki:3.2"}}
""")
        assert resolved.is_product
        assert list(resolved.stacks) == ["Wiki"]
        assert resolved.get_stack("Wiki").product_version == "3.2"
        assert resolved.warnings == []

    def test_fragment_resolves_with_warning(self, resolver):
        resolved = resolver.resolve("""
metadata: {name: Cache}
services: {redis: {image: "redis:7"}}
""")
        assert not resolved.is_product
        assert any("fragment" in w for w in resolved.warnings)

    def test_unknown_stack_key(self, resolver):
        resolved = resolver.resolve("""
metadata: {name: Wiki, productVersion: "3.2"}
services: {web: {image: "wiki:3.2"}}
""")
        with pytest.raises(StackNotFoundError):
            resolved.get_stack("Other")


class TestIncludes:
    """Test include composition across files."""

    def test_include_relative_to_manifest(self, resolver, write_manifest):
        write_manifest("fragments/identity.yaml", """
            metadata:
              name: Identity
              description: Login service
            variables:
              ADMIN_USER:
                default: admin
            services:
              identity:
                image: corp/identity:5
        """)
        root = write_manifest("product.yaml", """
            metadata:
              name: Platform
              productVersion: "5.0"
            sharedVariables:
              REGION:
                type: Select
                label: Region
                default: eu
                options:
                  - value: eu
                  - value: us
            stacks:
              identity:
                include: fragments/identity.yaml
              billing:
                variables:
                  REGION:
                    default: us
                services:
                  billing:
                    image: corp/billing:5
        """)

        resolved = resolver.resolve_file(root)
        identity = resolved.get_stack("identity")
        billing = resolved.get_stack("billing")

        assert identity.name == "Identity"
        assert identity.description == "Login service"
        assert set(identity.services) == {"identity"}
        assert set(identity.variables) == {"REGION", "ADMIN_USER"}
        assert identity.variables["REGION"].default == "eu"
        assert identity.source_path.endswith("identity.yaml")

        assert billing.variables["REGION"].default == "us"
        assert billing.variables["REGION"].label == "Region"

    def test_missing_include_marks_only_that_stack_broken(self, resolver, write_manifest):
        root = write_manifest("product.yaml", """
            metadata: {name: Platform, productVersion: "5.0"}
            stacks:
              ghost:
                include: missing.yaml
              api:
                services:
                  api: {image: "corp/api:5"}
        """)

        resolved = resolver.resolve_file(root)

        assert "api" in resolved.stacks
        assert "ghost" in resolved.broken_stacks
        with pytest.raises(IncludeNotFoundError):
            resolved.get_stack("ghost")

    def test_multi_stack_fragment_is_flattened(self, resolver, write_manifest):
        write_manifest("observability.yaml", """
            metadata: {name: Observability}
            sharedVariables:
              RETENTION: {default: 7d}
            stacks:
              metrics:
                services:
                  prometheus: {image: "prom/prometheus"}
              logs:
                services:
                  loki: {image: "grafana/loki"}
        """)
        root = write_manifest("product.yaml", """
            metadata: {name: Platform, productVersion: "5.0"}
            stacks:
              observability:
                include: observability.yaml
        """)

        stack = resolver.resolve_file(root).get_stack("observability")

        assert set(stack.services) == {"prometheus", "loki"}
        assert stack.variables["RETENTION"].default == "7d"

    def test_mutual_include_is_a_cycle(self, resolver, write_manifest):
        write_manifest("a.yaml", """
            metadata: {name: A}
            stacks:
              b:
                include: b.yaml
        """)
        write_manifest("b.yaml", """
            metadata: {name: B}
            stacks:
              a:
                include: a.yaml
        """)
        root = write_manifest("product.yaml", """
            metadata: {name: Platform, productVersion: "1"}
            stacks:
              a:
                include: a.yaml
        """)

        with pytest.raises(IncludeCycleError) as exc_info:
            resolver.resolve_file(root)

        assert exc_info.value.chain[-1].endswith("a.yaml")

    def test_self_include_is_a_cycle(self, resolver, write_manifest):
        root = write_manifest("product.yaml", """
            metadata: {name: Platform, productVersion: "1"}
            stacks:
              again:
                include: product.yaml
        """)

        with pytest.raises(IncludeCycleError):
            resolver.resolve_file(root)


class TestManifestValidation:
    """Test aggregated declaration errors."""

    def test_all_problems_reported_together(self, resolver):
        doc = """
metadata: {name: Broken, productVersion: "1"}
variables:
  SIZE: {type: Select}
  WORKERS: {type: Number, min: 10, max: 2}
  CODE: {pattern: "[unclosed"}
services:
  web:
    image: web
    dependsOn: [cache]
  sidecar: {}
"""
        with pytest.raises(ManifestValidationError) as exc_info:
            resolver.resolve(doc)

        errors = exc_info.value.errors
        assert len(errors) == 5
        assert any("Select type requires at least one option" in e for e in errors)
        assert any("min (10) cannot be greater than max (2)" in e for e in errors)
        assert any("invalid regex pattern" in e for e in errors)
        assert "Service 'web' depends on non-existent service 'cache'" in errors
        assert "Service 'sidecar': image is required" in errors


class TestStackCatalog:
    """Test stack registration from sources."""

    PRODUCT = """
metadata: {name: Shop, productVersion: "1.0"}
stacks:
  frontend:
    services: {web: {image: "shop/web:1.0"}}
  backend:
    services: {api: {image: "shop/api:1.0"}}
"""

    def test_stack_ids(self):
        catalog = StackCatalog()
        ids = catalog.add_source("git-main", self.PRODUCT)

        assert sorted(ids) == ["git-main:Shop:backend", "git-main:Shop:frontend"]
        assert catalog.get("git-main:Shop:frontend").stack.services["web"].image == "shop/web:1.0"

    def test_fragment_registers_nothing(self):
        catalog = StackCatalog()
        ids = catalog.add_source("git-main", "metadata: {name: Cache}\nservices: {redis: {image: redis}}\n")

        assert ids == []
        assert catalog.list_stack_ids() == []

    def test_resync_replaces_previous_stacks(self):
        catalog = StackCatalog()
        catalog.add_source("git-main", self.PRODUCT)
        catalog.add_source("git-main", """
metadata: {name: Shop, productVersion: "1.1"}
services: {web: {image: "shop/web:1.1"}}
""")

        assert catalog.list_stack_ids() == ["git-main:Shop:Shop"]
        with pytest.raises(StackNotFoundError):
            catalog.get("git-main:Shop:frontend")

    def test_fragment_cannot_be_looked_up_as_deployable(self):
        catalog = StackCatalog()
        with pytest.raises(StackNotFoundError):
            catalog.get("git-main:Cache:Cache")

    def test_replaced_versions_stay_reachable(self):
        catalog = StackCatalog()
        catalog.add_source("git-main", self.PRODUCT)
        catalog.add_source("git-main", self.PRODUCT.replace("1.0", "1.1"))

        old = catalog.get_version("git-main:Shop:frontend", "1.0")
        current = catalog.get_version("git-main:Shop:frontend", "1.1")

        assert old.stack.services["web"].image == "shop/web:1.0"
        assert current is catalog.get("git-main:Shop:frontend")
        with pytest.raises(StackNotFoundError, match="version 0.9 not found"):
            catalog.get_version("git-main:Shop:frontend", "0.9")
