# stack_engine/planner/compiler.py
"""Deployment Plan Compiler - resolved stack -> ordered, name-scoped plan."""

import logging
from typing import Dict, List, Mapping, Optional, Set

from stack_engine.core.errors import CircularDependencyError, ManifestValidationError
from stack_engine.manifest.resolver import ResolvedStack
from stack_engine.manifest.schema import ServiceDefinition
from stack_engine.manifest.variables import resolve_placeholders, resolve_variable_values
from stack_engine.planner.models import DeploymentPlan, DeploymentStep, NetworkDefinition, VolumeMount
from stack_engine.planner.naming import image_version, is_bind_mount, sanitize_name, scoped_name

logger = logging.getLogger(__name__)

DEFAULT_NETWORK = "default"
UNSPECIFIED_VERSION = "unspecified"


class PlanCompiler:

    def compile(
        self,
        stack: ResolvedStack,
        variable_values: Optional[Mapping[str, str]],
        stack_name: str,
    ) -> DeploymentPlan:
        """
        Build a DeploymentPlan.

        Raises:
            CircularDependencyError: dependsOn graph has a cycle (no partial plan)
            ManifestValidationError: dependsOn points at an unknown service
        """
        values = resolve_variable_values(stack.variables, variable_values)
        stack_name = sanitize_name(stack_name)

        plan = DeploymentPlan(
            stack_name=stack_name,
            stack_version=stack.product_version or UNSPECIFIED_VERSION,
            global_env_vars=dict(values),
        )

        plan.networks = self._build_networks(stack, stack_name)
        plan.named_volumes = {
            name: (name if volume.external else scoped_name(stack_name, name))
            for name, volume in stack.volumes.items()
        }

        ordered = self._topological_order(stack.services)
        first_network = next(iter(plan.networks.values())).resolved_name

        for order, service_name in enumerate(ordered):
            service = stack.services[service_name]
            plan.steps.append(
                self._build_step(service_name, service, order, values, plan, stack_name, first_network)
            )

        logger.info(
            f"Compiled plan for '{stack_name}' ({plan.stack_version}): "
            f"{len(plan.steps)} step(s), {len(plan.networks)} network(s)"
        )
        return plan

    # -------------------------
    # ORDERING
    # -------------------------

    @staticmethod
    def _topological_order(services: Mapping[str, ServiceDefinition]) -> List[str]:
        """Depth-first; a node met again while on the current path is a cycle."""
        missing = [
            f"Service '{name}' depends on non-existent service '{dep}'"
            for name, service in services.items()
            for dep in service.depends_on
            if dep not in services
        ]
        if missing:
            raise ManifestValidationError(missing)

        ordered: List[str] = []
        visited: Set[str] = set()
        visiting: Set[str] = set()

        def visit(name: str) -> None:
            if name in visited:
                return
            if name in visiting:
                raise CircularDependencyError(name)

            visiting.add(name)
            for dependency in services[name].depends_on:
                visit(dependency)
            visiting.discard(name)

            visited.add(name)
            ordered.append(name)

        for name in services:
            visit(name)

        return ordered

    # -------------------------
    # RESOURCES
    # -------------------------

    @staticmethod
    def _build_networks(stack: ResolvedStack, stack_name: str) -> Dict[str, NetworkDefinition]:
        if not stack.networks:
            return {
                DEFAULT_NETWORK: NetworkDefinition(
                    logical_name=DEFAULT_NETWORK,
                    resolved_name=scoped_name(stack_name, DEFAULT_NETWORK),
                )
            }

        return {
            name: NetworkDefinition(
                logical_name=name,
                resolved_name=name if network.external else scoped_name(stack_name, name),
                external=network.external,
                driver=network.driver,
            )
            for name, network in stack.networks.items()
        }

    def _build_step(
        self,
        service_name: str,
        service: ServiceDefinition,
        order: int,
        values: Mapping[str, str],
        plan: DeploymentPlan,
        stack_name: str,
        first_network: str,
    ) -> DeploymentStep:
        image = resolve_placeholders(service.image, values)

        container_name = (
            resolve_placeholders(service.container_name, values)
            if service.container_name
            else scoped_name(stack_name, service_name)
        )

        if service.networks:
            networks = [
                plan.networks[n].resolved_name if n in plan.networks else n
                for n in service.networks
            ]
        else:
            networks = [first_network]

        ports = [resolve_placeholders(p, values) for p in service.ports]

        return DeploymentStep(
            context_name=service_name,
            image=image,
            version=image_version(image),
            container_name=container_name,
            order=order,
            lifecycle=service.lifecycle.value,
            networks=networks,
            env_vars={k: resolve_placeholders(v, values) for k, v in service.environment.items()},
            ports=ports,
            volumes=[self._volume_mount(v, values, plan, stack_name) for v in service.volumes],
            depends_on=list(service.depends_on),
            labels={k: resolve_placeholders(v, values) for k, v in service.labels.items()},
            restart=service.restart,
            command=self._resolve_command(service.command, values),
            entrypoint=self._resolve_command(service.entrypoint, values),
            working_dir=service.working_dir,
            user=service.user,
            health_check=service.health_check.model_dump(exclude_none=True) if service.health_check else None,
            internal=not ports,
        )

    @staticmethod
    def _volume_mount(spec: str, values, plan: DeploymentPlan, stack_name: str) -> VolumeMount:
        resolved = resolve_placeholders(spec, values)
        source, sep, target = resolved.partition(":")

        if not sep:
            # Anonymous volume: container path only.
            return VolumeMount(source="", target=resolved)

        if is_bind_mount(source):
            return VolumeMount(source=source, target=target)

        named = plan.named_volumes.get(source) or scoped_name(stack_name, source)
        return VolumeMount(source=named, target=target, named=True)

    @staticmethod
    def _resolve_command(command, values):
        if command is None:
            return None
        if isinstance(command, list):
            return [resolve_placeholders(part, values) for part in command]
        return resolve_placeholders(command, values)
