# stack_engine/api/container.py
"""FastAPI dependencies; tests replace them through app.dependency_overrides."""

from stack_engine.container import deployment_service, observer_service, stack_catalog


def get_deployment_service():
    return deployment_service


def get_observer_service():
    return observer_service


def get_stack_catalog():
    return stack_catalog
