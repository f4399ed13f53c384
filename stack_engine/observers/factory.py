# stack_engine/observers/factory.py

from stack_engine.observers.base import BaseObserver
from stack_engine.observers.file import FileObserver
from stack_engine.observers.http import HttpObserver
from stack_engine.observers.models import ObserverConfig, ObserverType
from stack_engine.observers.sql import SqlExtendedPropertyObserver, SqlQueryObserver

OBSERVER_TYPES = {
    ObserverType.SQL_EXTENDED_PROPERTY: SqlExtendedPropertyObserver,
    ObserverType.SQL_QUERY: SqlQueryObserver,
    ObserverType.HTTP: HttpObserver,
    ObserverType.FILE: FileObserver,
}


def create_observer(config: ObserverConfig) -> BaseObserver:
    return OBSERVER_TYPES[config.type](config)
