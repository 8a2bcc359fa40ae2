"""Native back-end: a registry of typed factory functions.

Each factory is registered under a name together with an optional
pydantic configuration model.  A spec's string parameters are validated
against that model when the behavior is resolved, so unknown parameter
names and unconvertible values fail resolution up front.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from collections.abc import Callable, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from pyagg.behavior.handle import BehaviorHandle
from pyagg.exceptions import AggConfigError, ResolutionError

_logger = logging.getLogger(__name__)


class NativeConfig(BaseModel):
    """Base for native factory configuration models."""

    model_config = ConfigDict(frozen=True, extra="forbid")


def _field_names(model: type[BaseModel]) -> set[str]:
    """Parameter names *model* accepts, aliases included."""
    names: set[str] = set()
    for field_name, field in model.model_fields.items():
        names.add(field_name)
        if field.alias:
            names.add(field.alias)
        if isinstance(field.validation_alias, str):
            names.add(field.validation_alias)
    return names


@dataclasses.dataclass(frozen=True)
class NativeFactory:
    name: str
    factory: Callable[..., Any]
    config_model: type[BaseModel] | None = None


class NativeRegistry:
    """Name → factory lookup for natively implemented behaviors.

    Thread-safe for concurrent registration and lookup.
    """

    def __init__(self) -> None:
        self._factories: dict[str, NativeFactory] = {}
        self._lock = threading.Lock()

    def register(
        self,
        name: str,
        factory: Callable[..., Any],
        config_model: type[BaseModel] | None = None,
        *,
        replace: bool = False,
    ) -> Callable[..., Any]:
        """Register *factory* under *name*.

        With a *config_model* the factory is called with the validated
        model instance; without one it is called with no arguments and
        the behavior spec must not carry parameters.
        """
        with self._lock:
            if name in self._factories and not replace:
                raise AggConfigError(f"native behavior {name!r} is already registered")
            self._factories[name] = NativeFactory(name=name, factory=factory, config_model=config_model)
        return factory

    def factory(
        self,
        name: str,
        config_model: type[BaseModel] | None = None,
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Decorator form of :meth:`register`."""

        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            return self.register(name, func, config_model)

        return decorator

    def unregister(self, name: str) -> None:
        with self._lock:
            self._factories.pop(name, None)

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._factories)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._factories

    def create(self, name: str, params: Mapping[str, str]) -> BehaviorHandle:
        with self._lock:
            entry = self._factories.get(name)
        if entry is None:
            raise ResolutionError(f"no native behavior registered as {name!r}")

        if entry.config_model is None:
            if params:
                raise ResolutionError(f"native behavior {name!r} accepts no parameters, got {sorted(params)}")
            args: tuple[Any, ...] = ()
        else:
            unknown = sorted(set(params) - _field_names(entry.config_model))
            if unknown:
                raise ResolutionError(
                    f"invalid configuration for native behavior {name!r}: unknown parameters {unknown}"
                )
            try:
                args = (entry.config_model.model_validate(dict(params)),)
            except ValidationError as exc:
                raise ResolutionError(f"invalid configuration for native behavior {name!r}: {exc}") from exc

        try:
            product = entry.factory(*args)
        except Exception as exc:
            raise ResolutionError(f"native behavior {name!r} failed to build: {exc}") from exc
        _logger.debug("Built native behavior name=%s", name)
        return BehaviorHandle(product, origin=f"native behavior {name!r}")
