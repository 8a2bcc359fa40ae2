"""Runtime configuration for pyagg."""

from __future__ import annotations

import dataclasses
import os
from enum import StrEnum
from typing import Any

from pyagg.exceptions import AggConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


class BatchFailurePolicy(StrEnum):
    """What a merge store does when one operation of a batch cannot be keyed."""

    ABORT = "abort"
    SKIP = "skip"


@dataclasses.dataclass(frozen=True)
class AggConfig:
    """Merge and aggregation configuration.

    Parameters
    ----------
    batch_failure_policy : BatchFailurePolicy
        ``ABORT`` stops a batch at the first atom that cannot produce a
        key and raises; operations before it stay applied.  ``SKIP``
        logs the failing operation and applies the rest of the batch.
    clear_exception_on_update : bool
        When enabled, a source's recorded exception is dropped as soon
        as that source delivers a batch successfully.  Disabled by
        default, so exceptions persist until explicitly cleared.
    aggregate_with_source_tag : bool
        Feed aggregators atoms that carry the ``cluster`` identifier
        naming their source.
    default_dialect : str
        Dialect assumed for scripted behavior specs that omit one.
    """

    batch_failure_policy: BatchFailurePolicy = BatchFailurePolicy.ABORT
    clear_exception_on_update: bool = False
    aggregate_with_source_tag: bool = False
    default_dialect: str = "python"

    def __post_init__(self) -> None:
        try:
            policy = BatchFailurePolicy(self.batch_failure_policy)
        except ValueError as exc:
            raise AggConfigError(f"unknown batch failure policy: {self.batch_failure_policy!r}") from exc
        object.__setattr__(self, "batch_failure_policy", policy)
        if not self.default_dialect.strip():
            raise AggConfigError("default_dialect must be non-empty")

    @classmethod
    def from_env(cls, **overrides: Any) -> AggConfig:
        """Create configuration from environment variables.

        Reads ``AGG_BATCH_FAILURE_POLICY``, ``AGG_CLEAR_EXCEPTION_ON_UPDATE``,
        ``AGG_AGGREGATE_WITH_SOURCE_TAG`` and ``AGG_DEFAULT_DIALECT``.
        Explicit keyword arguments override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        AggConfig
            Populated configuration.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        policy_env = env.get("AGG_BATCH_FAILURE_POLICY")
        if policy_env is not None:
            config_kwargs["batch_failure_policy"] = policy_env.strip().lower()

        config_kwargs["clear_exception_on_update"] = _env_bool(
            env.get("AGG_CLEAR_EXCEPTION_ON_UPDATE"),
            False,
        )
        config_kwargs["aggregate_with_source_tag"] = _env_bool(
            env.get("AGG_AGGREGATE_WITH_SOURCE_TAG"),
            False,
        )

        dialect_env = env.get("AGG_DEFAULT_DIALECT")
        if dialect_env is not None:
            config_kwargs["default_dialect"] = dialect_env.strip()

        config_kwargs.update(overrides)
        return cls(**config_kwargs)
