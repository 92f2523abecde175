"""Exception hierarchy for the cube pipeline."""
from typing import List, Optional


class CubeError(Exception):
    """Base class for every error raised by the cube pipeline."""


class RegistryConfigurationError(CubeError):
    """A registry item has the wrong shape for its declared type."""


class RegistryCycleError(RegistryConfigurationError):
    """The dependency graph of a registry contains at least one cycle."""

    def __init__(self, registry_kind: str, cycles: List[List[str]]):
        self.registry_kind = registry_kind
        self.cycles = cycles
        super().__init__(
            f"{registry_kind} registry contains dependency cycle(s): "
            + "; ".join(" -> ".join(cycle + cycle[:1]) for cycle in cycles)
        )


class DependencyResolutionError(CubeError):
    """A source, metric or reference that an item depends on is unavailable."""


class CubeComputationError(CubeError):
    """Unknown operation, unsupported data shape or non-numeric result."""


class ReferenceLoadError(CubeError):
    """A reference path could not be read from the scenario document."""


class CubeRefreshError(CubeError):
    """A refresh stage failed. Carries the stage at which it happened."""

    def __init__(self, stage: str, cause: Optional[BaseException] = None):
        self.stage = stage
        self.cause = cause
        super().__init__(f"Failed to refresh cube data at {stage} stage: {cause}")
