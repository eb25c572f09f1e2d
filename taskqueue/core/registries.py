from collections.abc import Iterable
from typing import Any, Generic, Protocol, TypeVar

# Base registry implementation
T = TypeVar("T")


class Registry(Generic[T]):
    """Generic registry for pluggable implementations."""

    def __init__(self, name: str):
        self.name = name
        self._implementations: dict[str, T] = {}
        self._frozen = False

    def register(self, name: str, implementation: T) -> None:
        """Register an implementation with a given name."""
        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{name}' in {self.name.lower()} registry: "
                "registry is frozen in production mode"
            )
        self._implementations[name] = implementation

    def get(self, name: str) -> T:
        """Get an implementation by name."""
        if name not in self._implementations:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {name}"
            )
        return self._implementations[name]

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen


# Job Registry - background processing handlers
class JobHandler(Protocol):
    """Protocol for job handlers that process background tasks."""

    payload_model: type

    async def handle(self, ctx: Any, payload: Any) -> dict[str, Any] | None:
        """
        Handle a background job.

        Args:
            ctx: JobContext with the gateway, notifier and cancellation signal
            payload: Instance of ``payload_model`` decoded from the job row

        Returns:
            Optional result dictionary to store with the completed job
        """
        ...


class JobRegistry(Registry[JobHandler]):
    """Registry for background job handlers."""

    def __init__(self):
        super().__init__("Job")

    def ensure_complete(self, job_types: Iterable[str]) -> None:
        """Fail fast when a known job type has no handler registered."""
        missing = sorted(
            getattr(t, "value", t) for t in job_types if t not in self._implementations
        )
        if missing:
            raise RuntimeError(f"No job handler registered for: {', '.join(missing)}")


# Global registry instance used by the API process and the CLI worker
job_registry = JobRegistry()
