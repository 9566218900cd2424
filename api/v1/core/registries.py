import inspect
from typing import Any, Awaitable, Callable, Generic, Protocol, TypeVar

from api.v1.core.exceptions import ConfigurationError, UnknownJobTypeError

# Base registry implementation
T = TypeVar("T")


class Registry(Generic[T]):
    """Generic registry for pluggable implementations."""

    def __init__(self, name: str):
        self.name = name
        self._implementations: dict[str, T] = {}
        self._frozen = False

    def register(self, name: str, implementation: T) -> None:
        """Register an implementation with a given name (last one wins)."""
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

    def __contains__(self, name: object) -> bool:
        return name in self._implementations

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen


ProgressCallback = Callable[[int], Awaitable[None]]


class JobProcessor(Protocol):
    """
    Protocol for processors that execute one job type.

    ``process`` is awaited exactly once per attempt. It either returns a
    JSON-serialisable result or raises; progress is reported through the
    ``report_progress`` callback supplied by the queue.

    Processors may also define ``on_progress(job, progress)``,
    ``on_complete(job, result)`` and ``on_error(job, error)``; the queue
    calls them after the matching transition when present.
    """

    async def process(self, job: Any, report_progress: ProgressCallback) -> Any:
        ...


class ProcessorRegistry(Registry[JobProcessor]):
    """Registry for job processors keyed by job type tag."""

    def __init__(self):
        super().__init__("Processor")

    def register(self, name: str, implementation: JobProcessor) -> None:
        if not name or not name.strip():
            raise ConfigurationError("Job type must be a non-empty string")
        process = getattr(implementation, "process", None)
        if process is None or not inspect.iscoroutinefunction(process):
            raise ConfigurationError(
                f"Processor for '{name}' must define 'async def process(job, report_progress)'",
                details={"job_type": name},
            )
        super().register(name, implementation)

    def get(self, name: str) -> JobProcessor:
        try:
            return super().get(name)
        except KeyError:
            raise UnknownJobTypeError(name) from None
