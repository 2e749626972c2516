"""Process context management.

The operator serves no routes that need per-request services, so this only
manages the lifetime of the process-global
`~minio_operator.factory.ProcessContext`, which owns the control loops.
"""

from ..config import Config
from ..factory import ProcessContext

__all__ = [
    "ContextDependency",
    "context_dependency",
]


class ContextDependency:
    """Hold the process-global context of the operator."""

    def __init__(self) -> None:
        self._process_context: ProcessContext | None = None

    @property
    def is_initialized(self) -> bool:
        """Whether the process context has been initialized."""
        return self._process_context is not None

    @property
    def process_context(self) -> ProcessContext:
        """Process-global context.

        Raises
        ------
        RuntimeError
            Raised if the context has not been initialized.
        """
        if not self._process_context:
            raise RuntimeError("ContextDependency not initialized")
        return self._process_context

    async def initialize(self, config: Config) -> None:
        """Initialize the process-global shared context.

        Starts the control loops.

        Parameters
        ----------
        config
            MinIO operator configuration.
        """
        if self._process_context:
            await self._process_context.stop()
            await self._process_context.aclose()
        self._process_context = await ProcessContext.from_config(config)
        await self._process_context.start()

    async def aclose(self) -> None:
        """Stop the control loops and free resources."""
        if self._process_context:
            await self._process_context.stop()
            await self._process_context.aclose()
        self._process_context = None


context_dependency = ContextDependency()
"""The dependency that owns the process context."""
