from typing import Optional

from .base import DispatchBackend


class BackendRegistry:
    """Registry of the dispatch backends an operator can choose from."""

    def __init__(self, default: Optional[str] = None):
        self._backends: dict[str, DispatchBackend] = {}
        self.default = default

    def register(self, backend: DispatchBackend) -> None:
        """Register a backend under its name."""
        self._backends[backend.name] = backend
        if self.default is None:
            self.default = backend.name

    def get(self, name: Optional[str] = None) -> Optional[DispatchBackend]:
        """Get a backend by name, or the default one."""
        return self._backends.get(name or self.default)

    def names(self) -> list[str]:
        return list(self._backends)

    def list_all(self) -> list[DispatchBackend]:
        return list(self._backends.values())
