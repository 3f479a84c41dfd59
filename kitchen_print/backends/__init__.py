from .base import DispatchBackend, DispatchError, MissingDependencyError
from .registry import BackendRegistry

__all__ = ["DispatchBackend", "DispatchError", "MissingDependencyError", "BackendRegistry"]
