from .manager import Dispatcher, DispatchQueueFull, Reservation

__all__ = ["Dispatcher", "DispatchQueueFull", "Reservation"]
