"""
Dependency injection for API routes.

The print service is set up during app initialization.
"""

from typing import Optional

from kitchen_print.service import PrintService

# Global instance (set during app init)
_print_service: Optional[PrintService] = None


def init_dependencies(service: PrintService):
    """Initialize global dependencies."""
    global _print_service
    _print_service = service


def get_print_service() -> PrintService:
    """Get print service instance."""
    if _print_service is None:
        raise RuntimeError("Print service not initialized")
    return _print_service
