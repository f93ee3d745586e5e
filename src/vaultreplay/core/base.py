"""Base classes for configuration and runtime state models.

- Closeable Protocol for resource cleanup
- BaseCloseable for automatic cleanup cascade
- BaseConfig for configuration sections
- BaseState for runtime state sections

Kept apart from config.py so log.py can import them without a cycle.
"""

from __future__ import annotations

import sys
from typing import Protocol, runtime_checkable

from pydantic import BaseModel

# ============================================================
# CLOSEABLE PROTOCOL AND BASE CLASS
# ============================================================

@runtime_checkable
class Closeable(Protocol):
    """Protocol for objects that support close()."""

    def close(self) -> None:
        """Release resources."""
        ...


class BaseCloseable(BaseModel):
    """Pydantic model that closes its Closeable fields.

    Subclasses become context managers. On close() every field
    that implements close() is closed in declaration order, and a
    failure in one child does not stop the others:

    State.__exit__() -> Config.close() -> Logger.close() -> Sink.close()
    """

    def close(self):
        """Close all closeable child fields."""
        for field_name in self.__class__.model_fields:
            child = getattr(self, field_name, None)
            if child is None:
                continue

            if isinstance(child, Closeable):
                try:
                    child.close()
                except Exception as e:
                    msg = f"Warning: Error closing {field_name}: {e}"
                    print(msg, file=sys.stderr)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):  # noqa: U100
        self.close()
        return False


# ============================================================
# BASE CLASSES (semantic markers for readers)
# ============================================================

class BaseConfig(BaseCloseable):
    """Marker base for configuration loaded from YAML/env/CLI."""
    pass


class BaseState(BaseCloseable):
    """Marker base for state mutated while a run executes."""
    pass


__all__ = ["Closeable", "BaseCloseable", "BaseConfig", "BaseState"]
