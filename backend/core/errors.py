"""
Error Taxonomy
Every failure the monitor surfaces to callers.

    MonitorError
    ├── ValidationError        → rule shape rejected, never persisted
    ├── CompilationError       → oracle answered, answer unusable
    ├── DependencyUnavailable  → external collaborator down / timed out
    │   ├── OracleUnavailable
    │   └── MetricsUnavailable
    └── NotFound               → unknown id, or owned by someone else
"""

from typing import Optional


class MonitorError(Exception):
    """Base class for all monitor errors"""


class ValidationError(MonitorError):
    """A candidate rule definition was rejected"""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class CompilationError(MonitorError):
    """Natural-language text could not be compiled into a rule"""

    def __init__(self, message: str, field: Optional[str] = None):
        self.message = message
        self.field = field
        super().__init__(message)


class DependencyUnavailable(MonitorError):
    """An external collaborator failed; retryable"""


class OracleUnavailable(DependencyUnavailable):
    """Text-generation backend failed, timed out or answered with nothing"""


class MetricsUnavailable(DependencyUnavailable):
    """Portfolio metrics could not be fetched for a user"""


class NotFound(MonitorError):
    """Referenced rule or alert does not exist for the caller"""

    def __init__(self, kind: str, item_id: str):
        self.kind = kind
        self.item_id = item_id
        super().__init__(f"{kind} not found: {item_id}")
