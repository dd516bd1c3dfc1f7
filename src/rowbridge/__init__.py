"""rowbridge.

Backend-agnostic row access for SQL engines, cloud table stores and
flat-file directories, sharing one canonical type system and query model.
"""

__version__ = "0.1.0"

from rowbridge.core.models.base import ErrorKind, Result

__all__ = [
    "ErrorKind",
    "Result",
    "__version__",
]
