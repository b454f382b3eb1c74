"""Backend session exchange and authorized requests."""

from .client import BackendSessionClient, extract_error_message

__all__ = ["BackendSessionClient", "extract_error_message"]
