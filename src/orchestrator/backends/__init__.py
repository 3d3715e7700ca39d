from orchestrator.backends.anthropic_api import AnthropicBackend
from orchestrator.backends.base import (
    BackendExecutionError,
    BackendProcessError,
    BackendTimeoutError,
    CompletionBackend,
    CompletionRequest,
)
from orchestrator.backends.claude import ClaudeCliBackend
from orchestrator.backends.resilient import ResilientBackend, RetryPolicy

__all__ = [
    "AnthropicBackend",
    "BackendExecutionError",
    "BackendProcessError",
    "BackendTimeoutError",
    "ClaudeCliBackend",
    "CompletionBackend",
    "CompletionRequest",
    "ResilientBackend",
    "RetryPolicy",
]
