from .client import (
    ToggleResult,
    WafAgentClient,
    WafAgentError,
    toggle_message,
    verify_toggle_signature,
)

__all__ = [
    "ToggleResult",
    "WafAgentClient",
    "WafAgentError",
    "toggle_message",
    "verify_toggle_signature",
]
