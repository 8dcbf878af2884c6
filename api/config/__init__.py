from .env import (
    ProcessingSettings as ProcessingSettings,
    WafAgentSettings as WafAgentSettings,
    resolve_env as resolve_env,
)

__all__ = [
    "ProcessingSettings",
    "WafAgentSettings",
    "resolve_env",
]
