from .errors import (
    LandingRecordAlreadyProcessed,
    LandingRecordNotFound,
    ModsecProcessingError,
    SanitizationError,
    TransactionParseError,
)
from .normalizer import normalize_payload
from .processor import BatchResult, ModsecProcessor, RecordOutcome
from .projector import determine_action, map_severity, project_log_entry
from .sanitizer import sanitize_json, sanitize_json_text, sanitize_string
from .scheduler import ModsecCronScheduler
from .worker import ModsecWorker

__all__ = [
    "BatchResult",
    "LandingRecordAlreadyProcessed",
    "LandingRecordNotFound",
    "ModsecCronScheduler",
    "ModsecProcessingError",
    "ModsecProcessor",
    "ModsecWorker",
    "RecordOutcome",
    "SanitizationError",
    "TransactionParseError",
    "determine_action",
    "map_severity",
    "normalize_payload",
    "project_log_entry",
    "sanitize_json",
    "sanitize_json_text",
    "sanitize_string",
]
