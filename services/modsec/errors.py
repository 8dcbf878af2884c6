from __future__ import annotations


class ModsecProcessingError(RuntimeError):
    """Per-record failure; recovered by the batch processor."""


class TransactionParseError(ModsecProcessingError):
    pass


class SanitizationError(ModsecProcessingError):
    pass


class LandingRecordNotFound(ModsecProcessingError):
    def __init__(self, landing_id: object) -> None:
        super().__init__("ModsecLanding record not found")
        self.landing_id = landing_id


class LandingRecordAlreadyProcessed(ModsecProcessingError):
    def __init__(self, landing_id: object) -> None:
        super().__init__("Record already processed")
        self.landing_id = landing_id
