"""Error taxonomy for the report run.

Every failure the pipeline knows about is a ``ReportError`` tagged with the
stage that produced it and whether it ends the run.
"""

from typing import Optional


class ReportError(Exception):
    stage = "run"
    fatal = True

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        if stage:
            self.stage = stage


class ConfigError(ReportError):
    stage = "config"


class LaunchError(ReportError):
    stage = "launch"


class AuthError(ReportError):
    stage = "login"


class NavigationError(ReportError):
    stage = "navigation"


class FilterError(ReportError):
    stage = "filters"


class ExportError(ReportError):
    stage = "export"


class ConversionError(ReportError):
    stage = "conversion"
    fatal = False


class ParseError(ConversionError):
    pass


class DeliveryError(ReportError):
    stage = "delivery"


class DeleteError(ReportError):
    stage = "cleanup"
    fatal = False
