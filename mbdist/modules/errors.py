# mbdist/modules/errors.py
"""
Error model for mbdist.

Every failure a phase can hit is an MBDistError carrying a stable code.
The orchestrator catches these at its boundary and turns them into a
reported message plus a False return value.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    FORMAT_UNAVAILABLE = "FormatUnavailable"
    NO_SOURCE_DIR = "NoSourceDir"
    DIRECTORY_CHANGE_FAILED = "DirectoryChangeFailed"
    DRIVER_CONSTRUCTION_FAILED = "DriverConstructionFailed"
    NOT_PREPARED = "NotPrepared"
    ACTION_DISPATCH_FAILED = "ActionDispatchFailed"
    PREREQUISITE_FAILED = "PrerequisiteFailed"
    PREVIOUSLY_FAILED = "PreviouslyFailed"
    INSTALL_PROCESS_FAILED = "InstallProcessFailed"
    REPORT_SEND_FAILED = "ReportSendFailed"
    INVALID_BUILD_FLAGS = "InvalidBuildFlags"
    DRIVER = "DriverError"


class MBDistError(Exception):
    """Base error: message, code and optional context."""

    code: ErrorCode = ErrorCode.DRIVER

    def __init__(self, message: str, *, code: Optional[ErrorCode] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        if code is not None:
            self.code = code
        self.context = dict(context or {})

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code.value, "message": str(self), "context": dict(self.context)}


class FormatUnavailable(MBDistError):
    code = ErrorCode.FORMAT_UNAVAILABLE


class NoSourceDir(MBDistError):
    code = ErrorCode.NO_SOURCE_DIR


class DirectoryChangeFailed(MBDistError):
    code = ErrorCode.DIRECTORY_CHANGE_FAILED


class DriverConstructionFailed(MBDistError):
    code = ErrorCode.DRIVER_CONSTRUCTION_FAILED


class NotPrepared(MBDistError):
    code = ErrorCode.NOT_PREPARED


class ActionDispatchFailed(MBDistError):
    code = ErrorCode.ACTION_DISPATCH_FAILED

    def __init__(self, action: str, detail: str):
        super().__init__(f"Could not run 'Build {action}': {detail}", context={"action": action})
        self.action = action


class PrerequisiteFailed(MBDistError):
    code = ErrorCode.PREREQUISITE_FAILED

    def __init__(self, package: str, detail: str = ""):
        text = f"Unable to satisfy prerequisite '{package}'"
        if detail:
            text = f"{text}: {detail}"
        super().__init__(text, context={"package": package})
        self.package = package


class PreviouslyFailed(MBDistError):
    code = ErrorCode.PREVIOUSLY_FAILED


class InstallProcessFailed(MBDistError):
    code = ErrorCode.INSTALL_PROCESS_FAILED


class ReportSendFailed(MBDistError):
    code = ErrorCode.REPORT_SEND_FAILED


class InvalidBuildFlags(MBDistError):
    code = ErrorCode.INVALID_BUILD_FLAGS


class DriverError(MBDistError):
    """Raised by driver library calls (Build.PL or Build <action> failed)."""

    code = ErrorCode.DRIVER

    def __init__(self, message: str, *, returncode: Optional[int] = None, output: str = ""):
        super().__init__(message, context={"returncode": returncode})
        self.returncode = returncode
        self.output = output
