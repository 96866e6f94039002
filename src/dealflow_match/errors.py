from __future__ import annotations


class DealflowMatchError(Exception):
    code = "internal_error"


class InvalidInputError(DealflowMatchError):
    code = "invalid_input"


class InvalidSignalError(InvalidInputError):
    code = "invalid_signal"


class InvalidArgumentError(DealflowMatchError):
    code = "invalid_argument"


class ExtractionError(DealflowMatchError):
    code = "extraction_failed"


class IndexVersionError(DealflowMatchError):
    code = "index_version_mismatch"


class MatchServiceUnavailable(DealflowMatchError):
    code = "service_unavailable"
