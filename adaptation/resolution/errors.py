from dataclasses import dataclass


@dataclass(frozen=True)
class ResolutionErrorCode:
    code: str
    message: str


RESOLVE_001_VALIDATION_FAILED = ResolutionErrorCode(
    "RESOLVE_001_VALIDATION_FAILED",
    "Subject registration failed validation.",
)
RESOLVE_002_SUBJECT_NOT_FOUND = ResolutionErrorCode(
    "RESOLVE_002_SUBJECT_NOT_FOUND",
    "Requested subject is not registered.",
)
RESOLVE_003_PREDICATE_INVALID = ResolutionErrorCode(
    "RESOLVE_003_PREDICATE_INVALID",
    "Predicate is malformed.",
)
RESOLVE_004_MANIFEST_INVALID = ResolutionErrorCode(
    "RESOLVE_004_MANIFEST_INVALID",
    "Subject manifest could not be loaded.",
)


class ResolutionError(RuntimeError):
    default_err = RESOLVE_001_VALIDATION_FAILED

    def __init__(self, detail: str = "", err: ResolutionErrorCode | None = None) -> None:
        err = err or self.default_err
        suffix = f" detail={detail}" if detail else ""
        super().__init__(f"{err.code}: {err.message}{suffix}")
        self.err = err
        self.detail = detail


class ValidationError(ResolutionError):
    default_err = RESOLVE_001_VALIDATION_FAILED


class NotFoundError(ResolutionError):
    default_err = RESOLVE_002_SUBJECT_NOT_FOUND


class PredicateError(ValidationError):
    default_err = RESOLVE_003_PREDICATE_INVALID


class ManifestError(ResolutionError):
    default_err = RESOLVE_004_MANIFEST_INVALID
