"""Exception hierarchy for the font ingestion pipeline.

File-level errors (ParseError, DuplicateDetected, ConflictDetected) never
abort a batch. Stage-level errors (ModelRequestError, ValidationError)
degrade the analysis pipeline instead of aborting it. Only
StoreUnavailableError is a hard failure of a whole Ingest.
"""

from __future__ import annotations


class FontIngestError(Exception):
    """Base class for all fontingest errors."""


class ParseError(FontIngestError):
    """Font bytes could not be read as a font."""

    def __init__(self, filename: str, reason: str) -> None:
        self.filename = filename
        self.reason = reason
        super().__init__(f"Could not parse {filename}: {reason}")


class DuplicateDetected(FontIngestError):
    """The owner already has an Ingest with the same content hash."""

    def __init__(self, existing_ingest_id: str, content_hash: str) -> None:
        self.existing_ingest_id = existing_ingest_id
        self.content_hash = content_hash
        super().__init__(
            f"Duplicate of ingest {existing_ingest_id} (content hash {content_hash[:12]})"
        )


class ConflictDetected(FontIngestError):
    """Two files occupy the same (family, subfamily) slot."""

    def __init__(self, family_key: str, subfamily: str, files: list[str]) -> None:
        self.family_key = family_key
        self.subfamily = subfamily
        self.files = files
        super().__init__(
            f"Style conflict in {family_key!r} / {subfamily!r}: {', '.join(files)}"
        )


class ModelRequestError(FontIngestError):
    """Transient model service failure (rate limit, 5xx, network). Retried."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class ModelRejectedError(FontIngestError):
    """Terminal model service rejection. Never retried with the same request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class ToolUseRejectedError(ModelRejectedError):
    """The backend refused the supplied tools as an invalid argument."""


class SafetyBlockedError(ModelRejectedError):
    """The response was blocked by a safety filter."""


class ValidationError(FontIngestError):
    """Model output failed schema or domain checks."""

    def __init__(self, errors: list[str], warnings: list[str] | None = None) -> None:
        self.errors = errors
        self.warnings = warnings or []
        super().__init__("; ".join(errors) or "validation failed")


class ConfigMissing(FontIngestError):
    """A tunable is absent or malformed; callers fall back to a default."""

    def __init__(self, key: str, default: object = None) -> None:
        self.key = key
        self.default = default
        super().__init__(f"Config key {key!r} missing, using default {default!r}")


class AnalysisError(FontIngestError):
    """A pipeline stage failed terminally."""

    def __init__(self, stage: str, message: str) -> None:
        self.stage = stage
        super().__init__(f"[{stage}] {message}")


class StoreUnavailableError(FontIngestError):
    """The document or object store cannot be reached."""


class ObjectNotFound(FontIngestError):
    """No blob exists at the requested object store path."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Object not found: {path}")


class InvalidTransition(FontIngestError, ValueError):
    """A lane event is not legal from the Ingest's current state."""

    def __init__(self, ingest_id: str, lane: str, state: str, event: str) -> None:
        self.ingest_id = ingest_id
        self.lane = lane
        self.state = state
        self.event = event
        super().__init__(f"Ingest {ingest_id}: {lane} event {event!r} not allowed from {state!r}")


class UploadRejected(FontIngestError, ValueError):
    """The file is too large or has an unsupported extension."""
