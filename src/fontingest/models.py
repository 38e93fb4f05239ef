"""Data models and enums for font ingestion and family records."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class UploadState(str, Enum):
    """Upload lane of an Ingest."""

    PENDING = "pending"
    HASHING = "hashing"
    UPLOADING = "uploading"
    PAUSED = "paused"
    RETRYING = "retrying"
    RESUMED = "resumed"
    UPLOADED = "uploaded"
    VERIFYING = "verifying"
    FAILED = "failed"
    CANCELED = "canceled"


class AnalysisState(str, Enum):
    """Analysis lane of an Ingest."""

    NOT_STARTED = "not_started"
    QUEUED = "queued"
    ANALYZING = "analyzing"
    ENRICHING = "enriching"
    COMPLETE = "complete"
    ERROR = "error"
    RETRYING = "retrying"
    QUARANTINED = "quarantined"


class IngestStatus(str, Enum):
    """Legacy single-field status kept for older consumers."""

    UPLOADED = "uploaded"
    PROCESSING = "processing"
    PROCESSING_FILE = "processing_file"
    PROCESSING_DESCRIPTION = "processing_description"
    COMPLETED = "completed"
    FAILED = "failed"
    QUARANTINED = "quarantined"
    ERROR = "error"
    UPLOAD_FAILED = "upload_failed"


class ConflictPolicy(str, Enum):
    """How a (family, subfamily) style conflict is resolved."""

    KEEP_ALTERNATES = "keep_alternates"
    REPLACE_OLDER = "replace_older"
    MERGE_STYLISTIC_SETS = "merge_stylistic_sets"
    QUARANTINE = "quarantine"


# Upload states after which bytes are durably stored server-side.
UPLOAD_COMPLETED: frozenset[UploadState] = frozenset(
    {UploadState.UPLOADED, UploadState.VERIFYING}
)
UPLOAD_PROBLEM: frozenset[UploadState] = frozenset(
    {UploadState.FAILED, UploadState.CANCELED}
)
ANALYSIS_TERMINAL: frozenset[AnalysisState] = frozenset(
    {AnalysisState.COMPLETE, AnalysisState.ERROR, AnalysisState.QUARANTINED}
)
LEGACY_TERMINAL: frozenset[IngestStatus] = frozenset(
    {IngestStatus.COMPLETED, IngestStatus.FAILED}
)


@dataclass
class VariableAxis:
    """One fvar axis."""

    tag: str
    name: str
    min_value: float
    default_value: float
    max_value: float


@dataclass
class FontMetadata:
    """Structured metadata extracted from a font binary."""

    family_name: str
    subfamily_name: str = "Regular"
    postscript_name: str | None = None
    version: str | None = None
    foundry: str | None = None
    designer: str | None = None
    format: str = "ttf"
    weight_class: int | None = None
    italic_angle: float | None = None
    units_per_em: int | None = None
    x_height: int | None = None
    cap_height: int | None = None
    family_class: int | None = None
    glyph_count: int = 0
    features: list[str] = field(default_factory=list)
    axes: list[VariableAxis] = field(default_factory=list)
    color_tables: list[str] = field(default_factory=list)
    is_fixed_pitch: bool = False
    is_hinted: bool = False
    outline_format: str = "truetype"

    @property
    def is_variable(self) -> bool:
        return bool(self.axes)

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["is_variable"] = self.is_variable
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FontMetadata:
        data = dict(data)
        data.pop("is_variable", None)
        data["axes"] = [VariableAxis(**a) for a in data.get("axes", [])]
        return cls(**data)


@dataclass
class FileRecord:
    """One selected or uploaded file.

    Exactly one of ``metadata`` and ``parse_error`` is set once parsing
    has run.
    """

    filename: str
    size: int
    quick_hash: str | None = None
    content_hash: str | None = None
    metadata: FontMetadata | None = None
    parse_error: str | None = None

    @property
    def parsed(self) -> bool:
        return self.metadata is not None


@dataclass
class ConflictResolution:
    """Policy applied to a detected style conflict."""

    type: ConflictPolicy
    resolved_at: str
    resolved_by: str

    def to_dict(self) -> dict[str, str]:
        return {
            "type": self.type.value,
            "resolved_at": self.resolved_at,
            "resolved_by": self.resolved_by,
        }

    @classmethod
    def from_dict(cls, data: dict[str, str]) -> ConflictResolution:
        return cls(
            type=ConflictPolicy(data["type"]),
            resolved_at=data["resolved_at"],
            resolved_by=data["resolved_by"],
        )


@dataclass
class Ingest:
    """Unit of work for one uploaded file moving through upload and analysis."""

    id: str
    owner_id: str
    original_name: str
    upload_state: UploadState = UploadState.PENDING
    analysis_state: AnalysisState = AnalysisState.NOT_STARTED
    status: IngestStatus = IngestStatus.UPLOADED
    content_hash: str | None = None
    quick_hash: str | None = None
    size: int = 0
    storage_path: str | None = None
    family_id: str | None = None
    preview_family_key: str | None = None
    quarantined: bool = False
    conflict_resolution: ConflictResolution | None = None
    normalization_spec_version: str | None = None
    error: str | None = None
    error_code: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-safe dict with enum values as strings."""
        d = asdict(self)
        d["upload_state"] = self.upload_state.value
        d["analysis_state"] = self.analysis_state.value
        d["status"] = self.status.value
        d["conflict_resolution"] = (
            self.conflict_resolution.to_dict() if self.conflict_resolution else None
        )
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Ingest:
        known = {f for f in cls.__dataclass_fields__}
        kwargs = {k: v for k, v in data.items() if k in known}
        kwargs["upload_state"] = UploadState(kwargs.get("upload_state", "pending"))
        kwargs["analysis_state"] = AnalysisState(
            kwargs.get("analysis_state", "not_started")
        )
        kwargs["status"] = IngestStatus(kwargs.get("status", "uploaded"))
        if kwargs.get("conflict_resolution"):
            kwargs["conflict_resolution"] = ConflictResolution.from_dict(
                kwargs["conflict_resolution"]
            )
        return cls(**kwargs)


@dataclass
class FontVariant:
    """One member font of a canonical family."""

    id: str
    ingest_id: str
    subfamily: str
    format: str
    content_hash: str
    postscript_name: str | None = None
    weight_class: int | None = None
    is_variable: bool = False
    storage_path: str | None = None
    alternate: bool = False


DEFAULT_DESCRIPTION = "Description pending AI analysis."


@dataclass
class FontFamily:
    """Canonical, persisted family record; one per (owner, normalized name)."""

    id: str
    owner_id: str
    name: str
    normalized_name: str
    foundry: str | None = None
    description: str = DEFAULT_DESCRIPTION
    tags: list[str] = field(default_factory=list)
    classification: str = "unknown"
    metadata: dict[str, Any] = field(default_factory=dict)
    variants: list[FontVariant] = field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None

    def variant_for(self, subfamily: str) -> list[FontVariant]:
        wanted = subfamily.strip().lower()
        return [v for v in self.variants if v.subfamily.strip().lower() == wanted]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FontFamily:
        known = {f for f in cls.__dataclass_fields__}
        kwargs = {k: v for k, v in data.items() if k in known}
        kwargs["variants"] = [FontVariant(**v) for v in kwargs.get("variants", [])]
        return cls(**kwargs)
