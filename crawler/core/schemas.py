"""Core data models for the ingestion pipeline."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    computed_field,
    field_validator,
    model_validator,
)

from crawler.core.identity import compute_content_digest, compute_identity_key
from crawler.core.urls import sanitize_url

# ---------------------------------------------------------------------------
# Extracted fields: "unknown" is a tagged state, never an empty value
# ---------------------------------------------------------------------------


class FieldStatus(str, Enum):
    KNOWN = "known"
    UNKNOWN = "unknown"


class ExtractedField(BaseModel):
    """A best-effort field value.

    ``known`` with an empty value means the source stated none.
    ``unknown`` means extraction could not determine it; ``value`` is None.
    """

    model_config = ConfigDict(frozen=True)

    status: FieldStatus
    value: Any = None
    reason: str = ""

    @model_validator(mode="after")
    def value_matches_status(self) -> "ExtractedField":
        if self.status is FieldStatus.UNKNOWN and self.value is not None:
            msg = "an unknown field cannot carry a value"
            raise ValueError(msg)
        if self.status is FieldStatus.KNOWN and self.value is None:
            msg = "a known field must carry a value (use an empty one for 'none')"
            raise ValueError(msg)
        return self

    @classmethod
    def known(cls, value: Any) -> Any:
        return cls(status=FieldStatus.KNOWN, value=value)

    @classmethod
    def unknown(cls, reason: str = "") -> Any:
        return cls(status=FieldStatus.UNKNOWN, reason=reason)

    @property
    def is_unknown(self) -> bool:
        return self.status is FieldStatus.UNKNOWN


class CriteriaField(ExtractedField):
    """Named criteria mapped to descriptive text (eligibility, fees)."""

    value: dict[str, str] | None = None


class StepsField(ExtractedField):
    """Ordered step descriptions (application process)."""

    value: list[str] | None = None


# ---------------------------------------------------------------------------
# Links
# ---------------------------------------------------------------------------


class LinkRole(str, Enum):
    OFFICIAL_NOTIFICATION = "official-notification"
    APPLY_ONLINE = "apply-online"
    ADMIT_CARD = "download-admit-card"
    RESULT = "result"
    ANSWER_KEY = "answer-key"
    SYLLABUS = "syllabus"
    OFFICIAL_WEBSITE = "official-website"
    OTHER = "other"


class SourceLink(BaseModel):
    """A sanitized link with a role tag. Unsafe URLs fail validation."""

    model_config = ConfigDict(frozen=True)

    role: LinkRole = LinkRole.OTHER
    label: str = ""
    url: str

    @field_validator("url")
    @classmethod
    def url_is_sanitized(cls, v: str) -> str:
        sanitized = sanitize_url(v)
        if not sanitized:
            msg = f"unsafe or empty URL rejected: {v!r}"
            raise ValueError(msg)
        return sanitized


# ---------------------------------------------------------------------------
# Fetch results
# ---------------------------------------------------------------------------


class RawDocument(BaseModel):
    """Fetched content for one source visit. Never persisted."""

    model_config = ConfigDict(frozen=True)

    source_id: str
    url: str
    retrieved_at: datetime = Field(default_factory=datetime.now)
    status: int
    content: bytes
    content_type: str = ""
    encoding: str | None = None

    @property
    def is_pdf(self) -> bool:
        return "pdf" in self.content_type.lower() or self.content.startswith(b"%PDF-")

    @property
    def text(self) -> str:
        """Decode the body, falling back to UTF-8 with replacement."""
        for encoding in (self.encoding, "utf-8"):
            if not encoding:
                continue
            try:
                return self.content.decode(encoding)
            except (LookupError, UnicodeDecodeError):
                continue
        return self.content.decode("utf-8", errors="replace")


class FetchErrorKind(str, Enum):
    TIMEOUT = "timeout"
    CONNECTION = "connection"
    UNREACHABLE_HOST = "unreachable-host"
    INVALID_URL = "invalid-url"
    HTTP_STATUS = "http-status"
    RATE_LIMITED = "rate-limited"
    TOO_LARGE = "too-large"
    DECODING = "decoding"
    RENDER = "render"


class FetchError(BaseModel):
    """Typed fetch failure returned (not raised) by the fetcher."""

    model_config = ConfigDict(frozen=True)

    source_id: str
    url: str
    kind: FetchErrorKind
    message: str
    status: int | None = None
    attempts: int = 1
    retryable: bool = False

    def describe(self) -> str:
        status = f" (HTTP {self.status})" if self.status is not None else ""
        return f"{self.kind.value}{status}: {self.message} after {self.attempts} attempt(s)"


# ---------------------------------------------------------------------------
# Candidates and reconciliation
# ---------------------------------------------------------------------------


class JobCandidate(BaseModel):
    """A posting produced by the extractor. Consumed within the same cycle."""

    model_config = ConfigDict(frozen=True)

    source_id: str
    title: str
    eligibility: CriteriaField
    fees: CriteriaField
    application_process: StepsField
    links: list[SourceLink] = Field(default_factory=list)
    block_text: str = Field(default="", repr=False, exclude=True)

    _identity_key: str | None = PrivateAttr(default=None)

    @field_validator("title")
    @classmethod
    def title_not_empty(cls, v: str) -> str:
        v = " ".join(v.split())
        if not v:
            msg = "title must not be empty"
            raise ValueError(msg)
        return v

    @property
    def identity_key(self) -> str:
        if self._identity_key is not None:
            return self._identity_key
        return compute_identity_key(
            self.source_id, self.title, self.eligibility.value, self.fees.value,
        )

    @property
    def content_digest(self) -> str:
        return compute_content_digest(
            self.eligibility.value,
            self.fees.value,
            self.application_process.value,
            [(link.role.value, link.url) for link in self.links],
        )

    @property
    def unknown_fields(self) -> list[str]:
        fields = {
            "eligibility": self.eligibility,
            "fees": self.fees,
            "application_process": self.application_process,
        }
        return [name for name, field in fields.items() if field.is_unknown]

    def with_completed_fields(self, **fields: Any) -> "JobCandidate":
        """Copy with some fields replaced, keeping this candidate's identity key."""
        key = self.identity_key
        completed = self.model_copy(update=fields)
        completed._identity_key = key
        return completed


class StoredJob(BaseModel):
    """The storage collaborator's view of an existing record."""

    model_config = ConfigDict(frozen=True)

    id: int
    identity_key: str
    content_digest: str
    created_at: datetime


class DecisionKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    SKIP_DUPLICATE = "skip-duplicate"


class Decision(BaseModel):
    """Deduplicator verdict for one candidate."""

    model_config = ConfigDict(frozen=True)

    kind: DecisionKind
    identity_key: str
    content_digest: str
    existing_id: int | None = None
    warnings: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Scan outcomes
# ---------------------------------------------------------------------------


class FailureStage(str, Enum):
    FETCH = "fetch"
    EXTRACT = "extract"
    STORE = "store"
    DEADLINE = "deadline"
    INTERNAL = "internal"


class FailureDetail(BaseModel):
    """Enough context for an operator to diagnose one failure."""

    source_id: str
    stage: FailureStage
    cause: str
    url: str | None = None
    identity_key: str | None = None


class SourceStatus(str, Enum):
    PENDING = "pending"
    OK = "ok"
    NO_POSTINGS = "no-postings"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


class ScanOutcome(BaseModel):
    """Per-source result of one visit. Each source owns its own instance."""

    source_id: str
    status: SourceStatus = SourceStatus.PENDING
    fetched: int = 0
    extracted: int = 0
    created: int = 0
    updated: int = 0
    skipped_duplicate: int = 0
    failed: int = 0
    failures: list[FailureDetail] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def record_failure(
        self,
        stage: FailureStage,
        cause: str,
        *,
        url: str | None = None,
        identity_key: str | None = None,
    ) -> None:
        self.failed += 1
        self.failures.append(
            FailureDetail(
                source_id=self.source_id,
                stage=stage,
                cause=cause,
                url=url,
                identity_key=identity_key,
            )
        )

    def record_decision(self, decision: Decision) -> None:
        if decision.kind is DecisionKind.CREATE:
            self.created += 1
        elif decision.kind is DecisionKind.UPDATE:
            self.updated += 1
        else:
            self.skipped_duplicate += 1
        self.warnings.extend(decision.warnings)


class ScanTotals(BaseModel):
    sources: int = 0
    fetched: int = 0
    extracted: int = 0
    created: int = 0
    updated: int = 0
    skipped_duplicate: int = 0
    failed: int = 0
    skipped_sources: int = 0


class ScanReport(BaseModel):
    """Aggregate of one scan cycle: one outcome per source, keyed by id."""

    outcomes: dict[str, ScanOutcome] = Field(default_factory=dict)
    started_at: datetime
    finished_at: datetime
    deadline_exceeded: bool = False

    @computed_field  # type: ignore[prop-decorator]
    @property
    def duration_seconds(self) -> float:
        return round((self.finished_at - self.started_at).total_seconds(), 3)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def totals(self) -> ScanTotals:
        totals = ScanTotals(sources=len(self.outcomes))
        for outcome in self.outcomes.values():
            totals.fetched += outcome.fetched
            totals.extracted += outcome.extracted
            totals.created += outcome.created
            totals.updated += outcome.updated
            totals.skipped_duplicate += outcome.skipped_duplicate
            totals.failed += outcome.failed
            if outcome.status is SourceStatus.SKIPPED:
                totals.skipped_sources += 1
        return totals
