"""
Data models for email analysis.

Uses dataclasses for clean, typed data structures.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar

ANALYZER_VERSION = "1.0.0"

EMAIL_CATEGORIES = (
    "newsletters_creator",
    "newsletters_industry",
    "news_politics",
    "product_updates",
    "local",
    "shopping",
    "travel",
    "finance",
    "family",
    "clients",
    "work",
    "personal_friends_family",
    "notifications",
    "event",
)

ACTION_TYPES = (
    "respond",
    "review",
    "create",
    "schedule",
    "decide",
    "pay",
    "submit",
    "register",
    "book",
    "none",
)


class AnalyzerName(str, Enum):
    """Analyzers known to the pipeline."""

    CATEGORIZER = "Categorizer"
    ACTION_EXTRACTOR = "ActionExtractor"
    CLIENT_TAGGER = "ClientTagger"
    EVENT_DETECTOR = "EventDetector"


class AnalyzerRole(str, Enum):
    """When an analyzer runs."""

    CORE = "core"  # every email
    SECONDARY = "secondary"  # only when a core result triggers it


@dataclass(frozen=True)
class AnalysisItem:
    """A synced email as seen by the analyzers."""

    id: str
    subject: str | None = None
    sender_email: str = ""
    sender_name: str | None = None
    date: str = ""
    snippet: str | None = None
    body_text: str | None = None
    labels: tuple[str, ...] = ()
    analyzed_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "AnalysisItem":
        """Create an AnalysisItem from an `emails` table row."""
        email_date = row.get("date")
        return cls(
            id=str(row["id"]),
            subject=row.get("subject"),
            sender_email=row.get("sender_email") or "",
            sender_name=row.get("sender_name"),
            date=email_date.isoformat() if isinstance(email_date, datetime) else (email_date or ""),
            snippet=row.get("snippet"),
            body_text=row.get("body_text"),
            labels=tuple(row.get("gmail_labels") or ()),
            analyzed_at=row.get("analyzed_at"),
        )


@dataclass(frozen=True)
class Client:
    """A known client of the user, used for client matching."""

    id: str
    name: str
    email_domains: tuple[str, ...] = ()


@dataclass(frozen=True)
class UserContext:
    """Per-user configuration, read-only for the duration of a run."""

    user_id: str
    role: str | None = None
    company: str | None = None
    timezone: str | None = None
    locale: str | None = None
    location_city: str | None = None
    location_metro: str | None = None
    vip_emails: tuple[str, ...] = ()
    vip_domains: tuple[str, ...] = ()
    clients: tuple[Client, ...] = ()
    projects: tuple[str, ...] = ()
    priorities: tuple[str, ...] = ()
    interests: tuple[str, ...] = ()
    enabled_analyzers: dict[str, bool] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the analysis service request."""
        return {
            "user_id": self.user_id,
            "role": self.role,
            "company": self.company,
            "timezone": self.timezone,
            "locale": self.locale,
            "location_city": self.location_city,
            "location_metro": self.location_metro,
            "vip_emails": list(self.vip_emails),
            "vip_domains": list(self.vip_domains),
            "clients": [
                {"id": c.id, "name": c.name, "email_domains": list(c.email_domains)}
                for c in self.clients
            ],
            "projects": list(self.projects),
            "priorities": list(self.priorities),
            "interests": list(self.interests),
        }


@dataclass
class CategorizationData:
    """Categorizer output."""

    category: str
    confidence: float = 0.0
    reasoning: str = ""
    topics: list[str] = field(default_factory=list)
    summary: str = ""
    quick_action: str = "none"
    labels: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CategorizationData":
        if not data.get("category"):
            raise ValueError("Categorizer response is missing 'category'")
        return cls(
            category=data["category"],
            confidence=float(data.get("confidence") or 0.0),
            reasoning=data.get("reasoning") or "",
            topics=list(data.get("topics") or []),
            summary=data.get("summary") or "",
            quick_action=data.get("quick_action") or "none",
            labels=list(data.get("labels") or []),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "topics": self.topics,
            "summary": self.summary,
            "quick_action": self.quick_action,
            "labels": self.labels,
        }


@dataclass
class ActionExtractionData:
    """ActionExtractor output."""

    has_action: bool
    action_type: str = "none"
    action_title: str | None = None
    action_description: str | None = None
    urgency_score: int = 0
    deadline: str | None = None
    estimated_minutes: int | None = None
    confidence: float = 0.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ActionExtractionData":
        action_type = data.get("action_type") or "none"
        if action_type not in ACTION_TYPES:
            action_type = "none"
        return cls(
            has_action=bool(data.get("has_action", False)),
            action_type=action_type,
            action_title=data.get("action_title"),
            action_description=data.get("action_description"),
            urgency_score=int(data.get("urgency_score") or 0),
            deadline=data.get("deadline"),
            estimated_minutes=data.get("estimated_minutes"),
            confidence=float(data.get("confidence") or 0.0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "has_action": self.has_action,
            "action_type": self.action_type,
            "title": self.action_title,
            "description": self.action_description,
            "urgency_score": self.urgency_score,
            "deadline": self.deadline,
        }


@dataclass
class ClientTaggingData:
    """ClientTagger output."""

    client_match: bool
    client_name: str | None = None
    client_id: str | None = None
    match_confidence: float = 0.0
    project_name: str | None = None
    relationship_signal: str = "unknown"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClientTaggingData":
        return cls(
            client_match=bool(data.get("client_match", False)),
            client_name=data.get("client_name"),
            client_id=data.get("client_id"),
            match_confidence=float(data.get("match_confidence") or 0.0),
            project_name=data.get("project_name"),
            relationship_signal=data.get("relationship_signal") or "unknown",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "client_match": self.client_match,
            "client_id": self.client_id,
            "client_name": self.client_name,
            "confidence": self.match_confidence,
            "relationship_signal": self.relationship_signal,
        }


@dataclass
class EventDetectionData:
    """EventDetector output."""

    has_event: bool
    event_title: str = ""
    event_date: str = ""
    event_time: str | None = None
    event_end_time: str | None = None
    location_type: str = "unknown"
    location: str | None = None
    registration_deadline: str | None = None
    rsvp_required: bool = False
    rsvp_url: str | None = None
    organizer: str | None = None
    cost: str | None = None
    additional_details: str | None = None
    confidence: float = 0.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EventDetectionData":
        return cls(
            has_event=bool(data.get("has_event", False)),
            event_title=data.get("event_title") or "",
            event_date=data.get("event_date") or "",
            event_time=data.get("event_time"),
            event_end_time=data.get("event_end_time"),
            location_type=data.get("location_type") or "unknown",
            location=data.get("location"),
            registration_deadline=data.get("registration_deadline"),
            rsvp_required=bool(data.get("rsvp_required", False)),
            rsvp_url=data.get("rsvp_url"),
            organizer=data.get("organizer"),
            cost=data.get("cost"),
            additional_details=data.get("additional_details"),
            confidence=float(data.get("confidence") or 0.0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "has_event": self.has_event,
            "event_title": self.event_title,
            "event_date": self.event_date,
            "event_time": self.event_time,
            "event_end_time": self.event_end_time,
            "location_type": self.location_type,
            "location": self.location,
            "registration_deadline": self.registration_deadline,
            "rsvp_required": self.rsvp_required,
            "rsvp_url": self.rsvp_url,
            "organizer": self.organizer,
            "cost": self.cost,
            "additional_details": self.additional_details,
            "confidence": self.confidence,
        }


T = TypeVar("T")


@dataclass
class AnalyzerOutcome(Generic[T]):
    """
    Result envelope for a single analyzer call.

    When success is False, data is always None.
    """

    success: bool
    data: T | None = None
    confidence: float = 0.0
    tokens_used: int = 0
    processing_time_ms: int = 0
    error: str | None = None

    def __post_init__(self):
        if not self.success:
            self.data = None

    @classmethod
    def ok(
        cls,
        data: T,
        confidence: float,
        tokens_used: int,
        processing_time_ms: int,
    ) -> "AnalyzerOutcome[T]":
        return cls(
            success=True,
            data=data,
            confidence=confidence,
            tokens_used=tokens_used,
            processing_time_ms=processing_time_ms,
        )

    @classmethod
    def failed(cls, error: str, processing_time_ms: int = 0, tokens_used: int = 0) -> "AnalyzerOutcome[T]":
        return cls(
            success=False,
            error=error,
            tokens_used=tokens_used,
            processing_time_ms=processing_time_ms,
        )


@dataclass
class AnalyzerError:
    """An error reported by one analyzer (or the database) for one item."""

    analyzer: str
    error: str


@dataclass
class AggregatedAnalysis:
    """Successful analyzer data for one email plus cost totals."""

    categorization: CategorizationData | None = None
    action_extraction: ActionExtractionData | None = None
    client_tagging: ClientTaggingData | None = None
    event_detection: EventDetectionData | None = None
    total_tokens_used: int = 0
    total_processing_time_ms: int = 0
    analyzer_version: str = ANALYZER_VERSION

    def to_record(self) -> dict[str, Any]:
        """Convert to the JSON columns stored in email_analyses."""
        return {
            "categorization": self.categorization.to_dict() if self.categorization else None,
            "action_extraction": self.action_extraction.to_dict() if self.action_extraction else None,
            "client_tagging": self.client_tagging.to_dict() if self.client_tagging else None,
            "event_detection": self.event_detection.to_dict() if self.event_detection else None,
            "tokens_used": self.total_tokens_used,
            "processing_time_ms": self.total_processing_time_ms,
            "analyzer_version": self.analyzer_version,
        }


@dataclass
class ProcessingResult:
    """Result from running one email through the analyzers."""

    item_id: str
    success: bool
    analysis: AggregatedAnalysis = field(default_factory=AggregatedAnalysis)
    outcomes: dict[AnalyzerName, AnalyzerOutcome] = field(default_factory=dict)
    errors: list[AnalyzerError] = field(default_factory=list)


@dataclass
class ActionRecord:
    """Action row derived from an ActionExtractor result."""

    item_id: str
    user_id: str
    action_type: str
    title: str = "Action Required"
    description: str | None = None
    urgency_score: int = 0
    due_date: str | None = None
    estimated_minutes: int | None = None
    status: str = "pending"
    source: str = "ai"

    @classmethod
    def from_extraction(cls, item_id: str, user_id: str, data: ActionExtractionData) -> "ActionRecord":
        return cls(
            item_id=item_id,
            user_id=user_id,
            action_type=data.action_type,
            title=data.action_title or "Action Required",
            description=data.action_description,
            urgency_score=data.urgency_score,
            due_date=data.deadline,
            estimated_minutes=data.estimated_minutes,
        )


@dataclass
class ItemError:
    """Error reported for one item of a batch."""

    item_id: str
    error: str


@dataclass
class BatchResult:
    """Aggregate statistics for a batch run."""

    total_emails: int = 0
    success_count: int = 0
    failure_count: int = 0
    skipped_count: int = 0
    total_time_ms: int = 0
    avg_time_per_email_ms: int = 0
    total_tokens_used: int = 0
    estimated_cost: float = 0.0
    results: dict[str, ProcessingResult] = field(default_factory=dict)
    errors: list[ItemError] = field(default_factory=list)
    cancelled: bool = False


@dataclass
class ProgressEvent:
    """Emitted by the batch processor after each chunk, and once at the end."""

    completed: int
    total: int
    chunk_index: int
    chunk_count: int
    result: BatchResult | None = None

    @property
    def done(self) -> bool:
        return self.result is not None
