from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_USERNAME = "Anonymous"
DEFAULT_COMMENT = "-"
UNKNOWN_DATE = "Unknown Date"
UNKNOWN_HOTEL = "Unknown Hotel"


class Source(str, Enum):
    TRAVELOKA = "traveloka"
    TICKETCOM = "ticketcom"
    AGODA = "agoda"
    TRIPCOM = "tripcom"


class TerminationReason(str, Enum):
    CUTOFF_REACHED = "cutoffReached"
    RETRIES_EXHAUSTED = "retriesExhausted"
    NO_NEXT_CONTROL = "noNextControl"
    NEXT_CONTROL_DISABLED = "nextControlDisabled"
    EXTRACTION_FAILURE_EXHAUSTED = "extractionFailureExhausted"


class DeliveryResult(str, Enum):
    SKIPPED = "skipped"
    SENT = "sent"
    FAILED = "failed"


class RawReview(BaseModel):
    """Unnormalized fields as read from one review card."""

    username: Optional[str] = None
    rating: Optional[str] = None
    comment: Optional[str] = None
    date_text: Optional[str] = None


class Review(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str = DEFAULT_USERNAME
    rating: Optional[float] = None  # 0-10
    comment: str = DEFAULT_COMMENT
    timestamp: str = Field(UNKNOWN_DATE, description="DD-MM-YYYY or Unknown Date")
    hotel_name: str = UNKNOWN_HOTEL
    source: str = Field(..., alias="OTA", description="OTA label")

    @property
    def year(self) -> Optional[int]:
        """Year of the canonical timestamp, None for an unknown date."""
        if self.timestamp == UNKNOWN_DATE:
            return None
        parts = self.timestamp.split("-")
        if len(parts) != 3 or not parts[2].isdigit():
            return None
        return int(parts[2])


class HarvestSession(BaseModel):
    """Mutable state owned by one harvest run."""

    target_url: str
    hotel_id: str
    source: Source
    hotel_name: str = UNKNOWN_HOTEL
    page_index: int = 1
    leading_fingerprint: Optional[str] = None
    stale_retries: int = 0
    pending_pagination: bool = False
    accumulated: List[Review] = Field(default_factory=list)
    termination_reason: Optional[TerminationReason] = None

    @property
    def terminated(self) -> bool:
        return self.termination_reason is not None

    def terminate(self, reason: TerminationReason):
        # first reason wins
        if self.termination_reason is None:
            self.termination_reason = reason


class HarvestOutcome(BaseModel):
    termination_reason: TerminationReason
    review_count: int
    hotel_name: str
    pages: int
    delivery: DeliveryResult


class HarvestRequest(BaseModel):
    source: Source
    hotel_url: str
    hotel_id: str
