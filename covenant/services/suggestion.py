"""Validated shapes for violation input and photo-analysis proposals.

The photo-analysis collaborator only proposes category, severity, description,
remediation and deadline. The lifecycle records what the operator submits
(ViolationDraft), never the raw proposal.
"""

from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, field_validator

from covenant.models.property import Property
from covenant.models.violation import Severity, ViolationCategory

# Fallback used only if a property has no rules document text yet
DEFAULT_HOA_RULES = """
GENERAL HOA RULES (FALLBACK)

Section 3.1 - Lawn & Landscaping
Grass must not exceed 6 inches. Dead plants and weeds must be cleared within 14 days of notice.

Section 4.2 - Refuse & Recycling
Trash containers must be stored out of street view at all times except on collection day.

Section 5.1 - Vehicles & Parking
No RVs, boats, trailers, or commercial vehicles may be parked in driveways for more than 24 hours.

Section 6.3 - Exterior Maintenance
Homes must be kept in good repair: paint, gutters, shutters, fencing, driveways.
Visible damage must be repaired within 30 days of notice.

Section 7.1 - Unapproved Structures
No shed, pergola, fence, or permanent structure may be added without prior HOA board approval.
"""


class ViolationAnalyzer(Protocol):
    """Photo-analysis collaborator that proposes violation details."""

    async def analyze(
        self, image: bytes, mime_type: str, rules_text: str, hint: str = ""
    ) -> dict[str, Any]:
        ...


def rules_text_for(property: Property) -> str:
    """Rules text to hand to the analyzer for this property."""
    return property.rules_text or DEFAULT_HOA_RULES


class ViolationDraft(BaseModel):
    """Operator-confirmed values for a new violation."""

    category: ViolationCategory
    severity: Severity
    description: str = Field(..., min_length=1)
    rule_cited: str | None = None
    remediation: str | None = None
    deadline_days: int = Field(14, gt=0)
    image_url: str | None = None

    @field_validator("description")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("description must not be blank")
        return value.strip()


class ViolationEdit(BaseModel):
    """In-place corrections to an existing violation; unset fields are untouched.

    Passing None clears rule_cited or remediation.
    """

    category: ViolationCategory | None = None
    severity: Severity | None = None
    description: str | None = Field(None, min_length=1)
    rule_cited: str | None = None
    remediation: str | None = None
    deadline_days: int | None = Field(None, gt=0)

    model_config = ConfigDict(extra="forbid")

    @field_validator("category", "severity", "description", "deadline_days")
    @classmethod
    def _not_cleared(cls, value):
        # Only rule_cited and remediation may be set back to None
        if value is None:
            raise ValueError("field cannot be cleared")
        return value

    @field_validator("description")
    @classmethod
    def _not_blank(cls, value: str | None) -> str | None:
        if value is None:
            return value
        if not value.strip():
            raise ValueError("description must not be blank")
        return value.strip()


class ViolationSuggestion(BaseModel):
    """Proposal returned by the photo-analysis collaborator."""

    violation_detected: bool = False
    category: ViolationCategory | None = None
    severity: Severity | None = None
    description: str | None = None
    rule_cited: str | None = None
    remediation: str | None = None
    deadline_days: int | None = Field(None, gt=0)
    image_url: str | None = None

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_analysis(cls, payload: dict[str, Any], image_url: str | None = None) -> "ViolationSuggestion":
        """Validate a raw analyzer payload.

        Unknown categories are mapped to "other" rather than rejected, since the
        operator reviews every field before submitting.
        """
        data = dict(payload)
        category = data.get("category")
        if category is not None and category not in {c.value for c in ViolationCategory}:
            data["category"] = ViolationCategory.OTHER
        if image_url is not None:
            data["image_url"] = image_url
        return cls.model_validate(data)

    def to_draft(self, **operator_edits: Any) -> ViolationDraft:
        """Merge operator edits over the proposal.

        Raises:
            ValueError: If required fields are missing after the merge
        """
        values = {
            "category": self.category,
            "severity": self.severity,
            "description": self.description,
            "rule_cited": self.rule_cited,
            "remediation": self.remediation,
            "deadline_days": self.deadline_days,
            "image_url": self.image_url,
        }
        values.update({key: value for key, value in operator_edits.items() if value is not None})
        if values["deadline_days"] is None:
            values.pop("deadline_days")
        if not self.violation_detected and not operator_edits:
            raise ValueError("No violation detected; operator must supply the violation details")
        return ViolationDraft.model_validate(values)


__all__ = [
    "DEFAULT_HOA_RULES",
    "ViolationAnalyzer",
    "ViolationDraft",
    "ViolationEdit",
    "ViolationSuggestion",
    "rules_text_for",
]
