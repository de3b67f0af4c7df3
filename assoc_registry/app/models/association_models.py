"""
Pydantic models for association hierarchy management.

This module provides:
- Business configuration structs (settings, branding, fees) with defaults
- Request models for create / update / re-parent
- Response models for associations, detail views and deletion checks
- Tree and consistency report models
"""

import re
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

ID_PATTERN = r'^[a-zA-Z0-9_-]{1,50}$'

# Path segments used by fixed routes under the associations prefix
RESERVED_IDS = frozenset({"tree"})


def _validate_id(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    if not re.match(ID_PATTERN, v):
        raise ValueError(
            'ID must be 1-50 characters containing only '
            'alphanumeric characters, hyphens, and underscores'
        )
    if v in RESERVED_IDS:
        raise ValueError(f"ID '{v}' is reserved")
    return v


# ============================================================================
# ENUMS
# ============================================================================

class AssociationStatus(str, Enum):
    """Lifecycle status of an association."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


# ============================================================================
# BUSINESS CONFIGURATION
# ============================================================================

class Address(BaseModel):
    street: Optional[str] = None
    suburb: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postcode: Optional[str] = None
    country: str = "Australia"


class Contact(BaseModel):
    primary_email: Optional[EmailStr] = None
    secondary_email: Optional[EmailStr] = None
    phone: Optional[str] = None
    mobile: Optional[str] = None
    fax: Optional[str] = None
    website: Optional[str] = None


class SocialMedia(BaseModel):
    facebook: Optional[str] = None
    instagram: Optional[str] = None
    twitter: Optional[str] = None
    youtube: Optional[str] = None
    linkedin: Optional[str] = None
    tiktok: Optional[str] = None


class PositionContact(BaseModel):
    name: str
    email: EmailStr
    phone: str
    mobile: Optional[str] = None


class AssociationPosition(BaseModel):
    position_id: str
    title: str
    display_name: str
    description: Optional[str] = None
    contact_person: Optional[PositionContact] = None
    display_order: int = 0
    is_active: bool = True


class AssociationFee(BaseModel):
    """A registration fee. Dates accept ISO date or datetime strings."""
    fee_id: str
    name: str
    amount: float
    category: Optional[str] = None
    gst_included: bool = True
    description: Optional[str] = None
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None
    is_active: bool = True
    age_categories: Optional[List[str]] = None
    role_categories: Optional[List[str]] = None
    min_age: Optional[int] = None
    max_age: Optional[int] = None

    @field_validator('valid_from', 'valid_to', mode='before')
    @classmethod
    def normalize_date(cls, v: Any) -> Any:
        if isinstance(v, datetime):
            return v.date()
        if isinstance(v, str) and 'T' in v:
            return v.split('T', 1)[0]
        return v


class AssociationSettings(BaseModel):
    """
    Registration policy for an association.

    Defaults are applied once when the association is created; stored
    records carry the full struct so reads never re-derive them.
    """
    schema_version: int = 1
    requires_approval: bool = False
    auto_approve_returning_players: bool = True
    allow_multiple_clubs: bool = True
    season_start_month: int = Field(default=1, ge=1, le=12)
    season_end_month: int = Field(default=12, ge=1, le=12)
    registration_open_date: Optional[date] = None
    registration_close_date: Optional[date] = None
    requires_clearance: bool = False
    requires_insurance: bool = True
    requires_medical_info: bool = True
    requires_emergency_contact: bool = True


class Branding(BaseModel):
    logo_url: Optional[str] = None
    primary_color: str = "#06054e"
    secondary_color: str = "#FFD700"
    banner_url: Optional[str] = None


# ============================================================================
# REQUEST MODELS
# ============================================================================

class CreateAssociationRequest(BaseModel):
    """
    Request model for creating an association.

    `level` and `hierarchy` may be sent by clients but are always recomputed
    from the parent.
    """
    id: str = Field(..., min_length=1, max_length=50, description="Stable association identifier, e.g. 'bha'")
    code: str = Field(..., min_length=1, max_length=10, description="Unique short label, e.g. 'BHA'")
    name: str = Field(..., min_length=1, max_length=200)
    full_name: Optional[str] = Field(default=None, max_length=300)
    acronym: Optional[str] = Field(default=None, max_length=20)

    parent_id: Optional[str] = Field(default=None, description="Parent association id; omit for a root")
    level: Optional[int] = Field(default=None, description="Ignored; computed from the parent")
    hierarchy: Optional[List[str]] = Field(default=None, description="Ignored; computed from the parent")

    region: Optional[str] = None
    state: Optional[str] = None
    country: str = "Australia"
    timezone: str = "Australia/Brisbane"

    address: Optional[Address] = None
    mailing_address: Optional[Address] = None
    contact: Optional[Contact] = None
    social_media: Optional[SocialMedia] = None
    positions: List[AssociationPosition] = Field(default_factory=list)
    fees: List[AssociationFee] = Field(default_factory=list)
    settings: Optional[AssociationSettings] = None
    branding: Optional[Branding] = None

    status: AssociationStatus = AssociationStatus.ACTIVE
    metadata: Optional[Dict[str, Any]] = None

    @field_validator('id', 'parent_id')
    @classmethod
    def validate_ids(cls, v: Optional[str]) -> Optional[str]:
        return _validate_id(v)

    model_config = ConfigDict(extra="forbid", json_schema_extra={
        "example": {
            "id": "bha",
            "code": "BHA",
            "name": "Brisbane Hockey Association",
            "full_name": "Brisbane Hockey Association Inc.",
            "parent_id": "hq",
            "region": "Brisbane",
            "state": "QLD",
        }
    })


class UpdateAssociationRequest(BaseModel):
    """
    Request model for updating an association.

    Only fields present in the request are changed. Sending `parent_id`
    (including an explicit null) re-parents the association.
    """
    code: Optional[str] = Field(default=None, min_length=1, max_length=10)
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    full_name: Optional[str] = Field(default=None, max_length=300)
    acronym: Optional[str] = Field(default=None, max_length=20)
    parent_id: Optional[str] = None
    level: Optional[int] = Field(default=None, description="Ignored")
    hierarchy: Optional[List[str]] = Field(default=None, description="Ignored")
    region: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    timezone: Optional[str] = None
    address: Optional[Address] = None
    mailing_address: Optional[Address] = None
    contact: Optional[Contact] = None
    social_media: Optional[SocialMedia] = None
    positions: Optional[List[AssociationPosition]] = None
    fees: Optional[List[AssociationFee]] = None
    settings: Optional[AssociationSettings] = None
    branding: Optional[Branding] = None
    status: Optional[AssociationStatus] = None
    metadata: Optional[Dict[str, Any]] = None

    @field_validator('parent_id')
    @classmethod
    def validate_parent_id(cls, v: Optional[str]) -> Optional[str]:
        return _validate_id(v)

    @property
    def parent_change_requested(self) -> bool:
        return "parent_id" in self.model_fields_set

    model_config = ConfigDict(extra="forbid")


class ReparentRequest(BaseModel):
    """Move an association under a new parent (null promotes it to a root)."""
    new_parent_id: Optional[str] = Field(...)

    @field_validator('new_parent_id')
    @classmethod
    def validate_new_parent_id(cls, v: Optional[str]) -> Optional[str]:
        return _validate_id(v)

    model_config = ConfigDict(extra="forbid")


# ============================================================================
# RESPONSE MODELS
# ============================================================================

class AssociationResponse(BaseModel):
    """Stored association as returned to callers."""
    id: str
    code: str
    name: str
    full_name: Optional[str] = None
    acronym: Optional[str] = None
    parent_id: Optional[str] = None
    level: int
    level_label: Optional[str] = None
    hierarchy: List[str] = Field(default_factory=list)
    status: AssociationStatus
    region: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    timezone: Optional[str] = None
    address: Optional[Address] = None
    mailing_address: Optional[Address] = None
    contact: Optional[Contact] = None
    social_media: Optional[SocialMedia] = None
    positions: List[AssociationPosition] = Field(default_factory=list)
    fees: List[AssociationFee] = Field(default_factory=list)
    settings: Optional[AssociationSettings] = None
    branding: Optional[Branding] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class AssociationListResponse(BaseModel):
    associations: List[AssociationResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class AssociationSummary(BaseModel):
    id: str
    code: str
    name: str
    level: int
    status: AssociationStatus

    model_config = ConfigDict(extra="ignore")


class ClubSummary(BaseModel):
    id: str
    name: Optional[str] = None
    code: Optional[str] = None
    parent_id: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class RegistrationStatistics(BaseModel):
    total: int = 0
    active: int = 0
    pending: int = 0


class AssociationDetailResponse(BaseModel):
    """Association with its parent, ancestors, children, clubs and registration counts."""
    association: AssociationResponse
    parent: Optional[AssociationSummary] = None
    ancestors: List[AssociationSummary] = Field(default_factory=list)
    children: List[AssociationSummary] = Field(default_factory=list)
    clubs: List[ClubSummary] = Field(default_factory=list)
    statistics: RegistrationStatistics = Field(default_factory=RegistrationStatistics)


class DeletionCheckResponse(BaseModel):
    association_id: str
    blocked: bool
    reason: str = ""
    child_count: int = 0
    club_count: int = 0
    active_reference_count: int = 0


class CascadeReport(BaseModel):
    """Outcome of rewriting descendant paths after a move."""
    moved_id: str
    total: int = 0
    repaired: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed


class ReparentResponse(BaseModel):
    association: AssociationResponse
    cascade: CascadeReport


# ============================================================================
# TREE MODELS
# ============================================================================

class TreeNode(BaseModel):
    """Node of the reconstructed forest. Clubs are always leaves."""
    type: Literal["association", "club"]
    id: str
    name: Optional[str] = None
    code: Optional[str] = None
    parent_id: Optional[str] = None
    level: Optional[int] = None
    hierarchy: List[str] = Field(default_factory=list)
    status: Optional[str] = None
    branding: Dict[str, Any] = Field(default_factory=dict)
    logo_url: Optional[str] = None
    colors: Dict[str, Any] = Field(default_factory=dict)
    children: List["TreeNode"] = Field(default_factory=list)


class ForestStats(BaseModel):
    associations: int = 0
    clubs: int = 0
    roots: int = 0
    orphaned_clubs: int = 0
    unreachable_associations: int = 0


class ForestResponse(BaseModel):
    roots: List[TreeNode]
    stats: ForestStats
    orphaned_club_ids: List[str] = Field(default_factory=list)
    unreachable_ids: List[str] = Field(default_factory=list)


class PathInconsistency(BaseModel):
    id: str
    expected_level: int
    actual_level: Optional[int] = None
    expected_hierarchy: List[str]
    actual_hierarchy: List[str]


class ConsistencyReport(BaseModel):
    consistent: bool = True
    checked: int
    inconsistencies: List[PathInconsistency] = Field(default_factory=list)
    unreachable_ids: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def derive_consistent(self) -> "ConsistencyReport":
        self.consistent = not self.inconsistencies and not self.unreachable_ids
        return self


TreeNode.model_rebuild()
