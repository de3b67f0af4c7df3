"""
Association registry models package.

Exports the association models, enums and tree structures used throughout the application.
"""

from .association_models import (
    # Enums
    AssociationStatus,

    # Business configuration
    Address,
    Contact,
    SocialMedia,
    AssociationPosition,
    AssociationFee,
    AssociationSettings,
    Branding,

    # Request Models
    CreateAssociationRequest,
    UpdateAssociationRequest,
    ReparentRequest,

    # Response Models
    AssociationResponse,
    AssociationListResponse,
    AssociationSummary,
    AssociationDetailResponse,
    DeletionCheckResponse,
    CascadeReport,
    ReparentResponse,

    # Tree Models
    TreeNode,
    ForestResponse,
    ConsistencyReport,
)

__all__ = [
    "AssociationStatus",
    "Address",
    "Contact",
    "SocialMedia",
    "AssociationPosition",
    "AssociationFee",
    "AssociationSettings",
    "Branding",
    "CreateAssociationRequest",
    "UpdateAssociationRequest",
    "ReparentRequest",
    "AssociationResponse",
    "AssociationListResponse",
    "AssociationSummary",
    "AssociationDetailResponse",
    "DeletionCheckResponse",
    "CascadeReport",
    "ReparentResponse",
    "TreeNode",
    "ForestResponse",
    "ConsistencyReport",
]
