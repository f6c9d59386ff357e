from .entities import (
    Account,
    Facility,
    Inspection,
    InspectionPhoto,
    InspectionStatus,
    InspectionTemplate,
    User,
    UserSignature,
)

__all__ = [
    "Account",
    "Facility",
    "Inspection",
    "InspectionPhoto",
    "InspectionStatus",
    "InspectionTemplate",
    "User",
    "UserSignature",
]
