from enum import Enum

class LeaveStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class LeaveType(str, Enum):
    HOME_VISIT = "HOME_VISIT"
    MEDICAL = "MEDICAL"
    EMERGENCY = "EMERGENCY"
    PERSONAL = "PERSONAL"
    FESTIVAL = "FESTIVAL"
    ACADEMIC = "ACADEMIC"
    OTHER = "OTHER"


class CredentialPurpose(str, Enum):
    EXIT = "exit"    # leaving the hostel, anchored to from_date
    ENTRY = "entry"  # returning, anchored to to_date


class VerificationFailure(str, Enum):
    INVALID_TOKEN = "invalid or tampered token"
    WRONG_TYPE = "wrong credential type"
    NOT_YET_VALID = "not yet valid"
    EXPIRED = "expired"
    APPLICATION_NOT_FOUND = "application not found"
    NOT_APPROVED = "application not approved"
    ALREADY_USED = "already used"
