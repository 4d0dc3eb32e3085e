"""
Data Schemas for the Blue Carbon MRV Registry

Each Pydantic model is one record of the registry aggregate (AppState).
The whole AppState is the unit of persistence: it is stored as a single
document in MongoDB (or a local JSON file) with camelCase keys.

- User -> session identity (not persisted on its own)
- Submission -> restoration field report
- CarbonCredit -> credit minted from an approved submission
- AuditLog -> append-only trail entry
- AppState -> the aggregate

"""
from enum import Enum
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, Enum):
    FISHERMAN = "FISHERMAN"
    NGO = "NGO"
    ADMIN = "ADMIN"
    CORPORATE = "CORPORATE"


class SubmissionStatus(str, Enum):
    PENDING = "PENDING"
    AI_VERIFIED = "AI_VERIFIED"
    NGO_APPROVED = "NGO_APPROVED"
    FIELD_CHECK_REQUIRED = "FIELD_CHECK_REQUIRED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class CreditStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    SOLD = "SOLD"
    RETIRED = "RETIRED"


EcosystemType = Literal["MANGROVE", "SEAGRASS"]
Language = Literal["en", "es", "hi", "id"]


class RegistryModel(BaseModel):
    """Base for persisted records: camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class User(RegistryModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Session-scoped user id")
    email: str = Field(..., description="Login email")
    name: str = Field(..., description="Display name")
    role: UserRole = Field(..., description="Participant role, fixed for the session")
    organization: Optional[str] = Field(None, description="NGO, agency or company name")
    region: Optional[str] = Field(None, description="Home region of the participant")


class Location(RegistryModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    region: str = Field(..., description="Named coastal region, e.g. Kerala Coastal")


class Submission(RegistryModel):
    """
    A geo-tagged restoration report from the field.
    Status moves through the review workflow; see workflow.TRANSITIONS.
    """
    id: str = Field(..., description="Unique submission id, never reused")
    user_id: str = Field(..., description="Submitting user id")
    user_name: str = Field(..., description="Submitting user name")
    timestamp: datetime = Field(default_factory=utcnow, description="Creation time")
    image_url: str = Field(..., description="Reference to the restoration photo")
    location: Location
    ecosystem_type: EcosystemType
    status: SubmissionStatus = SubmissionStatus.PENDING
    ai_score: float = Field(0.0, ge=0, le=1, description="AI confidence score")
    ai_analysis: Optional[str] = Field(None, description="AI health assessment")
    estimated_area: float = Field(0.0, ge=0, description="Surveyed area in hectares")
    estimated_carbon: float = Field(0.0, ge=0, description="Estimated sequestration in tCO2e")
    verifier_comments: Optional[str] = Field(None, description="Set by the NGO reviewer")
    admin_comments: Optional[str] = Field(None, description="Set by the government admin")
    credit_id: Optional[str] = Field(None, description="Minted credit, only when APPROVED")
    ngo_id: Optional[str] = None
    ngo_name: Optional[str] = None


class CarbonCredit(RegistryModel):
    """A tradeable credit minted from exactly one approved submission."""
    id: str = Field(..., description="Unique credit id")
    submission_id: str = Field(..., description="Source submission")
    origin: str = Field(..., description="Descriptive origin, e.g. MANGROVE Restoration")
    region: str
    tons: float = Field(..., ge=0, description="Credit volume in tCO2e")
    minted_at: datetime = Field(default_factory=utcnow)
    transaction_hash: str = Field(..., description="Simulated ledger transaction hash")
    issued_by: Optional[str] = Field(None, description="Name of the issuing admin")
    status: CreditStatus = CreditStatus.AVAILABLE
    owner_id: str = Field("", description="Buyer id, empty until SOLD")
    owner_name: str = Field("", description="Buyer name, empty until SOLD")


class AuditLog(RegistryModel):
    """One entry of the append-only audit trail. Actor fields are a snapshot."""
    id: str
    sequence: int = Field(..., ge=1, description="Strictly increasing position in the trail")
    timestamp: datetime = Field(default_factory=utcnow)
    user_id: str
    user_name: str
    role: UserRole
    action: str = Field(..., description="Transition tag, e.g. NGO_APPROVE")
    target_id: str = Field(..., description="Affected submission or credit id")
    details: str = ""


class AIAnalysis(RegistryModel):
    """Result of the external image scorer."""
    confidence_score: float = Field(..., ge=0, le=1)
    health_assessment: str
    estimated_carbon_potential: float = Field(..., ge=0, description="tCO2e per hectare")
    is_verified: bool
    degraded: bool = Field(False, description="True when this is the fallback result")


class AppState(RegistryModel):
    """The registry aggregate; persisted and restored as one unit."""
    current_user: Optional[User] = None
    submissions: List[Submission] = Field(default_factory=list)
    credits: List[CarbonCredit] = Field(default_factory=list)
    audit_logs: List[AuditLog] = Field(default_factory=list, description="Newest first")
    language: Language = "en"
    user_count: int = Field(0, ge=0)
