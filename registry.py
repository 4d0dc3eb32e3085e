import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from ai_scorer import analyze
from database import StateStore
from schemas import (
    AIAnalysis,
    AppState,
    AuditLog,
    CarbonCredit,
    EcosystemType,
    Language,
    Location,
    Submission,
    User,
    UserRole,
)
from workflow import (
    AuthorizationError,
    PurchaseCredit,
    ReviewSubmission,
    SubmitRestoration,
    apply_command,
    find_submission,
)

logger = logging.getLogger(__name__)

DEFAULT_ORGANIZATION = {
    UserRole.NGO: "Blue Marine NGO",
    UserRole.ADMIN: "NCCR Government",
    UserRole.CORPORATE: "Private Sector",
    UserRole.FISHERMAN: "Private Sector",
}


@dataclass
class CommandResult:
    audit: Optional[AuditLog]
    submission: Optional[Submission] = None
    credit: Optional[CarbonCredit] = None
    warnings: List[str] = field(default_factory=list)


class Registry:
    """
    Owns the AppState aggregate and the current session.

    Commands are computed by the pure functions in workflow.py; the new state
    replaces the old one only when the command succeeds, and is persisted right
    after. Persistence problems come back as warnings on the result.
    """

    def __init__(self, store: Optional[StateStore] = None,
                 scorer: Callable[[str, str], AIAnalysis] = analyze):
        self.store = store or StateStore()
        self.scorer = scorer
        self._lock = threading.Lock()
        self.state = self.store.load_state() or AppState()

    @property
    def current_user(self) -> Optional[User]:
        return self.state.current_user

    def _commit(self, state: AppState) -> List[str]:
        self.state = state
        return self.store.save_state(state)

    def login(self, email: str, role: UserRole, organization: Optional[str] = None,
              region: Optional[str] = None) -> CommandResult:
        user = User(
            id="u-" + uuid.uuid4().hex,
            email=email,
            name=email.split("@")[0],
            role=role,
            organization=organization or DEFAULT_ORGANIZATION[role],
            region=region,
        )
        with self._lock:
            warnings = self._commit(self.state.model_copy(update={
                "current_user": user,
                "user_count": self.state.user_count + 1,
            }))
        logger.info("Session started for %s as %s", user.id, role.value)
        return CommandResult(audit=None, warnings=warnings)

    def logout(self) -> CommandResult:
        with self._lock:
            warnings = self._commit(self.state.model_copy(update={"current_user": None}))
        return CommandResult(audit=None, warnings=warnings)

    def set_language(self, language: Language) -> CommandResult:
        with self._lock:
            warnings = self._commit(self.state.model_copy(update={"language": language}))
        return CommandResult(audit=None, warnings=warnings)

    def submit(self, image_url: str, ecosystem_type: EcosystemType, location: Location) -> CommandResult:
        # Check the role before spending an AI call on the request
        user = self.current_user
        if user is None or user.role != UserRole.FISHERMAN:
            raise AuthorizationError("Only a FISHERMAN session can submit restoration reports")
        analysis = self.scorer(image_url, ecosystem_type)
        warnings = []
        if analysis.degraded:
            warnings.append("AI analysis unavailable, fallback assessment applied")
        command = SubmitRestoration(image_url=image_url, ecosystem_type=ecosystem_type,
                                    location=location, analysis=analysis)
        with self._lock:
            state, entry = apply_command(self.state, command)
            warnings += self._commit(state)
        return CommandResult(audit=entry, submission=find_submission(state, entry.target_id),
                             warnings=warnings)

    def review(self, submission_id: str, action: str, comments: str = "") -> CommandResult:
        with self._lock:
            state, entry = apply_command(self.state, ReviewSubmission(submission_id, action, comments))
            warnings = self._commit(state)
        submission = find_submission(state, submission_id)
        credit = None
        if submission.credit_id:
            credit = next(c for c in state.credits if c.id == submission.credit_id)
        return CommandResult(audit=entry, submission=submission, credit=credit, warnings=warnings)

    def ngo_approve(self, submission_id: str, comments: str = "") -> CommandResult:
        return self.review(submission_id, "NGO_APPROVE", comments)

    def ngo_reject(self, submission_id: str, comments: str = "") -> CommandResult:
        return self.review(submission_id, "NGO_REJECT", comments)

    def ngo_flag(self, submission_id: str, comments: str = "") -> CommandResult:
        return self.review(submission_id, "NGO_FLAG", comments)

    def admin_issue(self, submission_id: str, comments: str = "") -> CommandResult:
        return self.review(submission_id, "ADMIN_ISSUE_CREDIT", comments)

    def admin_reject(self, submission_id: str, comments: str = "") -> CommandResult:
        return self.review(submission_id, "ADMIN_REJECT", comments)

    def purchase(self, credit_id: str) -> CommandResult:
        with self._lock:
            state, entry = apply_command(self.state, PurchaseCredit(credit_id))
            warnings = self._commit(state)
        credit = next(c for c in state.credits if c.id == credit_id)
        return CommandResult(audit=entry, credit=credit, warnings=warnings)

    def audit_trail(self) -> List[AuditLog]:
        return list(self.state.audit_logs)
