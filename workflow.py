"""
Submission lifecycle for the Blue Carbon MRV registry.

Every mutating operation is a pure function ``(AppState, command) -> (AppState, AuditLog)``.
The input state is never modified; the caller swaps in the returned state only when
the function returns, so a status change, a minted credit and its audit entry land
together or not at all.

Review transitions are driven by the TRANSITIONS table below: the same lookup is used
to validate a request (role, source state) and to execute it (target state, comment
field, credit minting).
"""
import hashlib
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Tuple

from schemas import (
    AIAnalysis,
    AppState,
    AuditLog,
    CarbonCredit,
    CreditStatus,
    EcosystemType,
    Location,
    Submission,
    SubmissionStatus,
    User,
    UserRole,
    utcnow,
)

logger = logging.getLogger(__name__)

# Survey plot size used to turn per-hectare potential into an estimate
SURVEY_AREA_HECTARES = 0.5


class WorkflowError(Exception):
    """Base class for domain-rule violations. The state is left untouched."""


class AuthorizationError(WorkflowError):
    pass


class InvalidTransitionError(WorkflowError):
    def __init__(self, current: SubmissionStatus, target: SubmissionStatus):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move submission from {current.value} to {target.value}")


class SubmissionNotFoundError(WorkflowError):
    pass


class IssuanceBlockedError(WorkflowError):
    pass


class CreditUnavailableError(WorkflowError):
    def __init__(self, credit_id: str, reason: str, found: bool = True):
        self.credit_id = credit_id
        self.found = found
        super().__init__(f"Credit {credit_id} is not available: {reason}")


class ExternalServiceDegraded(Exception):
    """An AI or persistence call failed. Absorbed by the adapters, never by the workflow."""


@dataclass(frozen=True)
class Transition:
    action: str
    role: UserRole
    sources: FrozenSet[SubmissionStatus]
    target: SubmissionStatus
    comment_field: str
    details: str
    records_reviewer: bool = False
    mints_credit: bool = False


_NGO_SOURCES = frozenset({SubmissionStatus.PENDING, SubmissionStatus.AI_VERIFIED})
_ADMIN_SOURCES = frozenset({SubmissionStatus.NGO_APPROVED})

TRANSITIONS: Dict[str, Transition] = {
    t.action: t
    for t in (
        Transition("NGO_APPROVE", UserRole.NGO, _NGO_SOURCES, SubmissionStatus.NGO_APPROVED,
                   "verifier_comments", "NGO verified site: {comments}", records_reviewer=True),
        Transition("NGO_REJECT", UserRole.NGO, _NGO_SOURCES, SubmissionStatus.REJECTED,
                   "verifier_comments", "NGO rejected site: {comments}"),
        Transition("NGO_FLAG", UserRole.NGO, _NGO_SOURCES, SubmissionStatus.FIELD_CHECK_REQUIRED,
                   "verifier_comments", "NGO flagged for field visit: {comments}"),
        Transition("ADMIN_ISSUE_CREDIT", UserRole.ADMIN, _ADMIN_SOURCES, SubmissionStatus.APPROVED,
                   "admin_comments", "Government issued {tons} tons for sub {submission_id}",
                   mints_credit=True),
        Transition("ADMIN_REJECT", UserRole.ADMIN, _ADMIN_SOURCES, SubmissionStatus.REJECTED,
                   "admin_comments", "Admin rejected issuance: {comments}"),
    )
}

TERMINAL_STATES = frozenset({
    SubmissionStatus.APPROVED,
    SubmissionStatus.REJECTED,
    SubmissionStatus.FIELD_CHECK_REQUIRED,
})


# Commands

@dataclass(frozen=True)
class SubmitRestoration:
    image_url: str
    ecosystem_type: EcosystemType
    location: Location
    analysis: AIAnalysis


@dataclass(frozen=True)
class ReviewSubmission:
    submission_id: str
    action: str
    comments: str = ""


@dataclass(frozen=True)
class PurchaseCredit:
    credit_id: str


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex}"


def require_role(actor: Optional[User], role: UserRole) -> User:
    if actor is None:
        raise AuthorizationError("No active session")
    if actor.role != role:
        raise AuthorizationError(f"{actor.role.value} may not perform a {role.value} action")
    return actor


def append_audit(state: AppState, action: str, actor: Optional[User], target_id: str,
                 details: str) -> Tuple[AppState, Optional[AuditLog]]:
    """Prepend one audit entry. Without an actor this is a no-op."""
    if actor is None:
        return state, None
    sequence = state.audit_logs[0].sequence + 1 if state.audit_logs else 1
    entry = AuditLog(
        id=new_id("log"),
        sequence=sequence,
        timestamp=utcnow(),
        user_id=actor.id,
        user_name=actor.name,
        role=actor.role,
        action=action,
        target_id=target_id,
        details=details,
    )
    return state.model_copy(update={"audit_logs": [entry, *state.audit_logs]}), entry


def find_submission(state: AppState, submission_id: str) -> Submission:
    for s in state.submissions:
        if s.id == submission_id:
            return s
    raise SubmissionNotFoundError(f"Submission {submission_id} not found")


def credit_proof_hash(credit: CarbonCredit, salt: str) -> str:
    """Simulated ledger hash over the canonical credit payload."""
    payload = credit.model_dump(mode="json", include={"id", "submission_id", "origin", "region", "tons", "minted_at"})
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":")) + salt
    return "0x" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def mint_credit(state: AppState, submission: Submission, issuer: User) -> CarbonCredit:
    taken = {c.id for c in state.credits}
    credit_id = new_id("c")
    while credit_id in taken:
        credit_id = new_id("c")
    credit = CarbonCredit(
        id=credit_id,
        submission_id=submission.id,
        origin=f"{submission.ecosystem_type} Restoration",
        region=submission.location.region,
        tons=submission.estimated_carbon,
        minted_at=utcnow(),
        transaction_hash="pending",
        issued_by=issuer.name,
        status=CreditStatus.AVAILABLE,
        owner_id="",
        owner_name="",
    )
    hashes = {c.transaction_hash for c in state.credits}
    tx_hash = credit_proof_hash(credit, uuid.uuid4().hex)
    while tx_hash in hashes:
        tx_hash = credit_proof_hash(credit, uuid.uuid4().hex)
    return credit.model_copy(update={"transaction_hash": tx_hash})


def submit_restoration(state: AppState, command: SubmitRestoration) -> Tuple[AppState, AuditLog]:
    actor = require_role(state.current_user, UserRole.FISHERMAN)
    analysis = command.analysis
    submission = Submission(
        id=new_id("s"),
        user_id=actor.id,
        user_name=actor.name,
        timestamp=utcnow(),
        image_url=command.image_url,
        location=command.location,
        ecosystem_type=command.ecosystem_type,
        status=SubmissionStatus.AI_VERIFIED if analysis.is_verified else SubmissionStatus.PENDING,
        ai_score=analysis.confidence_score,
        ai_analysis=analysis.health_assessment,
        estimated_area=SURVEY_AREA_HECTARES,
        estimated_carbon=round(analysis.estimated_carbon_potential * SURVEY_AREA_HECTARES),
    )
    state = state.model_copy(update={"submissions": [submission, *state.submissions]})
    state, entry = append_audit(
        state, "SUBMISSION_CREATE", actor, submission.id,
        f"{submission.ecosystem_type} site reported in {submission.location.region}",
    )
    logger.info("Submission %s created with status %s", submission.id, submission.status.value)
    return state, entry


def review_submission(state: AppState, command: ReviewSubmission) -> Tuple[AppState, AuditLog]:
    transition = TRANSITIONS.get(command.action)
    if transition is None:
        raise WorkflowError(f"Unknown review action {command.action}")
    actor = require_role(state.current_user, transition.role)
    submission = find_submission(state, command.submission_id)
    if submission.status not in transition.sources:
        raise InvalidTransitionError(submission.status, transition.target)

    update = {"status": transition.target, transition.comment_field: command.comments}
    if transition.records_reviewer:
        update.update(ngo_id=actor.id, ngo_name=actor.name)

    credits = state.credits
    target_id = submission.id
    if transition.mints_credit:
        if submission.estimated_carbon <= 0:
            raise IssuanceBlockedError(
                f"Submission {submission.id} has no positive carbon estimate to issue"
            )
        credit = mint_credit(state, submission, actor)
        update["credit_id"] = credit.id
        credits = [credit, *state.credits]
        target_id = credit.id

    updated = submission.model_copy(update=update)
    submissions = [updated if s.id == submission.id else s for s in state.submissions]
    state = state.model_copy(update={"submissions": submissions, "credits": credits})
    details = transition.details.format(
        comments=command.comments,
        tons=submission.estimated_carbon,
        submission_id=submission.id,
    )
    state, entry = append_audit(state, transition.action, actor, target_id, details)
    logger.info("%s: submission %s %s -> %s", transition.action, submission.id,
                submission.status.value, transition.target.value)
    return state, entry


def purchase_credit(state: AppState, command: PurchaseCredit) -> Tuple[AppState, AuditLog]:
    buyer = require_role(state.current_user, UserRole.CORPORATE)
    credit = next((c for c in state.credits if c.id == command.credit_id), None)
    if credit is None:
        raise CreditUnavailableError(command.credit_id, "not found", found=False)
    if credit.status != CreditStatus.AVAILABLE:
        raise CreditUnavailableError(command.credit_id, f"status is {credit.status.value}")

    sold = credit.model_copy(update={
        "status": CreditStatus.SOLD,
        "owner_id": buyer.id,
        "owner_name": buyer.name,
    })
    credits = [sold if c.id == credit.id else c for c in state.credits]
    state = state.model_copy(update={"credits": credits})
    state, entry = append_audit(state, "CORPORATE_PURCHASE", buyer, credit.id, f"Bought by {buyer.name}")
    logger.info("Credit %s sold to %s", credit.id, buyer.id)
    return state, entry


_HANDLERS = {
    SubmitRestoration: submit_restoration,
    ReviewSubmission: review_submission,
    PurchaseCredit: purchase_credit,
}


def apply_command(state: AppState, command) -> Tuple[AppState, AuditLog]:
    handler = _HANDLERS.get(type(command))
    if handler is None:
        raise TypeError(f"Unsupported command {type(command).__name__}")
    return handler(state, command)
