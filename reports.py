"""Read-side projections behind the role dashboards. Nothing here mutates state."""
import os
from collections import Counter
from typing import List

from schemas import AppState, CarbonCredit, CreditStatus, Submission, SubmissionStatus, User, UserRole


def credit_price_usd() -> float:
    return float(os.getenv("CREDIT_PRICE_USD", "15"))


def ngo_queue(state: AppState) -> List[Submission]:
    return [s for s in state.submissions
            if s.status in (SubmissionStatus.PENDING, SubmissionStatus.AI_VERIFIED)]


def admin_queue(state: AppState) -> List[Submission]:
    return [s for s in state.submissions if s.status == SubmissionStatus.NGO_APPROVED]


def available_credits(state: AppState) -> List[CarbonCredit]:
    return [c for c in state.credits if c.status == CreditStatus.AVAILABLE]


def submitter_summary(state: AppState, user: User) -> dict:
    mine = [s for s in state.submissions if s.user_id == user.id]
    volume = sum(s.estimated_carbon for s in mine if s.status == SubmissionStatus.APPROVED)
    return {
        "activeSites": len(mine),
        "impactVolume": volume,
        "estimatedValue": volume * credit_price_usd(),
    }


def buyer_portfolio(state: AppState, user: User) -> dict:
    owned = [c for c in state.credits if c.owner_id == user.id]
    by_ecosystem = {"MANGROVE": 0.0, "SEAGRASS": 0.0}
    for c in owned:
        ecosystem = c.origin.split(" ", 1)[0]
        by_ecosystem[ecosystem] = by_ecosystem.get(ecosystem, 0.0) + c.tons
    return {
        "ownedCredits": [c.id for c in owned],
        "offsetVolume": sum(c.tons for c in owned),
        "regions": len({c.region for c in owned}),
        "tonsByEcosystem": by_ecosystem,
    }


def registry_overview(state: AppState) -> dict:
    return {
        "totalUploads": len(state.submissions),
        "mintedCredits": len(state.credits),
        "soldCredits": sum(1 for c in state.credits if c.status == CreditStatus.SOLD),
        "registeredUsers": state.user_count,
        "submissionsByStatus": dict(Counter(s.status.value for s in state.submissions)),
    }


def dashboard(state: AppState, user: User) -> dict:
    """Summary for the signed-in role, mirroring what each dashboard shows."""
    if user.role == UserRole.FISHERMAN:
        return {"role": user.role.value, **submitter_summary(state, user)}
    if user.role == UserRole.NGO:
        return {"role": user.role.value, "pendingReview": len(ngo_queue(state))}
    if user.role == UserRole.ADMIN:
        return {"role": user.role.value, "awaitingIssuance": len(admin_queue(state)),
                **registry_overview(state)}
    return {"role": user.role.value, "availableCredits": len(available_credits(state)),
            **buyer_portfolio(state, user)}
