import os
import logging
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import EmailStr, Field

import reports
from database import STATE_COLLECTION, db
from registry import CommandResult, Registry
from schemas import (
    AppState,
    AuditLog,
    CarbonCredit,
    EcosystemType,
    Language,
    Location,
    RegistryModel,
    Submission,
    UserRole,
)
from workflow import (
    AuthorizationError,
    CreditUnavailableError,
    SubmissionNotFoundError,
    WorkflowError,
)

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

app = FastAPI(title="Blue Carbon MRV API", description="Restoration reports, staged verification and carbon-credit issuance")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_registry: Optional[Registry] = None


def get_registry() -> Registry:
    global _registry
    if _registry is None:
        _registry = Registry()
    return _registry


class LoginRequest(RegistryModel):
    email: EmailStr
    role: UserRole
    organization: Optional[str] = None
    region: Optional[str] = None


class CreateSubmissionRequest(RegistryModel):
    image_url: str = Field(..., min_length=1)
    ecosystem_type: EcosystemType
    location: Location


class ReviewRequest(RegistryModel):
    comments: str = ""


class LanguageRequest(RegistryModel):
    language: Language


def dump(model):
    return model.model_dump(mode="json", by_alias=True) if model is not None else None


def result_body(result: CommandResult) -> dict:
    body = {"warnings": result.warnings}
    if result.submission is not None:
        body["submission"] = dump(result.submission)
    if result.credit is not None:
        body["credit"] = dump(result.credit)
    if result.audit is not None:
        body["audit"] = dump(result.audit)
    return body


def require_session(registry: Registry = Depends(get_registry)):
    if registry.current_user is None:
        raise HTTPException(status_code=401, detail="No active session")
    return registry.current_user


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    if isinstance(exc, AuthorizationError):
        status = 403
    elif isinstance(exc, SubmissionNotFoundError):
        status = 404
    elif isinstance(exc, CreditUnavailableError) and not exc.found:
        status = 404
    else:
        status = 409
    return JSONResponse(status_code=status, content={"detail": str(exc)})


@app.get("/")
def read_root():
    return {"message": "Blue Carbon MRV backend is running"}


@app.get("/schema")
def get_schema():
    # Expose persisted record schemas for the viewer
    return {
        "submission": Submission.model_json_schema(by_alias=True),
        "carboncredit": CarbonCredit.model_json_schema(by_alias=True),
        "auditlog": AuditLog.model_json_schema(by_alias=True),
        "appstate": AppState.model_json_schema(by_alias=True),
    }


@app.get("/test")
def test_database(registry: Registry = Depends(get_registry)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "state_file": registry.store.path,
        "ai_scorer": "✅ Configured" if os.getenv("GEMINI_API_KEY") else "⚠️ Fallback only",
    }
    try:
        if db is not None:
            response["database"] = "✅ Available"
            names = db.list_collection_names()
            response["connection_status"] = "Connected"
            response["state_collection"] = STATE_COLLECTION in names
            response["state_document"] = (
                db[STATE_COLLECTION].find_one({"_id": registry.store.document_id}, {"_id": 1}) is not None
            )
        else:
            response["database"] = "⚠️ Not configured, using local state file"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:100]}"
    return response


@app.post("/session/login", response_model=dict)
def login(body: LoginRequest, registry: Registry = Depends(get_registry)):
    result = registry.login(body.email, body.role, body.organization, body.region)
    return {"user": dump(registry.current_user), "warnings": result.warnings}


@app.post("/session/logout", response_model=dict)
def logout(registry: Registry = Depends(get_registry)):
    return {"warnings": registry.logout().warnings}


@app.get("/session", response_model=dict)
def get_session(registry: Registry = Depends(get_registry)):
    return {"user": dump(registry.current_user), "language": registry.state.language}


@app.put("/preferences/language", response_model=dict)
def set_language(body: LanguageRequest, registry: Registry = Depends(get_registry)):
    result = registry.set_language(body.language)
    return {"language": registry.state.language, "warnings": result.warnings}


@app.post("/submissions", response_model=dict)
def create_submission(body: CreateSubmissionRequest, registry: Registry = Depends(get_registry)):
    return result_body(registry.submit(body.image_url, body.ecosystem_type, body.location))


@app.get("/submissions", response_model=List[dict])
def list_submissions(registry: Registry = Depends(get_registry)):
    return [dump(s) for s in registry.state.submissions]


@app.get("/submissions/{submission_id}", response_model=dict)
def get_submission(submission_id: str, registry: Registry = Depends(get_registry)):
    found = next((s for s in registry.state.submissions if s.id == submission_id), None)
    if found is None:
        raise HTTPException(status_code=404, detail="Submission not found")
    return dump(found)


@app.get("/queues/ngo", response_model=List[dict])
def ngo_queue(registry: Registry = Depends(get_registry)):
    return [dump(s) for s in reports.ngo_queue(registry.state)]


@app.get("/queues/admin", response_model=List[dict])
def admin_queue(registry: Registry = Depends(get_registry)):
    return [dump(s) for s in reports.admin_queue(registry.state)]


@app.post("/submissions/{submission_id}/ngo/approve", response_model=dict)
def ngo_approve(submission_id: str, body: ReviewRequest, registry: Registry = Depends(get_registry)):
    return result_body(registry.ngo_approve(submission_id, body.comments))


@app.post("/submissions/{submission_id}/ngo/reject", response_model=dict)
def ngo_reject(submission_id: str, body: ReviewRequest, registry: Registry = Depends(get_registry)):
    return result_body(registry.ngo_reject(submission_id, body.comments))


@app.post("/submissions/{submission_id}/ngo/flag", response_model=dict)
def ngo_flag(submission_id: str, body: ReviewRequest, registry: Registry = Depends(get_registry)):
    return result_body(registry.ngo_flag(submission_id, body.comments))


@app.post("/submissions/{submission_id}/admin/issue", response_model=dict)
def admin_issue(submission_id: str, body: ReviewRequest, registry: Registry = Depends(get_registry)):
    return result_body(registry.admin_issue(submission_id, body.comments))


@app.post("/submissions/{submission_id}/admin/reject", response_model=dict)
def admin_reject(submission_id: str, body: ReviewRequest, registry: Registry = Depends(get_registry)):
    return result_body(registry.admin_reject(submission_id, body.comments))


@app.get("/credits", response_model=List[dict])
def list_credits(registry: Registry = Depends(get_registry)):
    return [dump(c) for c in registry.state.credits]


@app.get("/credits/available", response_model=List[dict])
def list_available_credits(registry: Registry = Depends(get_registry)):
    return [dump(c) for c in reports.available_credits(registry.state)]


@app.post("/credits/{credit_id}/purchase", response_model=dict)
def purchase_credit(credit_id: str, registry: Registry = Depends(get_registry)):
    return result_body(registry.purchase(credit_id))


@app.get("/audit-logs", response_model=List[dict])
def list_audit_logs(registry: Registry = Depends(get_registry)):
    return [dump(entry) for entry in registry.audit_trail()]


@app.get("/dashboard", response_model=dict)
def get_dashboard(user=Depends(require_session), registry: Registry = Depends(get_registry)):
    return reports.dashboard(registry.state, user)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
