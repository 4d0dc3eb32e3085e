import pytest

from conftest import KERALA, FakeScorer
from registry import Registry
from schemas import CreditStatus, SubmissionStatus, UserRole
from workflow import AuthorizationError, InvalidTransitionError


def test_login_fabricates_user(registry):
    registry.login("ravi@example.com", UserRole.FISHERMAN)
    user = registry.current_user
    assert user.name == "ravi"
    assert user.role == UserRole.FISHERMAN
    assert user.id.startswith("u-")
    assert registry.state.user_count == 1

    registry.login("ops@bluemarine.org", UserRole.NGO)
    assert registry.current_user.organization == "Blue Marine NGO"
    registry.login("gov@nccr.gov", UserRole.ADMIN)
    assert registry.current_user.organization == "NCCR Government"
    assert registry.state.user_count == 3
    assert registry.audit_trail() == []


def test_logout_clears_session(registry):
    registry.login("ravi@example.com", UserRole.FISHERMAN)
    registry.logout()
    assert registry.current_user is None


def test_role_checked_before_scoring(registry, scorer):
    registry.login("ops@bluemarine.org", UserRole.NGO)
    with pytest.raises(AuthorizationError):
        registry.submit("https://img.example.com/a.jpg", "MANGROVE", KERALA)
    assert scorer.calls == []
    assert registry.state.submissions == []


def test_degraded_scorer_adds_warning(store):
    registry = Registry(store=store, scorer=FakeScorer(degraded=True))
    registry.login("ravi@example.com", UserRole.FISHERMAN)
    result = registry.submit("https://img.example.com/a.jpg", "MANGROVE", KERALA)
    assert result.submission is not None
    assert any("fallback" in w for w in result.warnings)


def test_full_flow_is_persisted(registry, store, scorer):
    registry.login("ravi@example.com", UserRole.FISHERMAN)
    sub = registry.submit("https://img.example.com/a.jpg", "MANGROVE", KERALA).submission
    assert scorer.calls == [("https://img.example.com/a.jpg", "MANGROVE")]
    assert sub.status == SubmissionStatus.PENDING

    registry.login("ops@bluemarine.org", UserRole.NGO)
    registry.ngo_approve(sub.id, "ok")
    registry.login("gov@nccr.gov", UserRole.ADMIN)
    issued = registry.admin_issue(sub.id, "approved")
    assert issued.credit.tons == sub.estimated_carbon
    assert issued.submission.credit_id == issued.credit.id
    assert issued.warnings == []

    registry.login("esg@acme.com", UserRole.CORPORATE)
    bought = registry.purchase(issued.credit.id)
    assert bought.credit.status == CreditStatus.SOLD

    reloaded = Registry(store=store, scorer=scorer)
    assert reloaded.state == registry.state
    assert reloaded.current_user.role == UserRole.CORPORATE
    assert [e.action for e in reloaded.audit_trail()][0] == "CORPORATE_PURCHASE"


def test_failed_command_changes_nothing(registry):
    registry.login("ravi@example.com", UserRole.FISHERMAN)
    sub = registry.submit("https://img.example.com/a.jpg", "SEAGRASS", KERALA).submission
    registry.login("gov@nccr.gov", UserRole.ADMIN)
    before = registry.state
    with pytest.raises(InvalidTransitionError):
        registry.admin_issue(sub.id, "skip")
    assert registry.state is before
    assert len(registry.audit_trail()) == 1


def test_empty_bootstrap_on_corrupt_state(store, scorer):
    with open(store.path, "w") as f:
        f.write("]")
    registry = Registry(store=store, scorer=scorer)
    assert registry.state.submissions == []
    assert registry.current_user is None


def test_persistence_failure_is_a_warning(registry, monkeypatch):
    monkeypatch.setattr(registry.store, "save_state", lambda state: ["State not persisted"])
    result = registry.login("ravi@example.com", UserRole.FISHERMAN)
    assert result.warnings == ["State not persisted"]
    assert registry.current_user is not None
