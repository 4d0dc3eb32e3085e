import pytest

from database import StateStore
from registry import Registry
from schemas import AIAnalysis, AppState, Location, User, UserRole


class FakeScorer:
    def __init__(self, is_verified=False, potential=200.0, degraded=False):
        self.is_verified = is_verified
        self.potential = potential
        self.degraded = degraded
        self.calls = []

    def __call__(self, image_ref, ecosystem_type):
        self.calls.append((image_ref, ecosystem_type))
        return AIAnalysis(
            confidence_score=0.81,
            health_assessment=f"Healthy {ecosystem_type} canopy",
            estimated_carbon_potential=self.potential,
            is_verified=self.is_verified,
            degraded=self.degraded,
        )


def make_user(role, name=None):
    name = name or role.value.lower()
    return User(id=f"u-{name}", email=f"{name}@example.com", name=name, role=role)


def analysis(is_verified=False, potential=200.0):
    return AIAnalysis(
        confidence_score=0.7,
        health_assessment="Dense prop roots",
        estimated_carbon_potential=potential,
        is_verified=is_verified,
    )


KERALA = Location(lat=10.8505, lng=76.2711, region="Kerala Coastal")


@pytest.fixture
def fisherman():
    return make_user(UserRole.FISHERMAN, "ravi")


@pytest.fixture
def ngo():
    return make_user(UserRole.NGO, "bluemarine")


@pytest.fixture
def admin():
    return make_user(UserRole.ADMIN, "nccr")


@pytest.fixture
def buyer():
    return make_user(UserRole.CORPORATE, "acme")


@pytest.fixture
def empty_state():
    return AppState()


@pytest.fixture
def store(tmp_path):
    return StateStore(path=str(tmp_path / "state.json"))


@pytest.fixture
def scorer():
    return FakeScorer()


@pytest.fixture
def registry(store, scorer):
    return Registry(store=store, scorer=scorer)
