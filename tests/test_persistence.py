import json
import os

from pymongo.errors import ServerSelectionTimeoutError

from conftest import KERALA, FakeScorer, analysis, make_user
from database import StateStore
from registry import Registry
from schemas import AppState, UserRole
from workflow import PurchaseCredit, ReviewSubmission, SubmitRestoration, apply_command


def populated_state():
    fisherman = make_user(UserRole.FISHERMAN)
    state = AppState(current_user=fisherman, language="hi", user_count=3)
    state, entry = apply_command(state, SubmitRestoration("data:image/jpeg;base64,AAAA", "SEAGRASS", KERALA, analysis()))
    sid = entry.target_id
    state = state.model_copy(update={"current_user": make_user(UserRole.NGO)})
    state, _ = apply_command(state, ReviewSubmission(sid, "NGO_APPROVE", "ok"))
    state = state.model_copy(update={"current_user": make_user(UserRole.ADMIN)})
    state, _ = apply_command(state, ReviewSubmission(sid, "ADMIN_ISSUE_CREDIT", "approved"))
    state = state.model_copy(update={"current_user": make_user(UserRole.CORPORATE)})
    state, _ = apply_command(state, PurchaseCredit(state.credits[0].id))
    return state


class FakeCollection:
    def __init__(self):
        self.docs = {}
        self.down = False

    def _check(self):
        if self.down:
            raise ServerSelectionTimeoutError("down")

    def find_one(self, query):
        self._check()
        return self.docs.get(query["_id"])

    def replace_one(self, query, doc, upsert=False):
        self._check()
        self.docs[query["_id"]] = doc


class DownCollection:
    def find_one(self, query):
        raise ServerSelectionTimeoutError("no servers")

    def replace_one(self, query, doc, upsert=False):
        raise ServerSelectionTimeoutError("no servers")


def test_serialization_round_trip():
    state = populated_state()
    payload = json.loads(json.dumps(state.model_dump(mode="json", by_alias=True)))
    assert set(payload) == {"currentUser", "submissions", "credits", "auditLogs", "language", "userCount"}
    assert "estimatedCarbon" in payload["submissions"][0]
    assert "transactionHash" in payload["credits"][0]
    assert AppState.model_validate(payload) == state


def test_first_run_has_no_state(store):
    assert store.load_state() is None


def test_local_save_and_load(store):
    state = populated_state()
    assert store.save_state(state) == []
    assert os.path.exists(store.path)
    assert store.load_state() == state


def test_corrupt_file_loads_as_absent(store):
    with open(store.path, "w") as f:
        f.write("{not json")
    assert store.load_state() is None


def test_failed_local_write_keeps_previous_file(store, monkeypatch):
    first = AppState(language="es")
    store.save_state(first)

    def broken_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(os, "replace", broken_replace)
    warnings = store.save_state(populated_state())
    assert len(warnings) == 1
    assert "not persisted" in warnings[0]
    monkeypatch.undo()

    assert store.load_state() == first
    leftovers = [n for n in os.listdir(os.path.dirname(store.path)) if n.endswith(".tmp")]
    assert leftovers == []


def test_remote_store_is_used_when_available(tmp_path):
    collection = FakeCollection()
    store = StateStore(collection=collection, path=str(tmp_path / "state.json"), document_id="doc")
    state = populated_state()
    assert store.save_state(state) == []
    assert collection.docs["doc"]["state"]["language"] == "hi"
    assert not os.path.exists(store.path)
    assert store.load_state() == state


def test_remote_failure_falls_back_to_local_file(tmp_path):
    store = StateStore(collection=DownCollection(), path=str(tmp_path / "state.json"))
    state = populated_state()
    warnings = store.save_state(state)
    assert len(warnings) == 1
    assert "saved locally" in warnings[0]
    assert store.load_state() == state


def test_outage_writes_survive_restart(tmp_path):
    collection = FakeCollection()
    path = str(tmp_path / "state.json")
    store = StateStore(collection=collection, path=path, document_id="doc")
    registry = Registry(store=store, scorer=FakeScorer())
    registry.login("ravi@example.com", UserRole.FISHERMAN)

    collection.down = True
    result = registry.submit("https://img.example.com/a.jpg", "MANGROVE", KERALA)
    assert any("saved locally" in w for w in result.warnings)

    collection.down = False
    restarted = Registry(store=StateStore(collection=collection, path=path, document_id="doc"),
                         scorer=FakeScorer())
    assert len(restarted.state.submissions) == 1
    assert restarted.state == registry.state
    # the newer local copy is pushed back to the remote store
    assert len(collection.docs["doc"]["state"]["submissions"]) == 1


def test_newer_remote_copy_wins_over_stale_file(tmp_path):
    collection = FakeCollection()
    path = str(tmp_path / "state.json")
    store = StateStore(collection=collection, path=path, document_id="doc")
    store.load_state()

    collection.down = True
    store.save_state(AppState(language="es"))
    collection.down = False
    store.save_state(AppState(language="hi"))

    assert StateStore(collection=collection, path=path, document_id="doc").load_state().language == "hi"


def test_revision_continues_after_reload(tmp_path):
    path = str(tmp_path / "state.json")
    first = StateStore(path=path)
    first.save_state(AppState())
    first.save_state(AppState(language="id"))

    second = StateStore(path=path)
    assert second.load_state().language == "id"
    assert second.revision == 2
    second.save_state(AppState(language="es"))
    with open(path) as f:
        assert json.load(f)["revision"] == 3
