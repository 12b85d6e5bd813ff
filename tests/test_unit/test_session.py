"""
Unit tests for sessions, typed context views and persistence.
"""

import pytest

from relay.session import (
    PlanSummary,
    Session,
    SessionContextManager,
    SessionStore,
    TaskRecord,
    decode_plan_summary,
    decode_task_record,
    extract_context_references,
)


def manager_with(context):
    return SessionContextManager(Session(session_id="s1", context=context))


class TestContextReferences:

    @pytest.mark.unit
    def test_nested_structures(self):
        refs = extract_context_references({
            "plan": "$CONTEXT_plan_summary.description",
            "files": ["$CONTEXT_target_files", "literal"],
            "deep": {"x": "before $CONTEXT_task after"},
        })
        assert refs == {"plan_summary.description", "target_files", "task"}

    @pytest.mark.unit
    def test_non_strings(self):
        assert extract_context_references(None) == set()
        assert extract_context_references(42) == set()


class TestDecoding:

    @pytest.mark.unit
    def test_plan_summary(self):
        plan = decode_plan_summary({
            "description": "Add orders API",
            "dependencies": ["express"],
            "target_files": ["src/api/orders.ts"],
        })
        assert plan == PlanSummary("Add orders API", ("express",), ("src/api/orders.ts",))

    @pytest.mark.unit
    def test_plan_summary_without_description(self):
        assert decode_plan_summary({"dependencies": []}) is None
        assert decode_plan_summary("text") is None

    @pytest.mark.unit
    def test_task_record(self):
        assert decode_task_record("Fix login") == TaskRecord("Fix login")
        assert decode_task_record({"description": "Fix login"}) == TaskRecord("Fix login")
        assert decode_task_record("") is None
        assert decode_task_record(["Fix login"]) is None


class TestSessionContextManager:

    @pytest.mark.unit
    def test_dotted_lookup(self):
        manager = manager_with({"implementation_scope": {"target_files": ["a.ts"]}})
        assert manager.get_context("implementation_scope.target_files") == ["a.ts"]
        assert manager.get_context("implementation_scope.missing", "d") == "d"

    @pytest.mark.unit
    def test_filtered_context_selects_root_keys(self):
        manager = manager_with({"plan_summary": {"description": "x"}, "task": "t", "other": 1})
        filtered = manager.get_filtered_context({"plan_summary.description", "missing"})
        assert filtered == {"plan_summary": {"description": "x"}}

    @pytest.mark.unit
    def test_snapshots_are_copies(self):
        manager = manager_with({"plan_summary": {"description": "x"}})
        snapshot = manager.get_all_context()
        snapshot["plan_summary"]["description"] = "changed"
        filtered = manager.get_filtered_context({"plan_summary"})
        filtered["plan_summary"]["description"] = "changed"
        assert manager.get_context("plan_summary.description") == "x"

    @pytest.mark.unit
    def test_plan_summary_wins_over_task(self):
        manager = manager_with({"plan_summary": {"description": "plan"}, "task": "task"})
        assert manager.get_task_source() == PlanSummary("plan")

    @pytest.mark.unit
    def test_task_used_without_plan(self):
        assert manager_with({"task": "task"}).get_task_source() == TaskRecord("task")
        assert manager_with({}).get_task_source() is None

    @pytest.mark.unit
    def test_target_files_fallback_to_scope(self):
        assert manager_with({"target_files": ["a.py"]}).get_target_files() == ["a.py"]
        manager = manager_with({"implementation_scope": {"target_files": ["b.tf"]}})
        assert manager.get_target_files() == ["b.tf"]
        assert manager_with({"target_files": "a.py"}).get_target_files() == []

    @pytest.mark.unit
    def test_dependencies_fallback_to_plan(self):
        manager = manager_with({"plan_summary": {"description": "p", "dependencies": ["redis"]}})
        assert manager.get_dependencies() == ["redis"]

    @pytest.mark.unit
    def test_stage_outputs_accumulate(self):
        manager = manager_with({})
        manager.record_stage_outputs({"plan": {"plan": "1. do it"}})
        manager.record_stage_outputs({"review": {"review": "ok"}})
        assert manager.get_stage_outputs() == {
            "plan": {"plan": "1. do it"},
            "review": {"review": "ok"},
        }

    @pytest.mark.unit
    def test_record_command(self):
        manager = manager_with({})
        manager.record_command("plan", True, agent="lead")
        entry = manager.get_session().commands[0]
        assert entry["command"] == "plan"
        assert entry["agent"] == "lead"


class TestSessionStore:

    @pytest.mark.unit
    def test_save_and_load(self, tmp_path):
        store = SessionStore(tmp_path / "sessions")
        session = store.create()
        SessionContextManager(session).update_context("task", "Write docs")
        store.save(session)

        loaded = store.load(session.session_id)
        assert loaded.context == {"task": "Write docs"}
        assert store.list_sessions() == [session.session_id]

    @pytest.mark.unit
    def test_get_or_create(self, tmp_path):
        store = SessionStore(tmp_path / "sessions")
        assert store.load("missing") is None
        assert store.get_or_create("abc").session_id == "abc"
        assert len(store.get_or_create().session_id) == 32

    @pytest.mark.unit
    def test_default_location(self, monkeypatch, tmp_path):
        monkeypatch.setenv("RELAY_SESSIONS_DIR", str(tmp_path / "elsewhere"))
        store = SessionStore()
        store.save(store.create("x"))
        assert (tmp_path / "elsewhere" / "x.json").exists()
