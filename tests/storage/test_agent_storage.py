"""Tests for the LocalAgentManager storage layer."""

from datetime import UTC, datetime, timedelta

import pytest

from hivetrack.storage.agents import (
    GARBAGE_TOOL_NAMES,
    AgentRecord,
    AgentStatus,
    LocalAgentManager,
)

pytestmark = pytest.mark.unit


def _hours_ago(hours: float) -> str:
    return (datetime.now(UTC) - timedelta(hours=hours)).isoformat()


class TestAgentRecord:
    """Tests for AgentRecord dataclass."""

    def test_from_row(self, agent_manager: LocalAgentManager):
        """Test creating AgentRecord from database row."""
        agent = agent_manager.register(
            name="builder",
            cwd="/repo",
            template_id="tpl-1",
            initial_prompt="Build it",
            session_path="sess-1",
        )

        row = agent_manager.db.fetchone("SELECT * FROM agent_registry WHERE id = ?", (agent.id,))
        assert row is not None

        record = AgentRecord.from_row(row)
        assert record.id == agent.id
        assert record.name == "builder"
        assert record.cwd == "/repo"
        assert record.template_id == "tpl-1"
        assert record.initial_prompt == "Build it"
        assert record.session_path == "sess-1"
        assert record.status == AgentStatus.SPAWNING
        assert record.pid is None
        assert record.completed_at is None

    def test_to_dict_serializes_status(self, agent_manager: LocalAgentManager):
        agent = agent_manager.register(name="a", cwd="/p")
        data = agent.to_dict()
        assert data["status"] == "spawning"
        assert data["id"] == agent.id
        assert data["parent_id"] is None


class TestAgentStatus:
    def test_terminal_statuses(self):
        assert AgentStatus.COMPLETED.is_terminal
        assert AgentStatus.ERROR.is_terminal
        assert AgentStatus.TERMINATED.is_terminal
        assert not AgentStatus.ACTIVE.is_terminal
        assert not AgentStatus.SPAWNING.is_terminal

    def test_str_enum_compares_to_string(self):
        assert AgentStatus.IDLE == "idle"


class TestLocalAgentManager:
    """Tests for LocalAgentManager class."""

    def test_register_allocates_unique_ids(self, agent_manager: LocalAgentManager):
        first = agent_manager.register(name="a", cwd="/p")
        second = agent_manager.register(name="a", cwd="/p")
        assert first.id != second.id
        assert agent_manager.count() == 2

    def test_register_with_explicit_id(self, agent_manager: LocalAgentManager):
        agent = agent_manager.register(name="a", cwd="/p", agent_id="fixed-id")
        assert agent.id == "fixed-id"
        assert agent_manager.get("fixed-id") is not None

    def test_get_missing_returns_none(self, agent_manager: LocalAgentManager):
        assert agent_manager.get("nope") is None

    def test_list_by_parent(self, agent_manager: LocalAgentManager):
        parent = agent_manager.register(name="parent", cwd="/p")
        child = agent_manager.register(name="child", cwd="/p", parent_id=parent.id)

        assert [a.id for a in agent_manager.list_by_parent(parent.id)] == [child.id]
        assert [a.id for a in agent_manager.list_by_parent(None)] == [parent.id]

    def test_list_active_excludes_terminal(self, agent_manager: LocalAgentManager):
        live = agent_manager.register(name="live", cwd="/p")
        done = agent_manager.register(name="done", cwd="/p")
        agent_manager.complete(done.id, 0)

        active_ids = {a.id for a in agent_manager.list_active()}
        assert active_ids == {live.id}
        assert len(agent_manager.list_all()) == 2

    def test_update_status_terminal_stamps_completed_at_once(
        self, agent_manager: LocalAgentManager
    ):
        agent = agent_manager.register(name="a", cwd="/p")
        errored = agent_manager.update_status(agent.id, AgentStatus.ERROR, error_message="boom")
        assert errored is not None
        assert errored.completed_at is not None
        assert errored.error_message == "boom"

        terminated = agent_manager.update_status(agent.id, AgentStatus.TERMINATED)
        assert terminated is not None
        assert terminated.completed_at == errored.completed_at

    def test_update_status_missing_agent(self, agent_manager: LocalAgentManager):
        assert agent_manager.update_status("missing", AgentStatus.TERMINATED) is None

    def test_update_activity(self, agent_manager: LocalAgentManager):
        agent = agent_manager.register(name="a", cwd="/p")
        stamp = _hours_ago(-1)
        assert agent_manager.update_activity(agent.id, stamp) is True
        assert agent_manager.get(agent.id).last_activity == stamp
        assert agent_manager.update_activity("missing") is False

    def test_complete_exit_codes(self, agent_manager: LocalAgentManager):
        ok = agent_manager.register(name="ok", cwd="/p")
        bad = agent_manager.register(name="bad", cwd="/p")

        ok_done = agent_manager.complete(ok.id, 0)
        bad_done = agent_manager.complete(bad.id, 2)

        assert ok_done.status == AgentStatus.COMPLETED
        assert ok_done.exit_code == 0
        assert bad_done.status == AgentStatus.ERROR
        assert bad_done.exit_code == 2

    def test_set_pid(self, agent_manager: LocalAgentManager):
        agent = agent_manager.register(name="a", cwd="/p")
        assert agent_manager.set_pid(agent.id, 4242) is True
        assert agent_manager.get(agent.id).pid == 4242
        assert agent_manager.set_pid("missing", 1) is False

    def test_update_fields_rejects_unknown_columns(self, agent_manager: LocalAgentManager):
        agent = agent_manager.register(name="a", cwd="/p")
        with pytest.raises(ValueError, match="Cannot update agent fields"):
            agent_manager.update_fields(agent.id, spawned_at="now")

    def test_update_fields(self, agent_manager: LocalAgentManager):
        agent = agent_manager.register(name="a", cwd="/p")
        updated = agent_manager.update_fields(agent.id, name="renamed", status="active")
        assert updated.name == "renamed"
        assert updated.status == AgentStatus.ACTIVE

    def test_find_by_session_live_only(self, agent_manager: LocalAgentManager):
        old = agent_manager.register(name="old", cwd="/p", session_path="sess")
        agent_manager.complete(old.id, 0)

        assert agent_manager.find_by_session("sess").id == old.id
        assert agent_manager.find_by_session("sess", live_only=True) is None

        live = agent_manager.register(name="new", cwd="/p", session_path="sess")
        assert agent_manager.find_by_session("sess", live_only=True).id == live.id

    def test_count_by_status(self, agent_manager: LocalAgentManager):
        agent_manager.register(name="a", cwd="/p")
        agent_manager.register(name="b", cwd="/p", status=AgentStatus.ACTIVE)
        agent_manager.register(name="c", cwd="/p", status=AgentStatus.ACTIVE)

        assert agent_manager.count_by_status() == {"spawning": 1, "active": 2}
        assert agent_manager.count(AgentStatus.ACTIVE) == 2

    def test_delete_and_delete_all(self, agent_manager: LocalAgentManager):
        a = agent_manager.register(name="a", cwd="/p")
        agent_manager.register(name="b", cwd="/p")

        assert agent_manager.delete(a.id) is True
        assert agent_manager.delete(a.id) is False
        assert agent_manager.delete_all() == 1
        assert agent_manager.count() == 0


class TestCleanupStale:
    def test_removes_only_old_terminal_records(self, agent_manager: LocalAgentManager):
        old_done = agent_manager.register(name="old", cwd="/p")
        agent_manager.complete(old_done.id, 0)
        agent_manager.update_fields(old_done.id, completed_at=_hours_ago(48))

        recent_done = agent_manager.register(name="recent", cwd="/p")
        agent_manager.complete(recent_done.id, 0)

        old_live = agent_manager.register(name="live", cwd="/p", session_path="s")
        agent_manager.update_fields(old_live.id, last_activity=_hours_ago(48))

        assert agent_manager.cleanup_stale(24 * 3600) == 1
        assert agent_manager.get(old_done.id) is None
        assert agent_manager.get(recent_done.id) is not None
        assert agent_manager.get(old_live.id) is not None


class TestCleanupGarbage:
    def test_removes_tool_names_and_numbered_variants(self, agent_manager: LocalAgentManager):
        bash = agent_manager.register(name="Bash", cwd="/p", session_path="s1")
        read3 = agent_manager.register(name="Read #3", cwd="/p", session_path="s2")
        explore2 = agent_manager.register(name="Explore #2", cwd="/p", session_path="s3")
        explore = agent_manager.register(name="Explore", cwd="/p", session_path="s4")
        mine = agent_manager.register(name="MyAgent", cwd="/p", session_path="s5")

        removed = agent_manager.cleanup_garbage()

        assert removed == 3
        assert agent_manager.get(bash.id) is None
        assert agent_manager.get(read3.id) is None
        assert agent_manager.get(explore2.id) is None
        assert agent_manager.get(explore.id) is not None
        assert agent_manager.get(mine.id) is not None

    def test_name_matching_is_exact(self, agent_manager: LocalAgentManager):
        """Names merely containing a tool name are kept."""
        kept = [
            agent_manager.register(name=name, cwd="/p", session_path=name)
            for name in ("Bash helper", "ReadMe", "bash")
        ]
        assert agent_manager.cleanup_garbage() == 0
        assert all(agent_manager.get(a.id) is not None for a in kept)

    def test_numbered_variants_are_case_sensitive(self, agent_manager: LocalAgentManager):
        """A lowercase name is kept with or without a number suffix."""
        kept = [
            agent_manager.register(name=name, cwd="/p", session_path=name)
            for name in ("bash", "bash #3", "explore #1")
        ]
        assert agent_manager.cleanup_garbage() == 0
        assert all(agent_manager.get(a.id) is not None for a in kept)

    def test_only_numeric_suffixes_are_removed(self, agent_manager: LocalAgentManager):
        read3 = agent_manager.register(name="Read #3", cwd="/p", session_path="s1")
        read12 = agent_manager.register(name="Read #12", cwd="/p", session_path="s2")
        kept = [
            agent_manager.register(name=name, cwd="/p", session_path=name)
            for name in ("Read #abc", "Read #3b", "Explore #x", "Read #")
        ]

        assert agent_manager.cleanup_garbage() == 2
        assert agent_manager.get(read3.id) is None
        assert agent_manager.get(read12.id) is None
        assert all(agent_manager.get(a.id) is not None for a in kept)

    def test_removes_old_sessionless_live_agents(self, agent_manager: LocalAgentManager):
        orphan = agent_manager.register(name="orphan", cwd="/p")
        agent_manager.db.execute(
            "UPDATE agent_registry SET spawned_at = ? WHERE id = ?",
            (_hours_ago(2), orphan.id),
        )
        fresh = agent_manager.register(name="fresh", cwd="/p")
        finished = agent_manager.register(name="finished", cwd="/p")
        agent_manager.complete(finished.id, 0)
        agent_manager.db.execute(
            "UPDATE agent_registry SET spawned_at = ? WHERE id = ?",
            (_hours_ago(2), finished.id),
        )

        assert agent_manager.cleanup_garbage(orphan_age_seconds=3600) == 1
        assert agent_manager.get(orphan.id) is None
        assert agent_manager.get(fresh.id) is not None
        assert agent_manager.get(finished.id) is not None

    def test_deny_list_contents(self):
        assert "Read" in GARBAGE_TOOL_NAMES
        assert "Bash" in GARBAGE_TOOL_NAMES
        assert "Explore" not in GARBAGE_TOOL_NAMES
