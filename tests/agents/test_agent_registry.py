"""Tests for the AgentRegistry lifecycle, hierarchy and maintenance."""

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest

from hivetrack.agents.registry import (
    AgentRegistry,
    can_transition,
    get_agent_registry,
    set_agent_registry,
)
from hivetrack.config.app import AgentRegistryConfig
from hivetrack.hooks.server import HookServer
from hivetrack.storage.agents import AgentStatus, LocalAgentManager
from hivetrack.utils.event_bus import Topic

pytestmark = pytest.mark.unit


def _ago(seconds: float) -> str:
    return (datetime.now(UTC) - timedelta(seconds=seconds)).isoformat()


def _record(registry: AgentRegistry, topic: Topic) -> list:
    received: list = []
    registry.on(topic, lambda *args: received.append(args))
    return received


class TestTransitions:
    def test_legal_and_illegal(self):
        assert can_transition(AgentStatus.SPAWNING, AgentStatus.READY)
        assert can_transition(AgentStatus.ACTIVE, AgentStatus.IDLE)
        assert can_transition(AgentStatus.IDLE, AgentStatus.ACTIVE)
        assert not can_transition(AgentStatus.COMPLETED, AgentStatus.ACTIVE)
        assert not can_transition(AgentStatus.ACTIVE, AgentStatus.SPAWNING)

    def test_forced_statuses_always_allowed(self):
        for status in AgentStatus:
            assert can_transition(status, AgentStatus.ERROR)
            assert can_transition(status, AgentStatus.TERMINATED)


class TestLifecycle:
    def test_spawn(self, registry: AgentRegistry):
        spawned = _record(registry, Topic.AGENT_SPAWNED)
        agent = registry.spawn("builder", cwd="/p", initial_prompt="go")

        assert agent.status == AgentStatus.SPAWNING
        assert agent.initial_prompt == "go"
        assert registry.exists(agent.id)
        assert spawned == [(agent,)]

    def test_happy_path_completes(self, registry: AgentRegistry):
        agent = registry.spawn("a", cwd="/p")
        registry.mark_ready(agent.id)
        registry.mark_active(agent.id)
        final = registry.complete(agent.id, 0)

        assert final.status == AgentStatus.COMPLETED
        assert final.exit_code == 0
        assert final.completed_at is not None

    @pytest.mark.parametrize("code", [1, 2, 127, -9])
    def test_nonzero_exit_is_error(self, registry: AgentRegistry, code: int):
        errors = _record(registry, Topic.AGENT_ERROR)
        agent = registry.spawn("a", cwd="/p")
        final = registry.complete(agent.id, code)

        assert final.status == AgentStatus.ERROR
        assert final.exit_code == code
        assert len(errors) == 1

    def test_mark_active_twice_emits_once(self, registry: AgentRegistry):
        active = _record(registry, Topic.AGENT_ACTIVE)
        agent = registry.spawn("a", cwd="/p")

        registry.mark_active(agent.id)
        registry.mark_active(agent.id)

        assert len(active) == 1

    def test_repeat_transition_refreshes_activity(self, registry: AgentRegistry):
        agent = registry.spawn("a", cwd="/p")
        registry.mark_active(agent.id)
        registry.agents.update_activity(agent.id, _ago(600))

        refreshed = registry.mark_active(agent.id)

        assert refreshed.last_activity > _ago(60)

    def test_active_idle_reentry(self, registry: AgentRegistry):
        agent = registry.spawn("a", cwd="/p")
        registry.mark_active(agent.id)
        assert registry.mark_idle(agent.id).status == AgentStatus.IDLE
        assert registry.mark_active(agent.id).status == AgentStatus.ACTIVE

    def test_illegal_transition_is_ignored(self, registry: AgentRegistry):
        active = _record(registry, Topic.AGENT_ACTIVE)
        agent = registry.spawn("a", cwd="/p")
        registry.complete(agent.id, 0)

        result = registry.mark_active(agent.id)

        assert result.status == AgentStatus.COMPLETED
        assert active == []

    def test_complete_twice_is_noop(self, registry: AgentRegistry):
        completed = _record(registry, Topic.AGENT_COMPLETED)
        agent = registry.spawn("a", cwd="/p")
        registry.complete(agent.id, 0)
        again = registry.complete(agent.id, 1)

        assert again.status == AgentStatus.COMPLETED
        assert len(completed) == 1

    def test_error_from_any_state(self, registry: AgentRegistry):
        errors = _record(registry, Topic.AGENT_ERROR)
        agent = registry.spawn("a", cwd="/p")

        result = registry.error(agent.id, "crashed")

        assert result.status == AgentStatus.ERROR
        assert result.error_message == "crashed"
        assert result.completed_at is not None
        assert errors == [(result, "crashed")]

    def test_record_activity(self, registry: AgentRegistry):
        activity = _record(registry, Topic.AGENT_ACTIVITY)
        agent = registry.spawn("a", cwd="/p")
        registry.mark_active(agent.id)

        result = registry.record_activity(agent.id)

        assert result.status == AgentStatus.ACTIVE
        assert len(activity) == 1

    def test_set_pid(self, registry: AgentRegistry):
        agent = registry.spawn("a", cwd="/p")
        registry.set_pid(agent.id, 999)
        assert registry.get_agent(agent.id).pid == 999

    def test_unknown_ids_never_raise(self, registry: AgentRegistry):
        registry.set_pid("ghost", 1)
        assert registry.mark_ready("ghost") is None
        assert registry.mark_active("ghost") is None
        assert registry.mark_idle("ghost") is None
        assert registry.complete("ghost", 0) is None
        assert registry.error("ghost", "x") is None
        assert registry.terminate_agent("ghost") is None
        assert registry.record_activity("ghost") is None


class TestHierarchy:
    def test_children_survive_parent_termination(self, registry: AgentRegistry):
        a = registry.spawn("A", cwd="/p")
        b = registry.spawn("B", cwd="/p", parent_id=a.id)
        assert [c.id for c in registry.get_children(a.id)] == [b.id]

        registry.terminate_agent(a.id)

        assert registry.get_agent(a.id).status == AgentStatus.TERMINATED
        assert [c.id for c in registry.get_children(a.id)] == [b.id]
        assert registry.get_agent(b.id).status == AgentStatus.SPAWNING

    def test_ancestors_nearest_first(self, registry: AgentRegistry):
        root = registry.spawn("root", cwd="/p")
        mid = registry.spawn("mid", cwd="/p", parent_id=root.id)
        leaf = registry.spawn("leaf", cwd="/p", parent_id=mid.id)

        assert [a.id for a in registry.get_ancestors(leaf.id)] == [mid.id, root.id]
        assert registry.get_ancestors(root.id) == []

    def test_descendants_any_depth(self, registry: AgentRegistry):
        root = registry.spawn("root", cwd="/p")
        c1 = registry.spawn("c1", cwd="/p", parent_id=root.id)
        c2 = registry.spawn("c2", cwd="/p", parent_id=root.id)
        g1 = registry.spawn("g1", cwd="/p", parent_id=c1.id)
        gg1 = registry.spawn("gg1", cwd="/p", parent_id=g1.id)

        ids = {a.id for a in registry.get_descendants(root.id)}
        assert ids == {c1.id, c2.id, g1.id, gg1.id}
        assert registry.get_descendants(gg1.id) == []

    def test_tree_and_subtree(self, registry: AgentRegistry):
        root = registry.spawn("root", cwd="/p")
        child = registry.spawn("child", cwd="/p", parent_id=root.id)
        other = registry.spawn("other", cwd="/p")

        forest = registry.get_agent_tree()
        assert {n.agent.id for n in forest} == {root.id, other.id}
        root_node = next(n for n in forest if n.agent.id == root.id)
        assert [c.agent.id for c in root_node.children] == [child.id]

        subtree = registry.get_subtree(root.id)
        assert subtree.to_dict()["children"][0]["agent"]["id"] == child.id
        assert registry.get_subtree("ghost") is None

    def test_dangling_parent_becomes_root_in_tree(self, registry: AgentRegistry):
        parent = registry.spawn("parent", cwd="/p")
        child = registry.spawn("child", cwd="/p", parent_id=parent.id)
        registry.agents.delete(parent.id)

        forest = registry.get_agent_tree()

        assert [n.agent.id for n in forest] == [child.id]
        assert registry.get_ancestors(child.id) == []

    def test_roots(self, registry: AgentRegistry):
        root = registry.spawn("root", cwd="/p")
        registry.spawn("child", cwd="/p", parent_id=root.id)
        assert [a.id for a in registry.get_root_agents()] == [root.id]


class TestQueries:
    def test_find_agents_by_name(self, registry: AgentRegistry):
        registry.spawn("Code Reviewer", cwd="/p")
        registry.spawn("test-runner", cwd="/p")

        assert [a.name for a in registry.find_agents_by_name("review")] == ["Code Reviewer"]
        assert len(registry.find_agents_by_name("^(code|test)")) == 2

    def test_find_agents_invalid_regex_matches_literally(self, registry: AgentRegistry):
        registry.spawn("odd (name", cwd="/p")
        assert [a.name for a in registry.find_agents_by_name("(name")] == ["odd (name"]

    def test_active_agents_and_by_status(self, registry: AgentRegistry):
        live = registry.spawn("live", cwd="/p")
        done = registry.spawn("done", cwd="/p")
        registry.complete(done.id, 0)

        assert [a.id for a in registry.get_active_agents()] == [live.id]
        assert [a.id for a in registry.get_agents_by_status("completed")] == [done.id]
        assert len(registry.get_all_agents()) == 2

    def test_stats(self, registry: AgentRegistry):
        registry.spawn("spawning", cwd="/p")
        ready = registry.spawn("ready", cwd="/p")
        registry.mark_ready(ready.id)
        idle = registry.spawn("idle", cwd="/p")
        registry.mark_active(idle.id)
        registry.mark_idle(idle.id)
        done = registry.spawn("done", cwd="/p")
        registry.complete(done.id, 0)
        failed = registry.spawn("failed", cwd="/p")
        registry.complete(failed.id, 3)

        stats = registry.get_stats()

        assert stats.total == 5
        assert stats.active == 2
        assert stats.idle == 1
        assert stats.completed == 1
        assert stats.error == 1
        assert stats.by_status["spawning"] == 1

    def test_empty_registry_reports_every_status(self, registry: AgentRegistry):
        stats = registry.get_stats()

        assert stats.total == 0
        assert stats.by_status == {s.value: 0 for s in AgentStatus}
        assert len(stats.by_status) == 7


class TestUpsert:
    def test_same_session_never_creates_two_live_records(self, registry: AgentRegistry):
        first = registry.upsert_agent(name="a", cwd="/p", session_path="sess")
        second = registry.upsert_agent(
            name="a renamed", cwd="/p2", session_path="sess", status="active", pid=12
        )

        assert first.id == second.id
        assert second.name == "a renamed"
        assert second.cwd == "/p2"
        assert second.pid == 12
        assert second.status == AgentStatus.ACTIVE
        live = [a for a in registry.get_active_agents() if a.session_path == "sess"]
        assert len(live) == 1

    def test_none_fields_keep_stored_values(self, registry: AgentRegistry):
        parent = registry.spawn("parent", cwd="/p")
        registry.upsert_agent(name="a", cwd="/p", session_path="s", parent_id=parent.id)
        again = registry.upsert_agent(name="a", cwd="/p", session_path="s")
        assert again.parent_id == parent.id

    def test_terminal_record_is_not_reused(self, registry: AgentRegistry):
        first = registry.upsert_agent(name="a", cwd="/p", session_path="s")
        registry.complete(first.id, 0)

        second = registry.upsert_agent(name="a", cwd="/p", session_path="s")

        assert second.id != first.id
        assert second.status == AgentStatus.SPAWNING

    def test_no_session_always_spawns(self, registry: AgentRegistry):
        a = registry.upsert_agent(name="a", cwd="/p")
        b = registry.upsert_agent(name="a", cwd="/p")
        assert a.id != b.id

    def test_new_record_with_status_emits(self, registry: AgentRegistry):
        active = _record(registry, Topic.AGENT_ACTIVE)
        agent = registry.upsert_agent(name="a", cwd="/p", session_path="s", status="active")
        assert agent.status == AgentStatus.ACTIVE
        assert len(active) == 1


class TestCleanup:
    def test_garbage_cleanup(self, registry: AgentRegistry):
        read = registry.spawn("Read", cwd="/p", session_path="s1")
        tool3 = registry.spawn("Grep #3", cwd="/p", session_path="s2")
        mine = registry.spawn("MyAgent", cwd="/p", session_path="s3")

        assert registry.run_garbage_cleanup() == 2
        assert not registry.exists(read.id)
        assert not registry.exists(tool3.id)
        assert registry.exists(mine.id)

    def test_cleanup_stale_agents(self, registry: AgentRegistry):
        old = registry.spawn("old", cwd="/p")
        registry.complete(old.id, 0)
        registry.agents.update_fields(old.id, completed_at=_ago(2 * 86400))
        recent = registry.spawn("recent", cwd="/p")
        registry.complete(recent.id, 0)

        assert registry.cleanup_stale_agents() == 1
        assert not registry.exists(old.id)

    def test_clear_all_agents(self, registry: AgentRegistry):
        registry.spawn("a", cwd="/p")
        registry.spawn("b", cwd="/p")
        assert registry.clear_all_agents() == 2
        assert registry.get_all_agents() == []

    def test_activity_check_demotes_inactive(self, registry: AgentRegistry):
        idle_events = _record(registry, Topic.AGENT_IDLE)
        stale = registry.spawn("stale", cwd="/p")
        registry.mark_active(stale.id)
        registry.agents.update_activity(stale.id, _ago(120))
        fresh = registry.spawn("fresh", cwd="/p")
        registry.mark_active(fresh.id)

        demoted = registry.check_agent_activity()

        assert [a.id for a in demoted] == [stale.id]
        assert registry.get_agent(stale.id).status == AgentStatus.IDLE
        assert registry.get_agent(fresh.id).status == AgentStatus.ACTIVE
        assert len(idle_events) == 1

    def test_terminate_stale_agents(self, registry: AgentRegistry):
        hung = registry.spawn("hung", cwd="/p", session_path="h")
        registry.mark_active(hung.id)
        registry.agents.update_activity(hung.id, _ago(2 * 3600))
        ok = registry.spawn("ok", cwd="/p", session_path="o")

        terminated = registry.terminate_stale_agents()

        assert [a.id for a in terminated] == [hung.id]
        assert registry.get_agent(hung.id).status == AgentStatus.TERMINATED
        assert registry.get_agent(ok.id).status == AgentStatus.SPAWNING

    def test_dead_pid_is_terminated(self, agent_manager: LocalAgentManager):
        registry = AgentRegistry(agent_manager, config=AgentRegistryConfig(check_pids=True))
        agent = registry.spawn("a", cwd="/p", session_path="s")
        registry.set_pid(agent.id, 4_000_000)

        with patch("hivetrack.agents.registry.psutil.pid_exists", return_value=False):
            terminated = registry.terminate_stale_agents()

        assert [a.id for a in terminated] == [agent.id]


class TestHookIntegration:
    @pytest.mark.asyncio
    async def test_session_and_subagent_flow(
        self, registry: AgentRegistry, hook_server: HookServer
    ):
        await hook_server.process_event(
            {"hook_event_name": "SessionStart", "session_id": "root-sess", "cwd": "/repo"}
        )
        root = registry.get_agent_by_session("root-sess")
        assert root is not None
        assert root.status == AgentStatus.ACTIVE
        assert root.parent_id is None

        await hook_server.process_event(
            {
                "hookEventName": "SubagentStart",
                "sessionId": "root-sess",
                "cwd": "/repo",
                "agentId": "sub-1",
                "agentType": "Explore",
            }
        )
        child = registry.get_agent_by_session("sub-1")
        assert child is not None
        assert child.name == "Explore"
        assert child.parent_id == root.id
        assert child.status == AgentStatus.ACTIVE

        await hook_server.process_event(
            {"hook_event_name": "SubagentStop", "session_id": "root-sess", "agent_id": "sub-1"}
        )
        assert registry.get_agent(child.id).status == AgentStatus.COMPLETED

        await hook_server.process_event(
            {"hook_event_name": "SessionEnd", "session_id": "root-sess", "cwd": "/repo"}
        )
        assert registry.get_agent(root.id).status == AgentStatus.COMPLETED
        assert "root-sess" not in registry.session_cache_snapshot()

    @pytest.mark.asyncio
    async def test_duplicate_session_start_upserts(
        self, registry: AgentRegistry, hook_server: HookServer
    ):
        payload = {"hook_event_name": "SessionStart", "session_id": "s", "cwd": "/repo"}
        await hook_server.process_event(payload)
        await hook_server.process_event(payload)

        live = [a for a in registry.get_active_agents() if a.session_path == "s"]
        assert len(live) == 1

    @pytest.mark.asyncio
    async def test_nested_subagent_uses_stack_parent(
        self, registry: AgentRegistry, hook_server: HookServer
    ):
        await hook_server.process_event(
            {"hook_event_name": "SessionStart", "session_id": "outer", "cwd": "/repo"}
        )
        outer = registry.get_agent_by_session("outer")

        # Reporting session unknown; the directory stack names the parent
        await hook_server.process_event(
            {
                "hook_event_name": "SubagentStart",
                "session_id": "unknown-reporter",
                "cwd": "/repo",
                "agent_id": "nested",
                "agent_name": "Planner",
            }
        )

        nested = registry.get_agent_by_session("nested")
        assert nested.parent_id == outer.id

    def test_prefix_heuristic(self, registry: AgentRegistry):
        parent = registry.agents.register(name="p", cwd="/p", agent_id="abc123")
        resolved = registry._resolve_parent([], "abc123-child")
        assert resolved == parent.id

    def test_without_hook_server_degrades(self, agent_manager: LocalAgentManager):
        registry = AgentRegistry(agent_manager, hook_server=None)
        registry.init()
        assert registry.initialized
        registry.shutdown()

    def test_shutdown_unsubscribes_and_terminates(
        self, agent_manager: LocalAgentManager, hook_server: HookServer
    ):
        registry = AgentRegistry(
            agent_manager, hook_server=hook_server, config=AgentRegistryConfig(check_pids=False)
        )
        registry.init()
        agent = registry.spawn("a", cwd="/p")
        assert hook_server.events.subscriber_count(Topic.SESSION_START) == 1

        registry.shutdown()

        assert hook_server.events.subscriber_count(Topic.SESSION_START) == 0
        assert registry.get_agent(agent.id).status == AgentStatus.TERMINATED


class TestSessionMapValidation:
    @pytest.mark.asyncio
    async def test_drops_terminal_and_missing(
        self, registry: AgentRegistry, hook_server: HookServer
    ):
        for sid in ("s1", "s2", "s3"):
            await hook_server.process_event(
                {"hook_event_name": "SessionStart", "session_id": sid, "cwd": f"/{sid}"}
            )
        s1 = registry.get_agent_by_session("s1")
        s2 = registry.get_agent_by_session("s2")
        registry.agents.complete(s1.id, 0)
        registry.agents.delete(s2.id)

        assert registry.validate_session_map() == 2
        assert set(registry.session_cache_snapshot()) == {"s3"}


class TestTimers:
    @pytest.mark.asyncio
    async def test_init_starts_and_shutdown_cancels_timers(
        self, agent_manager: LocalAgentManager
    ):
        registry = AgentRegistry(agent_manager, config=AgentRegistryConfig(check_pids=False))
        registry.init()

        assert set(registry.timers) == {
            "stale-record-purge",
            "activity-check",
            "stale-agent-check",
            "garbage-cleanup",
            "session-map-validation",
        }
        assert all(t.running for t in registry.timers.values())
        tasks = [t._task for t in registry.timers.values()]

        registry.shutdown()
        await asyncio.gather(*tasks, return_exceptions=True)

        assert registry.timers == {}
        assert all(task.done() for task in tasks)

    def test_init_without_loop_starts_no_timers(self, registry: AgentRegistry):
        assert registry.initialized
        assert registry.timers == {}


class TestSingleton:
    def test_accessor(self, registry: AgentRegistry):
        set_agent_registry(registry)
        try:
            assert get_agent_registry() is registry
        finally:
            set_agent_registry(None)

    def test_unset_raises(self):
        set_agent_registry(None)
        with pytest.raises(RuntimeError):
            get_agent_registry()
