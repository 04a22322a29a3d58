import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

from hivetrack.agents.detection import DetectionBridge
from hivetrack.agents.registry import LIFECYCLE_TOPICS, AgentRegistry, set_agent_registry
from hivetrack.config.app import load_config
from hivetrack.hooks.server import HookServer
from hivetrack.servers.http import HTTPServer
from hivetrack.servers.websocket import Notifier, NullNotifier, UINotifier
from hivetrack.storage.agents import LocalAgentManager
from hivetrack.storage.database import LocalDatabase
from hivetrack.storage.hook_events import LocalHookEventManager
from hivetrack.storage.migrations import run_migrations
from hivetrack.utils.event_bus import EventBus, Subscription, Topic
from hivetrack.utils.logging import setup_daemon_logging
from hivetrack.utils.periodic import PeriodicTask

logger = logging.getLogger(__name__)

HOOK_EVENT_RETENTION_INTERVAL = 3600.0


class HivetrackRunner:
    """Runner for the hivetrack daemon."""

    def __init__(
        self,
        config_path: Path | None = None,
        verbose: bool = False,
        cli_overrides: dict[str, Any] | None = None,
    ):
        config_file = str(config_path) if config_path else None
        self.config = load_config(config_file, cli_overrides=cli_overrides)
        setup_daemon_logging(self.config.logging, verbose=verbose)
        self.verbose = verbose

        # Initialize local storage
        self.database = LocalDatabase(self.config.database_path)
        run_migrations(self.database)
        self.agent_manager = LocalAgentManager(self.database)
        self.hook_event_manager = LocalHookEventManager(self.database)

        self.notifier: Notifier
        self.ui_notifier: UINotifier | None = None
        if self.config.websocket.enabled:
            self.ui_notifier = UINotifier(self.config.websocket)
            self.notifier = self.ui_notifier
        else:
            self.notifier = NullNotifier()

        self.hook_server = HookServer(
            hook_events=self.hook_event_manager,
            notifier=self.notifier,
        )

        self.registry = AgentRegistry(
            self.agent_manager,
            hook_server=self.hook_server,
            config=self.config.agent_registry,
        )
        set_agent_registry(self.registry)

        # Terminal-output detectors publish agent:spawn etc. here
        self.detection_bus = EventBus()
        self.detection_bridge = DetectionBridge(
            self.registry,
            notifier=self.notifier,
            dedup_window_seconds=self.config.agent_registry.dedup_window,
        )

        self._ui_subscriptions: list[Subscription] = []
        self.retention_task = PeriodicTask(
            "hook-event-retention",
            HOOK_EVENT_RETENTION_INTERVAL,
            self._prune_hook_events,
        )

        self.http_server = HTTPServer(
            self.hook_server,
            self.config.hook_server,
            on_startup=self._on_startup,
            on_shutdown=self._on_shutdown,
        )

    def _forward_to_ui(self, topic: Topic) -> None:
        def forward(agent: Any, *extra: Any) -> None:
            data = agent.to_dict()
            if extra:
                data["error"] = extra[0]
            self.notifier.notify(topic.value, data)

        self._ui_subscriptions.append(self.registry.on(topic, forward))

    def _prune_hook_events(self) -> int:
        return self.hook_event_manager.cleanup_old(self.config.hook_events.max_age_hours)

    async def _on_startup(self) -> None:
        if self.ui_notifier is not None:
            await self.ui_notifier.start()

        for topic in LIFECYCLE_TOPICS:
            self._forward_to_ui(topic)

        self.registry.init()
        self.detection_bridge.attach(self.detection_bus)
        self.retention_task.start()
        logger.info("Hivetrack daemon started")

    async def _on_shutdown(self) -> None:
        # Stop in reverse startup order
        await self.retention_task.stop()
        self.detection_bridge.detach()
        self.registry.shutdown()

        for subscription in self._ui_subscriptions:
            subscription.unsubscribe()
        self._ui_subscriptions = []

        if self.ui_notifier is not None:
            await self.ui_notifier.stop()

        set_agent_registry(None)
        self.database.close()
        logger.info("Hivetrack daemon stopped")

    async def run(self) -> None:
        """Serve until SIGINT/SIGTERM (handled by uvicorn)."""
        await self.http_server.serve()


async def run_hivetrack(
    config_path: Path | None = None,
    verbose: bool = False,
    cli_overrides: dict[str, Any] | None = None,
) -> None:
    runner = HivetrackRunner(config_path=config_path, verbose=verbose, cli_overrides=cli_overrides)
    await runner.run()


def main(
    config_path: Path | None = None,
    verbose: bool = False,
    cli_overrides: dict[str, Any] | None = None,
) -> None:
    try:
        asyncio.run(
            run_hivetrack(config_path=config_path, verbose=verbose, cli_overrides=cli_overrides)
        )
    except KeyboardInterrupt:
        sys.exit(0)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Run hivetrack daemon")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument("--config", type=Path, help="Path to config file")
    args = parser.parse_args()
    main(config_path=args.config, verbose=args.verbose)
