"""Application root that wires the engine and its collaborators together."""

from __future__ import annotations

import signal
import threading
from pathlib import Path
from types import FrameType

from .automation import (
    ActionExecutor,
    CustomActionExecutor,
    CustomerActionExecutor,
    DataExportActionExecutor,
    EmailActionExecutor,
    FileExportSink,
    FunctionRegistry,
    HTTPIntegrationDispatcher,
    IntegrationActionExecutor,
    InventoryActionExecutor,
    LoggingEmailSender,
    StoreMetrics,
    TriggerManager,
    WorkflowBuilder,
    WorkflowEngine,
    register_builtin_functions,
)
from .core import EngineSettings, get_logger, setup_logging
from .persistence import StoreDataRepository, WorkflowRepository
from .scheduler import TaskScheduler
from .server import EventServer

logger = get_logger("app")


class WorkflowApp:
    """Owns every long-lived component of a deployment.

    Example:
        ```python
        from store_workflows import WorkflowApp

        app = WorkflowApp.from_config("config.yaml")
        app.run()  # blocks until SIGINT/SIGTERM
        ```
    """

    def __init__(self, settings: EngineSettings | None = None):
        """Build the component graph.

        Args:
            settings: Engine settings; defaults are used when omitted
        """
        self.settings = settings or EngineSettings()
        setup_logging(self.settings.logging)

        db_path = self.settings.persistence.db_path
        self.repository = WorkflowRepository(
            db_path, max_executions=self.settings.persistence.max_executions_per_workflow
        )
        self.store_data = StoreDataRepository(db_path)
        self.scheduler = TaskScheduler(self.settings.scheduler)

        self.email_sender = LoggingEmailSender(self.store_data)
        self.dispatcher = HTTPIntegrationDispatcher(
            self.settings.http, self.settings.integrations
        )
        self.export_sink = FileExportSink(self.settings.export.directory, self.email_sender)
        self.metrics = StoreMetrics(self.store_data)
        self.functions = register_builtin_functions(
            FunctionRegistry(), self.store_data, self.email_sender
        )

        self.executor = ActionExecutor(
            [
                EmailActionExecutor(self.email_sender),
                InventoryActionExecutor(self.store_data),
                CustomerActionExecutor(self.store_data),
                IntegrationActionExecutor(self.dispatcher),
                DataExportActionExecutor(self.store_data, self.export_sink),
                CustomActionExecutor(
                    self.functions, allow_scripts=self.settings.allow_custom_scripts
                ),
            ]
        )
        self.trigger_manager = TriggerManager(
            scheduler=self.scheduler,
            metric_provider=self.metrics,
            poll_seconds=self.settings.engine.threshold_poll_seconds,
        )
        self.engine = WorkflowEngine(
            self.repository,
            self.executor,
            self.trigger_manager,
            builder=WorkflowBuilder(repository=self.repository),
            config=self.settings.engine,
            scheduler=self.scheduler,
        )
        self.server = EventServer(self.settings.server, self.engine)

        self._shutdown_event = threading.Event()
        self._signal_handlers: dict[int, signal.Handlers] = {}

    def start(self, serve: bool = True) -> None:
        """Start the engine and, if requested, the HTTP receiver."""
        self.engine.start()
        if serve:
            self.server.start()

    def stop(self) -> None:
        """Stop everything and release connections."""
        self.server.stop()
        self.engine.stop()
        self.dispatcher.close()
        self.repository.close()
        self.store_data.close()

    def run(self) -> None:
        """Start, block until a shutdown signal, then stop."""
        self._setup_signal_handlers()
        self.start()
        try:
            while not self._shutdown_event.wait(timeout=1.0):
                pass
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received; signalling shutdown")
        finally:
            self.stop()
            self._restore_signal_handlers()

    def _setup_signal_handlers(self) -> None:
        def signal_handler(sig: int, frame: FrameType | None) -> None:
            logger.info("Received signal %s, initiating shutdown", sig)
            self._shutdown_event.set()

        for sig in (getattr(signal, "SIGINT", None), getattr(signal, "SIGTERM", None)):
            if sig is None:
                continue
            try:
                self._signal_handlers[sig] = signal.getsignal(sig)
                signal.signal(sig, signal_handler)
            except (AttributeError, OSError, ValueError) as exc:
                logger.warning("Unable to register handler for signal %s: %s", sig, exc)

    def _restore_signal_handlers(self) -> None:
        for sig, handler in self._signal_handlers.items():
            try:
                signal.signal(sig, handler if handler is not None else signal.SIG_DFL)
            except (AttributeError, OSError, ValueError) as exc:
                logger.debug("Unable to restore handler for signal %s: %s", sig, exc)
        self._signal_handlers.clear()

    @classmethod
    def from_config(cls, config_path: str | Path | None = None) -> WorkflowApp:
        """Create the application from a YAML file, or from the environment."""
        if config_path is None:
            return cls(EngineSettings())
        try:
            settings = EngineSettings.from_yaml(Path(config_path).expanduser())
        except Exception as exc:
            logger.error(
                "Failed to load configuration from %s: %s", config_path, exc, exc_info=True
            )
            raise
        return cls(settings)


__all__ = ["WorkflowApp"]
