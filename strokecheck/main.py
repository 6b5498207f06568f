"""
Main entry point for the StrokeCheck screening core.

This module wires the event system and the screening service together and runs one
screening suite from the command line. It handles signal management, logging setup,
and the application lifecycle.
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
import structlog
from typing import Dict, Any, List, Optional, Set

from strokecheck.core import (
    EventRegistry, ServiceRegistry, EventBus, EventTracer, BaseEvent, EventType, get_config, ApplicationConfig
)
from strokecheck.events.screening import ScreeningRequestedEvent, ScreeningAbortRequestedEvent
from strokecheck.events.system import ApplicationStartupCompletedEvent
from strokecheck.screening.results import OrchestrationState
from strokecheck.sensors.provider import SensorProvider, CallbackSensorProvider, SimulatedSensorProvider
from strokecheck.services.screening_service import ScreeningService, SessionContext

APP_NAME = "strokecheck"

APP_EVENTS = {
    EventType.APPLICATION_STARTUP_COMPLETED: {
        'schema': ApplicationStartupCompletedEvent,
        'description': "All services are started",
    },
    EventType.SCREENING_REQUESTED: {
        'schema': ScreeningRequestedEvent,
        'description': "The user asked for a screening suite",
    },
    EventType.SCREENING_ABORT_REQUESTED: {
        'schema': ScreeningAbortRequestedEvent,
        'description': "The user left the screening",
    },
}

# Configure structured logging
def setup_logging(level: str = "INFO"):
    """Configure structured logging for the application."""
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Set up stdlib logging
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level, logging.INFO),
        stream=sys.stderr,
    )

class StrokeCheckApplication:
    """
    Main application class for the StrokeCheck screening core.

    Builds the event registry, bus and tracer, starts the screening service against a
    sensor provider, and relays requests from the command line as events.
    """

    def __init__(self,
                 sensors: SensorProvider,
                 config: Optional[ApplicationConfig] = None,
                 session: Optional[SessionContext] = None):
        self.logger = structlog.get_logger(app=APP_NAME)
        self.config = config or get_config()
        self.sensors = sensors
        self.session = session

        # Set up core components
        self.event_registry = EventRegistry()
        self.service_registry = ServiceRegistry()

        if self.config.event.tracing_enabled:
            self.event_tracer = EventTracer(max_events=self.config.event.max_trace_events)
        else:
            self.event_tracer = None

        self.event_bus = EventBus(self.event_registry, self.event_tracer)

        self.event_registry.register_catalog(APP_NAME, APP_EVENTS)

        self.services: Dict[str, Any] = {}
        self.screening: Optional[ScreeningService] = None
        self._signal_tasks: Set[asyncio.Task] = set()

    async def initialize(self):
        """Start the services and announce that the application is ready."""
        self.logger.info("Initializing StrokeCheck")
        try:
            self.screening = await self._init_service(
                ScreeningService, sensors=self.sensors, session=self.session)
            self.event_bus.subscribe(None, self._log_event, APP_NAME)

            await self.event_bus.publish(
                ApplicationStartupCompletedEvent(producer_name=APP_NAME),
                APP_NAME
            )
            self.logger.info("StrokeCheck initialization complete")
        except Exception as e:
            self.logger.error("Failed to initialize application", error=str(e), exc_info=True)
            raise

    async def _init_service(self, service_class, **kwargs):
        """
        Initialize and start a service.

        Args:
            service_class: The service class to initialize
            **kwargs: Additional arguments to pass to the service constructor

        Returns:
            The started service instance
        """
        service_name = service_class.__name__
        self.logger.info(f"Initializing service: {service_name}")

        service = service_class(
            event_bus=self.event_bus,
            service_registry=self.service_registry,
            config=self.config,
            **kwargs
        )
        try:
            await asyncio.wait_for(service.start(), timeout=self.config.service.service_startup_timeout)
        except Exception as e:
            self.logger.error(f"Failed to start service: {service_name}",
                              error=str(e), exc_info=True)
            raise
        self.services[service_name] = service
        return service

    async def _log_event(self, event: BaseEvent) -> None:
        self.logger.debug("Event", event_type=event.type, producer=event.producer_name)

    async def run_screening(self, tests: Optional[List[str]] = None, quorum: Optional[int] = None,
                            difficulty: int = 1) -> Optional[OrchestrationState]:
        """Request one screening suite and wait for its final state."""
        await self.event_bus.publish(
            ScreeningRequestedEvent(tests=tests, quorum=quorum, difficulty=difficulty),
            APP_NAME
        )
        return await self.screening.wait_for_screening()

    async def abort(self) -> None:
        await self.event_bus.publish(ScreeningAbortRequestedEvent(reason="signal"), APP_NAME)

    async def shutdown(self):
        """Shut down all services."""
        self.logger.info("Shutting down StrokeCheck")
        for name, service in reversed(list(self.services.items())):
            try:
                self.logger.info(f"Stopping service: {name}")
                await service.stop()
            except Exception as e:
                self.logger.error(f"Error stopping service {name}: {e}")
        self.services.clear()
        self.logger.info("StrokeCheck shutdown complete")

    def handle_signal(self, sig):
        """Abort the running screening; the suite then finishes as aborted."""
        self.logger.info(f"Received signal {sig.name}, aborting screening")
        task = asyncio.create_task(self.abort())
        self._signal_tasks.add(task)
        task.add_done_callback(self._signal_tasks.discard)

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog=APP_NAME, description="Run a StrokeCheck screening suite")
    parser.add_argument("--simulate", action="store_true",
                        help="Use the simulated sensor provider instead of waiting for a host")
    parser.add_argument("--quorum", type=int, default=None,
                        help="Abnormal results needed to recommend emergency help")
    parser.add_argument("--capture", type=float, default=None,
                        help="Capture window in seconds for single-window tests")
    parser.add_argument("--tests", nargs='*', default=None,
                        help="Tests to run (balance, gait, stillness, direction_tracking, posture)")
    parser.add_argument("--difficulty", type=int, default=1, help="Posture difficulty tier (1-6)")
    return parser.parse_args(argv)

def build_config(args: argparse.Namespace) -> ApplicationConfig:
    config = get_config()
    if args.capture is not None:
        config.screening = config.screening.model_copy(update={"capture_s": args.capture})
    return config

async def main(argv: Optional[List[str]] = None) -> int:
    """Application entry point; returns the process exit code."""
    args = parse_args(argv)
    config = build_config(args)
    setup_logging(config.log_level.value)

    if args.simulate:
        sensors = SimulatedSensorProvider(
            rate_hz=config.sensor.simulated_rate_hz,
            noise=config.sensor.simulated_noise,
            seed=config.sensor.simulated_seed,
        )
    else:
        logging.warning("No host sensor adapter attached; tests will classify as insufficient data")
        sensors = CallbackSensorProvider()

    app = StrokeCheckApplication(sensors, config=config)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda s=sig: app.handle_signal(s))

    await app.initialize()
    try:
        state = await app.run_screening(args.tests, args.quorum, args.difficulty)
    finally:
        await app.shutdown()

    if state is None:
        return 1
    print(json.dumps(state.to_dict(), indent=2))
    return 0

def run():
    """Console script entry point."""
    try:
        sys.exit(asyncio.run(main()))
    except Exception as e:
        logging.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)

if __name__ == "__main__":
    run()
