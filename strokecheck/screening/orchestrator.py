"""
Multi-test orchestrator.

Runs an ordered list of single-test controllers one at a time and combines their
verdicts. The suite escalates to EMERGENCY as soon as ``quorum`` counted results are
abnormal; remaining tests are not run. Cancelled tests are kept for display but never
counted. When the last test finishes below quorum the suite ends ALL_NORMAL.
"""

import asyncio
import inspect
import logging
from dataclasses import replace
from typing import Any, Callable, List, Optional, Sequence

from .controller import SingleTestController
from .results import OrchestrationState, SuiteStatus, TestResult

ResultCallback = Callable[[int, TestResult, OrchestrationState], Any]
StateCallback = Callable[[OrchestrationState], Any]

class ScreeningOrchestrator:
    """
    Sequential runner for a screening suite.

    Args:
        controllers: Controllers in the order their tests run
        quorum: Abnormal results needed to escalate to emergency (at least 1)
        on_result: Called after each result is recorded
        on_emergency: Called once when the suite escalates
        on_complete: Called once with the final state, whatever the outcome
    """

    def __init__(self,
                 controllers: Sequence[SingleTestController],
                 quorum: int = 2,
                 on_result: Optional[ResultCallback] = None,
                 on_emergency: Optional[StateCallback] = None,
                 on_complete: Optional[StateCallback] = None):
        if quorum < 1:
            raise ValueError("Quorum must be at least 1")
        if not controllers:
            raise ValueError("A screening suite needs at least one test")
        self.controllers: List[SingleTestController] = list(controllers)
        self.quorum = quorum
        self.on_result = on_result
        self.on_emergency = on_emergency
        self.on_complete = on_complete
        self.state = OrchestrationState()
        self.logger = logging.getLogger(__name__)
        self._aborted = False
        self._running = False

    @property
    def current_controller(self) -> Optional[SingleTestController]:
        if self.state.finished:
            return None
        return self.controllers[self.state.current_test_index]

    def record(self, result: TestResult) -> OrchestrationState:
        """
        Apply one test result to the suite state.

        Raises:
            RuntimeError: If the suite already reached a terminal state
        """
        state = self.state
        if state.finished:
            raise RuntimeError(f"Screening already finished ({state.terminal.value})")

        index = state.current_test_index
        abnormal_count = state.abnormal_count + (1 if result.is_abnormal else 0)
        state = replace(state, results=state.results + (result,), abnormal_count=abnormal_count)

        if abnormal_count >= self.quorum:
            state = replace(state, terminal=SuiteStatus.EMERGENCY)
        elif index == len(self.controllers) - 1:
            state = replace(state, terminal=SuiteStatus.ALL_NORMAL)
        else:
            state = replace(state, current_test_index=index + 1)

        self.state = state
        self.logger.info(
            f"Recorded {result.test_name}: cancelled={result.cancelled} abnormal={result.is_abnormal} "
            f"({abnormal_count}/{self.quorum}) -> {state.terminal.value}"
        )
        return state

    async def run(self) -> OrchestrationState:
        """
        Run the remaining tests in order until the suite reaches a terminal state.

        Raises:
            RuntimeError: If the suite is already running
        """
        if self._running:
            raise RuntimeError("Screening already running")
        self._running = True
        try:
            while not self.state.finished:
                if self._aborted:
                    self.state = replace(self.state, terminal=SuiteStatus.ABORTED)
                    break

                index = self.state.current_test_index
                controller = self.controllers[index]
                self._ensure_exclusive_sensors(index)

                result = await controller.run()
                if self._aborted:
                    self.state = replace(self.state, terminal=SuiteStatus.ABORTED)
                    break

                state = self.record(result)
                await self._notify(self.on_result, index, result, state)
                if state.terminal == SuiteStatus.EMERGENCY:
                    self.logger.warning(f"Emergency: {state.abnormal_count} abnormal results")
                    await self._notify(self.on_emergency, state)
        finally:
            self._running = False

        await self._notify(self.on_complete, self.state)
        return self.state

    def cancel_current(self) -> bool:
        """Cancel the active test; the suite continues with the next one."""
        controller = self.current_controller
        return controller.cancel() if controller is not None else False

    def abort(self) -> None:
        """Cancel the active test and end the suite as ABORTED (e.g. the user navigated away)."""
        self._aborted = True
        controller = self.current_controller
        if controller is not None:
            controller.cancel()
        if not self._running and not self.state.finished:
            self.state = replace(self.state, terminal=SuiteStatus.ABORTED)

    def _ensure_exclusive_sensors(self, index: int) -> None:
        """Only the active test may hold sensor subscriptions."""
        for position, controller in enumerate(self.controllers):
            if position != index and controller.has_live_subscriptions:
                raise RuntimeError(f"Test {controller.name} still holds sensor subscriptions")

    async def _notify(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
        if callback is None:
            return
        try:
            outcome = callback(*args)
            if inspect.isawaitable(outcome):
                await outcome
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error(f"Screening callback {getattr(callback, '__qualname__', callback)} failed: {e}")
