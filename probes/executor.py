"""Policy executor: runs a chain of stages over a probe state."""

import logging
from typing import Callable, Optional

from probes.exceptions import StageExecutionFailure
from probes.stages import PolicyChain
from probes.state import ProbeState

logger = logging.getLogger(__name__)

#: Receives stage failures; must not raise, but is guarded anyway
FallbackChannel = Callable[[StageExecutionFailure], None]


class PolicyExecutor:
    """Execute policy chains strictly in order.

    Execution stops at the first stage that yields None and right after a
    terminal (sink) stage. A stage that raises ends the firing: the error
    is wrapped in StageExecutionFailure and handed to the fallback channel,
    never to the code that fired the probe.
    """

    def __init__(self, fallback: Optional[FallbackChannel] = None) -> None:
        self.fallback = fallback

    def execute(self, chain: PolicyChain, state: ProbeState) -> Optional[ProbeState]:
        """Run chain over state.

        Args:
            chain: The resolved policy chain.
            state: The state produced by the firing.

        Returns:
            The final state if the chain ran out of stages without reaching
            a sink, None if a sink consumed it, a stage dropped it, or a
            stage failed.
        """
        current: Optional[ProbeState] = state
        for stage in chain.stages:
            if current is None:
                return None
            try:
                current = stage.apply(current)
            except Exception as e:
                self._report(StageExecutionFailure(chain.name, stage.name, current, e))
                return None
            if stage.terminal:
                return None
        return current

    def _report(self, failure: StageExecutionFailure) -> None:
        if self.fallback is None:
            return
        try:
            self.fallback(failure)
        except Exception as e:
            logger.error(f"Probe fallback channel failed while reporting '{failure}': {e}")
