import threading
from typing import Callable, Optional

from refillbot.solana.models import RunState


class RunStateCell:
    """
    Holds the bot's RunState as a single value.

    Readers get a copy and writers replace the whole value, so nobody ever
    sees a half-updated state.
    """

    def __init__(self, initial: Optional[RunState] = None):
        """Initialize the cell with an idle state unless one is given."""
        self._state = (initial or RunState()).model_copy()
        self._lock = threading.Lock()

    def get(self) -> RunState:
        with self._lock:
            return self._state.model_copy()

    def set(self, state: RunState) -> None:
        with self._lock:
            self._state = state.model_copy()

    def update(self, mutate: Callable[[RunState], None]) -> RunState:
        """
        Apply a change to a copy of the state and store it.

        Args:
            mutate: Function that edits the copy in place

        Returns:
            The stored state
        """
        with self._lock:
            state = self._state.model_copy()
            mutate(state)
            self._state = state
            return state.model_copy()
