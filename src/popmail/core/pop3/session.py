"""POP3 session state machine."""

from enum import Enum
from typing import Dict, FrozenSet

from popmail.utils.errors import SessionStateError
from popmail.utils.logging import get_logger

logger = get_logger(__name__)


class SessionState(Enum):
    """Lifecycle phases of a POP3 connection."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    AUTHENTICATING = "authenticating"
    TRANSACTION = "transaction"
    TERMINATING = "terminating"
    CLOSED = "closed"


_S = SessionState

# CLOSED is reachable from every live state: transport failures are abrupt.
TRANSITIONS: Dict[SessionState, FrozenSet[SessionState]] = {
    _S.DISCONNECTED: frozenset({_S.CONNECTED, _S.CLOSED}),
    _S.CONNECTED: frozenset({_S.AUTHENTICATING, _S.TERMINATING, _S.CLOSED}),
    _S.AUTHENTICATING: frozenset(
        {_S.TRANSACTION, _S.CONNECTED, _S.TERMINATING, _S.CLOSED}
    ),
    _S.TRANSACTION: frozenset({_S.TERMINATING, _S.CLOSED}),
    _S.TERMINATING: frozenset({_S.CLOSED}),
    _S.CLOSED: frozenset(),
}

# States in which a command may still be written to the wire.
LIVE_STATES = frozenset(
    {_S.CONNECTED, _S.AUTHENTICATING, _S.TRANSACTION, _S.TERMINATING}
)


class SessionStateMachine:
    """Tracks the session phase and rejects out-of-order operations."""

    def __init__(self, state: SessionState = SessionState.DISCONNECTED):
        self._state = state

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._state is SessionState.CLOSED

    def can_transition(self, target: SessionState) -> bool:
        return target in TRANSITIONS[self._state]

    def transition(self, target: SessionState) -> None:
        """Move to ``target``.

        Raises:
            SessionStateError: If the move is not in the transition table
        """
        if target is self._state:
            return
        if not self.can_transition(target):
            raise SessionStateError(
                f"Illegal session transition: {self._state.value} -> {target.value}",
                details={"from": self._state.value, "to": target.value},
            )
        logger.debug(
            "POP3 session state change",
            extra={"from_state": self._state.value, "to_state": target.value},
        )
        self._state = target

    def require(self, operation: str, *allowed: SessionState) -> None:
        """Raise unless the current state is one of ``allowed``.

        Raises:
            SessionStateError: If ``operation`` is not legal right now
        """
        if self._state in allowed:
            return

        if self._state in (SessionState.CONNECTED, SessionState.AUTHENTICATING):
            hint = "authenticate first"
        elif self._state in (SessionState.DISCONNECTED, SessionState.CLOSED):
            hint = "connection is not open"
        else:
            hint = f"session is {self._state.value}"

        raise SessionStateError(
            f"{operation} not allowed in state {self._state.value}: {hint}",
            details={
                "operation": operation,
                "state": self._state.value,
                "allowed": sorted(s.value for s in allowed),
            },
        )
