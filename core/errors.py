"""Exceptions raised by the drill gauntlet core."""


class GauntletError(Exception):
    """Base class for gauntlet errors."""


class GenerationError(GauntletError):
    """The drill or scoring service was unreachable or returned malformed data."""


class DrillCancelled(GauntletError):
    """A drill request was superseded by a newer one."""


class SessionError(GauntletError):
    """An operation is not allowed in the current session state."""


class RouletteError(GauntletError, ValueError):
    """An illegal roulette transition was requested."""
