"""Call phase enumeration."""
from enum import Enum


class CallPhase(str, Enum):
    """Phases of a speak-first call, in the only order they may occur."""

    INIT = "init"  # Channel open, nothing spoken yet
    PRIMER = "primer"  # Optional warm-up line
    NOTICE = "notice"  # Compliance notice, spoken exactly once
    INTRO = "intro"  # Optional persona introduction
    CONVERSATION = "conversation"  # Free-form dialogue, terminal

    @property
    def rank(self) -> int:
        return _ORDER.index(self)

    def __str__(self) -> str:
        """Return the string value of the phase."""
        return self.value


_ORDER = [
    CallPhase.INIT,
    CallPhase.PRIMER,
    CallPhase.NOTICE,
    CallPhase.INTRO,
    CallPhase.CONVERSATION,
]
