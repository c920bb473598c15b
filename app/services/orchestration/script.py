"""Scripted utterances spoken before the conversation starts."""
from dataclasses import dataclass
from typing import Optional, Tuple

from app.core.config import Settings
from app.services.orchestration.phases import CallPhase
from app.services.realtime.errors import ScriptError

SCRIPTED_PHASES = (CallPhase.PRIMER, CallPhase.NOTICE, CallPhase.INTRO)


@dataclass(frozen=True)
class ScriptedUtterance:
    """One line read verbatim during the scripted phase."""

    phase: CallPhase
    text: str


Script = Tuple[ScriptedUtterance, ...]


def build_script(
    notice_text: str,
    primer_text: Optional[str] = None,
    intro_text: Optional[str] = None,
) -> Script:
    """
    Build the ordered speak-first script.

    Blank primer/intro texts are skipped. The notice is mandatory.

    Raises:
        ScriptError: If the notice text is blank
    """
    if not notice_text or not notice_text.strip():
        raise ScriptError("A compliance notice text is required")

    lines = []
    if primer_text and primer_text.strip():
        lines.append(ScriptedUtterance(CallPhase.PRIMER, primer_text.strip()))
    lines.append(ScriptedUtterance(CallPhase.NOTICE, notice_text.strip()))
    if intro_text and intro_text.strip():
        lines.append(ScriptedUtterance(CallPhase.INTRO, intro_text.strip()))
    script = tuple(lines)
    validate_script(script)
    return script


def build_script_from_settings(settings: Settings) -> Script:
    return build_script(
        notice_text=settings.notice_text,
        primer_text=settings.primer_text,
        intro_text=settings.intro_text,
    )


def validate_script(script: Script) -> None:
    """
    Check that a script is a legal phase sequence.

    Exactly one notice; phases strictly increasing; no conversational lines.

    Raises:
        ScriptError: If the script breaks any of these rules
    """
    notices = [line for line in script if line.phase == CallPhase.NOTICE]
    if len(notices) != 1:
        raise ScriptError(f"Script must contain exactly one notice, found {len(notices)}")

    previous = CallPhase.INIT
    for line in script:
        if line.phase not in SCRIPTED_PHASES:
            raise ScriptError(f"Phase '{line.phase}' cannot be scripted")
        if line.phase.rank <= previous.rank:
            raise ScriptError(f"Phase '{line.phase}' is out of order after '{previous}'")
        if not line.text:
            raise ScriptError(f"Phase '{line.phase}' has an empty text")
        previous = line.phase
