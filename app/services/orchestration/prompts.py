"""Default prompt texts for the speak-first sequence.

The defaults are the Latvian lines of the Aivify "Paula" demo agent. Every
value here can be overridden through settings; these are only used when the
environment does not provide one.
"""

# Compliance notice, read verbatim
DEFAULT_NOTICE_TEXT = (
    "Informācijai — šis demo zvans var tikt ierakstīts un analizēts kvalitātes nolūkiem."
)

DEFAULT_INTRO_TEXT = (
    "Sveiki! Mani sauc Paula un es esmu Aivify asistente. Ar ko man ir gods runāt?"
)

# Keeps the model silent and literal while the scripted lines are played
DEFAULT_STRICT_INSTRUCTIONS = " ".join(
    [
        "Speak only when explicitly instructed via response.create.",
        "Read Latvian text verbatim. Do not improvise.",
        "No persona. No small talk.",
        "Stay silent unless instructed. Do not transcribe or react to background audio.",
    ]
)

DEFAULT_CONVERSATION_INSTRUCTIONS = (
    "Tu esi laipns latviešu balss asistents. Atbildi īsi un skaidri."
)


def get_verbatim_instructions(text: str) -> str:
    """Build per-response instructions asking the model to read text as-is."""
    return f"Say exactly the following text, word for word, and nothing else: {text}"
