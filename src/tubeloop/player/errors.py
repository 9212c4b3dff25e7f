"""Provider error classification.

Maps YouTube IFrame API error codes to a message and a recovery class.
"""

from dataclasses import dataclass

PERMANENT = "permanent"
DELAYABLE = "delayable"
TRANSIENT = "transient"

ERROR_MESSAGES = {
    2: "Invalid YouTube Video ID",
    5: "Cannot play in HTML5 player",
    100: "Video not found or private",
    101: "Embedding disabled by video owner",
    150: "Embedding disabled by video owner",
}

# Often reported spuriously while the embed is still negotiating
DELAYED_ERROR_CODES = frozenset({101, 150})

# Never going to play, no point retrying
PERMANENT_ERROR_CODES = frozenset({2, 100})


@dataclass(frozen=True)
class ErrorClassification:
    code: int | str
    message: str
    error_class: str

    @property
    def is_permanent(self) -> bool:
        return self.error_class == PERMANENT

    @property
    def is_delayable(self) -> bool:
        return self.error_class == DELAYABLE


def _normalize_code(code):
    """The API sometimes hands codes over as strings ('150')."""
    if isinstance(code, str) and code.strip().lstrip("-").isdigit():
        return int(code.strip())
    return code


def classify(code) -> ErrorClassification:
    """Classify a provider error code."""
    normalized = _normalize_code(code)
    message = ERROR_MESSAGES.get(normalized, f"YouTube error code: {code}")
    if normalized in DELAYED_ERROR_CODES:
        error_class = DELAYABLE
    elif normalized in PERMANENT_ERROR_CODES:
        error_class = PERMANENT
    else:
        error_class = TRANSIENT
    return ErrorClassification(code=normalized, message=message, error_class=error_class)
