"""
Level-based voice activity detectors.

Both detectors observe one normalized level sample (0..1) per poll,
as produced by audio.pcm.rms_level or a transport's level probe.
"""


class OnsetDetector:
    """
    Speech onset: `polls_required` consecutive samples at or above
    `threshold`. A single sub-threshold sample resets the run, so isolated
    spikes (agent echo, clicks) never trigger.
    """

    def __init__(self, threshold: float, polls_required: int):
        self._threshold = threshold
        self._polls_required = polls_required
        self._count = 0

    def observe(self, level: float) -> bool:
        if level >= self._threshold:
            self._count += 1
        else:
            self._count = 0
        return self._count >= self._polls_required

    def reset(self) -> None:
        self._count = 0


class TrailingSilenceDetector:
    """
    Trailing silence after speech.

    Arms on the first sample at or above `speech_level`; once armed,
    reports True when no speech sample has been seen for `silence_ms`.
    Never reports before any speech was heard.
    """

    def __init__(self, speech_level: float, silence_ms: int):
        self._speech_level = speech_level
        self._silence_ms = silence_ms
        self._last_speech_ms: int | None = None

    @property
    def armed(self) -> bool:
        return self._last_speech_ms is not None

    def observe(self, level: float, now_ms: int) -> bool:
        if level >= self._speech_level:
            self._last_speech_ms = now_ms
            return False
        if self._last_speech_ms is None:
            return False
        return now_ms - self._last_speech_ms >= self._silence_ms

    def reset(self) -> None:
        self._last_speech_ms = None
