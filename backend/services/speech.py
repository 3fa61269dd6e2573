"""Speech collaborators used by the chat session."""
from typing import Callable, Optional, Protocol

Callback = Optional[Callable[[], None]]


class SpeechSynthesizer(Protocol):
    """Text-to-speech: speaks a string and reports start/end."""

    def speak(self, text: str, on_start: Callback = None, on_end: Callback = None) -> None:
        ...

    def cancel(self) -> None:
        ...


class SpeechRecognizer(Protocol):
    """Speech-to-text: one final transcript per utterance."""

    def start(
        self,
        on_result: Callable[[str], None],
        on_end: Callable[[], None],
        on_error: Callable[[Exception], None]
    ) -> None:
        ...

    def stop(self) -> None:
        ...


class SilentSynthesizer:
    """Synthesizer for environments without audio; events fire immediately."""

    def speak(self, text: str, on_start: Callback = None, on_end: Callback = None) -> None:
        if on_start:
            on_start()
        if on_end:
            on_end()

    def cancel(self) -> None:
        pass
