from __future__ import annotations

from typing import Callable, Sequence

from interview_pro.client.speech import RecognitionResult, correct_technical_terms


class TranscriptBuffer:
    """
    Answer text for the current question.

    Only final recognition results are committed; interim text is kept aside for
    display and replaced on every update. The committed text outlives recognizer
    restarts, it is only cleared when the session moves to another question.
    """

    def __init__(self, corrector: Callable[[str], str] = correct_technical_terms) -> None:
        self._corrector = corrector
        self._final = ""
        self.interim = ""

    @property
    def text(self) -> str:
        return self._final

    @property
    def display(self) -> str:
        if self.interim:
            return f"{self._final} {self.interim}".strip()
        return self._final

    def append_final(self, transcript: str) -> None:
        piece = self._corrector(transcript).strip()
        if not piece:
            return
        if self._final and not self._final.endswith(" "):
            self._final += " "
        self._final += piece

    def apply(self, results: Sequence[RecognitionResult], result_index: int = 0) -> None:
        interim = ""
        for result in results[result_index:]:
            if result.is_final:
                self.append_final(result.transcript)
            else:
                interim += self._corrector(result.transcript)
        self.interim = interim.strip()

    def replace(self, text: str) -> None:
        self._final = text
        self.interim = ""

    def clear(self) -> None:
        self._final = ""
        self.interim = ""

    def word_count(self) -> int:
        return len(self.display.split())
