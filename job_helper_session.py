#!/usr/bin/env python3
"""Session state machine: collect inputs, submit once, reveal answers, reset."""

from __future__ import annotations

import enum
import mimetypes
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from job_helper_core import (
    ConfigError,
    FetchError,
    ImageBlob,
    InputError,
    JobHelperError,
    PromptRequest,
    QAPair,
    RevealStream,
    UpstreamError,
    UploadBundle,
    assemble_prompt,
    encode_image_data_uri,
    format_qa_pairs,
    parse_qa_response,
)


class Phase(enum.Enum):
    COLLECTING = "collecting"
    SUBMITTING = "submitting"
    REVEALING = "revealing"
    DONE = "done"


@dataclass(frozen=True)
class SessionState:
    phase: Phase = Phase.COLLECTING
    error: str | None = None


class FetchProvider(Protocol):
    def fetch_text(self, url: str) -> str: ...


class CompletionClient(Protocol):
    def complete(self, request: PromptRequest) -> str: ...


class Session:
    """One user's walk from uploads to revealed answers.

    I/O collaborators are injected so the state machine itself never touches
    the network or the clipboard directly:

    - ``extract_pdf_text(path)`` returns the concatenated page text
    - ``fetcher.fetch_text(url)`` returns the visible text of a web page
    - ``make_client(api_key)`` builds the chat completion client
    - ``copy_to_clipboard(text)`` places text on the clipboard
    """

    def __init__(
        self,
        *,
        extract_pdf_text: Callable[[Path], str],
        fetcher: FetchProvider,
        make_client: Callable[[str], CompletionClient],
        copy_to_clipboard: Callable[[str], None],
        api_key: str | None,
    ):
        self._extract_pdf_text = extract_pdf_text
        self._fetcher = fetcher
        self._make_client = make_client
        self._copy_to_clipboard = copy_to_clipboard
        self._api_key = api_key

        self.state = SessionState()
        self.bundle = UploadBundle()
        self.qa_pairs: list[QAPair] = []
        self._reveal: RevealStream | None = None

    # --- observable state ---
    @property
    def phase(self) -> Phase:
        return self.state.phase

    @property
    def error(self) -> str | None:
        return self.state.error

    @property
    def website_fetched(self) -> bool:
        return bool(self.bundle.website_text)

    @property
    def can_submit(self) -> bool:
        return self.state.phase is Phase.COLLECTING

    @property
    def has_api_key(self) -> bool:
        return bool(self._api_key)

    @property
    def revealed_text(self) -> str:
        return self._reveal.displayed if self._reveal else ""

    def _set_phase(self, phase: Phase) -> None:
        self.state = SessionState(phase=phase, error=self.state.error)

    def _set_error(self, error: JobHelperError | str | None) -> None:
        message = str(error) if error is not None else None
        self.state = SessionState(phase=self.state.phase, error=message)

    def _require_collecting(self) -> bool:
        if self.state.phase is Phase.COLLECTING:
            return True
        self._set_error(InputError("Reset the session before adding new inputs."))
        return False

    # --- collecting ---
    def add_resumes(self, paths: Iterable[Path]) -> None:
        """Extract text from each PDF and append it to the bundle."""
        if not self._require_collecting():
            return
        for path in paths:
            if not _is_pdf(path):
                self._set_error(InputError("Please upload a valid PDF file."))
                continue
            self._set_error(None)
            try:
                text = self._extract_pdf_text(path)
            except Exception:
                self._set_error(FetchError("Failed to extract text from the PDF."))
                continue
            self.bundle.add_resume_text(text)

    def add_images(self, paths: Iterable[Path]) -> None:
        """Read question screenshots into memory, keeping upload order."""
        if not self._require_collecting():
            return
        for path in paths:
            mime_type = mimetypes.guess_type(path.name)[0] or ""
            if not mime_type.startswith("image/"):
                self._set_error(InputError("Please upload a valid image file."))
                continue
            try:
                data = path.read_bytes()
            except OSError as e:
                self._set_error(InputError(f"Could not read image {path.name}: {e}"))
                continue
            self._set_error(None)
            self.bundle.add_image(ImageBlob(name=path.name, mime_type=mime_type, data=data))

    def fetch_website(self, url: str) -> None:
        """Fetch the company website text through the configured provider."""
        if not self._require_collecting():
            return
        url = url.strip()
        if not url:
            self._set_error(InputError("Please enter a valid URL."))
            return
        try:
            text = self._fetcher.fetch_text(url)
        except Exception as e:
            self._set_error(FetchError(f"Error fetching data: {e}"))
            return
        self._set_error(None)
        self.bundle.add_website_text(text)

    # --- submitting ---
    def submit(self) -> list[QAPair] | None:
        """Send the bundle to the model once; returns the parsed pairs on success.

        A submit while not collecting (e.g. a second click during an
        in-flight request) is a no-op and returns None.
        """
        if not self.can_submit:
            return None
        if not self.has_api_key:
            self._set_error(ConfigError(
                "Gemini API key not configured. Set GEMINI_API_KEY or use --api-key."
            ))
            return None

        self._set_phase(Phase.SUBMITTING)
        try:
            request = assemble_prompt(
                self.bundle.resume_text,
                self.bundle.website_text,
                [encode_image_data_uri(image) for image in self.bundle.images],
            )
            raw_text = self._make_client(self._api_key).complete(request)
            pairs = parse_qa_response(raw_text)
        except JobHelperError as e:
            self._fail_submit(e)
            return None
        except Exception as e:
            self._fail_submit(UpstreamError(f"Error contacting Gemini: {e}"))
            return None

        self._set_error(None)
        self._start_reveal(pairs)
        return pairs

    def _fail_submit(self, error: JobHelperError) -> None:
        self._set_error(error)
        self._set_phase(Phase.COLLECTING)

    # --- revealing ---
    def _start_reveal(self, pairs: list[QAPair]) -> None:
        if self._reveal is not None:
            self._reveal.cancel()
        self.qa_pairs = pairs
        self._reveal = RevealStream(format_qa_pairs(pairs))
        self._set_phase(Phase.REVEALING)

    def reveal(self) -> Iterator[str]:
        """Yield the answer text one character at a time, then move to done."""
        if self.state.phase is not Phase.REVEALING or self._reveal is None:
            return
        stream = self._reveal
        yield from stream
        if stream is self._reveal and stream.finished:
            self._set_phase(Phase.DONE)

    def copy_answer(self, position: int) -> str | None:
        """Copy the answer at a 0-based display position to the clipboard."""
        if self.state.phase not in (Phase.REVEALING, Phase.DONE):
            self._set_error(InputError("There are no answers to copy yet."))
            return None
        if not 0 <= position < len(self.qa_pairs):
            self._set_error(InputError(f"There is no answer number {position + 1}."))
            return None
        answer = self.qa_pairs[position].answer
        try:
            self._copy_to_clipboard(answer)
        except Exception as e:
            self._set_error(JobHelperError(f"Failed to copy: {e}"))
            return None
        return answer

    # --- reset ---
    def reset(self) -> None:
        """Discard inputs, answers, reveal progress and error."""
        if self.state.phase is Phase.SUBMITTING:
            return
        if self._reveal is not None:
            self._reveal.cancel()
        self._reveal = None
        self.bundle = UploadBundle()
        self.qa_pairs = []
        self.state = SessionState()


def _is_pdf(path: Path) -> bool:
    return mimetypes.guess_type(path.name)[0] == "application/pdf"
