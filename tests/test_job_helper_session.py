from pathlib import Path

import pytest

from job_helper_core import PromptRequest, QAPair, UploadBundle
from job_helper_session import Phase, Session, SessionState


class _FakeFetcher:
    def __init__(self, text: str = "Acme Corp hires engineers", error: Exception | None = None):
        self.text = text
        self.error = error
        self.urls: list[str] = []

    def fetch_text(self, url: str) -> str:
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        return self.text


class _FakeClient:
    def __init__(self, response: str = '{"qaPair": []}', error: Exception | None = None):
        self.response = response
        self.error = error
        self.requests: list[PromptRequest] = []
        self.on_complete = None

    def complete(self, request: PromptRequest) -> str:
        self.requests.append(request)
        if self.on_complete is not None:
            self.on_complete()
        if self.error is not None:
            raise self.error
        return self.response


class _Harness:
    def __init__(self, *, api_key: str | None = "test-key", client: _FakeClient | None = None):
        self.client = client or _FakeClient()
        self.fetcher = _FakeFetcher()
        self.clipboard: list[str] = []
        self.api_keys: list[str] = []
        self.pdf_text = "Experienced engineer"

        def make_client(key: str) -> _FakeClient:
            self.api_keys.append(key)
            return self.client

        self.session = Session(
            extract_pdf_text=lambda path: self.pdf_text,
            fetcher=self.fetcher,
            make_client=make_client,
            copy_to_clipboard=self.clipboard.append,
            api_key=api_key,
        )


@pytest.fixture
def image_path(tmp_path: Path) -> Path:
    path = tmp_path / "questions.png"
    path.write_bytes(b"\x89PNG fake image")
    return path


def test_initial_state_is_collecting() -> None:
    session = _Harness().session
    assert session.state == SessionState(phase=Phase.COLLECTING, error=None)
    assert session.bundle == UploadBundle()
    assert session.qa_pairs == []
    assert session.can_submit


def test_end_to_end_answer_reveal_and_copy(image_path: Path) -> None:
    harness = _Harness(client=_FakeClient(
        '{"qaPair":[{"index":0,"question":"Why join?","answer":"I align with Acme\'s mission."}]}'
    ))
    session = harness.session

    session.add_resumes([Path("resume.pdf")])
    session.add_images([image_path])
    session.fetch_website("https://acme.example")
    assert session.error is None
    assert session.website_fetched

    pairs = session.submit()
    assert pairs == [QAPair(index=0, question="Why join?", answer="I align with Acme's mission.")]
    assert session.phase is Phase.REVEALING

    request = harness.client.requests[0]
    assert "Experienced engineer" in request.text
    assert "Acme Corp hires engineers" in request.text
    assert len(request.image_parts) == 1
    assert request.image_parts[0].startswith("data:image/png;base64,")

    revealed = "".join(session.reveal())
    assert revealed == "Q1: Why join?\nA1: I align with Acme's mission."
    assert session.phase is Phase.DONE

    assert session.copy_answer(0) == "I align with Acme's mission."
    assert harness.clipboard == ["I align with Acme's mission."]


def test_wrong_file_types_set_input_errors(tmp_path: Path, image_path: Path) -> None:
    session = _Harness().session

    session.add_resumes([tmp_path / "resume.docx"])
    assert session.error == "Please upload a valid PDF file."
    assert session.bundle.resume_text == ""

    session.add_images([tmp_path / "notes.txt"])
    assert session.error == "Please upload a valid image file."

    session.add_images([image_path])
    assert session.error is None
    assert len(session.bundle.images) == 1
    assert session.phase is Phase.COLLECTING


def test_latest_error_replaces_previous(image_path: Path) -> None:
    session = _Harness().session
    session.add_resumes([Path("resume.txt")])
    session.fetch_website("   ")
    assert session.error == "Please enter a valid URL."


def test_pdf_extraction_failure_is_fetch_error() -> None:
    harness = _Harness()

    def broken(path: Path) -> str:
        raise OSError("corrupt")

    harness.session._extract_pdf_text = broken
    harness.session.add_resumes([Path("resume.pdf")])
    assert harness.session.error == "Failed to extract text from the PDF."


def test_fetch_failure_is_reported_and_bundle_untouched() -> None:
    harness = _Harness()
    harness.fetcher.error = OSError("connection refused")
    harness.session.fetch_website("https://acme.example")
    assert harness.session.error == "Error fetching data: connection refused"
    assert not harness.session.website_fetched


def test_repeated_uploads_accumulate(image_path: Path, tmp_path: Path) -> None:
    harness = _Harness()
    session = harness.session
    second = tmp_path / "more.jpg"
    second.write_bytes(b"jpeg")

    session.add_resumes([Path("a.pdf")])
    harness.pdf_text = "Also a manager"
    session.add_resumes([Path("b.pdf")])
    session.add_images([image_path])
    session.add_images([second])

    assert session.bundle.resume_text == "Experienced engineer\nAlso a manager"
    assert [image.name for image in session.bundle.images] == ["questions.png", "more.jpg"]
    assert session.bundle.images[1].mime_type == "image/jpeg"


def test_missing_api_key_stops_before_network() -> None:
    harness = _Harness(api_key=None)
    assert harness.session.submit() is None
    assert harness.session.phase is Phase.COLLECTING
    assert "API key not configured" in harness.session.error
    assert harness.api_keys == []
    assert harness.client.requests == []


def test_submit_while_submitting_is_noop() -> None:
    harness = _Harness(client=_FakeClient('{"qaPair":[{"index":0,"question":"Q","answer":"A"}]}'))
    session = harness.session
    nested_results = []
    harness.client.on_complete = lambda: nested_results.append((session.phase, session.submit()))

    assert session.submit() is not None
    assert nested_results == [(Phase.SUBMITTING, None)]
    assert len(harness.client.requests) == 1


def test_submit_outside_collecting_is_noop() -> None:
    harness = _Harness()
    harness.session.submit()
    assert harness.session.phase is Phase.REVEALING
    assert harness.session.submit() is None
    assert len(harness.client.requests) == 1


def test_upstream_failure_returns_to_collecting_with_error(image_path: Path) -> None:
    harness = _Harness(client=_FakeClient(error=RuntimeError("503 unavailable")))
    session = harness.session
    session.add_images([image_path])

    assert session.submit() is None
    assert session.phase is Phase.COLLECTING
    assert session.error == "Error contacting Gemini: 503 unavailable"
    assert len(session.bundle.images) == 1
    assert session.can_submit


def test_format_failure_returns_to_collecting_with_error() -> None:
    harness = _Harness(client=_FakeClient("Sorry, I cannot help with that."))
    session = harness.session
    assert session.submit() is None
    assert session.phase is Phase.COLLECTING
    assert session.error == "no JSON object found"
    assert session.qa_pairs == []


def test_successful_submit_clears_previous_error() -> None:
    harness = _Harness()
    harness.session.fetch_website("")
    assert harness.session.error is not None
    harness.session.submit()
    assert harness.session.error is None


def test_empty_answer_list_reveals_nothing_and_finishes() -> None:
    session = _Harness().session
    assert session.submit() == []
    assert list(session.reveal()) == []
    assert session.phase is Phase.DONE


def test_reveal_preserves_source_array_order() -> None:
    harness = _Harness(client=_FakeClient(
        '{"qaPair":[{"index":1,"question":"B?","answer":"b"},{"index":0,"question":"A?","answer":"a"}]}'
    ))
    session = harness.session
    session.submit()
    assert "".join(session.reveal()) == "Q1: B?\nA1: b\n\nQ2: A?\nA2: a"


def test_inputs_refused_outside_collecting(image_path: Path) -> None:
    session = _Harness().session
    session.submit()
    session.add_images([image_path])
    assert session.phase is Phase.REVEALING
    assert session.error == "Reset the session before adding new inputs."
    assert session.bundle.images == []


def test_copy_answer_errors() -> None:
    harness = _Harness(client=_FakeClient('{"qaPair":[{"index":0,"question":"Q","answer":"A"}]}'))
    session = harness.session

    assert session.copy_answer(0) is None
    assert session.error == "There are no answers to copy yet."

    session.submit()
    assert session.copy_answer(3) is None
    assert session.error == "There is no answer number 4."

    def broken_clipboard(text: str) -> None:
        raise RuntimeError("no clipboard")

    session._copy_to_clipboard = broken_clipboard
    assert session.copy_answer(0) is None
    assert session.error == "Failed to copy: no clipboard"
    assert harness.clipboard == []


def test_reset_from_done_restores_initial_state(image_path: Path) -> None:
    harness = _Harness(client=_FakeClient('{"qaPair":[{"index":0,"question":"Q","answer":"A"}]}'))
    session = harness.session
    session.add_resumes([Path("resume.pdf")])
    session.add_images([image_path])
    session.fetch_website("https://acme.example")
    session.submit()
    list(session.reveal())
    session.copy_answer(5)
    assert session.phase is Phase.DONE
    assert session.error is not None

    session.reset()
    assert session.state == SessionState()
    assert session.bundle == UploadBundle()
    assert session.qa_pairs == []
    assert session.revealed_text == ""
    assert session.can_submit


def test_reset_mid_reveal_cancels_stream() -> None:
    harness = _Harness(client=_FakeClient('{"qaPair":[{"index":0,"question":"Q","answer":"Answer"}]}'))
    session = harness.session
    session.submit()
    reveal = session.reveal()
    assert next(reveal) == "Q"

    session.reset()
    assert list(reveal) == []
    assert session.phase is Phase.COLLECTING


def test_successful_fetch_clears_previous_error(tmp_path: Path) -> None:
    harness = _Harness()
    session = harness.session
    session.add_images([tmp_path / "notes.txt"])
    assert session.error == "Please upload a valid image file."

    session.fetch_website("https://acme.example")
    assert session.error is None
    assert session.bundle.website_text == "Acme Corp hires engineers"


def test_has_api_key_reflects_configuration() -> None:
    assert _Harness().session.has_api_key
    assert not _Harness(api_key=None).session.has_api_key
    assert not _Harness(api_key="").session.has_api_key
