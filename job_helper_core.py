#!/usr/bin/env python3
"""Core deterministic logic for the job application helper."""

from __future__ import annotations

import base64
import json
import re
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field, fields
from html import unescape
from pathlib import Path
from typing import Any

import yaml


SYSTEM_INSTRUCTION = (
    "You are a helpful assistant that analyzes resumes, website content, "
    "and images to provide relevant insights."
)

DEFAULT_MODEL = "gemini-3-pro-preview"
DEFAULT_MAX_OUTPUT_TOKENS = 8192
DEFAULT_REVEAL_TICK_SECONDS = 0.005


# === ERRORS ===
class JobHelperError(Exception):
    """Base class for errors surfaced to the user as a single message."""


class InputError(JobHelperError):
    """Wrong file type uploaded, empty URL, or input offered at the wrong time."""


class FetchError(JobHelperError):
    """Website fetch or document extraction failed."""


class ConfigError(JobHelperError):
    """Required configuration is missing or malformed."""


class FormatError(JobHelperError):
    """Model response does not follow the qaPair JSON contract."""


class UpstreamError(JobHelperError):
    """The chat completion API rejected the request or failed."""


# === DATA MODEL ===
@dataclass(frozen=True)
class ImageBlob:
    name: str
    mime_type: str
    data: bytes


@dataclass
class UploadBundle:
    """Inputs gathered while collecting. Only grows until a full reset."""

    resume_text: str = ""
    images: list[ImageBlob] = field(default_factory=list)
    website_text: str = ""

    def add_resume_text(self, text: str) -> None:
        self.resume_text = _append_text(self.resume_text, text)

    def add_website_text(self, text: str) -> None:
        self.website_text = _append_text(self.website_text, text)

    def add_image(self, image: ImageBlob) -> None:
        self.images.append(image)

    def is_empty(self) -> bool:
        return not (self.resume_text or self.images or self.website_text)


def _append_text(existing: str, addition: str) -> str:
    if not existing:
        return addition
    if not addition:
        return existing
    return f"{existing}\n{addition}"


@dataclass(frozen=True)
class PromptRequest:
    """A multi-modal chat request: images first, then one composite text part."""

    system_instruction: str
    image_parts: tuple[str, ...]
    text: str

    def parts(self) -> list[dict[str, Any]]:
        """Render ordered chat content parts."""
        content: list[dict[str, Any]] = [
            {"type": "image_url", "image_url": {"url": uri}} for uri in self.image_parts
        ]
        content.append({"type": "text", "text": self.text})
        return content


@dataclass(frozen=True)
class QAPair:
    index: int
    question: str
    answer: str


# === SETTINGS ===
@dataclass
class Settings:
    api_key: str | None = None
    model: str = DEFAULT_MODEL
    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS
    relay_url: str | None = None
    reveal_tick_seconds: float = DEFAULT_REVEAL_TICK_SECONDS
    fetch_timeout_seconds: float | None = None


def load_settings(path: Path | None) -> Settings:
    """Load settings from YAML. Missing file returns defaults."""
    if path is None or not path.exists():
        return Settings()

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"Could not parse settings file {path.name}: {e}") from e
    if data is None:
        return Settings()
    if not isinstance(data, dict):
        raise ConfigError(f"{path.name} must have a top-level mapping.")

    known = {f.name for f in fields(Settings)}
    unknown = sorted(str(key) for key in data if key not in known)
    if unknown:
        raise ConfigError(f"Unknown setting(s) in {path.name}: {', '.join(unknown)}")

    for key in ("api_key", "relay_url"):
        value = data.get(key)
        if value is not None and not isinstance(value, str):
            raise ConfigError(f"{key} must be a string.")
    if "model" in data and (not isinstance(data["model"], str) or not data["model"]):
        raise ConfigError("model must be a non-empty string.")

    tokens = data.get("max_output_tokens", DEFAULT_MAX_OUTPUT_TOKENS)
    if not _is_number(tokens) or not isinstance(tokens, int) or tokens <= 0:
        raise ConfigError("max_output_tokens must be a positive integer.")
    tick = data.get("reveal_tick_seconds", DEFAULT_REVEAL_TICK_SECONDS)
    if not _is_number(tick) or tick < 0:
        raise ConfigError("reveal_tick_seconds must be a non-negative number.")
    timeout = data.get("fetch_timeout_seconds")
    if timeout is not None and (not _is_number(timeout) or timeout <= 0):
        raise ConfigError("fetch_timeout_seconds must be a positive number.")

    return Settings(**data)


def _is_number(value: Any) -> bool:
    # bool is an int subclass
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# === DOCUMENT + IMAGE HELPERS ===
def extract_readable_text_from_html(html: str) -> str:
    """Extract the visible text of an HTML document's body."""
    body_match = re.search(r"<body\b[^>]*>(.*)</body>", html, flags=re.IGNORECASE | re.DOTALL)
    content = body_match.group(1) if body_match else html
    content = re.sub(
        r"<(script|style|noscript|template)\b[^>]*>.*?</\1>",
        " ",
        content,
        flags=re.IGNORECASE | re.DOTALL,
    )
    content = re.sub(r"<!--.*?-->", " ", content, flags=re.DOTALL)
    content = re.sub(r"<br\s*/?>", "\n", content, flags=re.IGNORECASE)
    content = re.sub(r"</(p|div|li|tr|section|article|h[1-6])>", "\n", content, flags=re.IGNORECASE)
    content = re.sub(r"<[^>]+>", " ", content)
    content = unescape(content)
    content = content.replace("\xa0", " ")
    content = re.sub(r"[ \t]+", " ", content)
    content = re.sub(r" *\n *", "\n", content)
    content = re.sub(r"\n{3,}", "\n\n", content)
    return content.strip()


def encode_image_data_uri(image: ImageBlob) -> str:
    """Encode an image as a base64 data URI."""
    encoded = base64.b64encode(image.data).decode("ascii")
    return f"data:{image.mime_type};base64,{encoded}"


_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<payload>.*)$", re.DOTALL)


def decode_data_uri(uri: str) -> tuple[str, bytes]:
    """Split a base64 data URI into (mime_type, raw bytes)."""
    match = _DATA_URI_RE.match(uri)
    if not match:
        raise ValueError("Not a base64 data URI.")
    return match.group("mime"), base64.b64decode(match.group("payload"))


# === PROMPT ASSEMBLY ===
def build_answer_prompt(resume_text: str, website_text: str) -> str:
    """Build the composite text instruction embedding both documents."""
    return f"""Please analyze the following content:
Website Data: {website_text}
Resume (PDF Text): {resume_text}

Based on the website data, resume, and the images provided, please answer the questions in the images as if you are the person from the resume. The images contain job-related questions for a company. The website data is about the company, and you need to answer as a job applicant using context from the resume.

Only answer the questions that appear in the supplied images.

Provide the questions and answers in the following JSON format. Strictly return a JSON object without any additional text:

{{
  "qaPair": [
    {{ "index": 0, "question": "What are your skills?", "answer": "I am proficient in React and backend development." }},
    {{ "index": 1, "question": "Why do you want to join us?", "answer": "Your company's vision aligns with my goals." }}
  ]
}}

Return only the JSON object above."""


def assemble_prompt(resume_text: str, website_text: str, images: Sequence[str]) -> PromptRequest:
    """Combine encoded images and document text into one chat request."""
    return PromptRequest(
        system_instruction=SYSTEM_INSTRUCTION,
        image_parts=tuple(images),
        text=build_answer_prompt(resume_text, website_text),
    )


# === RESPONSE PARSING ===
def parse_qa_response(raw_text: str) -> list[QAPair]:
    """Extract the qaPair list from a model response, keeping array order."""
    start = raw_text.find("{")
    end = raw_text.rfind("}")
    if start == -1 or end < start:
        raise FormatError("no JSON object found")

    try:
        document = json.loads(raw_text[start:end + 1])
    except json.JSONDecodeError as e:
        raise FormatError("invalid JSON") from e

    if not isinstance(document, dict) or not isinstance(document.get("qaPair"), list):
        raise FormatError("missing qaPair")

    pairs: list[QAPair] = []
    seen: set[int] = set()
    for position, entry in enumerate(document["qaPair"]):
        if not isinstance(entry, dict):
            raise FormatError(f"qaPair entry {position} is not an object")
        for key in ("index", "question", "answer"):
            if key not in entry:
                raise FormatError(f"qaPair entry {position} is missing '{key}'")

        index = entry["index"]
        # bool is an int subclass
        if isinstance(index, bool) or not isinstance(index, int) or index < 0:
            raise FormatError(f"qaPair entry {position} has an invalid index")
        if index in seen:
            raise FormatError(f"qaPair entry {position} repeats index {index}")
        seen.add(index)

        question, answer = entry["question"], entry["answer"]
        if not isinstance(question, str) or not isinstance(answer, str):
            raise FormatError(f"qaPair entry {position} must have string question and answer")
        pairs.append(QAPair(index=index, question=question, answer=answer))

    return pairs


def format_qa_pairs(pairs: Sequence[QAPair]) -> str:
    """Render answers for display, numbered by array position."""
    blocks = [
        f"Q{number}: {pair.question}\nA{number}: {pair.answer}"
        for number, pair in enumerate(pairs, 1)
    ]
    return "\n\n".join(blocks)


# === REVEAL ===
class RevealStream:
    """Lazy character-by-character disclosure of a text that can be cancelled."""

    def __init__(self, text: str):
        self.text = text
        self.position = 0
        self.cancelled = False

    @property
    def displayed(self) -> str:
        return self.text[:self.position]

    @property
    def finished(self) -> bool:
        return self.position >= len(self.text)

    def cancel(self) -> None:
        self.cancelled = True

    def __iter__(self) -> Iterator[str]:
        while not self.cancelled and self.position < len(self.text):
            char = self.text[self.position]
            self.position += 1
            yield char
