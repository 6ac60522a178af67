#!/usr/bin/env python3
"""
Job Helper - Answers screenshotted application questions as the resume's owner using Gemini.

Usage:
    python job_helper.py [--resume-pdf Resume.pdf] [--image Q1.png ...] [--url https://company.com]
                         [--api-key KEY] [--batch]

By default an interactive session starts; type `help` for commands.
With --batch the given inputs are submitted once and the answers printed.
"""

import argparse
import os
import shlex
import sys
import time
import threading
from urllib.request import Request, urlopen
from pathlib import Path
from contextlib import contextmanager

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

from google import genai
from google.genai import types
import pypdf
import pyperclip

from job_helper_core import (
    DEFAULT_MAX_OUTPUT_TOKENS,
    DEFAULT_MODEL,
    ConfigError,
    PromptRequest,
    Settings,
    decode_data_uri,
    extract_readable_text_from_html,
    load_settings,
)
from job_helper_session import FetchProvider, Phase, Session

# === CONFIGURATION ===
DEFAULT_SETTINGS_FILE = Path("job_helper.yaml")
USER_AGENT = "job-helper/1.0 (+https://local.cli)"

HELP_TEXT = """Commands:
  resume PATH [PATH ...]   Add resume PDF text
  image PATH [PATH ...]    Add question screenshots
  url URL                  Fetch company website text
  submit                   Ask Gemini to answer the questions
  copy N                   Copy answer N to the clipboard
  reset                    Clear everything and start over
  status                   Show what has been collected
  help                     Show this message
  quit                     Exit"""


# === PERFORMANCE UTILITIES ===
@contextmanager
def timed_section(name: str):
    """Context manager to time and report section duration."""
    start = time.perf_counter()
    yield
    elapsed = time.perf_counter() - start
    print(f"  [TIMING] {name}: {elapsed:.2f}s")


class Spinner:
    """Minimal CLI spinner for long-running operations."""
    UNICODE_FRAMES = ["⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏"]
    ASCII_FRAMES = ["-", "\\", "|", "/"]

    def __init__(self, message: str = "Processing"):
        self.message = message
        self._stop_event = threading.Event()
        self._thread = None
        self.frames = self._resolve_frames()

    def _resolve_frames(self) -> list[str]:
        """Choose spinner frames compatible with current stdout encoding."""
        encoding = sys.stdout.encoding or "utf-8"
        try:
            for frame in self.UNICODE_FRAMES:
                frame.encode(encoding)
            return self.UNICODE_FRAMES
        except (LookupError, UnicodeEncodeError):
            return self.ASCII_FRAMES

    def _spin(self):
        idx = 0
        while not self._stop_event.is_set():
            frame = self.frames[idx % len(self.frames)]
            print(f"\r  {frame} {self.message}...", end="", flush=True)
            idx += 1
            time.sleep(0.1)
        # Clear spinner line
        print("\r" + " " * (len(self.message) + 10) + "\r", end="", flush=True)

    def __enter__(self):
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._spin, daemon=True)
        self._thread.start()
        return self

    def __exit__(self, *args):
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=0.5)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Answer screenshotted job application questions as the resume's owner using Gemini AI.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Defaults:
  --config      {DEFAULT_SETTINGS_FILE} (if file exists)
  --model       {DEFAULT_MODEL}
  --relay       none (website fetched directly)
""",
    )
    parser.add_argument(
        "--resume-pdf",
        action="append",
        default=[],
        help="Resume PDF to read (repeatable)",
    )
    parser.add_argument(
        "--image",
        action="append",
        default=[],
        help="Screenshot containing application questions (repeatable)",
    )
    parser.add_argument(
        "--url",
        help="Company website URL used as context",
    )
    parser.add_argument(
        "--api-key",
        help="Gemini API key (overrides GEMINI_API_KEY env var)",
    )
    parser.add_argument(
        "--model",
        help="Gemini model id (overrides settings file)",
    )
    parser.add_argument(
        "--relay",
        help="Relay URL prefix used to fetch the website (e.g. https://relay.example/)",
    )
    parser.add_argument(
        "--config",
        help=f"Path to settings YAML (default: {DEFAULT_SETTINGS_FILE} if present)",
    )
    parser.add_argument(
        "--batch",
        action="store_true",
        help="Submit the given inputs once, print the answers and exit",
    )
    return parser.parse_args(argv)


def get_api_key(cli_key: str | None, settings: Settings) -> str | None:
    """Get API key from CLI arg, environment variable, or settings file."""
    if cli_key:
        return cli_key
    env_key = os.environ.get("GEMINI_API_KEY")
    if env_key:
        return env_key
    return settings.api_key


def resolve_settings(args: argparse.Namespace) -> Settings:
    """Load the settings file and apply command-line overrides."""
    if args.config:
        settings_path = Path(args.config)
        if not settings_path.exists():
            raise ConfigError(f"--config file not found: {settings_path}")
    else:
        settings_path = DEFAULT_SETTINGS_FILE

    settings = load_settings(settings_path)
    settings.api_key = get_api_key(args.api_key, settings)
    if args.model:
        settings.model = args.model
    if args.relay:
        settings.relay_url = args.relay
    return settings


# === DOCUMENT EXTRACTION ===
def extract_text_from_pdf(path: Path) -> str:
    """Extract text content from a PDF file, one line block per page."""
    reader = pypdf.PdfReader(path)
    return "\n".join(page.extract_text() or "" for page in reader.pages)


class DirectFetchProvider:
    """Fetch a web page and extract its readable text."""

    def __init__(self, timeout_seconds: float | None = None):
        self.timeout_seconds = timeout_seconds

    def request_url(self, url: str) -> str:
        return url

    def fetch_text(self, url: str) -> str:
        request = Request(
            self.request_url(url),
            headers={"User-Agent": USER_AGENT},
        )
        with urlopen(request, timeout=self.timeout_seconds) as response:
            html_bytes = response.read()

        html = html_bytes.decode("utf-8", errors="replace")
        text = extract_readable_text_from_html(html)
        if not text:
            raise ValueError("Fetched page did not contain any readable text.")
        return text


class RelayFetchProvider(DirectFetchProvider):
    """Fetch a web page through a relay that takes the target URL as a path suffix."""

    def __init__(self, relay_url: str, timeout_seconds: float | None = None):
        super().__init__(timeout_seconds)
        self.relay_url = relay_url

    def request_url(self, url: str) -> str:
        return self.relay_url + url


def build_fetch_provider(settings: Settings) -> FetchProvider:
    if settings.relay_url:
        return RelayFetchProvider(settings.relay_url, settings.fetch_timeout_seconds)
    return DirectFetchProvider(settings.fetch_timeout_seconds)


# === GEMINI ===
class GeminiCompletionClient:
    """Send a PromptRequest to Gemini and return the response text."""

    def __init__(self, api_key: str, model: str = DEFAULT_MODEL, max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS):
        self._client = genai.Client(api_key=api_key)
        self.model = model
        self.max_output_tokens = max_output_tokens

    def build_contents(self, request: PromptRequest) -> list:
        contents: list = []
        for uri in request.image_parts:
            mime_type, data = decode_data_uri(uri)
            contents.append(types.Part.from_bytes(data=data, mime_type=mime_type))
        contents.append(request.text)
        return contents

    def complete(self, request: PromptRequest) -> str:
        try:
            response = self._client.models.generate_content(
                model=self.model,
                contents=self.build_contents(request),
                config=types.GenerateContentConfig(
                    system_instruction=request.system_instruction,
                    max_output_tokens=self.max_output_tokens,
                ),
            )
        except Exception as e:
            raise RuntimeError(describe_api_error(e, self.model)) from e
        return response.text or ""


def describe_api_error(error: Exception, model: str) -> str:
    """Turn an SDK exception into a hint the user can act on."""
    error_msg = str(error).lower()
    if "api key" in error_msg or "authentication" in error_msg or "401" in error_msg:
        return "Authentication failed. Check your API key."
    if "quota" in error_msg or "429" in error_msg:
        return "API quota exceeded. Try again later."
    if "model" in error_msg or "404" in error_msg:
        return f"Model '{model}' not found or unavailable."
    return str(error)


def build_session(settings: Settings) -> Session:
    """Wire the session to pypdf, urllib, Gemini and the system clipboard."""
    return Session(
        extract_pdf_text=extract_text_from_pdf,
        fetcher=build_fetch_provider(settings),
        make_client=lambda api_key: GeminiCompletionClient(
            api_key, model=settings.model, max_output_tokens=settings.max_output_tokens
        ),
        copy_to_clipboard=pyperclip.copy,
        api_key=settings.api_key,
    )


# === TERMINAL OUTPUT ===
def print_banner(title: str) -> None:
    """Print a clearly labeled section header to terminal."""
    print(f"\n{'=' * 60}")
    print(f"=== {title} ===")
    print("=" * 60)


def report_error(session: Session) -> bool:
    """Print the session's current error, if any. Returns True when one was shown."""
    if session.error:
        print(f"ERROR: {session.error}", file=sys.stderr)
        return True
    return False


def print_status(session: Session) -> None:
    bundle = session.bundle
    print(f"Phase: {session.phase.value}")
    if bundle.is_empty():
        print("Nothing collected yet.")
        return
    print(f"Resume text: {len(bundle.resume_text)} chars")
    print(f"Images: {', '.join(image.name for image in bundle.images) or '[none]'}")
    print(f"Website: {'fetched' if session.website_fetched else '[not fetched]'}")


def play_reveal(session: Session, tick_seconds: float) -> None:
    """Print the answers one character per tick until the reveal completes."""
    print_banner("ANSWERS")
    if not session.qa_pairs:
        print("No questions were found in the screenshots.")
    for char in session.reveal():
        print(char, end="", flush=True)
        if tick_seconds:
            time.sleep(tick_seconds)
    print("\n")


def run_submit(session: Session, settings: Settings) -> bool:
    """Submit and, on success, reveal the answers. Returns True on success."""
    if not session.can_submit:
        print("WARNING: A request is already in progress or answers are shown; use `reset` first.")
        return False
    if not session.has_api_key:
        session.submit()
        report_error(session)
        return False
    print(f"\nSending {len(session.bundle.images)} image(s) to {settings.model}...")
    with Spinner("Gemini answering questions"), timed_section("Gemini API"):
        pairs = session.submit()
    if pairs is None:
        report_error(session)
        return False
    play_reveal(session, settings.reveal_tick_seconds)
    return True


def handle_command(session: Session, settings: Settings, line: str) -> bool:
    """Run one interactive command. Returns False when the user wants to quit."""
    try:
        words = shlex.split(line)
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return True
    if not words:
        return True

    command, arguments = words[0].lower(), words[1:]
    if command in ("quit", "exit"):
        return False
    if command == "help":
        print(HELP_TEXT)
    elif command == "status":
        print_status(session)
    elif command == "resume":
        session.add_resumes(Path(arg) for arg in arguments)
        if not report_error(session):
            print(f"Resume text: {len(session.bundle.resume_text)} chars")
    elif command == "image":
        session.add_images(Path(arg) for arg in arguments)
        if not report_error(session):
            print(f"Images: {len(session.bundle.images)}")
    elif command == "url":
        with timed_section("Website fetch"):
            session.fetch_website(" ".join(arguments))
        if not report_error(session):
            print("Website text fetched.")
    elif command == "submit":
        run_submit(session, settings)
        if session.phase is Phase.DONE:
            print("Use `copy N` to copy an answer, or `reset` to start over.")
    elif command == "copy":
        if len(arguments) != 1 or not arguments[0].isdigit():
            print("ERROR: Usage: copy N", file=sys.stderr)
            return True
        if session.copy_answer(int(arguments[0]) - 1) is not None:
            print("Copied to clipboard!")
        else:
            report_error(session)
    elif command == "reset":
        session.reset()
        print("Session cleared.")
    else:
        print(f"ERROR: Unknown command '{command}'. Type `help` for commands.", file=sys.stderr)
    return True


def run_interactive(session: Session, settings: Settings) -> None:
    """Read commands until quit or end of input."""
    print(HELP_TEXT)
    while True:
        try:
            line = input(f"\n[{session.phase.value}]> ")
        except EOFError:
            break
        if not handle_command(session, settings, line):
            break


def load_initial_inputs(session: Session, args: argparse.Namespace) -> None:
    """Apply inputs given on the command line. Problems are warnings only."""
    if args.resume_pdf:
        session.add_resumes(Path(p) for p in args.resume_pdf)
        if session.error:
            print(f"WARNING: {session.error}", file=sys.stderr)
    if args.image:
        session.add_images(Path(p) for p in args.image)
        if session.error:
            print(f"WARNING: {session.error}", file=sys.stderr)
    if args.url:
        with timed_section("Website fetch"):
            session.fetch_website(args.url)
        if session.error:
            print(f"WARNING: {session.error}", file=sys.stderr)


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = parse_args(argv)

    try:
        settings = resolve_settings(args)
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)

    if args.batch and not settings.api_key:
        print("ERROR: No API key provided.", file=sys.stderr)
        print("Set GEMINI_API_KEY environment variable or use --api-key argument.", file=sys.stderr)
        sys.exit(1)
    if not settings.api_key:
        print("WARNING: No API key configured; submit will fail until GEMINI_API_KEY is set.", file=sys.stderr)

    print("-" * 60)
    print(f"Model: {settings.model}")
    print(f"Website relay: {settings.relay_url or '[direct]'}")
    print("-" * 60)

    session = build_session(settings)
    load_initial_inputs(session, args)

    if args.batch:
        if not run_submit(session, settings):
            sys.exit(1)
        return

    try:
        run_interactive(session, settings)
    except KeyboardInterrupt:
        print("\nInterrupted.")


if __name__ == "__main__":
    main()
