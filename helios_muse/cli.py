"""CLI entry points for helios-muse."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from datetime import datetime
from pathlib import Path

from helios_muse import __version__
from helios_muse.client import DEFAULT_ENDPOINT, DEFAULT_TIMEOUT, MuseClient, MuseConfig
from helios_muse.conversation import QUICK_ACTIONS, Conversation, quick_prompt
from helios_muse.errors import CreditsExhaustedError, RateLimitedError
from helios_muse.transcript import TranscriptWriter

# Streamed text must reach the terminal as it arrives
if hasattr(sys.stdout, "reconfigure"):
    sys.stdout.reconfigure(line_buffering=True)

log = logging.getLogger("helios-muse")

EXIT_WORDS = frozenset({"exit", "quit", "/exit", "/quit"})


class StreamPrinter:
    """Writes only the newly arrived suffix of each full-text update."""

    def __init__(self, out=None):
        self.out = out or sys.stdout
        self.printed = 0
        self.text = ""

    def __call__(self, text: str) -> None:
        self.out.write(text[self.printed :])
        self.out.flush()
        self.printed = len(text)
        self.text = text


async def send_turn(client: MuseClient, conversation: Conversation, text: str, out=None) -> int:
    """Send one user turn and print the reply. Returns 0, or 1 when the turn was rejected."""
    out = out or sys.stdout
    printer = StreamPrinter(out)
    out.write("muse> ")
    try:
        reply = await client.chat(conversation, text, on_update=printer)
    except RateLimitedError:
        out.write("\n⏳ Rate limited: Please wait a moment and try again.\n")
        return 1
    except CreditsExhaustedError:
        out.write("\n💳 Credits exhausted: AI credits are low. Please try again later.\n")
        return 1
    if reply.content != printer.text:
        # Apology after a failed or cut-off reply
        if printer.text:
            out.write("\n")
        out.write(reply.content)
    out.write("\n")
    return 0


def _read_line(prompt: str) -> str | None:
    try:
        return input(prompt)
    except EOFError:
        return None


async def repl(client: MuseClient, conversation: Conversation) -> int:
    print(f"muse> {conversation.messages[0].content}")
    print(f"   Quick actions: {', '.join('/' + a for a in QUICK_ACTIONS)}  (exit to leave)")
    loop = asyncio.get_running_loop()
    while True:
        line = await loop.run_in_executor(None, _read_line, "you> ")
        if line is None or line.strip().lower() in EXIT_WORDS:
            return 0
        text = line.strip()
        if not text:
            continue
        if text.startswith("/"):
            prompt = quick_prompt(text[1:])
            if not prompt:
                print(f"Unknown quick action: {text}")
                continue
            print(f"you> {prompt}")
            text = prompt
        await send_turn(client, conversation, text)


async def async_main(args: argparse.Namespace) -> int:
    writer: TranscriptWriter | None = None
    file_handler: logging.Handler | None = None
    if not args.no_transcript:
        output_dir = Path(args.transcript_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        writer = TranscriptWriter(output_dir / f"transcript_{ts}.jsonl")

        # Logs go to a file so they do not interleave with streamed replies
        file_handler = logging.FileHandler(output_dir / f"transcript_{ts}.log", encoding="utf-8")
        file_handler.setFormatter(logging.Formatter("%(asctime)s %(message)s", datefmt="%H:%M:%S"))
        log.addHandler(file_handler)
        log.setLevel(logging.DEBUG if args.verbose else logging.INFO)
    else:
        # Nothing should reach the terminal mid-reply
        file_handler = logging.NullHandler()
        log.addHandler(file_handler)
        log.propagate = False
    logging.getLogger("aiohttp").setLevel(logging.WARNING)

    config = MuseConfig(endpoint=args.endpoint, api_key=args.api_key, timeout=args.timeout)
    conversation = Conversation()
    exit_code = 0
    try:
        async with MuseClient(config, writer=writer) as client:
            first = args.message or (quick_prompt(args.quick) if args.quick else None)
            if first:
                print(f"you> {first}")
                exit_code = await send_turn(client, conversation, first)
            if not args.message:
                exit_code = await repl(client, conversation)
    finally:
        if file_handler is not None:
            log.removeHandler(file_handler)
            file_handler.close()
            log.propagate = True
        if writer is not None:
            stats = writer.close()
            print("\n📊 Session summary:")
            print(
                f"   Turns: {stats['turns']} ({stats['completed']} completed, "
                f"{stats['aborted']} aborted, {stats['failed']} failed)"
            )
            print(f"   Transcript: {writer.path}")
    return exit_code


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="helios-muse",
        description="Chat with Helios Muse, the art companion, from the terminal.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--endpoint",
        default=os.environ.get("HELIOS_MUSE_ENDPOINT", DEFAULT_ENDPOINT),
        help=f"Chat endpoint URL (default: $HELIOS_MUSE_ENDPOINT or {DEFAULT_ENDPOINT})",
    )
    parser.add_argument(
        "--api-key",
        default=os.environ.get("HELIOS_MUSE_API_KEY", ""),
        help="Bearer key sent to the endpoint (default: $HELIOS_MUSE_API_KEY)",
    )
    parser.add_argument(
        "--transcript-dir",
        default=os.environ.get("HELIOS_MUSE_TRANSCRIPT_DIR", "./.helios-muse"),
        help="Transcript and log directory (default: ./.helios-muse)",
    )
    parser.add_argument("--no-transcript", action="store_true", help="Do not write a transcript or log file")
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT,
        help=f"Seconds to wait for the next chunk before giving up (default: {DEFAULT_TIMEOUT:g})",
    )
    parser.add_argument("-q", "--quick", choices=sorted(QUICK_ACTIONS), help="Start by sending a quick-action prompt")
    parser.add_argument("-m", "--message", help="Send one message, print the reply and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log skipped payloads")
    return parser.parse_args(argv)


def main_entry() -> None:
    """Entry point for the helios-muse CLI."""
    args = parse_args()
    try:
        code = asyncio.run(async_main(args))
    except KeyboardInterrupt:
        code = 0
    sys.exit(code)
