#!/usr/bin/env python3
"""
Console Mock Interviewer

Runs one realtime mock interview from the terminal. Speak into the
microphone or type answers; the transcript and stage changes are printed
as they arrive.

Commands:
    /next        advance to the next question (finishes after the last)
    /finish      finish the interview at the last question
    /transcript  print the transcript so far
    /log         print the technical event log
    /stop        end the session and exit
    anything else is sent as a typed message
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from mock_interviewer import (
    InterviewError,
    InterviewSession,
    NoticeType,
    SessionNotice,
    TransportError,
    load_profile,
    load_realtime_config,
)
from mock_interviewer.ledger import EventLedger

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_SETUP_FAILED = 1
EXIT_INTERRUPTED = 130

COMMANDS = ("next", "finish", "transcript", "log", "stop")


def parse_command(line: str) -> tuple[str, str]:
    """
    Split one input line into (command, argument).

    Returns ("text", line) for plain text, ("", "") for blank lines, and
    ("unknown", name) for unrecognized slash commands.
    """
    stripped = line.strip()
    if not stripped:
        return "", ""
    if not stripped.startswith("/"):
        return "text", stripped
    name = stripped[1:].split(maxsplit=1)[0].lower() if len(stripped) > 1 else ""
    if name in COMMANDS:
        return name, ""
    return "unknown", name


def format_transcript(ledger: EventLedger) -> str:
    """Render the transcript view as plain text."""
    lines = []
    for message in ledger.transcript_view():
        speaker = "You" if message.role == "user" else "Interviewer"
        lines.append(f"[{message.timestamp}] {speaker}: {message.content}")
    return "\n".join(lines) or "(no messages yet)"


def format_log(ledger: EventLedger) -> str:
    """Render the technical view as plain text, oldest first."""
    lines = [
        f"{entry.direction}: {entry.event.type} | {entry.event.timestamp}"
        for entry in reversed(ledger.technical_view())
    ]
    return "\n".join(lines) or "(no events yet)"


async def print_notices(session: InterviewSession) -> None:
    """Print stage changes, errors and new transcript messages."""
    queue = session.publisher.subscribe()
    printed: set[tuple[str, str]] = set()
    try:
        while True:
            notice: SessionNotice = await queue.get()
            if notice.notice_type is NoticeType.STAGE:
                print(f"--- {notice.stage} (question {notice.question_index}/"
                      f"{session.profile.question_count})")
            elif notice.notice_type is NoticeType.ERROR:
                print(f"!!! {notice.content}")
            elif notice.notice_type is NoticeType.EVENT:
                for message in session.transcript_view():
                    key = (message.role, message.content)
                    if message.role == "assistant" and key not in printed:
                        printed.add(key)
                        print(f"Interviewer: {message.content}")
    finally:
        session.publisher.unsubscribe(queue)


async def run_console(session: InterviewSession) -> int:
    """Start the session and process stdin commands until /stop or EOF."""
    try:
        await session.start()
    except TransportError as exc:
        logger.error("Could not start the interview: %s", exc)
        return EXIT_SETUP_FAILED

    printer = asyncio.create_task(print_notices(session))
    loop = asyncio.get_running_loop()
    print(f"{session.profile.title} - say hello or type a message. /stop to end.")

    try:
        while session.is_active:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            command, argument = parse_command(line)
            try:
                if command == "text":
                    session.submit_text(argument)
                elif command == "next":
                    session.next_question()
                elif command == "finish":
                    session.finish_interview()
                elif command == "transcript":
                    print(format_transcript(session.ledger))
                elif command == "log":
                    print(format_log(session.ledger))
                elif command == "stop":
                    break
                elif command == "unknown":
                    print(f"Unknown command '/{argument}'. Try: " + ", ".join(f"/{c}" for c in COMMANDS))
            except InterviewError as exc:
                print(f"!!! {exc}")
    finally:
        await session.stop()
        printer.cancel()
        try:
            await printer
        except asyncio.CancelledError:
            pass

    return EXIT_SUCCESS


def main(profile_path: str | None = None) -> int:
    """
    Main entry point for the console interviewer.

    Args:
        profile_path: Interview profile JSON (defaults to env var or bundled profile).

    Returns:
        Exit code.
    """
    config = load_realtime_config()
    profile, resolved_path = load_profile(profile_path or config.profile_path)
    logger.info("Profile: %s (%s)", profile.title, resolved_path)
    logger.info("Token URL: %s", config.token_url)
    logger.info("Model: %s", config.model)

    session = InterviewSession(config, profile)
    try:
        return asyncio.run(run_console(session))
    except KeyboardInterrupt:
        logger.info("Interview interrupted")
        return EXIT_INTERRUPTED


def cli() -> None:
    """Command-line interface entry point with argument parsing."""
    parser = argparse.ArgumentParser(
        description="Run a realtime voice mock interview from the terminal.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Start the credential service first
    python token_server.py

    # Run with the bundled React profile
    python run_interview.py

    # Custom profile
    python run_interview.py --profile ./profiles/python.json

Environment Variables:
    TOKEN_URL               Credential endpoint (default: http://127.0.0.1:3000/token)
    REALTIME_MODEL          Realtime model name
    MICROPHONE_DEVICE       ffmpeg capture device (default: default)
    MICROPHONE_FORMAT       ffmpeg capture format (default: pulse)
    AUDIO_OUTPUT_PATH       Record interviewer audio to this file
    INTERVIEW_PROFILE_PATH  Interview profile JSON
        """,
    )
    parser.add_argument(
        "--profile",
        type=str,
        default=None,
        help="Interview profile JSON (default: bundled React profile)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    sys.exit(main(profile_path=args.profile))


if __name__ == "__main__":
    cli()
