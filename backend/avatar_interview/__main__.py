import argparse
import asyncio
import logging
import sys

from avatar_interview.errors import InterviewEngineError
from avatar_interview.orchestrator import SessionOrchestrator
from avatar_interview.schemas import StartInterviewRequest
from core.config import INTERVIEW_DURATION_SEC

logger = logging.getLogger("avatar_interview")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a voice-driven avatar interview session")
    parser.add_argument("--full-name", default="")
    parser.add_argument("--email", default="")
    parser.add_argument("--booking-code", default="")
    parser.add_argument("--duration-sec", type=int, default=INTERVIEW_DURATION_SEC)
    parser.add_argument("--console", action="store_true", help="Serve the console relay instead of running headless")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=9020)
    return parser.parse_args(argv)


async def run_headless(args: argparse.Namespace) -> int:
    details = StartInterviewRequest(full_name=args.full_name, email=args.email, booking_code=args.booking_code)
    orchestrator = SessionOrchestrator(duration_sec=args.duration_sec)
    try:
        reason = await orchestrator.run(details)
    except InterviewEngineError as exc:
        logger.error("Interview aborted: %s", exc)
        return 1
    logger.info("Interview finished | reason=%s", reason)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    if args.console:
        import uvicorn

        uvicorn.run("avatar_interview.console.app:app", host=args.host, port=args.port)
        return 0

    if not (args.full_name and args.email and args.booking_code):
        logger.error("--full-name, --email and --booking-code are required in headless mode")
        return 2

    try:
        return asyncio.run(run_headless(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
