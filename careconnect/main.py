"""Console entry point for CareConnect.

Feeds typed lines through the real orchestrator as if they were
ChannelTalk webhook events, with in-memory storage and a transport that
prints bot messages to the terminal.  For production, use the FastAPI
server (``careconnect/server.py``).

Usage:
    python -m careconnect.main            # normal mode (quiet)
    python -m careconnect.main --debug    # debug mode (shows pipeline logs)

Commands:
    /manager <text>   send <text> as the clinic operator (``//`` hands back to the AI)
    new               start over as a new user
    quit              exit
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import uuid
from typing import Any

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

MANAGER_PREFIX = "/manager "


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )
    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("careconnect").setLevel(logging.DEBUG if debug else logging.INFO)


class ConsoleTransport:
    """Chat transport that prints bot messages instead of posting them."""

    configured = True

    async def post_message(self, user_chat_id: str, text: str, message_id: str) -> dict[str, Any]:
        print(f"\nCareConnect: {text}\n")
        return {"message": {"id": message_id}}


def build_payload(user_id: str, text: str, person_type: str = "user") -> dict[str, Any]:
    """A ChannelTalk-shaped webhook body for one typed line."""
    return {
        "entity": {
            "id": str(uuid.uuid4()),
            "personType": person_type,
            "plainText": text,
            "blocks": [{"type": "text", "value": text}],
        },
        "refers": {"userChat": {"id": f"chat-{user_id}", "userId": user_id}},
    }


async def _chat_loop(debug: bool) -> None:
    from careconnect.orchestrator import create_orchestrator
    from careconnect.services.storage import InMemoryDocumentStore

    orchestrator = create_orchestrator(store=InMemoryDocumentStore(), transport=ConsoleTransport())
    user_id = f"console-{uuid.uuid4().hex[:8]}"
    logger.info("Started console session as %s", user_id)

    while True:
        try:
            line = (await asyncio.to_thread(input, "You: ")).strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nGoodbye!")
            return

        if not line:
            continue
        if line.lower() in ("exit", "quit", "q"):
            print("\nGoodbye!")
            return
        if line.lower() == "new":
            user_id = f"console-{uuid.uuid4().hex[:8]}"
            print(f"\n>> New user: {user_id}\n")
            continue

        if line.startswith(MANAGER_PREFIX):
            payload = build_payload(user_id, line[len(MANAGER_PREFIX):].strip(), "manager")
        else:
            payload = build_payload(user_id, line)

        try:
            outcome = await orchestrator.handle(payload)
        except Exception as e:
            logger.exception("Error processing message")
            print(f"\nCareConnect: something went wrong: {e}\n")
            continue
        if debug or outcome.value != "ok":
            print(f"   [{outcome.value}]")


def main():
    """Run the interactive console."""
    parser = argparse.ArgumentParser(description="CareConnect console")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    print("\n" + "=" * 60)
    print("  CareConnect AI - console")
    print("=" * 60)
    print("  Type a message and press Enter.")
    print("  Commands: '/manager <text>', 'new', 'quit'.")
    print("=" * 60 + "\n")

    asyncio.run(_chat_loop(args.debug))


if __name__ == "__main__":
    main()
