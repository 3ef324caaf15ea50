"""CLI entry point for the CoverageX quote agent.

A terminal chat loop that drives the same tool-calling agent as the webhook,
without Chatwoot.  For production, use the FastAPI server
(coverage_agent/server.py).

Usage:
    coverage-agent-cli                    # quiet, tool profile from AGENT_PROFILE
    coverage-agent-cli --profile lookup   # year/make lookups only
    coverage-agent-cli --debug            # also shows CoverageX and Anthropic calls
"""

from __future__ import annotations

import argparse
import logging
import uuid

from dotenv import load_dotenv

from coverage_agent.agent import ConversationAgent, create_conversation_agent
from coverage_agent.tools.catalog import PROFILES

logger = logging.getLogger(__name__)

COMMANDS = {
    "new": "start a new conversation",
    "session": "show the pricing session and stored quote",
    "quit": "exit",
}


def _configure_logging(debug: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    if not debug:
        for noisy in ("httpx", "httpcore", "anthropic"):
            logging.getLogger(noisy).setLevel(logging.WARNING)
    logging.getLogger("coverage_agent").setLevel(logging.DEBUG if debug else logging.INFO)


def _new_conversation_id() -> str:
    conversation_id = f"cli-{uuid.uuid4().hex[:12]}"
    logger.info("Started new conversation: %s", conversation_id)
    return conversation_id


def _show_session(agent: ConversationAgent, conversation_id: str) -> None:
    session = agent.store.get_session(conversation_id)
    if session is None:
        print("\n>> No pricing session yet.\n")
        return
    print(f"\n>> Session ref {session.ref} ({session.year}, {session.state})")
    if session.quote is not None:
        quote = session.quote
        print(f">> Quote: {quote.year} {quote.make} {quote.model}, {quote.odometer} miles")
    print()


def main():
    """Run the interactive CLI chat loop."""
    parser = argparse.ArgumentParser(description="CoverageX quote agent CLI")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    parser.add_argument(
        "--profile", choices=sorted(PROFILES),
        help="Tool profile to run (defaults to AGENT_PROFILE)",
    )
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    agent = (
        create_conversation_agent(profile=args.profile)
        if args.profile
        else create_conversation_agent()
    )

    print("\n" + "=" * 60)
    print("  CoverageX Quote Agent - CLI Chat")
    print("=" * 60)
    for name, help_text in COMMANDS.items():
        print(f"  {name:<8} {help_text}")
    print("=" * 60 + "\n")

    conversation_id = _new_conversation_id()
    while True:
        try:
            user_input = input("You: ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nGoodbye!")
            break

        command = user_input.lower()
        if not user_input:
            continue
        if command in ("exit", "quit", "q"):
            print("\nGoodbye!")
            break
        if command == "new":
            conversation_id = _new_conversation_id()
            print(f"\n>> New conversation started: {conversation_id}\n")
            continue
        if command == "session":
            _show_session(agent, conversation_id)
            continue

        try:
            reply = agent.reply(conversation_id, user_input, request_id="cli")
        except KeyboardInterrupt:
            print("\n\nGoodbye!")
            break
        except Exception as e:
            logger.exception("Error processing message")
            print(f"\nAgent: Sorry, something went wrong: {e}")
            print("       Try again, or type 'new' to start over.\n")
            continue
        print(f"\nAgent: {reply}\n")


if __name__ == "__main__":
    main()
