"""Technical Planner

Interactive CLI: describe a goal, answer the clarifying questions, get a plan.
"""

import argparse
import asyncio
import sys

from planner.agents.orchestrator import PlanningOrchestrator
from planner.config import settings
from planner.errors import ConfigurationError
from planner.llm_client import CompletionGateway
from planner.models.messages import Message, Role

HELP = "Commands: /plan to research and write the plan, /undo to drop your last message, /quit to exit."


async def run_planner(
    messages: list[Message],
    gateway: CompletionGateway,
    max_searches: int | None = None,
) -> tuple[str, bool]:
    """Run one orchestrator pass, printing progress. Returns (text, is_error)."""
    orchestrator = PlanningOrchestrator(gateway, max_searches=max_searches)
    text = ""
    failed = False

    async for event in orchestrator.run(messages):
        event_type = event.event.value
        data = event.data

        if event_type == "phase_started":
            print(f"\n[~] {data.get('state')}...")

        elif event_type == "search_completed":
            print(f"  [+] search #{data.get('search_number')}: {data.get('query', '')[:80]}")

        elif event_type == "tool_error":
            print(f"  [!] search #{data.get('search_number')} failed: {data.get('message')}")

        elif event_type == "questions_ready":
            text = data.get("questions", "")

        elif event_type == "synthesis_progress":
            print(".", end="", flush=True)

        elif event_type == "plan_complete":
            text = data.get("plan", "")
            print(f"\n\n[*] Plan complete after {data.get('search_count')} searches")

        elif event_type == "error":
            text = data.get("message", "Unknown error")
            failed = True

    return text, failed


def undo_last_user_message(messages: list[Message]) -> bool:
    """Drop the last user message and any replies that followed it."""
    for index in range(len(messages) - 1, -1, -1):
        if messages[index].role == Role.USER:
            del messages[index:]
            return True
    return False


def interactive(gateway: CompletionGateway, max_searches: int | None) -> None:
    messages: list[Message] = []
    print(HELP)

    while True:
        try:
            line = input("\nyou> ").strip()
        except EOFError:
            break
        if not line:
            continue

        if line == "/quit":
            break
        if line == "/undo":
            if undo_last_user_message(messages):
                print("[-] Removed your last message.")
            else:
                print("[-] Nothing to undo.")
            continue

        if line == "/plan":
            if len(messages) < 2:
                print("[!] Describe your goal and answer the questions first.")
                continue
        else:
            messages.append(Message(role=Role.USER, content=line))
            if len(messages) > 1:
                print("[-] Noted. Add more answers or type /plan.")
                continue

        try:
            text, failed = asyncio.run(run_planner(list(messages), gateway, max_searches))
        except KeyboardInterrupt:
            print("\n[!] Cancelled.")
            continue

        if failed:
            print(f"\n[!] Error: {text}")
            continue

        print(f"\n{text}")
        if len(messages) == 1:
            messages.append(Message(role=Role.ASSISTANT, content=text))


def main():
    parser = argparse.ArgumentParser(description="Technical Planner")
    parser.add_argument("--goal", "-g", help="Ask the clarifying questions for a goal and exit")
    parser.add_argument("--model", "-m", help="Model to use (default: from config)")
    parser.add_argument("--max-searches", type=int, help="Search budget for one plan")

    args = parser.parse_args()

    try:
        gateway = CompletionGateway.from_settings(settings, model=args.model)
    except ConfigurationError as e:
        print(f"[!] {e}", file=sys.stderr)
        sys.exit(1)

    if args.goal:
        text, failed = asyncio.run(
            run_planner([Message(role=Role.USER, content=args.goal)], gateway, args.max_searches)
        )
        print(text)
        sys.exit(1 if failed else 0)

    interactive(gateway, args.max_searches)


if __name__ == "__main__":
    main()
