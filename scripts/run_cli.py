"""Interactive CLI for talking to the grocery router without the web UI.

Usage:
    python scripts/run_cli.py [user_id]
"""

import asyncio
import os
import sys

# Ensure the project root is on the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from grocery_router.logging_config import setup_logging  # noqa: E402
from grocery_router.messages import is_ephemeral, message_text  # noqa: E402
from grocery_router.runner import SupervisorAgent  # noqa: E402


async def chat_loop(agent: SupervisorAgent) -> None:
    session_id = "cli-session"

    while True:
        try:
            user_input = input("\033[1;36mYou:\033[0m ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\nGoodbye!")
            break

        if not user_input:
            continue
        if user_input.lower() in ("quit", "exit"):
            print("Goodbye!")
            break
        if user_input.lower() == "/reset":
            await agent.clear_session(session_id)
            print("Session cleared.\n")
            continue

        print()

        try:
            async for update in agent.stream(user_input, session_id):
                for node, fragment in update.items():
                    for entry in (fragment or {}).get("messages") or []:
                        text = message_text(entry)
                        # Show progress updates
                        if is_ephemeral(entry):
                            print(f"  \033[2m{text}\033[0m")
                        # Skip the planner's verdict
                        elif entry.get("agent") == "planner":
                            continue
                        elif entry.get("role") == "assistant" and text:
                            print(f"\033[1;35m{node}:\033[0m {text}")

        except Exception as e:
            print(f"\033[1;31mError:\033[0m {e}")

        print()


def main():
    """Run an interactive chat loop in the terminal."""
    setup_logging(level="WARNING")
    user_id = sys.argv[1] if len(sys.argv) > 1 else "cli-user"

    print("=" * 60)
    print("  🛒 Grocery Router — CLI Mode")
    print("  Type 'quit' or 'exit' to stop, '/reset' to start over.")
    print("=" * 60)
    print()

    asyncio.run(chat_loop(SupervisorAgent(user_id)))


if __name__ == "__main__":
    main()
