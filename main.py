"""TaskPilot - LLM task execution

Simple CLI for running one task execution without the HTTP layer.
"""

import argparse
import asyncio

from taskpilot.agents.executor import TaskExecutor
from taskpilot.config import settings
from taskpilot.models.events import CompletionEvent, ContentChunkEvent, ErrorEvent, SearchResultsEvent
from taskpilot.services.recorder import persist_on_completion
from taskpilot.services.store import create_store


async def run_task(text: str, model: str | None = None, save: bool = False):
    """Execute a task and print its event stream."""
    print(f"Task: {text}")
    print("-" * 50)

    store = create_store()
    executor = TaskExecutor(model=model)
    task_id = None
    if save:
        task = await store.create_task(settings.default_user_id, text, ai_executable=True)
        task_id = task.id

    events = executor.execute_initial(text, task_id=task_id)
    if task_id:
        events = persist_on_completion(
            events,
            store,
            user_id=settings.default_user_id,
            user_text=text,
        )

    try:
        async for event in events:
            if isinstance(event, SearchResultsEvent):
                print(f"\n[*] Search results ({len(event.search_results)}):")
                for i, result in enumerate(event.search_results, 1):
                    print(f"  {i}. {result.title[:80]}")
                    print(f"     {result.url}")
                print()

            elif isinstance(event, ContentChunkEvent):
                print(event.content, end="", flush=True)

            elif isinstance(event, CompletionEvent):
                print(f"\n\n[*] Execution complete ({len(event.response)} chars)")
                if event.execution_id:
                    print(f"   Saved as execution {event.execution_id} on task {task_id}")
                if event.warning:
                    print(f"   [!] {event.warning}")

            elif isinstance(event, ErrorEvent):
                print(f"\n[!] Error: {event.error}: {event.details}")
    finally:
        await store.close()


def main():
    parser = argparse.ArgumentParser(description="TaskPilot task execution")
    parser.add_argument("--task", "-t", required=True, help="Task text to execute")
    parser.add_argument("--model", "-m", help="Model to use (default: from config)")
    parser.add_argument("--save", action="store_true", help="Create the task and persist the execution")

    args = parser.parse_args()

    asyncio.run(run_task(args.task, args.model, args.save))


if __name__ == "__main__":
    main()
