import logging
import random

import uvicorn
from fastapi import FastAPI

from src.admin.interfaces.admin_api import build_admin_router
from src.config.settings import settings
from src.execution.domain.command import CallableCommand, CallableUndoableCommand, Command
from src.execution.runtime.command_engine import CommandEngine
from src.execution.serialization import CommandTypeRegistry


class FlakyNotificationCommand(Command):
    """Fails about half of the time to exercise retries and dead letters."""

    command_type = "dev_flaky_notification"

    def execute(self):
        if random.random() < 0.5:
            raise ConnectionError(f"notification gateway unavailable for {self.payload.get('recipient')}")


def build_dev_engine() -> CommandEngine:
    registry = CommandTypeRegistry()
    registry.register(FlakyNotificationCommand)
    return CommandEngine.from_settings(settings, registry=registry)


def seed(engine: CommandEngine) -> None:
    for idx in range(5):
        engine.enqueue(
            FlakyNotificationCommand({"recipient": f"user-{idx}"}, max_retries=2),
            priority=idx % 2,
        )
    engine.enqueue(CallableCommand(lambda: print("report generated"), name="generate-report"), priority=5)

    document = {"title": "draft"}

    def rename(title):
        previous = document["title"]
        return CallableUndoableCommand(
            lambda: document.__setitem__("title", title),
            lambda: document.__setitem__("title", previous),
            name=f"rename to {title}",
        )

    engine.execute_command(rename("final"), session_id="dev")
    engine.execute_command(rename("published"), session_id="dev")
    engine.undo(session_id="dev")
    print(f"Document title after undo: {document['title']}")


def main(host: str = "127.0.0.1", port: int = 8000):
    logging.basicConfig(level=settings.LOG_LEVEL.upper())
    engine = build_dev_engine()
    seed(engine)

    app = FastAPI(title="command-engine-dev")
    app.include_router(build_admin_router(engine))
    try:
        uvicorn.run(app, host=host, port=port)
    finally:
        dropped = engine.close()
        print(f"Engine closed; {len(dropped)} queued commands dropped.")


if __name__ == "__main__":
    main()
