import json
import sys
from pathlib import Path
from time import time
from typing import Callable

import anyio
from dotenv import load_dotenv
from loguru import logger

from elicit.agents.orchestrator import ClarificationEngine
from elicit.agents.types import EngineResult, SessionNotFoundError
from elicit.core.session_store import SessionStore
from elicit.utils.env_cfg import load_path_env
from elicit.utils.logging_cfg import setup_logging

HELP = "Commands: /reset (start over), /export (save session as JSON), /quit (exit)"


def _store_output(filename: str, data: dict, output_path: str | Path) -> Path:
    """
    Stores the output data to a JSON file.

    Args:
        filename (str): The name of the output file (without extension).
        data (dict): The data to store.
        output_path (str | Path): The directory to store the output file.

    Returns:
        Path: The written file.
    """
    if not isinstance(output_path, Path):
        output_path = Path(output_path).expanduser()

    if not output_path.exists():
        logger.info("Creating output directory at {}", output_path)
        output_path.mkdir(parents=True, exist_ok=True)

    target = output_path / f"{filename}.json"
    with open(target, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)
    logger.info("Results stored in {}", target)
    return target


def render(result: EngineResult) -> str:
    """
    Format an engine reply for the terminal.

    Args:
        result (EngineResult): The reply.

    Returns:
        str: The text to print.
    """
    lines = [result.response]
    if result.requirement_document is not None:
        lines.append(json.dumps(result.requirement_document, ensure_ascii=False, indent=2))
    lines.append(
        f"[{result.status} | {result.phase} | confidence {result.confidence:.2f}]"
    )
    return "\n\n".join(lines)


async def chat(
    engine: ClarificationEngine,
    output_path: str | Path,
    read: Callable[[str], str] = input,
    write: Callable[[str], None] = print,
) -> str | None:
    """
    Run the interactive clarification loop until ``/quit`` or end of input.

    Args:
        engine (ClarificationEngine): The engine to talk to.
        output_path (str | Path): Directory for ``/export`` files.
        read (Callable[[str], str], optional): Line reader. Defaults to input.
        write (Callable[[str], None], optional): Line writer. Defaults to print.

    Returns:
        str | None: The last active session id.
    """
    session_id: str | None = None
    write(HELP)
    while True:
        try:
            line = (await anyio.to_thread.run_sync(read, "you> ")).strip()
        except EOFError:
            break
        if not line:
            continue
        if line == "/quit":
            break
        if line == "/reset":
            if session_id is not None:
                session_id = await engine.reset_conversation(session_id)
            write("Session reset.")
            continue
        if line == "/export":
            if session_id is None:
                write("Nothing to export yet.")
                continue
            try:
                snapshot = engine.export_conversation(session_id)
            except SessionNotFoundError:
                write("Session expired.")
                session_id = None
                continue
            target = _store_output(
                f"{int(time())}_{session_id}", snapshot, output_path=output_path
            )
            write(f"Exported to {target}")
            continue

        result = await engine.process_message(line, session_id=session_id)
        session_id = result.conversation_id
        write(render(result))
    return session_id


def main() -> None:
    """
    Main entry point for the CLI. Starts a store with its sweeper and runs the chat loop.
    """
    load_dotenv()
    setup_logging()
    path_config = load_path_env()
    with SessionStore() as store:
        engine = ClarificationEngine(store)
        anyio.run(chat, engine, path_config.results)
    logger.info("Chat session closed.")


if __name__ == "__main__":
    sys.path.append(str(Path(__file__).parents[2].resolve()))
    main()
