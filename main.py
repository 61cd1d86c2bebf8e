"""Simple CLI for multi-turn conversations with the accounting assistant."""

from __future__ import annotations

import asyncio
import mimetypes
import re
from pathlib import Path
from typing import Any, Dict, List, Tuple

from ledgerAgent.coordinator import stream_turn
from ledgerAgent.runtime import build_application
from ledgerAgent.utils import get_logger, log_error

UPLOAD_DIR = Path("uploads")
FILE_MENTION = re.compile(r"#(\S+\.[A-Za-z0-9]+)")


def parse_file_mentions(text: str) -> Tuple[List[str], str]:
    """Pull ``#kvittering.jpg`` mentions out of the input."""
    names = FILE_MENTION.findall(text)
    cleaned = FILE_MENTION.sub("", text).strip()
    return names, cleaned


def load_file(name: str) -> Dict[str, Any]:
    path = Path(name)
    if not path.exists():
        path = UPLOAD_DIR / name
    if not path.exists():
        raise FileNotFoundError(name)
    media_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    return {"name": path.name, "type": media_type, "data": path.read_bytes()}


async def async_main():
    logger = get_logger()
    app = build_application()
    session = app.new_session()

    print("Regnskapsassistenten er klar.")
    print(f"Oppgave-ID: {session.task_id}")
    print("\nKommandoer:")
    print("  /avslutt        - avslutt")
    print("  /ny             - start en ny oppgave")
    print("  /erstatt        - neste melding erstatter filene i oppgaven")
    print("  /status         - vis oppgave og filer")
    print("Filer legges ved med #filnavn (fra gjeldende mappe eller uploads/).")
    print()

    supersede = False
    try:
        while True:
            try:
                loop = asyncio.get_event_loop()
                user_input = await loop.run_in_executor(None, lambda: input("Du> ").strip())
            except (KeyboardInterrupt, EOFError):
                print("\nHa det!")
                logger.info("Session ended by user")
                break

            if not user_input:
                continue

            command = user_input.lower()
            if command in {"/avslutt", "/quit", "/exit"}:
                print("Ha det!")
                break

            if command == "/ny":
                session = app.new_session()
                supersede = False
                print(f"Ny oppgave: {session.task_id}")
                continue

            if command == "/erstatt":
                supersede = True
                print("[Filene i neste melding erstatter de tidligere]")
                continue

            if command == "/status":
                print(f"\nOppgave: {session.task_id} (versjon {session.version})")
                print(f"Meldinger: {len(session.transcript)}")
                print(session.relay.describe() or "Ingen filer")
                print()
                continue

            names, text = parse_file_mentions(user_input)
            files = []
            for name in names:
                try:
                    files.append(load_file(name))
                except (FileNotFoundError, OSError) as e:
                    log_error(logger, e, f"Loading file {name}")
                    print(f"[Fant ikke filen {name}]")
            if files:
                print(f"[{len(files)} fil(er) lagt ved]")

            async for event in stream_turn(app.coordinator, session, text, files=files or None, supersede=supersede):
                if event.type == "action_call":
                    print(f"[→ {event.data.get('worker')}]")
                elif event.type == "action_result":
                    status = "ok" if event.data.get("success") else "feilet"
                    print(f"[← {event.data.get('worker')}: {status}]")
                elif event.type == "text":
                    print(f"Assistent> {event.data.get('text')}")
                elif event.type == "error":
                    print(f"Assistent> {event.data.get('message')}")
                elif event.type == "done" and event.data.get("result") is not None:
                    session = event.data["result"].session
            supersede = False
    finally:
        await app.aclose()


def main():
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
