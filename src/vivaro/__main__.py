"""Entry point: python -m vivaro [serve|desktop]

- "serve":   API server only (what the desktop shell spawns)
- "desktop": Supervise a server process and open the UI in a browser
"""

from __future__ import annotations

import asyncio
import logging
import sys
import webbrowser

from vivaro.config import VivaroConfig, load_config


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _run_serve() -> None:
    """Server mode: API and static uploads until SIGTERM/SIGINT."""
    config = load_config()
    _setup_logging(config.log_level)

    from vivaro.daemon import VivaroDaemon

    daemon = VivaroDaemon(config)
    asyncio.run(daemon.run())


async def _desktop(config: VivaroConfig) -> int:
    from vivaro.supervisor import ServerSupervisor

    supervisor = ServerSupervisor(config)
    await supervisor.start()
    try:
        if not await supervisor.wait_until_ready():
            print("Vivaro server failed to start.", file=sys.stderr)
            return 1
        if config.desktop.open_browser:
            webbrowser.open(config.base_url)
        print(f"Vivaro running at {config.base_url} (Ctrl-C to quit)")
        await asyncio.Event().wait()
    finally:
        await supervisor.stop()
    return 0


def _run_desktop() -> None:
    config = load_config()
    _setup_logging(config.log_level)
    try:
        code = asyncio.run(_desktop(config))
    except KeyboardInterrupt:
        code = 0
    sys.exit(code)


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else "serve"

    if cmd == "serve":
        _run_serve()
    elif cmd == "desktop":
        _run_desktop()
    else:
        print("Usage: python -m vivaro [serve|desktop]")
        print("  serve    API server (default)")
        print("  desktop  Start the server and open the UI")
        sys.exit(1)


if __name__ == "__main__":
    main()
