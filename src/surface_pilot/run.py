# run.py
# Entry point. Config and wiring only — no logic lives here.
#
# Oracle model strings are any OpenRouter-supported vision model by default.
# https://openrouter.ai/models

import argparse
import logging
import signal
import sys
from contextlib import contextmanager

from rich.logging import RichHandler
from rich.markup import escape

from surface_pilot import display
from surface_pilot.agent import AgentLoop, LoopSettings
from surface_pilot.config import Settings
from surface_pilot.errors import SurfacePilotError
from surface_pilot.oracle import create_oracle
from surface_pilot.policy import PolicyStore
from surface_pilot.surfaces import BrowserSurface, DesktopSurface

VIEWPORT = {"width": 1280, "height": 800}


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=display.console, rich_tracebacks=True)],
    )


@contextmanager
def _browser_surface(start_url: str | None, headless: bool, timeout: float):
    from playwright.sync_api import sync_playwright

    with sync_playwright() as playwright:
        browser = playwright.chromium.launch(headless=headless)
        try:
            page = browser.new_page(viewport=VIEWPORT)
            # Bounds every page call, screenshots included.
            page.set_default_timeout(timeout * 1000)
            if start_url:
                page.goto(start_url, wait_until="domcontentloaded")
            yield BrowserSurface(page)
        finally:
            browser.close()


@contextmanager
def _desktop_surface():
    yield DesktopSurface()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="surface-pilot",
        description="Drive a browser page or the desktop toward a natural-language goal.",
    )
    parser.add_argument("goal", help="What the agent should accomplish.")
    parser.add_argument("--surface", choices=("browser", "desktop"), default="browser")
    parser.add_argument("--start-url", default=None, help="Browser only: page to open first.")
    parser.add_argument("--max-steps", type=int, default=None, help="Override the policy budget.")
    parser.add_argument("--policy", default=None, help="Path to the policy JSON file.")
    parser.add_argument("--headless", action="store_true", help="Browser only: no window.")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings.from_env()
    _configure_logging(settings.log_level)

    if not settings.api_key:
        display.console.print(
            "[bold red]No API key.[/bold red] Set SURFACE_PILOT_API_KEY or OPENROUTER_API_KEY."
        )
        return 2
    if args.max_steps is not None and args.max_steps < 1:
        display.console.print("[bold red]--max-steps must be positive.[/bold red]")
        return 2

    policy_store = PolicyStore(args.policy or settings.policy_file)
    oracle = create_oracle(settings)
    display.banner(oracle.name, args.surface, str(policy_store.path))

    if args.surface == "browser":
        surface_cm = _browser_surface(args.start_url, args.headless, settings.perception_timeout)
    else:
        surface_cm = _desktop_surface()

    with surface_cm as surface:
        loop = AgentLoop(
            surface,
            oracle,
            policy_store,
            settings=LoopSettings(max_steps=args.max_steps, live_policy=settings.live_policy),
        )
        loop.events.subscribe(display.render)
        previous = signal.signal(signal.SIGINT, lambda *_: loop.stop())
        try:
            result = loop.run(args.goal)
        except SurfacePilotError as exc:
            display.console.print(f"[bold red]{escape(str(exc))}[/bold red]")
            return 2
        finally:
            signal.signal(signal.SIGINT, previous)

    display.final_result(result)
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
