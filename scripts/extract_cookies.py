"""Capture browser cookies for a rendered-page source.

Usage:
    .venv/bin/python scripts/extract_cookies.py https://recruitment.example.gov.in
    .venv/bin/python scripts/extract_cookies.py URL --output config/cookies.json

Opens a Chromium window on the given URL. Get past any consent wall or
captcha manually, then press Enter in the terminal. Cookies are saved as a
JSON array; point ``browser.cookies_path`` in settings.yaml at the file.
"""

import argparse
import json
from pathlib import Path

from patchright.sync_api import sync_playwright

DEFAULT_OUTPUT = Path("config/cookies.json")


def main() -> None:
    parser = argparse.ArgumentParser(description="Save cookies for a rendered-page source")
    parser.add_argument("url", help="Page to open")
    parser.add_argument(
        "--output",
        type=Path,
        default=DEFAULT_OUTPUT,
        help=f"Where to write the cookies (default: {DEFAULT_OUTPUT})",
    )
    args = parser.parse_args()

    with sync_playwright() as p:
        browser = p.chromium.launch(headless=False)
        context = browser.new_context()
        page = context.new_page()
        page.goto(args.url)

        input("\n>>> Load the page as a visitor would, then press Enter here to save cookies...")

        cookies = context.cookies()
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(json.dumps(cookies, indent=2))
        print(f"Saved {len(cookies)} cookies to {args.output}")

        browser.close()


if __name__ == "__main__":
    main()
