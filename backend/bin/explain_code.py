#!/usr/bin/env python3
"""Explain a source file through the Code Explainer API.

Reads EXPLAIN_API_BASE_URL and the CLIENT_* quota settings from backend/.env
or the environment. Exits with 2 when the request is rate limited.
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx

    from code_explainer.core.config import Settings

SUFFIX_LANGUAGES = {
    ".js": "javascript",
    ".mjs": "javascript",
    ".jsx": "jsx",
    ".ts": "typescript",
    ".tsx": "tsx",
    ".html": "html",
    ".css": "css",
    ".scss": "scss",
    ".less": "less",
    ".json": "json",
    ".yml": "yaml",
    ".yaml": "yaml",
    ".md": "markdown",
    ".graphql": "graphql",
    ".gql": "graphql",
    ".py": "python",
}


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("path", nargs="?", help="file to explain; reads stdin when omitted")
    parser.add_argument("--language", help="language hint sent with the code")
    return parser.parse_args(argv)


async def main(
    argv: list[str] | None = None,
    *,
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> int:
    args = _parse_args(argv)

    from code_explainer.client import (
        ClientRateLimitExceeded,
        ExplainClient,
        ExplainRequestError,
        ServerRateLimitExceeded,
    )
    from code_explainer.core.config import get_settings

    if args.path:
        source = Path(args.path)
        code = source.read_text(encoding="utf-8")
        language = args.language or SUFFIX_LANGUAGES.get(source.suffix.lower())
    else:
        code = sys.stdin.read()
        language = args.language
    if not language:
        print("Could not detect programming language. Please pass --language.")
        return 1

    settings = settings or get_settings()
    async with ExplainClient.from_settings(settings, transport=transport) as client:
        try:
            result = await client.explain(code, language)
        except (ClientRateLimitExceeded, ServerRateLimitExceeded) as exc:
            print(str(exc))
            return 2
        except (ExplainRequestError, ValueError) as exc:
            print(f"Error: {exc}")
            return 1

    feedback = result.response
    print(f"Language: {feedback.analyzed_language}\n")
    print(feedback.summary)
    if feedback.context:
        print(f"\n{feedback.context}")
    for line in feedback.line_by_line:
        span = f"{line.line_start}" if line.line_start == line.line_end else f"{line.line_start}-{line.line_end}"
        print(f"\n[{span}] {line.line_text}\n    {line.line_explanation}")
    for article in feedback.further_reading:
        print(f"\n* {article.title} <{article.url}>\n  {article.description}")
    print(f"\nRemaining requests: {result.remaining_requests}")
    return 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
