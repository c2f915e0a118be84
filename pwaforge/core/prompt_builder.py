"""Structured prompts sent to the completion API.

Each prompt is a JSON document so the model sees the task, the rules and
the expected output shape as separate fields rather than one paragraph.
"""

from __future__ import annotations

import json
from collections.abc import Mapping

from pwaforge.models.bundles import REQUIRED_FILES

TASK_CREATE = "create_pwa"
TASK_REWORK = "rework_pwa"
TASK_REWRITE = "rewrite_prompt"

START_MARKER = ">>>>>>> START PROMPT >>>>>>"
END_MARKER = ">>>>>>> END PROMPT >>>>>>"
TRUNCATION_NOTE = "\n... (truncated)"

_CREATE_INSTRUCTIONS = """\
You are a front-end developer who builds Progressive Web Apps.
Build a complete, installable PWA for the request in user_input using only
HTML, CSS and vanilla JavaScript. Everything runs in the browser: no
frameworks, no server code, no external CDNs.

- Layout: TailwindCSS loaded locally with <script src='tailwind.min.js'></script>;
  put extra rules in styles.css.
- Offline: sw.js precaches every file the app needs, including local libraries.
- Install: manifest.json has name, short_name, start_url, display 'standalone',
  theme_color, background_color and icons. Link favicon.ico from index.html.
- Optional local libraries: feather.min.js (call feather.replace()),
  aos.js with aos.css (call AOS.init()), vanta.globe.min.js.
- The app must be interactive and do what the user asked. Use localStorage
  for persistence. Prefer a single page unless the request needs several.
- Reply with the files as JSON only, no commentary."""

_REWORK_INSTRUCTIONS = """\
You are a front-end developer who maintains Progressive Web Apps.
Change the existing app in current_files as the user_input asks.
Keep every existing feature unless the user asks to remove it, keep the app
installable and working offline, and keep using only local libraries
(tailwind.min.js, feather.min.js, aos.js, aos.css, vanta.globe.min.js).
Reply with only the files you changed, as JSON, no commentary."""

_REWRITE_INSTRUCTIONS = {
    "role": (
        "You rewrite short app ideas into detailed requests for a Progressive Web App "
        "built with HTML, CSS and JavaScript only."
    ),
    "goal": (
        "Keep the user's intent and language. Add concrete screens, interactions, "
        "responsive layout with TailwindCSS, offline support and installability."
    ),
    "output_format": {
        "format": "text",
        "start_marker": START_MARKER,
        "end_marker": END_MARKER,
        "language": "same as input",
    },
    "rules": {
        "if_no_rewrite_needed": "return the original prompt unchanged between the markers",
        "no_code": "describe the app; do not write code",
    },
}


def _output_format() -> dict:
    return {
        "type": "json",
        "structure": {"files": {name: "<file content as a string>" for name in REQUIRED_FILES}},
        "rules": [
            "Return one JSON object whose 'files' member maps file names to file contents.",
            "Every value is a string; escape quotes and newlines as JSON requires.",
            "Do not wrap the JSON in prose.",
        ],
    }


def build_generation_prompt(prompt: str) -> str:
    """Prompt asking for a new app built from *prompt*."""
    document = {
        "task": TASK_CREATE,
        "instructions": _CREATE_INSTRUCTIONS,
        "output_format_instructions": _output_format(),
        "user_input": {"description": prompt.strip()},
    }
    return json.dumps(document, indent=2, ensure_ascii=False)


def truncate(content: str, limit: int) -> str:
    if limit <= 0 or len(content) <= limit:
        return content
    return content[:limit] + TRUNCATION_NOTE


def build_rework_prompt(prompt: str, files: Mapping[str, str], excerpt_chars: int = 2000) -> str:
    """Prompt asking for changes to an existing app.

    Parameters
    ----------
    prompt:
        What the user wants changed.
    files:
        Current contents of the bundle's required files.
    excerpt_chars:
        Each file is cut to this many characters.
    """
    document = {
        "task": TASK_REWORK,
        "instructions": _REWORK_INSTRUCTIONS,
        "current_files": {name: truncate(content, excerpt_chars) for name, content in files.items()},
        "output_format_instructions": _output_format(),
        "user_input": {"change_request": prompt.strip()},
    }
    return json.dumps(document, indent=2, ensure_ascii=False)


def build_rewrite_prompt(prompt: str) -> str:
    """Prompt asking a cheaper model to elaborate *prompt*."""
    document = {
        "task": TASK_REWRITE,
        "instructions": _REWRITE_INSTRUCTIONS,
        "original_prompt": prompt.strip(),
    }
    return json.dumps(document, indent=2, ensure_ascii=False)


def extract_rewritten_prompt(response: str) -> str | None:
    """Pull the rewritten prompt out of a rewrite response.

    Looks between the start/end markers first, then between the first and
    last code fence, then inside the first fenced block.  Returns None when
    nothing non-blank is found.
    """
    start = response.find(START_MARKER)
    if start != -1:
        body_start = start + len(START_MARKER)
        end = response.find(END_MARKER, body_start)
        if end != -1:
            candidate = response[body_start:end].strip()
            if candidate:
                return candidate

    first = response.find("```")
    last = response.rfind("```")
    if first != -1 and last > first:
        body = response[first + 3:last]
        # Drop a language tag on the opening fence line
        newline = body.find("\n")
        if newline != -1 and body[:newline].strip().isidentifier():
            body = body[newline + 1:]
        candidate = body.replace("```", "").strip()
        if candidate:
            return candidate
    return None
