"""Reporter configuration file handed to every worker.

The file is a JSON object in the multi-reporter layout::

    {
      "configVersion": 1,
      "reporterEnabled": "parashard-stream, spec",
      "parashardStreamReporterOptions": {"reportDir": "runner-results"},
      "specReporterOptions": {"reportDir": "runner-results"}
    }

Its path is passed to the worker on the command line; nothing about the
run is smuggled through the environment except the worker index.
"""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING, Any

from parashard.errors import ConfigurationError
from parashard.utils.atomic import atomic_write_text

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

logger = logging.getLogger(__name__)

REPORTER_CONFIG_VERSION = 1
STREAM_REPORTER = "parashard-stream"
"""Identifier of the bundled result-stream reporter."""

_ENABLED_KEY = "reporterEnabled"
_VERSION_KEY = "configVersion"
_WORD_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|\d+")


def camel_case(value: str) -> str:
    """Convert an arbitrary reporter identifier to camelCase."""
    words = _WORD_RE.findall(value)
    if not words:
        return ""
    head, *tail = words
    return head.lower() + "".join(word.capitalize() for word in tail)


def reporter_option_key(reporter: str) -> str:
    """Return the options key a multi-reporter looks up for *reporter*."""
    return f"{camel_case(reporter)}ReporterOptions"


def split_reporters(value: str) -> list[str]:
    """Split a comma-separated ``reporterEnabled`` value."""
    return [part.strip() for part in value.split(",") if part.strip()]


def build_reporter_config(reporters: Sequence[str], report_dir: str) -> dict[str, Any]:
    """Build the default configuration for *reporters*.

    Every enabled reporter gets an options object pointing ``reportDir``
    at the shared results area.
    """
    enabled = list(dict.fromkeys(reporters))
    content: dict[str, Any] = {
        _VERSION_KEY: REPORTER_CONFIG_VERSION,
        _ENABLED_KEY: ", ".join(enabled),
    }
    for reporter in enabled:
        content[reporter_option_key(reporter)] = {"reportDir": report_dir}
    return content


def merge_reporter_config(base: dict[str, Any], user: dict[str, Any]) -> dict[str, Any]:
    """Merge user overrides into *base*.

    ``reporterEnabled`` lists are unioned (base order first). Option
    objects are shallow-merged with user values winning; any other user
    key replaces the base value.
    """
    merged = dict(base)
    user_enabled = user.get(_ENABLED_KEY)
    if isinstance(user_enabled, str):
        combined = split_reporters(str(base.get(_ENABLED_KEY, ""))) + split_reporters(
            user_enabled
        )
        merged[_ENABLED_KEY] = ", ".join(dict.fromkeys(combined))

    for key, value in user.items():
        if key in {_ENABLED_KEY, _VERSION_KEY}:
            continue
        existing = merged.get(key)
        if isinstance(existing, dict) and isinstance(value, dict):
            merged[key] = {**existing, **value}
        else:
            merged[key] = value
    return merged


def load_user_overrides(path: Path | None) -> dict[str, Any]:
    """Read a user-supplied override file.

    A missing file is ignored; a malformed one is a configuration error.
    """
    if path is None:
        return {}
    if not path.is_file():
        logger.warning("Reporter options file %s not found, ignoring it", path)
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        msg = f"Cannot read reporter options file {path}: {exc}"
        raise ConfigurationError(msg) from exc
    if not isinstance(data, dict):
        msg = f"Reporter options file {path} must contain a JSON object"
        raise ConfigurationError(msg)
    return data


def write_reporter_config(
    path: Path,
    reporters: Sequence[str],
    report_dir: str,
    *,
    user_options_path: Path | None = None,
) -> dict[str, Any]:
    """Build, merge and atomically write the reporter configuration.

    Returns:
        The content that was written.
    """
    content = build_reporter_config(reporters, report_dir)
    overrides = load_user_overrides(user_options_path)
    if overrides:
        content = merge_reporter_config(content, overrides)
    atomic_write_text(path, json.dumps(content, indent=2))
    logger.debug("Reporter configuration written to %s", path)
    return content


def read_reporter_options(path: Path, reporter: str = STREAM_REPORTER) -> dict[str, Any]:
    """Return the options object for *reporter* from a configuration file.

    Raises:
        OSError: If the file cannot be read.
        ValueError: If it is not valid JSON or has an unsupported version.
    """
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path} does not contain a JSON object")
    version = data.get(_VERSION_KEY, REPORTER_CONFIG_VERSION)
    if version != REPORTER_CONFIG_VERSION:
        raise ValueError(f"Unsupported reporter configuration version {version!r} in {path}")
    options = data.get(reporter_option_key(reporter), {})
    return options if isinstance(options, dict) else {}
