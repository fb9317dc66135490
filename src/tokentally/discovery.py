import os
from typing import Mapping

import structlog

logger = structlog.get_logger()

LOG_FILE_SUFFIX = ".jsonl"
DEFAULT_MAX_DEPTH = 5


def find_log_files(
    root: "str",
    max_depth: "int" = DEFAULT_MAX_DEPTH,
    suffix: "str" = LOG_FILE_SUFFIX,
) -> "list[str]":
    """
    recursively collects log files below root. The root itself is
    depth 0 and nothing at depth max_depth or deeper is listed.
    Missing or unreadable directories contribute nothing.
    """
    return _walk(root, max_depth, suffix, 0)


def _walk(directory: "str", max_depth: "int", suffix: "str", depth: "int") -> "list[str]":
    if depth >= max_depth:
        return []

    files: "list[str]" = []
    try:
        with os.scandir(directory) as it:
            entries = list(it)
    except OSError:
        return files

    for entry in entries:
        try:
            if entry.is_dir():
                files.extend(_walk(entry.path, max_depth, suffix, depth + 1))
            elif entry.is_file() and entry.name.endswith(suffix):
                files.append(entry.path)
        except OSError:
            # entry vanished or is unreadable
            continue

    return files


def most_recent_files(files: "list[str]", limit: "int | None" = None) -> "list[str]":
    """
    sorts files by modification time, newest first, and keeps the
    first `limit` of them. Files that can't be stat'ed sort last.
    """
    mtimes: "list[tuple[float, str]]" = []
    for path in files:
        try:
            mtime = os.stat(path).st_mtime
        except OSError:
            mtime = 0.0
        mtimes.append((mtime, path))

    # sort on mtime only so ties keep discovery order
    mtimes.sort(key=lambda item: item[0], reverse=True)
    ordered = [path for _, path in mtimes]
    if limit is None:
        return ordered
    return ordered[: max(0, limit)]


def _home(environ: "Mapping[str, str]", home: "str | None") -> "str":
    return home or environ.get("HOME") or os.path.expanduser("~")


def claude_projects_dirs(
    environ: "Mapping[str, str] | None" = None,
    home: "str | None" = None,
) -> "list[str]":
    """
    resolves the claude log directories.

    CLAUDE_CONFIG_DIR may hold several comma-separated roots; when set
    it is used exclusively, each root contributing its "projects"
    directory. Otherwise the XDG config root and the legacy
    ~/.claude root are checked, and every one of them that exists is
    returned.
    """
    env = os.environ if environ is None else environ

    override = env.get("CLAUDE_CONFIG_DIR", "").strip()
    if override:
        dirs = [
            os.path.join(p.strip(), "projects")
            for p in override.split(",")
            if p.strip()
        ]
        if dirs:
            return dirs

    home_dir = _home(env, home)
    xdg_config = env.get("XDG_CONFIG_HOME") or os.path.join(home_dir, ".config")
    candidates = [
        os.path.join(xdg_config, "claude", "projects"),
        os.path.join(home_dir, ".claude", "projects"),
    ]
    found = [d for d in candidates if os.path.isdir(d)]
    logger.debug("claude_dirs_resolved", candidates=candidates, found=found)
    return found


def codex_home(
    environ: "Mapping[str, str] | None" = None,
    home: "str | None" = None,
) -> "str":
    """
    resolves the codex data directory, honouring CODEX_HOME.
    """
    env = os.environ if environ is None else environ
    override = env.get("CODEX_HOME", "").strip()
    if override:
        return override
    return os.path.join(_home(env, home), ".codex")
