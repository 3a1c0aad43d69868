"""Integration hooks run after a binary is installed or removed."""

import os
import shlex
import subprocess
import sys
from pathlib import Path
from typing import Callable

import structlog

from binfetch.core.config import BinfetchConfig, HookCommand
from binfetch.core.errors import HookError


logger = structlog.get_logger(__name__)

WILDCARD = "*"

# Runs a command name with args from the cache; returns the exit code
CacheRunner = Callable[[str, list[str], dict[str, str]], int]


def hook_for(config: BinfetchConfig, path: Path) -> tuple[str, HookCommand] | None:
    """The hook configured for ``path``'s extension, else the wildcard hook."""
    if not config.use_integration_hooks:
        return None
    ext = path.suffix
    if ext in config.hooks:
        return ext, config.hooks[ext]
    if WILDCARD in config.hooks:
        return ext, config.hooks[WILDCARD]
    return None


def hook_env(config: BinfetchConfig, path: Path, ext: str, integration: bool) -> dict[str, str]:
    env = dict(os.environ)
    env.update({
        "BINFETCH_INSTALL_DIR": str(config.install_dir),
        "BINFETCH_CACHE_DIR": str(config.cache_dir),
        "BINFETCH": sys.argv[0],
        "BINFETCH_HOOK_BINARY": str(path),
        "BINFETCH_HOOK_BINARY_EXT": ext,
        "BINFETCH_HOOK_TYPE": "install" if integration else "remove",
    })
    return env


def run_hook(
    config: BinfetchConfig,
    path: Path,
    integration: bool = True,
    run_from_cache: CacheRunner | None = None,
) -> bool:
    """Run the integration (or deintegration) hook for ``path``.

    Returns False when no hook applies. Raises HookError when the command
    cannot be parsed, started, or exits non-zero.
    """
    found = hook_for(config, path)
    if found is None:
        return False
    ext, hook = found
    if hook.no_op:
        return False

    command = hook.integration_command if integration else hook.deintegration_command
    try:
        parts = shlex.split(command)
    except ValueError as e:
        raise HookError(f"Hook for {path.name}: {e}") from e
    if not parts:
        return False

    env = hook_env(config, path, ext, integration)
    logger.debug("running hook", binary=path.name, command=parts[0], integration=integration)

    if hook.run_from_cache and run_from_cache is not None:
        returncode = run_from_cache(parts[0], parts[1:], env)
    else:
        output = subprocess.DEVNULL if hook.silent else None
        try:
            returncode = subprocess.run(parts, env=env, stdout=output, stderr=output).returncode
        except OSError as e:
            raise HookError(f"Hook for {path.name} could not run {parts[0]}: {e}") from e

    if returncode != 0:
        raise HookError(f"[{path.name}] could not be handled by its hooks: {parts[0]} exited {returncode}")
    return True
