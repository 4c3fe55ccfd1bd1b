# SPDX-License-Identifier: BSD-3-Clause
"""
Utility functions for fwbuild.
"""

import hashlib
import os
import subprocess


def run_command(cmd: list, env: dict = None, cwd: str = None,
                check: bool = True, dry_run: bool = False) -> subprocess.CompletedProcess:
    """Run a command with logging.

    In dry-run mode the command is only printed and reported as successful.
    """
    print(f"$ {' '.join(cmd)}")
    if dry_run:
        return subprocess.CompletedProcess(cmd, 0)

    merged_env = os.environ.copy()
    if env:
        merged_env.update(env)

    return subprocess.run(cmd, env=merged_env, cwd=cwd, check=check)


def with_sudo(cmd: list, use_sudo: bool = True) -> list:
    """Prefix a command with sudo unless disabled or already root."""
    if use_sudo and os.geteuid() != 0:
        return ['sudo'] + cmd
    return cmd


def ParseOptions(options: list) -> dict:
    """Parse KEY=VALUE strings into an ordered dict.

    Later keys override earlier ones.
    """
    result = {}
    for option in options or []:
        key, sep, value = option.partition('=')
        key = key.strip()
        if not sep or not key:
            raise ValueError(f'Error: Invalid option {option!r}, expected KEY=VALUE')
        result[key] = value
    return result


def FormatOptions(options: dict) -> list:
    """Format a dict of options as KEY=VALUE strings."""
    return [f'{key}={value}' for key, value in options.items()]


def FindNewest(paths: list) -> str:
    """Return the most recently modified existing path, or None."""
    newest = None
    newest_mtime = None
    for path in paths:
        try:
            mtime = os.path.getmtime(path)
        except OSError:
            continue
        if newest_mtime is None or mtime > newest_mtime:
            newest = path
            newest_mtime = mtime
    return newest


def FileDigest(path: str, algorithm: str = 'sha256') -> str:
    """Compute the hex digest of a file."""
    h = hashlib.new(algorithm)
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b''):
            h.update(chunk)
    return h.hexdigest()
