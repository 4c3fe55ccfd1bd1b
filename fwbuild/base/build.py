#!/usr/bin/env python3
# SPDX-License-Identifier: BSD-3-Clause
"""
Image generator runner for fwbuild.

Runs the build framework's own image generator inside the source tree.
"""

import os
import shutil
import subprocess
import time

from fwbuild.core.utility import FormatOptions, run_command, with_sudo


def get_build_command(profile_config: dict, options: dict = None) -> list:
    """Get the generator command line for a profile.

    User options override the profile's default options.
    """
    merged = dict(profile_config['default_options'])
    merged.update(options or {})
    return list(profile_config['build_cmd']) + FormatOptions(merged)


def find_generator(source_dir: str, build_cmd: list) -> str:
    """Locate the generator executable for a build command.

    Raises:
        FileNotFoundError: if the generator does not exist
    """
    program = build_cmd[0]
    if os.sep in program:
        path = os.path.join(source_dir, program)
        if os.path.exists(path):
            return path
    else:
        path = shutil.which(program)
        if path:
            return path
    raise FileNotFoundError(f"Image generator not found: {program} (in {source_dir})")


def get_capture_log_path(source_dir: str, capture_log: str,
                         timestamp: float = None) -> str:
    """Get the path of the log file that captures generator output."""
    stamp = time.strftime('%Y%m%d-%H%M%S', time.localtime(timestamp))
    return os.path.join(source_dir, capture_log.format(timestamp=stamp))


def run_logged(cmd: list, log_path: str, cwd: str = None, env: dict = None) -> int:
    """Run a command, copying its combined output to stdout and a log file."""
    print(f"$ {' '.join(cmd)}")
    print(f"   LOG {log_path}")
    os.makedirs(os.path.dirname(log_path), exist_ok=True)

    merged_env = os.environ.copy()
    if env:
        merged_env.update(env)

    with open(log_path, 'w') as log, \
            subprocess.Popen(cmd, cwd=cwd, env=merged_env,
                             stdout=subprocess.PIPE, stderr=subprocess.STDOUT,
                             text=True, errors='replace') as proc:
        try:
            for line in proc.stdout:
                print(line, end='', flush=True)
                log.write(line)
        except BaseException:
            proc.kill()
            raise
        return proc.wait()


def run_build(source_dir: str, profile_config: dict, options: dict = None,
              dry_run: bool = False, use_sudo: bool = True,
              env: dict = None) -> int:
    """Run the image generator in the source tree.

    Args:
        source_dir: Firmware source checkout
        profile_config: Build profile configuration
        options: KEY=VALUE options for the generator
        dry_run: If True, only print the command
        use_sudo: If True, run root-only generators through sudo
        env: Extra environment variables

    Returns:
        Generator exit code
    """
    print("\n" + "=" * 60)
    print("Building firmware image")
    print("=" * 60)

    cmd = get_build_command(profile_config, options)
    if not dry_run:
        find_generator(source_dir, cmd)

    if profile_config.get('run_as_root'):
        cmd = with_sudo(cmd, use_sudo)

    capture_log = profile_config.get('capture_log')
    if capture_log and not dry_run:
        log_path = get_capture_log_path(source_dir, capture_log)
        return run_logged(cmd, log_path, cwd=source_dir, env=env)

    result = run_command(cmd, env=env, cwd=source_dir, check=False, dry_run=dry_run)
    return result.returncode
