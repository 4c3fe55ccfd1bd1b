#!/usr/bin/env python3
# SPDX-License-Identifier: BSD-3-Clause
"""
Artifact collector for fwbuild.

Finds the build log written by the image generator, reads the image path
out of it and copies the image to the shared folder.
"""

import argparse
import glob
import os
import re
import shutil
import sys

from fwbuild.core.profiles import DEFAULT_PROFILE, get_profile_config, get_supported_profiles
from fwbuild.core.utility import FileDigest, FindNewest


DEFAULT_SHARED_DIR = '/vagrant'


def find_build_log(source_dir: str, log_glob: str, since: float = None) -> str:
    """Find the newest build log.

    Args:
        source_dir: Firmware source checkout
        log_glob: Glob relative to source_dir
        since: If set, ignore logs last modified before this epoch time

    Returns:
        Path to the log, or None
    """
    logs = glob.glob(os.path.join(source_dir, log_glob), recursive=True)
    if since is not None:
        logs = [log for log in logs if os.path.getmtime(log) >= since]
    return FindNewest(logs)


def map_path(path: str, path_map: dict) -> str:
    """Rewrite a path under a mapped root, e.g. a container mount point."""
    for root, target in (path_map or {}).items():
        root = root.rstrip('/')
        if path == root or path.startswith(root + '/'):
            return target + path[len(root):]
    return path


def find_artifact(log_path: str, patterns: list, base_dir: str,
                  path_map: dict = None) -> str:
    """Scrape the image path out of a build log.

    The last match in the log wins. Absolute paths are first rewritten
    through path_map, relative paths are resolved against base_dir and
    paths that do not exist are skipped.
    """
    regexes = [re.compile(p) for p in patterns]
    artifact = None

    with open(log_path, errors='replace') as f:
        for line in f:
            for regex in regexes:
                for match in regex.finditer(line):
                    path = match.group('path')
                    if os.path.isabs(path):
                        if not os.path.isfile(path):
                            path = map_path(path, path_map)
                    else:
                        path = os.path.join(base_dir, path)
                    if os.path.isfile(path):
                        artifact = os.path.normpath(path)

    return artifact


def write_checksum(path: str, algorithm: str = 'sha256') -> str:
    """Write a sha256sum-style checksum file next to path."""
    name = os.path.basename(path)
    checksum_path = f'{path}.{algorithm}'
    with open(checksum_path, 'w') as f:
        f.write(f'{FileDigest(path, algorithm)}  {name}\n')
    return checksum_path


def copy_artifact(artifact: str, dest_dir: str, dry_run: bool = False,
                  checksum: bool = False) -> str:
    """Copy an artifact into dest_dir.

    Returns:
        Destination path
    """
    dest = os.path.join(dest_dir, os.path.basename(artifact))
    print(f"   CP {artifact} {dest}")
    if dry_run:
        return dest

    os.makedirs(dest_dir, exist_ok=True)
    shutil.copy2(artifact, dest)

    if checksum:
        checksum_path = write_checksum(dest)
        print(f"   SHA256 {checksum_path}")

    return dest


def collect(source_dir: str, profile_config: dict, dest_dir: str = DEFAULT_SHARED_DIR,
            since: float = None, dry_run: bool = False, checksum: bool = False,
            log_path: str = None) -> str:
    """Locate the build log and copy the image it names to dest_dir.

    Raises:
        RuntimeError: if there is no log or the log names no image
    """
    print("\n" + "=" * 60)
    print("Collecting artifact")
    print("=" * 60)

    log_path = log_path or find_build_log(source_dir, profile_config['log_glob'], since)
    if not log_path:
        raise RuntimeError(f"No build log matching {profile_config['log_glob']} "
                           f"in {source_dir}")
    print(f"Build log: {log_path}")

    base_dir = os.path.join(source_dir, profile_config['artifact_dir'])
    path_map = None
    if profile_config.get('container_root'):
        path_map = {profile_config['container_root']: os.path.abspath(source_dir)}
    artifact = find_artifact(log_path, profile_config['artifact_patterns'], base_dir,
                             path_map=path_map)
    if not artifact:
        raise RuntimeError(f"No artifact found in build log {log_path}")
    print(f"Artifact: {artifact}")

    return copy_artifact(artifact, dest_dir, dry_run=dry_run, checksum=checksum)


def main():
    parser = argparse.ArgumentParser(
        description='Copy the image named in a build log to a shared folder',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument('source_dir', help='Firmware source checkout')
    parser.add_argument('-p', '--profile', default=DEFAULT_PROFILE,
                        choices=get_supported_profiles(),
                        help=f'Build profile (default: {DEFAULT_PROFILE})')
    parser.add_argument('-d', '--dest', default=DEFAULT_SHARED_DIR,
                        help=f'Destination directory (default: {DEFAULT_SHARED_DIR})')
    parser.add_argument('--log',
                        help='Build log to read (default: newest matching log)')
    parser.add_argument('--checksum', action='store_true',
                        help='Write a .sha256 file next to the copy')
    parser.add_argument('-n', '--dry-run', action='store_true',
                        help='Print the copy without executing it')

    args = parser.parse_args()

    try:
        collect(
            source_dir=args.source_dir,
            profile_config=get_profile_config(args.profile),
            dest_dir=args.dest,
            dry_run=args.dry_run,
            checksum=args.checksum,
            log_path=args.log,
        )
    except (RuntimeError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
