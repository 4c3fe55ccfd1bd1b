#!/usr/bin/env python3
# SPDX-License-Identifier: BSD-3-Clause
"""
Firmware source fetcher for fwbuild.

Clones the build framework repository, or updates an existing checkout,
and checks out the requested release (branch, tag or commit).
"""

import argparse
import os
import sys

import sh

from fwbuild.core.profiles import DEFAULT_PROFILE, get_profile_config, get_supported_profiles


def git_query(path: str, *args) -> str:
    """Run a read-only git command in a checkout and return its output."""
    return str(sh.git(*args, _cwd=path)).strip()


def git_run(path: str, *args, dry_run: bool = False):
    """Run a git command that changes the checkout, with logging."""
    print(f"$ git {' '.join(args)}")
    if dry_run:
        return
    sh.git(*args, _cwd=path, _out=sys.stdout, _err=sys.stderr)


def is_checkout(path: str) -> bool:
    """Check whether path is a git checkout."""
    return os.path.exists(os.path.join(path, '.git'))


def ref_exists(path: str, ref: str) -> bool:
    """Check whether a ref resolves to a commit in the checkout."""
    result = sh.git('rev-parse', '--verify', '--quiet', f'{ref}^{{commit}}',
                    _cwd=path, _ok_code=[0, 1], _return_cmd=True)
    return result.exit_code == 0


def clone(url: str, path: str, dry_run: bool = False):
    """Clone a repository into path."""
    parent = os.path.dirname(os.path.abspath(path))
    if not dry_run:
        os.makedirs(parent, exist_ok=True)
    git_run(parent, 'clone', url, os.path.abspath(path), dry_run=dry_run)


def fetch(path: str, dry_run: bool = False):
    """Fetch branches and tags from origin."""
    git_run(path, 'fetch', '--tags', '--prune', '--force', 'origin', dry_run=dry_run)


def origin_url(path: str) -> str:
    """Get the URL of the origin remote."""
    return git_query(path, 'remote', 'get-url', 'origin')


def release_kind(path: str, release: str) -> str:
    """Classify a release as 'branch', 'tag' or 'commit'.

    A remote branch wins over a tag of the same name.
    """
    if ref_exists(path, f'refs/remotes/origin/{release}'):
        return 'branch'
    if ref_exists(path, f'refs/tags/{release}'):
        return 'tag'
    if ref_exists(path, release):
        return 'commit'
    raise ValueError(f"Unknown release: {release}")


def checkout(path: str, release: str, dry_run: bool = False):
    """Check out a release.

    Branches become a local branch reset to the remote head; tags and
    commits are checked out detached.
    """
    if dry_run and not is_checkout(path):
        git_run(path, 'checkout', release, dry_run=True)
        return

    try:
        kind = release_kind(path, release)
    except ValueError:
        # Without a fetch the release may only exist upstream.
        if not dry_run:
            raise
        git_run(path, 'checkout', release, dry_run=True)
        return

    print(f"Checking out {kind} {release}")
    if kind == 'branch':
        git_run(path, 'checkout', '--force', '-B', release, '--track',
                f'origin/{release}', dry_run=dry_run)
    else:
        git_run(path, 'checkout', '--force', '--detach', release, dry_run=dry_run)


def current_revision(path: str) -> str:
    """Get the commit hash checked out in path."""
    return git_query(path, 'rev-parse', 'HEAD')


def normalize_url(url: str) -> str:
    """Normalize a git URL for comparison."""
    url = url.strip().rstrip('/')
    if url.endswith('.git'):
        url = url[:-len('.git')]
    return url


def update_source(url: str, path: str, release: str, dry_run: bool = False) -> str:
    """Clone or update a checkout and check out a release.

    Args:
        url: Repository URL
        path: Checkout directory
        release: Branch, tag or commit
        dry_run: If True, only print commands without executing

    Returns:
        The checked out revision (the release name in dry-run mode)
    """
    print("\n" + "=" * 60)
    print(f"Fetching {url} ({release})")
    print("=" * 60)

    if is_checkout(path):
        existing = origin_url(path)
        if normalize_url(existing) != normalize_url(url):
            raise RuntimeError(f"{path} is a checkout of {existing}, not {url}")
        fetch(path, dry_run=dry_run)
    elif os.path.exists(path) and os.listdir(path):
        raise RuntimeError(f"{path} exists and is not a git checkout")
    else:
        clone(url, path, dry_run=dry_run)

    checkout(path, release, dry_run=dry_run)

    if dry_run:
        return release

    revision = current_revision(path)
    print(f"Source at {revision}")
    return revision


def main():
    parser = argparse.ArgumentParser(
        description='Fetch a firmware source tree at a release',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument('path', help='Checkout directory')
    parser.add_argument('-p', '--profile', default=DEFAULT_PROFILE,
                        choices=get_supported_profiles(),
                        help=f'Build profile (default: {DEFAULT_PROFILE})')
    parser.add_argument('-r', '--release',
                        help='Branch, tag or commit (default: from profile)')
    parser.add_argument('-u', '--url',
                        help='Repository URL (default: from profile)')
    parser.add_argument('-n', '--dry-run', action='store_true',
                        help='Print commands without executing')

    args = parser.parse_args()

    config = get_profile_config(args.profile)

    try:
        update_source(
            url=args.url or config['repo_url'],
            path=args.path,
            release=args.release or config['default_release'],
            dry_run=args.dry_run,
        )
    except sh.ErrorReturnCode as e:
        print(f"Error: {e.full_cmd} failed with exit code {e.exit_code}",
              file=sys.stderr)
        sys.exit(1)
    except (RuntimeError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
