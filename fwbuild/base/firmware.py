#!/usr/bin/env python3
# SPDX-License-Identifier: BSD-3-Clause
"""
Firmware build orchestrator for fwbuild.

Provisions the VM, fetches the firmware source at a release, runs the image
generator and copies the resulting image to the shared folder.
"""

import argparse
import os
import shutil
import subprocess
import sys
import time
from pathlib import Path

import sh

from fwbuild.base import build, collect, provision, source
from fwbuild.core.profiles import DEFAULT_PROFILE, get_profile_config, get_supported_profiles
from fwbuild.core.utility import ParseOptions


DEFAULT_WORKDIR = os.path.join('~', 'fwbuild')


class FirmwareBuilder:
    """Runs the steps of a firmware build."""

    def __init__(self, workdir: str, profile: str = DEFAULT_PROFILE,
                 release: str = None, repo_url: str = None,
                 shared_dir: str = collect.DEFAULT_SHARED_DIR,
                 options: dict = None, dry_run: bool = False,
                 use_sudo: bool = True, checksum: bool = False):
        """
        Args:
            workdir: Directory holding source checkouts
            profile: Build profile name
            release: Branch, tag or commit (default: from profile)
            repo_url: Repository URL (default: from profile)
            shared_dir: Where the image is copied to
            options: KEY=VALUE options for the generator
            dry_run: If True, only print commands without executing
            use_sudo: If True, prefix privileged commands with sudo
            checksum: If True, write a .sha256 next to the copied image
        """
        self.config = get_profile_config(profile)
        self.profile = profile
        self.workdir = Path(workdir).expanduser().resolve()
        self.release = release or self.config['default_release']
        self.repo_url = repo_url or self.config['repo_url']
        self.shared_dir = shared_dir
        self.options = options or {}
        self.dry_run = dry_run
        self.use_sudo = use_sudo
        self.checksum = checksum

        self.source_dir = self.workdir / profile
        self.build_started = None
        self.revision = None
        self.artifact = None

    def provision(self):
        """Generate locales and install packages."""
        result = provision.provision(self.profile, dry_run=self.dry_run,
                                     use_sudo=self.use_sudo)
        if result != 0:
            raise RuntimeError(f"Provisioning failed with exit code {result}")

    def fetch(self):
        """Clone or update the source tree at the release."""
        self.revision = source.update_source(self.repo_url, str(self.source_dir),
                                             self.release, dry_run=self.dry_run)

    def build(self):
        """Run the image generator."""
        self.build_started = time.time()
        result = build.run_build(str(self.source_dir), self.config,
                                 options=self.options, dry_run=self.dry_run,
                                 use_sudo=self.use_sudo)
        if result != 0:
            raise RuntimeError(f"Image generator failed with exit code {result}")

    def collect(self):
        """Copy the image named in the build log to the shared folder."""
        # A dry-run build writes no log to read.
        if self.dry_run and (self.build_started or not self.source_dir.exists()):
            print(f"   CP <artifact> {self.shared_dir}")
            return
        self.artifact = collect.collect(str(self.source_dir), self.config,
                                        dest_dir=self.shared_dir,
                                        since=self.build_started,
                                        dry_run=self.dry_run,
                                        checksum=self.checksum)

    def build_all(self, skip_provision: bool = False, skip_fetch: bool = False):
        """Run every step."""
        print(f"Building {self.profile} firmware")
        print(f"  Release: {self.release}")
        print(f"  Source: {self.source_dir}")
        print(f"  Shared: {self.shared_dir}")
        print()

        if not skip_provision:
            self.provision()
        if not skip_fetch:
            self.fetch()
        self.build()
        self.collect()

        print("\n" + "=" * 60)
        print("Firmware build complete!")
        print("=" * 60)
        if self.artifact:
            print(f"\nImage: {self.artifact}")

    def clean(self):
        """Remove the source checkout."""
        print("Cleaning source checkout...")
        if self.source_dir.exists():
            print(f"Removed: {self.source_dir}")
            if not self.dry_run:
                shutil.rmtree(self.source_dir)


def main():
    parser = argparse.ArgumentParser(
        description='Build a firmware image in a provisioned VM',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  %(prog)s -o BOARD=orangepi5 -o BRANCH=current -o RELEASE=bookworm
  %(prog)s -r v24.02 -o BOARD=rock-5b      # Build a tagged release
  %(prog)s -p openwrt -r v23.05.3 --no-sudo
  %(prog)s --collect-only --checksum       # Copy the last image again
  %(prog)s --clean                         # Remove the checkout
''',
    )

    parser.add_argument('workdir', nargs='?', default=DEFAULT_WORKDIR,
                        help=f'Directory for source checkouts (default: {DEFAULT_WORKDIR})')
    parser.add_argument('-p', '--profile', default=DEFAULT_PROFILE,
                        choices=get_supported_profiles(),
                        help=f'Build profile (default: {DEFAULT_PROFILE})')
    parser.add_argument('-r', '--release',
                        help='Branch, tag or commit to build (default: from profile)')
    parser.add_argument('-u', '--url',
                        help='Repository URL (default: from profile)')
    parser.add_argument('-o', '--option', action='append', default=[],
                        metavar='KEY=VALUE',
                        help='Option for the image generator (repeatable)')
    parser.add_argument('-s', '--shared-dir', default=collect.DEFAULT_SHARED_DIR,
                        help=f'Where to copy the image (default: {collect.DEFAULT_SHARED_DIR})')
    parser.add_argument('--no-sudo', action='store_true',
                        help='Run commands without sudo')
    parser.add_argument('-n', '--dry-run', action='store_true',
                        help='Print commands without executing')
    parser.add_argument('--checksum', action='store_true',
                        help='Write a .sha256 file next to the copied image')
    parser.add_argument('--skip-provision', action='store_true',
                        help='Do not install locales and packages')
    parser.add_argument('--skip-fetch', action='store_true',
                        help='Build the checkout as it is')
    parser.add_argument('--provision-only', action='store_true',
                        help='Only provision the VM')
    parser.add_argument('--fetch-only', action='store_true',
                        help='Only fetch the source tree')
    parser.add_argument('--build-only', action='store_true',
                        help='Only run the image generator')
    parser.add_argument('--collect-only', action='store_true',
                        help='Only copy the image named in the newest log')
    parser.add_argument('--clean', action='store_true',
                        help='Remove the source checkout')

    args = parser.parse_args()

    try:
        options = ParseOptions(args.option)
    except ValueError as e:
        print(e, file=sys.stderr)
        sys.exit(1)

    builder = FirmwareBuilder(
        workdir=args.workdir,
        profile=args.profile,
        release=args.release,
        repo_url=args.url,
        shared_dir=args.shared_dir,
        options=options,
        dry_run=args.dry_run,
        use_sudo=not args.no_sudo,
        checksum=args.checksum,
    )

    try:
        if args.clean:
            builder.clean()
        elif args.provision_only:
            builder.provision()
        elif args.fetch_only:
            builder.fetch()
        elif args.build_only:
            builder.build()
        elif args.collect_only:
            builder.collect()
        else:
            builder.build_all(skip_provision=args.skip_provision,
                              skip_fetch=args.skip_fetch)
    except subprocess.CalledProcessError as e:
        print(f"\nError: Command failed with exit code {e.returncode}",
              file=sys.stderr)
        sys.exit(1)
    except sh.ErrorReturnCode as e:
        print(f"\nError: {e.full_cmd} failed with exit code {e.exit_code}",
              file=sys.stderr)
        sys.exit(1)
    except (RuntimeError, ValueError, OSError) as e:
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nBuild interrupted.")
        sys.exit(130)


if __name__ == '__main__':
    main()
