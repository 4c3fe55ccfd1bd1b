#!/usr/bin/env python3
# SPDX-License-Identifier: BSD-3-Clause
"""
VM provisioner for fwbuild.

Generates the locales and installs the packages a firmware build framework
needs. Debian-family guests only.
"""

import argparse
import os
import sys

import sh

from fwbuild.core.profiles import DEFAULT_PROFILE, get_profile_config, get_supported_profiles
from fwbuild.core.utility import run_command, with_sudo


LOCALE_GEN_FILE = '/etc/locale.gen'

UPDATE_CMD = ['apt-get', 'update']
INSTALL_CMD = ['apt-get', 'install', '-y', '--no-install-recommends']
APT_ENV = {'DEBIAN_FRONTEND': 'noninteractive'}


# =============================================================================
# Locales
# =============================================================================

def normalize_locale(name: str) -> str:
    """Normalize a locale name so 'en_US.UTF-8' and 'en_US.utf8' compare equal."""
    name = name.strip().lower()
    return name.replace('utf-8', 'utf8')


def locale_charmap(name: str) -> str:
    """Get the charmap column of a locale.gen entry for a locale name."""
    if '.' in name:
        return name.split('.', 1)[1].split('@', 1)[0]
    return 'ISO-8859-1'


def installed_locales() -> set:
    """Get the normalized names of locales available on the system."""
    output = str(sh.locale('-a'))
    return {normalize_locale(line) for line in output.splitlines() if line.strip()}


def missing_locales(locales: list) -> list:
    """Get the locales that still need to be generated."""
    available = installed_locales()
    return [loc for loc in locales if normalize_locale(loc) not in available]


def enable_locales(content: str, locales: list) -> str:
    """Return locale.gen content with the given locales enabled.

    Commented-out entries are uncommented; locales with no entry at all are
    appended.
    """
    wanted = {normalize_locale(loc): loc for loc in locales}
    lines = content.splitlines()
    found = set()

    for i, line in enumerate(lines):
        entry = line.lstrip('#').strip()
        if not entry:
            continue
        key = normalize_locale(entry.split()[0])
        if key in wanted:
            lines[i] = entry
            found.add(key)

    for key, loc in wanted.items():
        if key not in found:
            lines.append(f'{loc} {locale_charmap(loc)}')

    return '\n'.join(lines) + '\n'


def write_locale_config(content: str, path: str = LOCALE_GEN_FILE,
                        dry_run: bool = False, use_sudo: bool = True):
    """Write locale.gen, through sudo when not running as root."""
    print(f"   WRITE {path}")
    if dry_run:
        return

    if use_sudo and os.geteuid() != 0:
        sh.sudo.tee(path, _in=content, _out=os.devnull)
    else:
        with open(path, 'w') as f:
            f.write(content)


def generate_locales(locales: list, dry_run: bool = False,
                     use_sudo: bool = True, path: str = LOCALE_GEN_FILE) -> int:
    """Generate missing locales and make the first one the default.

    Returns:
        0 on success, non-zero on error
    """
    missing = missing_locales(locales)
    if not missing:
        print("Locales already generated, skipping...")
        return 0

    print(f"Generating locales: {', '.join(missing)}")

    content = ''
    if os.path.exists(path):
        with open(path) as f:
            content = f.read()
    write_locale_config(enable_locales(content, missing), path,
                        dry_run=dry_run, use_sudo=use_sudo)

    result = run_command(with_sudo(['locale-gen'], use_sudo),
                         check=False, dry_run=dry_run)
    if result.returncode != 0:
        return result.returncode

    result = run_command(with_sudo(['update-locale', f'LANG={locales[0]}'], use_sudo),
                         check=False, dry_run=dry_run)
    return result.returncode


# =============================================================================
# Packages
# =============================================================================

def is_package_installed(package: str) -> bool:
    """Check whether a Debian package is installed."""
    dpkg_query = sh.Command('dpkg-query')
    status = dpkg_query('-W', '--showformat=${Status}', package, _ok_code=[0, 1])
    return str(status).strip() == 'install ok installed'


def missing_packages(packages: list) -> list:
    """Get the packages that are not installed yet."""
    return [pkg for pkg in packages if not is_package_installed(pkg)]


def install_packages(packages: list, dry_run: bool = False,
                     use_sudo: bool = True, update: bool = True) -> int:
    """Install missing packages with apt-get.

    Args:
        packages: Package names
        dry_run: If True, only print commands without executing
        use_sudo: If True, prefix commands with sudo
        update: If True, refresh package lists first

    Returns:
        0 on success, non-zero on error
    """
    missing = missing_packages(packages)
    if not missing:
        print("Packages already installed, skipping...")
        return 0

    if update:
        result = run_command(with_sudo(UPDATE_CMD, use_sudo), env=APT_ENV,
                             check=False, dry_run=dry_run)
        if result.returncode != 0:
            return result.returncode

    result = run_command(with_sudo(INSTALL_CMD + missing, use_sudo), env=APT_ENV,
                         check=False, dry_run=dry_run)
    return result.returncode


def provision(profile: str, dry_run: bool = False, use_sudo: bool = True,
              extra_packages: list = (), update: bool = True) -> int:
    """Prepare the VM for a build profile: locales first, then packages."""
    config = get_profile_config(profile)

    print("\n" + "=" * 60)
    print(f"Provisioning for {profile}")
    print("=" * 60)

    result = generate_locales(config['locales'], dry_run=dry_run, use_sudo=use_sudo)
    if result != 0:
        return result

    packages = list(config['packages'])
    packages += [pkg for pkg in extra_packages if pkg not in packages]
    return install_packages(packages, dry_run=dry_run, use_sudo=use_sudo,
                            update=update)


def main():
    parser = argparse.ArgumentParser(
        description='Provision a VM for firmware builds',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument('-p', '--profile', default=DEFAULT_PROFILE,
                        choices=get_supported_profiles(),
                        help=f'Build profile (default: {DEFAULT_PROFILE})')
    parser.add_argument('-n', '--dry-run', action='store_true',
                        help='Print commands without executing')
    parser.add_argument('--no-sudo', action='store_true',
                        help='Run commands without sudo')
    parser.add_argument('-l', '--list', action='store_true',
                        help='List locales and packages for the profile')
    parser.add_argument('--package', action='append', default=[],
                        help='Additional package to install (repeatable)')
    parser.add_argument('--no-update', action='store_true',
                        help='Do not run apt-get update')

    args = parser.parse_args()

    if args.list:
        config = get_profile_config(args.profile)
        print(f"Locales for {args.profile}:")
        for loc in config['locales']:
            print(f"  - {loc}")
        print(f"\nPackages for {args.profile}:")
        for pkg in config['packages'] + args.package:
            print(f"  - {pkg}")
        sys.exit(0)

    try:
        sys.exit(provision(
            profile=args.profile,
            dry_run=args.dry_run,
            use_sudo=not args.no_sudo,
            extra_packages=args.package,
            update=not args.no_update,
        ))
    except sh.ErrorReturnCode as e:
        print(f"Error: {e.full_cmd} failed with exit code {e.exit_code}",
              file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
