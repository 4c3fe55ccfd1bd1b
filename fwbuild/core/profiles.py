# SPDX-License-Identifier: BSD-3-Clause
"""
Build profile configuration for fwbuild.

This module defines per-framework settings including:
- Source repository and default release
- Locales and packages the VM needs
- Image generator command line
- Where the build log lives and how to find the image in it
"""

# Build profile configurations
BUILD_PROFILES = {
    'armbian': {
        'repo_url': 'https://github.com/armbian/build.git',
        'default_release': 'main',
        'locales': ['en_US.UTF-8'],
        'packages': [
            'git',
            'curl',
            'ca-certificates',
            'locales',
            'sudo',
            'uuid-runtime',
            'xz-utils',
            'rsync',
        ],
        'build_cmd': ['./compile.sh'],
        'default_options': {
            'KERNEL_CONFIGURE': 'no',
            'BUILD_DESKTOP': 'no',
            'BUILD_MINIMAL': 'no',
            'COMPRESS_OUTPUTIMAGE': 'sha,img',
        },
        'run_as_root': True,
        'capture_log': None,
        'log_glob': 'output/logs/*.log',
        'artifact_patterns': [
            r'Done building\s*\[?\s*(?P<path>\S+\.img(?:\.xz)?)',
            r'(?P<path>(?:\S*/)?output/images/\S+?\.img(?:\.xz)?)\b',
        ],
        'artifact_dir': '.',
        'container_root': '/armbian',
    },
    'openwrt': {
        'repo_url': 'https://git.openwrt.org/openwrt/openwrt.git',
        'default_release': 'openwrt-23.05',
        'locales': ['en_US.UTF-8'],
        'packages': [
            'build-essential',
            'clang',
            'flex',
            'bison',
            'g++',
            'gawk',
            'gettext',
            'git',
            'libncurses-dev',
            'libssl-dev',
            'python3-setuptools',
            'rsync',
            'swig',
            'unzip',
            'zlib1g-dev',
            'file',
            'wget',
        ],
        'build_cmd': ['make'],
        'default_options': {
            'V': 's',
        },
        'run_as_root': False,
        'capture_log': 'logs/fwbuild-{timestamp}.log',
        'log_glob': 'logs/fwbuild-*.log',
        'artifact_patterns': [
            r'(?P<path>(?:\S*/)?bin/targets/\S+?-(?:sysupgrade|factory)\.(?:bin|img\.gz|itb))\b',
        ],
        'artifact_dir': '.',
        'container_root': None,
    },
}

DEFAULT_PROFILE = 'armbian'


def get_profile_config(profile: str) -> dict:
    """Get build profile configuration by name."""
    if profile not in BUILD_PROFILES:
        raise ValueError(f"Unsupported profile: {profile}. "
                        f"Supported: {list(BUILD_PROFILES.keys())}")
    return BUILD_PROFILES[profile]


def get_supported_profiles() -> list:
    """Get list of supported build profiles."""
    return list(BUILD_PROFILES.keys())
