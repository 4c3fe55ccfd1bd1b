# SPDX-License-Identifier: BSD-3-Clause
"""
Step scripts for fwbuild.

Each module is one step of a firmware build (provision, source, build,
collect) and can be run on its own; firmware.py chains them.
"""
