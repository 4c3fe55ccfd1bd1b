# SPDX-License-Identifier: BSD-3-Clause
"""
fwbuild: provision a build VM, fetch a firmware tree, run its image
generator and collect the resulting image.
"""

__version__ = '0.1.0'
