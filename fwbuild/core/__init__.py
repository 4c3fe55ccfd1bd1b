# SPDX-License-Identifier: BSD-3-Clause
"""
Shared configuration and helpers for fwbuild.
"""
