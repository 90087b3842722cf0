"""Unraid NVIDIA Builder - build pipeline for custom NVIDIA driver packages.

This package builds an Unraid kernel, installs the vendor NVIDIA driver
against it, bundles the container runtime support components, and emits a
single installable Slackware package with its checksum.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
