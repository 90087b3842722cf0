"""Pipeline stages.

Stages, in required order:
- kernel-build: download, patch and compile the Unraid kernel (skippable)
- kernel-link: link the built tree into the system module directory
- driver-install: install the NVIDIA driver into the staging root
- collect-auxiliary: copy optional host files (best-effort)
- container-runtime: unpack the container runtime components
- package: produce the Slackware package and checksum
"""

from unraid_nvidia.stages.base import Stage, StageContext

__all__ = ["Stage", "StageContext"]
