"""Shared fixtures for the build pipeline tests."""

from pathlib import Path

import httpx
import pytest

from helpers import DRIVER_VERSION, KERNEL_ID, FakeRunner, write_driver
from unraid_nvidia.config import Settings
from unraid_nvidia.decisions import NonInteractivePolicy
from unraid_nvidia.stages.base import StageContext
from unraid_nvidia.types import BuildConfig, BuildLog
from unraid_nvidia.workspace import create_build_log, prepare_workspace


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing every host path into a temporary tree."""
    work_dir = tmp_path / "work"
    work_dir.mkdir()
    return Settings(
        work_dir=work_dir,
        modules_root=tmp_path / "lib-modules",
        host_root=tmp_path / "host",
        installer_log=tmp_path / "nvidia-installer.log",
        required_tools=[],
        min_free_bytes=0,
        require_root=False,
        jobs=4,
    )


@pytest.fixture
def kernel_source(settings: Settings) -> Path:
    """An Unraid kernel source directory with a config and two patches."""
    source = settings.work_dir / f"linux-{KERNEL_ID}"
    source.mkdir()
    (source / ".config").write_text("CONFIG_MODULES=y\n")
    (source / "0001-unraid.patch").write_text("--- a\n+++ b\n")
    (source / "extra").mkdir()
    (source / "extra" / "0002-md.patch").write_text("--- a\n+++ b\n")
    return source


@pytest.fixture
def driver_file(settings: Settings) -> Path:
    return write_driver(settings.work_dir / f"NVIDIA-Linux-x86_64-{DRIVER_VERSION}.run")


@pytest.fixture
def build_config(settings: Settings, kernel_source: Path, driver_file: Path) -> BuildConfig:
    return BuildConfig(
        driver_path=driver_file,
        kernel_source_dir=kernel_source,
        kernel_identifier=KERNEL_ID,
        kernel_major="6",
        kernel_full_version="6.1.15",
        driver_version=DRIVER_VERSION,
        libnvidia_container_version=settings.libnvidia_container_version,
        container_toolkit_version=settings.container_toolkit_version,
        jobs=settings.jobs,
    )


@pytest.fixture
def build_log(settings: Settings) -> BuildLog:
    return create_build_log(settings.work_dir)


@pytest.fixture
def policy() -> NonInteractivePolicy:
    return NonInteractivePolicy()


@pytest.fixture
def fake_runner(build_log: BuildLog, settings: Settings) -> FakeRunner:
    return FakeRunner(build_log.path, installer_log=settings.installer_log)


@pytest.fixture
def http_client():
    with httpx.Client() as client:
        yield client


@pytest.fixture
def stage_context(
    build_config: BuildConfig,
    settings: Settings,
    build_log: BuildLog,
    policy: NonInteractivePolicy,
    fake_runner: FakeRunner,
    http_client: httpx.Client,
) -> StageContext:
    """A context over a freshly prepared workspace."""
    workspace = prepare_workspace(build_config, settings, build_log, policy)
    return StageContext(
        config=build_config,
        workspace=workspace,
        settings=settings,
        runner=fake_runner,
        client=http_client,
        policy=policy,
    )
