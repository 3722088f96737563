"""Tests for image build, streaming build and pull."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from conftest import FakeProcess, make_settings

from wharf.config import ContainerSettings
from wharf.container_manager import ContainerManager
from wharf.container_manager._images import (
    build_image,
    build_image_streaming,
    pull_image,
    registry_image_for,
)
from wharf.errors import BuildFailedError, ExecutionError


class TestRegistryImageFor:
    def test_default_tag_maps_to_registry(self):
        assert registry_image_for("wharf-sandbox:latest") == "docker.io/wharf/wharf-sandbox:latest"

    def test_other_tags_have_no_registry(self):
        assert registry_image_for("my-image:dev") is None

    def test_exposed_on_manager(self):
        assert ContainerManager.registry_image_for("nope:1") is None


class TestBuildImage:
    async def test_uses_dockerfile_directory_as_context(self, fake_runtime, tmp_path: Path):
        dockerfile = tmp_path / "sandbox" / "Dockerfile"
        fake_runtime.on("build", stdout="Successfully built 123")

        out = await build_image(str(dockerfile), "img:1")

        assert out == "Successfully built 123"
        assert fake_runtime.calls == [
            ["docker", "build", "-t", "img:1", "-f", str(dockerfile), str(tmp_path / "sandbox")]
        ]

    async def test_defaults_to_configured_tag(self, fake_runtime):
        await build_image("/x/Dockerfile")
        assert fake_runtime.calls[0][3] == "wharf-sandbox:latest"

    async def test_failure_raises_build_failed(self, fake_runtime):
        fake_runtime.on("build", error=ExecutionError("build exited with code 1", exit_code=1))
        with pytest.raises(BuildFailedError, match="img:1"):
            await build_image("/x/Dockerfile", "img:1")


class TestBuildImageStreaming:
    async def test_streams_progress_and_cleans_up(self, spawned):
        proc = FakeProcess()
        spawned.proc = proc
        proc.emit_stderr(b"#1 [internal] load build definition\n")
        proc.emit_stdout(b"#2 DONE 0.1s\n")
        proc.close(0)
        progress: list[str] = []

        result = await build_image_streaming("FROM alpine\n", "img:1", progress.append)

        assert result.success is True
        assert sorted(progress) == ["#1 [internal] load build definition", "#2 DONE 0.1s"]
        build_dir = Path(spawned.argv[-1])
        assert spawned.argv[:4] == ["docker", "build", "-t", "img:1"]
        assert spawned.argv[5] == str(build_dir / "Dockerfile")
        assert not build_dir.exists()

    async def test_nonzero_exit_returns_failure_with_log(self, spawned):
        proc = FakeProcess()
        spawned.proc = proc
        proc.emit_stderr(b"ERROR: failed to solve\n")
        proc.close(1)

        result = await build_image_streaming("FROM nope\n", "img:1")

        assert result.success is False
        assert "failed to solve" in result.log

    async def test_dockerfile_content_written_before_build(self, monkeypatch):
        seen = {}

        async def _fake_create(*args, **kwargs):
            seen["content"] = Path(args[5]).read_text()
            proc = FakeProcess()
            proc.close(0)
            return proc

        monkeypatch.setattr(
            "wharf.container_manager._exec.asyncio.create_subprocess_exec", _fake_create
        )
        await build_image_streaming("FROM alpine\nRUN true\n", "img:1")
        assert seen["content"] == "FROM alpine\nRUN true\n"

    async def test_timeout_keeps_partial_log(self, spawned, monkeypatch):
        monkeypatch.setattr(
            "wharf.config._settings",
            make_settings(container=ContainerSettings(build_timeout=0.05)),
        )
        proc = FakeProcess()
        spawned.proc = proc
        proc.emit_stderr(b"#1 [internal] load build definition\n#2 RUN apt-get update\n")
        progress: list[str] = []

        result = await build_image_streaming("FROM alpine\n", "img:1", progress.append)

        assert result.success is False
        assert proc.killed
        assert progress == ["#1 [internal] load build definition", "#2 RUN apt-get update"]
        log = result.log.splitlines()
        assert log[:2] == progress
        assert "timed out" in log[-1]
        assert not Path(spawned.argv[-1]).exists()

    async def test_temp_dir_failure_returns_failure(self, spawned, monkeypatch):
        def _no_space(**kwargs):
            raise OSError(28, "No space left on device")

        monkeypatch.setattr("wharf.container_manager._images.tempfile.mkdtemp", _no_space)

        result = await build_image_streaming("FROM alpine\n", "img:1")

        assert result.success is False
        assert "No space left on device" in result.log
        assert spawned.argv == []


class TestPullImage:
    async def test_pull_then_tag(self, spawned, fake_runtime):
        proc = FakeProcess()
        spawned.proc = proc
        proc.emit_stdout(b"latest: Pulling from wharf/wharf-sandbox\n")
        proc.close(0)
        progress: list[str] = []

        ok = await pull_image(
            "docker.io/wharf/wharf-sandbox:latest", "wharf-sandbox:latest", progress.append
        )

        assert ok is True
        assert spawned.argv == ["docker", "pull", "docker.io/wharf/wharf-sandbox:latest"]
        assert progress == ["latest: Pulling from wharf/wharf-sandbox"]
        assert fake_runtime.calls == [
            ["docker", "tag", "docker.io/wharf/wharf-sandbox:latest", "wharf-sandbox:latest"]
        ]

    async def test_same_name_skips_tag(self, spawned, fake_runtime):
        proc = FakeProcess()
        spawned.proc = proc
        proc.close(0)

        assert await pull_image("img:1", "img:1") is True
        assert fake_runtime.calls == []

    async def test_failed_pull_returns_false(self, spawned, fake_runtime):
        proc = FakeProcess()
        spawned.proc = proc
        proc.emit_stderr(b"manifest unknown\n")
        proc.close(1)

        assert await pull_image("r/img:1", "img:1") is False
        assert fake_runtime.calls == []

    async def test_tag_failure_returns_false(self, spawned, fake_runtime):
        proc = FakeProcess()
        spawned.proc = proc
        proc.close(0)
        fake_runtime.on("tag", error=ExecutionError("tag failed", exit_code=1))

        assert await pull_image("r/img:1", "img:1") is False

    async def test_pull_timeout_returns_false(self, spawned, monkeypatch):
        monkeypatch.setattr(
            "wharf.config._settings",
            make_settings(container=ContainerSettings(pull_timeout=0.05)),
        )
        proc = FakeProcess()
        spawned.proc = proc

        assert await asyncio.wait_for(pull_image("r/img:1", "img:1"), timeout=5) is False
        assert proc.killed
