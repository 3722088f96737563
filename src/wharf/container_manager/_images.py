"""Image provisioning — build from a Dockerfile, stream builds, pull and tag."""

from __future__ import annotations

import shutil
import tempfile
from pathlib import Path

from wharf.config import get_settings
from wharf.container_manager._exec import OnLine, run_runtime, stream_process
from wharf.errors import BuildFailedError, WharfError
from wharf.logger import logger
from wharf.runtime import get_runtime
from wharf.types import BuildResult


def registry_image_for(local_tag: str) -> str | None:
    """Map the default local tag to its upstream registry path; None otherwise."""
    images = get_settings().images
    if local_tag == images.default_tag:
        return f"{images.registry}/{images.default_tag}"
    return None


async def build_image(dockerfile_path: str, tag: str | None = None) -> str:
    """Build *tag* from a Dockerfile on disk. Returns the build log.

    The build context is the Dockerfile's directory.
    """
    s = get_settings()
    tag = tag or s.images.default_tag
    context_dir = str(Path(dockerfile_path).parent)
    try:
        output = await run_runtime(
            "build",
            "-t",
            tag,
            "-f",
            dockerfile_path,
            context_dir,
            timeout=s.container.build_timeout,
        )
    except WharfError as exc:
        raise BuildFailedError(f"Failed to build image {tag}: {exc}") from exc
    logger.info("Built image", image=tag)
    return output


async def build_image_streaming(
    dockerfile_content: str,
    tag: str,
    on_progress: OnLine | None = None,
) -> BuildResult:
    """Build *tag* from inline Dockerfile content, streaming progress lines.

    BuildKit writes progress to stderr, so both pipes are forwarded. A failed
    or timed-out build returns ``success=False`` with every line seen so far
    plus the failure reason, instead of raising.
    """
    log: list[str] = []

    def _collect(line: str) -> None:
        log.append(line)
        if on_progress is not None:
            on_progress(line)

    build_dir: Path | None = None
    try:
        build_dir = Path(tempfile.mkdtemp(prefix="wharf-build-"))
        dockerfile = build_dir / "Dockerfile"
        dockerfile.write_text(dockerfile_content)
        result = await stream_process(
            [get_runtime().cli, "build", "-t", tag, "-f", str(dockerfile), str(build_dir)],
            timeout=get_settings().container.build_timeout,
            on_line=_collect,
        )
    except (WharfError, OSError) as exc:
        logger.warning("Streaming build failed", image=tag, err=str(exc))
        return BuildResult(success=False, log="\n".join([*log, str(exc)]))
    finally:
        if build_dir is not None:
            shutil.rmtree(build_dir, ignore_errors=True)

    if result.exit_code == 0:
        logger.info("Built image (streaming)", image=tag)
        return BuildResult(success=True, log=result.output)
    logger.warning("Streaming build exited non-zero", image=tag, exit_code=result.exit_code)
    return BuildResult(success=False, log=result.output)


async def pull_image(
    remote_image: str,
    local_tag: str,
    on_progress: OnLine | None = None,
) -> bool:
    """Pull *remote_image* and tag it as *local_tag*. Never raises."""
    s = get_settings()
    try:
        result = await stream_process(
            [get_runtime().cli, "pull", remote_image],
            timeout=s.container.pull_timeout,
            on_line=on_progress,
        )
        if result.exit_code != 0:
            logger.warning("Image pull failed", image=remote_image, exit_code=result.exit_code)
            return False

        if remote_image != local_tag:
            await run_runtime("tag", remote_image, local_tag, timeout=s.container.quick_timeout)

        logger.info("Pulled image", image=remote_image, tag=local_tag)
        return True
    except Exception as exc:
        logger.warning("Image pull failed", image=remote_image, err=str(exc))
        return False
