# === NAVMAP v1 ===
# {
#   "module": "ReleaseKit.PluginRelease.releaser",
#   "purpose": "Build a plugin for every platform, publish it and promote the version",
#   "sections": [
#     {
#       "id": "namespace",
#       "name": "Namespace",
#       "anchor": "class-namespace",
#       "kind": "class"
#     },
#     {
#       "id": "pluginreleaseconfig",
#       "name": "PluginReleaseConfig",
#       "anchor": "class-pluginreleaseconfig",
#       "kind": "class"
#     },
#     {
#       "id": "pluginreleaser",
#       "name": "PluginReleaser",
#       "anchor": "class-pluginreleaser",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""End-to-end release of plugin and subcommand binaries.

:meth:`PluginReleaser.run` cross-compiles ``source`` for every OS and
architecture in the platform matrix into
``<build>/<plugin>/<os>/<arch>/<plugin>[.exe]``, publishes ``<build>/<plugin>``
under ``<namespace>/<plugin>/<version>/`` and points
``<namespace>/<plugin>/release.txt`` at the new version. The temporary build
directory is always removed.
"""

from __future__ import annotations

import enum
import logging
import posixpath
import shutil
import tempfile
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ReleaseKit.Compiler import DEFAULT_PLATFORMS, CompilerConfig, ParallelCompiler, Work
from ReleaseKit.Releaser import BlobStore, PublishParameters, Releaser, ReleaseParameters
from ReleaseKit.concurrency import RunContext
from ReleaseKit.errors import StageError

__all__ = ["Namespace", "PluginReleaseConfig", "PluginReleaser", "DEFAULT_BUCKET", "RELEASE_LD_FLAGS"]

logger = logging.getLogger(__name__)

DEFAULT_BUCKET = "circleci-binary-releases"

# Strip debug information from released binaries.
RELEASE_LD_FLAGS = "-s -w"


class Namespace(str, enum.Enum):
    """Key prefix a binary is published under."""

    PLUGIN = "task-agent-plugins"
    SUBCOMMAND = "task-agent-subcommands"


class PluginReleaseConfig(BaseModel):
    """What to release and where."""

    model_config = ConfigDict(extra="forbid")

    plugin: str = Field(..., description="Name of the plugin or subcommand binary")
    version: str = Field(..., description="Version to publish and release")
    platforms: Optional[Dict[str, List[str]]] = Field(
        default=None, description="OS to architectures matrix; defaults to the standard matrix"
    )
    bucket: str = Field(default=DEFAULT_BUCKET)
    namespace: Namespace = Field(default=Namespace.PLUGIN)

    @field_validator("plugin", "version")
    @classmethod
    def _require(cls, value: str) -> str:
        if not value:
            raise ValueError("plugin and version must be provided")
        return value

    @field_validator("bucket")
    @classmethod
    def _default_bucket(cls, value: str) -> str:
        return value or DEFAULT_BUCKET

    def resolved_platforms(self) -> Dict[str, List[str]]:
        return self.platforms or {os_name: list(archs) for os_name, archs in DEFAULT_PLATFORMS.items()}

    @property
    def app(self) -> str:
        return posixpath.join(self.namespace.value, self.plugin)


class PluginReleaser:
    """Compile, publish and release one plugin version."""

    def __init__(self, config: PluginReleaseConfig, store: BlobStore, *, compiler_config: Optional[CompilerConfig] = None):
        self.config = config
        self.releaser = Releaser(store)
        self._compiler_config = compiler_config or CompilerConfig()

    def run(
        self,
        source: str,
        working_dir: str = ".",
        ld_flags: str = "",
        ctx: Optional[RunContext] = None,
    ) -> None:
        """Build every platform, then publish and release.

        Raises:
            ValueError: If ``source`` is empty.
            StageError: ``build: ...`` or ``upload: ...`` wrapping the cause.
        """
        if not source:
            raise ValueError("source must not be empty")
        ctx = ctx or RunContext.background()

        build_dir = Path(tempfile.mkdtemp(prefix="releasekit-plugin-"))
        try:
            try:
                self._build(ctx, build_dir, source, working_dir or ".", ld_flags)
            except Exception as exc:
                raise StageError("build", exc) from exc
            try:
                self._upload(ctx, build_dir)
            except Exception as exc:
                raise StageError("upload", exc) from exc
        finally:
            shutil.rmtree(build_dir, ignore_errors=True)

    def _build(self, ctx: RunContext, build_dir: Path, source: str, working_dir: str, extra_ld_flags: str) -> None:
        plugin = self.config.plugin
        compiler_config = CompilerConfig(
            base_dir=build_dir,
            ld_flags=" ".join(flag for flag in (RELEASE_LD_FLAGS, extra_ld_flags) if flag),
            parallelism=self._compiler_config.parallelism,
            queue_size=self._compiler_config.queue_size,
            toolchain=self._compiler_config.toolchain,
        )
        with ParallelCompiler(compiler_config) as pool:
            for os_name, archs in self.config.resolved_platforms().items():
                for arch in archs:
                    pool.add(
                        Work(
                            name=posixpath.join(plugin, os_name, arch, plugin),
                            target=working_dir,
                            source=source,
                            environment=[f"GOOS={os_name}", f"GOARCH={arch}"],
                        )
                    )
            logger.info("building %s %s", plugin, self.config.version)
            pool.run(ctx=ctx)

    def _upload(self, ctx: RunContext, build_dir: Path) -> None:
        app = self.config.app
        self.releaser.publish(
            PublishParameters(
                path=build_dir / self.config.plugin,
                bucket=self.config.bucket,
                app=app,
                version=self.config.version,
            ),
            ctx,
        )
        self.releaser.release(
            ReleaseParameters(bucket=self.config.bucket, app=app, version=self.config.version),
            ctx,
        )
