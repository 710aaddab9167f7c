"""Cross-compile, publish and release plugin binaries in one step."""

from .releaser import DEFAULT_BUCKET, RELEASE_LD_FLAGS, Namespace, PluginReleaseConfig, PluginReleaser

__all__ = ["Namespace", "PluginReleaseConfig", "PluginReleaser", "DEFAULT_BUCKET", "RELEASE_LD_FLAGS"]
