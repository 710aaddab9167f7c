"""ReleaseKit: build, publish and fetch versioned binaries.

Sub-packages:

- :mod:`ReleaseKit.Compiler` cross-compiles work items in parallel.
- :mod:`ReleaseKit.Releaser` uploads build outputs with a checksum manifest
  and promotes versions.
- :mod:`ReleaseKit.Download` fetches artifacts into a local cache.
- :mod:`ReleaseKit.Releases` resolves published versions to download URLs.
- :mod:`ReleaseKit.PluginRelease` runs the whole build and release flow for
  plugin binaries.
"""

__version__ = "0.1.0"
