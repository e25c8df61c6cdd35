"""External systems driven by the pipeline, behind small protocols."""

from novahub.collaborators.base import (
    EnclaveConverter,
    ImageBuilder,
    ImageBuildOutput,
    ReleaseHost,
    ReleaseStore,
    SourceCheckout,
    SourceHost,
)
from novahub.collaborators.docker import DockerImageBuilder, GitCheckout
from novahub.collaborators.github import GitHubReleaseHost, GitHubSource
from novahub.collaborators.nitro import NitroCliConverter
from novahub.collaborators.storage import LocalReleaseHost, LocalReleaseStore

__all__ = [
    # Protocols
    "EnclaveConverter",
    "ImageBuilder",
    "ImageBuildOutput",
    "ReleaseHost",
    "ReleaseStore",
    "SourceCheckout",
    "SourceHost",
    # Implementations
    "DockerImageBuilder",
    "GitCheckout",
    "GitHubReleaseHost",
    "GitHubSource",
    "LocalReleaseHost",
    "LocalReleaseStore",
    "NitroCliConverter",
]
