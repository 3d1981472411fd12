"""Image registry access."""

from image_shepherd.registry.auth import CloudConfig, RegistryAuthError, connect, load_cloud
from image_shepherd.registry.client import GlanceClient, RegistryClient

__all__ = [
    "CloudConfig",
    "GlanceClient",
    "RegistryAuthError",
    "RegistryClient",
    "connect",
    "load_cloud",
]
