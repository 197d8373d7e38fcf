"""
Image Config Resolution - Rewrites package sources and finds pull secrets.

Image configs let operators redirect image references to a mirror and attach
pull secrets to references by prefix. The reconciler records on the package
which configs were applied.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from errors import ReconcileError, ReconcileStep
from models import ImageConfig, ImageConfigReason, ImageConfigRef, Package

logger = logging.getLogger(__name__)


class ConfigStore(ABC):
    """Matches image references against configured image configs."""

    @abstractmethod
    async def rewrite_path(self, reference: str) -> Tuple[str, str]:
        """
        Rewrite an image reference.

        Returns:
            Tuple of (config_name, new_reference). Both are empty strings
            when no config rewrites the reference.
        """
        pass

    @abstractmethod
    async def pull_secret_for(self, reference: str) -> Tuple[str, str]:
        """
        Find the pull secret for an image reference.

        Returns:
            Tuple of (config_name, secret_name). Both are empty strings when
            no config supplies a pull secret.
        """
        pass


def select_image_config(
    configs: List[ImageConfig],
    reference: str,
    predicate: Callable[[ImageConfig], bool],
) -> Optional[ImageConfig]:
    """Return the matching config with the longest prefix, if any."""
    candidates = [c for c in configs if predicate(c) and c.matches(reference)]
    if not candidates:
        return None
    # Name breaks ties between equal prefixes so the choice is stable
    return max(candidates, key=lambda c: (len(c.prefix), c.name))


class DatabaseConfigStore(ConfigStore):
    """ConfigStore backed by the image_configs table."""

    def __init__(self, store):
        self.store = store

    async def rewrite_path(self, reference: str) -> Tuple[str, str]:
        configs = await self.store.list_image_configs()
        config = select_image_config(
            configs, reference, lambda c: c.rewrite_prefix is not None
        )
        if config is None:
            return "", ""
        return config.name, config.rewrite(reference)

    async def pull_secret_for(self, reference: str) -> Tuple[str, str]:
        configs = await self.store.list_image_configs()
        config = select_image_config(configs, reference, lambda c: bool(c.pull_secret))
        if config is None:
            return "", ""
        return config.name, config.pull_secret


@dataclass
class ImageResolution:
    """Outcome of matching a package source against image configs."""

    source: str
    resolved_source: Optional[str] = None
    pull_secret: Optional[str] = None
    applied_refs: List[ImageConfigRef] = field(default_factory=list)

    @property
    def pull_secrets(self) -> List[str]:
        return [self.pull_secret] if self.pull_secret else []


async def resolve_image(config_store: ConfigStore, package: Package) -> ImageResolution:
    """
    Rewrite the package source and look up its pull secret.

    The pull secret is looked up for the rewritten reference, since that is
    the reference the registry will see.

    Raises:
        ReconcileError: REWRITE_IMAGE or GET_PULL_CONFIG on failure.
    """
    resolution = ImageResolution(source=package.source)

    try:
        config_name, new_reference = await config_store.rewrite_path(package.source)
    except Exception as e:
        raise ReconcileError(ReconcileStep.REWRITE_IMAGE, e) from e

    if new_reference:
        logger.info(
            f"Image config '{config_name}' rewrote {package.source} "
            f"to {new_reference} for package {package.name}"
        )
        resolution.source = new_reference
        resolution.resolved_source = new_reference
        resolution.applied_refs.append(
            ImageConfigRef(name=config_name, reason=ImageConfigReason.REWRITE)
        )

    try:
        config_name, secret = await config_store.pull_secret_for(resolution.source)
    except Exception as e:
        raise ReconcileError(ReconcileStep.GET_PULL_CONFIG, e) from e

    if secret:
        resolution.pull_secret = secret
        resolution.applied_refs.append(
            ImageConfigRef(name=config_name, reason=ImageConfigReason.PULL_SECRET)
        )

    return resolution
