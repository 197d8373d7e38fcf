"""
Revisioner - Resolves the content identity of a package source.

The identity of a package is the digest of the image manifest its source
reference points to. Digest-pinned references resolve locally; tags are
resolved with a HEAD request against the registry's v2 API.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import aiohttp

from models import Package

logger = logging.getLogger(__name__)

DOCKER_HUB_REGISTRIES = ("docker.io", "index.docker.io")
DOCKER_HUB_API_HOST = "registry-1.docker.io"
DEFAULT_TAG = "latest"

MANIFEST_ACCEPT = ", ".join(
    [
        "application/vnd.oci.image.index.v1+json",
        "application/vnd.oci.image.manifest.v1+json",
        "application/vnd.docker.distribution.manifest.list.v2+json",
        "application/vnd.docker.distribution.manifest.v2+json",
    ]
)

_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')


class RegistryError(Exception):
    """Raised when a registry cannot resolve a reference."""


@dataclass(frozen=True)
class ImageReference:
    """A parsed image reference."""

    registry: str
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    @property
    def api_host(self) -> str:
        if self.registry in DOCKER_HUB_REGISTRIES:
            return DOCKER_HUB_API_HOST
        return self.registry

    @property
    def identifier(self) -> str:
        """The tag or digest to request from the registry."""
        return self.digest or self.tag or DEFAULT_TAG

    def __str__(self) -> str:
        if self.digest:
            return f"{self.registry}/{self.repository}@{self.digest}"
        return f"{self.registry}/{self.repository}:{self.identifier}"


def parse_reference(reference: str, default_registry: str) -> ImageReference:
    """
    Parse an image reference such as ``xpkg.example.io/org/pkg:v1.0.0``.

    References without a registry host use ``default_registry``; Docker Hub
    repositories without an organization get the ``library/`` prefix.

    Raises:
        ValueError: If the reference is empty or malformed.
    """
    if not reference or reference != reference.strip():
        raise ValueError(f"invalid image reference: {reference!r}")

    remainder, digest = reference, None
    if "@" in remainder:
        remainder, digest = remainder.split("@", 1)
        if ":" not in digest:
            raise ValueError(f"invalid digest in image reference: {reference!r}")

    tag = None
    last_slash = remainder.rfind("/")
    last_colon = remainder.rfind(":")
    if last_colon > last_slash:
        remainder, tag = remainder[:last_colon], remainder[last_colon + 1 :]
        if not tag:
            raise ValueError(f"empty tag in image reference: {reference!r}")

    parts = remainder.split("/", 1)
    if len(parts) == 2 and (
        "." in parts[0] or ":" in parts[0] or parts[0] == "localhost"
    ):
        registry, repository = parts
    else:
        registry, repository = default_registry, remainder

    if not repository:
        raise ValueError(f"missing repository in image reference: {reference!r}")
    if registry in DOCKER_HUB_REGISTRIES and "/" not in repository:
        repository = f"library/{repository}"

    return ImageReference(
        registry=registry, repository=repository, tag=tag, digest=digest
    )


def digest_hex(digest: str) -> str:
    """Strip the algorithm from a ``sha256:<hex>`` digest."""
    return digest.split(":", 1)[-1]


class Revisioner(ABC):
    """Computes the content identity of a package."""

    @abstractmethod
    async def resolve_identity(
        self,
        package: Package,
        source: Optional[str] = None,
        pull_secrets: Optional[List[str]] = None,
    ) -> str:
        """
        Resolve the content identity of a package.

        Args:
            package: The package being reconciled.
            source: Reference to resolve instead of ``package.source``, set
                when an image config rewrote the source.
            pull_secrets: Extra pull secrets, e.g. from an image config.

        Returns:
            The identity string. An empty string means the identity is not
            known yet and the caller should try again later.
        """
        pass


class RegistryRevisioner(Revisioner):
    """Revisioner that asks an OCI registry for the manifest digest."""

    def __init__(
        self,
        default_registry: str = "index.docker.io",
        timeout: int = 30,
        credentials: Optional[Dict[str, Dict[str, str]]] = None,
        insecure_registries: Optional[List[str]] = None,
    ):
        self.default_registry = default_registry
        self.timeout = timeout
        self.credentials = credentials or {}
        self.insecure_registries = set(insecure_registries or [])

    async def resolve_identity(
        self,
        package: Package,
        source: Optional[str] = None,
        pull_secrets: Optional[List[str]] = None,
    ) -> str:
        reference = source or package.source
        try:
            ref = parse_reference(reference, self.default_registry)
        except ValueError as e:
            raise RegistryError(str(e)) from e

        if ref.digest:
            return digest_hex(ref.digest)

        auth = self._auth_for(list(pull_secrets or []) + list(package.pull_secrets))
        digest = await self._fetch_digest(ref, auth)
        logger.debug(f"Resolved {ref} to {digest}")
        return digest_hex(digest)

    def _auth_for(self, secrets: List[str]) -> Optional[aiohttp.BasicAuth]:
        """Return credentials of the first pull secret that has any."""
        for secret in secrets:
            creds = self.credentials.get(secret)
            if creds:
                return aiohttp.BasicAuth(creds["username"], creds["password"])
            logger.warning(f"No credentials configured for pull secret '{secret}'")
        return None

    def _manifest_url(self, ref: ImageReference) -> str:
        scheme = "http" if ref.registry in self.insecure_registries else "https"
        return (
            f"{scheme}://{ref.api_host}/v2/{ref.repository}"
            f"/manifests/{ref.identifier}"
        )

    async def _fetch_digest(
        self, ref: ImageReference, auth: Optional[aiohttp.BasicAuth]
    ) -> str:
        url = self._manifest_url(ref)
        headers = {"Accept": MANIFEST_ACCEPT}
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.head(url, headers=headers, auth=auth) as response:
                if response.status != 401:
                    return self._digest_from(ref, response)
                challenge = response.headers.get("WWW-Authenticate", "")

            token = await self._fetch_token(session, challenge, auth)
            headers["Authorization"] = f"Bearer {token}"
            async with session.head(url, headers=headers) as response:
                return self._digest_from(ref, response)

    async def _fetch_token(
        self,
        session: aiohttp.ClientSession,
        challenge: str,
        auth: Optional[aiohttp.BasicAuth],
    ) -> str:
        """Exchange a bearer challenge for a registry token."""
        scheme, params = parse_challenge(challenge)
        if scheme.lower() != "bearer" or "realm" not in params:
            raise RegistryError(f"Unsupported registry auth challenge: {challenge!r}")

        query = {k: v for k, v in params.items() if k in ("service", "scope")}
        async with session.get(params["realm"], params=query, auth=auth) as response:
            if response.status != 200:
                raise RegistryError(
                    f"Failed to get registry token: HTTP {response.status}"
                )
            body = await response.json(content_type=None)

        token = body.get("token") or body.get("access_token")
        if not token:
            raise RegistryError("Registry token response contained no token")
        return token

    def _digest_from(
        self, ref: ImageReference, response: aiohttp.ClientResponse
    ) -> str:
        if response.status == 404:
            raise RegistryError(f"Image {ref} not found")
        if response.status != 200:
            raise RegistryError(
                f"Failed to resolve image {ref}: HTTP {response.status}"
            )
        digest = response.headers.get("Docker-Content-Digest")
        if not digest:
            raise RegistryError(f"Registry returned no digest for image {ref}")
        return digest


def parse_challenge(challenge: str) -> Tuple[str, Dict[str, str]]:
    """Split a WWW-Authenticate header into its scheme and parameters."""
    scheme, _, rest = challenge.strip().partition(" ")
    return scheme, dict(_CHALLENGE_PARAM.findall(rest))
