"""OCI registry backend built on the ORAS Python SDK.

Each published artifact is pushed twice under the same manifest: once with
the human tag and once with a content-addressed tag ``sha256-<hex>``. The
content-addressed tag makes pull-by-digest a single manifest fetch, which is
what the publisher needs to decide whether a republish is a no-op. The human
tag is kept in a manifest annotation so lookup can rebuild the original
ArtifactReference.

Credentials are read from the environment variables named in RegistryAuth,
never from the config file itself.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Any

import structlog
from oras.client import OrasClient

from promoter_core.errors import PromotionError, PublishRejectedError, PublishUnavailableError
from promoter_core.registry.backend import ArtifactHandle, RegistryBackend
from promoter_core.schemas.config import AuthType, RegistryConfig
from promoter_core.schemas.promotion import ArtifactReference

logger = structlog.get_logger(__name__)

ANNOTATION_TAG = "io.promoter.tag"
ANNOTATION_DIGEST = "io.promoter.content-digest"
ANNOTATION_TITLE = "org.opencontainers.image.title"

TOKEN_USERNAME = "__token__"

_REJECTION_STATUS_CODES = frozenset({401, 403, 413})
_REJECTION_MARKERS = ("unauthorized", "authentication", "denied", "forbidden", "quota")
_NOT_FOUND_MARKERS = ("manifest unknown", "not found", "404")


def content_tag(digest: str) -> str:
    """Content-addressed tag for a ``sha256:<hex>`` digest."""
    return digest.replace(":", "-", 1)


class OrasRegistry(RegistryBackend):
    """RegistryBackend for OCI registries (ACR, GHCR, Harbor, distribution).

    Example:
        >>> backend = OrasRegistry(RegistryConfig(uri="oci://localhost:5000/apps"))
        >>> backend.location("my-app")
        'localhost:5000/apps/my-app'
    """

    def __init__(self, config: RegistryConfig) -> None:
        self._config = config
        self._base = config.uri.removeprefix("oci://").rstrip("/")
        self._registry_host = self._base.split("/")[0]

    @property
    def registry(self) -> str:
        return self._registry_host

    def location(self, name: str) -> str:
        return f"{self._base}/{name}"

    def _credentials(self) -> tuple[str, str] | None:
        """Resolve credentials from the environment, None for anonymous access."""
        auth = self._config.auth
        if auth.type == AuthType.ANONYMOUS:
            return None

        password = os.environ.get(auth.password_env or "")
        if auth.type == AuthType.TOKEN:
            username = os.environ.get(auth.username_env or "") or TOKEN_USERNAME
        else:
            username = os.environ.get(auth.username_env or "")

        if not username or not password:
            missing = [
                var
                for var in (auth.username_env, auth.password_env)
                if var and not os.environ.get(var)
            ]
            raise PublishRejectedError(
                self._registry_host,
                f"registry credentials not set (missing environment variables: {missing})",
            )
        return username, password

    def _create_oras_client(self) -> OrasClient:
        """Create and authenticate an ORAS client.

        Raises:
            PublishRejectedError: If login is refused.
            PublishUnavailableError: If the registry cannot be reached for login.
        """
        auth_backend = "basic" if self._config.auth.type == AuthType.BASIC else "token"
        oras_client = OrasClient(
            insecure=not self._config.tls_verify,
            auth_backend=auth_backend,
        )

        credentials = self._credentials()
        if credentials is not None:
            username, password = credentials
            try:
                oras_client.login(
                    hostname=self._registry_host,
                    username=username,
                    password=password,
                )
            except OSError as e:
                raise PublishUnavailableError(self._registry_host, f"login failed: {e}") from e
            except Exception as e:
                raise PublishRejectedError(
                    self._registry_host,
                    f"Failed to authenticate with registry: {e}",
                ) from e

        return oras_client

    def _translate_error(self, error: Exception, operation: str) -> PromotionError:
        """Map an ORAS or transport failure onto the publish error taxonomy."""
        message = str(error)
        lowered = message.lower()
        if any(marker in lowered for marker in _REJECTION_MARKERS):
            return PublishRejectedError(self._registry_host, f"{operation} refused: {message}")
        return PublishUnavailableError(self._registry_host, f"{operation} failed: {message}")

    def _check_response(self, response: Any, operation: str) -> None:
        if getattr(response, "ok", True):
            return

        status_code = getattr(response, "status_code", None)
        detail = f"{operation} failed: {status_code}: {getattr(response, 'text', '')}"
        if status_code in _REJECTION_STATUS_CODES:
            raise PublishRejectedError(self._registry_host, detail)
        raise PublishUnavailableError(self._registry_host, detail)

    def push(self, name: str, tag: str, handle: ArtifactHandle) -> str:
        digest = handle.digest
        annotations = {
            ANNOTATION_TAG: tag,
            ANNOTATION_DIGEST: digest,
            ANNOTATION_TITLE: handle.filename,
        }
        repository = self.location(name)

        try:
            oras_client = self._create_oras_client()
            with tempfile.TemporaryDirectory() as tmpdir:
                tmpdir_path = Path(tmpdir)

                if handle.path is not None:
                    layer_path = handle.path
                else:
                    layer_path = tmpdir_path / handle.filename
                    layer_path.write_bytes(handle.read_bytes())

                config_file = tmpdir_path / "config.json"
                config_file.write_bytes(b"{}")

                for target_tag in (tag, content_tag(digest)):
                    response = oras_client.push(
                        target=f"{repository}:{target_tag}",
                        config_path=str(config_file),
                        files=[f"{layer_path}:{handle.media_type}"],
                        manifest_annotations=annotations,
                        disable_path_validation=True,
                    )
                    self._check_response(response, "push")
        except PromotionError:
            raise
        except Exception as e:
            raise self._translate_error(e, "push") from e

        logger.debug("oras_push_completed", repository=repository, tag=tag, digest=digest)
        return digest

    def lookup(self, name: str, digest: str) -> ArtifactReference | None:
        repository = self.location(name)
        try:
            oras_client = self._create_oras_client()
            manifest: dict[str, Any] = oras_client.get_manifest(
                container=f"{repository}:{content_tag(digest)}"
            )
        except PromotionError:
            raise
        except Exception as e:
            lowered = str(e).lower()
            if any(marker in lowered for marker in _NOT_FOUND_MARKERS):
                return None
            raise self._translate_error(e, "lookup") from e

        annotations = manifest.get("annotations") or {}
        if annotations.get(ANNOTATION_DIGEST, digest) != digest:
            logger.warning(
                "oras_lookup_digest_mismatch",
                repository=repository,
                expected=digest,
                found=annotations.get(ANNOTATION_DIGEST),
            )
            return None

        return ArtifactReference(
            location=repository,
            digest=digest,
            tag=annotations.get(ANNOTATION_TAG) or content_tag(digest),
        )


__all__ = [
    "ANNOTATION_DIGEST",
    "ANNOTATION_TAG",
    "OrasRegistry",
    "content_tag",
]
