"""
Credential Provider
Resolves AWS credentials from the profile / SSO / default chain and keeps
them fresh for the lifetime of the process.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime

from botocore.exceptions import BotoCoreError, ClientError
from botocore.session import Session

from aws_es_proxy.errors import CredentialsUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CredentialSet:
    """One consistent snapshot of AWS credentials"""

    access_key: str
    secret_key: str
    token: str | None = None
    expiry: datetime | None = None


class CredentialProvider:
    """
    Wraps a botocore credential object and hands out frozen snapshots.

    The first call selects a source:
      • AWS_PROFILE set   → SSO provider for the profile, then the rest of
                            the profile chain without SSO
      • no profile        → botocore's default chain (env, shared config,
                            container / instance metadata)

    Refreshable credentials renew themselves when `get_frozen_credentials`
    is called close to expiry, so every `resolve()` either returns a
    currently valid set or raises CredentialsUnavailable.
    """

    def __init__(self, profile: str | None = None, session_factory=Session):
        self.profile = profile
        self.source: str | None = None
        self._session_factory = session_factory
        self._credentials = None
        self._lock = asyncio.Lock()

    async def resolve(self) -> CredentialSet:
        credentials = self._credentials
        if credentials is None:
            async with self._lock:
                if self._credentials is None:
                    self._credentials = await asyncio.to_thread(self._load)
                credentials = self._credentials

        try:
            frozen = await asyncio.to_thread(credentials.get_frozen_credentials)
        except (BotoCoreError, ClientError) as exc:
            logger.error(f"Failed to refresh AWS credentials: {exc}")
            # Drop the stale handle so the next call walks the chain again
            if self._credentials is credentials:
                self._credentials = None
            raise CredentialsUnavailable(str(exc)) from exc

        if not frozen.access_key or not frozen.secret_key:
            raise CredentialsUnavailable("resolved AWS credentials are incomplete")

        return CredentialSet(
            access_key=frozen.access_key,
            secret_key=frozen.secret_key,
            token=frozen.token or None,
            expiry=getattr(credentials, "_expiry_time", None),
        )

    # ─── SOURCE SELECTION ────────────────────────────────────────────────────

    def _load(self):
        try:
            if self.profile:
                credentials = self._load_profile()
            else:
                session = self._session_factory()
                credentials = session.get_credentials()
                self.source = "default"
                if credentials is not None:
                    logger.info("AWS default credentials loaded successfully")
        except (BotoCoreError, ClientError) as exc:
            raise CredentialsUnavailable(str(exc)) from exc

        if credentials is None:
            raise CredentialsUnavailable("Unable to locate AWS credentials")
        return credentials

    def _load_profile(self):
        session = self._session_factory(profile=self.profile)
        resolver = session.get_component("credential_provider")

        sso_error = None
        try:
            credentials = resolver.get_provider("sso").load()
        except (BotoCoreError, ClientError) as exc:
            sso_error = exc
            credentials = None

        if credentials is not None:
            self.source = "sso"
            logger.info("AWS SSO credentials loaded successfully")
            return credentials

        logger.info("SSO credentials not available, trying regular profile...")
        resolver.remove("sso")
        try:
            credentials = resolver.load_credentials()
        except (BotoCoreError, ClientError) as exc:
            if sso_error is not None:
                raise CredentialsUnavailable(f"{exc} (SSO: {sso_error})") from exc
            raise

        if credentials is None:
            if sso_error is not None:
                raise CredentialsUnavailable(f"Unable to locate AWS credentials for profile {self.profile} (SSO: {sso_error})")
            return None

        self.source = "profile"
        logger.info("AWS profile credentials loaded successfully")
        return credentials
