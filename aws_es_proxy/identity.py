"""
Identity Validator
Calls STS GetCallerIdentity once at startup so bad or missing credentials
fail the process before the listener binds.
"""

import logging
from dataclasses import dataclass

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from aws_es_proxy.credentials import CredentialProvider
from aws_es_proxy.errors import CredentialsUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    account: str
    arn: str = ""
    user_id: str = ""


class IdentityValidator:
    def __init__(self, provider: CredentialProvider, session_factory=aioboto3.Session):
        self.provider = provider
        self._session_factory = session_factory

    async def validate(self, region: str) -> Identity:
        """Resolve credentials and confirm them against STS"""
        credentials = await self.provider.resolve()

        session = self._session_factory(
            aws_access_key_id=credentials.access_key,
            aws_secret_access_key=credentials.secret_key,
            aws_session_token=credentials.token,
            region_name=region,
        )
        try:
            async with session.client("sts", region_name=region) as sts:
                response = await sts.get_caller_identity()
        except (BotoCoreError, ClientError) as exc:
            raise CredentialsUnavailable(str(exc)) from exc

        identity = Identity(account=response["Account"], arn=response.get("Arn", ""), user_id=response.get("UserId", ""))
        logger.info(f"AWS credentials validated successfully for account: {identity.account}")
        logger.debug(f"Caller identity: {identity.arn}")
        return identity
