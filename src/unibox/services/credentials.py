"""Credential providers.

Token acquisition and refresh belong to the authentication layer. The sync
engine only asks for a currently valid credential for a connection and
treats a missing one as an expired credential.
"""

import os
from typing import Protocol

from unibox.db.models.integration_connection import IntegrationConnectionRow
from unibox.errors.exceptions import AuthExpiredError
from unibox.models.integration_connection import Credentials


class CredentialProvider(Protocol):
    async def get_credentials(self, connection: IntegrationConnectionRow) -> Credentials:
        ...


class EnvCredentialProvider:
    """Resolves ``credential_ref`` as the NAME of an environment variable.

    Secrets never live in the database, only the variable name does.
    """

    async def get_credentials(self, connection: IntegrationConnectionRow) -> Credentials:
        if not connection.credential_ref:
            raise AuthExpiredError(details={"connection_id": connection.connection_id})
        token = os.environ.get(connection.credential_ref)
        if not token:
            raise AuthExpiredError(
                details={"connection_id": connection.connection_id, "credential_ref": connection.credential_ref}
            )
        return Credentials(access_token=token)


class StaticCredentialProvider:
    """Fixed credentials keyed by connection id (local mode and tests)."""

    def __init__(self, credentials: dict[str, Credentials] | None = None, default: Credentials | None = None):
        self._credentials = dict(credentials or {})
        self._default = default

    async def get_credentials(self, connection: IntegrationConnectionRow) -> Credentials:
        creds = self._credentials.get(connection.connection_id, self._default)
        if creds is None:
            raise AuthExpiredError(details={"connection_id": connection.connection_id})
        return creds
