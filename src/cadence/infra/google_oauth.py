from __future__ import annotations

import json
import time
import urllib.parse
from dataclasses import dataclass
from typing import Any, Dict, Optional

import urllib3
from botocore.exceptions import ClientError

from .aws_clients import credentials_table, secrets as _secrets
from .config import (
    CREDENTIALS_PK_ATTR,
    CREDENTIALS_SK_ATTR,
    CREDENTIALS_SK_VALUE,
    GOOGLE_OAUTH_SECRET_NAME,
    HTTP_CONNECT_TIMEOUT,
    HTTP_READ_TIMEOUT,
    TOKEN_EXPIRY_SKEW_SECONDS,
)
from .serialization import to_json_safe
from ..scheduling.errors import NoCredentials, TransmissionFailure

http = urllib3.PoolManager(timeout=urllib3.Timeout(connect=HTTP_CONNECT_TIMEOUT, read=HTTP_READ_TIMEOUT))

TOKEN_URL = "https://oauth2.googleapis.com/token"


@dataclass(frozen=True)
class Credentials:
    owner_id: str
    access_token: str
    expiry_ms: Optional[int] = None


def credentials_key(owner_id: str) -> Dict[str, Any]:
    key: Dict[str, Any] = {CREDENTIALS_PK_ATTR: f"creds#{owner_id}"}
    if CREDENTIALS_SK_ATTR:
        key[CREDENTIALS_SK_ATTR] = CREDENTIALS_SK_VALUE
    return key


def _get_oauth_secret(secret_name: str, client=None) -> dict:
    resp = (client or _secrets()).get_secret_value(SecretId=secret_name)
    return json.loads(resp["SecretString"])


def _refresh_access_token(client_id: str, client_secret: str, refresh_token: str, pool=None) -> dict:
    body = urllib.parse.urlencode(
        {
            "client_id": client_id,
            "client_secret": client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
    ).encode("utf-8")

    try:
        resp = (pool or http).request(
            "POST",
            TOKEN_URL,
            body=body,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
    except urllib3.exceptions.HTTPError as e:
        raise TransmissionFailure(f"token endpoint unreachable: {e!r}") from e

    try:
        data = json.loads(resp.data.decode("utf-8") or "{}")
    except ValueError:
        data = {}
    if resp.status >= 400:
        raise TransmissionFailure(f"token refresh failed ({resp.status}): {data}", status=resp.status)
    if not data.get("access_token"):
        raise TransmissionFailure("token refresh returned no access_token", status=resp.status)
    return data


class CredentialResolver:
    """
    Reads per-owner Google tokens from the credentials table:
      {pk: "creds#<owner_id>", record_type: "OWNER_CREDENTIALS",
       tokens_json: '{"access_token": ..., "refresh_token": ..., "expiry_date": <ms>}'}
    Refreshes an expired access token and writes it back.
    """

    def __init__(self, table=None, secrets_client=None, pool=None, secret_name: str = GOOGLE_OAUTH_SECRET_NAME):
        self._table = table
        self._secrets_client = secrets_client
        self._pool = pool
        self._secret_name = secret_name

    @property
    def table(self):
        if self._table is None:
            self._table = credentials_table()
        return self._table

    def _load_tokens(self, owner_id: str) -> Optional[dict]:
        try:
            item = self.table.get_item(Key=credentials_key(owner_id), ConsistentRead=True).get("Item")
        except ClientError as e:
            raise TransmissionFailure(f"credential store read failed: {e!r}") from e
        if not item:
            return None
        try:
            tokens = json.loads(item.get("tokens_json") or "{}")
        except ValueError:
            return None
        return to_json_safe(tokens) if isinstance(tokens, dict) else None

    def _store_tokens(self, owner_id: str, tokens: dict) -> None:
        try:
            self.table.update_item(
                Key=credentials_key(owner_id),
                UpdateExpression="SET #tj = :tj",
                ExpressionAttributeNames={"#tj": "tokens_json"},
                ExpressionAttributeValues={":tj": json.dumps(tokens)},
            )
        except ClientError as e:
            # The refreshed token is still usable for this attempt.
            print(f"[creds] token write-back failed owner={owner_id} err={e!r}")

    def resolve(self, owner_id: str) -> Credentials:
        if not owner_id:
            raise NoCredentials(owner_id, "missing_owner")

        tokens = self._load_tokens(owner_id)
        if not tokens:
            raise NoCredentials(owner_id)

        access_token = tokens.get("access_token")
        expiry_ms = tokens.get("expiry_date")
        now_ms = int(time.time() * 1000)
        if access_token and (
            expiry_ms is None or int(expiry_ms) - TOKEN_EXPIRY_SKEW_SECONDS * 1000 > now_ms
        ):
            return Credentials(owner_id=owner_id, access_token=access_token, expiry_ms=expiry_ms)

        refresh_token = tokens.get("refresh_token")
        if not refresh_token:
            raise NoCredentials(owner_id, "expired_without_refresh_token")

        secret = _get_oauth_secret(self._secret_name, client=self._secrets_client)
        try:
            data = _refresh_access_token(secret["client_id"], secret["client_secret"], refresh_token, pool=self._pool)
        except TransmissionFailure as e:
            if e.status in (400, 401) and "invalid_grant" in str(e):
                raise NoCredentials(owner_id, "invalid_grant") from e
            raise

        tokens["access_token"] = data["access_token"]
        tokens["expiry_date"] = now_ms + int(data.get("expires_in", 3600)) * 1000
        if data.get("refresh_token"):
            tokens["refresh_token"] = data["refresh_token"]
        self._store_tokens(owner_id, tokens)
        print(f"[creds] refreshed owner={owner_id}")

        return Credentials(owner_id=owner_id, access_token=tokens["access_token"], expiry_ms=tokens["expiry_date"])
