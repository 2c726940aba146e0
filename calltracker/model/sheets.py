"""Google Sheets v4 values API over a shared httpx.AsyncClient.

Only the three calls the call counter needs are wrapped: read a range,
overwrite a range, append rows. Auth is the service-account JWT-bearer
flow; the access token is cached until shortly before it expires.
"""
from __future__ import annotations
import logging
import re
import time
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx
from jose import jwt
from jose.exceptions import JOSEError

from ..config import SHEETS_SCOPE
from ..errors import ConfigError, UpstreamError
from ..infra.timings import timeit

log = logging.getLogger(__name__)

DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"
JWT_BEARER = "urn:ietf:params:oauth:grant-type:jwt-bearer"
TOKEN_LIFETIME_SECONDS = 3600
TOKEN_REFRESH_MARGIN = 60

_PLAIN_SHEET_NAME = re.compile(r"^[A-Za-z0-9_]+$")


def a1_range(sheet: str, cells: str) -> str:
    """`Sheet1!A:B`, quoting tab names that are not plain identifiers."""
    if _PLAIN_SHEET_NAME.match(sheet):
        return f"{sheet}!{cells}"
    escaped = sheet.replace("'", "''")
    return f"'{escaped}'!{cells}"


def _upstream_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str):
            desc = body.get("error_description")
            return f"{err}: {desc}" if desc else err
    return f"HTTP {resp.status_code} from {resp.request.url.host}"


class ServiceAccountAuth:
    def __init__(self, http: httpx.AsyncClient, info: Dict[str, Any],
                 scopes: str = SHEETS_SCOPE) -> None:
        self.http = http
        self.client_email = info.get("client_email")
        self.private_key = info.get("private_key")
        self.private_key_id = info.get("private_key_id")
        self.token_uri = info.get("token_uri") or DEFAULT_TOKEN_URI
        self.scopes = scopes
        if not self.client_email or not self.private_key:
            raise ConfigError(
                "Service account needs client_email and private_key"
            )
        self._token: Optional[str] = None
        self._expires_at = 0.0

    def assertion(self, now: Optional[int] = None) -> str:
        now = int(now if now is not None else time.time())
        claims = {
            "iss": self.client_email,
            "scope": self.scopes,
            "aud": self.token_uri,
            "iat": now,
            "exp": now + TOKEN_LIFETIME_SECONDS,
        }
        headers = {"kid": self.private_key_id} if self.private_key_id else None
        try:
            return jwt.encode(
                claims, self.private_key, algorithm="RS256", headers=headers
            )
        except JOSEError as e:
            raise ConfigError(f"Cannot sign service account assertion: {e}")

    async def token(self) -> str:
        if self._token and time.time() < self._expires_at:
            return self._token
        async with timeit("sheets.token"):
            try:
                resp = await self.http.post(
                    self.token_uri,
                    data={"grant_type": JWT_BEARER,
                          "assertion": self.assertion()},
                )
            except httpx.HTTPError as e:
                raise UpstreamError(f"Token request failed: {e}")
        if resp.status_code >= 400:
            raise UpstreamError(_upstream_message(resp))
        try:
            body = resp.json()
        except ValueError:
            body = None
        token = body.get("access_token") if isinstance(body, dict) else None
        if not token:
            raise UpstreamError("Token response lacks access_token")
        lifetime = int(body.get("expires_in", TOKEN_LIFETIME_SECONDS))
        self._token = token
        self._expires_at = time.time() + lifetime - TOKEN_REFRESH_MARGIN
        log.debug("refreshed sheets token for %s (valid %ss)",
                  self.client_email, lifetime)
        return token


class SheetsClient:
    def __init__(self, http: httpx.AsyncClient, auth: ServiceAccountAuth,
                 spreadsheet_id: str,
                 base_url: str = "https://sheets.googleapis.com/v4") -> None:
        if not spreadsheet_id:
            raise ConfigError("Missing GOOGLE_SHEET_ID env var")
        self.http = http
        self.auth = auth
        self.spreadsheet_id = spreadsheet_id
        self.base_url = base_url.rstrip("/")

    def _url(self, rng: str, suffix: str = "") -> str:
        return (
            f"{self.base_url}/spreadsheets/{quote(self.spreadsheet_id, safe='')}"
            f"/values/{quote(rng, safe='')}{suffix}"
        )

    async def _request(self, method: str, url: str, **kw) -> Dict[str, Any]:
        token = await self.auth.token()
        try:
            resp = await self.http.request(
                method, url,
                headers={"authorization": f"Bearer {token}"},
                **kw,
            )
        except httpx.HTTPError as e:
            raise UpstreamError(f"Sheets request failed: {e}")
        if resp.status_code >= 400:
            raise UpstreamError(_upstream_message(resp))
        try:
            body = resp.json()
        except ValueError:
            raise UpstreamError("Sheets returned a non-JSON response")
        if not isinstance(body, dict):
            raise UpstreamError("Sheets returned an unexpected response")
        return body

    async def read_range(self, rng: str) -> List[List[Any]]:
        async with timeit("sheets.read"):
            body = await self._request("GET", self._url(rng))
        values = body.get("values") or []
        if not isinstance(values, list):
            raise UpstreamError("Sheets values is not a list")
        return [row if isinstance(row, list) else [] for row in values]

    async def update_range(self, rng: str, values: List[List[Any]]) -> None:
        async with timeit("sheets.write"):
            await self._request(
                "PUT", self._url(rng),
                params={"valueInputOption": "RAW"},
                json={"majorDimension": "ROWS",
                      "values": values},
            )

    async def append_rows(self, rng: str, values: List[List[Any]]) -> None:
        async with timeit("sheets.append"):
            await self._request(
                "POST", self._url(rng, ":append"),
                params={"valueInputOption": "RAW",
                        "insertDataOption": "INSERT_ROWS"},
                json={"majorDimension": "ROWS", "values": values},
            )
