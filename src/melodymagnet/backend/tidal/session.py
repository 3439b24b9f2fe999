from __future__ import annotations
from dataclasses import dataclass, field
from json import dumps, loads
from time import sleep
from typing import Any, Optional
from requests import RequestException, Response, Session as HttpSession
from ...errors import AuthorizationError, RequestError
from ...utils.logging import setup_logging

logger = setup_logging(__name__)

API_BASE = "https://api.tidal.com/v1"
AUTH_BASE = "https://auth.tidal.com/v1/oauth2"
DEVICE_CODE_GRANT = "urn:ietf:params:oauth:grant-type:device_code"
SCOPE = "r_usr w_usr w_sub"

METADATA_TIMEOUT = 30


def _check(response: Response, what: str) -> Response:
    if response.status_code == 401:
        raise AuthorizationError(
            f"TIDAL rejected the session while requesting {what}",
            details={"status": response.status_code},
        )
    if not response.ok:
        raise RequestError(
            f"TIDAL returned HTTP {response.status_code} for {what}: {response.text[:200]}",
            details={"status": response.status_code},
        )
    return response


def _json(response: Response, what: str) -> Any:
    try:
        return response.json()
    except ValueError as e:
        raise RequestError(f"TIDAL sent an undecodable body for {what}: {e}") from e


@dataclass
class DeviceAuthorization:
    device_code: str
    verification_uri_complete: str

    @property
    def link(self) -> str:
        uri = self.verification_uri_complete
        return uri if uri.startswith("http") else f"https://{uri}"


@dataclass
class TidalSession:
    """Credential for the TIDAL API plus the raw HTTP calls made with it.

    Obtained once through the device authorization flow, then kept alive with
    refresh tokens. serialize() writes the credential fields only.
    """

    client_id: str
    client_secret: str
    token_type: str = "Bearer"
    access_token: str = ""
    refresh_token: str = ""
    session_id: str = ""
    country_code: str = ""
    user_id: int = 0
    valid: bool = True
    http: Optional[HttpSession] = field(default=None, repr=False, compare=False)

    poll_interval: float = field(default=2.0, repr=False, compare=False)
    poll_attempts: int = field(default=60, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.http is None:
            self.http = HttpSession()

    @property
    def authorization(self) -> str:
        return f"{self.token_type} {self.access_token}"

    # -- device authorization -------------------------------------------------

    @classmethod
    def login(
        cls,
        client_id: str,
        client_secret: str,
        poll_interval: float = 2.0,
        poll_attempts: int = 60,
    ) -> "TidalSession":
        session = cls(
            client_id=client_id,
            client_secret=client_secret,
            poll_interval=poll_interval,
            poll_attempts=poll_attempts,
        )
        session.authorize()
        return session

    def authorize(self) -> None:
        """Run the device flow until the user approves the link.

        A link that expires unapproved is replaced by a fresh one.
        """
        while True:
            device = self._request_device_code()
            logger.info(f"[Session] login link: {device.link}, waiting...")
            print(f"Open {device.link} to authorize melodymagnet.")

            token = self._wait_for_approval(device)
            if token is not None:
                break
            logger.warning("[Session] login link expired unapproved, requesting a new one")

        self._apply_token(token)
        self._open()

    def _request_device_code(self) -> DeviceAuthorization:
        try:
            response = self.http.post(
                f"{AUTH_BASE}/device_authorization",
                data={"client_id": self.client_id, "scope": SCOPE},
                timeout=METADATA_TIMEOUT,
            )
        except RequestException as e:
            raise RequestError(f"Device authorization request failed: {e}") from e
        data = _json(_check(response, "device authorization"), "device authorization")
        try:
            return DeviceAuthorization(
                device_code=data["deviceCode"],
                verification_uri_complete=data["verificationUriComplete"],
            )
        except (KeyError, TypeError) as e:
            raise RequestError(f"Unexpected device authorization response: {data}") from e

    def _wait_for_approval(self, device: DeviceAuthorization) -> dict | None:
        for _ in range(self.poll_attempts):
            sleep(self.poll_interval)
            try:
                response = self.http.post(
                    f"{AUTH_BASE}/token",
                    data={
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "device_code": device.device_code,
                        "grant_type": DEVICE_CODE_GRANT,
                        "scope": SCOPE,
                    },
                    timeout=METADATA_TIMEOUT,
                )
            except RequestException as e:
                logger.info(f"[Session] token poll failed: {e}")
                continue

            logger.debug(f"[Session] token response: {response.status_code}")
            if response.ok:
                return _json(response, "device token")
        return None

    # -- tokens ---------------------------------------------------------------

    def _apply_token(self, token: dict) -> None:
        try:
            self.access_token = token["access_token"]
        except (KeyError, TypeError) as e:
            raise RequestError(f"Token response without access_token: {token}") from e
        self.token_type = token.get("token_type") or "Bearer"
        # TIDAL does not always rotate the refresh token
        self.refresh_token = token.get("refresh_token") or self.refresh_token
        self.valid = True

    def _open(self, allow_refresh: bool = True) -> None:
        try:
            response = self.http.get(
                f"{API_BASE}/sessions",
                headers={"Authorization": self.authorization},
                timeout=METADATA_TIMEOUT,
            )
        except RequestException as e:
            raise RequestError(f"Opening TIDAL session failed: {e}") from e

        if response.status_code == 401 and allow_refresh:
            logger.info("[Session] outdated, refresh needed")
            self.refresh()
            return

        data = _json(_check(response, "session"), "session")
        try:
            self.session_id = data["sessionId"]
            self.country_code = data["countryCode"]
            self.user_id = int(data["userId"])
        except (KeyError, TypeError, ValueError) as e:
            raise RequestError(f"Unexpected session response: {data}") from e
        logger.info(
            f"[Session] opened for user {self.user_id} ({self.country_code})"
        )

    def refresh(self) -> None:
        """Exchange the refresh token for a new access token.

        On any failure the session is marked invalid and AuthorizationError
        is raised; an invalid session needs a new device authorization.
        """
        try:
            if not self.refresh_token:
                raise AuthorizationError("No refresh token stored")
            try:
                response = self.http.post(
                    f"{AUTH_BASE}/token",
                    data={
                        "grant_type": "refresh_token",
                        "refresh_token": self.refresh_token,
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                    },
                    timeout=METADATA_TIMEOUT,
                )
            except RequestException as e:
                raise RequestError(f"Token refresh request failed: {e}") from e
            self._apply_token(_json(_check(response, "token refresh"), "token refresh"))
            self._open(allow_refresh=False)
        except RequestError as e:
            self.valid = False
            logger.error(f"[Session] refresh failed, session invalidated: {e}")
            if isinstance(e, AuthorizationError):
                raise
            raise AuthorizationError(f"Session refresh failed: {e}") from e

        logger.info("[Session] refreshed with success")

    # -- API calls ------------------------------------------------------------

    def get_json(self, path: str, params: dict | None = None, timeout: float = METADATA_TIMEOUT) -> Any:
        what = path.split("?")[0]
        query = {"countryCode": self.country_code}
        query.update(params or {})
        try:
            response = self.http.get(
                f"{API_BASE}{path}",
                params=query,
                headers={"Authorization": self.authorization},
                timeout=timeout,
            )
        except RequestException as e:
            raise RequestError(f"Request to {what} failed: {e}") from e
        return _json(_check(response, what), what)

    def get_bytes(self, url: str, timeout: float) -> bytes:
        try:
            with self.http.get(url, stream=True, timeout=timeout) as response:
                _check(response, "media")
                return b"".join(response.iter_content(chunk_size=1 << 16))
        except RequestException as e:
            raise RequestError(f"Download of {url} failed: {e}") from e

    # -- persistence ----------------------------------------------------------

    _PERSISTED = (
        "client_id",
        "client_secret",
        "token_type",
        "access_token",
        "refresh_token",
        "session_id",
        "country_code",
        "user_id",
        "valid",
    )

    def serialize(self) -> str:
        data = {name: getattr(self, name) for name in self._PERSISTED}
        return dumps(data, indent=4)

    @classmethod
    def restore(cls, blob: str) -> "TidalSession":
        data = loads(blob)
        if not isinstance(data, dict):
            raise ValueError("TIDAL session file does not hold an object")
        missing = [name for name in ("client_id", "client_secret") if name not in data]
        if missing:
            raise ValueError(f"TIDAL session file lacks {', '.join(missing)}")
        return cls(**{name: data[name] for name in cls._PERSISTED if name in data})
