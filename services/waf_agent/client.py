"""
Signed control-plane client for the edge WAF agent.

The backend holds the RSA private key, the agent holds the public key.
A toggle command authenticates the exact string "<domain>|<true|false>"
with RSA-PSS (MGF1-SHA256, SHA-256, maximum salt length) and is POSTed to
<agent>/waf/toggle with a bearer token.

Fail-closed: every problem (no key, transport error, non-2xx, non-OK body)
raises WafAgentError. Callers persist a WAF status change only after
toggle_enforcement() has returned.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import requests
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from api.config.env import WafAgentSettings
from api.metrics import WAF_TOGGLE_REQUESTS

log = logging.getLogger("edgeguard.waf_agent")

TOGGLE_PATH = "/waf/toggle"
HEALTH_PATH = "/health"
HEALTH_TIMEOUT_SECONDS = 5.0


class WafAgentError(RuntimeError):
    def __init__(
        self,
        code: str,
        message: str,
        *,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message
        self.status_code = status_code


@dataclass(frozen=True)
class ToggleResult:
    status: str
    message: str
    domain: str
    enforcement_status: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "message": self.message,
            "domain": self.domain,
            "enforcement_status": self.enforcement_status,
        }


def toggle_message(domain: str, enabled: bool) -> bytes:
    return f"{domain}|{'true' if enabled else 'false'}".encode("utf-8")


def _pss() -> padding.PSS:
    return padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.MAX_LENGTH)


def normalize_pem(raw: str) -> str:
    v = (raw or "").strip()
    if len(v) >= 2 and v[0] == v[-1] and v[0] in {'"', "'"}:
        v = v[1:-1]
    return v.replace("\\n", "\n").strip()


def load_rsa_private_key(pem: str) -> rsa.RSAPrivateKey:
    key = serialization.load_pem_private_key(normalize_pem(pem).encode("utf-8"), password=None)
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ValueError(f"expected an RSA private key, got {type(key).__name__}")
    return key


def verify_toggle_signature(
    public_key_pem: str, domain: str, enabled: bool, signature: str
) -> bool:
    """Agent-side check of a toggle signature."""
    try:
        pub = serialization.load_pem_public_key(normalize_pem(public_key_pem).encode("utf-8"))
        if not isinstance(pub, rsa.RSAPublicKey):
            return False
        pub.verify(
            base64.b64decode(signature.encode("utf-8"), validate=True),
            toggle_message(domain, enabled),
            # verifier side: the salt length is recovered from the signature
            padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.AUTO),
            hashes.SHA256(),
        )
        return True
    except (InvalidSignature, UnsupportedAlgorithm, ValueError, TypeError):
        return False


class WafAgentClient:
    def __init__(
        self,
        url: str,
        private_key_pem: str = "",
        auth_token: str = "",
        *,
        timeout: Optional[float] = None,
        allow_insecure_http: bool = False,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._url = (url or "").strip().rstrip("/")
        self._auth_token = auth_token
        self._timeout = timeout
        self._allow_insecure_http = bool(allow_insecure_http)
        self._session = session or requests.Session()
        self._private_key: Optional[rsa.RSAPrivateKey] = None
        self.reload_key(private_key_pem)

    @classmethod
    def from_env(cls, session: Optional[requests.Session] = None) -> "WafAgentClient":
        return cls.from_settings(WafAgentSettings.from_env(), session=session)

    @classmethod
    def from_settings(
        cls, settings: WafAgentSettings, session: Optional[requests.Session] = None
    ) -> "WafAgentClient":
        return cls(
            settings.url,
            settings.private_key_pem,
            settings.auth_token,
            timeout=settings.timeout_seconds,
            allow_insecure_http=settings.allow_insecure_http,
            session=session,
        )

    @property
    def url(self) -> str:
        return self._url

    @property
    def key_loaded(self) -> bool:
        return self._private_key is not None

    def reload_key(self, private_key_pem: str) -> bool:
        """Load (or replace) the signing key. Never raises."""
        if not normalize_pem(private_key_pem):
            self._private_key = None
            log.warning(
                "waf_agent.key_missing EG_WAF_AGENT_PRIVATE_KEY not set; toggles will fail until configured"
            )
            return False
        try:
            self._private_key = load_rsa_private_key(private_key_pem)
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            self._private_key = None
            log.error("waf_agent.key_invalid err=%s", exc)
            return False
        log.info("waf_agent.key_loaded bits=%s", self._private_key.key_size)
        return True

    def sign(self, message: bytes) -> str:
        if self._private_key is None:
            raise WafAgentError(
                "WAF_AGENT_KEY_UNAVAILABLE",
                "private key not loaded; set EG_WAF_AGENT_PRIVATE_KEY",
            )
        try:
            sig = self._private_key.sign(message, _pss(), hashes.SHA256())
        except (ValueError, TypeError) as exc:
            raise WafAgentError("WAF_AGENT_SIGNING_FAILED", str(exc)) from exc
        return base64.b64encode(sig).decode("ascii")

    def _check_url(self) -> None:
        parsed = urlparse(self._url)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise WafAgentError("WAF_AGENT_URL_INVALID", f"invalid agent url {self._url!r}")
        if parsed.scheme == "http" and not self._allow_insecure_http:
            raise WafAgentError(
                "WAF_AGENT_INSECURE_URL",
                "plain http blocked; set EG_WAF_AGENT_ALLOW_INSECURE_HTTP=1 only for dev",
            )

    def toggle_enforcement(self, domain: str, enabled: bool) -> ToggleResult:
        try:
            result = self._toggle(domain, enabled)
        except WafAgentError as exc:
            WAF_TOGGLE_REQUESTS.labels(result=exc.code).inc()
            log.error(
                "waf_agent.toggle_failed domain=%s enabled=%s code=%s status=%s",
                domain,
                enabled,
                exc.code,
                exc.status_code,
            )
            raise
        WAF_TOGGLE_REQUESTS.labels(result="ok").inc()
        log.info(
            "waf_agent.toggle_ok domain=%s enabled=%s enforcement=%s",
            result.domain,
            enabled,
            result.enforcement_status,
        )
        return result

    def _toggle(self, domain: str, enabled: bool) -> ToggleResult:
        if self._private_key is None:
            raise WafAgentError(
                "WAF_AGENT_KEY_UNAVAILABLE",
                "private key not available; set EG_WAF_AGENT_PRIVATE_KEY",
            )
        self._check_url()

        body = {
            "domain": domain,
            "enabled": bool(enabled),
            "signature": self.sign(toggle_message(domain, enabled)),
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._auth_token}",
        }

        try:
            resp = self._session.post(
                f"{self._url}{TOGGLE_PATH}",
                json=body,
                headers=headers,
                timeout=self._timeout,
                allow_redirects=False,
            )
        except requests.RequestException as exc:
            raise WafAgentError(
                "WAF_AGENT_TRANSPORT_ERROR", f"failed to reach agent: {exc}"
            ) from exc

        if not 200 <= resp.status_code < 300:
            detail = (resp.text or resp.reason or "").strip()[:500]
            raise WafAgentError(
                "WAF_AGENT_HTTP_ERROR",
                f"agent returned {resp.status_code}: {detail}",
                status_code=resp.status_code,
            )

        try:
            payload = resp.json()
        except ValueError as exc:
            raise WafAgentError(
                "WAF_AGENT_INVALID_RESPONSE",
                "agent response is not JSON",
                status_code=resp.status_code,
            ) from exc
        if not isinstance(payload, dict):
            raise WafAgentError(
                "WAF_AGENT_INVALID_RESPONSE",
                "agent response is not an object",
                status_code=resp.status_code,
            )

        if payload.get("status") != "OK":
            raise WafAgentError(
                "WAF_AGENT_NON_OK",
                f"agent returned non-OK status: {payload.get('message') or 'Unknown error'}",
                status_code=resp.status_code,
            )

        return ToggleResult(
            status="OK",
            message=str(payload.get("message") or ""),
            domain=str(payload.get("domain") or domain),
            enforcement_status=(
                str(payload["modsecurity_status"])
                if payload.get("modsecurity_status") is not None
                else None
            ),
        )

    def check_health(self) -> bool:
        try:
            resp = self._session.get(
                f"{self._url}{HEALTH_PATH}", timeout=HEALTH_TIMEOUT_SECONDS
            )
        except requests.RequestException:
            return False
        return 200 <= resp.status_code < 300
