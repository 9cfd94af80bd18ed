"""REST client for the relayer API, as used by the solver."""

from typing import Any, Dict, Optional

import httpx

from xip.core.errors import (
    ExternalServiceFailure,
    InvalidParameters,
    NotAuthorized,
    NotFound,
    StateConflict,
    VerificationTimeout,
    XIPError,
)
from xip.solver.state import ManifestFound, ManifestLookup, ManifestMissing
from xip.utils.logger import get_logger

logger = get_logger("solver.relayer")

# Error kind in a relayer error body -> exception raised locally
_KINDS = {
    cls.kind: cls
    for cls in (InvalidParameters, StateConflict, NotAuthorized, NotFound, ExternalServiceFailure, VerificationTimeout)
}


class RelayerClient:
    """Thin async wrapper around the relayer endpoints."""

    def __init__(self, base_url: str, timeout: float = 30.0, http: Optional[httpx.AsyncClient] = None):
        self.base = base_url.rstrip("/")
        self._http = http or httpx.AsyncClient(timeout=timeout)

    def _url(self, path: str) -> str:
        return f"{self.base}{path}"

    @staticmethod
    def _raise_for_body(resp: httpx.Response) -> None:
        try:
            body = resp.json()
        except ValueError:
            body = {}
        kind = body.get("error") if isinstance(body, dict) else None
        cls = _KINDS.get(kind, ExternalServiceFailure)
        message = body.get("message", resp.text) if isinstance(body, dict) else resp.text
        raise cls(f"Relayer returned {resp.status_code}: {message}", status=resp.status_code)

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            resp = await self._http.request(method, self._url(path), **kwargs)
        except httpx.HTTPError as e:
            raise ExternalServiceFailure(f"Relayer unreachable: {e}")
        if resp.status_code >= 400:
            self._raise_for_body(resp)
        return resp.json()

    async def health(self) -> Dict[str, Any]:
        return await self._request("GET", "/health")

    async def settle(
        self,
        intent_id: int,
        chain2_intent_id: int,
        origin_chain_id: int,
        destination_chain_id: int,
        solver_address: str,
    ) -> Dict[str, Any]:
        return await self._request(
            "POST",
            "/settle",
            json={
                "intentId": str(intent_id),
                "chain2IntentId": str(chain2_intent_id),
                "originChainId": origin_chain_id,
                "destinationChainId": destination_chain_id,
                "solverAddress": solver_address,
            },
        )

    async def get_manifest(self, intent_id: int) -> ManifestLookup:
        """
        Fetch the recipient manifest of an intent.

        Any failure is reported as ManifestMissing; the caller decides how
        to deliver without one.
        """
        try:
            data = await self._request("GET", f"/get-recipients/{intent_id}")
        except NotFound:
            return ManifestMissing("not found")
        except XIPError as e:
            logger.warning(f"Manifest lookup for intent {intent_id} failed: {e.message}")
            return ManifestMissing(e.message)

        try:
            return ManifestFound(
                recipients=list(data["recipients"]),
                amounts=[int(a) for a in data["amounts"]],
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Malformed manifest for intent {intent_id}: {e}")
            return ManifestMissing(f"malformed manifest: {e}")

    async def close(self) -> None:
        await self._http.aclose()
