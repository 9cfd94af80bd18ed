"""
Proof verification - gate settlement on an external proof-finalization service.

The service accepts a proof, hands back a job id, and moves the job through
statuses until it is either Finalized or Failed. ProofPoller turns that into
one awaitable outcome with a bounded number of status checks.
"""

import asyncio
import itertools
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

import httpx

from xip.core.errors import (
    ExternalServiceFailure,
    InvalidParameters,
    NotFound,
    ProofRejected,
    VerificationTimeout,
)
from xip.utils.logger import get_logger

logger = get_logger("proof")


# Terminal statuses
FINALIZED = "Finalized"
FAILED = "Failed"


@dataclass
class JobStatus:
    job_id: str
    status: str
    tx_hash: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in (FINALIZED, FAILED)

    def to_dict(self) -> dict:
        return {"jobId": self.job_id, "status": self.status, "txHash": self.tx_hash, **self.details}


@runtime_checkable
class ProofVerifier(Protocol):
    async def submit_proof(self, proof_data: Dict[str, Any]) -> str:
        ...

    async def get_job_status(self, job_id: str) -> JobStatus:
        ...


def validate_proof_data(proof_data: Any) -> None:
    if not isinstance(proof_data, dict) or not proof_data.get("proof"):
        raise InvalidParameters("proofData must be an object with a non-empty 'proof'")


# =============================================================================
# HTTP verifier
# =============================================================================


class HttpProofVerifier:
    """
    Client for a zkVerify-style relayer API.

    POST {base}/submit-proof/{api_key}      -> {"jobId": ...}
    GET  {base}/job-status/{api_key}/{job}  -> {"status": ..., "txHash": ...}
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        proof_type: str = "sp1",
        timeout: float = 30.0,
        http: Optional[httpx.AsyncClient] = None,
    ):
        self.base = base_url.rstrip("/")
        self.api_key = api_key
        self.proof_type = proof_type
        self._http = http or httpx.AsyncClient(timeout=timeout)

    async def submit_proof(self, proof_data: Dict[str, Any]) -> str:
        validate_proof_data(proof_data)
        payload = {
            "proofType": self.proof_type,
            "vkRegistered": False,
            "proofData": {
                "proof": proof_data["proof"],
                "publicSignals": proof_data.get("publicSignals", []),
                "vk": proof_data.get("vk", proof_data.get("imageId")),
            },
        }
        try:
            resp = await self._http.post(f"{self.base}/submit-proof/{self.api_key}", json=payload)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise ExternalServiceFailure(f"Proof submission failed: {e}")

        job_id = resp.json().get("jobId")
        if not job_id:
            raise ExternalServiceFailure("Proof service returned no jobId")
        logger.info(f"Proof submitted, job {job_id}")
        return job_id

    async def get_job_status(self, job_id: str) -> JobStatus:
        try:
            resp = await self._http.get(f"{self.base}/job-status/{self.api_key}/{job_id}")
            if resp.status_code == 404:
                raise NotFound(f"Proof job {job_id} not found")
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise ExternalServiceFailure(f"Proof status request failed: {e}")

        data = resp.json()
        return JobStatus(
            job_id=job_id,
            status=data.get("status", "Unknown"),
            tx_hash=data.get("txHash"),
            details={k: v for k, v in data.items() if k not in ("jobId", "status", "txHash")},
        )

    async def close(self) -> None:
        await self._http.aclose()


# =============================================================================
# In-memory verifier
# =============================================================================


class MockProofVerifier:
    """
    Scripted verifier for local networks and tests.

    Every submitted job walks through `statuses`, one per status query,
    and then stays at the last one.
    """

    def __init__(self, statuses: Optional[List[str]] = None):
        self.statuses = statuses or ["Submitted", "IncludedInBlock", FINALIZED]
        self.jobs: Dict[str, Dict[str, Any]] = {}
        self._ids = itertools.count(1)

    async def submit_proof(self, proof_data: Dict[str, Any]) -> str:
        validate_proof_data(proof_data)
        job_id = f"job-{next(self._ids)}"
        self.jobs[job_id] = {"proof": proof_data, "polls": 0}
        return job_id

    async def get_job_status(self, job_id: str) -> JobStatus:
        job = self.jobs.get(job_id)
        if job is None:
            raise NotFound(f"Proof job {job_id} not found")
        index = min(job["polls"], len(self.statuses) - 1)
        job["polls"] += 1
        return JobStatus(job_id=job_id, status=self.statuses[index])


# =============================================================================
# Poller
# =============================================================================


class ProofPoller:
    """
    Submit a proof and wait for a terminal status.

    Args:
        verifier: Proof service
        interval: Seconds between status checks
        max_attempts: Status checks before giving up
    """

    def __init__(self, verifier: ProofVerifier, interval: float = 5.0, max_attempts: int = 60):
        self.verifier = verifier
        self.interval = interval
        self.max_attempts = max_attempts

    async def wait_finalized(self, job_id: str) -> JobStatus:
        """
        Raises:
            ProofRejected: job reached Failed
            VerificationTimeout: no terminal status within max_attempts
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                status = await self.verifier.get_job_status(job_id)
            except ExternalServiceFailure as e:
                logger.warning(f"Proof status check {attempt}/{self.max_attempts} failed: {e}")
            else:
                logger.debug(f"Proof job {job_id} status: {status.status} ({attempt}/{self.max_attempts})")
                if status.status == FINALIZED:
                    logger.info(f"Proof job {job_id} finalized")
                    return status
                if status.status == FAILED:
                    raise ProofRejected(f"Proof job {job_id} failed", job_id=job_id)

            if attempt < self.max_attempts:
                await asyncio.sleep(self.interval)

        raise VerificationTimeout(
            f"Proof job {job_id} not finalized after {self.max_attempts} checks",
            job_id=job_id,
        )

    async def verify(self, proof_data: Dict[str, Any]) -> JobStatus:
        job_id = await self.verifier.submit_proof(proof_data)
        return await self.wait_finalized(job_id)
