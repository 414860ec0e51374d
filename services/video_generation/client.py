"""
RunPod Provider Client

Adapts generation requests to the RunPod serverless job API:
- POST /run            enqueue a job
- GET  /status/{id}    current job state (with inline output once done)
- POST /cancel/{id}    cancel a queued or running job

Every call goes through a circuit breaker with a per-call timeout. Any
transport failure, timeout or non-success response becomes ProviderError;
requests the provider refused (4xx) become ProviderRejected and do not trip
the breaker.
"""

import asyncio
import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

from core.circuit_breaker import CircuitBreakerOpen, get_provider_breaker
from core.config import ProviderConfig, get_config
from core.errors import ProviderError, ProviderRejected, UnknownProviderStatus

from .artifacts import strip_data_url
from .models import GenerationParams, GenerationStatus, ProviderJob

logger = logging.getLogger(__name__)


# Client errors that still signal provider trouble (timeout, throttling)
RETRYABLE_CLIENT_ERRORS = (408, 429)

# Closed mapping over the provider's vocabulary; anything else is API drift
PROVIDER_STATUS_MAP: dict[str, GenerationStatus] = {
    "IN_QUEUE": GenerationStatus.QUEUED,
    "IN_PROGRESS": GenerationStatus.PROCESSING,
    "COMPLETED": GenerationStatus.COMPLETED,
    "FAILED": GenerationStatus.FAILED,
}


def map_provider_status(raw_status: Any) -> GenerationStatus:
    """
    Translate a provider status into the internal enumeration.

    Raises:
        UnknownProviderStatus: for any value outside the documented four
    """
    try:
        return PROVIDER_STATUS_MAP[raw_status]
    except (KeyError, TypeError):
        logger.error(f"Provider returned unrecognized status {raw_status!r}")
        raise UnknownProviderStatus(str(raw_status)) from None


class RunPodClient:
    """
    Client for a RunPod serverless Wan endpoint.

    Usage:
        client = RunPodClient()

        job = await client.submit(params)
        job = await client.fetch_status(job.id)
        await client.cancel(job.id)
    """

    def __init__(
        self,
        config: Optional[ProviderConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            config: Optional provider config override
            transport: Optional httpx transport (used to stub the wire in tests)
        """
        self.config = config or get_config().provider
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None
        self._breaker = get_provider_breaker(
            timeout=self.config.timeout_seconds,
            excluded_exceptions=(ProviderRejected,),
        )

        if not self.config.runpod_api_key or not self.config.runpod_endpoint_id:
            logger.warning("RunPod credentials not configured")

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self.config.timeout_seconds,
                transport=self._transport,
            )
        return self._http_client

    async def close(self):
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.config.runpod_api_key}",
        }

    async def _send(self, method: str, path: str, payload: Optional[dict]) -> dict:
        client = await self._get_client()
        url = f"{self.config.endpoint_url}{path}"

        try:
            response = await client.request(method, url, json=payload, headers=self._headers())
        except httpx.TimeoutException as e:
            raise ProviderError(
                f"RunPod API timeout: {type(e).__name__}",
                error_code="TIMEOUT",
            ) from e
        except httpx.RequestError as e:
            raise ProviderError(
                f"RunPod API request failed: {type(e).__name__}: {e}",
                error_code="REQUEST_ERROR",
            ) from e

        if not response.is_success:
            error_class = ProviderError
            if response.is_client_error and response.status_code not in RETRYABLE_CLIENT_ERRORS:
                error_class = ProviderRejected
            raise error_class(
                f"RunPod API error: {response.text}",
                error_code=f"HTTP_{response.status_code}",
                raw=response.text,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(
                "RunPod API returned a non-JSON body",
                error_code="INVALID_RESPONSE",
                raw=response.text,
            ) from e

    async def _request(self, method: str, path: str, payload: Optional[dict] = None) -> dict:
        try:
            return await self._breaker.call(self._send, method, path, payload)
        except CircuitBreakerOpen as e:
            raise ProviderError(str(e), error_code="CIRCUIT_OPEN") from e
        except asyncio.TimeoutError as e:
            raise ProviderError(
                f"RunPod {method} {path} exceeded {self.config.timeout_seconds:.0f}s",
                error_code="TIMEOUT",
            ) from e

    def build_input(self, params: GenerationParams) -> dict[str, Any]:
        """
        Provider request body for a validated submission.

        Image jobs carry the image inline; text jobs carry pixel dimensions
        derived from the resolution tier.
        """
        data: dict[str, Any] = {
            "num_inference_steps": params.num_inference_steps,
            "guidance_scale": params.guidance_scale,
            "num_frames": params.num_frames,
            "fps": params.fps,
        }
        if params.prompt:
            data["prompt"] = params.prompt
        if params.guidance_scale_2 is not None:
            data["guidance_scale_2"] = params.guidance_scale_2
        if params.seed is not None:
            data["seed"] = params.seed

        if params.is_image_flow:
            data["image"] = strip_data_url(params.image)
        else:
            width, height = params.dimensions
            data["width"] = width
            data["height"] = height

        return data

    async def submit(self, params: GenerationParams) -> ProviderJob:
        """Enqueue a generation job."""
        flow = "image-to-video" if params.is_image_flow else "text-to-video"
        logger.info(
            f"RunPod submit: flow={flow}, resolution={params.resolution}, "
            f"steps={params.num_inference_steps}, frames={params.num_frames}"
        )

        data = await self._request("POST", "/run", {"input": self.build_input(params)})

        job_id = data.get("id")
        if not job_id:
            raise ProviderError(
                "No job id in RunPod response",
                error_code="NO_JOB_ID",
                raw=str(data),
            )

        raw_status = data.get("status")
        job = ProviderJob(id=job_id, status=map_provider_status(raw_status), raw_status=raw_status)
        logger.info(f"RunPod job created: {job_id} ({raw_status})")
        return job

    async def fetch_status(self, job_id: str) -> ProviderJob:
        """Current provider-side state of a job."""
        data = await self._request("GET", f"/status/{quote(job_id, safe='')}")

        raw_status = data.get("status")
        status = map_provider_status(raw_status)

        output = data.get("output")
        if not isinstance(output, dict):
            output = {}

        error = data.get("error")
        if not error and status == GenerationStatus.FAILED:
            error = output.get("message")

        return ProviderJob(
            id=data.get("id") or job_id,
            status=status,
            raw_status=raw_status,
            video_base64=output.get("video_base64"),
            thumbnail_base64=output.get("thumbnail_base64"),
            error=str(error) if error else None,
            execution_time=data.get("executionTime"),
            delay_time=data.get("delayTime"),
            metadata=output.get("metadata") or {},
        )

    async def cancel(self, job_id: str) -> None:
        """Ask the provider to cancel a job."""
        await self._request("POST", f"/cancel/{quote(job_id, safe='')}")
        logger.info(f"RunPod job cancelled: {job_id}")

    def circuit_status(self) -> dict:
        return self._breaker.get_status()
