"""
External MRI Classifier Client

Forwards an uploaded image to the hosted dementia classifier and validates
the JSON it answers with.

The classifier returns one of two shapes, told apart by `isMRI`:

    {"isMRI": true,  "dementiaAnalysis": {"predictedClass": ..., "confidences": {...}, "insights": ...}}
    {"isMRI": false, "mriConfidence": 0.42, "message": "no brain structure detected"}

Anything else is a MalformedUpstreamResponse. Non-2xx answers and transport
failures are UpstreamError. There is no retry; the caller may resubmit.
"""

import time
from typing import Any, Dict, Literal, Optional, Union

import httpx
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StrictBool
from pydantic import ValidationError as PydanticValidationError

from config import CLASSIFIER_URL, CLASSIFIER_TIMEOUT_SECONDS
from exceptions import MalformedUpstreamResponse, UpstreamError
from structured_logging import get_logger, log_classifier_call

logger = get_logger(__name__)


# =============================================================================
# RESPONSE SHAPES
# =============================================================================

class DementiaAnalysis(BaseModel):
    """Classification block of an MRI result. Unknown keys are kept."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    predicted_class: Optional[str] = Field(
        None, validation_alias=AliasChoices("predictedClass", "predicted_class")
    )
    confidences: Optional[Any] = None
    confidence: Optional[Any] = None
    insights: Optional[str] = None
    annotated_image_url: Optional[str] = Field(
        None, validation_alias=AliasChoices("annotatedImageUrl", "annotated_image_url")
    )


class MriResult(BaseModel):
    model_config = ConfigDict(extra="allow")

    isMRI: Literal[True]
    status: Optional[str] = None
    message: Optional[str] = None
    dementiaAnalysis: DementiaAnalysis


class NonMriResult(BaseModel):
    model_config = ConfigDict(extra="allow")

    isMRI: Literal[False]
    status: Optional[str] = None
    message: Optional[str] = None
    mriConfidence: float


ClassifierResult = Union[MriResult, NonMriResult]


class _MriFlag(BaseModel):
    isMRI: StrictBool


def parse_detection(payload: Any) -> ClassifierResult:
    """
    Validate a classifier payload against the two accepted shapes.

    Raises:
        MalformedUpstreamResponse: payload is not an object, `isMRI` is not a
            boolean, or the branch it selects is missing required fields
    """
    if not isinstance(payload, dict):
        raise MalformedUpstreamResponse("Classifier response is not a JSON object")

    try:
        is_mri = _MriFlag.model_validate(payload).isMRI
    except PydanticValidationError:
        raise MalformedUpstreamResponse("Classifier response lacks a boolean isMRI flag")

    model = MriResult if is_mri else NonMriResult
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        missing = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        if is_mri:
            raise MalformedUpstreamResponse(
                f"Classifier response lacks a usable dementiaAnalysis block ({missing})"
            )
        raise MalformedUpstreamResponse(
            f"Classifier response for a non-MRI image lacks mriConfidence ({missing})"
        )


# =============================================================================
# HTTP CLIENT
# =============================================================================

class ClassifierClient:
    """Multipart upload client for the classifier's /detect endpoint."""

    def __init__(
        self,
        url: str = CLASSIFIER_URL,
        timeout: Optional[float] = CLASSIFIER_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def detect(
        self,
        image_bytes: bytes,
        filename: str = "scan.jpg",
        content_type: str = "image/jpeg",
    ) -> Dict[str, Any]:
        """
        Upload one image and return the decoded JSON body.

        Raises:
            UpstreamError: transport failure or non-2xx status
            MalformedUpstreamResponse: body is not a JSON object
        """
        start_time = time.time()
        files = {"file": (filename, image_bytes, content_type or "application/octet-stream")}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.url, files=files)
        except httpx.HTTPError as e:
            log_classifier_call(
                url=self.url,
                duration_ms=(time.time() - start_time) * 1000,
                success=False,
                error=f"{type(e).__name__}: {e}",
            )
            raise UpstreamError(f"Classifier request failed: {type(e).__name__}")

        duration_ms = (time.time() - start_time) * 1000

        if not response.is_success:
            log_classifier_call(
                url=self.url,
                duration_ms=duration_ms,
                success=False,
                upstream_status=response.status_code,
                error=response.text[:200],
            )
            raise UpstreamError(
                f"Classifier call failed: {response.status_code}",
                upstream_status=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError:
            log_classifier_call(
                url=self.url,
                duration_ms=duration_ms,
                success=False,
                upstream_status=response.status_code,
                error="response body is not JSON",
            )
            raise MalformedUpstreamResponse("Classifier response is not valid JSON")

        if not isinstance(payload, dict):
            raise MalformedUpstreamResponse("Classifier response is not a JSON object")

        log_classifier_call(
            url=self.url,
            duration_ms=duration_ms,
            success=True,
            upstream_status=response.status_code,
            is_mri=payload.get("isMRI"),
        )
        return payload


def get_classifier_client() -> ClassifierClient:
    """FastAPI dependency: a fresh client per request."""
    return ClassifierClient()
