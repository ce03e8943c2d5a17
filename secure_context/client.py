"""
Attestation Service HTTP client.

Thin JSON-over-HTTPS client for the four Attestation Service endpoints.
Calls go through a ``requests.Session`` on a worker thread so that the
event loop is never blocked.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Type

import requests
from pydantic import ValidationError as ModelValidationError

from . import config
from .errors import EnrollmentError, IssuanceError, RevocationError, ServiceError
from .models import (
    EnrollmentRequest,
    EnrollmentResponse,
    IssueTokenRequest,
    IssueTokenResponse,
    RevokeDeviceRequest,
    VerifyTokenRequest,
    VerifyTokenResponse,
    WireModel,
)
from .security import sanitize_for_logging

logger = logging.getLogger(__name__)


class AttestationServiceClient:
    """
    Client for ``issue-token``, ``verify-token``, ``generate-enrollment``
    and ``revoke-device``.

    Every failure raises a ``ServiceError`` subclass whose ``status_code``
    is None when the service could not be reached.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout_seconds: Optional[float] = None
    ):
        self._session = session or requests.Session()
        self._timeout = config.HTTP_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds

    async def _post(
        self,
        endpoint: str,
        path: str,
        body: WireModel,
        error_cls: Type[ServiceError]
    ) -> Dict[str, Any]:
        url = f"{endpoint.rstrip('/')}/{path}"
        payload = body.to_wire()
        logger.debug("POST %s %s", url, sanitize_for_logging(payload))
        try:
            resp = await asyncio.to_thread(self._session.post, url, json=payload, timeout=self._timeout)
        except requests.RequestException as e:
            raise error_cls(f"{path} request to {endpoint} failed: {e}") from e

        if not 200 <= resp.status_code < 300:
            raise error_cls(f"{path} rejected by {endpoint}", status_code=resp.status_code)

        if resp.status_code == 204 or not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError as e:
            raise error_cls(f"{path} returned malformed JSON", status_code=resp.status_code) from e
        if not isinstance(data, dict):
            raise error_cls(f"{path} returned a non-object body", status_code=resp.status_code)
        return data

    @staticmethod
    def _parse(model, data: Dict[str, Any], error_cls: Type[ServiceError], path: str):
        try:
            return model.model_validate(data)
        except ModelValidationError as e:
            raise error_cls(f"{path} returned an unexpected body: {e.error_count()} invalid field(s)") from e

    async def issue_token(self, endpoint: str, request: IssueTokenRequest) -> IssueTokenResponse:
        data = await self._post(endpoint, "issue-token", request, IssuanceError)
        return self._parse(IssueTokenResponse, data, IssuanceError, "issue-token")

    async def verify_token(self, endpoint: str, token: str) -> bool:
        data = await self._post(endpoint, "verify-token", VerifyTokenRequest(token=token), ServiceError)
        return self._parse(VerifyTokenResponse, data, ServiceError, "verify-token").valid

    async def generate_enrollment(self, endpoint: str, request: EnrollmentRequest) -> EnrollmentResponse:
        data = await self._post(endpoint, "generate-enrollment", request, EnrollmentError)
        return self._parse(EnrollmentResponse, data, EnrollmentError, "generate-enrollment")

    async def revoke_device(self, endpoint: str, public_key: str) -> None:
        await self._post(endpoint, "revoke-device", RevokeDeviceRequest(public_key=public_key), RevocationError)

    def close(self) -> None:
        self._session.close()
