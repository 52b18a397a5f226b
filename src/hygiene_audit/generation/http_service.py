"""HTTP client for a remote report-generation endpoint."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import httpx

from hygiene_audit.config import GenerationSettings
from hygiene_audit.errors import GenerationFailed
from hygiene_audit.generation.service import (
    GenerationOutcome,
    GenerationRequest,
    JobHandle,
    Notify,
)

logger = logging.getLogger(__name__)

_MAX_ERROR_BODY_CHARS = 300


class HttpGenerationService:
    """Posts audit snapshots to the generation endpoint from worker threads.

    The endpoint answers ``{"result": {...}, "usage": {...}}``. Cancelled
    handles are dropped before the request is sent or, if the request is
    already on the wire, before ``notify`` is called.
    """

    def __init__(
        self,
        settings: GenerationSettings,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not settings.service_url:
            raise ValueError("GENERATION_SERVICE_URL is not configured")
        self._url = settings.service_url
        self._api_key = settings.api_key
        self._timeout = settings.request_timeout_seconds
        self._transport = transport
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_workers,
            thread_name_prefix="report-generation",
        )
        self._cancelled: set[str] = set()
        self._lock = threading.Lock()

    def submit(self, request: GenerationRequest, notify: Notify) -> JobHandle:
        handle = JobHandle()
        self._executor.submit(self._run, handle, request, notify)
        logger.info(
            "Submitted report %s (v%d) for generation as job %s",
            request.report_id,
            request.version_number,
            handle.job_id,
        )
        return handle

    def cancel(self, handle: JobHandle) -> None:
        with self._lock:
            self._cancelled.add(handle.job_id)

    def shutdown(self, wait: bool = False) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=True)

    def _is_cancelled(self, handle: JobHandle) -> bool:
        with self._lock:
            return handle.job_id in self._cancelled

    def _forget(self, handle: JobHandle) -> None:
        with self._lock:
            self._cancelled.discard(handle.job_id)

    def _run(self, handle: JobHandle, request: GenerationRequest, notify: Notify) -> None:
        try:
            if self._is_cancelled(handle):
                return
            try:
                outcome = GenerationOutcome.success(*self._call(request))
            except GenerationFailed as exc:
                logger.warning("Generation job %s failed: %s", handle.job_id, exc)
                outcome = GenerationOutcome.failed(str(exc))
            if self._is_cancelled(handle):
                logger.info("Dropping outcome of cancelled generation job %s", handle.job_id)
                return
            notify(outcome)
        except Exception:
            logger.exception("Unexpected error in generation job %s", handle.job_id)
            if not self._is_cancelled(handle):
                notify(GenerationOutcome.failed("Unexpected error while generating the report"))
        finally:
            self._forget(handle)

    def _call(self, request: GenerationRequest) -> tuple[dict[str, Any], dict[str, Any] | None]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        client_kwargs: dict[str, Any] = {"timeout": self._timeout}
        if self._transport is not None:
            client_kwargs["transport"] = self._transport

        try:
            with httpx.Client(**client_kwargs) as client:
                response = client.post(self._url, json=request.to_payload(), headers=headers)
        except httpx.TimeoutException as exc:
            raise GenerationFailed(f"Generation service timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise GenerationFailed(f"Generation service unreachable: {exc}") from exc

        if response.status_code >= 400:
            body = response.text[:_MAX_ERROR_BODY_CHARS]
            raise GenerationFailed(
                f"Generation service returned HTTP {response.status_code}: {body}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise GenerationFailed("Generation service returned invalid JSON") from exc

        if not isinstance(payload, dict):
            raise GenerationFailed("Generation service returned an unexpected payload")
        if payload.get("error"):
            raise GenerationFailed(str(payload["error"]))
        result = payload.get("result")
        if not isinstance(result, dict):
            raise GenerationFailed("Generation service response has no report result")
        usage = payload.get("usage")
        return result, usage if isinstance(usage, dict) else None
