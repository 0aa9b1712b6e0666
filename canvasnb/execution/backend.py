"""Execution backends: run a code cell's source and report what it printed."""

from __future__ import annotations

import asyncio
import logging
import sys
import uuid
from datetime import UTC, datetime
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from canvasnb.config import ExecutionConfig
from canvasnb.workspace.workdirs import WorkingDirectoryRegistry

logger = logging.getLogger("canvasnb.execution")


class ExecutionBackendError(Exception):
    """The backend could not run the code at all (transport, timeout, bad response)."""


class ExecutionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: str
    cell_id: str = Field(alias="cellId")
    document_id: str | None = Field(default=None, alias="documentId")


class BackendOutput(BaseModel):
    type: str = "text"
    data: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


class ExecutionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    cell_id: str = Field(alias="cellId")
    session_id: str = Field(default="", alias="sessionId")
    exit_code: int = Field(default=0, alias="exitCode")
    stdout: str = ""
    stderr: str = ""
    outputs: list[BackendOutput] = Field(default_factory=list)
    success: bool = True
    timestamp: str = ""


class ExecutionBackend(Protocol):
    async def execute(self, request: ExecutionRequest) -> ExecutionResponse: ...


class HttpExecutionBackend:
    """Posts code to a remote execution server's /api/execute endpoint."""

    def __init__(
        self, base_url: str, *, timeout_seconds: float = 30, client: httpx.AsyncClient | None = None
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._client = client

    async def execute(self, request: ExecutionRequest) -> ExecutionResponse:
        url = f"{self._base_url}/api/execute"
        payload = request.model_dump(by_alias=True)
        try:
            if self._client is not None:
                resp = await self._client.post(url, json=payload, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    resp = await client.post(url, json=payload)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise ExecutionBackendError(f"Failed to execute code: {e}") from e

        if resp.status_code != 200:
            detail = f"HTTP {resp.status_code}"
            try:
                body = resp.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and body.get("error"):
                detail = str(body["error"])
            raise ExecutionBackendError(f"Failed to execute code: {detail}")

        try:
            return ExecutionResponse.model_validate(resp.json())
        except ValueError as e:
            raise ExecutionBackendError(f"Malformed execution response: {e}") from e


class SubprocessExecutionBackend:
    """Runs each cell in a fresh Python process, in the document's working directory."""

    def __init__(
        self,
        *,
        python_executable: str | None = None,
        timeout_seconds: float = 30,
        workdirs: WorkingDirectoryRegistry | None = None,
    ) -> None:
        self._python = python_executable or sys.executable
        self._timeout = timeout_seconds
        self._workdirs = workdirs

    async def execute(self, request: ExecutionRequest) -> ExecutionResponse:
        cwd = None
        if self._workdirs is not None and request.document_id:
            cwd = self._workdirs.get(request.document_id)
        try:
            proc = await asyncio.create_subprocess_exec(
                self._python,
                "-c",
                request.code,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
            )
        except (OSError, ValueError) as e:
            raise ExecutionBackendError(f"Failed to start Python: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), self._timeout)
        except TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise ExecutionBackendError(f"Execution timeout ({self._timeout:g} seconds)") from e

        out = stdout.decode(errors="replace").strip()
        err = stderr.decode(errors="replace").strip()
        logger.debug("Cell %s exited with %s", request.cell_id, proc.returncode)
        return ExecutionResponse(
            cell_id=request.cell_id,
            session_id=uuid.uuid4().hex,
            exit_code=proc.returncode or 0,
            stdout=out,
            stderr=err,
            success=proc.returncode == 0 and not err,
            timestamp=datetime.now(UTC).isoformat(),
        )


def build_backend(config: ExecutionConfig, workdirs: WorkingDirectoryRegistry | None = None) -> ExecutionBackend:
    if config.backend == "http":
        return HttpExecutionBackend(config.url, timeout_seconds=config.timeout_seconds)
    return SubprocessExecutionBackend(
        python_executable=config.python_executable or None,
        timeout_seconds=config.timeout_seconds,
        workdirs=workdirs,
    )
