"""
Inference Client
Talks to the node-graph inference service (ComfyUI).

HTTP calls go through ``httpx.AsyncClient``; execution events are read from
the service websocket (``/ws?clientId=...``). The event stream is opened
before a graph is submitted so no early event is missed.
"""

import asyncio
import inspect
import json
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, Optional, Tuple, Union

import httpx
import websockets

from vidgen.core.config import settings
from vidgen.core.exceptions import (
    ArtifactMissingError,
    ExecutionError,
    InferenceTimeoutError,
    ServiceUnavailableError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepProgress:
    """Sampler step progress inside one node."""
    value: int
    max: int
    node: Optional[str] = None


@dataclass(frozen=True)
class NodeTransition:
    """The service started executing another node."""
    node: str


InferenceEvent = Union[StepProgress, NodeTransition]
ProgressCallback = Callable[[InferenceEvent], Any]
# (client_id) -> async context manager yielding decoded JSON messages
EventSource = Callable[[str], Any]


def remap_step(value: int, maximum: int, band: Tuple[int, int] = (15, 85)) -> int:
    """Map ``value/maximum`` linearly into ``band``."""
    low, high = band
    if maximum <= 0:
        return low
    fraction = min(max(value / maximum, 0.0), 1.0)
    return int(low + fraction * (high - low))


async def _emit(callback: Optional[ProgressCallback], event: InferenceEvent):
    if callback is None:
        return
    result = callback(event)
    if inspect.isawaitable(result):
        await result


class InferenceClient:
    """
    Client for the inference service.

    One instance per worker process. ``transport`` and ``event_source`` are
    injectable so tests can run without a live service.
    """

    def __init__(
        self,
        base_url: str = None,
        http_timeout: float = None,
        probe_timeout: float = None,
        client_id: str = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        event_source: Optional[EventSource] = None,
    ):
        self.base_url = (base_url or settings.COMFYUI_URL).rstrip("/")
        self.http_timeout = http_timeout or settings.COMFYUI_HTTP_TIMEOUT
        self.probe_timeout = probe_timeout or settings.COMFYUI_PROBE_TIMEOUT
        self.client_id = client_id or str(uuid.uuid4())
        self._transport = transport
        self._event_source = event_source or self._websocket_events

    def ws_url(self, client_id: str) -> str:
        scheme, _, rest = self.base_url.partition("://")
        ws_scheme = "wss" if scheme == "https" else "ws"
        return f"{ws_scheme}://{rest}/ws?clientId={client_id}"

    def _http(self, timeout: float = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or self.http_timeout,
            transport=self._transport,
        )

    @asynccontextmanager
    async def _websocket_events(self, client_id: str):
        try:
            ws = await websockets.connect(self.ws_url(client_id), max_size=None)
        except (OSError, websockets.exceptions.WebSocketException) as e:
            raise ServiceUnavailableError(
                f"Cannot open event stream at {self.base_url}: {e}", retryable=True
            )

        async def messages() -> AsyncIterator[dict]:
            async for raw in ws:
                # Binary frames are live previews
                if isinstance(raw, bytes):
                    continue
                try:
                    yield json.loads(raw)
                except json.JSONDecodeError:
                    logger.debug(f"[InferenceClient] Skipping undecodable message: {raw[:80]}")

        try:
            yield messages()
        finally:
            await ws.close()

    # -----------------------------------------------------------------------
    # HTTP operations
    # -----------------------------------------------------------------------

    async def submit(self, graph: Dict[str, Any]) -> str:
        """Queue a graph for execution and return its prompt id."""
        try:
            async with self._http() as client:
                response = await client.post(
                    "/prompt", json={"prompt": graph, "client_id": self.client_id}
                )
        except httpx.TransportError as e:
            raise ServiceUnavailableError(f"Inference service unreachable: {e}", retryable=True)

        if response.status_code != 200:
            raise ExecutionError(
                f"Inference service rejected graph ({response.status_code}): {response.text[:500]}"
            )

        body = response.json()
        if body.get("node_errors"):
            raise ExecutionError("Graph has node errors", details={"node_errors": body["node_errors"]})

        prompt_id = body["prompt_id"]
        logger.info(f"[InferenceClient] Submitted graph ({len(graph)} nodes) as {prompt_id}")
        return prompt_id

    async def history(self, prompt_id: str) -> Optional[Dict[str, Any]]:
        """
        Outputs of a finished execution, or ``None`` if it has not finished.

        Raises:
            ExecutionError: the service recorded the execution as failed
        """
        try:
            async with self._http() as client:
                response = await client.get(f"/history/{prompt_id}")
                response.raise_for_status()
        except httpx.TransportError as e:
            raise ServiceUnavailableError(f"Inference service unreachable: {e}", retryable=True)
        except httpx.HTTPStatusError as e:
            raise ExecutionError(f"History lookup failed for {prompt_id}: {e}")

        entry = response.json().get(prompt_id)
        if not entry:
            return None
        status = entry.get("status") or {}
        if status.get("status_str") == "error":
            raise ExecutionError(f"Execution {prompt_id} failed", details={"status": status})
        return entry.get("outputs") or {}

    async def fetch_artifact(self, filename: str, subfolder: str = "", kind: str = "output") -> bytes:
        """Download an output (or input/temp) file."""
        params = {"filename": filename, "subfolder": subfolder, "type": kind}
        try:
            async with self._http() as client:
                response = await client.get("/view", params=params)
        except httpx.TransportError as e:
            raise ServiceUnavailableError(f"Inference service unreachable: {e}", retryable=True)

        if response.status_code == 404:
            raise ArtifactMissingError(f"Artifact not found: {subfolder}/{filename}")
        if response.status_code != 200:
            raise ExecutionError(f"Artifact download failed ({response.status_code}): {filename}")
        return response.content

    async def upload_image(self, data: bytes, filename: str, subfolder: str = "", overwrite: bool = True) -> str:
        """
        Store an image in the service's input folder.

        Returns:
            The name to reference in ``LoadImage`` nodes
        """
        try:
            async with self._http() as client:
                response = await client.post(
                    "/upload/image",
                    files={"image": (filename, data, "image/png")},
                    data={"subfolder": subfolder, "overwrite": str(overwrite).lower()},
                )
                response.raise_for_status()
        except httpx.TransportError as e:
            raise ServiceUnavailableError(f"Inference service unreachable: {e}", retryable=True)
        except httpx.HTTPStatusError as e:
            raise ExecutionError(f"Image upload failed for {filename}: {e}")

        body = response.json()
        name = body.get("name", filename)
        folder = body.get("subfolder") or ""
        return f"{folder}/{name}" if folder else name

    async def release_memory(self):
        """Ask the service to unload models and free GPU memory. Never raises."""
        try:
            async with self._http() as client:
                response = await client.post("/free", json={"unload_models": True, "free_memory": True})
                response.raise_for_status()
            logger.info("[InferenceClient] Released GPU memory")
        except httpx.HTTPError as e:
            logger.warning(f"[InferenceClient] Memory release failed: {e}")

    async def is_available(self) -> bool:
        try:
            async with self._http(timeout=self.probe_timeout) as client:
                response = await client.get("/system_stats")
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    async def ensure_available(self):
        """Raise ``ServiceUnavailableError`` if the health probe fails."""
        if not await self.is_available():
            raise ServiceUnavailableError(
                f"Inference service is not available at {self.base_url}", retryable=True
            )

    async def system_stats(self) -> Dict[str, Any]:
        try:
            async with self._http(timeout=self.probe_timeout) as client:
                response = await client.get("/system_stats")
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise ServiceUnavailableError(f"Inference service unreachable: {e}", retryable=True)
        return response.json()

    async def interrupt(self):
        """Stop whatever the service is currently executing."""
        try:
            async with self._http() as client:
                response = await client.post("/interrupt")
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise ServiceUnavailableError(f"Interrupt failed: {e}", retryable=True)
        logger.info("[InferenceClient] Interrupted current execution")

    # -----------------------------------------------------------------------
    # Execution
    # -----------------------------------------------------------------------

    async def _consume(
        self,
        events: AsyncIterator[dict],
        prompt_id: str,
        on_progress: Optional[ProgressCallback],
    ) -> Dict[str, Any]:
        async for message in events:
            kind = message.get("type")
            data = message.get("data") or {}
            if data.get("prompt_id") not in (None, prompt_id):
                continue

            if kind == "progress":
                await _emit(on_progress, StepProgress(int(data["value"]), int(data["max"]), data.get("node")))
            elif kind == "executing":
                node = data.get("node")
                if node is None:
                    if data.get("prompt_id") == prompt_id:
                        break
                    continue
                await _emit(on_progress, NodeTransition(str(node)))
            elif kind == "execution_error":
                raise ExecutionError(
                    data.get("exception_message") or "Execution error",
                    details={"node_id": data.get("node_id"), "node_type": data.get("node_type")},
                )
            elif kind == "execution_interrupted":
                raise ExecutionError(f"Execution {prompt_id} was interrupted")
        else:
            raise ExecutionError(f"Event stream closed before {prompt_id} finished", retryable=True)

        outputs = await self.history(prompt_id)
        if outputs is None:
            raise ArtifactMissingError(f"No history recorded for {prompt_id}")
        return outputs

    async def await_completion(
        self,
        prompt_id: str,
        on_progress: Optional[ProgressCallback] = None,
        timeout: float = None,
    ) -> Dict[str, Any]:
        """Wait for an already-submitted execution and return its outputs."""

        async def wait():
            async with self._event_source(self.client_id) as events:
                finished = await self.history(prompt_id)
                if finished is not None:
                    return finished
                return await self._consume(events, prompt_id, on_progress)

        return await self._with_ceiling(wait(), prompt_id, timeout)

    async def execute(
        self,
        graph: Dict[str, Any],
        on_progress: Optional[ProgressCallback] = None,
        timeout: float = None,
    ) -> Dict[str, Any]:
        """Submit ``graph`` and wait for its outputs."""

        async def run():
            async with self._event_source(self.client_id) as events:
                prompt_id = await self.submit(graph)
                return await self._consume(events, prompt_id, on_progress)

        return await self._with_ceiling(run(), "graph", timeout)

    async def _with_ceiling(self, coro, label: str, timeout: Optional[float]):
        timeout = timeout or settings.INFERENCE_TIMEOUT_GENERATE
        try:
            return await asyncio.wait_for(coro, timeout)
        except asyncio.TimeoutError:
            raise InferenceTimeoutError(
                f"Execution of {label} exceeded {timeout:.0f}s", details={"timeout": timeout}
            )


__all__ = [
    "InferenceClient",
    "StepProgress",
    "NodeTransition",
    "remap_step",
]
