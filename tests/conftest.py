import base64
import io
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx
import pytest
from PIL import Image

from photomesh.config import Settings
from photomesh.jobs.registry import JobRegistry
from photomesh.main import build_services

PRIMARY_BASE = "https://primary.test/v2/openapi"
SECONDARY_BASE = "https://secondary.test/v2/openapi"


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeClock:
    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, ms: int) -> None:
        self.current += timedelta(milliseconds=ms)


class FakeProvider:
    """In-memory stand-in for both provider tiers, served through httpx.MockTransport."""

    def __init__(self):
        self.tasks: Dict[str, Dict[str, Any]] = {}
        self.created: List[Dict[str, Any]] = []
        self.uploads = 0
        self.status_calls: List[str] = []
        self._counter = 0
        # Knobs for failure injection, keyed by tier name ("primary" / "secondary")
        self.reject_status: Dict[str, int] = {}
        self.fail_upload = False
        self.status_error: Dict[str, int] = {}
        self.status_timeout = False

    def tier_of(self, request: httpx.Request) -> str:
        return request.url.host.split(".")[0]

    def add_task(self, task_id: str, status: str = "queued", **data: Any) -> None:
        self.tasks[task_id] = {"task_id": task_id, "status": status, **data}

    def set_status(self, task_id: str, status: str, **data: Any) -> None:
        self.tasks[task_id].update(status=status, **data)

    def tasks_for(self, tier: str) -> List[str]:
        return [c["task_id"] for c in self.created if c["tier"] == tier]

    def handler(self, request: httpx.Request) -> httpx.Response:
        tier = self.tier_of(request)
        path = request.url.path.split("/v2/openapi", 1)[-1]

        if request.method == "POST" and path == "/upload":
            self.uploads += 1
            if self.fail_upload:
                return httpx.Response(500, text="upload broke")
            return httpx.Response(200, json={"code": 0, "data": {"image_token": "img-token"}})

        if request.method == "POST" and path == "/task":
            if tier in self.reject_status:
                code = self.reject_status[tier]
                return httpx.Response(code, json={"code": 2010 if code == 402 else 1000, "message": "nope"})
            self._counter += 1
            task_id = f"{tier}-task-{self._counter}"
            body = json.loads(request.content)
            self.created.append({"tier": tier, "task_id": task_id, "body": body})
            self.add_task(task_id, "queued", progress=0)
            return httpx.Response(200, json={"code": 0, "data": {"task_id": task_id}})

        if request.method == "GET" and path.startswith("/task/"):
            task_id = path.rsplit("/", 1)[-1]
            self.status_calls.append(task_id)
            if self.status_timeout:
                raise httpx.ReadTimeout("timed out", request=request)
            if tier in self.status_error:
                return httpx.Response(self.status_error[tier], text="upstream down")
            if task_id not in self.tasks:
                return httpx.Response(404, json={"code": 2001, "message": "task not found"})
            return httpx.Response(200, json={"code": 0, "data": self.tasks[task_id]})

        if request.method == "GET" and path == "/user/balance":
            return httpx.Response(200, json={"code": 0, "data": {"balance": 120, "frozen": 0}})

        return httpx.Response(404, text="no route")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def config():
    return Settings(
        _env_file=None,
        provider_api_base=PRIMARY_BASE,
        provider_api_key="primary-key",
        secondary_api_base=SECONDARY_BASE,
        secondary_api_key="secondary-key",
        failover_threshold_ms=16000,
        max_image_bytes=3_000_000,
    )


@pytest.fixture
def http(fake_provider):
    return httpx.AsyncClient(transport=httpx.MockTransport(fake_provider.handler))


@pytest.fixture
def registry(clock):
    return JobRegistry(clock=clock, retention_ms=60 * 60 * 1000)


@pytest.fixture
def services(http, config, registry):
    """(registry, client, creator, orchestrator) wired to the fake provider."""
    return build_services(http, config, registry)


def make_data_url(fmt: str = "PNG", size=(16, 16)) -> str:
    buf = io.BytesIO()
    Image.new("RGB", size, (200, 120, 40)).save(buf, format=fmt)
    mime = "jpeg" if fmt == "JPEG" else fmt.lower()
    return f"data:image/{mime};base64," + base64.b64encode(buf.getvalue()).decode()


@pytest.fixture
def png_data_url():
    return make_data_url()


@pytest.fixture
def make_image():
    return make_data_url
