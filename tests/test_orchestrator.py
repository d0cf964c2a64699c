import anyio
import httpx
import pytest

from photomesh.errors import NotFoundError
from photomesh.jobs.models import FallbackReason, JobStatus, Provider, Stage
from photomesh.jobs.orchestrator import DEGRADED_MESSAGE, StatusOrchestrator
from photomesh.jobs.failover import FailoverService


async def _create(services, png_data_url):
    _, _, creator, _ = services
    created = await creator.create(png_data_url, "fast")
    return created.task_id


@pytest.mark.anyio
async def test_create_then_poll_is_queued_without_fallback(services, png_data_url):
    registry, _, _, orchestrator = services
    job_id = await _create(services, png_data_url)

    payload = await orchestrator.get_status(job_id)

    assert payload.status == JobStatus.QUEUED
    assert payload.task_id == job_id
    assert payload.fallback.attempted is False
    assert payload.provider == Provider.PRIMARY
    assert payload.stage == Stage.QUEUED
    assert payload.queue_wait_ms == 0
    assert registry.get(job_id).stage == Stage.QUEUED


@pytest.mark.anyio
async def test_queue_timeout_fails_over_to_secondary(services, fake_provider, clock, png_data_url):
    registry, _, _, orchestrator = services
    job_id = await _create(services, png_data_url)

    clock.advance(10_000)
    payload = await orchestrator.get_status(job_id)
    assert payload.status == JobStatus.QUEUED
    assert payload.task_id == job_id
    assert payload.fallback.attempted is False
    assert fake_provider.tasks_for("secondary") == []

    clock.advance(7_000)
    payload = await orchestrator.get_status(job_id)

    new_task = fake_provider.tasks_for("secondary")[0]
    assert payload.task_id == new_task != job_id
    assert payload.job_id == job_id
    assert payload.status == JobStatus.QUEUED
    assert payload.provider == Provider.SECONDARY
    assert payload.stage == Stage.FALLBACK
    assert payload.fallback.attempted is True
    assert payload.fallback.reason == FallbackReason.QUEUE_TIMEOUT
    assert payload.fallback.attempted_at == clock()
    assert payload.model_dump(mode="json", by_alias=True)["fallback"]["reason"] == "queue-timeout"

    record = registry.get(job_id)
    assert record.task_id == new_task
    assert record.provider == Provider.SECONDARY
    # both the original id and the new upstream id keep working
    assert registry.get(new_task).job_id == job_id
    follow_up = await orchestrator.get_status(new_task)
    assert follow_up.task_id == new_task
    assert follow_up.provider == Provider.SECONDARY


@pytest.mark.anyio
async def test_running_before_threshold_locks_out_failover(services, fake_provider, clock, png_data_url):
    registry, _, _, orchestrator = services
    job_id = await _create(services, png_data_url)

    clock.advance(5_000)
    fake_provider.set_status(job_id, "running", progress=10)
    payload = await orchestrator.get_status(job_id)
    assert payload.status == JobStatus.RUNNING
    assert payload.stage == Stage.GENERATING
    assert registry.get(job_id).fallback_locked is True

    # upstream reports queued again long after the threshold
    clock.advance(15_000)
    fake_provider.set_status(job_id, "queued", progress=0)
    payload = await orchestrator.get_status(job_id)

    assert payload.status == JobStatus.QUEUED
    assert payload.fallback.attempted is False
    assert payload.provider == Provider.PRIMARY
    assert fake_provider.tasks_for("secondary") == []


@pytest.mark.anyio
async def test_fallback_latch_is_monotonic_over_many_polls(services, fake_provider, clock, png_data_url):
    registry, _, _, orchestrator = services
    job_id = await _create(services, png_data_url)

    seen = []
    for _ in range(40):
        clock.advance(1_000)
        await orchestrator.get_status(job_id)
        seen.append(registry.get(job_id).fallback.attempted)

    first_true = seen.index(True)
    assert all(seen[first_true:])
    assert not any(seen[:first_true])
    assert len(fake_provider.tasks_for("secondary")) == 1


@pytest.mark.anyio
async def test_failed_failover_is_retried_next_poll(services, fake_provider, clock, png_data_url):
    registry, _, _, orchestrator = services
    job_id = await _create(services, png_data_url)
    fake_provider.fail_upload = True

    clock.advance(20_000)
    payload = await orchestrator.get_status(job_id)
    assert payload.status == JobStatus.QUEUED
    assert payload.task_id == job_id
    assert payload.stage == Stage.QUEUED
    assert payload.fallback.attempted is False

    fake_provider.fail_upload = False
    clock.advance(5_000)
    payload = await orchestrator.get_status(job_id)
    assert payload.fallback.attempted is True
    assert payload.provider == Provider.SECONDARY
    assert fake_provider.uploads == 2


@pytest.mark.anyio
async def test_disabled_failover_never_switches(http, config, registry, fake_provider, clock, png_data_url):
    from photomesh.main import build_services

    config.disable_failover = True
    services = build_services(http, config, registry)
    job_id = await _create(services, png_data_url)

    clock.advance(60_000)
    payload = await services[3].get_status(job_id)

    assert payload.fallback.attempted is False
    assert fake_provider.tasks_for("secondary") == []


@pytest.mark.anyio
async def test_terminal_states_set_stage(services, fake_provider, png_data_url):
    registry, _, _, orchestrator = services
    job_id = await _create(services, png_data_url)

    fake_provider.set_status(
        job_id,
        "success",
        progress=100,
        output={"pbr_model": "https://cdn/model.glb", "usdz_model": "https://cdn/model.usdz"},
    )
    payload = await orchestrator.get_status(job_id)

    assert payload.status == JobStatus.SUCCEEDED
    assert payload.stage == Stage.COMPLETE
    assert payload.asset.url == "https://cdn/model.glb"
    assert payload.asset.secondary_format_url == "https://cdn/model.usdz"

    # repeated poll is a pure re-read
    again = await orchestrator.get_status(job_id)
    assert again.stage == Stage.COMPLETE
    assert registry.get(job_id).fallback.attempted is False


@pytest.mark.anyio
@pytest.mark.parametrize("upstream", ["failed", "timeout"])
async def test_failure_and_timeout_end_in_error(services, fake_provider, upstream, png_data_url):
    _, _, _, orchestrator = services
    job_id = await _create(services, png_data_url)
    fake_provider.set_status(job_id, upstream)

    payload = await orchestrator.get_status(job_id)

    assert payload.stage == Stage.ERROR
    assert payload.error
    assert fake_provider.tasks_for("secondary") == []


@pytest.mark.anyio
async def test_untracked_id_queries_upstream_directly(services, fake_provider):
    _, _, _, orchestrator = services
    fake_provider.add_task("legacy-1", "running", progress=0.25)

    payload = await orchestrator.get_status("legacy-1")

    assert payload.status == JobStatus.RUNNING
    assert payload.progress == 0.25
    assert payload.fallback is None
    assert payload.stage is None
    assert "fallback" not in payload.model_dump(by_alias=True, exclude_none=True)


@pytest.mark.anyio
async def test_unknown_everywhere_is_not_found(services):
    _, _, _, orchestrator = services
    with pytest.raises(NotFoundError):
        await orchestrator.get_status("ghost")


@pytest.mark.anyio
async def test_tracked_404_is_not_found_without_failover(services, fake_provider, clock, png_data_url):
    _, _, _, orchestrator = services
    job_id = await _create(services, png_data_url)
    del fake_provider.tasks[job_id]

    clock.advance(30_000)
    with pytest.raises(NotFoundError):
        await orchestrator.get_status(job_id)
    assert fake_provider.tasks_for("secondary") == []


@pytest.mark.anyio
async def test_provider_error_returns_degraded_last_known_status(services, fake_provider, png_data_url):
    _, _, _, orchestrator = services
    job_id = await _create(services, png_data_url)
    fake_provider.set_status(job_id, "running", progress=60)
    await orchestrator.get_status(job_id)

    fake_provider.status_error["primary"] = 500
    payload = await orchestrator.get_status(job_id)

    assert payload.degraded is True
    assert payload.status == JobStatus.RUNNING
    assert payload.progress == 0.6
    assert payload.message == DEGRADED_MESSAGE
    assert payload.stage == Stage.GENERATING


@pytest.mark.anyio
async def test_degraded_without_history_uses_stage(services, fake_provider, png_data_url):
    _, _, _, orchestrator = services
    job_id = await _create(services, png_data_url)
    fake_provider.status_timeout = True

    payload = await orchestrator.get_status(job_id)

    assert payload.degraded is True
    assert payload.status == JobStatus.QUEUED
    assert payload.stage == Stage.INIT


@pytest.mark.anyio
async def test_primary_failure_failover_when_enabled(services, fake_provider, registry, config, png_data_url):
    _, client, _, _ = services
    orchestrator = StatusOrchestrator(
        registry,
        client,
        FailoverService(client, config.max_image_bytes),
        threshold_ms=config.failover_threshold_ms,
        failover_on_primary_failure=True,
    )
    job_id = await _create(services, png_data_url)
    fake_provider.set_status(job_id, "failed")

    payload = await orchestrator.get_status(job_id)

    assert payload.status == JobStatus.QUEUED
    assert payload.provider == Provider.SECONDARY
    assert payload.fallback.reason == FallbackReason.PRIMARY_FAILED


@pytest.mark.anyio
async def test_concurrent_polls_submit_one_secondary_job(config, registry, fake_provider, clock, png_data_url):
    from photomesh.main import build_services

    async def slow_handler(request):
        await anyio.sleep(0.01)
        return fake_provider.handler(request)

    http = httpx.AsyncClient(transport=httpx.MockTransport(slow_handler))
    services = build_services(http, config, registry)
    job_id = await _create(services, png_data_url)
    orchestrator = services[3]

    clock.advance(17_000)
    payloads = []

    async def poll():
        payloads.append(await orchestrator.get_status(job_id))

    async with anyio.create_task_group() as tg:
        tg.start_soon(poll)
        tg.start_soon(poll)

    assert len(fake_provider.tasks_for("secondary")) == 1
    record = registry.get(job_id)
    assert record.fallback.attempted is True
    assert record.task_id == fake_provider.tasks_for("secondary")[0]
    assert len(payloads) == 2


@pytest.mark.anyio
async def test_original_image_dropped_once_lock_is_taken(services, fake_provider, png_data_url):
    registry, _, _, orchestrator = services
    job_id = await _create(services, png_data_url)
    assert registry.get(job_id).original_image == png_data_url

    fake_provider.set_status(job_id, "running", progress=10)
    await orchestrator.get_status(job_id)

    assert registry.get(job_id).original_image is None


@pytest.mark.anyio
async def test_original_image_dropped_after_failover(services, clock, png_data_url):
    registry, _, _, orchestrator = services
    job_id = await _create(services, png_data_url)

    clock.advance(20_000)
    await orchestrator.get_status(job_id)

    record = registry.get(job_id)
    assert record.fallback.attempted is True
    assert record.original_image is None
