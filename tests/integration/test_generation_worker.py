from __future__ import annotations

import asyncio
import base64
from pathlib import Path

import pytest

from src.mediagen.domain.models import (
    GenerationErrorCode,
    GenerationKind,
    GenerationPatch,
    GenerationStatus,
    ProviderCredentials,
    ProviderKind,
)
from src.mediagen.exceptions import DatabaseOperationError, ProviderError
from src.mediagen.providers.providers_base import ProviderResult, SubmitOutcome, TaskStatus
from src.mediagen.security.credentials import AesGcmCredentialCipher
from src.mediagen.workers.dispatch_loop import DispatchLoop
from tests.integration.conftest import SECRET
from tests.mocks.drivers import ScriptedDriver
from tests.mocks.http import DummyHTTPResponse, install_client

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x01" * 16
RESULT_URL = "https://cdn.example.com/out.png"


def _queued(generation_repo, kind: GenerationKind = GenerationKind.IMAGE, **kwargs):
    return generation_repo.create_queued(
        user_id="u1", kind=kind, model="nano-banana", prompt="a fox", **kwargs
    )


def _succeeded(url: str = RESULT_URL) -> TaskStatus:
    return TaskStatus(status="succeeded", progress=100, results=[{"url": url}])


@pytest.mark.asyncio
async def test_polling_success_materializes_output(
    monkeypatch, make_worker, generation_repo, sleeps
) -> None:
    install_client(
        monkeypatch,
        get=[DummyHTTPResponse(200, content=PNG_BYTES, headers={"Content-Type": "image/png"})],
    )
    driver = ScriptedDriver(
        submit=SubmitOutcome(task_id="t1"),
        results=[TaskStatus(status="running", progress=30), _succeeded()],
    )
    generation = _queued(generation_repo)

    await make_worker(driver).run(generation)

    final = generation_repo.get(generation.id)
    assert final.status is GenerationStatus.SUCCEEDED
    assert final.progress == 100.0
    assert final.provider_task_id == "t1"
    assert final.provider_result_url == RESULT_URL
    assert final.error is None and final.error_code is None
    assert final.started_at is not None
    assert final.elapsed_seconds is not None and final.elapsed_seconds >= 0
    assert final.output_file_id
    assert driver.fetched == ["t1", "t1"]
    assert sleeps == [2.0]
    assert driver.closed


@pytest.mark.asyncio
async def test_output_file_is_stored_for_user(
    monkeypatch, make_worker, generation_repo, file_repo
) -> None:
    install_client(
        monkeypatch,
        get=[DummyHTTPResponse(200, content=PNG_BYTES, headers={"Content-Type": "image/png"})],
    )
    generation = _queued(generation_repo)

    await make_worker(ScriptedDriver(results=[_succeeded()])).run(generation)

    stored = file_repo.get_file(generation_repo.get(generation.id).output_file_id)
    assert stored.user_id == "u1"
    assert stored.purpose == "generation-output"
    assert stored.persistent is False
    assert Path(stored.path).read_bytes() == PNG_BYTES


@pytest.mark.asyncio
async def test_immediate_inline_result_skips_polling(make_worker, generation_repo) -> None:
    data_url = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode()
    driver = ScriptedDriver(submit=SubmitOutcome(result=ProviderResult.inline(data_url)))
    generation = _queued(generation_repo)

    await make_worker(driver).run(generation)

    final = generation_repo.get(generation.id)
    assert final.status is GenerationStatus.SUCCEEDED
    assert final.provider_task_id is None
    assert final.output_file_id
    assert driver.fetched == []


@pytest.mark.asyncio
async def test_immediate_task_result_is_downloaded(
    monkeypatch, make_worker, generation_repo
) -> None:
    install_client(monkeypatch, get=[DummyHTTPResponse(200, content=PNG_BYTES)])
    driver = ScriptedDriver(submit=SubmitOutcome(task_id="t9", immediate=_succeeded()))
    generation = _queued(generation_repo)

    await make_worker(driver).run(generation)

    final = generation_repo.get(generation.id)
    assert final.status is GenerationStatus.SUCCEEDED
    assert driver.fetched == []


@pytest.mark.asyncio
async def test_video_on_gemini_host_fails_without_network(
    monkeypatch, make_worker, generation_repo
) -> None:
    calls = install_client(monkeypatch)
    generation = _queued(generation_repo, kind=GenerationKind.VIDEO)

    worker = make_worker(host="https://yunwu.ai")
    await worker.run(generation)

    final = generation_repo.get(generation.id)
    assert final.status is GenerationStatus.FAILED
    assert final.error_code is GenerationErrorCode.UNSUPPORTED_FEATURE
    assert final.error
    assert calls == []
    assert worker.factory_calls[0][0].kind is ProviderKind.GEMINI


@pytest.mark.asyncio
async def test_missing_api_key_fails_before_provider(make_worker, generation_repo) -> None:
    generation = _queued(generation_repo)

    worker = make_worker(ScriptedDriver(), api_key="")
    await worker.run(generation)

    final = generation_repo.get(generation.id)
    assert final.status is GenerationStatus.FAILED
    assert final.error_code is GenerationErrorCode.API_ERROR
    assert final.started_at is not None
    assert worker.factory_calls == []


@pytest.mark.asyncio
async def test_user_override_decrypts_key_and_infers_kind(
    make_worker, generation_repo, user_provider_repo
) -> None:
    user_provider_repo.set_user_provider(
        user_id="u1",
        provider_host="https://yunwu.ai",
        api_key_enc=AesGcmCredentialCipher().encrypt("user-key", SECRET),
    )
    generation = _queued(generation_repo)
    worker = make_worker(ScriptedDriver(submit=ProviderError("API error: stop here")))

    await worker.run(generation)

    credentials, timeout = worker.factory_calls[0]
    assert credentials == ProviderCredentials(
        host="https://yunwu.ai", api_key="user-key", kind=ProviderKind.GEMINI
    )
    assert timeout == 600


@pytest.mark.asyncio
async def test_undecryptable_user_key_falls_back_to_default(
    make_worker, generation_repo, user_provider_repo
) -> None:
    user_provider_repo.set_user_provider(
        user_id="u1",
        provider_host="https://grsai.example.com",
        api_key_enc="aes256gcm:broken:value",
        provider_kind=ProviderKind.GRSAI,
    )
    generation = _queued(generation_repo)
    worker = make_worker(ScriptedDriver(submit=ProviderError("API error: stop here")))

    await worker.run(generation)

    credentials, _ = worker.factory_calls[0]
    assert credentials.host == "https://grsai.example.com"
    assert credentials.api_key == "default-key"
    assert credentials.kind is ProviderKind.GRSAI


@pytest.mark.asyncio
async def test_explicit_default_kind_overrides_host(make_worker, generation_repo) -> None:
    generation = _queued(generation_repo)
    worker = make_worker(
        ScriptedDriver(submit=ProviderError("API error: stop here")),
        host="https://yunwu.ai",
        kind=ProviderKind.GRSAI,
    )

    await worker.run(generation)

    assert worker.factory_calls[0][0].kind is ProviderKind.GRSAI


@pytest.mark.asyncio
async def test_submit_error_is_classified(make_worker, generation_repo) -> None:
    driver = ScriptedDriver(submit=ProviderError("insufficient quota for user"))
    generation = _queued(generation_repo)

    await make_worker(driver).run(generation)

    final = generation_repo.get(generation.id)
    assert final.status is GenerationStatus.FAILED
    assert final.error == "insufficient quota for user"
    assert final.error_code is GenerationErrorCode.INSUFFICIENT_QUOTA
    assert final.provider_task_id is None
    assert driver.fetched == []


@pytest.mark.asyncio
async def test_references_are_inlined_and_missing_ones_skipped(
    make_worker, generation_repo, storage
) -> None:
    upload = storage.save_bytes(
        user_id="u1", purpose="upload", mime_type="image/png", original_name="a.png", data=b"abc"
    )
    driver = ScriptedDriver(submit=ProviderError("API error: stop here"))
    generation = _queued(generation_repo, reference_file_ids=[upload.id, "missing"])

    await make_worker(driver).run(generation)

    assert driver.submitted[0].references == ["data:image/png;base64,YWJj"]
    assert driver.submitted[0].generation_id == generation.id


@pytest.mark.asyncio
async def test_poll_exhaustion_fails_with_timeout(
    make_worker, generation_repo, settings_repo, sleeps
) -> None:
    settings_repo.update_timeouts(image_timeout_seconds=30, video_timeout_seconds=600)
    driver = ScriptedDriver()
    generation = _queued(generation_repo)

    await make_worker(driver).run(generation)

    final = generation_repo.get(generation.id)
    assert final.status is GenerationStatus.FAILED
    assert final.error_code is GenerationErrorCode.TIMEOUT
    assert len(driver.fetched) == 15
    assert len(sleeps) == 15


@pytest.mark.asyncio
async def test_transient_poll_errors_are_absorbed(make_worker, generation_repo, sleeps) -> None:
    errors = [ProviderError(f"connection reset #{i}") for i in range(12)]
    driver = ScriptedDriver(results=[*errors, TaskStatus(status="failed", message="nsfw content")])
    generation = _queued(generation_repo)

    await make_worker(driver).run(generation)

    diagnostics = [
        changes["error"]
        for _, changes in generation_repo.patches
        if set(changes) == {"error"}
    ]
    assert diagnostics == ["connection reset #0", "connection reset #10"]
    assert len(sleeps) == 12
    final = generation_repo.get(generation.id)
    assert final.status is GenerationStatus.FAILED
    assert final.error == "nsfw content"
    assert final.error_code is GenerationErrorCode.UNKNOWN


@pytest.mark.asyncio
async def test_failed_task_without_text_uses_default_message(make_worker, generation_repo) -> None:
    driver = ScriptedDriver(results=[TaskStatus(status="failed")])
    generation = _queued(generation_repo)

    await make_worker(driver).run(generation)

    final = generation_repo.get(generation.id)
    assert final.error == "task failed"
    assert final.error_code is GenerationErrorCode.UNKNOWN


@pytest.mark.asyncio
async def test_succeeded_without_url_is_api_error(make_worker, generation_repo) -> None:
    driver = ScriptedDriver(results=[TaskStatus(status="succeeded", results=[])])
    generation = _queued(generation_repo)

    await make_worker(driver).run(generation)

    final = generation_repo.get(generation.id)
    assert final.status is GenerationStatus.FAILED
    assert final.error_code is GenerationErrorCode.API_ERROR
    assert final.output_file_id is None


@pytest.mark.asyncio
async def test_download_failure_is_network_error(
    monkeypatch, make_worker, generation_repo
) -> None:
    install_client(monkeypatch, get=[DummyHTTPResponse(500, content=b"oops")])
    driver = ScriptedDriver(results=[_succeeded()])
    generation = _queued(generation_repo)

    await make_worker(driver).run(generation)

    final = generation_repo.get(generation.id)
    assert final.status is GenerationStatus.FAILED
    assert final.error_code is GenerationErrorCode.NETWORK_ERROR


@pytest.mark.asyncio
async def test_restart_resumes_polling_existing_task(
    monkeypatch, make_worker, generation_repo
) -> None:
    install_client(monkeypatch, get=[DummyHTTPResponse(200, content=PNG_BYTES)])
    generation = _queued(generation_repo)
    generation_repo.update(
        generation.id, GenerationPatch(status=GenerationStatus.RUNNING, started_at=1_000)
    )
    generation_repo.update(generation.id, GenerationPatch(provider_task_id="t-old", progress=0.0))
    driver = ScriptedDriver(results=[_succeeded()])

    await make_worker(driver).run(generation_repo.get(generation.id))

    final = generation_repo.get(generation.id)
    assert driver.submitted == []
    assert driver.fetched == ["t-old"]
    assert final.status is GenerationStatus.SUCCEEDED
    assert final.started_at == 1_000


@pytest.mark.asyncio
async def test_restart_without_task_id_submits_again(make_worker, generation_repo) -> None:
    generation = _queued(generation_repo)
    generation_repo.update(
        generation.id, GenerationPatch(status=GenerationStatus.RUNNING, started_at=1_000)
    )
    driver = ScriptedDriver(submit=SubmitOutcome(task_id="t-new"), results=[TaskStatus(status="failed")])

    await make_worker(driver).run(generation_repo.get(generation.id))

    assert len(driver.submitted) == 1
    assert generation_repo.get(generation.id).provider_task_id == "t-new"


@pytest.mark.asyncio
async def test_poll_stops_when_generation_becomes_terminal(make_worker, generation_repo) -> None:
    generation = _queued(generation_repo)

    def cancel_externally(task_id: str) -> TaskStatus:
        generation_repo.update(
            generation.id,
            GenerationPatch(
                status=GenerationStatus.FAILED,
                error="cancelled by user",
                error_code=GenerationErrorCode.UNKNOWN,
            ),
        )
        return TaskStatus(status="running")

    driver = ScriptedDriver(results=[cancel_externally, _succeeded()])

    await make_worker(driver).run(generation)

    final = generation_repo.get(generation.id)
    assert driver.fetched == ["task-1"]
    assert final.status is GenerationStatus.FAILED
    assert final.error == "cancelled by user"


@pytest.mark.asyncio
async def test_terminal_snapshot_is_left_alone(make_worker, generation_repo) -> None:
    generation = _queued(generation_repo)
    generation.status = GenerationStatus.SUCCEEDED
    driver = ScriptedDriver()

    await make_worker(driver).run(generation)

    assert generation_repo.patches == []
    assert driver.submitted == []


@pytest.mark.asyncio
async def test_grsai_end_to_end_over_http(monkeypatch, make_worker, generation_repo) -> None:
    calls = install_client(
        monkeypatch,
        post=[
            DummyHTTPResponse(200, {"code": 0, "data": {"id": "remote-1"}}),
            DummyHTTPResponse(
                200,
                text='data: {"id": "remote-1", "status": "running", "progress": 50}\n\n'
                'data: {"id": "remote-1", "status": "succeeded", "progress": 100, '
                '"results": [{"url": "https://cdn.example.com/r.png"}]}\n',
            ),
        ],
        get=[DummyHTTPResponse(200, content=PNG_BYTES, headers={"Content-Type": "image/png"})],
    )
    generation = _queued(generation_repo)

    await make_worker().run(generation)

    final = generation_repo.get(generation.id)
    assert final.status is GenerationStatus.SUCCEEDED
    assert final.provider_task_id == "remote-1"
    assert final.provider_result_url == "https://cdn.example.com/r.png"
    assert [call["url"] for call in calls] == [
        "https://grsai.dakka.com.cn/v1/draw/nano-banana",
        "https://grsai.dakka.com.cn/v1/draw/result",
        "https://cdn.example.com/r.png",
    ]


def _inline_png() -> SubmitOutcome:
    data_url = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode()
    return SubmitOutcome(result=ProviderResult.inline(data_url))


@pytest.mark.asyncio
async def test_stale_snapshot_of_failed_generation_is_not_restarted(
    make_worker, generation_repo
) -> None:
    stale = _queued(generation_repo)
    generation_repo.update(stale.id, GenerationPatch(status=GenerationStatus.RUNNING))
    generation_repo.update(
        stale.id,
        GenerationPatch(
            status=GenerationStatus.FAILED, error="x", error_code=GenerationErrorCode.UNKNOWN
        ),
    )
    written = len(generation_repo.patches)
    driver = ScriptedDriver(submit=ProviderError("boom2"))

    await make_worker(driver).run(stale)

    final = generation_repo.get(stale.id)
    assert final.status is GenerationStatus.FAILED
    assert final.error == "x"
    assert generation_repo.patches[written:] == []
    assert driver.submitted == []


@pytest.mark.asyncio
async def test_vanished_generation_is_skipped(make_worker, generation_repo) -> None:
    generation = _queued(generation_repo)
    generation.id = "missing"
    driver = ScriptedDriver()

    await make_worker(driver).run(generation)

    assert generation_repo.patches == []
    assert driver.submitted == []


class StaleListing:
    """Keeps returning the snapshot taken before the generation finished."""

    def __init__(self, snapshot) -> None:
        self.snapshot = snapshot

    def list_pending(self):
        return [self.snapshot]


@pytest.mark.asyncio
async def test_dispatcher_repick_after_finish_does_not_regress(
    make_worker, generation_repo
) -> None:
    generation = _queued(generation_repo)
    driver = ScriptedDriver(submit=_inline_png())
    worker = make_worker(driver)
    loop = DispatchLoop(generations=StaleListing(generation), runner=worker.run)

    await asyncio.gather(*await loop.tick())
    await asyncio.sleep(0)
    await asyncio.gather(*await loop.tick())

    final = generation_repo.get(generation.id)
    assert final.status is GenerationStatus.SUCCEEDED
    assert len(driver.submitted) == 1
    statuses = [changes["status"] for _, changes in generation_repo.patches if "status" in changes]
    assert statuses == [GenerationStatus.RUNNING, GenerationStatus.SUCCEEDED]


@pytest.mark.asyncio
async def test_result_arriving_after_external_failure_is_dropped(
    monkeypatch, make_worker, generation_repo
) -> None:
    install_client(monkeypatch, get=[DummyHTTPResponse(200, content=PNG_BYTES)])
    generation = _queued(generation_repo)

    def fail_then_succeed(task_id: str) -> TaskStatus:
        generation_repo.update(
            generation.id,
            GenerationPatch(
                status=GenerationStatus.FAILED,
                error="cancelled by user",
                error_code=GenerationErrorCode.UNKNOWN,
            ),
        )
        return _succeeded()

    await make_worker(ScriptedDriver(results=[fail_then_succeed])).run(generation)

    final = generation_repo.get(generation.id)
    assert final.status is GenerationStatus.FAILED
    assert final.error == "cancelled by user"
    assert final.output_file_id is None


@pytest.mark.asyncio
async def test_unexpected_submit_error_fails_generation(make_worker, generation_repo) -> None:
    driver = ScriptedDriver(submit=RuntimeError("kaboom"))
    generation = _queued(generation_repo)

    await make_worker(driver).run(generation)

    final = generation_repo.get(generation.id)
    assert final.status is GenerationStatus.FAILED
    assert final.error_code is GenerationErrorCode.API_ERROR
    assert "kaboom" in final.error
    assert driver.closed


@pytest.mark.asyncio
async def test_unexpected_poll_error_fails_generation(make_worker, generation_repo, sleeps) -> None:
    driver = ScriptedDriver(results=[KeyError("status")])
    generation = _queued(generation_repo)

    await make_worker(driver).run(generation)

    final = generation_repo.get(generation.id)
    assert final.status is GenerationStatus.FAILED
    assert final.error_code is GenerationErrorCode.API_ERROR
    assert driver.fetched == ["task-1"]
    assert sleeps == []


class BrokenSettings:
    def get_settings(self):
        raise DatabaseOperationError("settings: database operation failed")


@pytest.mark.asyncio
async def test_settings_failure_fails_before_submit(make_worker, generation_repo) -> None:
    driver = ScriptedDriver()
    worker = make_worker(driver)
    worker.settings = BrokenSettings()
    generation = _queued(generation_repo)

    await worker.run(generation)

    final = generation_repo.get(generation.id)
    assert final.status is GenerationStatus.FAILED
    assert final.error_code is GenerationErrorCode.API_ERROR
    assert "database operation failed" in final.error
    assert driver.submitted == []


@pytest.mark.asyncio
async def test_empty_submit_outcome_is_api_error(make_worker, generation_repo) -> None:
    driver = ScriptedDriver(submit=SubmitOutcome())
    generation = _queued(generation_repo)

    await make_worker(driver).run(generation)

    final = generation_repo.get(generation.id)
    assert final.status is GenerationStatus.FAILED
    assert final.error_code is GenerationErrorCode.API_ERROR
    assert driver.fetched == []


@pytest.mark.asyncio
async def test_finish_without_immediate_status_is_api_error(make_worker, generation_repo) -> None:
    generation = _queued(generation_repo)
    generation_repo.update(generation.id, GenerationPatch(status=GenerationStatus.RUNNING))
    running = generation_repo.get(generation.id)

    await make_worker()._finish_immediate(running, SubmitOutcome(task_id="t1"), 600)

    final = generation_repo.get(generation.id)
    assert final.status is GenerationStatus.FAILED
    assert final.error_code is GenerationErrorCode.API_ERROR
