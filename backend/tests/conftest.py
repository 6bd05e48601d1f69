"""Shared fixtures for the videoconv test suite."""
import pytest

from videoconv.services.orchestrator import ConversionOrchestrator

from fakes import FakeEngine


@pytest.fixture
def storage(tmp_path):
    return str(tmp_path / "uploads"), str(tmp_path / "output")


@pytest.fixture
async def make_orchestrator(storage):
    """Factory building orchestrators over temp storage; shuts them all down afterwards."""
    created = []
    upload_dir, output_dir = storage

    def _make(engine=None, **kwargs):
        kwargs.setdefault("retention_seconds", 60)
        kwargs.setdefault("job_timeout_seconds", 0)
        orch = ConversionOrchestrator(
            engine=engine or FakeEngine(),
            upload_dir=upload_dir,
            output_dir=output_dir,
            **kwargs,
        )
        created.append(orch)
        return orch

    yield _make

    for orch in created:
        await orch.shutdown(timeout=2)


@pytest.fixture
async def orchestrator(make_orchestrator):
    return make_orchestrator()
