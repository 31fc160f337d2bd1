"""Configuration file for pytest containing fixtures shared across test modules.

- store / publisher / source: in-memory adapters for the engine ports
- pool: a small labelled worker pool
- workspace_root: a per-test directory for task workspaces
- pipeline_yaml: path of the shipped example pipeline
"""

from pathlib import Path

import pytest

from matrixci.adapters.artifacts import InMemoryArtifactStore
from matrixci.adapters.publishers import RecordingPublisher
from matrixci.adapters.source import MockSourceFetcher
from matrixci.kernel.config import clear_config_cache
from matrixci.kernel.domain.labels import LabelSet, Worker
from matrixci.kernel.orchestration.components.worker_pool import WorkerPool

ROOT = Path(__file__).resolve().parent.parent


@pytest.fixture(autouse=True)
def _fresh_config_cache():
    """Config files are cached by path; tests write new ones under tmp_path."""
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def store() -> InMemoryArtifactStore:
    return InMemoryArtifactStore(max_retained_runs=10)


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def source() -> MockSourceFetcher:
    return MockSourceFetcher(files={"setup.py": b"print('setup')\n", "src/lib.c": b"int x;\n"})


@pytest.fixture
def workers() -> list[Worker]:
    return [
        Worker("linux-01", LabelSet.of("linux", "cpu")),
        Worker("linux-02", LabelSet.of("linux", "cpu")),
        Worker("gpu-01", LabelSet.of("linux", "gpu", "cpu")),
    ]


@pytest.fixture
def pool(workers: list[Worker]) -> WorkerPool:
    return WorkerPool(workers)


@pytest.fixture
def workspace_root(tmp_path: Path) -> Path:
    return tmp_path / "workspaces"


@pytest.fixture
def pipeline_yaml() -> Path:
    return ROOT / "pipelines" / "xgboost.yaml"
