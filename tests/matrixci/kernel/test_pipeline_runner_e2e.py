"""End-to-end runs of whole pipelines against scripted adapters."""

import asyncio

import pytest

from matrixci.adapters.approval import AutoApprove, TrustedAuthorsApproval
from matrixci.adapters.artifacts import InMemoryArtifactStore, LocalArtifactStore
from matrixci.adapters.executors import MockTaskExecutor
from matrixci.adapters.publishers import RecordingPublisher
from matrixci.adapters.source import MockSourceFetcher
from matrixci.drivers.observer_manager import LocalObserverManager
from matrixci.kernel.config import EngineConfig, WorkerConfig
from matrixci.kernel.domain.labels import LabelSet, Worker
from matrixci.kernel.domain.run import RunStatus, StageStatus, StepStatus, TaskStatus
from matrixci.kernel.exceptions import NoEligibleWorkerError, OrchestratorError, SupersededError
from matrixci.kernel.logging import get_correlation_id
from matrixci.kernel.orchestration.components.worker_pool import WorkerPool
from matrixci.kernel.orchestration.events import RunCompleted, RunSuperseded
from matrixci.kernel.pipeline_builder.yaml_builder import YamlPipelineBuilder, load_pipeline
from matrixci.kernel.pipeline_runner import PipelineRunner, Trigger
from matrixci.stdlib.observers import CollectingObserver

BUILD_FILES = {
    "build-cpu*/wheel": {"python-package/dist/xgboost-cpu.whl": b"cpu wheel"},
    "build-gpu-*/wheel": {
        "python-package/dist/xgboost-gpu.whl": b"gpu wheel",
        "build/testxgboost": b"gtest binary",
    },
    "build-gpu-*/build-pool": {"build-pool/testxgboost": b"pool gtest binary"},
    "build-jvm-*/build-jvm": {"jvm-packages/xgboost4j-spark/target/xgboost4j.jar": b"jar"},
}

SMALL = """
apiVersion: matrixci/v1
kind: Pipeline
metadata:
  name: small
spec:
  checkout: {attempts: 2, timeout: 0.2}
  workers:
    - {id: cpu, labels: [linux, cpu], count: 2}
  stages:
    - name: Build
      tasks:
        - name: build
          labels: [linux, cpu]
          inputs: [srcs]
          steps:
            - {name: make, run: make}
          outputs:
            binaries: "out/*"
    - name: Deploy
      tasks:
        - name: deploy
          labels: [linux, cpu]
          steps:
            - name: upload
              publish: {stash: binaries, destination: "releases/{branch}/{sequence}"}
"""

SMALL_FILES = {"build/make": {"out/tool": b"binary"}}


@pytest.fixture
def xgboost(pipeline_yaml):
    return load_pipeline(pipeline_yaml)


@pytest.fixture
def small():
    return YamlPipelineBuilder().build_from_yaml_string(SMALL)


@pytest.fixture
def make_runner(store, source, publisher, workspace_root):
    def factory(pipeline, executor=None, **kwargs) -> PipelineRunner:
        options = {
            "store": store,
            "source": source,
            "publisher": publisher,
            "approval": AutoApprove(),
            "workspace_root": workspace_root,
        }
        options.update(kwargs)
        return PipelineRunner(pipeline, executor or MockTaskExecutor(files=BUILD_FILES), **options)

    return factory


class TestXGBoostPipeline:
    @pytest.mark.asyncio
    async def test_mainline_run_publishes_each_deploy_step_once(
        self, xgboost, make_runner, publisher, store
    ) -> None:
        runner = make_runner(xgboost)

        result = await runner.run(Trigger(branch="master", commit="a" * 40))

        assert result.succeeded, result.reason
        assert result.run_id == "master#1"
        assert result.commit == "a" * 40
        assert [s.status for s in result.stages.values()] == [StageStatus.SUCCEEDED] * 4
        assert [(u.stash, u.destination) for u in publisher.uploads] == [
            ("wheel@accel:11.0", "s3://xgboost-nightly-builds/master"),
            ("wheel@cpu,arch:aarch64", "s3://xgboost-nightly-builds/master"),
        ]
        assert publisher.uploads[0].files == ("python-package/dist/xgboost-gpu.whl",)
        assert "cpp_tests@accel:11.0,pool" in await store.stashes("master#1")

    @pytest.mark.asyncio
    async def test_tasks_run_on_matching_workers(self, xgboost, make_runner) -> None:
        result = await make_runner(xgboost).run("master")

        test_stage = result.stages["Test"]
        assert test_stage.tasks["test-python-mgpu-multi-accel11.0"].worker_id == "mgpu"
        assert test_stage.tasks["test-python-aarch64"].worker_id == "arm64"
        assert test_stage.tasks["test-python-accel11.0"].worker_id in {"gpu-1", "gpu-2", "mgpu"}
        assert result.stages["Build"].tasks["build-gpu-accel11.0"].worker_id.startswith(
            "cpu-build-"
        )

    @pytest.mark.asyncio
    async def test_feature_branch_never_publishes(self, xgboost, make_runner, publisher) -> None:
        executor = MockTaskExecutor(files=BUILD_FILES)
        result = await make_runner(xgboost, executor).run("feature-x")

        assert result.succeeded
        assert publisher.uploads == []
        deploy = result.stages["Deploy"].tasks["deploy-wheels"]
        assert [s.status for s in deploy.steps] == [StepStatus.SKIPPED, StepStatus.SKIPPED]
        # ordinary commands of the Deploy stage still run
        assert len(executor.calls_for("deploy-jvm-packages")) == 1

    @pytest.mark.asyncio
    async def test_failing_test_skips_deploy(self, xgboost, make_runner, publisher) -> None:
        executor = MockTaskExecutor(
            outcomes={"test-python-accel11.0/*": 1}, files=BUILD_FILES
        )
        result = await make_runner(xgboost, executor).run("master")

        assert result.status == RunStatus.FAILED
        assert (result.failed_stage, result.failed_task, result.failed_step) == (
            "Test",
            "test-python-accel11.0",
            "pytest",
        )
        # siblings drained
        assert result.stages["Test"].tasks["test-python"].status == TaskStatus.SUCCEEDED
        assert result.stages["Deploy"].status == StageStatus.SKIPPED
        assert publisher.uploads == []
        with pytest.raises(OrchestratorError, match="Test/test-python-accel11.0/pytest"):
            result.raise_for_status()

    @pytest.mark.asyncio
    async def test_unschedulable_task_fails_before_anything_runs(
        self, xgboost, make_runner, source
    ) -> None:
        executor = MockTaskExecutor()
        pool = WorkerPool([Worker("cpu-01", LabelSet.of("linux", "cpu"))])
        runner = make_runner(xgboost, executor, pool=pool)

        with pytest.raises(NoEligibleWorkerError):
            await runner.run("master")
        assert executor.calls == []
        assert source.call_count == 0


class TestSupersession:
    @pytest.mark.asyncio
    async def test_newer_run_supersedes_older(self, xgboost, make_runner, publisher) -> None:
        class SlowForOldCommits(MockSourceFetcher):
            async def fetch(self, branch, commit, dest):
                if commit == "old":
                    await asyncio.sleep(0.5)
                return await super().fetch(branch, commit, dest)

        collector = CollectingObserver()
        async with LocalObserverManager() as observers:
            observers.register(collector, event_types=(RunSuperseded, RunCompleted))
            runner = make_runner(xgboost, source=SlowForOldCommits(), observer_manager=observers)
            older, newer = await asyncio.gather(
                runner.run(Trigger(branch="master", commit="old", sequence=5)),
                runner.run(Trigger(branch="master", commit="new", sequence=7)),
            )

        assert newer.succeeded
        assert older.superseded
        assert older.superseded_by == "master#7"
        assert older.stages["Deploy"].status == StageStatus.SKIPPED
        assert {u.run_id for u in publisher.uploads} == {"master#7"}
        with pytest.raises(SupersededError):
            older.raise_for_status()

        [event] = collector.of_type(RunSuperseded)
        assert (event.run_id, event.superseded_by) == ("master#5", "master#7")
        assert {e.run_id: e.status for e in collector.of_type(RunCompleted)} == {
            "master#5": "aborted",
            "master#7": "succeeded",
        }

    @pytest.mark.asyncio
    async def test_one_run_of_a_branch_deploys_at_a_time(self, small, make_runner) -> None:
        class SlowPublisher(RecordingPublisher):
            def __init__(self) -> None:
                super().__init__()
                self.active: set[str] = set()
                self.max_active = 0

            async def upload(self, artifact, destination):
                self.active.add(artifact.run_id)
                self.max_active = max(self.max_active, len(self.active))
                await asyncio.sleep(0.3)
                self.active.discard(artifact.run_id)
                await super().upload(artifact, destination)

        class SlowForNewCommits(MockSourceFetcher):
            async def fetch(self, branch, commit, dest):
                if commit == "new":
                    await asyncio.sleep(0.1)
                return await super().fetch(branch, commit, dest)

        publisher = SlowPublisher()
        runner = make_runner(
            small,
            MockTaskExecutor(files=SMALL_FILES),
            source=SlowForNewCommits(),
            publisher=publisher,
        )
        older, newer = await asyncio.gather(
            runner.run(Trigger(branch="main-line", commit="old", sequence=5)),
            runner.run(Trigger(branch="main-line", commit="new", sequence=7)),
        )

        # run 5 is uploading when run 7 reaches Deploy; run 7 waits for it
        assert older.succeeded and newer.succeeded
        assert publisher.max_active == 1
        assert [u.run_id for u in publisher.uploads] == ["main-line#5", "main-line#7"]
        assert runner.gate.holder("main-line", 3) is None

    @pytest.mark.asyncio
    async def test_runs_of_other_branches_do_not_interfere(self, small, make_runner) -> None:
        runner = make_runner(small, MockTaskExecutor(files=SMALL_FILES))
        results = await asyncio.gather(runner.run("main-line"), runner.run("feature-x"))
        assert all(r.succeeded for r in results)


class TestRunLifecycle:
    @pytest.mark.asyncio
    async def test_sequence_allocation(self, small, make_runner) -> None:
        runner = make_runner(small, MockTaskExecutor(files=SMALL_FILES))

        first = await runner.run("main-line")
        second = await runner.run("main-line")
        other = await runner.run("feature-x")
        pinned = await runner.run(Trigger(branch="main-line", sequence=10))
        after = await runner.run("main-line")

        assert [r.run_id for r in (first, second, other, pinned, after)] == [
            "main-line#1",
            "main-line#2",
            "feature-x#1",
            "main-line#10",
            "main-line#11",
        ]

    @pytest.mark.asyncio
    async def test_destination_rendered_from_run(self, small, make_runner, publisher) -> None:
        runner = make_runner(small, MockTaskExecutor(files=SMALL_FILES))
        await runner.run("main-line")
        await runner.run("main-line")
        assert [u.destination for u in publisher.uploads] == [
            "releases/main-line/1",
            "releases/main-line/2",
        ]

    @pytest.mark.asyncio
    async def test_artifacts_of_finished_runs_are_evicted(self, small, make_runner) -> None:
        store = InMemoryArtifactStore(max_retained_runs=1)
        runner = make_runner(small, MockTaskExecutor(files=SMALL_FILES), store=store)
        await runner.run("main-line")
        await runner.run("main-line")
        assert await store.runs() == ["main-line#2"]

    @pytest.mark.asyncio
    async def test_correlation_id_is_reset(self, small, make_runner) -> None:
        await make_runner(small, MockTaskExecutor(files=SMALL_FILES)).run("main-line")
        assert get_correlation_id() == "-"

    @pytest.mark.asyncio
    async def test_run_timeout(self, small, make_runner) -> None:
        runner = make_runner(small, MockTaskExecutor(delay=5.0), run_timeout=0.1)
        result = await runner.run("main-line")
        assert result.status == RunStatus.FAILED
        assert result.reason == "timeout"
        assert runner.pool.busy == {}

    @pytest.mark.asyncio
    async def test_executor_lifecycle(self, small, make_runner) -> None:
        class Managed(MockTaskExecutor):
            def __init__(self) -> None:
                super().__init__(files=SMALL_FILES)
                self.setups = 0
                self.closes = 0

            async def asetup(self) -> None:
                self.setups += 1

            async def aclose(self) -> None:
                self.closes += 1
                raise RuntimeError("close failure is only logged")

        executor = Managed()
        result = await make_runner(small, executor).run("main-line")
        assert result.succeeded
        assert (executor.setups, executor.closes) == (1, 1)


class TestInitialize:
    @pytest.mark.asyncio
    async def test_checkout_retries_with_clean_workspace(self, small, make_runner) -> None:
        source = MockSourceFetcher(fail_times=1, hang_times=1)
        result = await make_runner(small, MockTaskExecutor(files=SMALL_FILES), source=source).run(
            "main-line"
        )

        assert result.succeeded is False
        # attempts: 2 in the manifest, one failure plus one hang exhausts them
        assert (result.failed_stage, result.failed_step) == ("Initialize", "checkout")
        assert source.call_count == 2
        assert source.started_clean == [True, True]

    @pytest.mark.asyncio
    async def test_checkout_succeeds_after_failure(self, small, make_runner) -> None:
        source = MockSourceFetcher(files={"Makefile": b"all:\n"}, fail_times=1)
        executor = MockTaskExecutor(files=SMALL_FILES)
        runner = make_runner(small, executor, source=source, keep_workspaces=True)
        result = await runner.run("main-line")

        assert result.succeeded
        assert source.call_count == 2
        [make] = executor.calls_for("build")
        assert (make.workdir / "Makefile").read_bytes() == b"all:\n"
        assert not (make.workdir / ".partial").exists()

    @pytest.mark.asyncio
    async def test_unapproved_author_stops_the_run(self, small, make_runner) -> None:
        executor = MockTaskExecutor(files=SMALL_FILES)
        approval = TrustedAuthorsApproval({"alice"}, trusted_branches={"main-line"})
        runner = make_runner(small, executor, approval=approval)

        denied = await runner.run(Trigger(branch="feature-x", author="mallory"))
        allowed = await runner.run(Trigger(branch="feature-x", author="alice"))
        trusted = await runner.run(Trigger(branch="main-line", author="mallory"))

        assert denied.status == RunStatus.FAILED
        assert denied.failed_step == "approval"
        assert denied.stages["Build"].status == StageStatus.SKIPPED
        assert allowed.succeeded
        assert trusted.succeeded
        assert len(executor.calls_for("build")) == 2


class TestFromConfig:
    @pytest.mark.asyncio
    async def test_engine_defaults(self, tmp_path, source, publisher) -> None:
        pipeline = YamlPipelineBuilder().build_from_yaml_string(
            SMALL.replace("  workers:\n    - {id: cpu, labels: [linux, cpu], count: 2}\n", "")
        )
        engine = EngineConfig(
            run_timeout=600,
            max_retained_runs=3,
            artifact_root=str(tmp_path / "artifacts"),
            workspace_root=str(tmp_path / "ws"),
            workers=(WorkerConfig("box", ("linux", "cpu"), count=2),),
        )

        runner = PipelineRunner.from_config(
            pipeline,
            MockTaskExecutor(files=SMALL_FILES),
            engine,
            source=source,
            publisher=publisher,
        )

        assert isinstance(runner.store, LocalArtifactStore)
        assert [w.worker_id for w in runner.pool.workers] == ["box-1", "box-2"]
        assert runner.run_timeout == 600
        result = await runner.run("main-line")
        assert result.succeeded
        assert (tmp_path / "artifacts" / "main-line%231").is_dir()

    def test_pipeline_workers_and_timeout_win(self, small) -> None:
        engine = EngineConfig(workers=(WorkerConfig("box", ("linux", "cpu")),))
        runner = PipelineRunner.from_config(
            small, MockTaskExecutor(), engine, run_timeout=30.0
        )
        assert [w.worker_id for w in runner.pool.workers] == ["cpu-1", "cpu-2"]
        assert runner.run_timeout == 30.0
        assert isinstance(runner.store, InMemoryArtifactStore)
