"""Tests for lazy_deploy.pipeline."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from conftest import SERVICES, FakeBackends
from lazy_deploy.errors import UnknownUnit
from lazy_deploy.models import DeploySettings, OverallStatus
from lazy_deploy.pipeline import (
    find_changed_paths,
    plan_selection,
    resolve_revision,
    run_deploy,
    write_step_summary,
)
from lazy_deploy.registry import UnitRegistry
from lazy_deploy.summary import NO_CHANGE, summarize
from lazy_deploy.triggers import TriggerKind

NULL_SHA = "0" * 40


class TestFindChangedPaths:
    """Tests for find_changed_paths()."""

    @patch("lazy_deploy.pipeline.git")
    @patch("lazy_deploy.pipeline.step")
    def test_diffs_against_base(
        self, mock_step: MagicMock, mock_git: MagicMock
    ) -> None:
        """With a base revision, the two revisions are diffed."""
        mock_git.return_value = (
            "services/user-service/index.js\nREADME.md\nservices/user-service/index.js"
        )

        result = find_changed_paths("base123", "head456")

        assert result == ["README.md", "services/user-service/index.js"]
        mock_git.assert_called_once_with("diff", "--name-only", "base123", "head456")

    @pytest.mark.parametrize("base", [None, "", NULL_SHA])
    @patch("lazy_deploy.pipeline.git")
    @patch("lazy_deploy.pipeline.step")
    def test_new_branch_uses_head_commit(
        self, mock_step: MagicMock, mock_git: MagicMock, base: str | None
    ) -> None:
        """Without a usable base, the files of the head commit are used."""
        mock_git.return_value = "services/api-gateway/Dockerfile"

        result = find_changed_paths(base, "head456")

        assert result == ["services/api-gateway/Dockerfile"]
        mock_git.assert_called_once_with(
            "diff-tree", "--no-commit-id", "--name-only", "-r", "--root", "head456"
        )

    @patch("lazy_deploy.pipeline.git")
    @patch("lazy_deploy.pipeline.step")
    def test_no_changes(
        self, mock_step: MagicMock, mock_git: MagicMock, capsys: pytest.CaptureFixture
    ) -> None:
        """An empty diff is an empty list, not an error."""
        mock_git.return_value = ""

        assert find_changed_paths("base123", "head456") == []
        assert "<no changed files>" in capsys.readouterr().out


class TestResolveRevision:
    """Tests for resolve_revision()."""

    @patch("lazy_deploy.pipeline.git")
    def test_given_revision_is_used(self, mock_git: MagicMock) -> None:
        assert resolve_revision("abc123") == "abc123"
        mock_git.assert_not_called()

    @patch("lazy_deploy.pipeline.git")
    def test_defaults_to_head(self, mock_git: MagicMock) -> None:
        mock_git.return_value = "def456"
        assert resolve_revision(None) == "def456"
        mock_git.assert_called_once_with("rev-parse", "HEAD")


class TestPlanSelection:
    """Tests for plan_selection()."""

    def test_prints_reason_per_unit(
        self, registry: UnitRegistry, capsys: pytest.CaptureFixture
    ) -> None:
        selection = plan_selection(
            registry,
            kind=TriggerKind.PUSH,
            workflow_path=".github/workflows/deploy.yml",
            changed_paths=["services/user-service/index.js"],
        )

        assert selection.selected == {"user-service"}
        out = capsys.readouterr().out
        assert "Mode: auto-diff" in out
        assert "user-service: path-changed" in out
        assert "order-service: unchanged" in out


class TestRunDeploy:
    """Tests for run_deploy()."""

    @pytest.fixture
    def settings(self) -> DeploySettings:
        return DeploySettings(max_concurrency=2, health_interval=0.01, health_timeout=0.05)

    @pytest.fixture(autouse=True)
    def no_step_summary(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("GITHUB_STEP_SUMMARY", raising=False)

    def test_deploys_changed_unit_only(
        self, settings: DeploySettings, registry: UnitRegistry, fakes: FakeBackends
    ) -> None:
        """Only the changed service is deployed."""
        summary = run_deploy(
            settings,
            registry,
            revision="abc123",
            kind=TriggerKind.PUSH,
            changed_paths=["services/user-service/index.js"],
            collaborators=fakes.collaborators,
        )

        assert summary.overall_status is OverallStatus.ALL_SUCCEEDED
        assert summary.outcomes["user-service"] == "deployed"
        for name in SERVICES:
            if name != "user-service":
                assert summary.outcomes[name] == NO_CHANGE
                assert fakes.calls_for(name) == []

    def test_workflow_change_deploys_everything(
        self, settings: DeploySettings, registry: UnitRegistry, fakes: FakeBackends
    ) -> None:
        """Editing the workflow file deploys every unit."""
        summary = run_deploy(
            settings,
            registry,
            revision="abc123",
            kind=TriggerKind.PUSH,
            changed_paths=[settings.workflow],
            collaborators=fakes.collaborators,
        )

        assert set(summary.per_unit) == set(SERVICES)
        assert {r.value for r in summary.reasons.values()} == {"workflow-changed"}

    def test_partial_failure(
        self, settings: DeploySettings, registry: UnitRegistry, fakes: FakeBackends
    ) -> None:
        """A build failure does not stop the other unit."""
        fakes.fail("user-service", "build")

        summary = run_deploy(
            settings,
            registry,
            revision="abc123",
            kind=TriggerKind.PUSH,
            changed_paths=[
                "services/user-service/index.js",
                "services/product-service/index.js",
            ],
            collaborators=fakes.collaborators,
        )

        assert summary.overall_status is OverallStatus.PARTIAL_FAILURE
        assert summary.exit_code == 1
        assert summary.outcomes["user-service"] == "failed — Building: BuildError"
        assert summary.outcomes["product-service"] == "deployed"

    def test_nothing_changed(
        self,
        settings: DeploySettings,
        registry: UnitRegistry,
        fakes: FakeBackends,
        capsys: pytest.CaptureFixture,
    ) -> None:
        """An empty diff succeeds without deploying anything."""
        summary = run_deploy(
            settings,
            registry,
            revision="abc123",
            kind=TriggerKind.PUSH,
            changed_paths=[],
            collaborators=fakes.collaborators,
        )

        assert summary.overall_status is OverallStatus.ALL_SKIPPED
        assert summary.exit_code == 0
        assert fakes.calls == []
        assert "Nothing to deploy" in capsys.readouterr().out

    def test_unknown_manual_unit_deploys_nothing(
        self, settings: DeploySettings, registry: UnitRegistry, fakes: FakeBackends
    ) -> None:
        """A typo aborts before any unit starts."""
        with pytest.raises(UnknownUnit):
            run_deploy(
                settings,
                registry,
                revision="abc123",
                kind=TriggerKind.MANUAL,
                services="user-service,usr-service",
                collaborators=fakes.collaborators,
            )
        assert fakes.calls == []

    def test_reports_transitions(
        self,
        settings: DeploySettings,
        registry: UnitRegistry,
        fakes: FakeBackends,
        capsys: pytest.CaptureFixture,
    ) -> None:
        run_deploy(
            settings,
            registry,
            revision="abc123",
            kind=TriggerKind.MANUAL,
            services="order-service",
            collaborators=fakes.collaborators,
        )

        out = capsys.readouterr().out
        assert "[order-service] pending → building" in out
        assert "[order-service] building → publishing (registry.test/order-service:abc123)" in out
        assert "[order-service] verifying → succeeded" in out

    def test_writes_step_summary(
        self,
        settings: DeploySettings,
        registry: UnitRegistry,
        fakes: FakeBackends,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        target = tmp_path / "summary.md"
        monkeypatch.setenv("GITHUB_STEP_SUMMARY", str(target))

        run_deploy(
            settings,
            registry,
            revision="abc123",
            kind=TriggerKind.MANUAL,
            services="all",
            collaborators=fakes.collaborators,
        )

        text = target.read_text()
        assert "**Status:** AllSucceeded" in text
        assert "| api-gateway | deployed | all |" in text


class TestWriteStepSummary:
    """Tests for write_step_summary()."""

    def test_noop_without_target(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("GITHUB_STEP_SUMMARY", raising=False)
        write_step_summary(summarize({}, "abc123"))

    def test_appends(self, tmp_path: Path) -> None:
        target = tmp_path / "summary.md"
        target.write_text("# Earlier step\n")

        write_step_summary(summarize({}, "abc123"), path=str(target))

        text = target.read_text()
        assert text.startswith("# Earlier step\n")
        assert "**Status:** AllSkipped" in text
