"""Unit tests for project upgrades."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from msde_cli.upgrade import (
    UpgradePipeline,
    Version,
    consecutive_upgrade,
    get_upgrade_path,
    upgrade_project,
)


def v(text: str) -> Version:
    return Version.parse(text)


class TestVersion:
    """Tests for Version parsing."""

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("0.14.0", Version(0, 14, 0)),
            ("v1.2.3", Version(1, 2, 3)),
            ("0.13.2-rc.1", Version(0, 13, 2)),
        ],
    )
    def test_parse(self, text, expected):
        assert Version.parse(text) == expected

    def test_parse_invalid(self):
        with pytest.raises(ValueError):
            Version.parse("latest")

    def test_ordering(self):
        assert v("0.13.9") < v("0.14.0") < v("1.0.0")


class TestUpgradePath:
    """Tests for get_upgrade_path."""

    def test_consecutive_minors(self):
        """Each step crosses at most one minor version."""
        assert get_upgrade_path(v("0.12.3"), v("0.14.1")) == [
            (v("0.12.3"), v("0.13.0")),
            (v("0.13.0"), v("0.14.0")),
            (v("0.14.0"), v("0.14.1")),
        ]

    def test_patch_only(self):
        assert get_upgrade_path(v("0.14.0"), v("0.14.2")) == [(v("0.14.0"), v("0.14.2"))]

    def test_nothing_to_do(self):
        assert get_upgrade_path(v("0.14.0"), v("0.14.0")) == []


class TestConsecutiveUpgrade:
    """Tests for the registered migrations."""

    def test_known_migration(self):
        pipeline = consecutive_upgrade(v("0.13.0"), v("0.14.0"))
        assert pipeline is not None and len(pipeline.steps) == 1

    def test_old_versions_have_no_migration(self):
        assert consecutive_upgrade(v("0.11.0"), v("0.12.0")) is None

    def test_patch_step_has_no_migration(self):
        assert consecutive_upgrade(v("0.14.0"), v("0.14.3")) is None

    def test_unknown_pair(self):
        """Unknown pairs are skipped, not fatal."""
        assert consecutive_upgrade(v("0.14.0"), v("0.15.0")) is None


class TestUpgradeProject:
    """Tests for upgrade_project."""

    def test_writes_new_version(self, context):
        """The new version is recorded in metadata.json."""
        context.metadata = {"version": "0.13.1"}

        assert upgrade_project(v("0.14.0"), v("0.13.1"), context) is True

        written = json.loads((context.project_dir / "metadata.json").read_text())
        assert written["version"] == "0.14.0"

    def test_manual_steps_are_printed(self, context, capsys):
        """Manual steps reach the user even in manual-only mode."""
        upgrade_project(v("0.14.0"), v("0.13.1"), context, manual_only=True)

        assert "Compose files moved" in capsys.readouterr().out
        assert not (context.project_dir / "metadata.json").exists()

    def test_downgrade_refused(self, context):
        assert upgrade_project(v("0.13.0"), v("0.14.0"), context) is False

    def test_up_to_date(self, context):
        assert upgrade_project(v("0.14.0"), v("0.14.0"), context) is False


class TestUpgradePipeline:
    """Tests for UpgradePipeline."""

    def test_runs_in_order(self):
        calls = []
        pipeline = UpgradePipeline()
        pipeline.push_auto(lambda ctx: calls.append("auto"))
        pipeline.push_manual("do it by hand")

        pipeline.run(MagicMock())

        assert calls == ["auto"]
        assert len(pipeline.steps) == 2

    def test_manual_only_skips_automatic(self):
        calls = []
        pipeline = UpgradePipeline()
        pipeline.push_auto(lambda ctx: calls.append("auto"))

        pipeline.run(MagicMock(), manual_only=True)

        assert calls == []
