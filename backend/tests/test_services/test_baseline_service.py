"""Tests for baseline resolution."""

import uuid
from datetime import datetime
from types import SimpleNamespace

import pytest


def make_get(rows):
    """db.get side effect dispatching on model class name."""

    async def get(model, key):
        return rows.get(model.__name__)

    return get


class TestParseCutoff:
    def test_iso_date(self):
        from codegate.services.baseline_service import parse_cutoff

        assert parse_cutoff("2026-03-01") == datetime(2026, 3, 1)

    def test_aware_timestamp_becomes_naive_utc(self):
        from codegate.services.baseline_service import parse_cutoff

        assert parse_cutoff("2026-03-01T12:00:00+02:00") == datetime(2026, 3, 1, 10, 0)

    @pytest.mark.parametrize("value", [None, "", "not-a-date"])
    def test_invalid(self, value):
        from codegate.services.baseline_service import parse_cutoff

        assert parse_cutoff(value) is None


class TestBaselineResolver:
    """Explicit baseline first, then leak period fallbacks."""

    @pytest.mark.asyncio
    async def test_unknown_analysis_has_no_fingerprints(self, mock_db):
        from codegate.services.baseline_service import BaselineResolver

        baseline = await BaselineResolver(mock_db).resolve_for_id(uuid.uuid4())

        assert baseline.fingerprints is None
        assert baseline.baseline_analysis_id is None

    @pytest.mark.asyncio
    async def test_explicit_baseline_wins(self, mock_db, db_results, analysis):
        """The leak period is never consulted when a baseline id is set."""
        from codegate.services.baseline_service import BaselineResolver

        analysis.baseline_analysis_id = uuid.uuid4()
        mock_db.execute.return_value = db_results.scalars(["fp-1", "fp-2"])

        baseline = await BaselineResolver(mock_db).resolve(analysis)

        assert baseline.fingerprints == {"fp-1", "fp-2"}
        assert baseline.baseline_analysis_id == analysis.baseline_analysis_id
        mock_db.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_last_analysis_on_same_branch(self, mock_db, db_results, analysis):
        from codegate.services.baseline_service import BaselineResolver

        previous = SimpleNamespace(id=uuid.uuid4())
        mock_db.get.side_effect = make_get(
            {"Project": SimpleNamespace(leak_period_type="LAST_ANALYSIS", leak_period_value=None)}
        )
        mock_db.execute.side_effect = [
            db_results.scalar(previous),
            db_results.scalars(["fp-old"]),
        ]

        baseline = await BaselineResolver(mock_db).resolve(analysis)

        assert baseline.baseline_analysis_id == previous.id
        assert baseline.fingerprints == {"fp-old"}

    @pytest.mark.asyncio
    async def test_first_analysis_everything_new(self, mock_db, db_results, analysis):
        """No prior success yields an empty set."""
        from codegate.services.baseline_service import BaselineResolver

        mock_db.get.side_effect = make_get({"Project": None})
        mock_db.execute.return_value = db_results.scalar(None)

        baseline = await BaselineResolver(mock_db).resolve(analysis)

        assert baseline.fingerprints == set()
        assert baseline.baseline_analysis_id is None

    @pytest.mark.asyncio
    async def test_pull_request_uses_target_branch(self, mock_db, db_results, analysis):
        from codegate.services.baseline_service import BaselineResolver

        analysis.branch_id = None
        analysis.pull_request_id = uuid.uuid4()
        target_branch_id = uuid.uuid4()
        previous = SimpleNamespace(id=uuid.uuid4())
        mock_db.get.side_effect = make_get(
            {
                "Project": SimpleNamespace(leak_period_type="LAST_ANALYSIS", leak_period_value=None),
                "PullRequest": SimpleNamespace(target_branch="main"),
            }
        )
        mock_db.execute.side_effect = [
            db_results.scalar(target_branch_id),
            db_results.scalar(previous),
            db_results.scalars(["fp-main"]),
        ]

        baseline = await BaselineResolver(mock_db).resolve(analysis)

        assert baseline.baseline_analysis_id == previous.id
        assert baseline.fingerprints == {"fp-main"}

    @pytest.mark.asyncio
    async def test_pull_request_without_target_branch_row(self, mock_db, db_results, analysis):
        from codegate.services.baseline_service import BaselineResolver

        analysis.branch_id = None
        analysis.pull_request_id = uuid.uuid4()
        mock_db.get.side_effect = make_get(
            {
                "Project": None,
                "PullRequest": SimpleNamespace(target_branch="main"),
            }
        )
        mock_db.execute.return_value = db_results.scalar(None)

        baseline = await BaselineResolver(mock_db).resolve(analysis)

        assert baseline.fingerprints == set()
        mock_db.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_date_leak_period(self, mock_db, db_results, analysis):
        from codegate.services.baseline_service import BaselineResolver

        previous = SimpleNamespace(id=uuid.uuid4())
        mock_db.get.side_effect = make_get(
            {"Project": SimpleNamespace(leak_period_type="DATE", leak_period_value="2026-01-15")}
        )
        mock_db.execute.side_effect = [
            db_results.scalar(previous),
            db_results.scalars(["fp-jan"]),
        ]

        baseline = await BaselineResolver(mock_db).resolve(analysis)

        assert baseline.baseline_analysis_id == previous.id
        stmt = mock_db.execute.call_args_list[0].args[0]
        assert "created_at <=" in str(stmt)

    @pytest.mark.asyncio
    async def test_invalid_date_means_no_baseline(self, mock_db, analysis):
        from codegate.services.baseline_service import BaselineResolver

        mock_db.get.side_effect = make_get(
            {"Project": SimpleNamespace(leak_period_type="DATE", leak_period_value="soon")}
        )

        baseline = await BaselineResolver(mock_db).resolve(analysis)

        assert baseline.fingerprints == set()
        mock_db.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_base_branch_leak_period(self, mock_db, db_results, analysis):
        from codegate.services.baseline_service import BaselineResolver

        previous = SimpleNamespace(id=uuid.uuid4())
        mock_db.get.side_effect = make_get(
            {"Project": SimpleNamespace(leak_period_type="BASE_BRANCH", leak_period_value="develop")}
        )
        mock_db.execute.side_effect = [
            db_results.scalar(uuid.uuid4()),
            db_results.scalar(previous),
            db_results.scalars(["fp-dev"]),
        ]

        baseline = await BaselineResolver(mock_db).resolve(analysis)

        assert baseline.baseline_analysis_id == previous.id
        assert baseline.fingerprints == {"fp-dev"}

    @pytest.mark.asyncio
    async def test_missing_base_branch(self, mock_db, db_results, analysis):
        from codegate.services.baseline_service import BaselineResolver

        mock_db.get.side_effect = make_get(
            {"Project": SimpleNamespace(leak_period_type="BASE_BRANCH", leak_period_value="gone")}
        )
        mock_db.execute.return_value = db_results.scalar(None)

        baseline = await BaselineResolver(mock_db).resolve(analysis)

        assert baseline.fingerprints == set()
        assert baseline.baseline_analysis_id is None
