"""
Tests for Transactional Migration Executor Module

These tests validate dry-run previews, single-transaction execution,
rollback on the first failing step and the per-step log.
"""

import pytest
from unittest.mock import MagicMock, Mock, call
import psycopg2
from ee_ce_migration.exceptions import ConnectivityError
from ee_ce_migration.executor import MigrationExecutor, execute_migration, summarize_steps
from ee_ce_migration.models import MigrationStep


@pytest.fixture
def steps():
    return [
        MigrationStep(1, 'Disable crons', 'UPDATE ir_cron SET active = false;'),
        MigrationStep(2, 'Drop table a', 'DROP TABLE IF EXISTS "public"."a" CASCADE;'),
        MigrationStep(3, 'Refresh planner statistics', 'ANALYZE;'),
    ]


@pytest.fixture
def cursor():
    cursor = MagicMock()
    cursor.rowcount = 4
    return cursor


@pytest.fixture
def staging(cursor):
    conn = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor
    helper = Mock()
    helper.get_conn.return_value = conn
    return helper


class TestDryRun:
    """Test plan previews."""

    def test_no_statement_sent(self, steps, staging, cursor):
        state_store = Mock()

        result = execute_migration(7, staging, steps, dry_run=True, state_store=state_store)

        assert result.success is True
        assert result.dry_run is True
        staging.get_conn.assert_not_called()
        cursor.execute.assert_not_called()
        state_store.log_step.assert_not_called()

    def test_zero_metrics(self, steps):
        result = execute_migration(7, None, steps, dry_run=True)

        assert [s.step_number for s in result.steps] == [1, 2, 3]
        assert all(s.rows_affected == 0 and s.execution_time_ms == 0 for s in result.steps)
        assert all(s.status == 'pending' for s in result.steps)


class TestLiveRun:
    """Test execution inside one transaction."""

    def test_all_steps_committed(self, steps, staging, cursor):
        state_store = Mock()

        result = execute_migration(7, staging, steps, state_store=state_store)

        conn = staging.get_conn.return_value
        assert result.success is True
        assert conn.autocommit is False
        assert cursor.execute.call_args_list == [call(s.sql) for s in steps]
        conn.commit.assert_called_once()
        conn.rollback.assert_not_called()
        staging.release_conn.assert_called_once_with(conn, discard=False)
        assert [s.status for s in result.steps] == ['completed'] * 3
        assert all(s.rows_affected == 4 for s in result.steps)

    def test_step_log_running_then_completed(self, steps, staging):
        state_store = Mock()

        execute_migration(7, staging, steps[:1], state_store=state_store)

        statuses = [c.args[3] for c in state_store.log_step.call_args_list]
        assert statuses == ['running', 'completed']

    def test_negative_rowcount_reported_as_zero(self, steps, staging, cursor):
        cursor.rowcount = -1

        result = execute_migration(7, staging, steps[2:])

        assert result.steps[0].rows_affected == 0

    def test_failing_step_rolls_back_and_skips_the_rest(self, steps, staging, cursor):
        cursor.execute.side_effect = [None, psycopg2.Error('table "a" is locked'), None]
        state_store = Mock()

        result = execute_migration(7, staging, steps, state_store=state_store)

        conn = staging.get_conn.return_value
        assert result.success is False
        assert cursor.execute.call_count == 2
        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()
        assert [s.status for s in result.steps] == ['completed', 'failed', 'skipped']
        assert 'is locked' in result.steps[1].error_message
        assert 'Step 2 (Drop table a) failed' in result.errors[0]

        logged = [(c.args[1], c.args[3]) for c in state_store.log_step.call_args_list]
        assert (2, 'failed') in logged
        assert (3, 'skipped') in logged
        assert (3, 'running') not in logged

    def test_commit_failure_reported(self, steps, staging):
        conn = staging.get_conn.return_value
        conn.commit.side_effect = psycopg2.Error('could not serialize access')

        result = execute_migration(7, staging, steps)

        assert result.success is False
        conn.rollback.assert_called_once()
        assert 'Commit failed' in result.errors[0]
        staging.release_conn.assert_called_once_with(conn, discard=True)

    def test_unexpected_error_rolls_back_and_propagates(self, steps, staging, cursor):
        cursor.execute.side_effect = RuntimeError('boom')

        with pytest.raises(RuntimeError):
            execute_migration(7, staging, steps)

        conn = staging.get_conn.return_value
        conn.rollback.assert_called_once()
        staging.release_conn.assert_called_once_with(conn, discard=True)

    def test_connectivity_error_propagates(self, steps, staging):
        staging.get_conn.side_effect = ConnectivityError('timed out', 'odoo_staging')

        with pytest.raises(ConnectivityError):
            execute_migration(7, staging, steps)

    def test_live_run_requires_staging(self, steps):
        with pytest.raises(ValueError):
            MigrationExecutor().execute(7, steps)


def test_summarize_steps(steps):
    assert summarize_steps(steps) == {'completed': 0, 'failed': 0, 'skipped': 0, 'pending': 3}
