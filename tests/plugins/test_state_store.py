"""
Tests for Migration State Store Module

These tests validate the job lifecycle, commit/rollback handling of
configuration-store writes, and step and validation logging.
"""

import pytest
from unittest.mock import MagicMock, Mock
from ee_ce_migration.exceptions import InvalidJobTransitionError
from ee_ce_migration.models import ValidationCheck
from ee_ce_migration.state_store import MigrationStateStore, is_allowed_transition


@pytest.fixture
def cursor():
    return MagicMock()


@pytest.fixture
def conn(cursor):
    conn = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor
    return conn


@pytest.fixture
def store(conn):
    helper = Mock()
    helper.get_conn.return_value = conn
    return MigrationStateStore(helper)


class TestJobLifecycle:
    """Test allowed job status transitions."""

    @pytest.mark.parametrize('current,requested', [
        ('pending', 'analyzing'),
        ('analyzing', 'exporting'),
        ('exporting', 'migrating'),
        ('migrating', 'validating'),
        ('validating', 'completed'),
        ('migrating', 'completed'),
        ('analyzing', 'analyzing'),
        ('exporting', 'failed'),
        ('pending', 'cancelled'),
        ('failed', 'pending'),
    ])
    def test_allowed(self, current, requested):
        assert is_allowed_transition(current, requested)

    @pytest.mark.parametrize('current,requested', [
        ('exporting', 'analyzing'),
        ('completed', 'pending'),
        ('cancelled', 'analyzing'),
        ('failed', 'migrating'),
        ('pending', 'unknown'),
    ])
    def test_rejected(self, current, requested):
        assert not is_allowed_transition(current, requested)


class TestJobs:
    """Test job persistence."""

    def test_create_job_commits_and_returns_id(self, store, conn, cursor):
        cursor.fetchone.return_value = (42,)

        job_id = store.create_job(dry_run=True, config={'source_conn_id': 'odoo_source'})

        assert job_id == 42
        params = cursor.execute.call_args[0][1]
        assert params[0] is True
        assert '"source_conn_id": "odoo_source"' in params[1]
        conn.commit.assert_called_once()
        store.helper.release_conn.assert_called_once_with(conn)

    def test_update_job_status(self, store, conn, cursor):
        cursor.fetchone.return_value = ('analyzing',)

        store.update_job_status(42, 'exporting')

        update_params = cursor.execute.call_args[0][1]
        assert update_params == ('exporting', None, False, 42)
        conn.commit.assert_called_once()

    def test_terminal_status_sets_completed_flag(self, store, cursor):
        cursor.fetchone.return_value = ('validating',)

        store.update_job_status(42, 'completed')

        assert cursor.execute.call_args[0][1][2] is True

    def test_invalid_transition_rolls_back(self, store, conn, cursor):
        cursor.fetchone.return_value = ('completed',)

        with pytest.raises(InvalidJobTransitionError):
            store.update_job_status(42, 'analyzing')

        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()
        store.helper.release_conn.assert_called_once_with(conn)

    def test_unknown_job(self, store, cursor):
        cursor.fetchone.return_value = None

        with pytest.raises(ValueError, match='not found'):
            store.update_job_status(99, 'analyzing')

    def test_get_job_missing(self, store, cursor):
        cursor.fetchone.return_value = None

        assert store.get_job(99) is None


class TestAnalysisResults:
    """Test analysis snapshots."""

    def test_comparison_counts_stored(self, store, cursor):
        cursor.fetchone.return_value = (5,)
        comparison = {
            'summary': {
                'total_tables': 4, 'missing_in_target': 1, 'identical_records': 1,
                'compatible_diff': 1, 'incompatible_diff': 1, 'errors': 0,
            },
            'tables': [],
        }

        analysis_id = store.save_analysis_results(
            42, superset_analysis={'risk_level': 'high'}, comparison=comparison
        )

        assert analysis_id == 5
        params = cursor.execute.call_args[0][1]
        assert params[6] == 'high'
        assert params[8:13] == (4, 1, 1, 1, 1)
        assert params[-1] is True

    def test_latest_snapshot_loaded(self, store, cursor):
        cursor.fetchone.return_value = (
            [{'name': 'helpdesk'}], [], [], {'helpdesk_ticket': 3}, None, 'low', [],
            {'summary': {}}, None, None,
        )

        loaded = store.get_analysis_results(42)

        assert loaded['superset_analysis']['modules_found'] == [{'name': 'helpdesk'}]
        assert loaded['superset_analysis']['estimated_export_size_mb'] == 0.0
        assert loaded['comparison'] == {'summary': {}}


class TestStepLog:
    """Test step logging."""

    def test_log_step_upserts(self, store, cursor):
        store.log_step(42, 3, 'Drop table a', 'failed', sql_executed='DROP TABLE a;', error_message='locked')

        query, params = cursor.execute.call_args[0]
        assert 'ON CONFLICT (job_id, step_number)' in query
        assert params[:4] == (42, 3, 'Drop table a', 'failed')
        assert params[7] == 'locked'

    def test_unknown_step_status_rejected(self, store, cursor):
        with pytest.raises(ValueError):
            store.log_step(42, 1, 'x', 'exploded')
        cursor.execute.assert_not_called()


class TestValidationResults:
    """Test validation result persistence."""

    def test_results_replaced_per_job(self, store, conn, cursor):
        checks = [
            ValidationCheck('EE Modules Check', 'module_registry', 'pass', 'ok', 0),
            ValidationCheck('EE Tables Check', 'database_schema', 'fail', 'left', 2),
        ]

        store.save_validation_results(42, checks)

        queries = [c[0][0] for c in cursor.execute.call_args_list]
        assert queries[0].startswith('DELETE FROM validation_results')
        assert len(queries) == 3
        assert cursor.execute.call_args_list[2][0][1] == (
            42, 'EE Tables Check', 'database_schema', 'fail', 'left', 2
        )
        conn.commit.assert_called_once()
