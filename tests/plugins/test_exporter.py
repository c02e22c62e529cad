"""
Tests for Resumable Export Module

These tests validate module-level resume, batch progress reporting,
compression by size threshold, and checkpoint handling on failure.
"""

import gzip
import os
from datetime import datetime, timezone

import pytest
from unittest.mock import patch
from ee_ce_migration.catalog import ExportTable
from ee_ce_migration.exceptions import ExportIOError, SchemaProbeError
from ee_ce_migration.exporter import (
    GZIP_MAGIC,
    ModuleExporter,
    export_modules,
    read_export_artifact,
    serialize_export,
    write_export_artifact,
)
from tests.plugins.fakes import FakeCheckpointManager, FakeInspector, make_table


@pytest.fixture
def source():
    return FakeInspector({
        'helpdesk_ticket': make_table(
            ['id', 'name'], [{'id': i, 'name': f'ticket {i}'} for i in range(25)]
        ),
        'helpdesk_stage': make_table(
            ['id', 'sequence', 'name'],
            [{'id': 3, 'sequence': 1, 'name': 'new'}, {'id': 1, 'sequence': 2, 'name': 'done'}],
        ),
        'sign_request': make_table(['id'], [{'id': i} for i in range(7)]),
    })


@pytest.fixture
def module_map():
    return {
        'helpdesk': [
            ExportTable('helpdesk_stage', ('sequence', 'id')),
            ExportTable('helpdesk_ticket'),
        ],
        'sign': [ExportTable('sign_request'), ExportTable('sign_item')],
    }


class TestExportModules:
    """Test a full export run."""

    def test_exports_every_module(self, source, module_map, tmp_path):
        checkpoints = FakeCheckpointManager()

        summary = export_modules(1, source, checkpoints, module_map, output_dir=str(tmp_path), batch_size=10)

        assert summary['exported'] == ['helpdesk', 'sign']
        assert summary['skipped'] == []
        helpdesk = checkpoints.get_checkpoint(1, 'helpdesk')
        assert helpdesk.status == 'completed'
        assert helpdesk.records_exported == 27
        assert os.path.dirname(helpdesk.file_path) == os.path.join(str(tmp_path), 'job_1')

        document = read_export_artifact(helpdesk.file_path)
        assert document['module'] == 'helpdesk'
        assert document['total_records'] == 27
        assert [r['name'] for r in document['tables']['helpdesk_stage']] == ['new', 'done']
        assert len(document['tables']['helpdesk_ticket']) == 25

    def test_missing_table_counts_as_zero_records(self, source, module_map, tmp_path):
        checkpoints = FakeCheckpointManager()

        export_modules(1, source, checkpoints, module_map, output_dir=str(tmp_path))

        document = read_export_artifact(checkpoints.get_checkpoint(1, 'sign').file_path)
        assert document['tables']['sign_item'] == []
        assert document['total_records'] == 7

    def test_second_run_reads_nothing_for_completed_modules(self, source, module_map, tmp_path):
        checkpoints = FakeCheckpointManager()
        export_modules(1, source, checkpoints, module_map, output_dir=str(tmp_path))
        source.reads = 0

        summary = export_modules(1, source, checkpoints, module_map, output_dir=str(tmp_path))

        assert source.reads == 0
        assert summary['exported'] == []
        assert summary['skipped'] == ['helpdesk', 'sign']

    def test_failed_module_is_retried_from_scratch(self, source, module_map, tmp_path):
        checkpoints = FakeCheckpointManager()
        checkpoints.initialize(1, ['helpdesk', 'sign'])
        checkpoints.start(1, 'sign', 7)
        checkpoints.fail(1, 'sign', 'disk full')
        checkpoints.start(1, 'helpdesk', 27)
        checkpoints.complete(1, 'helpdesk', '/old/path.json', 10, 27)

        summary = export_modules(1, source, checkpoints, module_map, output_dir=str(tmp_path))

        assert summary['exported'] == ['sign']
        assert checkpoints.get_checkpoint(1, 'sign').status == 'completed'
        assert checkpoints.get_checkpoint(1, 'helpdesk').file_path == '/old/path.json'


class TestProgressAndFailure:
    """Test checkpoint updates during and after a module export."""

    def test_progress_after_every_batch(self, source, tmp_path):
        checkpoints = FakeCheckpointManager()
        exporter = ModuleExporter(source, checkpoints, export_dir=str(tmp_path), batch_size=10)

        exporter.export_modules(1, {'helpdesk': [ExportTable('helpdesk_ticket')]})

        assert checkpoints.progress_updates == [('helpdesk', 10), ('helpdesk', 20), ('helpdesk', 25)]

    def test_read_failure_marks_checkpoint_failed_and_reraises(self, tmp_path):
        source = FakeInspector(
            {'helpdesk_ticket': make_table(['id'], [{'id': 1}])}, broken=['helpdesk_ticket']
        )
        checkpoints = FakeCheckpointManager()

        with pytest.raises(SchemaProbeError):
            export_modules(1, source, checkpoints, {'helpdesk': [ExportTable('helpdesk_ticket')]},
                           output_dir=str(tmp_path))

        checkpoint = checkpoints.get_checkpoint(1, 'helpdesk')
        assert checkpoint.status == 'failed'
        assert 'permission denied' in checkpoint.error_message

    def test_write_failure_marks_checkpoint_failed(self, source, tmp_path):
        blocker = tmp_path / 'exports'
        blocker.write_text('not a directory')
        checkpoints = FakeCheckpointManager()

        with pytest.raises(ExportIOError):
            export_modules(1, source, checkpoints, {'sign': [ExportTable('sign_request')]},
                           output_dir=str(blocker))

        checkpoint = checkpoints.get_checkpoint(1, 'sign')
        assert checkpoint.status == 'failed'
        assert checkpoint.records_exported == 7


class TestArtifacts:
    """Test artifact naming and compression."""

    def test_large_document_is_compressed(self, tmp_path):
        document = {'module': 'helpdesk', 'tables': {'t': [{'text': 'x' * 200}]}}

        path, size = write_export_artifact(document, str(tmp_path), 'helpdesk', compression_threshold=100)

        assert path.endswith('.json.gz')
        with open(path, 'rb') as f:
            assert f.read(2) == GZIP_MAGIC
        assert size == os.path.getsize(path)
        assert read_export_artifact(path) == document

    def test_small_document_is_plain_json(self, tmp_path):
        document = {'module': 'sign', 'tables': {}}

        path, _ = write_export_artifact(document, str(tmp_path), 'sign', compression_threshold=1024)

        assert path.endswith('.json')
        with open(path, 'rb') as f:
            assert f.read(2) != GZIP_MAGIC
        assert read_export_artifact(path) == document

    def test_gzip_detected_by_content_not_name(self, tmp_path):
        path = tmp_path / 'renamed.json'
        path.write_bytes(gzip.compress(b'{"module": "voip"}'))

        assert read_export_artifact(str(path)) == {'module': 'voip'}

    def test_file_name_carries_module_and_timestamp(self, tmp_path):
        stamp = datetime(2025, 3, 4, 5, 6, 7, 890000, tzinfo=timezone.utc)

        path, _ = write_export_artifact({}, str(tmp_path), 'planning', 1024, timestamp=stamp)

        assert os.path.basename(path) == 'planning_2025-03-04T05-06-07-890000Z.json'
        assert not os.path.exists(path + '.tmp')

    def test_values_serialized_to_json(self, tmp_path):
        stamp = datetime(2025, 1, 1, tzinfo=timezone.utc)
        document = {'rows': [{'when': stamp, 'blob': b'\x00\x01'}]}

        path, _ = write_export_artifact(document, str(tmp_path), 'iot', 1024)

        row = read_export_artifact(path)['rows'][0]
        assert row['when'] == '2025-01-01T00:00:00+00:00'
        assert row['blob'] == 'AAE='

    def test_document_exactly_at_threshold_is_plain_json(self, tmp_path):
        document = {'module': 'sign', 'tables': {'t': [{'text': 'x' * 50}]}}
        threshold = len(serialize_export(document))

        path, size = write_export_artifact(document, str(tmp_path), 'sign', compression_threshold=threshold)

        assert path.endswith('.json')
        assert size == threshold
        with open(path, 'rb') as f:
            assert f.read(2) != GZIP_MAGIC

    def test_one_byte_over_threshold_is_compressed(self, tmp_path):
        document = {'module': 'sign', 'tables': {'t': [{'text': 'x' * 50}]}}
        threshold = len(serialize_export(document)) - 1

        path, _ = write_export_artifact(document, str(tmp_path), 'sign', compression_threshold=threshold)

        assert path.endswith('.json.gz')

    def test_failed_rename_leaves_no_partial_file(self, tmp_path):
        with patch('ee_ce_migration.exporter.os.replace', side_effect=OSError('disk full')):
            with pytest.raises(ExportIOError, match='disk full'):
                write_export_artifact({'module': 'sign'}, str(tmp_path), 'sign', 1024)

        assert os.listdir(tmp_path) == []


class TestExportTimestamp:
    """The artifact name and the document share one export time."""

    def test_file_name_matches_exported_at(self, source, tmp_path):
        checkpoints = FakeCheckpointManager()

        export_modules(1, source, checkpoints, {'sign': [ExportTable('sign_request')]},
                       output_dir=str(tmp_path))

        path = checkpoints.get_checkpoint(1, 'sign').file_path
        exported_at = datetime.fromisoformat(read_export_artifact(path)['exported_at'])
        expected = f"sign_{exported_at.strftime('%Y-%m-%dT%H-%M-%S-%fZ')}.json"
        assert os.path.basename(path) == expected
