"""
Tests for Table Comparator Module

These tests validate table classification, the handling of null-only
columns, field-level identity and per-table error isolation.
"""

import pytest
from ee_ce_migration.models import (
    COMPATIBLE_DIFF,
    IDENTICAL_RECORDS,
    INCOMPATIBLE_DIFF,
    MISSING_IN_TARGET,
    TableClassification,
)
from ee_ce_migration.table_comparator import TableComparator, compare_schemas
from tests.plugins.fakes import FakeInspector, make_table


def _orders(with_promo: bool):
    columns = ['id', 'amount', 'promo_code'] if with_promo else ['id', 'amount']
    rows = []
    for i in range(500):
        row = {'id': i, 'amount': i * 10}
        if with_promo:
            row['promo_code'] = f'PROMO{i}' if i < 150 else None
        rows.append(row)
    return make_table(columns, rows)


def _products(offset: int = 0):
    return make_table(
        ['id', 'name', 'legacy'],
        [{'id': i, 'name': f'product {i + offset}', 'legacy': None} for i in range(200)],
    )


@pytest.fixture
def source():
    return FakeInspector({
        'orders': _orders(with_promo=True),
        'tags': make_table(['id', 'name'], [{'id': i, 'name': f'tag{i}'} for i in range(50)]),
        'products': _products(),
        'empty_table': make_table(['id'], []),
    })


@pytest.fixture
def target():
    return FakeInspector({
        'orders': _orders(with_promo=False),
        'products': make_table(['id', 'name'], [{'id': i, 'name': f'product {i}'} for i in range(200)]),
        'empty_table': make_table(['id'], []),
    })


class TestClassification:
    """Test the four table categories."""

    def test_missing_column_with_data_is_incompatible(self, source, target):
        result = TableComparator(source, target, batch_size=64).classify_table('orders')

        assert result.category == INCOMPATIBLE_DIFF
        assert result.missing_columns == ['promo_code']
        assert result.source_record_count == 500
        assert result.target_record_count == 500

    def test_table_absent_from_target_is_missing(self, source, target):
        result = TableComparator(source, target).classify_table('tags')

        assert result.category == MISSING_IN_TARGET
        assert result.source_record_count == 50
        assert result.target_record_count is None

    def test_identical_table(self, source, target):
        result = TableComparator(source, target, batch_size=64).classify_table('products')

        assert result.category == IDENTICAL_RECORDS
        assert result.null_only_columns == ['legacy']

    def test_null_only_missing_column_does_not_make_table_incompatible(self, target):
        source = FakeInspector({'products': _products()})

        result = TableComparator(source, target).classify_table('products')

        assert result.category != INCOMPATIBLE_DIFF
        assert result.missing_columns == []

    def test_equal_counts_with_different_values_is_compatible_diff(self, target):
        source = FakeInspector({'products': _products(offset=1)})

        result = TableComparator(source, target, batch_size=50).classify_table('products')

        assert result.category == COMPATIBLE_DIFF

    def test_different_counts_is_compatible_diff(self, target):
        source = FakeInspector({
            'products': make_table(['id', 'name'], [{'id': i, 'name': f'product {i}'} for i in range(210)]),
        })

        result = TableComparator(source, target).classify_table('products')

        assert result.category == COMPATIBLE_DIFF
        assert result.source_record_count == 210
        assert result.target_record_count == 200

    def test_empty_table_is_not_classified(self, source, target):
        assert TableComparator(source, target).classify_table('empty_table') is None


class TestComparePass:
    """Test a full comparison pass."""

    def test_every_populated_table_gets_one_category(self, source, target):
        result = compare_schemas(source, target, batch_size=100)

        names = [t.table_name for t in result.tables]
        assert sorted(names) == ['orders', 'products', 'tags']
        assert result.summary == {
            MISSING_IN_TARGET: 1,
            IDENTICAL_RECORDS: 1,
            COMPATIBLE_DIFF: 0,
            INCOMPATIBLE_DIFF: 1,
            'total_tables': 3,
            'errors': 0,
        }

    def test_table_failure_is_isolated(self, target):
        source = FakeInspector(
            {'products': _products(), 'secret': make_table(['id'], [{'id': 1}])},
            broken=['secret'],
        )

        result = compare_schemas(source, target)

        assert [t.table_name for t in result.tables] == ['products']
        assert result.errors[0]['table_name'] == 'secret'
        assert 'permission denied' in result.errors[0]['error']
        assert result.summary['total_tables'] == 1

    def test_restrict_to_tables(self, source, target):
        result = compare_schemas(source, target, tables=['tags'])

        assert [t.table_name for t in result.tables] == ['tags']

    def test_result_round_trips_through_dict(self, source, target):
        result = compare_schemas(source, target)

        restored = type(result).from_dict(result.to_dict())

        assert restored.tables == result.tables


class TestRowsMatch:
    """Test field-level row comparison."""

    def test_row_order_does_not_matter(self):
        rows = [{'id': i, 'name': f'n{i}'} for i in range(10)]
        source = FakeInspector({'t': make_table(['id', 'name'], rows)})
        target = FakeInspector({'t': make_table(['id', 'name'], list(reversed(rows)))})

        assert TableComparator(source, target, batch_size=3).rows_match('t', ['id', 'name'])

    def test_extra_target_rows_do_not_match(self):
        source = FakeInspector({'t': make_table(['id'], [{'id': 1}])})
        target = FakeInspector({'t': make_table(['id'], [{'id': 1}, {'id': 2}])})

        assert not TableComparator(source, target, batch_size=1).rows_match('t', ['id'])


class TestTableClassificationModel:
    """Test the classification invariants."""

    def test_incompatible_requires_missing_columns(self):
        with pytest.raises(ValueError):
            TableClassification('t', INCOMPATIBLE_DIFF, 10)

    def test_missing_columns_only_on_incompatible(self):
        with pytest.raises(ValueError):
            TableClassification('t', COMPATIBLE_DIFF, 10, missing_columns=['x'])

    def test_unknown_category_rejected(self):
        with pytest.raises(ValueError):
            TableClassification('t', 'something_else', 10)
