import pandas as pd
import pytest

from mice_residuals.db import DatabaseManager, MidsStore
from mice_residuals.imputation import Mids, add_residuals_to_mice


@pytest.fixture
def store(tmp_path):
    return MidsStore(DatabaseManager(str(tmp_path / "duckdb" / "residuals.duckdb")))


@pytest.fixture
def result(imp_data, models):
    return add_residuals_to_mice(imp_data, models, seed=321, max_iter=12)


def test_save_writes_long_format_tables(store, result):
    written = store.save(result, "study")

    assert "study_data" in written
    assert "study_metadata" in written
    assert "study_imp_residuals_baseline" in written
    assert "study_imp_bmi" in written
    assert "study_imp_age" not in written
    assert store.exists("study")
    assert store.list_stored() == ["study"]
    assert set(written) <= set(store.db_manager.list_tables())


def test_round_trip(store, result):
    store.save(result, "study")
    restored = store.load("study")

    assert isinstance(restored, Mids)
    assert restored.m == result.m
    assert restored.seed == 321
    assert restored.iteration == 12
    assert restored.variables == result.variables
    assert restored.method == result.method
    assert restored.nmis.to_dict() == result.nmis.to_dict()
    for k in range(1, result.m + 1):
        pd.testing.assert_frame_equal(restored.complete(k), result.complete(k), check_dtype=False)


def test_get_completed_dataset(store, result):
    store.save(result, "study")
    for k in range(1, result.m + 1):
        pd.testing.assert_frame_equal(
            store.get_completed_dataset("study", k),
            result.complete(k),
            check_dtype=False
        )
    with pytest.raises(ValueError, match="between 1 and 3"):
        store.get_completed_dataset("study", 4)


def test_seedless_mids_round_trip(store, packed):
    packed.seed = None
    store.save(packed, "packed")
    assert store.load("packed").seed is None


def test_save_if_exists(store, packed):
    store.save(packed, "packed")
    with pytest.raises(ValueError, match="already exist"):
        store.save(packed, "packed", if_exists="fail")
    store.save(packed, "packed", if_exists="replace")
    assert store.list_stored() == ["packed"]
    with pytest.raises(ValueError, match="if_exists"):
        store.save(packed, "packed", if_exists="append")


def test_delete(store, packed):
    store.save(packed, "packed")
    store.delete("packed")
    assert not store.exists("packed")
    assert store.db_manager.list_tables() == []


def test_unknown_prefix(store):
    with pytest.raises(ValueError, match="No stored mids"):
        store.load("missing")


def test_save_requires_mids(store):
    with pytest.raises(TypeError, match="must be a mids object"):
        store.save(pd.DataFrame({'a': [1]}), "bad")


def test_database_manager(tmp_path):
    manager = DatabaseManager(str(tmp_path / "new.duckdb"))
    assert not manager.database_exists()
    assert manager.list_tables() == []
    assert manager.test_connection()
    assert manager.database_exists()
    with pytest.raises(FileNotFoundError):
        with DatabaseManager(str(tmp_path / "absent.duckdb")).get_connection(read_only=True):
            pass


def test_variables_named_like_store_tables(store, completed_list):
    datasets = [
        df.rename(columns={'x': 'data', 'y': 'metadata'}) for df in completed_list
    ]
    mids = Mids.from_completed(datasets, seed=5)

    written = store.save(mids, "s")
    assert {"s_data", "s_metadata", "s_imp_data", "s_imp_metadata"} <= set(written)
    assert store.list_stored() == ["s"]

    restored = store.load("s")
    assert restored.variables == ['data', 'metadata', 'g']
    for k in range(1, mids.m + 1):
        pd.testing.assert_frame_equal(restored.complete(k), mids.complete(k), check_dtype=False)
        pd.testing.assert_frame_equal(
            store.get_completed_dataset("s", k), mids.complete(k), check_dtype=False
        )

    store.delete("s")
    assert store.db_manager.list_tables() == []


def test_failed_replace_keeps_previous_copy(store, packed, completed_list, monkeypatch):
    store.save(packed, "packed")
    tables_before = store.db_manager.list_tables()
    replacement = Mids.from_completed(completed_list[:2], seed=1)

    write_table = store._write_table

    def fail_on_metadata(conn, df, table_name):
        if table_name == "packed_metadata":
            raise RuntimeError("disk full")
        write_table(conn, df, table_name)

    monkeypatch.setattr(store, "_write_table", fail_on_metadata)
    with pytest.raises(RuntimeError, match="disk full"):
        store.save(replacement, "packed")

    assert store.db_manager.list_tables() == tables_before
    restored = store.load("packed")
    assert restored.m == 3
    assert restored.seed == 42
    for k in range(1, packed.m + 1):
        pd.testing.assert_frame_equal(restored.complete(k), packed.complete(k), check_dtype=False)


def test_save_rejects_storage_column_names(store, completed_list):
    datasets = [df.rename(columns={'g': 'row_id'}) for df in completed_list]
    with pytest.raises(ValueError, match="row_id clash with storage columns"):
        store.save(Mids.from_completed(datasets), "bad")
