"""Tests for checkpoint serialization and the persistence port."""

import asyncio
import json

import numpy as np
import pytest

from q_fedrl.federated.persistence import InMemoryPersistence, JsonFilePersistence
from q_fedrl.federated.serialization import (
    FORMAT_VERSION,
    deserialize_model,
    serialize_model,
)


class TestSerialization:
    """JSON checkpoint envelope."""

    def test_envelope_fields(self):
        text = serialize_model({"0,0": np.array([1.0, 2.0]), "0,1": [0.0, 0.5]}, {"numClients": 4})
        data = json.loads(text)
        assert data["version"] == FORMAT_VERSION
        assert "timestamp" in data
        assert data["metadata"]["totalStates"] == 2
        assert data["metadata"]["actionSpace"] == 2
        assert data["metadata"]["numClients"] == 4
        assert data["model"]["0,0"] == [1.0, 2.0]

    def test_deserialize_restores_arrays(self):
        checkpoint = deserialize_model(serialize_model({"s": [1.5, -2.0]}))
        assert isinstance(checkpoint["model"]["s"], np.ndarray)
        np.testing.assert_allclose(checkpoint["model"]["s"], [1.5, -2.0])

    def test_missing_model_returns_none(self):
        assert deserialize_model(json.dumps({"version": "1.0"})) is None

    def test_missing_version_returns_none(self):
        assert deserialize_model(json.dumps({"model": {"s": [1.0]}})) is None

    @pytest.mark.parametrize("version", [None, ""])
    def test_empty_version_returns_none(self, version):
        payload = {"version": version, "model": {"s": [1.0]}}
        assert deserialize_model(json.dumps(payload)) is None

    def test_malformed_json_returns_none(self):
        assert deserialize_model("{not json") is None
        assert deserialize_model(None) is None

    def test_non_numeric_rows_return_none(self):
        payload = json.dumps({"version": "1.0", "model": {"s": ["x", "y"]}})
        assert deserialize_model(payload) is None

    def test_unserializable_metadata_returns_none(self):
        assert serialize_model({"s": [1.0]}, {"bad": object()}) is None


class TestInMemoryPersistence:
    """Dictionary-backed port."""

    def setup_method(self):
        self.store = InMemoryPersistence(app_name="demo")

    def test_load_without_save(self):
        assert self.store.load() is None
        assert not self.store.has_checkpoint()

    def test_save_then_load(self):
        assert self.store.save({"a": [1.0, 2.0]}, {"federationRound": 3})
        checkpoint = self.store.load()
        np.testing.assert_allclose(checkpoint["model"]["a"], [1.0, 2.0])
        assert checkpoint["metadata"]["federationRound"] == 3
        assert checkpoint["metadata"]["appName"] == "demo"
        assert "savedAt" in checkpoint["metadata"]
        assert "demo-latest" in self.store.store

    def test_export_then_import(self):
        assert self.store.export({"a": [0.0, 4.0]}, {"numClients": 2})
        assert self.store.exports[0][0].startswith("demo-")
        received = {}

        def on_load(model, metadata):
            received["model"] = model
            received["metadata"] = metadata

        ok = asyncio.run(self.store.import_model(on_load))
        assert ok
        np.testing.assert_allclose(received["model"]["a"], [0.0, 4.0])
        assert "exportedAt" in received["metadata"]

    def test_import_invalid_signals_error(self):
        errors = []
        self.store.stage_import('{"version": "1.0"}')
        ok = asyncio.run(self.store.import_model(lambda m, md: None, errors.append))
        assert not ok
        assert errors == ["Invalid model file"]

    def test_import_nothing_signals_error(self):
        errors = []
        ok = asyncio.run(self.store.import_model(lambda m, md: None, errors.append))
        assert not ok
        assert len(errors) == 1


class TestJsonFilePersistence:
    """File-backed port."""

    def test_save_load_roundtrip_on_disk(self, tmp_path):
        store = JsonFilePersistence(tmp_path, app_name="grid")
        assert store.save({"1,1": [0.5, 0.25]})
        assert (tmp_path / "grid-latest.json").exists()
        checkpoint = store.load()
        np.testing.assert_allclose(checkpoint["model"]["1,1"], [0.5, 0.25])

    def test_load_missing_file(self, tmp_path):
        assert JsonFilePersistence(tmp_path / "nowhere").load() is None

    def test_load_corrupt_file(self, tmp_path):
        store = JsonFilePersistence(tmp_path, app_name="grid")
        store.latest_path.write_text("garbage")
        assert store.load() is None

    def test_export_and_import(self, tmp_path):
        store = JsonFilePersistence(tmp_path, app_name="grid")
        assert store.export({"s": [1.0, 0.0]})
        assert store.last_export_path.name.startswith("grid-")
        received = []
        ok = asyncio.run(store.import_model(lambda m, md: received.append(m)))
        assert ok
        np.testing.assert_allclose(received[0]["s"], [1.0, 0.0])

    def test_import_explicit_path(self, tmp_path):
        path = tmp_path / "external.json"
        path.write_text(serialize_model({"x": [2.0]}))
        store = JsonFilePersistence(tmp_path / "other")
        received = []
        assert asyncio.run(store.import_model(lambda m, md: received.append(m), path=path))
        assert list(received[0]) == ["x"]

    def test_import_without_source(self, tmp_path):
        errors = []
        store = JsonFilePersistence(tmp_path)
        assert not asyncio.run(store.import_model(lambda m, md: None, errors.append))
        assert errors
