from __future__ import annotations

import signal
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from osm2arango.exceptions import ConversionProcessError, MalformedRecordError
from osm2arango.osm.osmium import (
    build_osmium_export_args,
    detect_osmium_install_plan,
    normalize_input_to_doc,
    osmium_exit_failure,
    osmium_feature_to_doc,
    osmium_start_failure,
    sanitize_key,
    spawn_osmium_export,
)


def make_feature(**overrides) -> dict:
    feature = {
        "type": "Feature",
        "id": "n123",
        "geometry": {"type": "Point", "coordinates": [13.4, 52.5]},
        "properties": {
            "type": "node",
            "id": 123,
            "version": 4,
            "changeset": 99,
            "timestamp": "2024-01-01T00:00:00Z",
            "uid": 7,
            "user": "mapper",
            "tags": [{"k": "amenity", "v": "cafe"}, {"k": "name", "v": "Kaffee"}],
        },
    }
    feature.update(overrides)
    return feature


def which_from(*available: str):
    return lambda name: f"/usr/bin/{name}" if name in available else None


# ================================================================== #
#  Feature -> document
# ================================================================== #


class TestOsmiumFeatureToDoc:
    def test_full_feature(self):
        doc = osmium_feature_to_doc(make_feature())
        assert doc == {
            "_key": "n123",
            "geometry": {"type": "Point", "coordinates": [13.4, 52.5]},
            "tags": {"amenity": "cafe", "name": "Kaffee"},
            "tagsKeys": ["amenity", "name"],
            "tagsKV": ["amenity=cafe", "name=Kaffee"],
            "osm": {
                "type": "node",
                "id": 123,
                "version": 4,
                "changeset": 99,
                "timestamp": "2024-01-01T00:00:00Z",
                "uid": 7,
                "user": "mapper",
            },
        }

    def test_fallback_key_from_properties(self):
        feature = make_feature()
        del feature["id"]
        feature["properties"]["type"] = "way"
        feature["properties"]["id"] = 42
        assert osmium_feature_to_doc(feature)["_key"] == "w42"

    def test_fallback_key_without_type_or_id(self):
        feature = make_feature(id=None, properties={})
        assert osmium_feature_to_doc(feature)["_key"] == "x0"

    def test_key_is_sanitized(self):
        feature = make_feature(id="node/1 2")
        assert osmium_feature_to_doc(feature)["_key"] == "node_1_2"

    def test_geometry_keeps_only_known_members(self):
        feature = make_feature(
            geometry={"type": "Point", "coordinates": [1, 2], "bbox": [0, 0, 1, 1]}
        )
        assert osmium_feature_to_doc(feature)["geometry"] == {
            "type": "Point",
            "coordinates": [1, 2],
        }

    def test_geometry_collection_keeps_geometries(self):
        members = [{"type": "Point", "coordinates": [1, 2]}]
        feature = make_feature(geometry={"type": "GeometryCollection", "geometries": members})
        assert osmium_feature_to_doc(feature)["geometry"]["geometries"] == members

    def test_missing_geometry_type_raises(self):
        with pytest.raises(MalformedRecordError, match="geometry.type must be a string"):
            osmium_feature_to_doc(make_feature(geometry={"coordinates": [1, 2]}))

    @pytest.mark.parametrize(
        "feature, label",
        [
            ([], "feature"),
            ({"geometry": None, "properties": {}}, "feature.geometry"),
            ({"geometry": {"type": "Point"}, "properties": "x"}, "feature.properties"),
        ],
    )
    def test_non_object_parts_raise(self, feature, label):
        with pytest.raises(MalformedRecordError, match=f"^{label} must be an object$"):
            osmium_feature_to_doc(feature)

    def test_tags_accept_key_value_entries(self):
        feature = make_feature()
        feature["properties"]["tags"] = [
            {"key": "leisure", "value": "park"},
            {"k": "", "v": "dropped"},
            {"k": "no_value"},
            "not-an-object",
        ]
        assert osmium_feature_to_doc(feature)["tags"] == {"leisure": "park"}

    def test_tags_from_flat_properties(self):
        feature = make_feature(
            properties={"type": "node", "id": 1, "amenity": "bench", "height": 2}
        )
        doc = osmium_feature_to_doc(feature)
        assert doc["tags"] == {"amenity": "bench"}
        assert doc["osm"] == {"type": "node", "id": 1}

    def test_numeric_timestamp_kept(self):
        feature = make_feature()
        feature["properties"]["timestamp"] = 1700000000
        assert osmium_feature_to_doc(feature)["osm"]["timestamp"] == 1700000000

    def test_wrongly_typed_core_attributes_dropped(self):
        feature = make_feature()
        feature["properties"].update({"version": "4", "uid": True, "user": 5})
        osm = osmium_feature_to_doc(feature)["osm"]
        assert "version" not in osm
        assert "uid" not in osm
        assert "user" not in osm


class TestNormalizeInputToDoc:
    def test_normalized_document_passes_through(self):
        doc = {"_key": "n1", "geometry": {"type": "Point", "coordinates": [0, 0]}}
        assert normalize_input_to_doc(doc) is doc

    def test_feature_is_converted(self):
        assert normalize_input_to_doc(make_feature())["_key"] == "n123"

    def test_normalized_document_without_type_raises(self):
        with pytest.raises(MalformedRecordError, match="geometry.type must be a non-empty string"):
            normalize_input_to_doc({"_key": "n1", "geometry": {"type": ""}})

    def test_non_object_raises(self):
        with pytest.raises(MalformedRecordError, match="must be a JSON object"):
            normalize_input_to_doc([1, 2])

    def test_unknown_shape_raises(self):
        with pytest.raises(MalformedRecordError, match="Unsupported NDJSON document shape"):
            normalize_input_to_doc({"name": "nothing useful"})


class TestSanitizeKey:
    def test_allowed_characters_untouched(self):
        assert sanitize_key("n1:a-b_c.d") == "n1:a-b_c.d"

    def test_disallowed_characters_replaced(self):
        assert sanitize_key("a/b c#d") == "a_b_c_d"


# ================================================================== #
#  Subprocess
# ================================================================== #


class TestOsmiumExportArgs:
    def test_exact_arguments(self):
        assert build_osmium_export_args("in.osm.pbf") == [
            "export",
            "in.osm.pbf",
            "-f",
            "geojsonseq",
            "-x",
            "print_record_separator=false",
            "-x",
            "tags_type=array",
            "--add-unique-id=type_id",
            "--attributes=type,id,version,changeset,timestamp,uid,user",
        ]


class TestSpawnOsmiumExport:
    @patch("osm2arango.osm.osmium.subprocess.Popen")
    def test_spawns_with_stdout_pipe(self, mock_popen):
        proc = MagicMock()
        mock_popen.return_value = proc

        assert spawn_osmium_export("in.osm.pbf", osmium_path="/opt/osmium") is proc

        args, kwargs = mock_popen.call_args
        assert args[0][0] == "/opt/osmium"
        assert args[0][1:] == build_osmium_export_args("in.osm.pbf")
        assert kwargs["stdout"] == subprocess.PIPE
        assert kwargs["stdin"] == subprocess.DEVNULL

    @patch("osm2arango.osm.osmium.subprocess.Popen", side_effect=FileNotFoundError("osmium"))
    def test_missing_binary_raises_conversion_error(self, mock_popen):
        with pytest.raises(ConversionProcessError, match="osmium binary not found"):
            spawn_osmium_export("in.osm.pbf")


class TestOsmiumFailures:
    def test_start_failure_with_install_hint(self):
        err = osmium_start_failure(
            FileNotFoundError("osmium"), "osmium", "linux", which_from("apt-get")
        )
        message = str(err)
        assert "osmium binary not found (osmium)" in message
        assert "--adapter=ndjson" in message
        assert "sudo apt-get install -y osmium-tool" in message

    def test_start_failure_without_package_manager(self):
        err = osmium_start_failure(FileNotFoundError("osmium"), "osmium", "win32", which_from())
        assert "Install with" not in str(err)

    def test_start_failure_other_os_error(self):
        err = osmium_start_failure(PermissionError("denied"), "/bin/osmium", "linux", which_from())
        assert str(err).startswith("Failed to start osmium (/bin/osmium)")

    def test_sigkill_mentions_memory(self):
        err = osmium_exit_failure(-signal.SIGKILL)
        assert "out of memory" in str(err)
        assert err.returncode == -signal.SIGKILL

    def test_other_signal(self):
        assert "terminated by signal 15" in str(osmium_exit_failure(-15))

    def test_non_zero_exit(self):
        err = osmium_exit_failure(1)
        assert str(err) == "osmium export failed with exit code 1"
        assert err.returncode == 1


class TestDetectOsmiumInstallPlan:
    def test_homebrew(self):
        plan = detect_osmium_install_plan("darwin", which_from("brew"))
        assert plan.name == "Homebrew"
        assert plan.format() == "brew install osmium-tool"

    def test_apt_get_preferred_over_pacman(self):
        plan = detect_osmium_install_plan("linux", which_from("apt-get", "pacman"))
        assert plan.name == "apt-get"
        assert plan.format().splitlines() == [
            "sudo apt-get update",
            "sudo apt-get install -y osmium-tool",
        ]

    def test_pacman(self):
        plan = detect_osmium_install_plan("linux", which_from("pacman"))
        assert plan.name == "pacman"

    def test_unknown_platform(self):
        assert detect_osmium_install_plan("darwin", which_from()) is None
