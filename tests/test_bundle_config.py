from pathlib import Path

import pytest

from agent_bundle.bundling.shared import DEFAULT_SHARED_LIBRARIES
from agent_bundle.framework.config import BundleConfig, parse_bool, parse_int
from agent_bundle.framework.errors import AmbiguousRelocation


def _base_cfg_dict(tmp_path) -> dict:
    return {
        "project": {"name": "splunk-otel-javaagent", "version": "1.2.0", "upstream_version": "1.15.0-alpha"},
        "build": {"output_dir": str(tmp_path / "libs")},
        "libraries": {
            "bootstrap": [str(tmp_path / "bootstrap-1.2.0.jar")],
            "agent_libs": [
                str(tmp_path / "custom-1.2.0.jar"),
                {"path": str(tmp_path / "api.jar"), "coordinate": "io.opentelemetry:opentelemetry-api:1.15.0"},
            ],
            "upstream_agent": [str(tmp_path / "opentelemetry-javaagent-1.15.0.jar")],
        },
    }


def test_minimal_config_uses_defaults(tmp_path):
    cfg, warnings = BundleConfig.from_dict(_base_cfg_dict(tmp_path))

    assert warnings == []
    assert cfg.build.classifier == "all"
    assert cfg.build.workers == 4
    assert cfg.build.reproducible is True
    assert cfg.shared.libraries == DEFAULT_SHARED_LIBRARIES
    assert cfg.namespace.prefix == "inst"
    assert cfg.service_dirs == ("META-INF/services/", "inst/META-INF/services/")
    assert cfg.relocation_rules == ()
    assert cfg.manifest.version_prefix == ""
    assert cfg.agent_libs.members[1].coordinate == "io.opentelemetry:opentelemetry-api:1.15.0"
    assert cfg.classified_jar_path == tmp_path / "libs" / "splunk-otel-javaagent-1.2.0-all.jar"
    assert cfg.main_jar_path == tmp_path / "libs" / "splunk-otel-javaagent-1.2.0.jar"


def test_relative_paths_resolve_against_base_dir(tmp_path):
    cfg_dict = _base_cfg_dict(tmp_path)
    cfg_dict["build"]["output_dir"] = "out/libs"
    cfg_dict["libraries"]["bootstrap"] = ["deps/bootstrap.jar"]

    cfg, _warnings = BundleConfig.from_dict(cfg_dict, base_dir=tmp_path)

    assert cfg.build.output_dir == Path(tmp_path / "out" / "libs")
    assert cfg.bootstrap.members[0].path == tmp_path / "deps" / "bootstrap.jar"


def test_unknown_config_keys_warn_by_default(tmp_path):
    cfg_dict = _base_cfg_dict(tmp_path)
    cfg_dict["build"]["colour"] = "blue"
    cfg_dict["extras"] = {"x": 1}
    cfg_dict["manifest"] = {"extra": {"Built-By": "ci"}}

    _cfg, warnings = BundleConfig.from_dict(cfg_dict)

    assert "Unknown config key: build.colour" in warnings
    assert "Unknown config key: extras" in warnings
    assert not any("Built-By" in w for w in warnings)


def test_unknown_config_keys_strict_mode_raises(tmp_path):
    cfg_dict = _base_cfg_dict(tmp_path)
    cfg_dict["strict"] = True
    cfg_dict["build"]["colour"] = "blue"

    with pytest.raises(ValueError, match=r"Unknown config keys: build\.colour"):
        BundleConfig.from_dict(cfg_dict)


@pytest.mark.parametrize(
    "path, value, message",
    [
        (("project", "version"), None, "project.version"),
        (("build", "workers"), 0, "build.workers"),
        (("build", "workers"), "many", "build.workers"),
        (("build", "reproducible"), "maybe", "build.reproducible"),
        (("build", "keep_intermediates"), True, "build.work_dir"),
        (("libraries", "bootstrap"), "one.jar", "libraries.bootstrap"),
    ],
)
def test_invalid_values_name_the_config_key(tmp_path, path, value, message):
    cfg_dict = _base_cfg_dict(tmp_path)
    section, key = path
    cfg_dict[section][key] = value

    with pytest.raises(ValueError, match=message):
        BundleConfig.from_dict(cfg_dict)


def test_relocation_rules_and_shared_contract_are_parsed(tmp_path):
    cfg_dict = _base_cfg_dict(tmp_path)
    cfg_dict["relocation"] = {
        "rules": [
            {"pattern": "io.micrometer", "shaded": "com.splunk.javaagent.shaded.io.micrometer"},
            {"pattern": "net.bytebuddy", "shaded": "x.bytebuddy", "excludes": ["net.bytebuddy.agent.*"]},
        ]
    }
    cfg_dict["shared_contract"] = {"libraries": [{"coordinate": "org.slf4j:slf4j-api", "packages": ["org.slf4j"]}]}

    cfg, _warnings = BundleConfig.from_dict(cfg_dict)
    relocation = cfg.relocation_map()

    assert len(relocation) == 2
    assert cfg.relocation_rules[1].excludes == ("net.bytebuddy.agent.*",)
    assert [library.coordinate for library in cfg.shared.libraries] == ["org.slf4j:slf4j-api"]
    assert relocation.relocate_class_name("io/micrometer/core/Meter") == "com/splunk/javaagent/shaded/io/micrometer/core/Meter"


def test_empty_shared_contract_warns(tmp_path):
    cfg_dict = _base_cfg_dict(tmp_path)
    cfg_dict["shared_contract"] = {"libraries": []}

    cfg, warnings = BundleConfig.from_dict(cfg_dict)

    assert cfg.shared.libraries == ()
    assert any("shared_contract.libraries is empty" in w for w in warnings)


def test_ambiguous_relocation_is_reported_by_relocation_map(tmp_path):
    cfg_dict = _base_cfg_dict(tmp_path)
    cfg_dict["relocation"] = {
        "rules": [
            {"pattern": "com.a", "shaded": "x.same"},
            {"pattern": "com.b", "shaded": "x.same"},
        ]
    }
    cfg, _warnings = BundleConfig.from_dict(cfg_dict)

    with pytest.raises(AmbiguousRelocation):
        cfg.relocation_map()


def test_with_overrides_replaces_versions_output_and_library_sets(tmp_path):
    cfg, _warnings = BundleConfig.from_dict(_base_cfg_dict(tmp_path))

    updated = cfg.with_overrides(
        version="2.0.0",
        output_dir=tmp_path / "elsewhere",
        libraries={"bootstrap": [str(tmp_path / "other.jar")], "agent_libs": []},
    )

    assert updated.project.version == "2.0.0"
    assert updated.project.upstream_version == "1.15.0-alpha"
    assert updated.build.output_dir == (tmp_path / "elsewhere").resolve()
    assert [ref.path.name for ref in updated.bootstrap] == ["other.jar"]
    assert len(updated.agent_libs) == 2
    with pytest.raises(ValueError, match="Unknown library set"):
        cfg.with_overrides(libraries={"plugins": ["x.jar"]})


def test_manifest_section(tmp_path):
    cfg_dict = _base_cfg_dict(tmp_path)
    cfg_dict["manifest"] = {"version_prefix": "splunk-", "vendor": "Acme", "extra": {"Multi-Release": True}}

    cfg, _warnings = BundleConfig.from_dict(cfg_dict)

    assert cfg.manifest.version_prefix == "splunk-"
    assert cfg.manifest.vendor == "Acme"
    assert cfg.manifest.extra == (("Multi-Release", True),)


def test_repository_default_config_parses(tmp_path):
    from agent_bundle.foundation.config_io import load_config

    repo_root = Path(__file__).resolve().parents[1]
    cfg_dict, _meta = load_config(config_path=repo_root / "config" / "config.yaml")

    cfg, warnings = BundleConfig.from_dict(cfg_dict, base_dir=repo_root)

    assert warnings == []
    assert cfg.manifest.version_prefix == "splunk-"
    assert len(cfg.relocation_map()) == len(cfg.relocation_rules)


@pytest.mark.parametrize("value, expected", [(True, True), (0, False), (" Yes ", True), ("false", False)])
def test_parse_bool(value, expected):
    assert parse_bool(value, "x") is expected


@pytest.mark.parametrize("value", [2, "on", None, 1.0])
def test_parse_bool_rejects(value):
    with pytest.raises(ValueError, match="Invalid boolean for x"):
        parse_bool(value, "x")


def test_parse_int():
    assert parse_int(" 7 ", "x") == 7
    with pytest.raises(ValueError, match="expected int, got bool"):
        parse_int(True, "x")
