import pytest

import delta_gen


def test_load_config_formats(tmp_path):
    json_path = tmp_path / "cfg.json"
    toml_path = tmp_path / "cfg.toml"

    json_path.write_text('{"chunk_size": 128, "debug": true}')
    toml_path.write_text('chunk_size = 256\nmin_savings = 0.5\n')

    cfg = delta_gen.load_config(str(json_path))
    assert cfg["chunk_size"] == 128
    assert cfg["debug"] is True
    assert cfg["min_savings"] == delta_gen.DEFAULT_CONFIG["min_savings"]

    if delta_gen.tomllib is not None:
        cfg = delta_gen.load_config(str(toml_path))
        assert cfg["chunk_size"] == 256
        assert cfg["min_savings"] == 0.5

    pytest.importorskip("yaml")
    yaml_path = tmp_path / "cfg.yaml"
    yaml_path.write_text("chunk_size: 32\ntimeout: 5\n")
    cfg = delta_gen.load_config(str(yaml_path))
    assert cfg["chunk_size"] == 32
    assert cfg["timeout"] == 5


def test_load_config_defaults():
    assert delta_gen.load_config() == delta_gen.DEFAULT_CONFIG
    assert delta_gen.load_config() is not delta_gen.DEFAULT_CONFIG


def test_load_config_missing_file(tmp_path):
    with pytest.raises(RuntimeError):
        delta_gen.load_config(str(tmp_path / "nope.json"))


@pytest.mark.parametrize(
    "text",
    [
        '{"chunk_size": 0}',
        '{"chunk_size": -4}',
        '{"chunk_size": "64"}',
        '{"chunk_size": true}',
        '{"min_savings": 1.0}',
        '{"min_savings": -0.1}',
        '{"timeout": 0}',
        '{"debug": "no"}',
        '{"debug": 1}',
        '[1, 2, 3]',
    ],
)
def test_invalid_config_values(tmp_path, text):
    path = tmp_path / "cfg.json"
    path.write_text(text)
    with pytest.raises(ValueError):
        delta_gen.load_config(str(path))


def test_malformed_yaml_is_value_error(tmp_path):
    pytest.importorskip("yaml")
    path = tmp_path / "cfg.yaml"
    path.write_text("chunk_size: [1, 2\n")
    with pytest.raises(ValueError):
        delta_gen.load_config(str(path))


def test_malformed_yaml_exit_code(tmp_path, capsys):
    pytest.importorskip("yaml")
    cfg_path = tmp_path / "cfg.yaml"
    cfg_path.write_text("chunk_size: [1, 2\n")
    data_path = tmp_path / "data.bin"
    data_path.write_bytes(b"abc")
    rc = delta_gen.main(["--config", str(cfg_path), "diff", str(data_path), str(data_path)])
    assert rc == 1
    assert "Invalid YAML" in capsys.readouterr().err
