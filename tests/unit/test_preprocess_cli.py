import os
import importlib.util
from PIL import Image

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..'))


def load_cli():
    spec = importlib.util.spec_from_file_location(
        "preprocess_image", os.path.join(PROJECT_ROOT, "bin", "preprocess_image.py")
    )
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_cli_writes_prepared_jpeg(tmp_path, capsys):
    source = tmp_path / "arm.png"
    Image.new("RGB", (800, 400), (200, 150, 120)).save(source)

    exit_code = load_cli().main([str(source)])

    assert exit_code == 0
    output = tmp_path / "arm_prepared.jpg"
    with Image.open(output) as img:
        assert img.format == "JPEG"
        assert img.size == (512, 256)
    assert "skin detected: True" in capsys.readouterr().out


def test_cli_custom_output(tmp_path):
    source = tmp_path / "sky.png"
    Image.new("RGB", (64, 64), (0, 0, 255)).save(source)
    target = tmp_path / "out" / "sky.jpg"
    target.parent.mkdir()

    assert load_cli().main([str(source), "-o", str(target)]) == 0
    assert target.exists()


def test_cli_rejects_corrupt_file(tmp_path, capsys):
    source = tmp_path / "broken.jpg"
    source.write_bytes(b"not really a jpeg")

    assert load_cli().main([str(source)]) == 1
    assert "Error processing" in capsys.readouterr().out


def test_cli_missing_input(tmp_path, capsys):
    missing = tmp_path / "nowhere.png"

    assert load_cli().main([str(missing)]) == 1
    assert "Error processing" in capsys.readouterr().out
    assert not (tmp_path / "nowhere_prepared.jpg").exists()
