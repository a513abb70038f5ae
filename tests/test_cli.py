import numpy as np
from click.testing import CliRunner
from PIL import Image

from pixelforge.main import cli


def _write(path, color=(255, 255, 255), size=(40, 30)):
    Image.new("RGB", size, color=color).save(path)
    return path


def test_process_single_file(tmp_path):
    source = _write(tmp_path / "photo.png")
    out_dir = tmp_path / "out"
    result = CliRunner().invoke(cli, ["process", str(source), "-o", str(out_dir), "--scale", "2"])
    assert result.exit_code == 0, result.output
    with Image.open(out_dir / "photo_processed.png") as image:
        assert image.size == (80, 60)


def test_process_directory(tmp_path):
    _write(tmp_path / "a.png")
    _write(tmp_path / "b.jpg", color=(0, 0, 0))
    (tmp_path / "notes.txt").write_text("skip me")
    out_dir = tmp_path / "out"
    result = CliRunner().invoke(
        cli,
        [
            "process", str(tmp_path), "-o", str(out_dir),
            "--format", "jpeg", "--remove-background", "--background-mode", "advanced",
        ],
    )
    assert result.exit_code == 0, result.output
    assert sorted(p.name for p in out_dir.iterdir()) == ["a_processed.jpg", "b_processed.jpg"]


def test_process_manual_region(tmp_path):
    source = _write(tmp_path / "photo.png", color=(10, 200, 10))
    out_dir = tmp_path / "out"
    result = CliRunner().invoke(
        cli,
        [
            "process", str(source), "-o", str(out_dir),
            "--remove-watermark", "--watermark-method", "inpaint", "--region", "5,5,10,10",
        ],
    )
    assert result.exit_code == 0, result.output
    with Image.open(out_dir / "photo_processed.png") as image:
        assert (np.asarray(image.convert("RGB")) == (10, 200, 10)).all()


def test_bad_region_is_rejected(tmp_path):
    source = _write(tmp_path / "photo.png")
    result = CliRunner().invoke(cli, ["process", str(source), "--region", "1,2,3"])
    assert result.exit_code != 0


def test_detect_command(tmp_path):
    source = _write(tmp_path / "white.png", size=(100, 100))
    result = CliRunner().invoke(cli, ["detect", str(source)])
    assert result.exit_code == 0, result.output
    assert "0.94" in result.output


def test_detect_unreadable_file_exits_cleanly(tmp_path):
    source = tmp_path / "broken.png"
    source.write_bytes(b"not an image")
    result = CliRunner().invoke(cli, ["detect", str(source)])
    assert result.exit_code == 1
    assert isinstance(result.exception, SystemExit)
