import os
import fitz
import pytest
from PIL import Image

from photobinder.cli.main import main
from photobinder.core.render import mm_to_pt

def test_cli_writes_pdf(tmp_path, capsys):
    p = tmp_path / "a.png"
    Image.new("RGB", (200, 100), "green").save(p)
    main([str(p), "-o", str(tmp_path), "--page-size", "LETTER", "--filename", "cli"])
    out = capsys.readouterr().out
    assert "OK:" in out
    pdf = tmp_path / "cli.pdf"
    assert pdf.exists()
    with fitz.open(str(pdf)) as doc:
        assert doc[0].rect.width == pytest.approx(mm_to_pt(279.4), abs=0.01)

def test_cli_rejects_margin(tmp_path, capsys):
    p = tmp_path / "a.png"
    Image.new("RGB", (20, 10)).save(p)
    with pytest.raises(SystemExit) as exc:
        main([str(p), "-o", str(tmp_path), "--margin", "60"])
    assert exc.value.code == 2
    assert "ERROR" in capsys.readouterr().out
    assert not any(name.endswith(".pdf") for name in os.listdir(tmp_path))

def test_cli_missing_file(tmp_path, capsys):
    with pytest.raises(SystemExit) as exc:
        main([str(tmp_path / "nope.png")])
    assert exc.value.code == 2

@pytest.mark.parametrize("body", ['{"images": null}', '{"images": [], "settings": null}', '[]'])
def test_cli_wrong_manifest_shape(tmp_path, capsys, body):
    manifest = tmp_path / "job.json"
    manifest.write_text(body, encoding="utf-8")
    with pytest.raises(SystemExit) as exc:
        main(["--manifest", str(manifest)])
    assert exc.value.code == 2
    assert "ERROR" in capsys.readouterr().out
