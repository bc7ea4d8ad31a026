import json
import os
import fitz
import pytest
from PIL import Image

from photobinder.core import engine
from photobinder.core.engine import (
    probe_image, validate_and_build_images, resolve_output_filename, generate_pdf, run_job_from_manifest,
)
from photobinder.core.errors import UserFacingError, InvalidDimension, Canceled
from photobinder.core.layout import compute_layout
from photobinder.core.render import mm_to_pt, layout_rect_pt
from photobinder.core.types import ImageDescriptor, PdfSettings, PageSizeMode, Orientation, ImageFit

def make_image(path, size=(300, 200), color="red", **save_kwargs):
    Image.new("RGB", size, color).save(path, **save_kwargs)
    return str(path)

def test_probe_image_reads_dimensions(tmp_path):
    p = make_image(tmp_path / "a.png", (300, 200))
    d = probe_image(p)
    assert (d.pixel_width, d.pixel_height) == (300, 200)
    assert d.mime_type == "image/png"
    assert d.byte_handle == p
    assert d.display_name == "a.png"

def test_probe_webp(tmp_path):
    p = make_image(tmp_path / "b.webp", (40, 60))
    d = probe_image(p)
    assert d.mime_type == "image/webp"
    assert (d.pixel_width, d.pixel_height) == (40, 60)

def test_probe_applies_exif_rotation(tmp_path):
    exif = Image.Exif()
    exif[0x0112] = 6  # 90度回転
    p = make_image(tmp_path / "rot.jpg", (300, 200), exif=exif)
    d = probe_image(p)
    assert (d.pixel_width, d.pixel_height) == (200, 300)

def test_probe_rejects_bad_inputs(tmp_path):
    with pytest.raises(UserFacingError):
        probe_image(str(tmp_path / "missing.png"))

    gif = make_image(tmp_path / "c.gif", (10, 10))
    with pytest.raises(UserFacingError):
        probe_image(gif)

    heic = tmp_path / "d.heic"
    heic.write_bytes(b"not really heic")
    with pytest.raises(UserFacingError, match="HEIC"):
        probe_image(str(heic))

    broken = tmp_path / "broken.png"
    broken.write_bytes(b"garbage")
    with pytest.raises(UserFacingError):
        probe_image(str(broken))

def test_probe_rejects_large_file(tmp_path, monkeypatch):
    p = make_image(tmp_path / "big.png", (50, 50))
    monkeypatch.setattr(engine, "MAX_IMAGE_BYTES", 10)
    with pytest.raises(UserFacingError, match="上限"):
        probe_image(p)

def test_validate_and_build_images_keeps_order(tmp_path):
    paths = [make_image(tmp_path / f"{n}.png", (10 + i, 10)) for i, n in enumerate(["z", "a", "m"])]
    images = validate_and_build_images(paths)
    assert [d.display_name for d in images] == ["z.png", "a.png", "m.png"]

@pytest.mark.parametrize("name,expected", [
    ("report.pdf", "report.pdf"),
    ("report", "report.pdf"),
    ("  scan.PDF ", "scan.PDF"),
    ("", "images.pdf"),
    (None, "images.pdf"),
    ("   ", "images.pdf"),
    (".pdf", "images.pdf"),
    ("../../etc/out.pdf", "out.pdf"),
    ("`invoice_2024.pdf`", "invoice_2024.pdf"),
])
def test_resolve_output_filename(name, expected):
    assert resolve_output_filename(name) == expected

def test_generate_pdf_pages_follow_layout(tmp_path):
    landscape = make_image(tmp_path / "land.png", (300, 200))
    portrait = make_image(tmp_path / "port.jpg", (200, 300), color="blue")
    images = validate_and_build_images([landscape, portrait])
    progress = []
    logs = []
    out = generate_pdf(
        images,
        PdfSettings(page_size=PageSizeMode.A4, orientation=Orientation.AUTO, filename="out"),
        str(tmp_path / "dist"),
        progress_cb=lambda cur, total: progress.append((cur, total)),
        log_cb=logs.append,
    )
    assert out == os.path.join(str(tmp_path / "dist"), "out.pdf")
    assert progress == [(1, 2), (2, 2)]
    assert logs
    assert not (tmp_path / "dist" / ".tmp_out.pdf").exists()

    with fitz.open(out) as doc:
        assert doc.page_count == 2
        p0, p1 = doc[0], doc[1]
        assert p0.rect.width == pytest.approx(mm_to_pt(297), abs=0.01)
        assert p0.rect.height == pytest.approx(mm_to_pt(210), abs=0.01)
        assert p1.rect.width == pytest.approx(mm_to_pt(210), abs=0.01)
        assert len(p0.get_images()) == 1
        assert len(p1.get_images()) == 1

def test_generate_pdf_fit_image_and_webp(tmp_path):
    p = make_image(tmp_path / "w.webp", (96, 192))
    images = validate_and_build_images([p])
    out = generate_pdf(images, PdfSettings(page_size=PageSizeMode.FIT_IMAGE, image_fit=ImageFit.FILL), str(tmp_path))
    with fitz.open(out) as doc:
        page = doc[0]
        assert page.rect.width == pytest.approx(72, abs=0.01)
        assert page.rect.height == pytest.approx(144, abs=0.01)
        assert len(page.get_images()) == 1

def test_generate_pdf_empty_is_noop(tmp_path):
    assert generate_pdf([], PdfSettings(), str(tmp_path)) is None
    assert list(tmp_path.iterdir()) == []

def test_generate_pdf_rejects_unprobed_image(tmp_path):
    images = [ImageDescriptor(pixel_width=0, pixel_height=0, mime_type="image/png")]
    with pytest.raises(InvalidDimension):
        generate_pdf(images, PdfSettings(), str(tmp_path))
    assert list(tmp_path.iterdir()) == []

def test_generate_pdf_cancel(tmp_path):
    images = validate_and_build_images([make_image(tmp_path / "a.png")])
    out_dir = tmp_path / "out"
    with pytest.raises(Canceled, match="中断"):
        generate_pdf(images, PdfSettings(), str(out_dir), cancel_cb=lambda: True)
    assert list(out_dir.iterdir()) == []

def test_run_job_from_manifest(tmp_path):
    make_image(tmp_path / "one.png", (100, 50))
    make_image(tmp_path / "two.png", (50, 100))
    manifest = tmp_path / "job.json"
    manifest.write_text(json.dumps({
        "images": ["one.png", "two.png"],
        "settings": {"page_size": "LETTER", "orientation": "p", "margin_mm": 0, "filename": "job.pdf"},
        "output_dir": "dist",
    }), encoding="utf-8")

    out = run_job_from_manifest(str(manifest))
    assert out == os.path.join(str(tmp_path), "dist", "job.pdf")
    with fitz.open(out) as doc:
        assert doc.page_count == 2
        for page in doc:
            assert page.rect.width == pytest.approx(mm_to_pt(215.9), abs=0.01)
            assert page.rect.height == pytest.approx(mm_to_pt(279.4), abs=0.01)

def test_run_job_from_manifest_bad_json(tmp_path):
    manifest = tmp_path / "job.json"
    manifest.write_text("{not json", encoding="utf-8")
    with pytest.raises(UserFacingError):
        run_job_from_manifest(str(manifest))

@pytest.mark.parametrize("fit", [ImageFit.FILL, ImageFit.CONTAIN])
def test_generate_pdf_places_image_at_layout_rect(tmp_path, fit):
    wide = make_image(tmp_path / "wide.png", (300, 100))
    tall = make_image(tmp_path / "tall.jpg", (100, 300), color="blue")
    images = validate_and_build_images([wide, tall])
    settings = PdfSettings(page_size=PageSizeMode.A4, orientation=Orientation.PORTRAIT, margin_mm=20, image_fit=fit)
    layouts = compute_layout(images, settings)

    out = generate_pdf(images, settings, str(tmp_path / "dist"))
    with fitz.open(out) as doc:
        for page, lay in zip(doc, layouts):
            xref = page.get_images()[0][0]
            got = page.get_image_rects(xref)[0]
            want = layout_rect_pt(lay)
            for a, b in zip((got.x0, got.y0, got.x1, got.y1), (want.x0, want.y0, want.x1, want.y1)):
                assert a == pytest.approx(b, abs=0.05)

def test_generate_pdf_unwritable_target(tmp_path):
    images = validate_and_build_images([make_image(tmp_path / "a.png")])
    out_dir = tmp_path / "out"
    (out_dir / "blocked.pdf").mkdir(parents=True)
    with pytest.raises(UserFacingError, match="保存できません"):
        generate_pdf(images, PdfSettings(filename="blocked.pdf"), str(out_dir))
    assert sorted(os.listdir(out_dir)) == ["blocked.pdf"]
    assert (out_dir / "blocked.pdf").is_dir()

@pytest.mark.parametrize("body", [
    [],
    {"images": None},
    {"images": "a.png"},
    {"images": [1, 2]},
    {"images": [], "settings": None},
    {"images": [], "settings": ["A4"]},
    {"images": [], "output_dir": 3},
])
def test_run_job_from_manifest_wrong_shape(tmp_path, body):
    manifest = tmp_path / "job.json"
    manifest.write_text(json.dumps(body), encoding="utf-8")
    with pytest.raises(UserFacingError, match="manifest"):
        run_job_from_manifest(str(manifest))
