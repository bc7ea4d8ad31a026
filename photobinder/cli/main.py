import argparse
from photobinder.core.engine import generate_pdf, run_job_from_manifest, validate_and_build_images
from photobinder.core.errors import UserFacingError, InvalidSettings
from photobinder.core.types import PdfSettings, PageSizeMode, Orientation, ImageFit, DEFAULT_FILENAME

def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="photobinder", description="画像をまとめて1つのPDFにする")
    ap.add_argument("images", nargs="*", help="JPG/PNG/WebP（指定順＝ページ順）")
    ap.add_argument("--manifest", help="JSON manifest（images/settings/output_dir）")
    ap.add_argument("-o", "--output-dir", default=".")
    ap.add_argument("--filename", default=DEFAULT_FILENAME)
    ap.add_argument("--page-size", default=PageSizeMode.A4.value, choices=[m.value for m in PageSizeMode])
    ap.add_argument("--orientation", default=Orientation.AUTO.value, choices=[m.value for m in Orientation])
    ap.add_argument("--margin", type=float, default=10.0, help="余白 mm（0〜50）")
    ap.add_argument("--fit", default=ImageFit.CONTAIN.value, choices=[m.value for m in ImageFit])
    return ap

def main(argv=None):
    ap = build_parser()
    args = ap.parse_args(argv)
    if not args.manifest and not args.images:
        ap.error("画像ファイルか --manifest を指定してください")
    try:
        if args.manifest:
            out = run_job_from_manifest(args.manifest)
        else:
            settings = PdfSettings(
                page_size=args.page_size,
                orientation=args.orientation,
                margin_mm=args.margin,
                image_fit=args.fit,
                filename=args.filename,
            )
            images = validate_and_build_images(args.images)
            out = generate_pdf(images, settings, args.output_dir, log_cb=print)
        print(f"OK: {out}" if out else "OK")
    except (UserFacingError, InvalidSettings) as e:
        print(f"ERROR: {e}")
        raise SystemExit(2)

if __name__ == "__main__":
    main()
