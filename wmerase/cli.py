"""Command line interface for wmerase operations."""

import argparse, logging
from pathlib import Path

from PIL import Image

from wmerase.comparison import build_comparison_image
from wmerase.config import load_config
from wmerase.engine import get_onnxruntime_info, get_pillow_info
from wmerase.engine_cache import get_engine_cache
from wmerase.errors import ImageValidationError
from wmerase.model_registry import fetch_model, list_models, resolve_model_source
from wmerase.pipeline import remove_watermark
from wmerase.progress import TqdmProgressSink
from wmerase.validation import format_file_size, validate_image_file


log = logging.getLogger(__name__)


def _resolve_log_level(args: argparse.Namespace) -> int:
    """Resolve effective logging level from explicit level or verbosity flags."""
    if args.log_level is not None:
        return getattr(logging, args.log_level)

    # Start from INFO, then apply -v and -q offsets with DEBUG/ERROR clamp.
    level = logging.INFO - (10 * int(args.verbose)) + (10 * int(args.quiet))
    return max(logging.DEBUG, min(logging.ERROR, level))


def _configure_logging(args: argparse.Namespace) -> None:
    """Configure stdlib logging using Python default handler routing."""
    effective_level = _resolve_log_level(args)
    root_logger = logging.getLogger()
    root_logger.setLevel(effective_level)
    if not root_logger.handlers:
        logging.basicConfig(level=effective_level)


def _resolve_default_output_path(in_fp: Path) -> Path:
    """Resolve default output in cwd from input filename."""
    in_path = Path(in_fp).expanduser()
    suffix = in_path.suffix or ".png"
    return (Path.cwd() / f"{in_path.stem}_clean{suffix}").resolve()


def _run_remove(args: argparse.Namespace) -> int:
    """Validate, restore and write one image."""
    config = load_config(args.config, logger=log)
    validation = validate_image_file(args.in_fp, image_config=config.image)
    if not validation.valid:
        raise ImageValidationError(validation.error)
    log.info(f"file selected: {Path(args.in_fp).name} ({format_file_size(Path(args.in_fp).stat().st_size)})")

    model_source, model_sha256 = resolve_model_source(
        model_version=args.model_version,
        model_path=args.model_path,
        cache_dir=args.cache_dir,
        manifest_fp=args.manifest,
    )
    cache = get_engine_cache(
        model_source=model_source,
        runtime=config.runtime,
        progress_steps=config.progress,
        input_size=config.model_input_size,
        backend_name=args.backend,
        expected_sha256=model_sha256,
    )
    with TqdmProgressSink(disable=True if args.no_progress else None) as sink:
        result = remove_watermark(args.in_fp, engine_cache=cache, config=config, on_progress=sink, logger=log)

    output_fp = args.out if args.out is not None else _resolve_default_output_path(args.in_fp)
    # Unknown extensions fall back to the configured output format.
    image_format = None if Path(output_fp).suffix.lower() in Image.registered_extensions() else config.image.output_format
    written_fp = result.final.save(output_fp, image_format=image_format, quality=config.image.output_quality)
    if args.comparison is not None:
        comparison_fp = build_comparison_image(result.original, result.final).save(args.comparison)
        log.info(f"wrote comparison image to\n    {comparison_fp}")
    print(written_fp)
    return 0


def main_cli(args: argparse.Namespace) -> int:
    """Run the CLI command selected by parsed arguments."""
    if args.command == "models" and args.models_command == "list":
        for model in list_models(manifest_fp=args.manifest):
            print(f"{model.version}\t{model.file_name}\t{model.url}")
        return 0

    if args.command == "models" and args.models_command == "fetch":
        model_fp = fetch_model(
            args.version,
            cache_dir=args.cache_dir,
            manifest_fp=args.manifest,
            backend_name=args.backend,
            force=args.force,
            timeout_s=load_config(args.config, logger=log).runtime.fetch_timeout_s,
        )
        print(model_fp)
        return 0

    if args.command == "remove":
        return _run_remove(args)

    if args.command == "doctor":
        ort_info = get_onnxruntime_info()
        pillow_info = get_pillow_info()
        print(f"onnxruntime_installed={ort_info['installed']}")
        print(f"onnxruntime_version={ort_info['version']}")
        print(f"onnxruntime_available_providers={','.join(ort_info['available_providers'])}")
        print(f"pillow_installed={pillow_info['installed']}")
        print(f"pillow_version={pillow_info['version']}")
        return 0

    raise ValueError(f"unsupported command path: {args.command}/{getattr(args, 'models_command', None)}")


def main(argv: list[str] | None = None) -> int:
    """Run the wmerase CLI and return an exit code."""
    args = _parse_arguments(argv)
    _configure_logging(args)
    try:
        return main_cli(args)
    except Exception as err:
        log.error(f"{err}")
        log.debug("unhandled CLI exception", exc_info=True)
        return 1


def _add_model_source_arguments(parser: argparse.ArgumentParser) -> None:
    """Register manifest/cache/backend options shared by several commands."""
    parser.add_argument(
        "--manifest",
        type=Path,
        default=None,
        help="Optional path to an alternate models.json manifest.",
    )
    parser.add_argument(
        "--cache-dir",
        type=Path,
        default=None,
        help="Optional cache directory for downloaded weights.",
    )
    parser.add_argument(
        "--backend",
        choices=("http", "file"),
        default=None,
        help="Override retrieval backend selection.",
    )


def _parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for wmerase."""
    parser = argparse.ArgumentParser(prog="wmerase", description="Remove corner watermarks with LaMa inpainting.")
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase logging verbosity (repeatable).",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="count",
        default=0,
        help="Decrease logging verbosity (repeatable).",
    )
    parser.add_argument(
        "--log-level",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        default=None,
        help="Explicit log level override.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # Register model-related commands.
    models_parser = subparsers.add_parser("models", help="Model registry commands.")
    models_subparsers = models_parser.add_subparsers(dest="models_command", required=True)

    models_list_parser = models_subparsers.add_parser("list", help="List available model versions.")
    models_list_parser.add_argument(
        "--manifest",
        type=Path,
        default=None,
        help="Optional path to an alternate models.json manifest.",
    )

    models_fetch_parser = models_subparsers.add_parser("fetch", help="Fetch model weights into the cache.")
    models_fetch_parser.add_argument("version", nargs="?", default=None, help="Model version key from the manifest.")
    _add_model_source_arguments(models_fetch_parser)
    models_fetch_parser.add_argument(
        "--force",
        action="store_true",
        help="Force redownload even when a valid cache file exists.",
    )
    models_fetch_parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional JSON config; its runtime.fetch_timeout_s bounds the download.",
    )

    # Register the main restoration command.
    remove_parser = subparsers.add_parser("remove", help="Remove the corner watermark from one image.")
    remove_parser.add_argument("--in", dest="in_fp", type=Path, required=True, help="Source image path.")
    remove_parser.add_argument(
        "--out",
        type=Path,
        default=None,
        help="Output image path. Defaults to ./<input_stem>_clean with input extension.",
    )
    remove_parser.add_argument(
        "--comparison",
        type=Path,
        default=None,
        help="Optional path for a side-by-side original/cleaned preview.",
    )
    remove_parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional JSON file overriding watermark/runtime/progress/image settings.",
    )
    remove_parser.add_argument(
        "--model-version",
        default=None,
        help="Model version key from the manifest when --model-path is not provided.",
    )
    remove_parser.add_argument(
        "--model-path",
        type=Path,
        default=None,
        help="Explicit local ONNX model path.",
    )
    _add_model_source_arguments(remove_parser)
    remove_parser.add_argument(
        "--no-progress",
        action="store_true",
        help="Disable the terminal progress bar.",
    )

    # Register diagnostic command.
    subparsers.add_parser("doctor", help="Report runtime dependency diagnostics.")
    return parser.parse_args(argv)


if __name__ == "__main__":
    raise SystemExit(main())
