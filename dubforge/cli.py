"""Command-line entry point: builds a Manifest and runs the engine."""

import argparse
import json
import logging
import sys
from pathlib import Path

from dubforge import ffutil
from dubforge.engine import process
from dubforge.manifest import (
    Manifest,
    StretchConfig,
    SubtitleConfig,
    load_manifest,
    parse_segments,
)
from dubforge.planner import select_algorithm


def _load_segments_file(path: Path):
    data = json.loads(path.read_text())
    if isinstance(data, dict):
        data = data.get("segments", [])
    return parse_segments(data)


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="dubforge",
        description="DubForge: fit dubbed speech clips to video timestamps.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    comp = sub.add_parser("compose", help="Compose a dubbed video")
    comp.add_argument("video", nargs="?", type=Path, help="Input video file")
    comp.add_argument("--manifest", "-m", type=Path, help="Path to a JSON manifest file")
    comp.add_argument("--segments", "-s", type=Path, help="JSON file with [{start, end, ...}]")
    comp.add_argument("--audio", "-a", type=Path, nargs="+", default=[], help="One clip per segment, in order")
    comp.add_argument("--output", "-o", type=Path, help="Output file path")
    comp.add_argument("--duration", type=float, help="Total duration (default: probed from video)")
    comp.add_argument("--subtitles", type=Path, help="Subtitle file to burn in")
    comp.add_argument("--subtitles-from-text", action="store_true", help="Burn in segment text as subtitles")
    comp.add_argument("--max-stretch", type=float, help="Override the stretch ceiling")
    comp.add_argument("--segment-timeout", type=float, default=300.0, help="Per-segment time budget (seconds)")
    comp.add_argument("--work-dir", type=Path, help="Directory for intermediate files")

    sub.add_parser("capabilities", help="Show which time-stretch filter will be used")

    serve = sub.add_parser("serve", help="Launch the HTTP API")
    serve.add_argument("--port", type=int, default=3000, help="Port to listen on")
    serve.add_argument("--host", type=str, default="127.0.0.1", help="Host to bind to")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "capabilities":
        algorithm = select_algorithm(ffutil.detect_capabilities())
        print(f"Time-stretch filter: {algorithm.name}")
        print(f"  Pitch-preserving: {'yes' if algorithm.preserves_pitch else 'no'}")
        print(f"  Max stretch: {algorithm.max_stretch}x")
        return

    if args.command == "serve":
        from dubforge.web import create_app
        app = create_app()
        print(f"DubForge API: http://{args.host}:{args.port}")
        app.run(host=args.host, port=args.port, debug=False, threaded=True)
        return

    if args.manifest:
        m = load_manifest(args.manifest)
    elif args.video and args.segments:
        segments, clips = _load_segments_file(args.segments)
        stretch = StretchConfig(segment_timeout=args.segment_timeout)
        if args.max_stretch:
            stretch.rubberband_max_stretch = args.max_stretch
            stretch.atempo_max_stretch = args.max_stretch
        m = Manifest(
            video=args.video,
            output=args.output or args.video.with_stem(args.video.stem + "_dubbed"),
            segments=segments,
            clips=list(args.audio) or clips,
            duration=args.duration,
            work_dir=args.work_dir,
            subtitles=SubtitleConfig(
                path=args.subtitles,
                from_segments=args.subtitles_from_text,
            ),
            stretch=stretch,
        )
    else:
        print("Error: provide VIDEO with --segments, or --manifest.", file=sys.stderr)
        sys.exit(1)

    def on_progress(stage: str, frac: float) -> None:
        print(f"  [{frac:3.0%}] {stage}")

    result = process(m, on_progress=on_progress)

    print()
    print(f"Done! Output: {result.output_path}")
    print(f"  Filter: {result.algorithm}")
    if result.summary:
        s = result.summary
        print(f"  Segments adjusted: {s.adjusted_count}/{s.total_segments}")
        print(f"  Audio: {s.total_original:.1f}s -> {s.total_final:.1f}s")
        if s.compression_pct is not None:
            print(f"  Compression: {s.compression_pct:.1f}%")
    if result.subtitle_burned:
        print("  Subtitles burned in")


if __name__ == "__main__":
    main()
