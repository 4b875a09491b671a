from __future__ import annotations

import argparse
import logging
import sys
import threading
from pathlib import Path

from chiptrack.errors import ChiptrackError
from chiptrack.util.config import AppConfig, load_config

_LOGGER = logging.getLogger("chiptrack.cli")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="chiptrack",
        add_help=True,
        formatter_class=argparse.RawTextHelpFormatter,
        description="chiptrack: pattern-based retro music tracker (render, export, play)\n",
    )

    p.add_argument("--version", action="store_true", help="Print version and exit.")
    p.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-v info, -vv debug).")
    p.add_argument("--config", default=None, help="Path to config JSON (default: ~/.config/chiptrack/config.json)")

    sub = p.add_subparsers(dest="cmd")

    render = sub.add_parser("render", help="Render a song document (.json/.yaml) to WAV.")
    render.add_argument("song", help="Path to a song document")
    render.add_argument("-o", "--out", required=True, help="Output .wav path")
    render.add_argument("--sample-rate", type=int, default=None, dest="sample_rate")
    render.add_argument("--bit-depth", type=int, default=None, dest="bit_depth", choices=[8, 16, 24, 32])
    render.add_argument("--channels", type=int, default=None, dest="audio_channels", choices=[1, 2])

    exp = sub.add_parser("export-json", help="Write the song document as JSON (with export metadata).")
    exp.add_argument("song", help="Path to a song document")
    exp.add_argument("-o", "--out", required=True, help="Output .json path ('-' for stdout)")

    info = sub.add_parser("info", help="Print duration, patterns and loop validation for a song.")
    info.add_argument("song", help="Path to a song document")

    play = sub.add_parser("play", help="Play a song in real time to a MIDI output port.")
    play.add_argument("song", help="Path to a song document")
    play.add_argument("--midi-out", default=None, dest="midi_out", help="MIDI output port name")
    play.add_argument("--dry-run", action="store_true", help="Run the scheduler against a virtual clock; print events.")

    sub.add_parser("midi-ports", help="List available MIDI output ports.")

    return p


def _setup_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")


def _cmd_render(args: argparse.Namespace, cfg: AppConfig) -> None:
    from chiptrack.audio.export import AudioExporter, ExportOptions
    from chiptrack.io.song_json import load_project

    project = load_project(args.song, default_channel_count=cfg.max_channels)
    opts = ExportOptions(
        sample_rate=args.sample_rate or cfg.sample_rate,
        bit_depth=args.bit_depth or cfg.bit_depth,
        audio_channels=args.audio_channels or cfg.audio_channels,
    )
    res = AudioExporter().export_to_file(project, args.out, opts)
    print(f"wrote {args.out} ({res.duration:.2f}s, {res.size} bytes)")


def _cmd_export_json(args: argparse.Namespace, cfg: AppConfig) -> None:
    from chiptrack.io.song_json import export_song_data, load_project

    res = export_song_data(load_project(args.song, default_channel_count=cfg.max_channels))
    if str(args.out).strip() == "-":
        sys.stdout.write(res.data + "\n")
        return
    out = Path(args.out).expanduser()
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(res.data + "\n", encoding="utf-8")
    print(f"wrote {out} ({res.size} bytes)")


def _cmd_info(args: argparse.Namespace, cfg: AppConfig) -> None:
    from chiptrack.audio.render import calculate_duration
    from chiptrack.io.song_json import load_project

    project = load_project(args.song, default_channel_count=cfg.max_channels)
    song = project.song
    print(f"title: {song.name}")
    print(f"bpm: {song.bpm}")
    print(f"repeat: {song.repeat_count}")
    print(f"channels: {project.channel_count}")
    print(f"patterns: {', '.join(p.id for p in project.patterns) or '(none)'}")
    print(f"order: {' '.join(song.play_order(include_song_repeats=False)) or '(empty)'}")
    print(f"finite loop: {'yes' if song.validate_finite_loop() else 'NO'}")
    print(f"duration: {calculate_duration(project):.3f}s")


def _cmd_play(args: argparse.Namespace, cfg: AppConfig) -> None:
    from chiptrack.audio.driver import ThreadTimer
    from chiptrack.audio.mixer import ChannelMixer
    from chiptrack.audio.scheduler import PlaybackEngine
    from chiptrack.audio.synth import Synthesizer, SynthesizerConfig
    from chiptrack.io.song_json import load_project

    project = load_project(args.song, default_channel_count=cfg.max_channels)

    if args.dry_run:
        _dry_run(project, cfg)
        return

    from chiptrack.audio.midi_sink import MidiAudioContext

    port_name = args.midi_out or cfg.midi_out
    if not port_name:
        raise SystemExit("ERROR: play requires --midi-out <port> (see: chiptrack midi-ports) or --dry-run")
    try:
        ctx = MidiAudioContext.open(port_name)
    except (OSError, IOError) as e:
        raise SystemExit(f"ERROR: Could not open MIDI output '{port_name}' ({e}). Run: chiptrack midi-ports")

    mixer = ChannelMixer(ctx, max_channels=project.channel_count, master_volume=cfg.master_volume)
    synth = Synthesizer(
        ctx,
        mixer.connect_channel,
        SynthesizerConfig(attack=cfg.attack, release=cfg.release),
        disconnect=mixer.disconnect_node,
    )
    for ch in project.channels:
        synth.set_waveform(ch.id, ch.waveform)
        mixer.set_channel_volume(ch.id, ch.volume)

    done = threading.Event()
    engine = PlaybackEngine(
        ctx,
        synth,
        lookahead=cfg.lookahead,
        interval=cfg.interval,
        steps_per_beat=project.steps_per_beat,
        timer=ThreadTimer(cfg.interval, after_tick=ctx.pump),
    )
    engine.on_complete(done.set)

    print(f"playing {project.song.name!r} to MIDI out: {port_name}")
    engine.start_song(project.song, project.patterns)
    try:
        while not done.wait(0.1):
            pass
        ctx.drain(timeout=cfg.release + 2.0)
    except KeyboardInterrupt:
        engine.stop()
    finally:
        ctx.close()


def _dry_run(project, cfg: AppConfig) -> None:
    from chiptrack.audio.driver import ManualTimer
    from chiptrack.audio.mixer import ChannelMixer
    from chiptrack.audio.render import calculate_duration
    from chiptrack.audio.scheduler import PlaybackEngine
    from chiptrack.audio.synth import Synthesizer, SynthesizerConfig
    from chiptrack.audio.virtual import VirtualAudioContext

    ctx = VirtualAudioContext()
    mixer = ChannelMixer(ctx, max_channels=project.channel_count, master_volume=cfg.master_volume)
    synth = Synthesizer(ctx, mixer.connect_channel, SynthesizerConfig(attack=cfg.attack, release=cfg.release), disconnect=mixer.disconnect_node)
    for ch in project.channels:
        synth.set_waveform(ch.id, ch.waveform)

    timer = ManualTimer()
    engine = PlaybackEngine(ctx, synth, lookahead=cfg.lookahead, interval=cfg.interval, steps_per_beat=project.steps_per_beat, timer=timer)
    engine.start_song(project.song, project.patterns)

    # Bounded by the song length plus slack, in case something never completes.
    limit = calculate_duration(project) + 10.0
    while not engine.is_complete() and ctx.current_time < limit:
        ctx.advance(cfg.interval)
        timer.fire()

    for tone in ctx.scheduled_tones():
        print(f"{tone.start:9.4f}s  {tone.waveform:<8} {tone.frequency:9.2f} Hz  until {tone.stop:.4f}s")
    status = "complete" if engine.is_complete() else "did not complete"
    print(f"{len(ctx.oscillators)} notes, {status} at {ctx.current_time:.3f}s")


def main(argv: list[str] | None = None) -> None:
    argv = list(sys.argv[1:] if argv is None else argv)

    parser = build_parser()
    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    if getattr(args, "version", False):
        try:
            from importlib.metadata import version

            v = version("chiptrack")
        except Exception:
            v = "0.0.0"
        print(f"chiptrack {v}")
        return

    cfg = load_config(Path(args.config).expanduser() if args.config else None)

    try:
        if args.cmd == "render":
            _cmd_render(args, cfg)
            return
        if args.cmd == "export-json":
            _cmd_export_json(args, cfg)
            return
        if args.cmd == "info":
            _cmd_info(args, cfg)
            return
        if args.cmd == "play":
            _cmd_play(args, cfg)
            return
    except (ChiptrackError, OSError) as e:
        _LOGGER.debug("command failed", exc_info=True)
        raise SystemExit(f"ERROR: {e}")

    if args.cmd == "midi-ports":
        try:
            import mido

            names = mido.get_output_names()
        except Exception as e:
            raise SystemExit(f"ERROR: Could not list MIDI ports ({e}). Try: pip install python-rtmidi")

        if not names:
            print("(no MIDI output ports found)")
        else:
            for n in names:
                print(n)
        return

    parser.print_help()


if __name__ == "__main__":
    main()
