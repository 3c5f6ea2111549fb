#!/usr/bin/env python3
"""
CHIP-8 Command-Line Runner
==========================
Loads a ROM image and runs it in a pygame window, or headless in the
terminal.

Usage:
  python cli.py ROM [--scale N] [--speed HZ] [--fps N] [--seed N]
                    [--headless] [--cycles N] [--mute]

Keys:
  1 2 3 4 / Q W E R / A S D F / Z X C V  ->  keypad 123C / 456D / 789E / A0BF
  Esc or closing the window quits.
"""

from __future__ import annotations
import argparse
import random
import sys
from typing import Optional

from chip8 import Chip8, Chip8Error, CPU_FREQUENCY
from display import (Beeper, Chip8Display, DisplayUnavailable,
                     HeadlessDisplay, NullBeeper, DEFAULT_SCALE, render_ascii)
from system import Chip8System, DEFAULT_FPS

DEFAULT_HEADLESS_CYCLES = 10_000


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chip8",
        description="CHIP-8 interpreter",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Examples:\n"
               "  python cli.py pong.ch8\n"
               "  python cli.py pong.ch8 --scale 10 --speed 1000\n"
               "  python cli.py ibm_logo.ch8 --headless --cycles 200\n"
    )
    parser.add_argument("rom", help="Path to the ROM image")
    parser.add_argument("--scale", type=int, default=DEFAULT_SCALE, metavar="N",
                        help=f"Pixel scale factor for the window (default: {DEFAULT_SCALE})")
    parser.add_argument("--speed", type=int, default=CPU_FREQUENCY, metavar="HZ",
                        help=f"Instructions per second (default: {CPU_FREQUENCY})")
    parser.add_argument("--fps", type=int, default=DEFAULT_FPS,
                        help=f"Display refresh rate (default: {DEFAULT_FPS})")
    parser.add_argument("--seed", type=int, default=None,
                        help="Seed for the RND instruction")
    parser.add_argument("--headless", action="store_true",
                        help="Run without a window and print the final "
                             "display as text")
    parser.add_argument("--cycles", type=int, default=None, metavar="N",
                        help="Stop after N instructions (headless default: "
                             f"{DEFAULT_HEADLESS_CYCLES})")
    parser.add_argument("--mute", action="store_true",
                        help="Disable the beeper")
    return parser


def _open_frontend(args):
    """Return (display, beeper) for the requested mode."""
    if args.headless:
        return HeadlessDisplay(), NullBeeper()

    display = Chip8Display(scale=args.scale)
    display.start()
    beeper = NullBeeper()
    if not args.mute:
        try:
            beeper = Beeper()
        except Exception as e:
            print(f"[audio] beeper unavailable: {e}", file=sys.stderr)
    return display, beeper


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    rng = random.Random(args.seed) if args.seed is not None else None
    cpu = Chip8(rng=rng)
    try:
        size = cpu.load_file(args.rom)
    except OSError as e:
        print(f"[chip8] cannot read ROM '{args.rom}': {e}", file=sys.stderr)
        return 1

    try:
        display, beeper = _open_frontend(args)
    except ImportError as e:
        print(f"[display] pygame not available: {e}", file=sys.stderr)
        print("[display] Install with: pip install pygame  "
              "(or run with --headless)", file=sys.stderr)
        return 1
    except DisplayUnavailable as e:
        print(f"[display] cannot open window: {e}", file=sys.stderr)
        print("[display] Run with --headless on hosts without a display",
              file=sys.stderr)
        return 1

    system = Chip8System(cpu, display, beeper, cpu_hz=args.speed,
                         fps=args.fps)
    print(f"[chip8] loaded {size} bytes from '{args.rom}'")

    max_cycles = args.cycles
    if args.headless and max_cycles is None:
        max_cycles = DEFAULT_HEADLESS_CYCLES

    status = 0
    try:
        system.run(max_cycles=max_cycles, realtime=not args.headless)
    except Chip8Error as e:
        print(f"[chip8] halted: {e}", file=sys.stderr)
        status = 1
    except KeyboardInterrupt:
        print("\nInterrupted.")
    finally:
        system.close()

    if args.headless:
        print(render_ascii(cpu.display()))
    return status


if __name__ == "__main__":
    sys.exit(main())
