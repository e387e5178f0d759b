#!/usr/bin/env python3
"""
  ❄  S N O W F L A K E   B O U N C E  ❄
  A terminal screensaver in the spirit of the old DVD logo.

  A single snowflake drifts across the terminal and reflects off every
  edge it touches. It never clips and never leaves the screen, even when
  the terminal shrinks underneath it. Hit a corner and you get bragging
  rights (and a line in the stats log).

  Controls:
    c         cycle color           s         cycle size
    f         toggle easter egg     q         quit

  Telemetry is written to CSV with --log PATH.
"""

from __future__ import annotations

import argparse
import curses
import locale
import math
import random
import signal
import sys
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import IO, ClassVar, Iterator

import numpy as np
from numpy.typing import NDArray

__version__ = "0.3.0"

PROG = "snowflake-bounce"

# ── Timing ──────────────────────────────────────────────────────────────
DEFAULT_FPS: int = 20
MIN_FPS: int = 1
MAX_FPS: int = 120
HEARTBEAT_TICKS: int = 100  # ticks between periodic stats rows

# Terminal cells are roughly twice as tall as they are wide, so vertical
# speed is halved to make diagonal motion look diagonal.
ASPECT_Y: float = 0.5

BLANK = " "


# ═══════════════════════════════════════════════════════════════════════
#  Cyclic enumerations
# ═══════════════════════════════════════════════════════════════════════

def _cycle(member: Enum) -> Enum:
    members = list(type(member))
    return members[(members.index(member) + 1) % len(members)]


class Color(Enum):
    """Glyph palette. Values are curses color numbers."""

    WHITE = curses.COLOR_WHITE
    CYAN = curses.COLOR_CYAN
    BLUE = curses.COLOR_BLUE
    MAGENTA = curses.COLOR_MAGENTA
    RED = curses.COLOR_RED
    YELLOW = curses.COLOR_YELLOW
    GREEN = curses.COLOR_GREEN

    def next(self) -> Color:
        return _cycle(self)  # type: ignore[return-value]


class Size(Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"

    def next(self) -> Size:
        return _cycle(self)  # type: ignore[return-value]


class Mode(Enum):
    NORMAL = "normal"
    EASTER_EGG = "easter_egg"

    def toggled(self) -> Mode:
        return Mode.EASTER_EGG if self is Mode.NORMAL else Mode.NORMAL


# ── Glyphs ──────────────────────────────────────────────────────────────
# Spaces are transparent. Rows are padded to a common width on load.
GLYPH_ART: dict[tuple[Mode, Size], list[str]] = {
    (Mode.NORMAL, Size.SMALL): ["\u2744"],  # ❄
    (Mode.NORMAL, Size.MEDIUM): [
        " \\|/ ",
        "--*--",
        " /|\\ ",
    ],
    (Mode.NORMAL, Size.LARGE): [
        " \\  |  / ",
        "  \\ | /  ",
        "---(*)---",
        "  / | \\  ",
        " /  |  \\ ",
    ],
    (Mode.EASTER_EGG, Size.SMALL): ["\u00a1"],  # ¡
    (Mode.EASTER_EGG, Size.MEDIUM): [
        "  n  ",
        " |.| ",
        "(|||)",
    ],
    (Mode.EASTER_EGG, Size.LARGE): [
        "    _    ",
        "   |.|   ",
        "   |.|   ",
        " _ |.| _ ",
        "|.||.||.|",
        "|       |",
        " \\_____/ ",
    ],
}


def _shape_array(rows: list[str]) -> NDArray[np.str_]:
    width = max(len(r) for r in rows)
    return np.array([list(r.ljust(width)) for r in rows], dtype="<U1")


SHAPES: dict[tuple[Mode, Size], NDArray[np.str_]] = {
    key: _shape_array(rows) for key, rows in GLYPH_ART.items()
}


# ═══════════════════════════════════════════════════════════════════════
#  State
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Viewport:
    """Terminal drawing surface, in character cells."""
    width: int
    height: int

    def __post_init__(self) -> None:
        for dim in (self.width, self.height):
            if not isinstance(dim, int) or isinstance(dim, bool) or dim < 1:
                raise ValueError(
                    f"viewport dimensions must be positive ints, got "
                    f"{self.width!r}x{self.height!r}"
                )


@dataclass(frozen=True)
class GlyphState:
    """Position (top-left of bounding box), velocity and looks of the glyph."""
    x: float
    y: float
    dx: float
    dy: float
    color: Color = Color.WHITE
    size: Size = Size.SMALL
    mode: Mode = Mode.NORMAL

    def __post_init__(self) -> None:
        for v in (self.dx, self.dy):
            if not math.isfinite(v) or v == 0:
                raise ValueError("glyph velocity components must be finite and non-zero")


# ── Input events ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ChangeColor:
    pass


@dataclass(frozen=True)
class ChangeSize:
    pass


@dataclass(frozen=True)
class ToggleEasterEgg:
    pass


@dataclass(frozen=True)
class Quit:
    pass


@dataclass(frozen=True)
class Tick:
    pass


@dataclass(frozen=True)
class Resize:
    width: int
    height: int


InputEvent = ChangeColor | ChangeSize | ToggleEasterEgg | Quit | Tick | Resize

TICK = Tick()


# ═══════════════════════════════════════════════════════════════════════
#  Geometry
# ═══════════════════════════════════════════════════════════════════════

def effective_size(size: Size, mode: Mode, viewport: Viewport) -> Size:
    """Largest tier up to ``size`` whose shape fits inside the viewport.

    SMALL is 1x1 and always fits, so the position invariant holds on
    arbitrarily small terminals.
    """
    tiers = list(Size)
    for tier in reversed(tiers[: tiers.index(size) + 1]):
        h, w = SHAPES[(mode, tier)].shape
        if w <= viewport.width and h <= viewport.height:
            return tier
    return Size.SMALL


def glyph_shape(glyph: GlyphState, viewport: Viewport) -> NDArray[np.str_]:
    return SHAPES[(glyph.mode, effective_size(glyph.size, glyph.mode, viewport))]


def glyph_box(glyph: GlyphState, viewport: Viewport) -> tuple[int, int]:
    """Effective bounding box as (width, height)."""
    h, w = glyph_shape(glyph, viewport).shape
    return w, h


def clamp(glyph: GlyphState, viewport: Viewport) -> GlyphState:
    """Pull the glyph's bounding box back inside the viewport (never wraps)."""
    w, h = glyph_box(glyph, viewport)
    x = max(0.0, min(float(glyph.x), float(viewport.width - w)))
    y = max(0.0, min(float(glyph.y), float(viewport.height - h)))
    if x == glyph.x and y == glyph.y:
        return glyph
    return replace(glyph, x=x, y=y)


def _reflect(pos: float, vel: float, limit: int) -> tuple[float, float]:
    candidate = pos + vel
    if candidate > limit:
        return float(limit), -vel
    if candidate < 0:
        return 0.0, -vel
    return candidate, vel


def advance(glyph: GlyphState, viewport: Viewport) -> GlyphState:
    """Move one tick, reflecting in place on each axis independently."""
    w, h = glyph_box(glyph, viewport)
    x, dx = _reflect(glyph.x, glyph.dx, viewport.width - w)
    y, dy = _reflect(glyph.y, glyph.dy, viewport.height - h)
    return replace(glyph, x=x, y=y, dx=dx, dy=dy)


def reflections(before: GlyphState, after: GlyphState) -> str:
    """Classify a tick: "", "bounce:x", "bounce:y" or "corner"."""
    flip_x = (before.dx > 0) != (after.dx > 0)
    flip_y = (before.dy > 0) != (after.dy > 0)
    if flip_x and flip_y:
        return "corner"
    if flip_x:
        return "bounce:x"
    if flip_y:
        return "bounce:y"
    return ""


def random_glyph(
    viewport: Viewport,
    rng: random.Random,
    color: Color | None = None,
    size: Size | None = None,
    speed: float = 1.0,
) -> GlyphState:
    """A glyph at a random in-bounds spot heading in a random diagonal."""
    if not math.isfinite(speed) or speed <= 0:
        raise ValueError("speed must be a positive finite number")
    color = color if color is not None else rng.choice(list(Color))
    size = size if size is not None else rng.choice(list(Size))
    h, w = SHAPES[(Mode.NORMAL, effective_size(size, Mode.NORMAL, viewport))].shape
    return GlyphState(
        x=float(rng.randint(0, viewport.width - w)),
        y=float(rng.randint(0, viewport.height - h)),
        dx=speed * rng.choice((-1, 1)),
        dy=speed * ASPECT_Y * rng.choice((-1, 1)),
        color=color,
        size=size,
    )


# ═══════════════════════════════════════════════════════════════════════
#  Frame buffer
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class FrameBuffer:
    """One full frame: a (height, width) grid of characters in one color."""
    chars: NDArray[np.str_]
    color: Color

    @property
    def height(self) -> int:
        return int(self.chars.shape[0])

    @property
    def width(self) -> int:
        return int(self.chars.shape[1])

    def rows(self) -> list[str]:
        return ["".join(row) for row in self.chars.tolist()]

    def glyph_rows(self) -> Iterator[tuple[int, int, str]]:
        """Yield (row, col, text) spans covering every non-blank cell."""
        mask = self.chars != BLANK
        for row in np.flatnonzero(mask.any(axis=1)).tolist():
            cols = np.flatnonzero(mask[row])
            c0, c1 = int(cols[0]), int(cols[-1]) + 1
            yield row, c0, "".join(self.chars[row, c0:c1].tolist())

    def __str__(self) -> str:
        return "\n".join(self.rows())


def render(glyph: GlyphState, viewport: Viewport) -> FrameBuffer:
    chars = np.full((viewport.height, viewport.width), BLANK, dtype="<U1")
    shape = glyph_shape(glyph, viewport)
    h, w = shape.shape
    # Rounding stays in bounds: clamp limits are whole numbers.
    x = min(max(int(round(glyph.x)), 0), viewport.width - w)
    y = min(max(int(round(glyph.y)), 0), viewport.height - h)
    opaque = shape != BLANK
    chars[y : y + h, x : x + w][opaque] = shape[opaque]
    return FrameBuffer(chars=chars, color=glyph.color)


# ═══════════════════════════════════════════════════════════════════════
#  The engine
# ═══════════════════════════════════════════════════════════════════════

class Bouncer:
    """
    Owns the glyph and the viewport and reacts to input events.

    Two states: running and terminated. Quit moves to terminated exactly
    once; after that every event is ignored.
    """

    def __init__(
        self,
        viewport: Viewport,
        glyph: GlyphState | None = None,
        bounce_color: bool = False,
        rng: random.Random | None = None,
    ) -> None:
        self.viewport: Viewport = viewport
        self.rng: random.Random = rng if rng is not None else random.Random()
        if glyph is None:
            glyph = random_glyph(viewport, self.rng)
        self.glyph: GlyphState = clamp(glyph, viewport)
        self.bounce_color: bool = bounce_color
        self.running: bool = True

        # ── Telemetry (readable by the stats logger) ────────────────
        self.ticks: int = 0
        self.bounces: int = 0
        self.corners: int = 0
        self.last_event: str = ""  # event produced by the latest input

    def handle_input(self, event: object) -> bool:
        """Apply one event. Returns whether the engine is still running."""
        self.last_event = ""
        if not self.running:
            return False

        if isinstance(event, Tick):
            self._tick()
        elif isinstance(event, ChangeColor):
            self.glyph = replace(self.glyph, color=self.glyph.color.next())
            self.last_event = f"key:color={self.glyph.color.name.lower()}"
        elif isinstance(event, ChangeSize):
            self.glyph = clamp(
                replace(self.glyph, size=self.glyph.size.next()), self.viewport
            )
            self.last_event = f"key:size={self.glyph.size.value}"
        elif isinstance(event, ToggleEasterEgg):
            self.glyph = clamp(
                replace(self.glyph, mode=self.glyph.mode.toggled()), self.viewport
            )
            self.last_event = f"key:mode={self.glyph.mode.value}"
        elif isinstance(event, Resize):
            self._resize(event.width, event.height)
        elif isinstance(event, Quit):
            self.running = False
            self.last_event = "quit"
        return self.running

    def _tick(self) -> None:
        before = self.glyph
        after = advance(before, self.viewport)
        self.ticks += 1
        hit = reflections(before, after)
        if hit:
            self.bounces += 1
            if hit == "corner":
                self.corners += 1
            if self.bounce_color:
                after = replace(after, color=after.color.next())
        self.glyph = after
        self.last_event = hit

    def _resize(self, width: object, height: object) -> None:
        try:
            viewport = Viewport(width, height)  # type: ignore[arg-type]
        except ValueError:
            return
        self.viewport = viewport
        self.glyph = clamp(self.glyph, viewport)
        self.last_event = f"resize:{width}x{height}"

    def render(self) -> FrameBuffer:
        return render(self.glyph, self.viewport)


# ═══════════════════════════════════════════════════════════════════════
#  Stats logger
# ═══════════════════════════════════════════════════════════════════════

class StatsLogger:
    """Writes engine telemetry to CSV for post-hoc inspection."""

    HEADER: ClassVar[str] = (
        "tick,time_s,x,y,dx,dy,color,size,mode,width,height,event\n"
    )

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh: IO[str] | None = None
        self._t0: float = time.monotonic()

    def open(self) -> None:
        try:
            self._fh = open(self._path, "w")
            self._fh.write(self.HEADER)
            self._fh.flush()
        except OSError:
            self._fh = None

    def log(
        self,
        tick: int,
        glyph: GlyphState,
        viewport: Viewport,
        event: str = "",
    ) -> None:
        if self._fh is None:
            return
        t = time.monotonic() - self._t0
        try:
            self._fh.write(
                f"{tick},{t:.2f},{glyph.x:.2f},{glyph.y:.2f},"
                f"{glyph.dx:g},{glyph.dy:g},{glyph.color.name.lower()},"
                f"{glyph.size.value},{glyph.mode.value},"
                f"{viewport.width},{viewport.height},{event}\n"
            )
            # Flush on events or periodically
            if event or tick % HEARTBEAT_TICKS == 0:
                self._fh.flush()
        except OSError:
            pass

    def close(self) -> None:
        if self._fh is not None:
            try:
                self._fh.close()
            except OSError:
                pass
            self._fh = None


# ═══════════════════════════════════════════════════════════════════════
#  Terminal (curses)
# ═══════════════════════════════════════════════════════════════════════

class TerminalError(RuntimeError):
    """The terminal surface refused a frame; the session cannot continue."""


KEYMAP: dict[int, InputEvent] = {
    ord("c"): ChangeColor(), ord("C"): ChangeColor(),
    ord("s"): ChangeSize(), ord("S"): ChangeSize(),
    ord("f"): ToggleEasterEgg(), ord("F"): ToggleEasterEgg(),
    ord("q"): Quit(), ord("Q"): Quit(),
}


def event_for_key(key: int) -> InputEvent | None:
    """Map a getch() code to an event; unknown keys map to None."""
    return KEYMAP.get(key)


@dataclass
class ColorMap:
    """One curses color pair per palette color, on the default background."""

    _attrs: dict[Color, int] = field(default_factory=dict)

    def setup(self) -> None:
        if not curses.has_colors():
            return
        curses.start_color()
        try:
            curses.use_default_colors()
            background = -1
        except curses.error:
            background = curses.COLOR_BLACK

        for pair_id, color in enumerate(Color, start=1):
            if pair_id >= curses.COLOR_PAIRS:
                break
            curses.init_pair(pair_id, color.value, background)
            self._attrs[color] = curses.color_pair(pair_id) | curses.A_BOLD

    def attr(self, color: Color) -> int:
        return self._attrs.get(color, curses.A_BOLD)


def blit(stdscr: curses.window, frame: FrameBuffer, cmap: ColorMap) -> None:
    """Full-frame redraw of ``frame`` onto the screen.

    Spans that fall outside the current screen (a resize not yet handled)
    are clipped. Writing the bottom-right cell makes curses raise after the
    character is drawn; that error is ignored. Anything else is fatal.
    """
    max_y, max_x = stdscr.getmaxyx()
    attr = cmap.attr(frame.color)
    try:
        stdscr.erase()
        for row, col, text in frame.glyph_rows():
            if row >= max_y or col >= max_x:
                continue
            text = text[: max_x - col]
            try:
                stdscr.addstr(row, col, text, attr)
            except curses.error:
                if row == max_y - 1 and col + len(text) == max_x:
                    continue
                raise
        stdscr.refresh()
    except curses.error as exc:
        raise TerminalError(f"unable to write frame: {exc}") from exc


def animate(
    stdscr: curses.window,
    bouncer: Bouncer,
    cmap: ColorMap,
    fps: int = DEFAULT_FPS,
    logger: StatsLogger | None = None,
) -> None:
    """Cooperative loop: wait for input until the next frame is due, then tick.

    Returns when the bouncer stops running. TerminalError propagates.
    """
    if fps <= 0:
        raise ValueError(f"fps must be positive, got {fps!r}")
    frame_s = 1.0 / fps
    deadline = time.monotonic() + frame_s
    blit(stdscr, bouncer.render(), cmap)

    while bouncer.running:
        wait_ms = max(0, int((deadline - time.monotonic()) * 1000))
        stdscr.timeout(wait_ms)
        try:
            key = stdscr.getch()
        except curses.error:
            key = -1

        if key != -1:
            # ── Input ──────────────────────────────────────────────
            if key == curses.KEY_RESIZE:
                max_y, max_x = stdscr.getmaxyx()
                event: InputEvent | None = Resize(max_x, max_y)
            else:
                event = event_for_key(key)
            if event is None:
                continue
            bouncer.handle_input(event)
            _log(logger, bouncer)
            if bouncer.running:
                blit(stdscr, bouncer.render(), cmap)
            continue

        # ── Tick ───────────────────────────────────────────────────
        bouncer.handle_input(TICK)
        _log(logger, bouncer)
        blit(stdscr, bouncer.render(), cmap)
        # Drop missed frames rather than bursting to catch up
        deadline += frame_s
        now = time.monotonic()
        if deadline < now:
            deadline = now + frame_s


def _log(logger: StatsLogger | None, bouncer: Bouncer) -> None:
    if logger is None:
        return
    if bouncer.last_event or bouncer.ticks % HEARTBEAT_TICKS == 0:
        logger.log(bouncer.ticks, bouncer.glyph, bouncer.viewport, bouncer.last_event)


# ═══════════════════════════════════════════════════════════════════════
#  Main
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Options:
    fps: int = DEFAULT_FPS
    color: Color | None = None
    size: Size | None = None
    speed: float = 1.0
    bounce_color: bool = False
    seed: int | None = None
    log_path: Path | None = None


def main(stdscr: curses.window, options: Options) -> None:
    """curses.wrapper target: set up the screen and animate until quit."""
    try:
        curses.curs_set(0)
    except curses.error:
        pass  # terminal cannot hide the cursor

    cmap = ColorMap()
    cmap.setup()

    max_y, max_x = stdscr.getmaxyx()
    viewport = Viewport(max(1, max_x), max(1, max_y))
    rng = random.Random(options.seed)
    glyph = random_glyph(
        viewport, rng, color=options.color, size=options.size, speed=options.speed
    )
    bouncer = Bouncer(viewport, glyph, bounce_color=options.bounce_color, rng=rng)

    logger: StatsLogger | None = None
    if options.log_path is not None:
        logger = StatsLogger(options.log_path)
        logger.open()

    try:
        animate(stdscr, bouncer, cmap, fps=options.fps, logger=logger)
    finally:
        if logger is not None:
            logger.close()


class SignalExit(Exception):
    """Raised from a signal handler so curses.wrapper can restore the tty."""

    def __init__(self, signum: int) -> None:
        super().__init__(f"terminated by signal {signum}")
        self.signum = signum


def _raise_signal_exit(signum: int, frame: object) -> None:
    raise SignalExit(signum)


def _fps(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: {text!r}")
    if not MIN_FPS <= value <= MAX_FPS:
        raise argparse.ArgumentTypeError(f"fps must be {MIN_FPS}-{MAX_FPS}")
    return value


def _speed(text: str) -> float:
    try:
        value = float(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid float value: {text!r}")
    if not math.isfinite(value) or value <= 0:
        raise argparse.ArgumentTypeError("speed must be a positive finite number")
    return value


def _enum_arg(enum_cls: type[Enum]):
    def parse(text: str) -> Enum:
        try:
            return enum_cls[text.upper()]
        except KeyError:
            choices = ", ".join(m.name.lower() for m in enum_cls)
            raise argparse.ArgumentTypeError(
                f"invalid choice: {text!r} (choose from {choices})"
            )
    parse.__name__ = enum_cls.__name__.lower()
    return parse


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PROG,
        description="A snowflake bouncing around your terminal, DVD-logo style. "
                    "Keys: c color, s size, f easter egg, q quit.",
    )
    parser.add_argument("-V", "--version", action="version",
                        version=f"{PROG} {__version__}")
    parser.add_argument("--fps", type=_fps, default=DEFAULT_FPS,
                        help=f"Frames per second (default: {DEFAULT_FPS})")
    parser.add_argument("--color", type=_enum_arg(Color), default=None,
                        help="Initial color (default: random)")
    parser.add_argument("--size", type=_enum_arg(Size), default=None,
                        help="Initial size: small, medium or large (default: random)")
    parser.add_argument("--speed", type=_speed, default=1.0,
                        help="Horizontal cells per frame (default: 1.0)")
    parser.add_argument("--bounce-color", action="store_true",
                        help="Change color on every wall hit")
    parser.add_argument("--seed", type=int, default=None,
                        help="Seed for the random starting position")
    parser.add_argument("--log", type=Path, default=None, metavar="PATH",
                        help="Write engine telemetry to this CSV file")
    return parser


def cli(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    options = Options(
        fps=args.fps,
        color=args.color,
        size=args.size,
        speed=args.speed,
        bounce_color=args.bounce_color,
        seed=args.seed,
        log_path=args.log,
    )

    try:
        locale.setlocale(locale.LC_ALL, "")
    except locale.Error:
        pass  # fall back to the C locale; ASCII sizes still render

    for signum in (signal.SIGTERM, signal.SIGQUIT):
        signal.signal(signum, _raise_signal_exit)

    try:
        curses.wrapper(main, options)
    except TerminalError as exc:
        print(f"{PROG}: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130
    except SignalExit as exc:
        return 128 + exc.signum
    return 0


if __name__ == "__main__":
    sys.exit(cli())
