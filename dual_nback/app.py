"""Pygame UI shell for the dual n-back trainer.

Screens:
- Main menu (Play, Progress, Mode, Manual Level, Quit)
- Session (3x3 grid, letter audio, A/L match keys)
- Progress (current stats, recent sessions, daily entries)

Deterministic timing/scoring/RNG/state lives in dual_nback/* (core modules).
"""

from __future__ import annotations

import datetime as dt
import math
import random
import sqlite3
from array import array
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import pygame

from .clock import RealClock
from .config import NBackConfig
from .log import configure_logging, get_logger
from .persistence import (
    default_db_path,
    load_day_entries,
    load_recent_sessions,
    load_settings,
    load_stats,
    open_db,
    record_session,
    save_settings,
)
from .results import SessionResult
from .scoring import Modality, ResponseState
from .session import SessionPhase, SessionSnapshot, TrialSession, build_trial_session
from .stimuli import AudioSymbol, Location

logger = get_logger(__name__)

WINDOW_SIZE = (960, 720)
TARGET_FPS = 60

BG = (3, 9, 78)
PANEL_BG = (8, 18, 104)
BORDER = (226, 236, 255)
TEXT_MAIN = (238, 245, 255)
TEXT_MUTED = (186, 200, 224)
ACTIVE_BG = (244, 248, 255)
ACTIVE_TEXT = (14, 26, 74)


class Screen(Protocol):
    def handle_event(self, event: pygame.event.Event) -> None: ...
    def render(self, surface: pygame.Surface) -> None: ...


@dataclass(frozen=True, slots=True)
class MenuItem:
    label: str
    action: Callable[[], None]
    value: Callable[[], str] | None = None

    def text(self) -> str:
        if self.value is None:
            return self.label
        return f"{self.label}: {self.value()}"


class App:
    """Screen stack. The bottom screen is the main menu and is never popped."""

    def __init__(self, surface: pygame.Surface) -> None:
        self._surface = surface
        self._stack: list[Screen] = []
        self._running = True

    @property
    def running(self) -> bool:
        return self._running

    @property
    def top(self) -> Screen | None:
        return self._stack[-1] if self._stack else None

    def push(self, screen: Screen) -> None:
        self._stack.append(screen)
        logger.debug("screen_pushed", screen=type(screen).__name__, depth=len(self._stack))

    def pop(self) -> bool:
        if len(self._stack) < 2:
            return False
        screen = self._stack.pop()
        logger.debug("screen_popped", screen=type(screen).__name__, depth=len(self._stack))
        return True

    def quit(self) -> None:
        self._running = False

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self.quit()
        elif self.top is not None:
            self.top.handle_event(event)

    def render(self) -> None:
        screen = self.top
        if screen is None:
            self._surface.fill(BG)
        else:
            screen.render(self._surface)


class _LetterAudio:
    """Plays the spoken letter for each trial.

    Uses ``assets/letters/<letter>.wav`` when present and falls back to a short
    synthesized tone per letter so the task stays playable without assets.
    """

    _sample_rate = 22050
    _amp = 32767
    _tone_hz: dict[AudioSymbol, float] = {
        AudioSymbol.C: 330.0,
        AudioSymbol.H: 392.0,
        AudioSymbol.K: 440.0,
        AudioSymbol.L: 494.0,
        AudioSymbol.Q: 523.0,
        AudioSymbol.R: 587.0,
        AudioSymbol.S: 659.0,
        AudioSymbol.T: 740.0,
    }

    def __init__(self, assets_dir: Path | None = None) -> None:
        self._available = False
        self._sounds: dict[AudioSymbol, pygame.mixer.Sound] = {}
        self._assets_dir = assets_dir or (Path(__file__).resolve().parents[1] / "assets" / "letters")
        self._channel: pygame.mixer.Channel | None = None

        try:
            if pygame.mixer.get_init() is None:
                pygame.mixer.init(frequency=self._sample_rate, size=-16, channels=1, buffer=512)
            for symbol in AudioSymbol:
                self._sounds[symbol] = self._load_letter(symbol)
            self._channel = pygame.mixer.Channel(0)
            self._available = True
        except pygame.error as exc:
            logger.warning("audio_unavailable", error=str(exc))
            self._available = False

    def play(self, audio: AudioSymbol) -> None:
        if not self._available:
            return
        assert self._channel is not None
        self._channel.play(self._sounds[audio])

    def stop(self) -> None:
        if self._available and self._channel is not None:
            self._channel.stop()

    def _load_letter(self, symbol: AudioSymbol) -> pygame.mixer.Sound:
        path = self._assets_dir / f"{symbol.value.lower()}.wav"
        if path.exists():
            try:
                return pygame.mixer.Sound(str(path))
            except pygame.error:
                logger.warning("letter_asset_unreadable", path=str(path))
        pcm = self._render_tone_pcm(self._tone_hz[symbol], 0.35, gain=0.35)
        return pygame.mixer.Sound(buffer=pcm.tobytes())

    def _render_tone_pcm(self, frequency_hz: float, duration_s: float, *, gain: float) -> array[int]:
        sample_count = max(1, int(self._sample_rate * duration_s))
        fade_n = max(1, int(self._sample_rate * 0.008))
        out = array("h")
        for idx in range(sample_count):
            envelope = 1.0
            if idx < fade_n:
                envelope = idx / float(fade_n)
            tail = sample_count - idx - 1
            if tail < fade_n:
                envelope = min(envelope, tail / float(fade_n))
            phase = (2.0 * math.pi * float(frequency_hz) * idx) / float(self._sample_rate)
            sample = math.sin(phase) * gain * max(0.0, envelope)
            out.append(int(max(-1.0, min(1.0, sample)) * self._amp))
        return out


class MenuScreen:
    def __init__(self, app: App, title: str, items: list[MenuItem], *, is_root: bool = False) -> None:
        self._app = app
        self._title = title
        self._items = items
        self._selected = 0
        self._is_root = is_root
        self._title_font = pygame.font.Font(None, 42)
        self._item_font = pygame.font.Font(None, 32)
        self._hint_font = pygame.font.Font(None, 22)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.KEYDOWN:
            self._handle_key(event.key)

    def _handle_key(self, key: int) -> None:
        if key in (pygame.K_UP, pygame.K_w):
            self._move(-1)
        elif key in (pygame.K_DOWN, pygame.K_s):
            self._move(1)
        elif key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
            self._activate()
        elif key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            self._back()

    def _move(self, delta: int) -> None:
        if not self._items:
            return
        self._selected = (self._selected + delta) % len(self._items)

    def _activate(self) -> None:
        if not self._items:
            return
        self._items[self._selected].action()

    def _back(self) -> None:
        if self._is_root:
            self._app.quit()
        else:
            self._app.pop()

    def render(self, surface: pygame.Surface) -> None:
        w, h = surface.get_size()
        surface.fill(BG)

        frame = pygame.Rect(20, 20, max(260, w - 40), max(220, h - 40))
        pygame.draw.rect(surface, PANEL_BG, frame)
        pygame.draw.rect(surface, BORDER, frame, 2)

        title = self._title_font.render(self._title, True, TEXT_MAIN)
        surface.blit(title, title.get_rect(midtop=(frame.centerx, frame.y + 24)))

        row_h = 44
        gap = 10
        y = frame.y + 100
        for idx, item in enumerate(self._items):
            row = pygame.Rect(frame.x + 60, y, frame.w - 120, row_h)
            selected = idx == self._selected
            if selected:
                pygame.draw.rect(surface, ACTIVE_BG, row)
            else:
                pygame.draw.rect(surface, (62, 84, 152), row, 1)
            color = ACTIVE_TEXT if selected else TEXT_MAIN
            text = self._item_font.render(item.text(), True, color)
            surface.blit(text, (row.x + 12, row.y + (row.h - text.get_height()) // 2))
            y += row_h + gap

        footer = "Enter/Space: Select  |  Esc/Backspace: Back"
        foot = self._hint_font.render(footer, True, TEXT_MUTED)
        surface.blit(foot, foot.get_rect(midbottom=(frame.centerx, frame.bottom - 10)))


class SessionScreen:
    """Runs one TrialSession; acts as its presenter."""

    CELL_SIZE = 150
    GRID_THICKNESS = 2

    def __init__(
        self,
        app: App,
        *,
        session_factory: Callable[["SessionScreen"], TrialSession],
        on_finished: Callable[[SessionResult], None],
        audio: _LetterAudio | None = None,
    ) -> None:
        self._app = app
        self._on_finished = on_finished
        self._audio = audio
        self._label_font = pygame.font.Font(None, 40)
        self._hint_font = pygame.font.Font(None, 24)
        self._button_rects: dict[Modality, pygame.Rect] = {}
        self._finished = False
        self._session = session_factory(self)

    @property
    def session(self) -> TrialSession:
        return self._session

    # Presenter
    def show(self, location: Location) -> None:
        # The grid is redrawn from the session snapshot every frame.
        _ = location

    def play(self, audio: AudioSymbol) -> None:
        if self._audio is not None:
            self._audio.play(audio)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.KEYDOWN:
            if event.key == pygame.K_ESCAPE:
                self._leave(aborted=True)
            elif event.key == pygame.K_a:
                self._session.signal(Modality.LOCATION)
            elif event.key == pygame.K_l:
                self._session.signal(Modality.AUDIO)
            return

        if event.type == pygame.MOUSEBUTTONDOWN and event.button == 1:
            for modality, rect in self._button_rects.items():
                if rect.collidepoint(event.pos):
                    self._session.signal(modality)

    def render(self, surface: pygame.Surface) -> None:
        self._session.update()
        snap = self._session.snapshot()
        if snap.phase is SessionPhase.CLOSED:
            self._leave(aborted=snap.result is None)

        surface.fill(BG)
        w, h = surface.get_size()
        center = (w // 2, h // 2 - 40)

        self._draw_grid(surface, center)
        if snap.visible_location is not None:
            self._draw_target(surface, center, snap.visible_location)

        label = self._label_font.render(f"Trials Left: {snap.remaining_trials}", True, TEXT_MAIN)
        surface.blit(label, (30, 30))
        level = self._label_font.render(f"{snap.level}-back", True, TEXT_MUTED)
        surface.blit(level, level.get_rect(topright=(w - 30, 30)))

        self._draw_buttons(surface, snap)

        hint = self._hint_font.render("A: position match  |  L: audio match  |  Esc: quit", True, TEXT_MUTED)
        surface.blit(hint, hint.get_rect(midbottom=(w // 2, h - 12)))

    def _leave(self, *, aborted: bool) -> None:
        if self._finished:
            return
        self._finished = True
        if aborted:
            self._session.abort()
        if self._audio is not None:
            self._audio.stop()
        result = self._session.result
        if result is not None:
            self._on_finished(result)
        self._app.pop()

    def _draw_grid(self, surface: pygame.Surface, center: tuple[int, int]) -> None:
        cell = self.CELL_SIZE
        length = 3 * cell
        cx, cy = center
        for offset in (-cell // 2, cell // 2):
            pygame.draw.rect(
                surface,
                TEXT_MUTED,
                pygame.Rect(cx + offset - 1, cy - length // 2, self.GRID_THICKNESS, length),
            )
            pygame.draw.rect(
                surface,
                TEXT_MUTED,
                pygame.Rect(cx - length // 2, cy + offset - 1, length, self.GRID_THICKNESS),
            )

    def _draw_target(self, surface: pygame.Surface, center: tuple[int, int], location: Location) -> None:
        cell = self.CELL_SIZE
        cx, cy = center
        x = cx + (location.col - 1) * cell
        y = cy + (location.row - 1) * cell
        size = cell - 22
        pygame.draw.rect(surface, ACTIVE_BG, pygame.Rect(x - size // 2, y - size // 2, size, size))

    def _draw_buttons(self, surface: pygame.Surface, snap: SessionSnapshot) -> None:
        w, h = surface.get_size()
        labels = (
            (Modality.LOCATION, "A: Position", snap.location_state),
            (Modality.AUDIO, "L: Audio", snap.audio_state),
        )
        self._button_rects.clear()
        for i, (modality, text, state) in enumerate(labels):
            rect = pygame.Rect(0, 0, 200, 52)
            rect.center = (w // 2 + (-1 if i == 0 else 1) * self.CELL_SIZE, h - 90)
            self._button_rects[modality] = rect
            # Buttons only show while a response for the current trial is still open.
            if state is not ResponseState.AWAITING:
                continue
            pygame.draw.rect(surface, BORDER, rect, 2)
            label = self._label_font.render(text, True, TEXT_MAIN)
            surface.blit(label, label.get_rect(center=rect.center))


class ProgressScreen:
    def __init__(self, app: App, *, conn: sqlite3.Connection) -> None:
        self._app = app
        self._font = pygame.font.Font(None, 30)
        self._small_font = pygame.font.Font(None, 24)
        self._stats = load_stats(conn)
        self._recent = load_recent_sessions(conn).as_list()
        self._days = load_day_entries(conn)[-14:]

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        if event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE, pygame.K_RETURN):
            self._app.pop()

    def render(self, surface: pygame.Surface) -> None:
        surface.fill(BG)
        stats = self._stats
        lines = [
            f"Current Level: {stats.current_level}",
            f"Average Level Today: {stats.average_level_today:.2f}",
            f"Sessions Today: {stats.sessions_today}",
            f"Total Sessions: {stats.total_sessions}",
        ]
        y = 40
        for line in lines:
            surface.blit(self._font.render(line, True, TEXT_MAIN), (40, y))
            y += 36

        y += 16
        surface.blit(self._font.render("Recent Sessions", True, TEXT_MUTED), (40, y))
        y += 34
        for session in self._recent:
            text = f"{session.date.isoformat()}  level {session.level}  {session.percent_score}%"
            surface.blit(self._small_font.render(text, True, TEXT_MAIN), (60, y))
            y += 26

        x = surface.get_width() // 2 + 40
        y = 40
        surface.blit(self._font.render("Days", True, TEXT_MUTED), (x, y))
        y += 34
        for entry in self._days:
            text = (
                f"{entry.date.isoformat()}  avg {entry.average_level:.2f}  "
                f"max {entry.max_level}  x{entry.sessions_completed}"
            )
            surface.blit(self._small_font.render(text, True, TEXT_MAIN), (x, y))
            y += 26


def _new_seed() -> int:
    return random.SystemRandom().randint(1, 2**31 - 1)


def run(
    *,
    max_frames: int | None = None,
    event_injector: Callable[[int], None] | None = None,
    db_path: Path | None = None,
) -> int:
    configure_logging()
    pygame.init()

    pygame.display.set_caption("Dual N-Back")
    surface = pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE)

    clock = pygame.time.Clock()

    app = App(surface)
    conn = open_db(db_path or default_db_path())
    real_clock = RealClock()
    audio = _LetterAudio()

    def finish_session(result: SessionResult) -> None:
        stats = record_session(conn, result, today=dt.date.today())
        if result.level_changed:
            logger.info("level_changed", old=result.level_at_completion, new=stats.current_level)

    settings = load_settings(conn)

    def change_settings(new_settings: NBackConfig) -> None:
        nonlocal settings
        save_settings(conn, new_settings)
        settings = new_settings
        logger.info("settings_changed", mode=settings.mode.value, manual_level=settings.manual_level)

    def open_session() -> None:
        config = settings
        current_level = load_stats(conn).current_level
        seed = _new_seed()
        app.push(
            SessionScreen(
                app,
                session_factory=lambda presenter: build_trial_session(
                    config=config,
                    current_level=current_level,
                    clock=real_clock,
                    seed=seed,
                    presenter=presenter,
                ),
                on_finished=finish_session,
                audio=audio,
            )
        )

    main_items = [
        MenuItem("Play", open_session),
        MenuItem("Progress", lambda: app.push(ProgressScreen(app, conn=conn))),
        MenuItem(
            "Mode",
            lambda: change_settings(settings.next_mode()),
            value=lambda: settings.mode.value.title(),
        ),
        MenuItem(
            "Manual Level",
            lambda: change_settings(settings.next_manual_level()),
            value=lambda: str(settings.manual_level),
        ),
        MenuItem("Quit", app.quit),
    ]

    app.push(MenuScreen(app, "Dual N-Back", main_items, is_root=True))

    frame = 0
    try:
        while app.running:
            if event_injector is not None:
                event_injector(frame)

            for event in pygame.event.get():
                app.handle_event(event)

            app.render()

            pygame.display.flip()

            frame += 1
            if max_frames is not None and frame >= max_frames:
                break

            clock.tick(TARGET_FPS)
    finally:
        conn.close()
        pygame.quit()

    return 0
