"""Pygame UI shell for the N-Back Trainer.

Menu -> round screen. Timing, scoring and sequence state live in
nback_trainer/trial_engine.py; this module only draws snapshots and forwards
key presses.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import pygame

from .clock import RealClock
from .cognitive_core import Feedback, Modality, RoundPhase, RoundState, ScoreState, symbol_label
from .persistence import HighScoreRepository, HighScoreStore
from .results import round_result_from_engine
from .session import LatestStateSink, SessionController
from .speech import OfflineTtsSpeaker
from .trial_engine import RoundConfig, build_trial_engine


class Screen(Protocol):
    def handle_event(self, event: pygame.event.Event) -> None: ...
    def render(self, surface: pygame.Surface) -> None: ...


@dataclass(frozen=True, slots=True)
class MenuItem:
    label: str
    action: Callable[[], None]


WINDOW_SIZE = (960, 540)
TARGET_FPS = 60

BG = (3, 9, 78)
PANEL_BG = (8, 18, 104)
HEADER_BG = (18, 30, 118)
BORDER = (226, 236, 255)
TEXT_MAIN = (238, 245, 255)
TEXT_MUTED = (186, 200, 224)
TEXT_ON_LIGHT = (14, 26, 74)
CELL_IDLE = (22, 36, 128)
CELL_ACTIVE = (244, 248, 255)
HIT_COLOR = (60, 190, 110)
MISS_COLOR = (210, 70, 70)

# Menu navigation intents, from keyboard or gamepad.
UP, DOWN, SELECT, BACK = "up", "down", "select", "back"

_MENU_KEYS = {
    pygame.K_UP: UP,
    pygame.K_w: UP,
    pygame.K_DOWN: DOWN,
    pygame.K_s: DOWN,
    pygame.K_RETURN: SELECT,
    pygame.K_KP_ENTER: SELECT,
    pygame.K_SPACE: SELECT,
    pygame.K_ESCAPE: BACK,
    pygame.K_BACKSPACE: BACK,
}


def menu_intent(event: pygame.event.Event) -> str | None:
    if event.type == pygame.KEYDOWN:
        return _MENU_KEYS.get(event.key)
    if event.type == pygame.JOYHATMOTION:
        return {1: UP, -1: DOWN}.get(event.value[1])
    if event.type == pygame.JOYBUTTONDOWN:
        return {0: SELECT, 1: BACK}.get(event.button)
    return None


class App:
    """Screen stack. The bottom screen is the main menu and is never removed."""

    def __init__(self, surface: pygame.Surface) -> None:
        self._surface = surface
        self._stack: list[Screen] = []
        self.running = True

    def push(self, screen: Screen) -> None:
        self._stack.append(screen)

    def pop(self) -> None:
        if len(self._stack) > 1:
            self._stack.pop()

    def quit(self) -> None:
        self.running = False

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self.quit()
        elif self._stack:
            self._stack[-1].handle_event(event)

    def render(self) -> None:
        if self._stack:
            self._stack[-1].render(self._surface)


def _draw_frame(
    surface: pygame.Surface,
    *,
    tag: str,
    title: str,
    tag_font: pygame.font.Font,
    title_font: pygame.font.Font,
) -> pygame.Rect:
    """Draw the shared panel chrome and return the content rect."""

    w, h = surface.get_size()
    surface.fill(BG)

    margin = max(10, min(26, w // 34))
    frame = pygame.Rect(margin, margin, max(260, w - margin * 2), max(220, h - margin * 2))
    pygame.draw.rect(surface, PANEL_BG, frame)
    pygame.draw.rect(surface, BORDER, frame, 2)

    header = pygame.Rect(frame.x + 2, frame.y + 2, frame.w - 4, max(34, min(52, h // 8)))
    pygame.draw.rect(surface, HEADER_BG, header)
    pygame.draw.line(surface, BORDER, header.bottomleft, header.bottomright, 1)

    tag_s = tag_font.render(tag, True, TEXT_MUTED)
    surface.blit(tag_s, tag_s.get_rect(midleft=(header.x + 12, header.centery)))
    title_s = title_font.render(title, True, TEXT_MAIN)
    surface.blit(title_s, title_s.get_rect(center=header.center))

    return pygame.Rect(frame.x + 2, header.bottom + 1, frame.w - 4, frame.bottom - header.bottom - 3)


class MenuScreen:
    """Main menu: pick a round type; Back quits the app."""

    def __init__(
        self,
        app: App,
        title: str,
        items: list[MenuItem],
        *,
        subtitle: Callable[[], str] | None = None,
    ) -> None:
        if not items:
            raise ValueError("menu needs at least one item")
        self._app = app
        self._title = title
        self._items = items
        self._selected = 0
        self._subtitle = subtitle
        self._title_font = pygame.font.Font(None, 42)
        self._item_font = pygame.font.Font(None, 32)
        self._hint_font = pygame.font.Font(None, 22)

    @property
    def selected(self) -> MenuItem:
        return self._items[self._selected]

    def handle_event(self, event: pygame.event.Event) -> None:
        intent = menu_intent(event)
        if intent in (UP, DOWN):
            step = -1 if intent == UP else 1
            self._selected = (self._selected + step) % len(self._items)
        elif intent == SELECT:
            self.selected.action()
        elif intent == BACK:
            self._app.quit()

    def render(self, surface: pygame.Surface) -> None:
        content = _draw_frame(
            surface,
            tag="MENU",
            title=self._title,
            tag_font=self._hint_font,
            title_font=self._title_font,
        )
        y = content.y + 24
        if self._subtitle is not None:
            sub = self._item_font.render(self._subtitle(), True, TEXT_MAIN)
            surface.blit(sub, sub.get_rect(midtop=(content.centerx, y)))
            y += sub.get_height() + 18

        for idx, item in enumerate(self._items):
            row = pygame.Rect(0, 0, content.w // 2, 40)
            row.midtop = (content.centerx, y)
            chosen = idx == self._selected
            pygame.draw.rect(surface, CELL_ACTIVE if chosen else CELL_IDLE, row, border_radius=6)
            label = self._item_font.render(item.label, True, TEXT_ON_LIGHT if chosen else TEXT_MAIN)
            surface.blit(label, label.get_rect(center=row.center))
            y += row.h + 8

        hint = self._hint_font.render("Up/Down: Choose  |  Enter: Start  |  Esc: Quit", True, TEXT_MUTED)
        surface.blit(hint, hint.get_rect(midbottom=(content.centerx, content.bottom - 8)))


class NBackScreen:
    """Round screen: progress, score, stimulus and the MATCH prompt."""

    def __init__(
        self,
        app: App,
        *,
        session: SessionController,
        sink: LatestStateSink,
        modality: Modality,
        speech_ready: Callable[[], bool],
    ) -> None:
        self._app = app
        self._session = session
        self._sink = sink
        self._modality = modality
        self._speech_ready = speech_ready
        self._title_font = pygame.font.Font(None, 42)
        self._big_font = pygame.font.Font(None, 140)
        self._text_font = pygame.font.Font(None, 30)
        self._hint_font = pygame.font.Font(None, 22)
        self._session.start_round(modality)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.KEYDOWN:
            if event.key in (pygame.K_SPACE, pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_m):
                self._session.respond()
            elif event.key == pygame.K_r:
                self._session.start_round(self._modality)
            elif event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
                self._leave()
            return

        if event.type == pygame.JOYBUTTONDOWN:
            if event.button == 0:
                self._session.respond()
            elif event.button == 1:
                self._leave()

    def _leave(self) -> None:
        self._session.stop()
        self._app.pop()

    def render(self, surface: pygame.Surface) -> None:
        self._session.update()
        state = self._sink.state
        score = self._sink.score

        title = f"{state.n}-Back  -  {'Spatial' if state.modality is Modality.SPATIAL else 'Auditory'}"
        content = _draw_frame(
            surface,
            tag="ROUND",
            title=title,
            tag_font=self._hint_font,
            title_font=self._title_font,
        )

        pad = 18
        shown = max(0, state.current_index + 1)
        left = self._text_font.render(f"Event: {shown} / {state.total_events}", True, TEXT_MAIN)
        right = self._text_font.render(
            f"Correct: {score.score}    High score: {score.high_score}", True, TEXT_MAIN
        )
        surface.blit(left, (content.x + pad, content.y + pad))
        surface.blit(right, right.get_rect(topright=(content.right - pad, content.y + pad)))

        stage_top = content.y + pad * 2 + left.get_height()
        stage = pygame.Rect(
            content.x + pad,
            stage_top,
            content.w - pad * 2,
            max(80, content.bottom - stage_top - 110),
        )

        if state.phase is RoundPhase.FINISHED:
            self._render_results(surface, stage, score)
        elif state.phase is RoundPhase.WAITING_FOR_SPEECH:
            self._center_text(surface, stage, "Preparing speech...", self._text_font)
        elif state.modality is Modality.SPATIAL:
            self._render_grid(surface, stage, state)
        else:
            self._render_auditory(surface, stage, state)

        self._render_match_button(surface, content, state)

        footer = "Space/Enter/M: Match  |  R: Restart  |  Esc: Menu"
        foot = self._hint_font.render(footer, True, TEXT_MUTED)
        surface.blit(foot, foot.get_rect(midbottom=(content.centerx, content.bottom - 8)))

    def _render_grid(self, surface: pygame.Surface, stage: pygame.Rect, state: RoundState) -> None:
        symbols = self._session.engine.config.symbol_count
        side = max(1, math.ceil(math.sqrt(symbols)))
        size = min(stage.w, stage.h)
        cell = size // side
        origin_x = stage.centerx - (cell * side) // 2
        origin_y = stage.centery - (cell * side) // 2
        for idx in range(symbols):
            r, c = divmod(idx, side)
            rect = pygame.Rect(origin_x + c * cell + 4, origin_y + r * cell + 4, cell - 8, cell - 8)
            active = state.is_running and idx == state.current_value
            color = CELL_ACTIVE if active else CELL_IDLE
            pygame.draw.rect(surface, color, rect, border_radius=12)

    def _render_auditory(self, surface: pygame.Surface, stage: pygame.Rect, state: RoundState) -> None:
        if self._speech_ready():
            self._center_text(surface, stage, "Listening...", self._text_font)
            return
        # No TTS backend: show the letter so the round is still playable.
        label = "" if state.current_value < 0 else symbol_label(state.current_value)
        self._center_text(surface, stage, label, self._big_font)
        note = self._hint_font.render("Speech unavailable - letters shown on screen", True, TEXT_MUTED)
        surface.blit(note, note.get_rect(midbottom=(stage.centerx, stage.bottom)))

    def _render_results(self, surface: pygame.Surface, stage: pygame.Rect, score: ScoreState) -> None:
        result = round_result_from_engine(self._session.engine)
        lines = [
            "Round complete",
            f"Correct: {result.correct} of {result.matches} matches",
            f"False alarms: {result.false_alarms}    Missed: {result.missed_matches}",
            f"High score: {score.high_score}",
            "Press R to play again or Esc for the menu.",
        ]
        y = stage.y + 10
        for line in lines:
            text = self._text_font.render(line, True, TEXT_MAIN)
            surface.blit(text, text.get_rect(midtop=(stage.centerx, y)))
            y += text.get_height() + 12

    def _render_match_button(self, surface: pygame.Surface, content: pygame.Rect, state: RoundState) -> None:
        if state.last_feedback is Feedback.HIT:
            bg, scale = HIT_COLOR, 1.25
        elif state.last_feedback is Feedback.MISS:
            bg, scale = MISS_COLOR, 0.8
        elif state.accepting_response:
            bg, scale = CELL_ACTIVE, 1.0
        else:
            bg, scale = CELL_IDLE, 1.0

        w = int(220 * scale)
        h = int(56 * scale)
        rect = pygame.Rect(0, 0, w, h)
        rect.center = (content.centerx, content.bottom - 70)
        pygame.draw.rect(surface, bg, rect, border_radius=10)
        pygame.draw.rect(surface, BORDER, rect, 2, border_radius=10)
        fg = TEXT_ON_LIGHT if bg == CELL_ACTIVE else TEXT_MAIN
        label = self._text_font.render("MATCH!", True, fg)
        surface.blit(label, label.get_rect(center=rect.center))

    @staticmethod
    def _center_text(surface: pygame.Surface, rect: pygame.Rect, text: str, font: pygame.font.Font) -> None:
        rendered = font.render(text, True, TEXT_MAIN)
        surface.blit(rendered, rendered.get_rect(center=rect.center))


def run(
    *,
    max_frames: int | None = None,
    event_injector: Callable[[int], None] | None = None,
    config: RoundConfig | None = None,
    high_scores: HighScoreRepository | None = None,
) -> int:
    pygame.init()

    pygame.display.set_caption("N-Back Trainer")
    surface = pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE)

    clock = pygame.time.Clock()

    app = App(surface)

    speaker = OfflineTtsSpeaker()
    store = high_scores if high_scores is not None else HighScoreStore(HighScoreStore.default_path())
    engine = build_trial_engine(
        clock=RealClock(),
        speech=speaker,
        high_scores=store,
        config=config,
    )
    sink = LatestStateSink()
    session = SessionController(engine=engine, sink=sink)

    def open_round(modality: Modality) -> None:
        app.push(
            NBackScreen(
                app,
                session=session,
                sink=sink,
                modality=modality,
                speech_ready=lambda: speaker.ready,
            )
        )

    main_items = [
        MenuItem("Spatial round", lambda: open_round(Modality.SPATIAL)),
        MenuItem("Auditory round", lambda: open_round(Modality.AUDITORY)),
        MenuItem("Quit", app.quit),
    ]

    app.push(
        MenuScreen(
            app,
            "N-Back",
            main_items,
            subtitle=lambda: f"High score: {session.high_score}",
        )
    )

    frame = 0
    try:
        while app.running:
            if event_injector is not None:
                event_injector(frame)

            for event in pygame.event.get():
                app.handle_event(event)

            speaker.update()
            app.render()

            pygame.display.flip()

            frame += 1
            if max_frames is not None and frame >= max_frames:
                break

            clock.tick(TARGET_FPS)
    finally:
        session.close()
        speaker.stop()
        pygame.quit()

    return 0
