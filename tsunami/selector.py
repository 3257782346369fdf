"""
Interactive port picker.

SelectorModel holds all state and key handling so it can be exercised
without a terminal; run_selector() wires it to curses.
"""
from __future__ import annotations

import curses
from typing import List, Optional, Tuple

from .models import PortBinding
from .output import port_category

LIST = "list"
CONFIRM = "confirm"
QUIT = "quit"

KEY_ESC = 27
KEY_ENTER = (10, 13, curses.KEY_ENTER)
KEY_BACKSPACE = (8, 127, curses.KEY_BACKSPACE)
KEY_CTRL_C = 3
KEY_TAB = 9


def matches(b: PortBinding, query: str) -> bool:
    q = query.lower()
    return q in str(b.port) or q in b.process.lower() or q in b.user.lower()


class SelectorModel:
    def __init__(self, bindings: List[PortBinding]):
        self.bindings = list(bindings)
        self.filtered = list(self.bindings)
        self.query = ""
        self.cursor = 0
        self.state = LIST
        self.selected: Optional[PortBinding] = None
        self.confirm_yes = True
        self.result: Optional[PortBinding] = None

    # filtering

    def _apply_filter(self) -> None:
        if not self.query:
            self.filtered = list(self.bindings)
        else:
            self.filtered = [b for b in self.bindings if matches(b, self.query)]
        if self.cursor >= len(self.filtered):
            self.cursor = max(0, len(self.filtered) - 1)

    def add_char(self, ch: str) -> None:
        self.query += ch
        self._apply_filter()

    def delete_char(self) -> None:
        if self.query:
            self.query = self.query[:-1]
            self._apply_filter()

    def clear_filter(self) -> None:
        self.query = ""
        self._apply_filter()

    # navigation

    def current(self) -> Optional[PortBinding]:
        if not self.filtered or self.cursor >= len(self.filtered):
            return None
        return self.filtered[self.cursor]

    def move_up(self) -> None:
        if self.cursor > 0:
            self.cursor -= 1

    def move_down(self) -> None:
        if self.cursor < len(self.filtered) - 1:
            self.cursor += 1

    # confirmation

    def enter_confirm(self) -> None:
        b = self.current()
        if b is not None:
            self.selected = b
            self.state = CONFIRM
            self.confirm_yes = True

    def cancel_confirm(self) -> None:
        self.state = LIST
        self.selected = None

    def accept(self) -> None:
        self.result = self.selected
        self.state = QUIT

    def quit(self) -> None:
        self.state = QUIT

    def handle_key(self, key: int) -> None:
        if key == KEY_CTRL_C:
            self.quit()
        elif self.state == LIST:
            self._handle_list_key(key)
        elif self.state == CONFIRM:
            self._handle_confirm_key(key)

    def _handle_list_key(self, key: int) -> None:
        if key == KEY_ESC:
            if self.query:
                self.clear_filter()
            else:
                self.quit()
        elif key in KEY_BACKSPACE:
            self.delete_char()
        elif key in KEY_ENTER:
            self.enter_confirm()
        elif key == curses.KEY_UP:
            self.move_up()
        elif key == curses.KEY_DOWN:
            self.move_down()
        elif 32 <= key < 127:
            self.add_char(chr(key))

    def _handle_confirm_key(self, key: int) -> None:
        if key in (curses.KEY_LEFT, curses.KEY_RIGHT, KEY_TAB, ord("h"), ord("l")):
            self.confirm_yes = not self.confirm_yes
        elif key in (ord("y"), ord("Y")):
            self.accept()
        elif key in KEY_ENTER:
            if self.confirm_yes:
                self.accept()
            else:
                self.cancel_confirm()
        elif key in (KEY_ESC, ord("n"), ord("N"), ord("q")):
            self.cancel_confirm()


# ---------------------------------------------------------------------------
# curses front end
# ---------------------------------------------------------------------------

_CATEGORY_COLORS = {"system": 1, "user": 2, "ephemeral": 3}


def _init_colors() -> None:
    if not curses.has_colors():
        return
    curses.start_color()
    curses.use_default_colors()
    curses.init_pair(1, curses.COLOR_RED, -1)
    curses.init_pair(2, curses.COLOR_GREEN, -1)
    curses.init_pair(3, curses.COLOR_YELLOW, -1)


def _safe_add(win, y: int, x: int, text: str, attr: int = curses.A_NORMAL) -> None:
    h, w = win.getmaxyx()
    if y >= h or x >= w:
        return
    try:
        win.addstr(y, x, text[: w - x - 1], attr)
    except curses.error:
        pass


def _draw_list(stdscr, model: SelectorModel) -> None:
    h, _ = stdscr.getmaxyx()
    _safe_add(stdscr, 0, 0, "tsunami - select a process to kill", curses.A_BOLD)
    _safe_add(stdscr, 1, 0, f"Filter: {model.query}")
    _safe_add(stdscr, 3, 0, f"  {'PORT':<8} {'PID':<10} {'PROCESS':<20} {'USER':<15} PROTO", curses.A_BOLD)

    rows = max(1, h - 6)
    top = max(0, model.cursor - rows + 1)
    if not model.filtered:
        _safe_add(stdscr, 4, 2, "No matching ports", curses.A_DIM)
    for i, b in enumerate(model.filtered[top:top + rows]):
        idx = top + i
        y = 4 + i
        selected = idx == model.cursor
        base = curses.A_REVERSE if selected else curses.A_NORMAL
        _safe_add(stdscr, y, 0, "> " if selected else "  ", base)
        port_attr = base
        if curses.has_colors():
            port_attr |= curses.color_pair(_CATEGORY_COLORS[port_category(b.port)])
        _safe_add(stdscr, y, 2, f"{b.port:<8} ", port_attr)
        _safe_add(stdscr, y, 11, f"{b.pid!s:<10} {b.process[:20]:<20} {b.user[:15]:<15} {b.proto}", base)

    _safe_add(stdscr, h - 1, 0, "type to filter | up/down move | enter select | esc clear/quit", curses.A_DIM)


MODAL_HEIGHT = 6
MODAL_MIN_WIDTH = 20


def modal_geometry(h: int, w: int, question: str) -> Optional[Tuple[int, int, int, int]]:
    """(height, width, y, x) of the confirm box, or None if the screen is too small."""
    bw = min(w - 2, max(len(question) + 6, 30))
    if bw < MODAL_MIN_WIDTH or h < MODAL_HEIGHT:
        return None
    return MODAL_HEIGHT, bw, (h - MODAL_HEIGHT) // 2, (w - bw) // 2


def _draw_confirm(stdscr, model: SelectorModel) -> None:
    b = model.selected
    h, w = stdscr.getmaxyx()
    question = f"Kill {b.process or '?'} (PID {b.pid}) on port {b.port}?"
    geometry = modal_geometry(h, w, question)
    if geometry is None:
        # no room for a box; ask on the top line instead
        prompt = f"{question} [{'Y/n' if model.confirm_yes else 'y/N'}]"
        _safe_add(stdscr, 0, 0, prompt.ljust(w), curses.A_BOLD)
        stdscr.noutrefresh()
        return
    bh, bw, y, x = geometry
    win = curses.newwin(bh, bw, y, x)
    win.box()
    _safe_add(win, 1, 2, question, curses.A_BOLD)
    yes_attr = curses.A_REVERSE | curses.A_BOLD if model.confirm_yes else curses.A_NORMAL
    no_attr = curses.A_NORMAL if model.confirm_yes else curses.A_REVERSE | curses.A_BOLD
    _safe_add(win, 3, 4, "  Yes  ", yes_attr)
    _safe_add(win, 3, 14, "  No  ", no_attr)
    win.noutrefresh()


def _loop(stdscr, model: SelectorModel) -> Optional[PortBinding]:
    curses.curs_set(0)
    curses.set_escdelay(25)
    stdscr.keypad(True)
    _init_colors()
    while model.state != QUIT:
        stdscr.erase()
        _draw_list(stdscr, model)
        stdscr.noutrefresh()
        if model.state == CONFIRM:
            _draw_confirm(stdscr, model)
        curses.doupdate()
        model.handle_key(stdscr.getch())
    return model.result


def run_selector(bindings: List[PortBinding]) -> Optional[PortBinding]:
    """Returns the confirmed binding, or None if the user backed out."""
    model = SelectorModel(bindings)
    try:
        return curses.wrapper(_loop, model)
    except KeyboardInterrupt:
        return None
