"""
Tkinter front end: renders the framebuffer, maps the keyboard to the hex
keypad and drives a :class:`~catchip8.runner.Runner` from the Tk event loop.
"""

import logging
import pickle
import tkinter as tk
from tkinter import filedialog, messagebox
from typing import Optional

from .constants import KEYBOARD_MAP, MachineConfig
from .controller import Controller
from .errors import MachineError
from .runner import Runner

logger = logging.getLogger(__name__)

WINDOW_WIDTH = 640
WINDOW_HEIGHT = 400
DISPLAY_AREA_HEIGHT = 352
STATUS_BAR_HEIGHT = 48

# Colors
COLORS = {
    'bg': '#0C0C0C',
    'pixel_on': '#C0C0C0',
    'pixel_off': '#1A1A1A',
    'status_bg': '#1E1E1E',
    'status_fg': '#707070',
    'accent': '#4A9EFF',
}


def rom_caption(runner: Runner) -> str:
    """Status bar text for the loaded ROM"""
    if runner.rom_loaded:
        return f"ROM: {runner.rom_name}"
    return "No ROM"


class Display:
    """Canvas grid of one rectangle per framebuffer pixel"""

    def __init__(self, canvas: tk.Canvas, config: MachineConfig):
        self.canvas = canvas
        self.cell_w = WINDOW_WIDTH / config.display_width
        self.cell_h = DISPLAY_AREA_HEIGHT / config.display_height
        self.scanlines_enabled = False

        # cells[y][x] is the canvas item for pixel (x, y)
        self.cells = [
            [self._cell(x, y, COLORS['pixel_off']) for x in range(config.display_width)]
            for y in range(config.display_height)
        ]
        self._shown = [[False] * config.display_width for _ in range(config.display_height)]

        # Darken every odd pixel row; hidden until toggled
        self.scanlines = [
            canvas.create_rectangle(0, y * self.cell_h, WINDOW_WIDTH, (y + 1) * self.cell_h,
                                    fill="#000000", stipple="gray50", outline="",
                                    state=tk.HIDDEN)
            for y in range(1, config.display_height, 2)
        ]

    def _cell(self, x: int, y: int, color: str) -> int:
        left, top = x * self.cell_w, y * self.cell_h
        return self.canvas.create_rectangle(left, top, left + self.cell_w, top + self.cell_h,
                                            fill=color, outline="")

    def toggle_scanlines(self):
        self.scanlines_enabled = not self.scanlines_enabled
        state = tk.NORMAL if self.scanlines_enabled else tk.HIDDEN
        for item in self.scanlines:
            self.canvas.itemconfig(item, state=state)

    def render(self, framebuffer):
        """Repaint the pixels that changed since the last render"""
        for y, row in enumerate(framebuffer):
            shown = self._shown[y]
            for x, pixel in enumerate(row):
                if pixel != shown[x]:
                    shown[x] = pixel
                    color = COLORS['pixel_on'] if pixel else COLORS['pixel_off']
                    self.canvas.itemconfig(self.cells[y][x], fill=color)


class App:
    """Main application window"""

    def __init__(self, runner: Runner, use_controller: bool = True):
        self.runner = runner
        self.machine = runner.machine

        self.root = tk.Tk()
        self.root.title("Cat's Chip-8 Emulator")
        self.root.geometry(f"{WINDOW_WIDTH}x{WINDOW_HEIGHT}")
        self.root.resizable(False, False)
        self.root.configure(bg=COLORS['bg'])

        self.show_debug = False
        self._frame_ms = max(1, 1000 // runner.config.target_fps)

        self._create_ui()
        self.display = Display(self.canvas, runner.config)
        self._bind_keys()

        self.controller: Optional[Controller] = None
        if use_controller:
            self.controller = Controller(self._on_controller_key)
            self.controller.on_reset = lambda: self.root.after(0, self._reset)
            self.controller.on_pause_toggle = lambda: self.root.after(0, self._toggle_pause)
            self.controller.start()

    def _create_ui(self):
        self.canvas = tk.Canvas(
            self.root,
            width=WINDOW_WIDTH,
            height=DISPLAY_AREA_HEIGHT,
            bg=COLORS['bg'],
            highlightthickness=0
        )
        self.canvas.pack(side=tk.TOP)

        self.status_frame = tk.Frame(self.root, height=STATUS_BAR_HEIGHT, bg=COLORS['status_bg'])
        self.status_frame.pack(side=tk.BOTTOM, fill=tk.X)
        self.status_frame.pack_propagate(False)

        def label(text, side):
            widget = tk.Label(self.status_frame, text=text, fg=COLORS['status_fg'],
                              bg=COLORS['status_bg'], font=("Courier", 10))
            widget.pack(side=side, padx=10)
            return widget

        self.rom_label = label(rom_caption(self.runner), tk.LEFT)
        self.sound_label = label("", tk.LEFT)
        self.state_label = label("Stopped", tk.RIGHT)
        self.speed_label = label("1×", tk.RIGHT)

    def _bind_keys(self):
        self.root.bind("<KeyPress>", self._on_key_down)
        self.root.bind("<KeyRelease>", self._on_key_up)

        # Control keys
        self.root.bind("<Control-r>", lambda e: self._reset())
        self.root.bind("<space>", lambda e: self._toggle_pause())
        self.root.bind("<F1>", lambda e: self._change_speed(self.runner.decrease_speed))
        self.root.bind("<F2>", lambda e: self._change_speed(self.runner.increase_speed))
        self.root.bind("<F3>", lambda e: self.display.toggle_scanlines())
        self.root.bind("<F4>", lambda e: self._toggle_debug())
        self.root.bind("<F5>", lambda e: self._save_state())
        self.root.bind("<F7>", lambda e: self._load_state())
        self.canvas.bind("<Button-1>", self._on_click)

    def _on_key_down(self, event):
        key = event.keysym.lower()
        if key in KEYBOARD_MAP:
            self.machine.set_key(KEYBOARD_MAP[key], True)

    def _on_key_up(self, event):
        key = event.keysym.lower()
        if key in KEYBOARD_MAP:
            self.machine.set_key(KEYBOARD_MAP[key], False)

    def _on_controller_key(self, key: int, pressed: bool):
        # Called from the polling thread; apply on the Tk thread between frames
        self.root.after(0, self.machine.set_key, key, pressed)

    def _on_click(self, event):
        """Show file dialog if no ROM loaded"""
        if not self.runner.rom_loaded:
            filepath = filedialog.askopenfilename(
                title="Select CHIP-8 ROM",
                filetypes=[("CHIP-8 ROM", "*.ch8"), ("All files", "*.*")]
            )
            if filepath:
                self.load_rom(filepath)

    def load_rom(self, filepath: str):
        try:
            self.runner.load_rom_file(filepath)
        except (OSError, MachineError) as e:
            logger.error("Failed to load ROM %s: %s", filepath, e)
            messagebox.showerror("Error", f"Failed to load ROM: {e}")
            return
        self.rom_label.config(text=rom_caption(self.runner))
        self._update_status()

    def _frame(self):
        self.runner.run_frame()

        if self.machine.draw_flag:
            self.display.render(self.machine.framebuffer)
            self.machine.draw_flag = False

        self.sound_label.config(text="♪" if self.machine.sound_active else "")
        self._update_status()
        self.root.after(self._frame_ms, self._frame)

    def _update_status(self):
        if self.runner.halted:
            self.state_label.config(text=f"Halted: {self.runner.error}")
        elif self.runner.paused:
            self.state_label.config(text="Paused")
        elif self.runner.rom_loaded:
            self.state_label.config(text="Running")
        else:
            self.state_label.config(text="Stopped")
        self.speed_label.config(text=f"{self.runner.speed_multiplier}×")

    def _reset(self):
        self.runner.reset()
        self.display.render(self.machine.framebuffer)

    def _toggle_pause(self):
        self.runner.toggle_pause()
        self._update_status()

    def _change_speed(self, change):
        change()
        self._update_status()

    def _toggle_debug(self):
        self.show_debug = not self.show_debug
        if self.show_debug:
            logger.info("\n%s", self.machine.dump())

    def _save_state(self):
        if not self.runner.rom_loaded:
            return
        try:
            self.runner.save_state(self.runner.default_save_path())
        except OSError as e:
            logger.error("Save failed: %s", e)

    def _load_state(self):
        if not self.runner.rom_loaded:
            return
        try:
            self.runner.load_state(self.runner.default_save_path())
        except FileNotFoundError:
            logger.info("No save file for %s", self.runner.rom_name)
            return
        except (OSError, ValueError, EOFError, pickle.UnpicklingError) as e:
            logger.error("Load failed: %s", e)
            return
        self.display.render(self.machine.framebuffer)

    def run(self):
        self.root.protocol("WM_DELETE_WINDOW", self._on_close)
        self.root.after(self._frame_ms, self._frame)
        self.root.mainloop()

    def _on_close(self):
        if self.controller:
            self.controller.stop()
        self.root.destroy()
