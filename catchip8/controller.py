"""Gamepad input via pygame, translated into hex keypad events"""

import logging
import threading
from typing import Callable, Dict, Optional, Tuple

import pygame

logger = logging.getLogger(__name__)

# Controller button mappings for PS5/Atari style
BUTTON_SQUARE = 0
BUTTON_CIRCLE = 1
BUTTON_CROSS = 2
BUTTON_TRIANGLE = 3
BUTTON_L1 = 4
BUTTON_R1 = 5
BUTTON_L2 = 6
BUTTON_R2 = 7
BUTTON_SHARE = 8
BUTTON_OPTIONS = 9
BUTTON_PS = 12
BUTTON_TOUCHPAD = 13

BUTTON_TO_KEY: Dict[int, int] = {
    BUTTON_CIRCLE: 0x1,
    BUTTON_SQUARE: 0x2,
    BUTTON_TRIANGLE: 0x3,
    BUTTON_CROSS: 0xC,
    BUTTON_L1: 0x4,
    BUTTON_R1: 0x5,
    BUTTON_L2: 0xD,
    BUTTON_R2: 0xE,
    BUTTON_SHARE: 0x7,
    BUTTON_OPTIONS: 0x8,
    BUTTON_PS: 0x9,
    BUTTON_TOUCHPAD: 0xA,
}

# D-Pad (as hat) to the conventional 2/4/6/8 movement keys
HAT_TO_KEY: Dict[Tuple[int, int], int] = {
    (0, 1): 0x8,
    (0, -1): 0x2,
    (-1, 0): 0x4,
    (1, 0): 0x6,
}

POLL_HZ = 120


class Controller:
    """Polls the first connected joystick on a background thread"""

    def __init__(self, on_key_change: Callable[[int, bool], None]):
        self.on_key_change = on_key_change
        self.joystick: Optional[pygame.joystick.JoystickType] = None
        self.connected = False
        self.connection_type = "None"
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

        # Special action callbacks
        self.on_reset: Optional[Callable[[], None]] = None
        self.on_pause_toggle: Optional[Callable[[], None]] = None

        pygame.init()
        pygame.joystick.init()

    @property
    def running(self) -> bool:
        return self._thread is not None and not self._stop.is_set()

    def start(self):
        self._stop.clear()
        self._thread = threading.Thread(target=self._poll, name="controller", daemon=True)
        self._thread.start()

    def stop(self):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=1.0)
            self._thread = None

    def _poll(self):
        # Event.wait doubles as the poll interval and the stop signal
        while not self._stop.wait(1 / POLL_HZ):
            for event in pygame.event.get():
                self.handle_event(event)

    def handle_event(self, event):
        """Dispatch one pygame event: hot-plug, buttons or D-pad"""
        if event.type == pygame.JOYDEVICEADDED and self.joystick is None:
            self._attach(pygame.joystick.Joystick(event.device_index))
        elif event.type == pygame.JOYDEVICEREMOVED and self.joystick is not None:
            if event.instance_id == self.joystick.get_instance_id():
                logger.info("Controller disconnected")
                self.joystick = None
                self.connected = False
                self.connection_type = "None"
        elif event.type == pygame.JOYBUTTONDOWN:
            self.handle_button(event.button, True)
        elif event.type == pygame.JOYBUTTONUP:
            self.handle_button(event.button, False)
        elif event.type == pygame.JOYHATMOTION:
            self.handle_hat(event.value)

    def _attach(self, joystick):
        self.joystick = joystick
        self.connected = True
        name = joystick.get_name().lower()
        wireless = any(word in name for word in ("wireless", "bluetooth", "dualsense"))
        self.connection_type = "Bluetooth" if wireless else "USB"
        logger.info("Controller connected: %s (%s)", name, self.connection_type)

    def handle_button(self, button: int, pressed: bool):
        """Forward a button change as a key change, plus PS/Options actions"""
        if pressed:
            if button == BUTTON_PS and self.on_reset:
                self.on_reset()
            elif button == BUTTON_OPTIONS and self.on_pause_toggle:
                self.on_pause_toggle()

        if button in BUTTON_TO_KEY:
            self.on_key_change(BUTTON_TO_KEY[button], pressed)

    def handle_hat(self, value: Tuple[int, int]):
        """D-pad: press the matching direction key, release the rest"""
        pressed = HAT_TO_KEY.get(tuple(value))
        for key in HAT_TO_KEY.values():
            self.on_key_change(key, key == pressed)
