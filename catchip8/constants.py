"""
Architecture constants, fonts, keyboard mapping and machine configuration.
"""

from dataclasses import dataclass

# ============================================================================
# ARCHITECTURE
# ============================================================================

MEMORY_SIZE = 4096
DISPLAY_WIDTH = 64
DISPLAY_HEIGHT = 32
STACK_SIZE = 16
NUM_REGISTERS = 16
NUM_KEYS = 16
PROGRAM_START = 0x200
FONT_START = 0x000
FONT_GLYPH_SIZE = 5

CPU_FREQUENCY = 700
TIMER_FREQUENCY = 60
TARGET_FPS = 60

# ============================================================================
# CHIP-8 FONT
# ============================================================================

# Standard 4x5 font (0-F) - 80 bytes at 0x000
FONTSET = bytes([
    0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
    0x20, 0x60, 0x20, 0x20, 0x70,  # 1
    0xF0, 0x10, 0xF0, 0x80, 0xF0,  # 2
    0xF0, 0x10, 0xF0, 0x10, 0xF0,  # 3
    0x90, 0x90, 0xF0, 0x10, 0x10,  # 4
    0xF0, 0x80, 0xF0, 0x10, 0xF0,  # 5
    0xF0, 0x80, 0xF0, 0x90, 0xF0,  # 6
    0xF0, 0x10, 0x20, 0x40, 0x40,  # 7
    0xF0, 0x90, 0xF0, 0x90, 0xF0,  # 8
    0xF0, 0x90, 0xF0, 0x10, 0xF0,  # 9
    0xF0, 0x90, 0xF0, 0x90, 0x90,  # A
    0xE0, 0x90, 0xE0, 0x90, 0xE0,  # B
    0xF0, 0x80, 0x80, 0x80, 0xF0,  # C
    0xE0, 0x90, 0x90, 0x90, 0xE0,  # D
    0xF0, 0x80, 0xF0, 0x80, 0xF0,  # E
    0xF0, 0x80, 0xF0, 0x80, 0x80,  # F
])

# ============================================================================
# KEYBOARD MAPPING
# ============================================================================

# CHIP-8 Hex Keypad    PC Keyboard
#  1 2 3 C             1 2 3 4
#  4 5 6 D      →      Q W E R
#  7 8 9 E             A S D F
#  A 0 B F             Z X C V

KEYBOARD_MAP = {
    '1': 0x1, '2': 0x2, '3': 0x3, '4': 0xC,
    'q': 0x4, 'w': 0x5, 'e': 0x6, 'r': 0xD,
    'a': 0x7, 's': 0x8, 'd': 0x9, 'f': 0xE,
    'z': 0xA, 'x': 0x0, 'c': 0xB, 'v': 0xF,
}

# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class MachineConfig:
    """Machine configuration settings"""
    # Memory
    memory_size: int = MEMORY_SIZE
    program_start: int = PROGRAM_START
    font_start: int = FONT_START

    # Display
    display_width: int = DISPLAY_WIDTH
    display_height: int = DISPLAY_HEIGHT

    # Timing
    cpu_frequency: int = CPU_FREQUENCY      # Instructions per second
    timer_frequency: int = TIMER_FREQUENCY  # Timer decrement rate (Hz)
    target_fps: int = TARGET_FPS            # Frames (instruction batches) per second

    # Stack
    stack_size: int = STACK_SIZE

    # Registers
    num_registers: int = NUM_REGISTERS
    num_keys: int = NUM_KEYS

    # Quirks (all off: VF always carries the flag, no clipping)
    quirk_vf_reset: bool = False          # 8XY1/2/3 reset VF to 0
    quirk_shift_vy: bool = False          # 8XY6/8XYE shift VY into VX
    quirk_memory_increment: bool = False  # FX55/FX65 leave I past the range
    quirk_jump_vx: bool = False           # BNNN uses VX instead of V0
    quirk_clipping: bool = False          # Sprites clip at screen edge

    @property
    def max_program_size(self) -> int:
        return self.memory_size - self.program_start
