import random

import pytest

from catchip8 import (
    InvalidOpcodeError,
    Machine,
    MachineConfig,
    Op,
    OutOfBoundsError,
    ProgramTooLargeError,
    StackOverflowError,
    StackUnderflowError,
)
from catchip8.constants import FONTSET, PROGRAM_START

SEED = 1234


@pytest.fixture
def machine():
    return Machine(rng=random.Random(SEED))


def load(machine, *words):
    machine.load_program(b''.join(word.to_bytes(2, 'big') for word in words))


def run(machine, *words):
    load(machine, *words)
    for _ in words:
        machine.step()


def execute(machine, word):
    """Execute a single word placed at the program start"""
    machine.pc = PROGRAM_START
    machine.memory[PROGRAM_START:PROGRAM_START + 2] = word.to_bytes(2, 'big')
    machine.step()


def lit_pixels(machine):
    return {(x, y) for y, row in enumerate(machine.framebuffer)
            for x, pixel in enumerate(row) if pixel}


# ==================== STATE ====================

def test_initial_state(machine):
    assert machine.pc == 0x200
    assert machine.memory[:len(FONTSET)] == FONTSET
    assert not any(machine.memory[len(FONTSET):])
    assert len(machine.memory) == 4096
    assert machine.v == [0] * 16
    assert machine.i == 0
    assert machine.sp == 0
    assert machine.stack == [0] * 16
    assert machine.delay_timer == 0
    assert machine.sound_timer == 0
    assert machine.keys == [False] * 16
    assert lit_pixels(machine) == set()


def test_framebuffer_shape_and_read_only(machine):
    fb = machine.framebuffer
    assert len(fb) == 32
    assert all(len(row) == 64 for row in fb)
    assert isinstance(fb, tuple) and isinstance(fb[0], tuple)
    with pytest.raises(TypeError):
        fb[0][0] = True


def test_reset_restores_initial_state_and_discards_program(machine):
    run(machine, 0x6A42, 0xA123, 0x2300)
    machine.set_key(3, True)
    machine.display[5][5] = True
    machine.memory[0] = 0
    machine.reset()
    assert machine.pc == 0x200
    assert machine.v == [0] * 16
    assert machine.i == 0
    assert machine.sp == 0
    assert machine.keys == [False] * 16
    assert machine.memory[:len(FONTSET)] == FONTSET
    assert machine.memory[0x200:0x206] == bytes(6)
    assert lit_pixels(machine) == set()


def test_reset_is_idempotent(machine):
    machine.reset()
    first = machine.snapshot()
    machine.reset()
    assert machine.snapshot() == first


def test_load_program_copies_at_program_start(machine):
    machine.v[1] = 7
    machine.load_program(b'\x12\x34\x56')
    assert machine.memory[0x200:0x203] == b'\x12\x34\x56'
    assert machine.pc == 0x200
    assert machine.v[1] == 7


def test_load_program_fills_memory_exactly(machine):
    machine.load_program(b'\xAA' * (4096 - 0x200))
    assert machine.memory[-1] == 0xAA


def test_load_program_too_large(machine):
    with pytest.raises(ProgramTooLargeError) as excinfo:
        machine.load_program(bytes(4096 - 0x200 + 1))
    assert excinfo.value.max_size == 4096 - 0x200
    assert isinstance(excinfo.value, OutOfBoundsError)


# ==================== FETCH / DECODE ====================

def test_fetch_is_big_endian_and_advances(machine):
    machine.load_program(b'\xAB\xCD\x12\x34')
    assert machine.fetch() == 0xABCD
    assert machine.pc == 0x202
    assert machine.fetch() == 0x1234
    assert machine.pc == 0x204


def test_fetch_past_end_of_memory(machine):
    machine.pc = 0xFFF
    with pytest.raises(OutOfBoundsError):
        machine.fetch()


def test_jump_out_of_memory_faults_on_next_fetch(machine):
    run(machine, 0x60FF, 0xBFFF)
    assert machine.pc == 0x10FE
    with pytest.raises(OutOfBoundsError):
        machine.step()


def test_invalid_opcode_reports_word_and_address(machine):
    load(machine, 0x6001, 0x5121)
    machine.step()
    with pytest.raises(InvalidOpcodeError) as excinfo:
        machine.step()
    assert excinfo.value.word == 0x5121
    assert excinfo.value.address == 0x202


def test_nop(machine):
    run(machine, 0x0000)
    assert machine.pc == 0x202
    assert machine.v == [0] * 16


def test_every_op_has_a_handler():
    assert set(Machine.DISPATCH) == set(Op)
    for name in Machine.DISPATCH.values():
        assert callable(getattr(Machine, name))


# ==================== FLOW CONTROL ====================

def test_jump(machine):
    run(machine, 0x1ABC)
    assert machine.pc == 0xABC


def test_call_and_return(machine):
    load(machine, 0x2208, 0x0000, 0x0000, 0x0000, 0x00EE)
    machine.step()
    assert machine.pc == 0x208
    assert machine.sp == 1
    assert machine.stack[0] == 0x202
    machine.step()
    assert machine.pc == 0x202
    assert machine.sp == 0


def test_call_stack_overflow(machine):
    load(machine, 0x2200)
    for _ in range(16):
        machine.step()
    assert machine.sp == 16
    with pytest.raises(StackOverflowError):
        machine.step()


def test_return_with_empty_stack(machine):
    load(machine, 0x00EE)
    with pytest.raises(StackUnderflowError):
        machine.step()


def test_jump_with_v0_offset(machine):
    run(machine, 0x6010, 0xB300)
    assert machine.pc == 0x310


@pytest.mark.parametrize("word,v3,skipped", [
    (0x3342, 0x42, True),
    (0x3342, 0x41, False),
    (0x4342, 0x42, False),
    (0x4342, 0x41, True),
])
def test_skip_against_immediate(machine, word, v3, skipped):
    machine.v[3] = v3
    run(machine, word)
    assert machine.pc == (0x204 if skipped else 0x202)


@pytest.mark.parametrize("word,v4,v5,skipped", [
    (0x5450, 9, 9, True),
    (0x5450, 9, 8, False),
    (0x9450, 9, 9, False),
    (0x9450, 9, 8, True),
])
def test_skip_against_register(machine, word, v4, v5, skipped):
    machine.v[4] = v4
    machine.v[5] = v5
    run(machine, word)
    assert machine.pc == (0x204 if skipped else 0x202)


# ==================== REGISTERS ====================

def test_load_immediate(machine):
    run(machine, 0x6A42)
    assert machine.v[0xA] == 0x42


def test_add_immediate_wraps_without_flag(machine):
    machine.v[0xF] = 5
    run(machine, 0x60FF, 0x7002)
    assert machine.v[0] == 1
    assert machine.v[0xF] == 5


def test_register_copy_and_logic(machine):
    run(machine, 0x61F0, 0x623C, 0x8320)
    assert machine.v[3] == 0x3C

    execute(machine, 0x8121)
    assert machine.v[1] == 0xFC
    machine.v[1] = 0xF0
    execute(machine, 0x8122)
    assert machine.v[1] == 0x30
    machine.v[1] = 0xF0
    execute(machine, 0x8123)
    assert machine.v[1] == 0xCC


def test_logic_leaves_vf_alone_by_default(machine):
    machine.v[0xF] = 7
    run(machine, 0x8121, 0x8122, 0x8123)
    assert machine.v[0xF] == 7


def test_add_registers_all_values(machine):
    for a in range(256):
        for b in range(256):
            machine.v[1] = a
            machine.v[2] = b
            execute(machine, 0x8124)
            assert machine.v[1] == (a + b) % 256
            assert machine.v[0xF] == (1 if a + b >= 256 else 0)


def test_sub_registers_all_values(machine):
    for a in range(256):
        for b in range(256):
            machine.v[1] = a
            machine.v[2] = b
            execute(machine, 0x8125)
            assert machine.v[1] == (a - b) % 256
            assert machine.v[0xF] == (0 if a < b else 1)


@pytest.mark.parametrize("vx,vy,result,flag", [
    (5, 10, 5, 1),
    (10, 5, 0xFB, 0),
    (7, 7, 0, 1),
])
def test_reverse_sub(machine, vx, vy, result, flag):
    machine.v[1] = vx
    machine.v[2] = vy
    run(machine, 0x8127)
    assert machine.v[1] == result
    assert machine.v[0xF] == flag


@pytest.mark.parametrize("value,result,flag", [
    (0b10000101, 0b01000010, 1),
    (0b00000100, 0b00000010, 0),
])
def test_shift_right(machine, value, result, flag):
    machine.v[6] = value
    machine.v[7] = 0xFF
    run(machine, 0x8676)
    assert machine.v[6] == result
    assert machine.v[0xF] == flag


@pytest.mark.parametrize("value,result,flag", [
    (0b10000101, 0b00001010, 1),
    (0b01000001, 0b10000010, 0),
])
def test_shift_left(machine, value, result, flag):
    machine.v[6] = value
    run(machine, 0x867E)
    assert machine.v[6] == result
    assert machine.v[0xF] == flag


def test_shift_flags_land_in_vf_not_ve(machine):
    machine.v[0xE] = 0x55
    machine.v[0] = 0x81
    run(machine, 0x8006, 0x800E)
    assert machine.v[0xE] == 0x55
    assert machine.v[0xF] == 0


def test_flag_wins_when_vf_is_destination(machine):
    machine.v[0xF] = 0xFF
    machine.v[1] = 0x01
    run(machine, 0x8F14)
    assert machine.v[0xF] == 1


def test_random_is_masked(machine):
    expected = random.Random(SEED).randint(0, 255) & 0x0F
    run(machine, 0xC50F)
    assert machine.v[5] == expected
    execute(machine, 0xC500)
    assert machine.v[5] == 0


# ==================== INDEX / MEMORY ====================

def test_load_index(machine):
    run(machine, 0xA000)
    assert machine.i == 0x000
    execute(machine, 0xAFFF)
    assert machine.i == 0xFFF


def test_add_to_index_wraps_at_16_bits(machine):
    machine.i = 0xFFFF
    machine.v[0] = 2
    run(machine, 0xF01E)
    assert machine.i == 1


def test_font_glyph_address(machine):
    machine.v[0] = 0xA
    run(machine, 0xF029)
    assert machine.i == 50
    assert machine.memory[machine.i:machine.i + 5] == FONTSET[50:55]


def test_bcd(machine):
    machine.v[3] = 254
    machine.i = 0x300
    run(machine, 0xF333)
    assert machine.memory[0x300:0x303] == bytes([2, 5, 4])


def test_bcd_out_of_bounds(machine):
    machine.i = 0xFFE
    machine.v[0] = 123
    load(machine, 0xF033)
    with pytest.raises(OutOfBoundsError):
        machine.step()
    assert machine.memory[0xFFE:] == bytes(2)


def test_store_and_load_registers_inclusive(machine):
    machine.v[:4] = [1, 2, 3, 4]
    machine.i = 0x400
    run(machine, 0xF255)
    assert machine.memory[0x400:0x404] == bytes([1, 2, 3, 0])
    assert machine.i == 0x400

    machine.v[:4] = [0, 0, 0, 0]
    execute(machine, 0xF165)
    assert machine.v[:4] == [1, 2, 0, 0]
    assert machine.i == 0x400


def test_store_registers_out_of_bounds(machine):
    machine.i = 0xFFC
    load(machine, 0xFF55)
    with pytest.raises(OutOfBoundsError):
        machine.step()


# ==================== TIMERS / INPUT ====================

def test_timer_registers(machine):
    machine.v[1] = 30
    machine.v[2] = 2
    run(machine, 0xF115, 0xF218, 0xF307)
    assert machine.delay_timer == 30
    assert machine.sound_timer == 2
    assert machine.v[3] == 30
    assert machine.sound_active


def test_timers_decrement_and_floor_at_zero(machine):
    machine.delay_timer = 2
    machine.sound_timer = 1
    machine.update_timers()
    assert (machine.delay_timer, machine.sound_timer) == (1, 0)
    assert not machine.sound_active
    for _ in range(5):
        machine.update_timers()
    assert (machine.delay_timer, machine.sound_timer) == (0, 0)


@pytest.mark.parametrize("word,held,skipped", [
    (0xE59E, True, True),
    (0xE59E, False, False),
    (0xE5A1, True, False),
    (0xE5A1, False, True),
])
def test_key_skips(machine, word, held, skipped):
    machine.v[5] = 0xB
    machine.set_key(0xB, held)
    run(machine, word)
    assert machine.pc == (0x204 if skipped else 0x202)


def test_key_skip_with_out_of_range_key(machine):
    machine.v[5] = 0x10
    load(machine, 0xE59E)
    with pytest.raises(OutOfBoundsError):
        machine.step()


@pytest.mark.parametrize("key", [-1, 16])
def test_set_key_out_of_range(machine, key):
    with pytest.raises(OutOfBoundsError):
        machine.set_key(key, True)


def test_key_wait_stalls_until_key_held(machine):
    load(machine, 0xF40A)
    for _ in range(5):
        machine.step()
        assert machine.pc == 0x200
    machine.set_key(9, True)
    machine.set_key(3, True)
    machine.step()
    assert machine.pc == 0x202
    assert machine.v[4] == 3


# ==================== DISPLAY ====================

def test_clear_screen(machine):
    for y in range(32):
        machine.display[y][y] = True
    run(machine, 0x00E0)
    assert lit_pixels(machine) == set()


def test_draw_font_glyph(machine):
    # Glyph "0": F0 90 90 90 F0
    run(machine, 0xA000, 0xD015)
    expected = {(x, 0) for x in range(4)} | {(x, 4) for x in range(4)}
    expected |= {(0, y) for y in range(1, 4)} | {(3, y) for y in range(1, 4)}
    assert lit_pixels(machine) == expected
    assert machine.v[0xF] == 0


def test_draw_twice_erases_and_collides(machine):
    machine.v[0] = 10
    machine.v[1] = 7
    run(machine, 0xA00A, 0xD015)
    before = lit_pixels(machine)
    assert before
    execute(machine, 0xD015)
    assert lit_pixels(machine) == set()
    assert machine.v[0xF] == 1


def test_draw_partial_overlap_collides(machine):
    machine.memory[0x300] = 0b11000000
    machine.memory[0x301] = 0b01100000
    machine.i = 0x300
    run(machine, 0xD011)
    machine.i = 0x301
    execute(machine, 0xD011)
    assert lit_pixels(machine) == {(0, 0), (2, 0)}
    assert machine.v[0xF] == 1


def test_draw_wraps_around_edges(machine):
    machine.memory[0x300] = 0xFF
    machine.memory[0x301] = 0x80
    machine.i = 0x300
    machine.v[0] = 60
    machine.v[1] = 31
    run(machine, 0xD012)
    expected = {(x, 31) for x in (60, 61, 62, 63, 0, 1, 2, 3)} | {(60, 0)}
    assert lit_pixels(machine) == expected


def test_draw_origin_wraps(machine):
    machine.memory[0x300] = 0x80
    machine.i = 0x300
    machine.v[0] = 64 + 2
    machine.v[1] = 32 + 1
    run(machine, 0xD011)
    assert lit_pixels(machine) == {(2, 1)}


def test_draw_out_of_memory_leaves_display(machine):
    machine.i = 0xFFE
    machine.memory[0xFFE] = 0xFF
    load(machine, 0xD014)
    with pytest.raises(OutOfBoundsError):
        machine.step()
    assert lit_pixels(machine) == set()


def test_draw_sets_draw_flag(machine):
    machine.draw_flag = False
    run(machine, 0xD015)
    assert machine.draw_flag


# ==================== QUIRKS ====================

def test_quirk_vf_reset():
    machine = Machine(MachineConfig(quirk_vf_reset=True))
    machine.v[0xF] = 1
    run(machine, 0x8121)
    assert machine.v[0xF] == 0


def test_quirk_shift_vy():
    machine = Machine(MachineConfig(quirk_shift_vy=True))
    machine.v[1] = 0xFF
    machine.v[2] = 0x04
    run(machine, 0x8126)
    assert machine.v[1] == 0x02
    assert machine.v[0xF] == 0


def test_quirk_memory_increment():
    machine = Machine(MachineConfig(quirk_memory_increment=True))
    machine.i = 0x400
    run(machine, 0xF255, 0xF065)
    assert machine.i == 0x404


def test_quirk_jump_vx():
    machine = Machine(MachineConfig(quirk_jump_vx=True))
    machine.v[0] = 0x01
    machine.v[3] = 0x10
    run(machine, 0xB300)
    assert machine.pc == 0x310


def test_quirk_clipping():
    machine = Machine(MachineConfig(quirk_clipping=True))
    machine.memory[0x300] = 0xFF
    machine.memory[0x301] = 0x80
    machine.i = 0x300
    machine.v[0] = 60
    machine.v[1] = 31
    run(machine, 0xD012)
    assert lit_pixels(machine) == {(x, 31) for x in range(60, 64)}


# ==================== SNAPSHOTS ====================

def test_snapshot_and_restore(machine):
    run(machine, 0x6A42, 0xA300, 0x2400)
    machine.display[1][2] = True
    machine.delay_timer = 9
    state = machine.snapshot()

    machine.reset()
    machine.restore(state)
    assert machine.v[0xA] == 0x42
    assert machine.i == 0x300
    assert machine.pc == 0x400
    assert machine.sp == 1
    assert machine.delay_timer == 9
    assert machine.framebuffer[1][2]

    machine.display[1][2] = False
    assert state.display[1][2]


@pytest.mark.parametrize("field,value", [
    ("memory", bytes(16)),
    ("keys", [False] * 8),
    ("display", [[False] * 8 for _ in range(4)]),
    ("display", [[False] * 64 for _ in range(31)] + [[False] * 63]),
])
def test_restore_rejects_mismatched_state(machine, field, value):
    state = machine.snapshot()
    setattr(state, field, value)
    with pytest.raises(ValueError):
        machine.restore(state)
    assert len(machine.display) == 32
    assert machine.keys == [False] * 16


def test_dump(machine):
    machine.v[0xA] = 0x42
    text = machine.dump()
    assert "PC: 0200" in text
    assert "VA=42" in text


# ==================== PROGRAMS ====================

def test_add_program():
    machine = Machine()
    machine.load_program(bytes([0x60, 0x05, 0x61, 0x0A, 0x80, 0x14]))
    for _ in range(3):
        machine.step()
    assert machine.v[0] == 15
    assert machine.v[0xF] == 0


def test_load_index_program():
    machine = Machine()
    machine.load_program(bytes([0xA0, 0x00]))
    machine.step()
    assert machine.i == 0x000
    assert machine.pc == 0x202


def test_countdown_loop():
    # V0 = 3; loop: V0 -= 1 via V1; skip jump when V0 == 0
    machine = Machine()
    load(machine,
         0x6003,  # 200: V0 = 3
         0x6101,  # 202: V1 = 1
         0x8015,  # 204: V0 -= V1
         0x3000,  # 206: skip if V0 == 0
         0x1204,  # 208: jump 204
         0x120A)  # 20A: halt loop
    for _ in range(2 + 3 * 3):
        machine.step()
    assert machine.v[0] == 0
    assert machine.pc == 0x20A
