from __future__ import annotations

import logging

import pytest

from lureport.vm.instruction import (
    FIELDS,
    decode,
    decode_all,
    decode_array_size,
    decode_hash_size,
    encode_abc,
    encode_sj,
)
from lureport.vm.opcodes import Opcode

from lua_builders import Op, abc, abx, asbx, ax


def _pack(op: int, a: int, k: int, b: int, c: int) -> int:
    return op | (a << 7) | (k << 15) | (b << 16) | (c << 24)


def test_field_layout_matches_lua_54() -> None:
    word = _pack(int(Op.GETFIELD), 200, 1, 17, 250)
    ins = decode(word, index=5)
    assert ins.index == 5
    assert ins.opcode is Opcode.GETFIELD
    assert (ins.a, ins.k, ins.b, ins.c) == (200, 1, 17, 250)
    assert ins.raw == word


def test_encode_abc_round_trips_operands() -> None:
    assert encode_abc(Op.GETFIELD, 200, 17, 250, k=1) == _pack(int(Op.GETFIELD), 200, 1, 17, 250)


def test_field_insert_rejects_overflow() -> None:
    with pytest.raises(ValueError):
        FIELDS["a"].insert(256)


def test_signed_views() -> None:
    assert decode(asbx(Op.LOADI, 0, -3)).sbx == -3
    assert decode(abx(Op.LOADI, 0, 65535)).sbx == 0
    assert decode(encode_sj(Op.JMP, -7)).sj == -7
    assert decode(abc(Op.EQI, 0, 127 + 4)).sb == 4
    assert decode(abc(Op.ADDI, 0, 0, 127 - 2)).sc == -2


def test_bx_and_ax_views() -> None:
    assert decode(abx(Op.CLOSURE, 4, 70000)).bx == 70000
    assert decode(ax(Op.EXTRAARG, 123456)).ax == 123456


def test_unknown_opcode_has_fallback_name() -> None:
    ins = decode(90)
    assert ins.opcode is None
    assert ins.mode is None
    assert ins.name == "OP_90"


def test_decode_all_numbers_instructions() -> None:
    instructions = decode_all([abc(Op.MOVE, 1, 0), abc(Op.RETURN0)])
    assert [ins.index for ins in instructions] == [0, 1]
    assert [ins.name for ins in instructions] == ["MOVE", "RETURN0"]


@pytest.mark.parametrize("b, expected", [(0, 0), (1, 1), (2, 2), (3, 4), (5, 16)])
def test_hash_size(b: int, expected: int) -> None:
    assert decode_hash_size(b) == expected


def test_array_size_without_k_is_c() -> None:
    instructions = decode_all([abc(Op.NEWTABLE, 0, 1, 3), ax(Op.EXTRAARG, 0)])
    assert decode_array_size(instructions, 0) == 3


def test_array_size_with_extraarg() -> None:
    instructions = decode_all([abc(Op.NEWTABLE, 0, 0, 4, k=1), ax(Op.EXTRAARG, 2)])
    assert decode_array_size(instructions, 0) == (2 << 8) | 4


def test_array_size_degrades_without_extraarg(caplog: pytest.LogCaptureFixture) -> None:
    instructions = decode_all([abc(Op.NEWTABLE, 0, 0, 4, k=1), abc(Op.RETURN1, 0)])
    with caplog.at_level(logging.WARNING, logger="lureport.vm.instruction"):
        assert decode_array_size(instructions, 0) == 4
    assert "EXTRAARG" in caplog.text


def test_array_size_at_end_of_code() -> None:
    instructions = decode_all([abc(Op.NEWTABLE, 0, 0, 9, k=1)])
    assert decode_array_size(instructions, 0) == 9
