from __future__ import annotations

import logging

import pytest

from lureport.analysis.walker import FunctionWalker, GlobalRegistry, analyze
from lureport.config import ScanWindows
from lureport.io.proto import Prototype
from lureport.report import ConstantKind, ReturnShape

from lua_builders import Op, abc, abx, asbx, ax, make_proto


def _leaf(line: int = 1, upvalues=()) -> Prototype:
    return make_proto([abc(Op.RETURN0)], line_defined=line, last_line=line, upvalues=upvalues)


def test_children_are_numbered_in_preorder() -> None:
    grandchild = _leaf(3)
    first = make_proto([abc(Op.RETURN0)], protos=[grandchild], line_defined=2, upvalues=())
    second = _leaf(5)
    main = make_proto([abc(Op.RETURN0)], protos=[first, second], is_vararg=True)

    report = analyze(main)

    assert [record.line_defined for record in report.functions] == [0, 2, 3, 5]
    assert report.functions[0].child_proto_indices == [1, 3]
    assert report.functions[1].child_proto_indices == [2]
    for position, record in enumerate(report.functions):
        assert all(child > position for child in record.child_proto_indices)


def test_signature_fields() -> None:
    proto = make_proto(
        [abc(Op.RETURN0)],
        params=["self", "x"],
        upvalues=["_ENV", None],
        source=None,
        line_defined=4,
        last_line=9,
        is_vararg=True,
    )
    record = analyze(proto).functions[0]
    assert record.source == "?"
    assert (record.line_defined, record.last_line) == (4, 9)
    assert record.param_count == 2
    assert record.param_names == ["self", "x"]
    assert record.is_method is True
    assert record.is_vararg is True
    assert record.is_vararg_used is False
    assert record.upvalue_names == ["_ENV", "(?)"]


def test_missing_parameter_names_use_placeholder() -> None:
    proto = make_proto([abc(Op.RETURN0)])
    proto.num_params = 2
    record = analyze(proto).functions[0]
    assert record.param_names == ["(?)", "(?)"]
    assert record.is_method is False


def test_vararg_use_is_detected() -> None:
    proto = make_proto(
        [abc(Op.VARARGPREP, 0), abc(Op.VARARG, 0, 0, 0), abc(Op.RETURN, 0, 0, 0)],
        is_vararg=True,
    )
    record = analyze(proto).functions[0]
    assert record.is_vararg_used is True
    assert record.return_kind is ReturnShape.MULTI


def test_constant_pool_is_copied_in_order() -> None:
    proto = make_proto([abc(Op.RETURN0)], constants=["s", 3, 2.5, True, None])
    constants = analyze(proto).functions[0].constants
    assert [constant.kind for constant in constants] == [
        ConstantKind.STRING,
        ConstantKind.INTEGER,
        ConstantKind.FLOAT,
        ConstantKind.BOOL,
        ConstantKind.NULL,
    ]
    assert constants[0].s_val == "s"
    assert constants[1].i_val == 3
    assert constants[2].f_val == 2.5
    assert constants[3].b_val is True


def test_reads_are_recorded_and_deduplicated() -> None:
    proto = make_proto(
        [
            abc(Op.GETTABUP, 0, 0, 0),
            abc(Op.GETTABUP, 1, 0, 0),
            abc(Op.GETTABUP, 2, 1, 1),
            abc(Op.GETFIELD, 3, 2, 2),
            abc(Op.GETFIELD, 3, 2, 3),
            abc(Op.RETURN0),
        ],
        constants=["print", "debug", "level", 7],
        upvalues=["_ENV", "cfg"],
    )
    reads = analyze(proto).functions[0].reads
    assert [(read.table_name, read.field_name) for read in reads] == [
        ("_ENV", "print"),
        ("cfg", "debug"),
        ("?", "level"),
    ]


def test_capturing_closures_are_listed() -> None:
    capturing = _leaf(2, upvalues=["n"])
    plain = _leaf(3)
    proto = make_proto(
        [abx(Op.CLOSURE, 0, 0), abx(Op.CLOSURE, 1, 1), abx(Op.CLOSURE, 2, 7), abc(Op.RETURN0)],
        protos=[capturing, plain],
    )
    record = analyze(proto).functions[0]
    assert [(ref.line_defined, ref.upvalue_count) for ref in record.closures] == [(2, 1)]
    assert record.table_shape().contains_closures is True


def test_table_return_shape() -> None:
    proto = make_proto(
        [
            abc(Op.NEWTABLE, 0, 1, 3),
            ax(Op.EXTRAARG, 0),
            abx(Op.LOADK, 1, 0),
            abx(Op.LOADK, 2, 1),
            abx(Op.LOADK, 3, 2),
            abc(Op.SETFIELD, 0, 3, 4, k=1),
            abc(Op.SETLIST, 0, 3, 0),
            abc(Op.RETURN1, 0),
            abc(Op.RETURN0),
        ],
        constants=["a", "b", "c", "x", 1],
    )
    record = analyze(proto).functions[0]
    assert record.return_kind is ReturnShape.TABLE
    shape = record.table_shape()
    assert (shape.array_size, shape.hash_size) == (3, 1)
    assert shape.estimated_bytes == 32 + 3 * 16 + 32
    assert shape.contains_closures is False


def test_non_table_function_reports_zero_sizes() -> None:
    proto = make_proto(
        [abc(Op.NEWTABLE, 0, 2, 2), ax(Op.EXTRAARG, 0), abc(Op.CALL, 1, 1, 2), abc(Op.RETURN1, 1)]
    )
    record = analyze(proto).functions[0]
    assert record.return_kind is ReturnShape.CALL
    shape = record.table_shape()
    assert (shape.array_size, shape.hash_size, shape.estimated_bytes) == (0, 0, 0)


def test_two_strong_returns_mix() -> None:
    proto = make_proto(
        [
            abc(Op.TEST, 0, 0, k=0),
            asbx(Op.JMP, 0, 3),
            abc(Op.NEWTABLE, 1, 0, 0),
            ax(Op.EXTRAARG, 0),
            abc(Op.RETURN1, 1),
            abc(Op.GETTABUP, 1, 0, 0),
            abc(Op.CALL, 1, 1, 2),
            abc(Op.RETURN1, 1),
            abc(Op.RETURN0),
        ],
        constants=["f"],
        params=["flag"],
    )
    assert analyze(proto).functions[0].return_kind is ReturnShape.MIXED


def test_function_without_returns_is_never_strong() -> None:
    proto = make_proto([abc(Op.MOVE, 0, 1)])
    assert analyze(proto).functions[0].return_kind in (ReturnShape.UNKNOWN, ReturnShape.VOID)


def test_global_closure_binding_resolves_to_child_record() -> None:
    child = _leaf(1)
    main = make_proto(
        [abx(Op.CLOSURE, 0, 0), abc(Op.SETTABUP, 0, 0, 0), abc(Op.RETURN, 0, 1, 1)],
        constants=["greet"],
        protos=[child],
        is_vararg=True,
    )
    report = analyze(main)
    assert len(report.globals) == 1
    binding = report.globals[0]
    assert (binding.name, binding.is_function, binding.function_index) == ("greet", True, 1)


def test_global_rewritten_with_closure_is_promoted() -> None:
    child = _leaf(4)
    main = make_proto(
        [
            asbx(Op.LOADI, 0, 1),
            abc(Op.SETTABUP, 0, 0, 0),
            abx(Op.CLOSURE, 0, 0),
            abc(Op.SETTABUP, 0, 0, 0),
            abc(Op.RETURN0),
        ],
        constants=["handler"],
        protos=[child],
    )
    report = analyze(main)
    assert [binding.name for binding in report.globals] == ["handler"]
    assert report.globals[0].is_function is True
    assert report.globals[0].function_index == 1


def test_resolved_index_is_not_overwritten() -> None:
    first = _leaf(2)
    second = _leaf(6)
    main = make_proto(
        [
            abx(Op.CLOSURE, 0, 0),
            abc(Op.SETTABUP, 0, 0, 0),
            abx(Op.CLOSURE, 0, 1),
            abc(Op.SETTABUP, 0, 0, 0),
            abc(Op.RETURN0),
        ],
        constants=["cb"],
        protos=[first, second],
    )
    report = analyze(main)
    assert len(report.globals) == 1
    assert report.globals[0].function_index == 1


def test_closures_on_the_same_line_resolve_by_identity() -> None:
    main = make_proto(
        [
            abx(Op.CLOSURE, 0, 0),
            abx(Op.CLOSURE, 1, 1),
            abc(Op.SETTABUP, 0, 0, 1),
            abc(Op.RETURN0),
        ],
        constants=["second"],
        protos=[_leaf(3), _leaf(3)],
    )
    report = analyze(main)
    assert report.globals[0].function_index == 2


def test_constant_store_is_not_a_function() -> None:
    main = make_proto(
        [abx(Op.CLOSURE, 1, 0), abc(Op.SETTABUP, 0, 0, 1, k=1), abc(Op.RETURN0)],
        constants=["version", "1.0"],
        protos=[_leaf(1)],
    )
    binding = analyze(main).globals[0]
    assert binding.name == "version"
    assert binding.is_function is False
    assert binding.function_index == -1


def test_stores_into_other_upvalues_are_not_globals() -> None:
    main = make_proto(
        [asbx(Op.LOADI, 0, 1), abc(Op.SETTABUP, 1, 0, 0), abc(Op.RETURN0)],
        constants=["field"],
        upvalues=["_ENV", "config"],
    )
    assert analyze(main).globals == []


def test_closure_outside_window_is_not_detected() -> None:
    words = [abx(Op.CLOSURE, 0, 0)] + [asbx(Op.LOADI, 1, n) for n in range(20)]
    words += [abc(Op.SETTABUP, 0, 0, 0), abc(Op.RETURN0)]
    main = make_proto(words, constants=["late"], protos=[_leaf(1)])

    assert analyze(main).globals[0].is_function is False
    wide = analyze(main, windows=ScanWindows(closure=64))
    assert wide.globals[0].is_function is True
    assert wide.globals[0].function_index == 1


def test_invalid_closure_index_stays_unresolved(caplog: pytest.LogCaptureFixture) -> None:
    main = make_proto(
        [abx(Op.CLOSURE, 0, 9), abc(Op.SETTABUP, 0, 0, 0), abc(Op.RETURN0)],
        constants=["ghost"],
    )
    with caplog.at_level(logging.WARNING, logger="lureport.analysis.walker"):
        report = analyze(main)
    assert report.globals[0].function_index == -1
    assert "ghost" in caplog.text


def test_nested_global_writes_share_registry() -> None:
    inner = make_proto(
        [abx(Op.CLOSURE, 0, 0), abc(Op.SETTABUP, 0, 0, 0), abc(Op.RETURN0)],
        constants=["inner_fn"],
        protos=[_leaf(5)],
        line_defined=2,
    )
    main = make_proto(
        [abx(Op.CLOSURE, 0, 0), abc(Op.SETTABUP, 0, 0, 0), abc(Op.RETURN0)],
        constants=["outer_fn"],
        protos=[inner],
    )
    report = analyze(main)
    assert [(b.name, b.function_index) for b in report.globals] == [
        ("outer_fn", 1),
        ("inner_fn", 2),
    ]


def test_parent_write_wins_over_later_nested_rebinding() -> None:
    rebinder = make_proto(
        [abx(Op.CLOSURE, 0, 0), abc(Op.SETTABUP, 0, 0, 0), abc(Op.RETURN0)],
        constants=["f"],
        protos=[_leaf(3)],
        line_defined=2,
    )
    main = make_proto(
        [
            abx(Op.CLOSURE, 0, 0),
            abc(Op.SETTABUP, 0, 0, 0),
            abx(Op.CLOSURE, 0, 1),
            abc(Op.SETTABUP, 0, 1, 0),
            abc(Op.RETURN0),
        ],
        constants=["f", "g"],
        protos=[_leaf(1), rebinder],
    )
    report = analyze(main)
    assert [record.line_defined for record in report.functions] == [0, 1, 2, 3]
    assert [(b.name, b.is_function, b.function_index) for b in report.globals] == [
        ("f", True, 1),
        ("g", True, 2),
    ]


def test_table_size_warning_is_logged_once(caplog: pytest.LogCaptureFixture) -> None:
    proto = make_proto([abc(Op.NEWTABLE, 0, 0, 2, k=1), abc(Op.RETURN1, 0), abc(Op.RETURN0)])
    with caplog.at_level(logging.WARNING):
        record = analyze(proto).functions[0]
    assert record.return_kind is ReturnShape.TABLE
    assert record.table_shape().array_size == 2
    warnings = [r for r in caplog.records if "EXTRAARG" in r.getMessage()]
    assert len(warnings) == 1


def test_registry_claims_each_slot_once() -> None:
    registry = GlobalRegistry()
    slot = registry.upsert("f", True)
    assert registry.claim(slot) is True
    assert registry.claim(slot) is False
    assert registry.claim(registry.upsert("g", True)) is True


def test_registry_upsert() -> None:
    registry = GlobalRegistry()
    assert registry.upsert("a", False) == 0
    assert registry.upsert("b", False) == 1
    assert registry.upsert("a", True) == 0
    assert len(registry) == 2
    assert registry.bindings[0].is_function is True
    assert registry.resolve(0, 4) is True
    assert registry.resolve(0, 5) is False
    assert registry.bindings[0].function_index == 4


def test_registry_names_are_case_sensitive() -> None:
    registry = GlobalRegistry()
    registry.upsert("Name", False)
    registry.upsert("name", False)
    assert len(registry) == 2


def test_walker_instances_are_independent() -> None:
    proto = make_proto([abc(Op.RETURN0)])
    first = FunctionWalker().run(proto)
    second = FunctionWalker().run(proto)
    assert first is not second
    assert len(first.functions) == len(second.functions) == 1
