import json

import pytest

from bytecalc import run_cli, run_repl, run_source
from codegen import CodeGenerator
from errors import InternalFault


def test_prints_result(capsys):
    assert run_cli(["1 + 2"]) == 0
    assert capsys.readouterr().out == "3\n"


def test_prints_array_result(capsys):
    assert run_cli(["[1, 2.5]"]) == 0
    assert capsys.readouterr().out == "[1, 2.5]\n"


def test_runtime_error_goes_to_stderr(capsys):
    assert run_cli(["10 / 0"]) == 1
    captured = capsys.readouterr()
    assert captured.out == ""
    assert "DivisionByZero" in captured.err
    assert "     ^" in captured.err


def test_disassemble_flag(capsys):
    assert run_cli(["--disassemble", "2 * 3"]) == 0
    out = capsys.readouterr().out
    assert "=== Bytecode Disassembly ===" in out
    assert "MUL" in out
    assert out.endswith("6\n")


def test_ast_flag(capsys):
    assert run_cli(["--ast", "2^3"]) == 0
    assert capsys.readouterr().out == "(^ 2.0 3.0)\n8\n"


def test_trace_flag(capsys):
    assert run_cli(["--trace", "1 + 2"]) == 0
    out = capsys.readouterr().out.splitlines()
    assert out[0].startswith("STEP")
    assert "ADD" in out[3]
    assert out[-1] == "3"


def test_trace_is_printed_on_failure(capsys):
    assert run_cli(["--trace", "sqrt(-1)"]) == 1
    captured = capsys.readouterr()
    assert "SQRT" in captured.out
    assert "DomainError" in captured.err


def test_functions_flag(capsys):
    assert run_cli(["--functions"]) == 0
    names = capsys.readouterr().out.split()
    assert "sqrt" in names
    assert "ncr" in names


def test_traceback_json():
    out, err = [], []
    assert run_source("foo(1)", traceback_json=True, out=out.append, err=err.append) == 1
    assert out == []
    assert err[0].endswith("CodegenError at offset 0: Unknown function 'foo'")
    assert json.loads(err[1])["error"]["stage"] == "CodegenError"


def test_verbose_error_shows_stack():
    out, err = [], []
    assert run_source("1 + 10 / 0", verbose=True, out=out.append, err=err.append) == 1
    assert "  stack: [1 10 0]" in err[0].splitlines()


def test_lex_error_exit_code():
    err = []
    assert run_source("2 $ 3", out=lambda _: None, err=err.append) == 1
    assert "LexError" in err[0]


def test_repl_session(monkeypatch, capsys):
    lines = iter(["1 + 1", "   ", ":dis 2", "1 / 0"])

    def fake_input(prompt):
        try:
            return next(lines)
        except StopIteration:
            raise EOFError

    monkeypatch.setattr("builtins.input", fake_input)
    assert run_repl(verbose=False) == 0
    captured = capsys.readouterr()
    assert "\n2\n" in captured.out
    assert "PUSH_CONST" in captured.out
    assert "DivisionByZero" in captured.err


def test_repl_evaluates_and_disassembles(monkeypatch, capsys):
    lines = iter(["2 * 21", ":dis 1+2"])

    def fake_input(prompt):
        for line in lines:
            return line
        raise EOFError

    monkeypatch.setattr("builtins.input", fake_input)
    assert run_repl(verbose=False) == 0
    out = capsys.readouterr().out.splitlines()
    assert out[1] == "42"
    assert "0002  0x0012  10  ADD" in out
    assert out[-2] == "3"
    assert out[-1] == ""


def test_internal_fault_is_not_reported_as_user_error(monkeypatch):
    def broken_generate(self, node):
        raise InternalFault("Generated code leaves 2 values on the stack")

    monkeypatch.setattr(CodeGenerator, "generate", broken_generate)
    with pytest.raises(InternalFault):
        run_source("1 + 2", out=lambda _: None, err=lambda _: None)
