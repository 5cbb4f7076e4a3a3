"""Bytecode calculator entry point and REPL wiring."""

from __future__ import annotations
import argparse
import sys
from typing import Callable, List, Optional

from codegen import FUNCTIONS, CodeGenerator
from disassembler import disassemble
from nodes import dump
from pipeline import EVAL_ERRORS, TracebackFormatter, parse_source, render_value
from vm import VM


def run_source(
    source: str,
    *,
    verbose: bool = False,
    trace: bool = False,
    show_disassembly: bool = False,
    show_ast: bool = False,
    traceback_json: bool = False,
    out: Callable[[str], None] = print,
    err: Callable[[str], None] = lambda text: print(text, file=sys.stderr),
) -> int:
    vm = VM(verbose=verbose or trace)
    try:
        tree = parse_source(source)
        if show_ast:
            out(dump(tree))
        program = CodeGenerator().generate(tree)
        if show_disassembly:
            out(disassemble(program))
        value = vm.run(program)
    except EVAL_ERRORS as error:
        formatter = TracebackFormatter(source, vm.logger)
        err(formatter.format_text(error, verbose=verbose))
        if traceback_json:
            err(formatter.to_json(error))
        return 1
    finally:
        if trace:
            out(vm.logger.format_table())
    out(render_value(value))
    return 0


def run_repl(verbose: bool) -> int:
    print("Bytecode calculator REPL. ':dis EXPR' shows bytecode, Ctrl-D exits.")
    while True:
        try:
            line = input(">>> ")
        except EOFError:
            print()
            return 0
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.startswith(":dis "):
            run_source(stripped[5:], verbose=verbose, show_disassembly=True)
            continue
        run_source(line, verbose=verbose)


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Compile an arithmetic expression to bytecode and run it")
    parser.add_argument("expression", nargs="?", help="Expression to evaluate; starts a REPL when omitted")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Include stack snapshots in traces and errors")
    parser.add_argument("--trace", action="store_true", help="Print the VM step log")
    parser.add_argument("--disassemble", action="store_true", help="Print the compiled bytecode before running it")
    parser.add_argument("--ast", action="store_true", help="Print the parsed expression tree")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit errors as JSON")
    parser.add_argument("--functions", action="store_true", help="List the known function names and exit")
    args = parser.parse_args(argv)

    if args.functions:
        for name in FUNCTIONS.names():
            print(name)
        return 0

    if args.expression is None:
        return run_repl(verbose=args.verbose)

    return run_source(
        args.expression,
        verbose=args.verbose,
        trace=args.trace,
        show_disassembly=args.disassemble,
        show_ast=args.ast,
        traceback_json=args.traceback_json,
    )


if __name__ == "__main__":
    raise SystemExit(run_cli())
