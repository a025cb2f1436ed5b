#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
SQL Dump Parser (MySQL)
- Detects compression by magic number (gzip, bzip2, xz, zip, none).
- Extracts CREATE TABLE column schemas and INSERT INTO ... VALUES (...) rows.
- Rebuilds an in-memory table model: table name -> (columns, ordered rows).
- Values are decoded to None (NULL), float (numbers) or str (quoted text).
- Summaries, structure listing, JSON and CSV export from the command line.
Note: The parser is best-effort -- it is not a full SQL analyzer.
Malformed statements are skipped instead of raising, so a messy dump still
yields every table that could be recovered.
"""

import argparse
import bz2
import configparser
import csv
import gzip
import io
import json
import locale
import lzma
import os
import re
import sys
import warnings
import zipfile
from dataclasses import dataclass, field
from typing import Callable, NamedTuple

from tqdm import tqdm

try:
    # Set user locale from the operating system
    locale.setlocale(locale.LC_ALL, "")
except (locale.Error, IndexError):
    pass  # Keep default locale if setting fails
import gettext

# ---------- Localization setup ----------
APP_NAME = "parse_sql_dump"
LOCALE_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "locale")
try:
    # Find and load the translation file
    translation = gettext.translation(APP_NAME, localedir=LOCALE_DIR, fallback=True)
    tl: Callable[[str], str] = translation.gettext
except FileNotFoundError:
    # Fallback to default gettext if no .mo file is found
    tl = gettext.gettext

# ---------- compression detection by magic number ----------
MAGIC_TYPES = [
    (b"\x1f\x8b\x08", "gzip"),
    (b"BZh", "bzip2"),
    (b"\xfd7zXZ\x00", "xz"),
    (b"PK\x03\x04", "zip"),
]


def detect_compression(path):
    with open(path, "rb") as f:
        head = f.read(10)
    for sig, name in MAGIC_TYPES:
        if head.startswith(sig):
            return name
    return "none"


def open_maybe_compressed(path):
    """Open a dump for reading as UTF-8 text, whatever its compression."""
    c = detect_compression(path)
    if c == "gzip":
        return gzip.open(path, "rt", encoding="utf-8", errors="replace")
    if c == "bzip2":
        return bz2.open(path, "rt", encoding="utf-8", errors="replace")
    if c == "xz":
        return lzma.open(path, "rt", encoding="utf-8", errors="replace")
    if c == "zip":
        z = zipfile.ZipFile(path, "r")
        names = z.namelist()
        if not names:
            z.close()
            raise ValueError(tl("Empty zip file"))
        if len(names) > 1:
            warnings.warn(
                tl(
                    "ZIP archive contains multiple files, using only the first one: {name}"
                ).format(name=names[0])
            )
        return io.TextIOWrapper(z.open(names[0], "r"), encoding="utf-8", errors="replace")
    return open(path, "r", encoding="utf-8", errors="replace")


def load_dump(path) -> str:
    """Read the whole dump into memory as one text buffer."""
    with open_maybe_compressed(path) as f:
        return f.read()


def detect_db_type(path):
    """Try to detect if the dump is from MySQL or PostgreSQL."""
    with open_maybe_compressed(path) as f:
        head = f.read(2000)
    if "ENGINE=" in head or "AUTO_INCREMENT" in head:
        return "mysql"
    if "COPY " in head or "WITH OIDS" in head:
        return "postgres"
    return "mysql"  # fallback


# ---------- table model ----------
Value = float | str | None


class Column(NamedTuple):
    name: str
    type: str
    attributes: str


@dataclass
class Table:
    name: str
    columns: list[Column] = field(default_factory=list)
    rows: list[list[Value]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "columns": [c._asdict() for c in self.columns],
            "rows": [list(r) for r in self.rows],
        }


# ---------- statement patterns ----------
# Backtick identifier; a doubled backtick stands for a literal one.
IDENT = r"`((?:[^`]|``)+)`"

CREATE_TABLE_RE = re.compile(
    r"CREATE\s+TABLE\s+" + IDENT + r"\s*\((.*?)\)\s*ENGINE", re.I | re.S
)
COLUMN_RE = re.compile(r"^" + IDENT + r"\s+(\w+(?:\([^)]*\))?)\s*(.*)$")
# The payload stops at the first ';' outside a quoted string. Possessive
# repeats keep an unterminated statement from backtracking.
INSERT_RE = re.compile(
    r"INSERT\s+INTO\s+"
    + IDENT
    + r"\s+VALUES\s*("
    + r"(?:'(?:[^'\\]|\\.|'')*+'"
    + r'|"(?:[^"\\]|\\.|"")*+"'
    + r"|[^'\";])*+"
    + r");",
    re.I | re.S,
)
NUMBER_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?", re.ASCII)

QUOTES = ("'", '"')
OUTPUT_MODES = ("info", "structure", "json_path", "csv_dir")


def unescape_identifier(raw: str) -> str:
    return raw.replace("``", "`")


def parse_column_definition(line: str) -> Column | None:
    """Parses a column line from CREATE TABLE, or returns None if it isn't one."""
    m = COLUMN_RE.match(line)
    if not m:
        return None
    return Column(unescape_identifier(m.group(1)), m.group(2), m.group(3).strip())


def extract_columns_from_create(body: str) -> list[Column]:
    columns = []
    for line in body.split("\n"):
        line = line.strip()
        # PRIMARY KEY, KEY, CONSTRAINT ... never start with a backtick
        if not line.startswith("`"):
            continue
        column = parse_column_definition(line)
        if column:
            columns.append(column)
    return columns


def extract_structures(dump: str) -> dict[str, list[Column]]:
    """Map every CREATE TABLE in the dump to its ordered column list.

    A table defined twice keeps the columns of its last definition.
    """
    structures = {}
    for m in CREATE_TABLE_RE.finditer(dump):
        structures[unescape_identifier(m.group(1))] = extract_columns_from_create(
            m.group(2)
        )
    return structures


# ---------- value parsing ----------
class SqlMultiTupleParser:
    """
    A parser for the tuple list of an INSERT's VALUES clause.
    It iterates over a string like "(1, 'a'), (2, 'b')" and yields the body
    of each top-level tuple without its parentheses, e.g. "1, 'a'" and then
    "2, 'b'". Quotes stay in the yielded text; commas and whitespace between
    tuples are dropped.
    """

    def __init__(self, text: str):
        self.text = text
        self.len = len(text)

    def __iter__(self):
        text = self.text
        in_string = False
        quote = ""
        paren_depth = 0
        buf = []
        pos = 0
        while pos < self.len:
            char = text[pos]
            if not in_string:
                if char == "(":
                    paren_depth += 1
                    if paren_depth == 1:
                        buf = []
                        pos += 1
                        continue
                elif char == ")":
                    paren_depth -= 1
                    if paren_depth == 0:
                        yield "".join(buf)
                        buf = []
                        pos += 1
                        continue
                elif char in QUOTES:
                    in_string = True
                    quote = char
            elif char == quote:
                if text[pos + 1: pos + 2] == quote:
                    # '' inside a string is an escaped quote
                    if paren_depth > 0:
                        buf.append(char * 2)
                    pos += 2
                    continue
                in_string = False
                quote = ""
            elif char == "\\" and pos + 1 < self.len:
                if paren_depth > 0:
                    buf.append(text[pos: pos + 2])
                pos += 2
                continue
            if paren_depth > 0:
                buf.append(char)
            pos += 1


class SqlTupleFieldParser:
    """
    A parser for the body of a single SQL value tuple. It acts as an iterator
    that returns the trimmed raw fields, splitting only on commas outside
    quoted strings.
    e.g. "1, 'a,b', NULL" yields "1", "'a,b'", "NULL".
    """

    def __init__(self, text: str):
        self.text = text
        self.len = len(text)

    def __iter__(self):
        text = self.text
        in_string = False
        quote = ""
        start = 0
        pos = 0
        while pos < self.len:
            char = text[pos]
            if not in_string:
                if char == ",":
                    yield text[start:pos].strip()
                    start = pos + 1
                elif char in QUOTES:
                    in_string = True
                    quote = char
            elif char == quote:
                if text[pos + 1: pos + 2] == quote:
                    pos += 2
                    continue
                in_string = False
            elif char == "\\" and pos + 1 < self.len:
                pos += 2
                continue
            pos += 1
        last = text[start:].strip()
        if last:
            yield last


def decode_value(raw: str) -> Value:
    """
    Convert one raw SQL field to None, float or str.

    Quoted strings lose their delimiters and doubled quotes; backslash
    sequences are left as they are in the dump. Anything that is neither
    NULL, quoted nor a plain decimal number is returned verbatim.
    """
    if raw == "NULL":
        return None
    for q in QUOTES:
        if raw.startswith(q) and raw.endswith(q):
            return raw[1:-1].replace(q * 2, q)
    if NUMBER_RE.fullmatch(raw):
        return float(raw)
    return raw


def decode_row(tuple_text: str) -> list[Value]:
    return [decode_value(f) for f in SqlTupleFieldParser(tuple_text)]


def extract_rows(dump: str, tables: dict[str, Table], progress=None) -> set[str]:
    """
    Append the rows of every INSERT statement to its table, in dump order.

    INSERTs into tables that have no CREATE TABLE are skipped; their names
    are returned.
    """
    skipped = set()
    consumed = 0
    for m in INSERT_RE.finditer(dump):
        if progress:
            progress.update(m.end() - consumed)
            consumed = m.end()
        tname = unescape_identifier(m.group(1))
        table = tables.get(tname)
        if table is None:
            skipped.add(tname)
            continue
        if progress:
            progress.set_description(
                tl("Parsing table: {tname}").format(tname=tname)
            )
        for tuple_text in SqlMultiTupleParser(m.group(2)):
            table.rows.append(decode_row(tuple_text))
    if progress:
        progress.update(len(dump) - consumed)
    return skipped


class DumpParser:
    """Parses one dump text into a fresh table map.

    Structures are always extracted before rows, so every INSERT target is
    known by the time its rows are decoded.
    """

    def __init__(self, dump: str, progress=None):
        self.dump = dump
        self.progress = progress
        self.tables: dict[str, Table] = {}
        self.skipped_tables: set[str] = set()

    def parse(self) -> dict[str, Table]:
        self.tables = {
            tname: Table(tname, columns)
            for tname, columns in extract_structures(self.dump).items()
        }
        self.skipped_tables = extract_rows(self.dump, self.tables, self.progress)
        return self.tables


def parse_dump(dump: str) -> dict[str, Table]:
    return DumpParser(dump).parse()


# ---------- reports and exports ----------
def _select_tables(tables, names):
    if not names:
        return tables
    return {t: tables[t] for t in names if t in tables}


def _format_value(v) -> str:
    if v is None:
        return "NULL"
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    return str(v)


def print_summary(tables, sample=0):
    print("\n" + tl("--- Dump Parse Summary ---"))
    print(f"{'Table':<40} {'Columns':>12} {'Rows':>20}")
    print("-" * 74)
    total_rows = 0
    for tname, table in sorted(tables.items()):
        print(f"{tname:<40} {len(table.columns):>12,d} {len(table.rows):>20,d}")
        total_rows += len(table.rows)
        for row in table.rows[:sample]:
            print("    " + ", ".join(_format_value(v) for v in row))
    print("-" * 74)
    print(
        tl("Found {num_tables} tables with a total of {total_rows} rows.").format(
            num_tables=len(tables), total_rows=f"{total_rows:,d}"
        )
    )
    print("---------------------------\n")


def print_structure(tables):
    for tname, table in sorted(tables.items()):
        print(f"`{tname}`")
        for col in table.columns:
            print(f"  {col.name:<32} {col.type:<24} {col.attributes}")
        print()


def write_json(tables, outpath):
    with open(outpath, "w", encoding="utf-8") as f:
        json.dump(
            {tname: table.to_dict() for tname, table in tables.items()},
            f,
            ensure_ascii=False,
            indent=2,
        )


def write_csv_dir(tables, outdir, verbose=False):
    os.makedirs(outdir, exist_ok=True)
    for tname, table in tables.items():
        fname = os.path.join(outdir, f"{tname}.csv")
        with open(fname, "w", encoding="utf-8", newline="") as f:
            writer = csv.writer(f)
            writer.writerow([c.name for c in table.columns])
            for row in table.rows:
                writer.writerow(["" if v is None else _format_value(v) for v in row])
        if verbose:
            print(tl("[INFO] Created file {fname}").format(fname=fname))


def run_parse(**kwargs):
    inpath = kwargs["inpath"]
    verbose = kwargs.get("verbose")
    try:
        dump = load_dump(inpath)
    except (OSError, ValueError) as err:
        print(tl("[ERROR] Could not read dump {path}: {error}").format(path=inpath, error=err))
        sys.exit(1)
    if detect_db_type(inpath) == "postgres":
        warnings.warn(
            tl("{path} looks like a PostgreSQL dump; only MySQL syntax is parsed.").format(
                path=inpath
            )
        )
    progress = (
        tqdm(total=len(dump), unit="char", unit_scale=True, desc=tl("Parsing"))
        if verbose
        else None
    )
    parser = DumpParser(dump, progress=progress)
    try:
        tables = parser.parse()
    finally:
        if progress:
            progress.close()
    if verbose:
        for tname in sorted(parser.skipped_tables):
            print(
                tl("[WARN] Skipped INSERT for table without CREATE TABLE: {tname}").format(
                    tname=tname
                )
            )
    selected = _select_tables(tables, kwargs.get("tables"))
    if verbose:
        for tname in kwargs.get("tables") or []:
            if tname not in tables:
                print(tl("[WARN] Table not found: {tname}").format(tname=tname))

    if kwargs.get("info") or not any(kwargs.get(dest) for dest in OUTPUT_MODES):
        print_summary(selected, sample=int(kwargs.get("sample") or 0))
    elif kwargs.get("structure"):
        print_structure(selected)
    elif kwargs.get("json_path"):
        write_json(selected, kwargs["json_path"])
        print(tl("Done. Saved to: {path}").format(path=kwargs["json_path"]))
    else:
        write_csv_dir(selected, kwargs["csv_dir"], verbose=verbose)
        print(
            tl("Done. Wrote CSV files into directory: {path}").format(
                path=kwargs["csv_dir"]
            )
        )
    return tables


# ---------- command line ----------
def _load_config(config_file="parse_sql_dump.ini"):
    config = configparser.ConfigParser(allow_no_value=True, inline_comment_prefixes=("#", ";"))
    config_defaults = {}
    boolean_flags = {"verbose"}
    if os.path.exists(config_file) and os.path.getsize(config_file) > 0:
        config.read(config_file)
        _parse_config_sections(config, config_defaults, boolean_flags)
    return config_defaults


def _parse_config_sections(config, config_defaults, boolean_flags):
    mapping = {
        "table": "tables",
        "sample": "sample",
        "verbose": "verbose",
        "json": "json_path",
        "csv-dir": "csv_dir",
    }
    section_name = "parse"
    if section_name not in config:
        return
    for key, dest in mapping.items():
        if key not in config[section_name]:
            continue
        if dest in boolean_flags:
            if config[section_name][key] is None or config.getboolean(section_name, key):
                config_defaults[dest] = True
        elif dest == "tables":
            config_defaults[dest] = config.get(section_name, key).split()
        elif dest == "sample":
            config_defaults[dest] = config.getint(section_name, key)
        else:
            config_defaults[dest] = config.get(section_name, key)


def _create_arg_parser(p: argparse.ArgumentParser) -> argparse.ArgumentParser:
    # --- Input Arguments ---
    p.add_argument("input", nargs="?", help=tl("Dump file (can be .gz/.bz2/.xz/.zip)"))
    p.add_argument(
        "--input", "-i", dest="input_override", help=tl("Override positional input file")
    )
    p.add_argument(
        "--table",
        "-t",
        action="append",
        dest="tables",
        help=tl("Only report/export this table (repeatable)"),
    )
    p.add_argument(
        "--sample",
        type=int,
        help=tl("[--info] Print the first N rows of every table"),
    )
    p.add_argument(
        "--verbose", "-v", action="store_true", help=tl("Print diagnostic information")
    )

    # --- Mutually Exclusive Output Modes ---
    output_mode_group = p.add_mutually_exclusive_group()
    output_mode_group.add_argument(
        "--info",
        action="store_true",
        help=tl("Print a per-table summary of columns and rows (default)."),
    )
    output_mode_group.add_argument(
        "--structure",
        action="store_true",
        help=tl("Print the column definitions of every table."),
    )
    output_mode_group.add_argument(
        "--json", dest="json_path", help=tl("Write all parsed tables to a JSON file.")
    )
    output_mode_group.add_argument(
        "--csv-dir",
        nargs="?",
        const=".",
        help=tl("Write one CSV file per table. Optional dir, defaults to current."),
    )
    return p


def _apply_config_defaults(p, args, config_defaults):
    """Fill in config values for options left at their defaults.

    An output mode given on the command line replaces any mode from the
    config file.
    """
    cli_mode = any(getattr(args, dest) != p.get_default(dest) for dest in OUTPUT_MODES)
    for dest, value in config_defaults.items():
        if cli_mode and dest in OUTPUT_MODES:
            continue
        if getattr(args, dest) == p.get_default(dest):
            setattr(args, dest, value)


def _validate_args(p, args, config_defaults=None):
    args.input = args.input_override or args.input

    if not args.input:
        p.error(tl("You must provide an input dump file (e.g., `script.py dump.sql`)"))
    if not os.path.exists(args.input):
        print(tl("File not found: {path}").format(path=args.input))
        sys.exit(2)
    if args.sample and (args.structure or args.json_path or args.csv_dir):
        p.error(tl("--sample can only be used with --info."))

    _apply_config_defaults(p, args, config_defaults or {})
    if args.sample is not None and args.sample < 0:
        p.error(tl("--sample must not be negative."))

    if args.json_path and not args.json_path.lower().endswith(".json"):
        if args.verbose:
            print(
                tl(
                    "[INFO] Output filename does not end with .json, appending it. New name: {name}"
                ).format(name=args.json_path + ".json")
            )
        args.json_path += ".json"


def set_parse_arguments_and_config():
    parser = argparse.ArgumentParser(
        description=tl(
            "SQL Dump Parser: rebuilds tables and rows from a MySQL dump, "
            "prints summaries or exports them as JSON/CSV."
        )
    )
    config_defaults = _load_config()
    parser = _create_arg_parser(parser)
    parser.set_defaults(tables=None, sample=None)
    args = parser.parse_args()
    _validate_args(parser, args, config_defaults)
    return args


def main():
    args = set_parse_arguments_and_config()
    kwargs = vars(args)
    kwargs["inpath"] = kwargs.pop("input")
    kwargs.pop("input_override", None)
    run_parse(**kwargs)


if __name__ == "__main__":
    main()
