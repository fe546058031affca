"""
Module: fake_exiftool.py

Date: 2026-10-19

Stand-in for the exiftool executable used by the test suite.

Speaks the same protocol: with '-stay_open True -@ -' it reads one argument
per line from stdin, answers on '-execute' and terminates each answer with
'{ready}'; '-stay_open' / 'False' makes it exit. Without '-stay_open' the
arguments come from argv and the process exits after answering.

Control arguments:
    -FAKE_HANG          never answer
    -FAKE_DIE           exit immediately without answering
    -FAKE_CLOSE_STDOUT  close stdout without answering, then keep running
    -FAKE_ERROR         write 'Error: bad tag' on stderr
    -FAKE_WARNING       write 'Warning: deprecated' on stderr
    -FAKE_LINES=N       answer with N numbered lines
    -FAKE_SLEEP=MS      wait before answering

Environment:
    FAKE_EXIFTOOL_LOG     append '<pid> <line>' for every stdin line read
    FAKE_EXIFTOOL_SPAWNS  append '<pid>' once per process start
    FAKE_EXIFTOOL_MODE    'die' exits right after start
"""

import os
import sys
import time

VERSION = "12.40"

TAGS = {
    "FileSize": "1024",
    "ImageWidth": "640",
    "DateTimeOriginal": "2024:01:02 10:00:00",
    "Comment": "",
}

OPTIONS = {"-n", "-S", "-veryShort", "-duplicates", "-a", "-b", "-overwrite_original"}


def _append(env_name, text):
    path = os.environ.get(env_name)
    if not path:
        return
    with open(path, "a", encoding="utf-8") as fh:
        fh.write(text + "\n")


def _tags_requested(args):
    names = []
    for arg in args:
        if arg in OPTIONS or not arg.startswith("-") or "=" in arg:
            continue
        names.append(arg[1:])
    return names


def answer(args):
    """Return stdout lines for one request; may write stderr, sleep or exit."""
    for arg in args:
        if arg.startswith("-FAKE_SLEEP="):
            time.sleep(int(arg.split("=", 1)[1]) / 1000.0)

    if "-FAKE_DIE" in args:
        sys.stdout.flush()
        os._exit(3)
    if "-FAKE_CLOSE_STDOUT" in args:
        sys.stdout.flush()
        os.close(sys.stdout.fileno())
        while True:
            time.sleep(60)
    if "-FAKE_HANG" in args:
        while True:
            time.sleep(60)

    if "-FAKE_ERROR" in args:
        sys.stderr.write("Error: bad tag\n")
        sys.stderr.flush()
        # let the reader's stderr thread pick it up before the answer
        time.sleep(0.2)
        return []
    if "-FAKE_WARNING" in args:
        sys.stderr.write("Warning: deprecated\n")
        sys.stderr.flush()
        time.sleep(0.2)

    for arg in args:
        if arg.startswith("-FAKE_LINES="):
            count = int(arg.split("=", 1)[1])
            return [f"Line{i}: value{i}" for i in range(count)]

    if "-ver" in args:
        return [VERSION]
    if "-X" in args:
        return ['<?xml version="1.0" encoding="UTF-8"?>', "<rdf:RDF>", "</rdf:RDF>"]
    if "-icc_profile" in args:
        return ["    1 output files created"]
    if "-w" in args:
        suffix = args[args.index("-w") + 1]
        source = next(a for a in args if not a.startswith("-"))
        stem, _ = os.path.splitext(source)
        with open(stem + suffix, "wb") as fh:
            fh.write(b"\xff\xd8\xff\xd9")
        return ["    1 output files created"]
    if any("=" in arg for arg in args if arg.startswith("-") and not arg.startswith("-FAKE_")):
        return ["    1 image files updated"]

    requested = [name for name in _tags_requested(args) if not name.startswith("FAKE_")]
    if not requested:
        requested = list(TAGS)
    return [f"{name}: {TAGS[name]}" for name in requested if name in TAGS]


def _write_answer(lines, stay_open):
    for line in lines:
        sys.stdout.write(line + "\n")
    if stay_open:
        sys.stdout.write("{ready}\n")
    sys.stdout.flush()


def run_stay_open():
    pid = str(os.getpid())
    pending = []
    expect_stay_open_value = False
    while True:
        raw = sys.stdin.readline()
        if not raw:
            return 0
        line = raw.rstrip("\r\n")
        _append("FAKE_EXIFTOOL_LOG", f"{pid} {line}")
        if expect_stay_open_value:
            expect_stay_open_value = False
            if line.lower() == "false":
                return 0
            continue
        if line == "-stay_open":
            expect_stay_open_value = True
            continue
        if line == "-execute":
            args, pending = pending, []
            _write_answer(answer(args), stay_open=True)
            continue
        pending.append(line)


def main(argv):
    _append("FAKE_EXIFTOOL_SPAWNS", str(os.getpid()))
    if os.environ.get("FAKE_EXIFTOOL_MODE") == "die":
        return 3
    if len(argv) >= 2 and argv[0] == "-stay_open" and argv[1].lower() == "true":
        return run_stay_open()
    _write_answer(answer(argv), stay_open=False)
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
