#!/usr/bin/env python3
"""
main.py - Development entry point: `main.py backup ...` or `main.py restore ...`.
"""
import sys
from pathlib import Path

if __name__ == "__main__":
    script_dir = Path(__file__).resolve().parent
    if str(script_dir) not in sys.path:
        sys.path.insert(0, str(script_dir))

    try:
        from csbackup.cli import backup_main, restore_main
    except ImportError as e:
        print(f"Error importing csbackup modules: {e}")
        print("Make sure you're running from the project root directory.")
        sys.exit(1)

    programs = {"backup": backup_main, "restore": restore_main}
    if len(sys.argv) < 2 or sys.argv[1] not in programs:
        print("usage: main.py {backup,restore} [options] ...")
        sys.exit(1)
    sys.exit(programs[sys.argv[1]](sys.argv[2:]))
