"""Allow running as `python -m helios_muse`."""

from helios_muse.cli import main_entry

if __name__ == "__main__":
    main_entry()
