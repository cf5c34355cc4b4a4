"""Start child processes, redirect their streams, poll them and stop them."""

__version__ = "14.2.4"

__all__ = ["errors", "options", "env", "cmdline", "pipe", "redirect", "process", "reproc", "run"]